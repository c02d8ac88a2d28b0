"""Node Kind Registry

This module provides a protocol-based registration system for node
processors. Each node kind (input, agent, condition, transform, output)
is a class registered under its kind name; the scheduler instantiates
one processor per node through ``create_node`` and dispatches on it.

Key Components:
- NodeDefinition: Metadata for node kinds
- BaseNode: Protocol/interface for all node processors
- register_node_kind: Decorator for registering node kinds
- create_node: Factory function for processor instantiation
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Type, TypeVar

logger = logging.getLogger(__name__)

# Type variable for node classes
T = TypeVar("T", bound="BaseNodeImpl")


@dataclass
class NodeDefinition:
    """Metadata definition for a node kind.

    Attributes:
        node_kind: Unique identifier for the node kind (e.g., "condition")
        display_name: Human-readable name for UI display
        description: Brief description of node functionality
        category: Category for grouping (e.g., "io", "control", "agent")
        config_schema: JSON schema describing the node's ``data`` object
        output_schema: JSON schema describing the node's result
        icon: Optional icon identifier for UI rendering
        color: Optional color code for UI theming
    """

    node_kind: str
    display_name: str
    description: str
    category: str
    config_schema: Dict[str, Any]
    output_schema: Dict[str, Any]
    icon: Optional[str] = None
    color: Optional[str] = None

    def __post_init__(self):
        """Validate node definition after initialization."""
        if not self.node_kind:
            raise ValueError("node_kind cannot be empty")
        if not self.display_name:
            raise ValueError("display_name cannot be empty")
        if not isinstance(self.config_schema, dict):
            raise ValueError("config_schema must be a dictionary")
        if not isinstance(self.output_schema, dict):
            raise ValueError("output_schema must be a dictionary")


class BaseNode(Protocol):
    """Protocol defining the interface for all node processors.

    Attributes:
        node_id: Identifier of the node within its flow
        node_kind: Kind identifier matching NodeDefinition
        data: Kind-specific configuration for this node
    """

    node_id: str
    node_kind: str
    data: Dict[str, Any]

    async def execute(self, state: Dict[str, Any]) -> Any:
        """Process the node against the current run state.

        Args:
            state: Run state (read-only for processors)

        Returns:
            The node result. Dict results are merged into run state by
            the scheduler.
        """
        ...

    def validate_config(self) -> List[Dict[str, str]]:
        """Validate node configuration.

        Returns:
            List of validation errors, each containing ``field`` and
            ``error``. Empty list if validation passes.
        """
        ...


class BaseNodeImpl(ABC):
    """Abstract base class providing common processor functionality."""

    def __init__(
        self,
        node_id: str,
        node_kind: str,
        data: Dict[str, Any],
        invoker: Any = None,
    ):
        """Initialize base node.

        Args:
            node_id: Identifier of the node within its flow
            node_kind: Kind identifier matching NodeDefinition
            data: Kind-specific configuration
            invoker: AgentInvoker for kinds that call an agent
        """
        self.node_id = node_id
        self.node_kind = node_kind
        self.data = data
        self.invoker = invoker

    @abstractmethod
    async def execute(self, state: Dict[str, Any]) -> Any:
        """Process the node. Must be implemented by subclasses."""
        pass

    def validate_config(self) -> List[Dict[str, str]]:
        """Default validation: required fields from the config schema."""
        errors = []

        definition = NODE_REGISTRY.get(self.node_kind)
        if not definition:
            errors.append({
                "field": "node_kind",
                "error": f"Unknown node kind: {self.node_kind}"
            })
            return errors

        required_fields = definition.config_schema.get("required", [])
        for field_name in required_fields:
            if field_name not in self.data:
                errors.append({
                    "field": field_name,
                    "error": f"Required field '{field_name}' is missing"
                })

        return errors


# Global registry for node kinds
NODE_REGISTRY: Dict[str, NodeDefinition] = {}
NODE_CLASSES: Dict[str, Type[BaseNodeImpl]] = {}


def register_node_kind(
    node_kind: str,
    display_name: str,
    description: str,
    category: str,
    config_schema: Dict[str, Any],
    output_schema: Dict[str, Any],
    icon: Optional[str] = None,
    color: Optional[str] = None,
) -> Callable[[Type[T]], Type[T]]:
    """Decorator to register a node kind.

    Registers both the definition metadata and the processor class.

    Example:
        @register_node_kind(
            node_kind="condition",
            display_name="Condition",
            description="Evaluates a boolean expression",
            category="control",
            config_schema={"type": "object", "properties": {...}},
            output_schema={"type": "object", "properties": {...}},
        )
        class ConditionNode(BaseNodeImpl):
            async def execute(self, state):
                return {"result": True}
    """

    def decorator(cls: Type[T]) -> Type[T]:
        definition = NodeDefinition(
            node_kind=node_kind,
            display_name=display_name,
            description=description,
            category=category,
            config_schema=config_schema,
            output_schema=output_schema,
            icon=icon,
            color=color,
        )

        NODE_REGISTRY[node_kind] = definition
        NODE_CLASSES[node_kind] = cls

        logger.info(f"Registered node kind: {node_kind} ({display_name})")

        return cls

    return decorator


def create_node(
    node_id: str,
    node_kind: str,
    data: Dict[str, Any],
    invoker: Any = None,
) -> BaseNodeImpl:
    """Factory function to create a processor for one node.

    Raises:
        ValueError: If node_kind is not registered
    """
    if node_kind not in NODE_CLASSES:
        available_kinds = list(NODE_CLASSES.keys())
        raise ValueError(
            f"Unknown node kind: {node_kind}. "
            f"Available kinds: {available_kinds}"
        )

    node_class = NODE_CLASSES[node_kind]
    node = node_class(node_id=node_id, node_kind=node_kind, data=data, invoker=invoker)

    logger.debug(f"Created node: {node_id} (kind={node_kind})")

    return node


def get_node_definition(node_kind: str) -> Optional[NodeDefinition]:
    """Get the definition for a registered node kind."""
    return NODE_REGISTRY.get(node_kind)


def list_node_kinds() -> List[NodeDefinition]:
    """List all registered node kinds."""
    return list(NODE_REGISTRY.values())


def list_node_kinds_by_category(category: str) -> List[NodeDefinition]:
    """List all registered node kinds in a specific category."""
    return [
        definition
        for definition in NODE_REGISTRY.values()
        if definition.category == category
    ]


def is_node_kind_registered(node_kind: str) -> bool:
    """Check if a node kind is registered."""
    return node_kind in NODE_REGISTRY
