"""Node System: registry and the built-in node processors."""

# Import node modules to auto-register node kinds
from . import base  # noqa: F401 - registers input, condition, transform, output
from . import agents  # noqa: F401 - registers agent

from .registry import (
    NODE_CLASSES,
    NODE_REGISTRY,
    BaseNode,
    BaseNodeImpl,
    NodeDefinition,
    create_node,
    get_node_definition,
    is_node_kind_registered,
    list_node_kinds,
    list_node_kinds_by_category,
    register_node_kind,
)

__all__ = [
    "NODE_CLASSES",
    "NODE_REGISTRY",
    "BaseNode",
    "BaseNodeImpl",
    "NodeDefinition",
    "create_node",
    "get_node_definition",
    "is_node_kind_registered",
    "list_node_kinds",
    "list_node_kinds_by_category",
    "register_node_kind",
]
