"""Flow Graph Model and Validator

This module provides the declarative flow ("agent app") model and its
structural validation.

Key Components:
- NodeConfig / EdgeDefinition / FlowDefinition: Declarative flow configuration
- parse_flow: Build a FlowDefinition from stored or React Flow JSON
- validate_flow: Structural validation returning errors and warnings
- detect_loops / detect_dangling_nodes: Informational graph analysis

Design Principles:
- Only three things make a flow invalid: no nodes, an edge whose endpoint
  does not resolve, or a missing input/output node. Node ids must also be
  unique and node kinds registered.
- Cycles are accepted. The scheduler executes every node at most once per
  run, which guarantees termination; cycles only produce warnings here.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..errors import ValidationError, ValidationIssue
from ..nodes.registry import is_node_kind_registered
from .safe_eval import validate_condition_expression

logger = logging.getLogger(__name__)

INPUT_KIND = "input"
OUTPUT_KIND = "output"


@dataclass
class NodeConfig:
    """Configuration for a single flow node.

    Attributes:
        id: Node identifier, unique within a flow
        kind: Node kind (must be registered in node registry)
        data: Kind-specific configuration dictionary
        position: Editor position, ignored by the engine
    """

    id: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    position: Optional[Dict[str, Any]] = None

    @property
    def label(self) -> str:
        return self.data.get("label") or self.id

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "type": self.kind, "data": self.data}
        if self.position is not None:
            result["position"] = self.position
        return result


@dataclass
class EdgeDefinition:
    """Definition of an edge connecting two nodes.

    Attributes:
        id: Edge identifier
        source: Source node ID
        target: Target node ID
        gate: Optional condition expression; the edge is taken when it is true
        data: Extra edge data (e.g. mapping), preserved but not interpreted
    """

    id: str
    source: str
    target: str
    gate: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "source": self.source, "target": self.target}
        if self.gate:
            result["gate"] = self.gate
        if self.data:
            result["data"] = self.data
        return result


@dataclass
class FlowDefinition:
    """Declarative flow definition.

    Attributes:
        nodes: List of node configurations, in declaration order
        edges: List of edge definitions, in declaration order
        name: Flow name (informational)
    """

    nodes: List[NodeConfig]
    edges: List[EdgeDefinition]
    name: str = ""

    def get_node(self, node_id: str) -> Optional[NodeConfig]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> List[EdgeDefinition]:
        """Outgoing edges of a node in declaration order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def incoming(self, node_id: str) -> List[EdgeDefinition]:
        return [edge for edge in self.edges if edge.target == node_id]

    def entry_nodes(self) -> List[NodeConfig]:
        """Nodes with no incoming edge, in declaration order."""
        targets = {edge.target for edge in self.edges}
        return [node for node in self.nodes if node.id not in targets]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


def parse_node(raw: Dict[str, Any]) -> NodeConfig:
    """Build a NodeConfig from JSON.

    Accepts ``type`` or ``kind`` for the node kind and either a React Flow
    ``data`` object or a legacy ``config`` object.
    """
    kind = raw.get("kind") or raw.get("type") or ""
    data = raw.get("data")
    if data is None:
        data = raw.get("config") or {}
    return NodeConfig(
        id=str(raw.get("id") or ""),
        kind=str(kind).lower(),
        data=dict(data),
        position=raw.get("position"),
    )


def parse_edge(raw: Dict[str, Any], index: int = 0) -> EdgeDefinition:
    """Build an EdgeDefinition from JSON.

    The gate may be given as ``gate``, ``condition`` or ``data.condition``.
    """
    data = dict(raw.get("data") or {})
    gate = raw.get("gate") or raw.get("condition") or data.get("condition")
    source = str(raw.get("source") or "")
    target = str(raw.get("target") or "")
    return EdgeDefinition(
        id=str(raw.get("id") or f"e{index}-{source}-{target}"),
        source=source,
        target=target,
        gate=gate or None,
        data=data,
    )


def parse_flow(definition: Dict[str, Any], name: str = "") -> FlowDefinition:
    """Build a FlowDefinition from a stored ``{nodes, edges}`` dict."""
    nodes = [parse_node(n) for n in definition.get("nodes") or []]
    edges = [parse_edge(e, i) for i, e in enumerate(definition.get("edges") or [])]
    return FlowDefinition(nodes=nodes, edges=edges, name=name or definition.get("name", ""))


class ValidationResult:
    """Definition validation result.

    Attributes:
        valid: Whether the definition is valid
        errors: List of validation errors
        warnings: List of validation warnings
    """

    def __init__(self, valid: bool, errors: List[ValidationIssue], warnings: List[ValidationIssue]):
        self.valid = valid
        self.errors = errors
        self.warnings = warnings

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }

    def raise_for_errors(self) -> None:
        """Raise ValidationError if the definition is invalid."""
        if not self.valid:
            message = "; ".join(e.message for e in self.errors)
            raise ValidationError(f"Validation failed: {message}", self.errors)


def validate_flow(flow: FlowDefinition) -> ValidationResult:
    """Validate flow structure.

    Errors (the flow is rejected):
    - Flow has no nodes
    - Node ids missing or duplicated, node kind unregistered
    - Edge source/target does not reference an existing node
    - No node of kind input, or none of kind output

    Warnings (informational only):
    - Cycles, dangling nodes, unparsable gate/condition/transform
      expressions, agent nodes without an agent reference

    Args:
        flow: Flow definition to validate

    Returns:
        ValidationResult containing validation status and errors/warnings
    """
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    # 1. At least one node
    if not flow.nodes:
        errors.append(ValidationIssue(
            code="EMPTY_FLOW",
            message="App must have at least one node",
        ))
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    # 2. Node ids present and unique, kinds registered
    seen: Set[str] = set()
    for node in flow.nodes:
        if not node.id:
            errors.append(ValidationIssue(
                code="MISSING_NODE_ID",
                message=f"Node of kind '{node.kind}' has no id",
                context={"node_kind": node.kind},
            ))
            continue
        if node.id in seen:
            errors.append(ValidationIssue(
                code="DUPLICATE_NODE_ID",
                message=f"Duplicate node id '{node.id}'",
                node_ids=[node.id],
            ))
        seen.add(node.id)
        if not is_node_kind_registered(node.kind):
            errors.append(ValidationIssue(
                code="INVALID_NODE_KIND",
                message=f"Node {node.id} has unknown kind '{node.kind}'",
                node_ids=[node.id],
                context={"node_kind": node.kind},
            ))

    # 3. Edge endpoints resolve
    for edge in flow.edges:
        if edge.source not in seen or edge.target not in seen:
            errors.append(ValidationIssue(
                code="INVALID_EDGE",
                message=f"Invalid edge: {edge.source} -> {edge.target}",
                node_ids=[nid for nid in (edge.source, edge.target) if nid in seen],
                context={"edge_id": edge.id},
            ))

    # 4. Input and output nodes present
    kinds = {node.kind for node in flow.nodes}
    if INPUT_KIND not in kinds:
        errors.append(ValidationIssue(
            code="MISSING_INPUT_NODE",
            message="App must have at least one input node",
        ))
    if OUTPUT_KIND not in kinds:
        errors.append(ValidationIssue(
            code="MISSING_OUTPUT_NODE",
            message="App must have at least one output node",
        ))

    # 5. Cycles are allowed; report them so editors can show them
    for loop in detect_loops(flow):
        cycle_str = " → ".join(loop.cycle_path)
        warnings.append(ValidationIssue(
            code="CYCLE_DETECTED",
            message=f"Cycle detected: {cycle_str} (each node still runs at most once per execution)",
            severity="warning",
            node_ids=loop.cycle_path[:-1],
            context={"cycle_path": loop.cycle_path, "gated": loop.gated},
        ))

    # The scheduler refuses to start without an entry node
    if not errors and not flow.entry_nodes():
        warnings.append(ValidationIssue(
            code="NO_ENTRY_NODE",
            message="Every node has an incoming edge; the app has no entry points",
            severity="warning",
        ))

    # 6. Dangling nodes
    if len(flow.nodes) > 1:
        for node_id in detect_dangling_nodes(flow):
            warnings.append(ValidationIssue(
                code="DANGLING_NODE",
                message=f"Node {node_id} is not connected to the flow",
                severity="warning",
                node_ids=[node_id],
            ))

    # 7. Expressions: failures are swallowed at runtime, so only warn
    for edge in flow.edges:
        if edge.gate:
            for err in validate_condition_expression(edge.gate):
                warnings.append(ValidationIssue(
                    code="INVALID_GATE",
                    message=f"Edge {edge.id} gate expression is invalid: {err}",
                    severity="warning",
                    node_ids=[edge.source, edge.target],
                    context={"edge_id": edge.id, "gate": edge.gate},
                ))
    for node in flow.nodes:
        for key, code in (("condition", "INVALID_CONDITION"), ("transform", "INVALID_TRANSFORM")):
            expression = node.data.get(key)
            if not expression:
                continue
            for err in validate_condition_expression(str(expression)):
                warnings.append(ValidationIssue(
                    code=code,
                    message=f"Node {node.id} {key} expression is invalid: {err}",
                    severity="warning",
                    node_ids=[node.id],
                    context={key: expression},
                ))
        if node.kind == "agent" and not (node.data.get("agentId") or node.data.get("agentRef")):
            warnings.append(ValidationIssue(
                code="MISSING_AGENT_REF",
                message=f"Agent node {node.id} has no agent reference",
                severity="warning",
                node_ids=[node.id],
            ))

    valid = len(errors) == 0
    return ValidationResult(valid=valid, errors=errors, warnings=warnings)


@dataclass
class LoopInfo:
    """Information about a detected cycle in the flow.

    Attributes:
        cycle_path: List of node IDs forming the loop (last == first)
        gated: Whether any edge on the cycle carries a gate expression
    """
    cycle_path: List[str]
    gated: bool = False


def detect_loops(flow: FlowDefinition) -> List[LoopInfo]:
    """Detect cycles in the flow using DFS.

    Args:
        flow: Flow definition

    Returns:
        List of LoopInfo for each detected cycle
    """
    graph: Dict[str, List[str]] = defaultdict(list)
    gated_pairs: Set[tuple] = set()
    for edge in flow.edges:
        graph[edge.source].append(edge.target)
        if edge.gate:
            gated_pairs.add((edge.source, edge.target))

    loops: List[LoopInfo] = []
    visited: Set[str] = set()
    path: List[str] = []
    path_set: Set[str] = set()
    found_cycles: Set[tuple] = set()  # Deduplicate cycles

    def record_cycle(node: str) -> None:
        cycle_start_idx = path.index(node)
        cycle_path = path[cycle_start_idx:] + [node]
        cycle_nodes = tuple(sorted(cycle_path[:-1]))
        if cycle_nodes not in found_cycles:
            found_cycles.add(cycle_nodes)
            gated = any(
                (cycle_path[i], cycle_path[i + 1]) in gated_pairs
                for i in range(len(cycle_path) - 1)
            )
            loops.append(LoopInfo(cycle_path=cycle_path, gated=gated))

    # Explicit stack of (node, neighbor iterator) so long chains do not
    # hit the interpreter recursion limit
    for start in flow.nodes:
        if start.id in visited:
            continue
        visited.add(start.id)
        path.append(start.id)
        path_set.add(start.id)
        stack = [(start.id, iter(graph[start.id]))]
        while stack:
            node, neighbors = stack[-1]
            neighbor = next(neighbors, None)
            if neighbor is None:
                stack.pop()
                path.pop()
                path_set.remove(node)
                continue
            if neighbor in path_set:
                record_cycle(neighbor)
            elif neighbor not in visited:
                visited.add(neighbor)
                path.append(neighbor)
                path_set.add(neighbor)
                stack.append((neighbor, iter(graph[neighbor])))

    return loops


def detect_dangling_nodes(flow: FlowDefinition) -> List[str]:
    """Detect nodes with no incoming or outgoing edges.

    Args:
        flow: Flow definition

    Returns:
        List of dangling node IDs, in declaration order
    """
    connected_nodes = set()
    for edge in flow.edges:
        connected_nodes.add(edge.source)
        connected_nodes.add(edge.target)
    return [node.id for node in flow.nodes if node.id not in connected_nodes]
