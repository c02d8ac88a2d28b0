"""Flow Scheduler

Walks a flow from its entry nodes, dispatching each node to its processor
and following gated edges.

Join strategies:
- first-arrival (default): depth-first walk over an explicit stack. A node with several incoming
  edges runs on the first path that reaches it; later arrivals find it in
  ``results`` and stop. That membership check is also the only cycle
  guard, so every node runs at most once per run.
- wait-all: ready-queue scheduling over incoming-edge counts. A node is
  dispatched once every incoming edge has settled (its source ran or was
  pruned) and at least one of them was taken. Nodes left waiting on a
  cycle are released in declaration order, still at most once each.

State: ``{**input_data, **context}``, owned by a single run. Dict results
are merged into state as nodes complete (later writers win).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set

from ..errors import CancellationError, ValidationError
from ..nodes.registry import create_node
from ..settings import DEFAULT_JOIN_STRATEGY
from .graph_builder import EdgeDefinition, FlowDefinition
from .safe_eval import eval_condition

logger = logging.getLogger(__name__)

FIRST_ARRIVAL = "first-arrival"
WAIT_ALL = "wait-all"
JOIN_STRATEGIES = (FIRST_ARRIVAL, WAIT_ALL)


@dataclass
class FlowRun:
    """Private state of one flow run.

    Attributes:
        flow: The flow being executed
        state: Mutable run state
        results: Node id to node result, in completion order
        skipped_edges: Ids of edges whose gate evaluated false
        pruned: Nodes (wait-all only) whose every incoming edge was not taken
    """

    flow: FlowDefinition
    state: Dict[str, Any]
    results: Dict[str, Any] = field(default_factory=dict)
    skipped_edges: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)

    @property
    def order(self) -> List[str]:
        return list(self.results.keys())


class FlowScheduler:
    """Executes flows against an AgentInvoker.

    Args:
        invoker: AgentInvoker handed to agent nodes
        join_strategy: "first-arrival" or "wait-all"
        cancel_event: Optional event checked before every node dispatch
        execution_id: Execution id reported in CancellationError
    """

    def __init__(
        self,
        invoker: Any = None,
        join_strategy: Optional[str] = None,
        cancel_event: Any = None,
        execution_id: str = "",
    ):
        join_strategy = join_strategy or DEFAULT_JOIN_STRATEGY
        if join_strategy not in JOIN_STRATEGIES:
            raise ValidationError(
                f"Unknown join strategy '{join_strategy}', expected one of {list(JOIN_STRATEGIES)}"
            )
        self.invoker = invoker
        self.join_strategy = join_strategy
        self.cancel_event = cancel_event
        self.execution_id = execution_id

    def prepare(
        self,
        flow: FlowDefinition,
        input_data: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> FlowRun:
        """Create the run state.

        Raises:
            ValidationError: If the flow has no entry points
        """
        if not flow.entry_nodes():
            raise ValidationError("no entry points")
        return FlowRun(flow=flow, state={**(input_data or {}), **(context or {})})

    async def execute(self, run: FlowRun) -> Dict[str, Any]:
        """Execute a prepared run; ``run.results`` survives a failure."""
        entries = run.flow.entry_nodes()
        logger.info(
            f"Executing flow '{run.flow.name}' ({len(run.flow.nodes)} nodes, "
            f"{len(entries)} entry points, join={self.join_strategy})"
        )
        if self.join_strategy == WAIT_ALL:
            await self._run_wait_all(run)
        else:
            for entry in entries:
                await self._visit(run, entry.id)
        logger.info(f"Flow '{run.flow.name}' settled after {len(run.results)} nodes")
        return run.results

    async def run(
        self,
        flow: FlowDefinition,
        input_data: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run a flow and return the node results."""
        return await self.execute(self.prepare(flow, input_data, context))

    # ------------------------------------------------------------------
    # Node dispatch
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise CancellationError(self.execution_id)

    async def _execute_node(self, run: FlowRun, node_id: str) -> Any:
        self._check_cancelled()

        node = run.flow.get_node(node_id)
        if node is None:
            raise ValidationError(f"Edge references unknown node '{node_id}'")

        processor = create_node(node.id, node.kind, node.data, invoker=self.invoker)
        logger.info(f"Dispatching node '{node.id}' (kind={node.kind})")
        result = await processor.execute(dict(run.state))

        run.results[node.id] = result
        if isinstance(result, dict):
            run.state.update(result)
        logger.info(f"Node '{node.id}' completed")
        return result

    def _gate_open(self, run: FlowRun, edge: EdgeDefinition, result: Any) -> bool:
        if not edge.gate:
            return True
        taken = eval_condition(edge.gate, {**run.state, "nodeResult": result})
        logger.info(f"Edge {edge.source} -> {edge.target} gate '{edge.gate}': {taken}")
        if not taken:
            run.skipped_edges.append(edge.id)
        return taken

    # ------------------------------------------------------------------
    # first-arrival
    # ------------------------------------------------------------------

    async def _visit(self, run: FlowRun, node_id: str) -> None:
        if node_id in run.results:
            return

        # Frames of (node id, node result, outgoing-edge iterator). A gate
        # is evaluated only when its edge comes up, after the previous
        # sibling's subtree has finished.
        result = await self._execute_node(run, node_id)
        stack = [(node_id, result, iter(run.flow.outgoing(node_id)))]
        while stack:
            _, result, edges = stack[-1]
            edge = next(edges, None)
            if edge is None:
                stack.pop()
                continue
            if not self._gate_open(run, edge, result) or edge.target in run.results:
                continue
            target_result = await self._execute_node(run, edge.target)
            stack.append((edge.target, target_result, iter(run.flow.outgoing(edge.target))))

    # ------------------------------------------------------------------
    # wait-all
    # ------------------------------------------------------------------

    async def _run_wait_all(self, run: FlowRun) -> None:
        flow = run.flow
        pending: Dict[str, int] = {node.id: len(flow.incoming(node.id)) for node in flow.nodes}
        activated: Set[str] = set()
        settled: Set[str] = set()
        ready: Deque[str] = deque(node.id for node in flow.entry_nodes())

        def settle_edge(edge: EdgeDefinition, taken: bool) -> None:
            target = edge.target
            if target in settled:
                return
            pending[target] -= 1
            if taken:
                activated.add(target)
            if pending[target] == 0:
                if target in activated:
                    ready.append(target)
                else:
                    prune(target)

        def prune(node_id: str) -> None:
            settled.add(node_id)
            run.pruned.append(node_id)
            logger.info(f"Node '{node_id}' pruned: no incoming edge was taken")
            for edge in flow.outgoing(node_id):
                settle_edge(edge, False)

        while True:
            while ready:
                node_id = ready.popleft()
                if node_id in settled:
                    continue
                settled.add(node_id)
                result = await self._execute_node(run, node_id)
                for edge in flow.outgoing(node_id):
                    settle_edge(edge, self._gate_open(run, edge, result))

            # Nodes still waiting here are blocked by a cycle
            blocked = [n.id for n in flow.nodes if n.id in activated and n.id not in settled]
            if not blocked:
                break
            logger.info(f"Releasing node '{blocked[0]}' blocked on a cycle")
            ready.append(blocked[0])
