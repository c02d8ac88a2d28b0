"""Run Drivers

Ties the Flow Scheduler and Chain Stepper to the Execution Record Manager:

    (definition, input, context)
        -> validate (ValidationError, no record)
        -> records.start           (status running)
        -> scheduler / stepper
        -> records.complete | records.fail

Runtime failures never propagate out of these drivers; they end up in
the record's ``error`` / ``errorKind`` with any partial results kept.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from ..errors import AgentFlowError, CancellationError, ERROR_KIND_INTERNAL, error_kind_of
from ..store import CHAIN_RECORD, FLOW_RECORD, DefinitionStore
from .cancellation import CancellationRegistry, cancellation_registry
from .chain import ChainExecution, ChainStepper, FAILED, parse_chain, validate_chain
from .graph_builder import parse_flow, validate_flow
from .records import ExecutionRecordManager, json_safe, new_execution_id
from .scheduler import FlowScheduler

logger = logging.getLogger(__name__)


def resolve_join_strategy(flow_definition: Dict[str, Any], requested: Optional[str] = None) -> Optional[str]:
    """Per-request strategy, else the app's ``config.joinStrategy``, else default."""
    if requested:
        return requested
    config = flow_definition.get("config") or {}
    return config.get("joinStrategy") or None


async def execute_flow(
    flow_definition: Dict[str, Any],
    input_data: Optional[Dict[str, Any]],
    context: Optional[Dict[str, Any]],
    *,
    records: ExecutionRecordManager,
    invoker: Any,
    join_strategy: Optional[str] = None,
    execution_id: Optional[str] = None,
    cancellations: CancellationRegistry = cancellation_registry,
) -> Dict[str, Any]:
    """Run a flow to completion and return its execution record.

    Raises:
        ValidationError: If the flow is structurally invalid (no record
            is created in that case)
    """
    input_data = dict(input_data or {})
    context = dict(context or {})
    flow = parse_flow(flow_definition, name=flow_definition.get("name", ""))
    validate_flow(flow).raise_for_errors()

    execution_id = execution_id or new_execution_id()
    strategy = resolve_join_strategy(flow_definition, join_strategy)
    cancel_event = cancellations.register(execution_id)
    try:
        scheduler = FlowScheduler(
            invoker=invoker,
            join_strategy=strategy,
            cancel_event=cancel_event,
            execution_id=execution_id,
        )
        run = scheduler.prepare(flow, input_data, context)
    except AgentFlowError:
        cancellations.release(execution_id)
        raise

    try:
        await records.start_flow(
            flow_definition.get("id", ""),
            input_data,
            context,
            execution_id=execution_id,
            join_strategy=scheduler.join_strategy,
        )
        try:
            results = await scheduler.execute(run)
            return await records.complete(FLOW_RECORD, execution_id, results=results)
        except AgentFlowError as e:
            logger.error(f"Flow execution {execution_id} failed: {e}")
            return await records.fail(
                FLOW_RECORD, execution_id, str(e), error_kind_of(e), results=json_safe(run.results),
            )
        except Exception as e:
            # Also reached when the store rejects the completed record
            logger.exception(f"Flow execution {execution_id} crashed: {e}")
            return await records.fail(
                FLOW_RECORD, execution_id, str(e), ERROR_KIND_INTERNAL, results=json_safe(run.results),
            )
    finally:
        cancellations.release(execution_id)


async def execute_flow_by_id(
    flow_id: str,
    input_data: Optional[Dict[str, Any]],
    context: Optional[Dict[str, Any]],
    *,
    store: DefinitionStore,
    records: ExecutionRecordManager,
    invoker: Any,
    join_strategy: Optional[str] = None,
    cancellations: CancellationRegistry = cancellation_registry,
) -> Dict[str, Any]:
    flow_definition = await store.get_flow(flow_id)
    return await execute_flow(
        flow_definition,
        input_data,
        context,
        records=records,
        invoker=invoker,
        join_strategy=join_strategy,
        cancellations=cancellations,
    )


async def start_chain(
    chain_definition: Dict[str, Any],
    input: Any,
    variables: Optional[Dict[str, Any]],
    *,
    records: ExecutionRecordManager,
    invoker: Any,
    execution_id: Optional[str] = None,
    cancellations: CancellationRegistry = cancellation_registry,
) -> Tuple[ChainExecution, ChainStepper]:
    """Validate the chain and open a running ChainExecution record.

    Raises:
        ValidationError: If the chain is structurally invalid
    """
    validate_chain(chain_definition).raise_for_errors()
    chain = parse_chain(chain_definition)

    stepper = ChainStepper(chain, invoker)
    execution = stepper.start(execution_id or new_execution_id(), input, variables)
    await records.start_chain(execution.to_record())
    cancellations.register(execution.id)
    logger.info(f"Chain execution {execution.id} started ({len(chain.steps)} steps)")
    return execution, stepper


async def drive_chain(
    execution: ChainExecution,
    stepper: ChainStepper,
    *,
    records: ExecutionRecordManager,
    cancellations: CancellationRegistry = cancellation_registry,
) -> Dict[str, Any]:
    """Blocking driver: advance until terminal, writing progress after each step."""
    try:
        while not execution.terminal:
            if cancellations.is_cancelled(execution.id):
                raise CancellationError(execution.id)
            await stepper.advance(execution)
            if not execution.terminal:
                await records.progress(CHAIN_RECORD, execution.id, execution.progress())

        if execution.status == FAILED:
            return await records.fail(
                CHAIN_RECORD,
                execution.id,
                execution.error or "Chain step failed",
                execution.error_kind or ERROR_KIND_INTERNAL,
                patch=execution.progress(),
            )
        return await records.complete(CHAIN_RECORD, execution.id, patch=execution.progress())
    except AgentFlowError as e:
        logger.error(f"Chain execution {execution.id} failed: {e}")
        return await records.fail(
            CHAIN_RECORD, execution.id, str(e), error_kind_of(e), patch=json_safe(execution.progress()),
        )
    except Exception as e:
        # Also reached when the store rejects a progress or terminal write
        logger.exception(f"Chain execution {execution.id} crashed: {e}")
        return await records.fail(
            CHAIN_RECORD, execution.id, str(e), ERROR_KIND_INTERNAL, patch=json_safe(execution.progress()),
        )
    finally:
        cancellations.release(execution.id)


async def run_chain(
    chain_definition: Dict[str, Any],
    input: Any,
    variables: Optional[Dict[str, Any]],
    *,
    records: ExecutionRecordManager,
    invoker: Any,
    cancellations: CancellationRegistry = cancellation_registry,
) -> Dict[str, Any]:
    """Start a chain and drive it to a terminal record."""
    execution, stepper = await start_chain(
        chain_definition, input, variables,
        records=records, invoker=invoker, cancellations=cancellations,
    )
    return await drive_chain(execution, stepper, records=records, cancellations=cancellations)
