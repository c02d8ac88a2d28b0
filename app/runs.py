"""Run Adapter

Manages the agent invoker lifecycle and starts flow and chain runs for
the routes. Flow runs execute inside the request; chain runs execute as
background asyncio tasks that clients poll.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from agentflow.agents import AgentInvoker, get_default_invoker
from agentflow.engine.cancellation import cancellation_registry
from agentflow.engine.executor import drive_chain, execute_flow, start_chain
from agentflow.engine.records import ExecutionRecordManager
from agentflow.logging_config import get_engine_logger

from app.store import SqlDefinitionStore

logger = get_engine_logger()

# Singletons (invoker initialized lazily or via lifespan)
_invoker: Optional[AgentInvoker] = None
_store = SqlDefinitionStore()
_records = ExecutionRecordManager(_store)

# Background chain runs by execution id
_chain_tasks: Dict[str, asyncio.Task] = {}


def get_invoker() -> AgentInvoker:
    global _invoker
    if _invoker is None:
        _invoker = get_default_invoker()
    return _invoker


def set_invoker(invoker: Optional[AgentInvoker]) -> None:
    """Replace the agent invoker (tests, embedding)."""
    global _invoker
    _invoker = invoker


async def close_runs() -> None:
    """Cancel background chain runs and close the invoker."""
    global _invoker
    for execution_id, task in list(_chain_tasks.items()):
        cancellation_registry.cancel(execution_id)
        task.cancel()
    if _chain_tasks:
        await asyncio.gather(*_chain_tasks.values(), return_exceptions=True)
    _chain_tasks.clear()

    close = getattr(_invoker, "close", None)
    if close is not None:
        await close()
    _invoker = None


async def run_flow(
    flow_definition: Dict[str, Any],
    input_data: Dict[str, Any],
    context: Dict[str, Any],
    join_strategy: Optional[str] = None,
) -> Dict[str, Any]:
    """Execute a flow to completion; returns its execution record."""
    return await execute_flow(
        flow_definition,
        input_data,
        context,
        records=_records,
        invoker=get_invoker(),
        join_strategy=join_strategy,
    )


def _chain_finished(execution_id: str, task: asyncio.Task) -> None:
    _chain_tasks.pop(execution_id, None)
    if not task.cancelled() and task.exception() is not None:
        # e.g. the chain was deleted while this run was still writing
        logger.error(f"Chain execution {execution_id} could not write its record: {task.exception()}")


async def launch_chain(
    chain_definition: Dict[str, Any],
    input: Any,
    variables: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """Open a chain execution record and drive it in the background.

    Returns the initial (running) record.
    """
    execution, stepper = await start_chain(
        chain_definition, input, variables,
        records=_records, invoker=get_invoker(),
    )
    record = execution.to_record()

    task = asyncio.create_task(drive_chain(execution, stepper, records=_records))
    _chain_tasks[execution.id] = task
    task.add_done_callback(lambda done: _chain_finished(execution.id, done))
    logger.info(f"Chain execution {execution.id} launched")
    return record


async def wait_for_chain(execution_id: str, timeout: Optional[float] = None) -> None:
    """Wait until a background chain run has written its terminal record."""
    task = _chain_tasks.get(execution_id)
    if task is not None:
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)


def cancel_execution(execution_id: str) -> bool:
    """Request cancellation at the next node/step boundary."""
    return cancellation_registry.cancel(execution_id)


def is_running(execution_id: str) -> bool:
    return cancellation_registry.get(execution_id) is not None
