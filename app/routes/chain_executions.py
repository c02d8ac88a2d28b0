"""Chain execution polling and cancellation."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException

from app.database import get_session_ctx
from app.models.schemas import ChainExecutionResponse
from app.repositories.agent_chain import AgentChainRepository
from app.repositories.execution import ExecutionRepository
from app.runs import cancel_execution

logger = logging.getLogger("agentflow.app.routes.chain_executions")

router = APIRouter(prefix="/chain-executions", tags=["chain-executions"])


@router.get("/{execution_id}", response_model=ChainExecutionResponse)
async def get_chain_execution(execution_id: str):
    """Current status, step and per-step results of a chain run."""
    async with get_session_ctx() as session:
        execution = await ExecutionRepository(session).get_chain_execution(execution_id)
        if not execution:
            raise HTTPException(status_code=404, detail=f"Chain execution '{execution_id}' not found")
        chain = await AgentChainRepository(session).get(execution.chain_id)
        steps = chain.steps if chain else []
        return chain_execution_response(execution.to_record(), steps)


@router.post("/{execution_id}/cancel")
async def cancel_chain_execution(execution_id: str):
    """Cancel a running chain run; takes effect before its next step."""
    async with get_session_ctx() as session:
        execution = await ExecutionRepository(session).get_chain_execution(execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail=f"Chain execution '{execution_id}' not found")
    if execution.status != "running" or not cancel_execution(execution_id):
        raise HTTPException(
            status_code=409,
            detail=f"Chain execution '{execution_id}' is not running (status: {execution.status})",
        )
    logger.info(f"Chain execution cancel requested: {execution_id}")
    return {"success": True, "executionId": execution_id}


def chain_execution_response(
    record: Dict[str, Any], steps: Optional[List[Dict[str, Any]]]
) -> ChainExecutionResponse:
    """Build the polling response; ``currentStep`` is the id of the step at
    ``currentStepIndex`` (None once the run has moved past the last step)."""
    index = record.get("currentStepIndex") or 0
    steps = steps or []
    current = None
    if record.get("status") == "running" and 0 <= index < len(steps):
        current = steps[index].get("id")
    return ChainExecutionResponse.model_validate({**record, "currentStep": current})
