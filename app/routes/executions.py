"""Flow run records and cancellation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from app.database import get_session_ctx
from app.models.schemas import AppExecutionResponse
from app.repositories.execution import ExecutionRepository
from app.runs import cancel_execution

logger = logging.getLogger("agentflow.app.routes.executions")

router = APIRouter(prefix="/executions", tags=["executions"])


@router.get("/{execution_id}", response_model=AppExecutionResponse)
async def get_execution(execution_id: str):
    async with get_session_ctx() as session:
        execution = await ExecutionRepository(session).get_flow_execution(execution_id)
        if not execution:
            raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
        return AppExecutionResponse.model_validate(execution.to_record())


@router.post("/{execution_id}/cancel")
async def cancel_flow_execution(execution_id: str):
    """Request cancellation; the run stops at its next node boundary."""
    async with get_session_ctx() as session:
        execution = await ExecutionRepository(session).get_flow_execution(execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
    if execution.status != "running" or not cancel_execution(execution_id):
        raise HTTPException(
            status_code=409,
            detail=f"Execution '{execution_id}' is not running (status: {execution.status})",
        )
    logger.info(f"Flow execution cancel requested: {execution_id}")
    return {"success": True, "executionId": execution_id}
