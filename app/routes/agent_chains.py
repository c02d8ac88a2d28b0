"""Agent Chain API endpoints.

CRUD for chain definitions, asynchronous execution (clients poll
``GET /chain-executions/{id}``) and per-chain run analytics.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from agentflow.engine import validate_chain
from agentflow.engine.chain import RUNNING
from agentflow.settings import CHAIN_DELETE_WAIT_TIMEOUT

from app.database import get_session_ctx
from app.models.schemas import (
    ChainAnalyticsResponse,
    ChainExecutionResponse,
    ChainResponse,
    CreateChainRequest,
    ExecuteChainRequest,
    ExecuteChainResponse,
    UpdateChainRequest,
)
from app.repositories.agent_chain import AgentChainRepository
from app.repositories.execution import ExecutionRepository
from app.routes.chain_executions import chain_execution_response
from app.runs import cancel_execution, launch_chain, wait_for_chain

logger = logging.getLogger("agentflow.app.routes.agent_chains")

router = APIRouter(prefix="/agent-chains", tags=["agent-chains"])


@router.post("", status_code=201, response_model=ChainResponse)
async def create_chain(payload: CreateChainRequest):
    """Create a chain. At least one step, each with id, name and agent."""
    validate_chain({"name": payload.name, "steps": payload.steps}).raise_for_errors()

    async with get_session_ctx() as session:
        chain = await AgentChainRepository(session).create(
            name=payload.name,
            steps=payload.steps,
            description=payload.description,
        )
        logger.info(f"Agent chain created: {chain.id} ({chain.name}, {len(chain.steps)} steps)")
        return _chain_to_response(chain)


@router.get("", response_model=List[ChainResponse])
async def list_chains(include_inactive: bool = Query(False, alias="includeInactive")):
    async with get_session_ctx() as session:
        chains = await AgentChainRepository(session).list(include_inactive=include_inactive)
        return [_chain_to_response(c) for c in chains]


@router.get("/{chain_id}", response_model=ChainResponse)
async def get_chain(chain_id: str):
    async with get_session_ctx() as session:
        chain = await AgentChainRepository(session).get(chain_id)
        if not chain:
            raise HTTPException(status_code=404, detail=f"Agent chain '{chain_id}' not found")
        return _chain_to_response(chain)


@router.put("/{chain_id}", response_model=ChainResponse)
async def update_chain(chain_id: str, payload: UpdateChainRequest):
    updates = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}

    async with get_session_ctx() as session:
        repo = AgentChainRepository(session)
        chain = await repo.get(chain_id)
        if not chain:
            raise HTTPException(status_code=404, detail=f"Agent chain '{chain_id}' not found")

        if "steps" in updates:
            validate_chain({"name": updates.get("name", chain.name), "steps": updates["steps"]}).raise_for_errors()

        chain = await repo.update(chain_id, **updates)
        logger.info(f"Agent chain updated: {chain_id}")
        return _chain_to_response(chain)


@router.delete("/{chain_id}", status_code=200)
async def delete_chain(chain_id: str):
    """Delete a chain and its run records, cancelling running runs first."""
    async with get_session_ctx() as session:
        chain = await AgentChainRepository(session).get(chain_id)
        if not chain:
            raise HTTPException(status_code=404, detail=f"Agent chain '{chain_id}' not found")
        running = await ExecutionRepository(session).list_chain_executions(
            chain_id, status=RUNNING, limit=None,
        )
        running_ids = [e.id for e in running]

    for execution_id in running_ids:
        if cancel_execution(execution_id):
            # let the run write its cancelled record before the rows go away
            try:
                await wait_for_chain(execution_id, timeout=CHAIN_DELETE_WAIT_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Chain execution {execution_id} still running after "
                    f"{CHAIN_DELETE_WAIT_TIMEOUT}s, deleting anyway"
                )

    async with get_session_ctx() as session:
        await AgentChainRepository(session).delete(chain_id)
    logger.info(f"Agent chain deleted: {chain_id} ({len(running_ids)} running executions cancelled)")
    return {"success": True}


@router.post("/{chain_id}/execute", status_code=202, response_model=ExecuteChainResponse)
async def execute_chain(chain_id: str, payload: ExecuteChainRequest):
    """Start a chain run in the background and return its execution id."""
    async with get_session_ctx() as session:
        chain = await AgentChainRepository(session).get(chain_id)
        if not chain or not chain.is_active:
            raise HTTPException(status_code=404, detail=f"Agent chain '{chain_id}' not found")
        definition = chain.to_definition()

    record = await launch_chain(definition, payload.input, payload.variables)
    return ExecuteChainResponse(execution_id=record["id"], status=record["status"])


@router.get("/{chain_id}/executions", response_model=List[ChainExecutionResponse])
async def list_chain_executions(
    chain_id: str,
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    async with get_session_ctx() as session:
        chain = await AgentChainRepository(session).get(chain_id)
        if not chain:
            raise HTTPException(status_code=404, detail=f"Agent chain '{chain_id}' not found")
        executions = await ExecutionRepository(session).list_chain_executions(
            chain_id, status=status, limit=limit,
        )
        return [chain_execution_response(e.to_record(), chain.steps) for e in executions]


@router.get("/{chain_id}/analytics", response_model=ChainAnalyticsResponse)
async def chain_analytics(chain_id: str):
    async with get_session_ctx() as session:
        chain = await AgentChainRepository(session).get(chain_id)
        if not chain:
            raise HTTPException(status_code=404, detail=f"Agent chain '{chain_id}' not found")
        stats = await ExecutionRepository(session).chain_analytics(chain_id)
        return ChainAnalyticsResponse.model_validate(stats)


# --- Helpers ---


def _chain_to_response(chain) -> ChainResponse:
    return ChainResponse(
        id=chain.id,
        name=chain.name,
        description=chain.description,
        steps=chain.steps or [],
        is_active=chain.is_active,
        created_at=chain.created_at.isoformat() if chain.created_at else "",
        updated_at=chain.updated_at.isoformat() if chain.updated_at else "",
    )
