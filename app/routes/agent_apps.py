"""Agent App API endpoints.

CRUD for flow definitions plus synchronous execution. Definitions are
validated before they are stored; structural errors come back as 400.
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query

from agentflow.engine import parse_flow, validate_flow

from app.database import get_session_ctx
from app.models.schemas import (
    AgentAppResponse,
    AppExecutionResponse,
    CreateAgentAppRequest,
    ExecuteAppRequest,
    ExecuteAppResponse,
    UpdateAgentAppRequest,
)
from app.repositories.agent_app import AgentAppRepository
from app.repositories.execution import ExecutionRepository
from app.runs import run_flow

logger = logging.getLogger("agentflow.app.routes.agent_apps")

router = APIRouter(prefix="/agent-apps", tags=["agent-apps"])


@router.post("", status_code=201, response_model=AgentAppResponse)
async def create_agent_app(payload: CreateAgentAppRequest):
    """Create an agent app after validating its graph."""
    flow = parse_flow({"nodes": payload.nodes, "edges": payload.edges}, name=payload.name)
    validate_flow(flow).raise_for_errors()

    async with get_session_ctx() as session:
        repo = AgentAppRepository(session)
        app = await repo.create(
            name=payload.name,
            nodes=payload.nodes,
            edges=payload.edges,
            description=payload.description,
            config=payload.config,
            is_public=payload.is_public,
        )
        logger.info(f"Agent app created: {app.id} ({app.name})")
        return _app_to_response(app)


@router.get("", response_model=List[AgentAppResponse])
async def list_agent_apps(public: bool = Query(False, description="Only public apps")):
    async with get_session_ctx() as session:
        apps = await AgentAppRepository(session).list(public_only=public)
        return [_app_to_response(a) for a in apps]


@router.get("/{app_id}", response_model=AgentAppResponse)
async def get_agent_app(app_id: str):
    async with get_session_ctx() as session:
        app = await AgentAppRepository(session).get(app_id)
        if not app:
            raise HTTPException(status_code=404, detail=f"Agent app '{app_id}' not found")
        return _app_to_response(app)


@router.put("/{app_id}", response_model=AgentAppResponse)
async def update_agent_app(app_id: str, payload: UpdateAgentAppRequest):
    """Update an app; a changed graph is revalidated before it is stored."""
    updates = payload.model_dump(exclude_unset=True)

    async with get_session_ctx() as session:
        repo = AgentAppRepository(session)
        app = await repo.get(app_id)
        if not app:
            raise HTTPException(status_code=404, detail=f"Agent app '{app_id}' not found")

        if "nodes" in updates or "edges" in updates:
            nodes = updates.get("nodes") if updates.get("nodes") is not None else app.nodes
            edges = updates.get("edges") if updates.get("edges") is not None else app.edges
            flow = parse_flow({"nodes": nodes, "edges": edges}, name=updates.get("name") or app.name)
            validate_flow(flow).raise_for_errors()

        updates = {k: v for k, v in updates.items() if v is not None}
        app = await repo.update(app_id, **updates)
        logger.info(f"Agent app updated: {app_id} ({', '.join(updates) or 'no changes'})")
        return _app_to_response(app)


@router.delete("/{app_id}", status_code=200)
async def delete_agent_app(app_id: str):
    """Soft delete: the app disappears from listings and can no longer run."""
    async with get_session_ctx() as session:
        deleted = await AgentAppRepository(session).soft_delete(app_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Agent app '{app_id}' not found")
    logger.info(f"Agent app deleted: {app_id}")
    return {"success": True}


@router.post("/{app_id}/execute", response_model=ExecuteAppResponse)
async def execute_agent_app(app_id: str, payload: ExecuteAppRequest):
    """Run the app's flow to completion.

    Runtime failures are reported in the body (``status: failed``), not
    as an HTTP error.
    """
    async with get_session_ctx() as session:
        app = await AgentAppRepository(session).get(app_id)
        if not app:
            raise HTTPException(status_code=404, detail=f"Agent app '{app_id}' not found")
        definition = app.to_definition()

    record = await run_flow(
        definition,
        payload.input,
        payload.context or {},
        join_strategy=payload.join_strategy,
    )
    logger.info(f"Agent app {app_id} executed: {record['id']} -> {record['status']}")
    return ExecuteAppResponse(
        execution_id=record["id"],
        status=record["status"],
        results=record.get("results"),
        error=record.get("error"),
        error_kind=record.get("errorKind"),
    )


@router.get("/{app_id}/executions", response_model=List[AppExecutionResponse])
async def list_agent_app_executions(app_id: str, limit: int = Query(50, ge=1, le=500)):
    async with get_session_ctx() as session:
        app = await AgentAppRepository(session).get(app_id, include_inactive=True)
        if not app:
            raise HTTPException(status_code=404, detail=f"Agent app '{app_id}' not found")
        executions = await ExecutionRepository(session).list_flow_executions(app_id, limit=limit)
        return [AppExecutionResponse.model_validate(e.to_record()) for e in executions]


# --- Helpers ---


def _app_to_response(app) -> AgentAppResponse:
    return AgentAppResponse(
        id=app.id,
        name=app.name,
        description=app.description,
        nodes=app.nodes or [],
        edges=app.edges or [],
        config=app.config or {},
        is_public=app.is_public,
        is_active=app.is_active,
        created_at=app.created_at.isoformat() if app.created_at else "",
        updated_at=app.updated_at.isoformat() if app.updated_at else "",
    )
