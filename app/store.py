"""SQL-backed DefinitionStore.

Each call opens its own short session through ``get_session_ctx`` so
background chain runs never share a session with a request.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from agentflow.errors import NotFoundError
from agentflow.store import CHAIN_RECORD, FLOW_RECORD

from app.database import get_session_ctx
from app.repositories.agent_app import AgentAppRepository
from app.repositories.agent_chain import AgentChainRepository
from app.repositories.execution import ExecutionRepository

logger = logging.getLogger(__name__)


class SqlDefinitionStore:
    """DefinitionStore over the agent_apps / agent_chains / *_executions tables."""

    async def get_flow(self, flow_id: str) -> Dict[str, Any]:
        async with get_session_ctx() as session:
            app = await AgentAppRepository(session).get(flow_id)
            if not app:
                raise NotFoundError("Agent app", flow_id)
            return app.to_definition()

    async def get_chain(self, chain_id: str) -> Dict[str, Any]:
        async with get_session_ctx() as session:
            chain = await AgentChainRepository(session).get(chain_id)
            if not chain or not chain.is_active:
                raise NotFoundError("Agent chain", chain_id)
            return chain.to_definition()

    async def save_execution(self, kind: str, record: Dict[str, Any]) -> Dict[str, Any]:
        async with get_session_ctx() as session:
            repo = ExecutionRepository(session)
            if kind == FLOW_RECORD:
                execution = await repo.create_flow_execution(record)
            elif kind == CHAIN_RECORD:
                execution = await repo.create_chain_execution(record)
            else:
                raise ValueError(f"Unknown record kind: {kind}")
            return execution.to_record()

    async def update_execution(self, kind: str, execution_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        async with get_session_ctx() as session:
            repo = ExecutionRepository(session)
            if kind == FLOW_RECORD:
                execution = await repo.update_flow_execution(execution_id, patch)
            elif kind == CHAIN_RECORD:
                execution = await repo.update_chain_execution(execution_id, patch)
            else:
                raise ValueError(f"Unknown record kind: {kind}")
            if execution is None:
                raise NotFoundError("Execution", execution_id)
            return execution.to_record()

    async def get_execution(self, kind: str, execution_id: str) -> Dict[str, Any]:
        async with get_session_ctx() as session:
            repo = ExecutionRepository(session)
            if kind == FLOW_RECORD:
                execution = await repo.get_flow_execution(execution_id)
            else:
                execution = await repo.get_chain_execution(execution_id)
            if execution is None:
                raise NotFoundError("Execution", execution_id)
            return execution.to_record()
