"""Repository layer for flow and chain run records.

Run records travel through the engine as camelCase dicts; this layer maps
them onto AppExecutionModel / ChainExecutionModel columns.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import AppExecutionModel, ChainExecutionModel

# record key -> column name
FLOW_COLUMNS = {
    "id": "id",
    "flowId": "app_id",
    "status": "status",
    "joinStrategy": "join_strategy",
    "inputData": "input_data",
    "context": "context",
    "results": "results",
    "error": "error",
    "errorKind": "error_kind",
    "startedAt": "started_at",
    "completedAt": "completed_at",
}

CHAIN_COLUMNS = {
    "id": "id",
    "chainId": "chain_id",
    "status": "status",
    "currentStepIndex": "current_step_index",
    "input": "input",
    "variables": "variables",
    "perStepResult": "per_step_result",
    "previousStepId": "previous_step_id",
    "output": "output",
    "error": "error",
    "errorKind": "error_kind",
    "startedAt": "started_at",
    "completedAt": "completed_at",
}

_TIMESTAMP_COLUMNS = ("started_at", "completed_at")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # SQLite hands back naive datetimes
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_columns(record: Dict[str, Any], columns: Dict[str, str]) -> Dict[str, Any]:
    values = {}
    for key, value in record.items():
        column = columns.get(key)
        if column is None:
            continue
        if column in _TIMESTAMP_COLUMNS:
            value = _parse_timestamp(value)
            if value is None and column == "started_at":
                continue
        values[column] = value
    return values


class ExecutionRepository:
    """Data access layer for run records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Flow runs ──

    async def create_flow_execution(self, record: Dict[str, Any]) -> AppExecutionModel:
        execution = AppExecutionModel(**_to_columns(record, FLOW_COLUMNS))
        self.session.add(execution)
        await self.session.flush()
        return execution

    async def get_flow_execution(self, execution_id: str) -> Optional[AppExecutionModel]:
        result = await self.session.execute(
            select(AppExecutionModel).where(AppExecutionModel.id == execution_id)
        )
        return result.scalar_one_or_none()

    async def update_flow_execution(
        self, execution_id: str, patch: Dict[str, Any]
    ) -> Optional[AppExecutionModel]:
        execution = await self.get_flow_execution(execution_id)
        if not execution:
            return None
        for column, value in _to_columns(patch, FLOW_COLUMNS).items():
            setattr(execution, column, value)
        await self.session.flush()
        return execution

    async def list_flow_executions(self, app_id: str, limit: int = 50) -> List[AppExecutionModel]:
        """Most recent runs of an app first."""
        result = await self.session.execute(
            select(AppExecutionModel)
            .where(AppExecutionModel.app_id == app_id)
            .order_by(AppExecutionModel.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── Chain runs ──

    async def create_chain_execution(self, record: Dict[str, Any]) -> ChainExecutionModel:
        execution = ChainExecutionModel(**_to_columns(record, CHAIN_COLUMNS))
        self.session.add(execution)
        await self.session.flush()
        return execution

    async def get_chain_execution(self, execution_id: str) -> Optional[ChainExecutionModel]:
        result = await self.session.execute(
            select(ChainExecutionModel).where(ChainExecutionModel.id == execution_id)
        )
        return result.scalar_one_or_none()

    async def update_chain_execution(
        self, execution_id: str, patch: Dict[str, Any]
    ) -> Optional[ChainExecutionModel]:
        execution = await self.get_chain_execution(execution_id)
        if not execution:
            return None
        for column, value in _to_columns(patch, CHAIN_COLUMNS).items():
            setattr(execution, column, value)
        await self.session.flush()
        return execution

    async def list_chain_executions(
        self,
        chain_id: str,
        status: Optional[str] = None,
        limit: Optional[int] = 50,
    ) -> List[ChainExecutionModel]:
        query = select(ChainExecutionModel).where(ChainExecutionModel.chain_id == chain_id)
        if status:
            query = query.where(ChainExecutionModel.status == status)
        query = query.order_by(ChainExecutionModel.started_at.desc())
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def chain_analytics(self, chain_id: str) -> Dict[str, Any]:
        """Execution count, success rate, mean duration and the top 5 errors."""
        executions = await self.list_chain_executions(chain_id, limit=None)
        finished = [e for e in executions if e.status in ("completed", "failed")]
        completed = [e for e in finished if e.status == "completed"]

        durations = []
        for e in finished:
            if e.started_at and e.completed_at:
                started = _parse_timestamp(e.started_at)
                ended = _parse_timestamp(e.completed_at)
                durations.append((ended - started).total_seconds() * 1000)

        errors = Counter(e.error for e in executions if e.status == "failed" and e.error)

        return {
            "executionCount": len(executions),
            "successRate": (len(completed) / len(finished) * 100) if finished else 0.0,
            "averageDurationMs": (sum(durations) / len(durations)) if durations else 0.0,
            "commonErrors": [
                {"error": error, "count": count} for error, count in errors.most_common(5)
            ],
        }
