"""Tests for ExecutionRepository and the SQL-backed definition store.

Covers record <-> column mapping, timestamp handling, listing, chain
analytics, and SqlDefinitionStore driven by the engine's record manager.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from agentflow.engine.executor import execute_flow, run_chain
from agentflow.engine.records import ExecutionRecordManager
from agentflow.errors import NotFoundError
from agentflow.store import CHAIN_RECORD, FLOW_RECORD
from app.database import get_session_ctx
from app.repositories.agent_app import AgentAppRepository
from app.repositories.agent_chain import AgentChainRepository
from app.repositories.execution import ExecutionRepository
from app.store import SqlDefinitionStore

from tests.fakes import FakeInvoker


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

NODES = [{"id": "in", "type": "input"}, {"id": "out", "type": "output"}]
EDGES = [{"id": "e1", "source": "in", "target": "out"}]
STEPS = [{"id": "s1", "name": "Step", "agentRef": "worker"}]

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


async def _create_app(session: AsyncSession):
    return await AgentAppRepository(session).create(name="App", nodes=NODES, edges=EDGES)


async def _create_chain(session: AsyncSession):
    return await AgentChainRepository(session).create(name="Chain", steps=STEPS)


def _chain_run(chain_id: str, run_id: str, status: str, seconds: float = 1.0, error=None) -> dict:
    return {
        "id": run_id,
        "chainId": chain_id,
        "status": status,
        "error": error,
        "startedAt": T0.isoformat(),
        "completedAt": (T0 + timedelta(seconds=seconds)).isoformat() if status != "running" else None,
    }


# ---------------------------------------------------------------------------
# Flow runs
# ---------------------------------------------------------------------------


class TestFlowExecutions:

    @pytest.mark.asyncio
    async def test_create_and_read_back(self, test_session: AsyncSession):
        app = await _create_app(test_session)
        repo = ExecutionRepository(test_session)
        await repo.create_flow_execution({
            "id": "run-1",
            "flowId": app.id,
            "status": "running",
            "joinStrategy": "wait-all",
            "inputData": {"topic": "x"},
            "context": {},
            "startedAt": "2026-01-01T12:00:00Z",
            "completedAt": None,
            "unknownKey": "ignored",
        })

        record = (await repo.get_flow_execution("run-1")).to_record()
        assert record["flowId"] == app.id
        assert record["joinStrategy"] == "wait-all"
        assert record["inputData"] == {"topic": "x"}
        assert record["results"] == {}
        assert record["startedAt"] == "2026-01-01T12:00:00+00:00"
        assert record["completedAt"] is None

    @pytest.mark.asyncio
    async def test_update(self, test_session: AsyncSession):
        app = await _create_app(test_session)
        repo = ExecutionRepository(test_session)
        await repo.create_flow_execution({"id": "run-1", "flowId": app.id, "status": "running"})

        updated = await repo.update_flow_execution("run-1", {
            "status": "failed",
            "error": "boom",
            "errorKind": "agent_invocation",
            "results": {"in": {}},
            "completedAt": T0.isoformat(),
        })
        assert updated.status == "failed"
        assert updated.error_kind == "agent_invocation"
        assert updated.to_record()["completedAt"] == T0.isoformat()
        assert await repo.update_flow_execution("missing", {"status": "failed"}) is None

    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, test_session: AsyncSession):
        app = await _create_app(test_session)
        repo = ExecutionRepository(test_session)
        for i in range(3):
            await repo.create_flow_execution({
                "id": f"run-{i}",
                "flowId": app.id,
                "status": "completed",
                "startedAt": (T0 + timedelta(minutes=i)).isoformat(),
            })

        runs = await repo.list_flow_executions(app.id)
        assert [r.id for r in runs] == ["run-2", "run-1", "run-0"]
        assert len(await repo.list_flow_executions(app.id, limit=2)) == 2


# ---------------------------------------------------------------------------
# Chain runs
# ---------------------------------------------------------------------------


class TestChainExecutions:

    @pytest.mark.asyncio
    async def test_progress_columns(self, test_session: AsyncSession):
        chain = await _create_chain(test_session)
        repo = ExecutionRepository(test_session)
        await repo.create_chain_execution(_chain_run(chain.id, "run-1", "running"))

        await repo.update_chain_execution("run-1", {
            "currentStepIndex": 1,
            "perStepResult": {"s1": {"status": "completed"}},
            "previousStepId": "s1",
            "variables": {"notes": "n"},
            "output": "text",
        })
        record = (await repo.get_chain_execution("run-1")).to_record()
        assert record["currentStepIndex"] == 1
        assert record["previousStepId"] == "s1"
        assert record["variables"] == {"notes": "n"}
        assert record["output"] == "text"
        assert record["status"] == "running"

    @pytest.mark.asyncio
    async def test_list_by_status(self, test_session: AsyncSession):
        chain = await _create_chain(test_session)
        repo = ExecutionRepository(test_session)
        await repo.create_chain_execution(_chain_run(chain.id, "run-1", "running"))
        await repo.create_chain_execution(_chain_run(chain.id, "run-2", "completed"))

        assert [r.id for r in await repo.list_chain_executions(chain.id, status="running")] == ["run-1"]
        assert len(await repo.list_chain_executions(chain.id, limit=None)) == 2


class TestChainAnalytics:

    @pytest.mark.asyncio
    async def test_counts_rate_and_errors(self, test_session: AsyncSession):
        chain = await _create_chain(test_session)
        repo = ExecutionRepository(test_session)
        await repo.create_chain_execution(_chain_run(chain.id, "r1", "completed", seconds=1))
        await repo.create_chain_execution(_chain_run(chain.id, "r2", "completed", seconds=3))
        await repo.create_chain_execution(_chain_run(chain.id, "r3", "failed", seconds=2, error="timeout"))
        await repo.create_chain_execution(_chain_run(chain.id, "r4", "failed", seconds=2, error="timeout"))
        await repo.create_chain_execution(_chain_run(chain.id, "r5", "running"))

        stats = await repo.chain_analytics(chain.id)
        assert stats["executionCount"] == 5
        assert stats["successRate"] == 50.0
        assert stats["averageDurationMs"] == 2000.0
        assert stats["commonErrors"] == [{"error": "timeout", "count": 2}]

    @pytest.mark.asyncio
    async def test_no_runs(self, test_session: AsyncSession):
        chain = await _create_chain(test_session)
        stats = await ExecutionRepository(test_session).chain_analytics(chain.id)
        assert stats == {
            "executionCount": 0,
            "successRate": 0.0,
            "averageDurationMs": 0.0,
            "commonErrors": [],
        }


# ---------------------------------------------------------------------------
# SqlDefinitionStore
# ---------------------------------------------------------------------------


class TestSqlDefinitionStore:

    @pytest.mark.asyncio
    async def test_definitions(self, sql_database):
        async with get_session_ctx() as session:
            app = await _create_app(session)
            chain = await _create_chain(session)
            inactive = await _create_chain(session)
            inactive.is_active = False

        store = SqlDefinitionStore()
        assert (await store.get_flow(app.id))["nodes"] == NODES
        assert (await store.get_chain(chain.id))["steps"] == STEPS
        with pytest.raises(NotFoundError):
            await store.get_flow("missing")
        with pytest.raises(NotFoundError):
            await store.get_chain(inactive.id)

    @pytest.mark.asyncio
    async def test_missing_record(self, sql_database):
        store = SqlDefinitionStore()
        with pytest.raises(NotFoundError):
            await store.get_execution(FLOW_RECORD, "missing")
        with pytest.raises(NotFoundError):
            await store.update_execution(CHAIN_RECORD, "missing", {"status": "failed"})
        with pytest.raises(ValueError):
            await store.save_execution("batch", {"id": "x"})

    @pytest.mark.asyncio
    async def test_flow_run_persisted(self, sql_database):
        async with get_session_ctx() as session:
            app = await _create_app(session)
            definition = app.to_definition()

        store = SqlDefinitionStore()
        record = await execute_flow(
            definition, {"topic": "x"}, {},
            records=ExecutionRecordManager(store), invoker=FakeInvoker(),
        )

        stored = await store.get_execution(FLOW_RECORD, record["id"])
        assert stored["status"] == "completed"
        assert stored["results"]["out"] == {"topic": "x"}
        assert stored["completedAt"]

    @pytest.mark.asyncio
    async def test_chain_run_persisted(self, sql_database):
        async with get_session_ctx() as session:
            chain = await _create_chain(session)
            definition = chain.to_definition()

        store = SqlDefinitionStore()
        invoker = FakeInvoker({"worker": {"done": True}})
        record = await run_chain(
            definition, "go", {}, records=ExecutionRecordManager(store), invoker=invoker,
        )

        stored = await store.get_execution(CHAIN_RECORD, record["id"])
        assert stored["status"] == "completed"
        assert stored["input"] == "go"
        assert stored["currentStepIndex"] == 1
        assert stored["perStepResult"]["s1"]["status"] == "completed"
        assert stored["variables"] == {"done": True}

    @pytest.mark.asyncio
    async def test_unstorable_results_persist_as_failed(self, sql_database):
        async with get_session_ctx() as session:
            app = await AgentAppRepository(session).create(
                name="Tuple keys",
                nodes=[
                    {"id": "in", "type": "input"},
                    {"id": "t", "type": "transform", "data": {"transform": "{(1, 2): 1}"}},
                    {"id": "out", "type": "output"},
                ],
                edges=[{"source": "in", "target": "t"}, {"source": "t", "target": "out"}],
            )
            definition = app.to_definition()

        store = SqlDefinitionStore()
        record = await execute_flow(
            definition, {}, {}, records=ExecutionRecordManager(store), invoker=FakeInvoker(),
        )

        stored = await store.get_execution(FLOW_RECORD, record["id"])
        assert stored["status"] == "failed"
        assert stored["errorKind"] == "internal"
        assert stored["results"]["t"] == {"(1, 2)": 1}
