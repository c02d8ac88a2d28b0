"""Tests for the Execution Record Manager and the in-memory store."""

import pytest

from agentflow.engine.records import ExecutionRecordManager, RecordLifecycleError, json_safe
from agentflow.errors import NotFoundError
from agentflow.store import CHAIN_RECORD, FLOW_RECORD, InMemoryDefinitionStore

from tests.fakes import JsonOnlyStore


class TestRecordLifecycle:
    """start once, then exactly one of complete / fail."""

    @pytest.mark.asyncio
    async def test_start_flow(self, records, memory_store):
        record = await records.start_flow("app-1", {"topic": "x"}, {"user": "u"}, execution_id="e1")

        assert record["status"] == "running"
        assert record["flowId"] == "app-1"
        assert record["inputData"] == {"topic": "x"}
        assert record["context"] == {"user": "u"}
        assert record["results"] == {}
        assert record["startedAt"]
        assert record["completedAt"] is None
        assert records.is_open(FLOW_RECORD, "e1")

    @pytest.mark.asyncio
    async def test_complete(self, records, memory_store):
        await records.start_flow("app-1", {}, {}, execution_id="e1")
        record = await records.complete(FLOW_RECORD, "e1", results={"in": {}})

        assert record["status"] == "completed"
        assert record["results"] == {"in": {}}
        assert record["completedAt"]
        assert not records.is_open(FLOW_RECORD, "e1")

    @pytest.mark.asyncio
    async def test_fail_keeps_partial_results(self, records):
        await records.start_flow("app-1", {}, {}, execution_id="e1")
        record = await records.fail(FLOW_RECORD, "e1", "boom", "agent_invocation", results={"in": {"a": 1}})

        assert record["status"] == "failed"
        assert record["error"] == "boom"
        assert record["errorKind"] == "agent_invocation"
        assert record["results"] == {"in": {"a": 1}}

    @pytest.mark.asyncio
    async def test_second_terminal_write_rejected(self, records):
        await records.start_flow("app-1", {}, {}, execution_id="e1")
        await records.complete(FLOW_RECORD, "e1", results={})
        with pytest.raises(RecordLifecycleError):
            await records.fail(FLOW_RECORD, "e1", "late")
        with pytest.raises(RecordLifecycleError):
            await records.complete(FLOW_RECORD, "e1")

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, records):
        await records.start_flow("app-1", {}, {}, execution_id="e1")
        with pytest.raises(RecordLifecycleError):
            await records.start_flow("app-1", {}, {}, execution_id="e1")

    @pytest.mark.asyncio
    async def test_terminal_write_without_start_rejected(self, records):
        with pytest.raises(RecordLifecycleError):
            await records.complete(FLOW_RECORD, "never-started")

    @pytest.mark.asyncio
    async def test_write_order(self, records, memory_store):
        await records.start_chain({"id": "c1", "chainId": "chain-1", "currentStepIndex": 0})
        await records.progress(CHAIN_RECORD, "c1", {"currentStepIndex": 1, "status": "completed"})
        await records.complete(CHAIN_RECORD, "c1", patch={"currentStepIndex": 2})

        statuses = [patch.get("status") for _, _, patch in memory_store.writes]
        assert statuses == ["running", None, "completed"]
        stored = await memory_store.get_execution(CHAIN_RECORD, "c1")
        assert stored["currentStepIndex"] == 2
        assert stored["status"] == "completed"

    @pytest.mark.asyncio
    async def test_progress_cannot_finish_a_run(self, records, memory_store):
        await records.start_chain({"id": "c1", "chainId": "chain-1"})
        record = await records.progress(CHAIN_RECORD, "c1", {"status": "completed", "completedAt": "now"})
        assert record["status"] == "running"
        assert record["completedAt"] is None
        assert records.is_open(CHAIN_RECORD, "c1")

    @pytest.mark.asyncio
    async def test_rejected_terminal_write_leaves_record_open(self):
        """A store error on complete still allows the fallback fail."""
        store = JsonOnlyStore()
        records = ExecutionRecordManager(store)
        await records.start_flow("app-1", {}, {}, execution_id="e1")

        with pytest.raises(TypeError):
            await records.complete(FLOW_RECORD, "e1", results={"t": {(1, 2): 1}})
        assert records.is_open(FLOW_RECORD, "e1")

        record = await records.fail(FLOW_RECORD, "e1", "bad results", results=json_safe({"t": {(1, 2): 1}}))
        assert record["status"] == "failed"
        assert record["results"] == {"t": {"(1, 2)": 1}}
        assert not records.is_open(FLOW_RECORD, "e1")


class TestJsonSafe:

    def test_keys_and_values(self):
        value = {(1, 2): {1: ("a", "b")}, "when": object, "n": None}
        safe = json_safe(value)
        assert safe["(1, 2)"] == {"1": ["a", "b"]}
        assert safe["when"] == str(object)
        assert safe["n"] is None

    def test_plain_json_unchanged(self):
        value = {"a": [1, 2.5, "x", True, None], "b": {"c": {}}}
        assert json_safe(value) == value


class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_definitions(self):
        store = InMemoryDefinitionStore()
        store.add_flow("app-1", {"nodes": [], "edges": []})
        store.add_chain("chain-1", {"steps": []})

        assert (await store.get_flow("app-1"))["id"] == "app-1"
        assert (await store.get_chain("chain-1"))["steps"] == []
        with pytest.raises(NotFoundError):
            await store.get_flow("missing")
        with pytest.raises(NotFoundError):
            await store.get_chain("missing")

    @pytest.mark.asyncio
    async def test_records_are_copied(self):
        store = InMemoryDefinitionStore()
        record = {"id": "e1", "results": {"a": {"n": 1}}}
        await store.save_execution(FLOW_RECORD, record)
        record["results"]["a"]["n"] = 99

        fetched = await store.get_execution(FLOW_RECORD, "e1")
        assert fetched["results"]["a"]["n"] == 1
        fetched["results"]["a"]["n"] = 42
        assert (await store.get_execution(FLOW_RECORD, "e1"))["results"]["a"]["n"] == 1

    @pytest.mark.asyncio
    async def test_update_missing(self):
        store = InMemoryDefinitionStore()
        with pytest.raises(NotFoundError):
            await store.update_execution(FLOW_RECORD, "missing", {})


class TestManagerWithFreshStore:

    @pytest.mark.asyncio
    async def test_independent_managers(self):
        store = InMemoryDefinitionStore()
        first = ExecutionRecordManager(store)
        second = ExecutionRecordManager(store)
        await first.start_flow("app-1", {}, {}, execution_id="e1")
        assert first.is_open(FLOW_RECORD, "e1")
        assert not second.is_open(FLOW_RECORD, "e1")
