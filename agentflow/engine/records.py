"""Execution Record Manager

Owns the writes to persisted run records. Per run: ``start`` exactly
once, then exactly one of ``complete`` / ``fail``. Chain runs may also
report non-terminal ``progress`` in between so pollers can follow the
current step.

A terminal write closes the record only once the store has accepted it.
If the store rejects it, the record stays open and the caller can still
write ``fail`` with ``json_safe`` data.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Tuple

from ..errors import AgentFlowError, ERROR_KIND_INTERNAL
from ..store import CHAIN_RECORD, FLOW_RECORD, DefinitionStore

logger = logging.getLogger(__name__)

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


class RecordLifecycleError(AgentFlowError):
    """A record write happened out of order (e.g. completed twice)."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_execution_id() -> str:
    return str(uuid.uuid4())


def _stringify_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {k if isinstance(k, str) else str(k): _stringify_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stringify_keys(v) for v in value]
    return value


def json_safe(value: Any) -> Any:
    """Copy of ``value`` any JSON column accepts.

    Non-string keys become strings and unknown objects their ``str()``.
    """
    return json.loads(json.dumps(_stringify_keys(value), default=str))


class ExecutionRecordManager:
    """Writes Execution and ChainExecution records through a DefinitionStore.

    Writes for one execution id are expected to come from a single run;
    the manager rejects a second terminal write rather than serializing.
    """

    def __init__(self, store: DefinitionStore):
        self.store = store
        self._open: Set[Tuple[str, str]] = set()

    def is_open(self, kind: str, execution_id: str) -> bool:
        return (kind, execution_id) in self._open

    async def start(self, kind: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a new record with status running."""
        key = (kind, record["id"])
        if key in self._open:
            raise RecordLifecycleError(f"Execution '{record['id']}' already started")

        record = {**record, "status": RUNNING, "completedAt": None}
        record.setdefault("startedAt", _now())
        saved = await self.store.save_execution(kind, record)
        self._open.add(key)
        logger.info(f"Execution {record['id']} ({kind}) started")
        return saved

    async def start_flow(
        self,
        flow_id: str,
        input_data: Dict[str, Any],
        context: Dict[str, Any],
        execution_id: Optional[str] = None,
        join_strategy: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.start(FLOW_RECORD, {
            "id": execution_id or new_execution_id(),
            "flowId": flow_id,
            "inputData": input_data,
            "context": context,
            "joinStrategy": join_strategy,
            "results": {},
            "error": None,
            "errorKind": None,
        })

    async def start_chain(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self.start(CHAIN_RECORD, record)

    async def progress(self, kind: str, execution_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Non-terminal update of a running record."""
        self._require_open(kind, execution_id)
        patch = {k: v for k, v in patch.items() if k not in ("status", "completedAt")}
        return await self.store.update_execution(kind, execution_id, patch)

    async def complete(
        self,
        kind: str,
        execution_id: str,
        results: Optional[Dict[str, Any]] = None,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Mark a record completed. ``results`` is the flow node-result map."""
        self._require_open(kind, execution_id)
        update = dict(patch or {})
        if results is not None:
            update["results"] = results
        update.update({"status": COMPLETED, "completedAt": _now()})
        record = await self.store.update_execution(kind, execution_id, update)
        self._close(kind, execution_id)
        logger.info(f"Execution {execution_id} ({kind}) completed")
        return record

    async def fail(
        self,
        kind: str,
        execution_id: str,
        error: str,
        error_kind: str = ERROR_KIND_INTERNAL,
        results: Optional[Dict[str, Any]] = None,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Mark a record failed, keeping any partial results."""
        self._require_open(kind, execution_id)
        update = dict(patch or {})
        if results is not None:
            update["results"] = results
        update.update({
            "status": FAILED,
            "error": error,
            "errorKind": error_kind,
            "completedAt": _now(),
        })
        record = await self.store.update_execution(kind, execution_id, update)
        self._close(kind, execution_id)
        logger.error(f"Execution {execution_id} ({kind}) failed [{error_kind}]: {error}")
        return record

    def _require_open(self, kind: str, execution_id: str) -> None:
        if (kind, execution_id) not in self._open:
            raise RecordLifecycleError(f"Execution '{execution_id}' is not running")

    def _close(self, kind: str, execution_id: str) -> None:
        self._require_open(kind, execution_id)
        self._open.discard((kind, execution_id))
