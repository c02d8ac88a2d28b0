"""Definition and run-record storage.

The engine reads flow/chain definitions and writes execution records
through a ``DefinitionStore``. The service layer provides a SQL-backed
store (``app.store.SqlDefinitionStore``); ``InMemoryDefinitionStore``
serves tests and embedded use.

Record kinds: ``"flow"`` for Execution records, ``"chain"`` for
ChainExecution records. Records are plain dicts with camelCase keys.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Protocol

from .errors import NotFoundError

logger = logging.getLogger(__name__)

FLOW_RECORD = "flow"
CHAIN_RECORD = "chain"


class DefinitionStore(Protocol):
    """Plain CRUD over definitions and run records.

    Writes to a single record are single-writer; no transactions are
    required.
    """

    async def get_flow(self, flow_id: str) -> Dict[str, Any]:
        ...

    async def get_chain(self, chain_id: str) -> Dict[str, Any]:
        ...

    async def save_execution(self, kind: str, record: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def update_execution(self, kind: str, execution_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def get_execution(self, kind: str, execution_id: str) -> Dict[str, Any]:
        ...


class InMemoryDefinitionStore:
    """Dict-backed DefinitionStore.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(
        self,
        flows: Optional[Dict[str, Dict[str, Any]]] = None,
        chains: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.flows: Dict[str, Dict[str, Any]] = dict(flows or {})
        self.chains: Dict[str, Dict[str, Any]] = dict(chains or {})
        self.executions: Dict[str, Dict[str, Dict[str, Any]]] = {
            FLOW_RECORD: {},
            CHAIN_RECORD: {},
        }
        # (kind, execution_id, patch) in write order
        self.writes: List[tuple] = []

    def add_flow(self, flow_id: str, definition: Dict[str, Any]) -> None:
        self.flows[flow_id] = {"id": flow_id, **definition}

    def add_chain(self, chain_id: str, definition: Dict[str, Any]) -> None:
        self.chains[chain_id] = {"id": chain_id, **definition}

    async def get_flow(self, flow_id: str) -> Dict[str, Any]:
        if flow_id not in self.flows:
            raise NotFoundError("Agent app", flow_id)
        return copy.deepcopy(self.flows[flow_id])

    async def get_chain(self, chain_id: str) -> Dict[str, Any]:
        if chain_id not in self.chains:
            raise NotFoundError("Agent chain", chain_id)
        return copy.deepcopy(self.chains[chain_id])

    async def save_execution(self, kind: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(record)
        self.executions[kind][stored["id"]] = stored
        self.writes.append((kind, stored["id"], {"status": stored.get("status")}))
        return copy.deepcopy(stored)

    async def update_execution(self, kind: str, execution_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        records = self.executions[kind]
        if execution_id not in records:
            raise NotFoundError("Execution", execution_id)
        records[execution_id].update(copy.deepcopy(patch))
        self.writes.append((kind, execution_id, copy.deepcopy(patch)))
        return copy.deepcopy(records[execution_id])

    async def get_execution(self, kind: str, execution_id: str) -> Dict[str, Any]:
        records = self.executions[kind]
        if execution_id not in records:
            raise NotFoundError("Execution", execution_id)
        return copy.deepcopy(records[execution_id])
