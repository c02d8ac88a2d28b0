"""Per-run cancellation flags.

A run registers an ``asyncio.Event`` under its execution id; cancelling
sets the event, and the scheduler or chain driver checks it at the next
node or step boundary. An agent call already in flight is not
interrupted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class CancellationRegistry:
    def __init__(self):
        self._events: Dict[str, asyncio.Event] = {}

    def register(self, execution_id: str) -> asyncio.Event:
        event = self._events.get(execution_id)
        if event is None:
            event = asyncio.Event()
            self._events[execution_id] = event
        return event

    def get(self, execution_id: str) -> Optional[asyncio.Event]:
        return self._events.get(execution_id)

    def cancel(self, execution_id: str) -> bool:
        """Request cancellation. Returns False if the run is not registered."""
        event = self._events.get(execution_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for execution {execution_id}")
        return True

    def is_cancelled(self, execution_id: str) -> bool:
        event = self._events.get(execution_id)
        return event is not None and event.is_set()

    def release(self, execution_id: str) -> None:
        self._events.pop(execution_id, None)

    def active(self) -> List[str]:
        return list(self._events.keys())


# Process-wide registry used by the service layer
cancellation_registry = CancellationRegistry()
