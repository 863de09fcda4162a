"""In-process change notification: every write publishes the full session snapshot."""
from __future__ import annotations

import itertools
import logging
import threading
from collections import defaultdict
from typing import Callable

from quadrant.types import Snapshot

log = logging.getLogger(__name__)

SnapshotHandler = Callable[[Snapshot], None]


class SnapshotHub:
    """Registry of per-session snapshot handlers.

    Handlers always receive the complete current working set, never a delta.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._handlers: dict[str, dict[int, SnapshotHandler]] = defaultdict(dict)

    def subscribe(self, session_id: str, handler: SnapshotHandler) -> Callable[[], None]:
        """Register *handler*; returns a callable that cancels the subscription."""
        with self._lock:
            token = next(self._ids)
            self._handlers[session_id][token] = handler

        def cancel() -> None:
            with self._lock:
                handlers = self._handlers.get(session_id)
                if handlers is None:
                    return
                handlers.pop(token, None)
                if not handlers:
                    del self._handlers[session_id]

        return cancel

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._handlers.get(session_id, {}))

    def publish(self, session_id: str, snapshot: Snapshot) -> None:
        with self._lock:
            handlers = list(self._handlers.get(session_id, {}).values())
        for handler in handlers:
            try:
                handler(snapshot)
            except Exception as exc:
                log.warning("Snapshot handler failed for session %s: %s", session_id, exc)


hub = SnapshotHub()
