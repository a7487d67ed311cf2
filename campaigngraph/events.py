"""Event system — append-only log with streaming support."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable

from campaigngraph.models import GraphEvent

logger = logging.getLogger(__name__)

NODE_STARTED = "node-started"
NODE_COMPLETED = "node-completed"
NODE_FAILED = "node-failed"
NODE_RETRYING = "node-retrying"
NODE_BLOCKED = "node-blocked"
NODE_SKIPPED = "node-skipped"
NODE_RETRY_REQUESTED = "node-retry-requested"
GRAPH_STARTED = "graph-started"
GRAPH_STOPPED = "graph-stopped"
GRAPH_TIMEOUT = "graph-timeout"
GRAPH_COMPLETED = "graph-completed"
GRAPH_ERROR = "graph-error"

Listener = Callable[[GraphEvent], None]


class EventBus:
    """Append-only event log with subscription support.

    ``emit`` never raises: a failing log file or listener is logged and
    skipped, so emitting can't change the outcome of the caller.
    """

    def __init__(self, log_file: Path | None = None):
        self._log_file = log_file
        self._subscribers: list[asyncio.Queue] = []
        self._listeners: list[Listener] = []
        self._history: list[GraphEvent] = []

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, event: GraphEvent):
        """Emit an event — log and notify subscribers."""
        self._history.append(event)
        self._persist(event)
        self._notify(event)
        logger.debug(f"Event: {event.type} [{event.graph_id}/{event.node_id}] {event.data}")

    def emit_simple(self, event_type: str, graph_id: str, node_id: str | None = None, /, **data):
        """Convenience: emit with keyword args."""
        self.emit(GraphEvent(type=event_type, graph_id=graph_id, node_id=node_id, data=data))

    def recent(self, limit: int = 50, offset: int = 0) -> list[GraphEvent]:
        """Get recent events (paginated)."""
        start = max(0, len(self._history) - offset - limit)
        end = len(self._history) - offset
        return self._history[start:end]

    def of_type(self, type: str) -> list[GraphEvent]:
        return [e for e in self._history if e.type == type]

    def subscribe(self) -> asyncio.Queue:
        """Subscribe to live events."""
        q: asyncio.Queue = asyncio.Queue(maxsize=1000)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        if q in self._subscribers:
            self._subscribers.remove(q)

    def add_listener(self, listener: Listener):
        """Register a synchronous callback invoked for every event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _persist(self, event: GraphEvent):
        if not self._log_file:
            return
        try:
            with open(self._log_file, "a") as f:
                f.write(json.dumps(event.to_dict(), default=str) + "\n")
        except OSError as e:
            logger.warning(f"Could not write event log {self._log_file}: {e}")

    def _notify(self, event: GraphEvent):
        for q in self._subscribers:
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                pass
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Event listener failed on {event.type}: {e}", exc_info=True)
