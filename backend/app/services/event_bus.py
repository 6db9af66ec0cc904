from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from backend.app.models.session import SessionEvent

logger = logging.getLogger(__name__)


@dataclass(slots=True, eq=False)
class EventListener:
    queue: asyncio.Queue[SessionEvent]
    event_types: frozenset[str] | None = None
    delivered: int = 0
    dropped: int = 0

    def accepts(self, event: SessionEvent) -> bool:
        return self.event_types is None or event.type in self.event_types

    def deliver(self, event: SessionEvent) -> SessionEvent | None:
        """Queue ``event``, evicting and returning the oldest one when full."""
        evicted = None
        if self.queue.full():
            try:
                evicted = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            else:
                self.dropped += 1
        self.queue.put_nowait(event)
        self.delivered += 1
        return evicted


class SessionEventBus:
    """Routes session events to the listeners registered for that session.

    A listener may restrict itself to a set of event types. Queues are bounded;
    a listener that falls behind loses its oldest pending events, and the loss
    is counted per listener.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._listeners: dict[str, dict[asyncio.Queue[SessionEvent], EventListener]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        session_id: str,
        event_types: Iterable[str] | None = None,
    ) -> asyncio.Queue[SessionEvent]:
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=self._queue_size)
        listener = EventListener(queue=queue, event_types=frozenset(event_types) if event_types is not None else None)
        async with self._lock:
            self._listeners.setdefault(session_id, {})[queue] = listener
        return queue

    async def unsubscribe(self, session_id: str, queue: asyncio.Queue[SessionEvent]) -> EventListener | None:
        async with self._lock:
            listeners = self._listeners.get(session_id)
            if not listeners:
                return None
            listener = listeners.pop(queue, None)
            if not listeners:
                del self._listeners[session_id]
        return listener

    async def listener_count(self, session_id: str) -> int:
        async with self._lock:
            return len(self._listeners.get(session_id, ()))

    async def publish(self, event: SessionEvent) -> int:
        """Deliver ``event`` to every matching listener; returns how many received it."""
        async with self._lock:
            listeners = list(self._listeners.get(event.session_id, {}).values())

        receivers = 0
        for listener in listeners:
            if not listener.accepts(event):
                continue
            evicted = listener.deliver(event)
            if evicted is not None:
                logger.debug("Dropped '%s' event for slow listener on session '%s'", evicted.type, event.session_id)
            receivers += 1
        return receivers
