"""In-process publish/subscribe bus for run and lock notifications.

Fan-out is synchronous: ``publish`` returns only after every currently
subscribed listener has been called. Nothing is buffered for late
subscribers; they pull a stats snapshot to catch up. Remote relays (SSE)
attach through ``channel()``, which gives each relay its own bounded queue.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from .models import utcnow

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    result = "result"
    stats = "stats"
    lock_changed = "lock-changed"
    completed = "completed"


class Event(BaseModel):
    kind: EventKind
    data: dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=utcnow)


Listener = Callable[[Event], None]


class EventBus:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def publish(self, kind: EventKind, data: dict[str, Any] | None = None) -> int:
        event = Event(kind=kind, data=data or {})
        delivered = 0
        # Snapshot so listeners may unsubscribe while being notified.
        for listener in list(self._listeners):
            try:
                listener(event)
                delivered += 1
            except Exception:
                logger.exception("Event listener failed for %s", kind.value)
        return delivered

    def channel(self, maxsize: int = 256) -> Channel:
        return Channel(self, maxsize=maxsize)


class Channel:
    """Bounded per-subscriber queue. Drops the oldest event on overflow."""

    def __init__(self, bus: EventBus, maxsize: int = 256) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max(1, maxsize))
        self.dropped = 0
        self._unsubscribe = bus.subscribe(self._push)

    def _push(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(event)
            self.dropped += 1
            logger.debug("Channel full; dropped oldest event (%d dropped so far)", self.dropped)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self, timeout: float | None = None) -> Event | None:
        """Next event, or None when ``timeout`` elapses first."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self._unsubscribe()

    async def __aenter__(self) -> Channel:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()
