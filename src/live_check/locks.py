"""Advisory edit locks on review records.

One lock per resource id, one lock per principal: acquiring a second
resource silently releases the first. Locks are leases; anything older than
the TTL is treated as abandoned and swept, both periodically and whenever the
full list is read.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from .config import LOCK_SWEEP_SECONDS, LOCK_TTL_SECONDS
from .events import EventBus, EventKind
from .models import Lock

logger = logging.getLogger(__name__)


class LockRegistry:
    def __init__(
        self,
        bus: EventBus | None = None,
        *,
        ttl_seconds: float = LOCK_TTL_SECONDS,
        sweep_interval: float = LOCK_SWEEP_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.bus = bus or EventBus()
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._locks: dict[str, Lock] = {}
        self._task: asyncio.Task | None = None

    # ── Mutations ─────────────────────────────────────────────────────────

    def acquire(self, resource_id: str, principal: str, display_name: str) -> dict:
        """Grant or refresh a lock. Returns ``{"granted", "held_by"}``."""
        for rid, lock in list(self._locks.items()):
            if lock.principal == principal and rid != resource_id:
                logger.info("Auto-releasing %s held by %s", rid, principal)
                self._drop(rid)

        now = self._clock()
        existing = self._locks.get(resource_id)
        if existing and existing.principal != principal and not self._expired(existing, now):
            logger.info("Lock on %s denied to %s (held by %s)", resource_id, principal, existing.display_name)
            return {"granted": False, "held_by": existing.display_name}

        lock = Lock(resource_id=resource_id, principal=principal, display_name=display_name, acquired_at=now)
        self._locks[resource_id] = lock
        logger.info("Lock on %s granted to %s", resource_id, principal)
        self._broadcast(resource_id, True, holder=display_name, principal=principal, acquired_at=now)
        return {"granted": True, "held_by": None}

    def release(self, resource_id: str, principal: str) -> bool:
        lock = self._locks.get(resource_id)
        if lock is None or lock.principal != principal:
            return False
        self._drop(resource_id)
        return True

    def force_release(self, resource_id: str) -> bool:
        """Administrative override. Returns whether a lock was held."""
        held = self._locks.pop(resource_id, None) is not None
        logger.info("Force-released %s (held=%s)", resource_id, held)
        self._broadcast(resource_id, False)
        return held

    def sweep(self) -> list[str]:
        now = self._clock()
        expired = [rid for rid, lock in self._locks.items() if self._expired(lock, now)]
        for rid in expired:
            logger.info("Lock on %s expired", rid)
            self._drop(rid)
        return expired

    def clear(self) -> None:
        self._locks.clear()

    # ── Reads ─────────────────────────────────────────────────────────────

    def get(self, resource_id: str) -> Lock | None:
        self.sweep()
        return self._locks.get(resource_id)

    def list_all(self) -> list[Lock]:
        self.sweep()
        return list(self._locks.values())

    def __len__(self) -> int:
        return len(self._locks)

    # ── Periodic sweep ────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Lock sweeper started (every %.0fs, ttl %.0fs)", self.sweep_interval, self.ttl_seconds)

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._locks.clear()

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Lock sweep failed")

    # ── Internals ─────────────────────────────────────────────────────────

    def _expired(self, lock: Lock, now: float) -> bool:
        return now - lock.acquired_at >= self.ttl_seconds

    def _drop(self, resource_id: str) -> None:
        self._locks.pop(resource_id, None)
        self._broadcast(resource_id, False)

    def _broadcast(self, resource_id: str, granted: bool, **extra: object) -> None:
        self.bus.publish(EventKind.lock_changed, {"resource_id": resource_id, "granted": granted, **extra})
