"""Process-level service: one bus, one run orchestrator, one lock registry."""

from __future__ import annotations

import logging

from .events import EventBus
from .inspector import Inspector
from .locks import LockRegistry
from .models import Lock
from .orchestrator import InspectorLike, Orchestrator
from .storage import ReviewStore

logger = logging.getLogger(__name__)


class CheckService:
    """Entry point for every run and lock operation.

    Built once by the process entry point (HTTP app or CLI) and handed to
    whatever needs it; nothing here is module-global.
    """

    def __init__(
        self,
        store: ReviewStore,
        *,
        inspector: InspectorLike | None = None,
        bus: EventBus | None = None,
        locks: LockRegistry | None = None,
    ) -> None:
        self.store = store
        self.bus = bus or EventBus()
        self.locks = locks or LockRegistry(self.bus)
        self.orchestrator = Orchestrator(store, store, inspector or Inspector(), bus=self.bus)

    async def open(self) -> None:
        self.locks.start()

    async def close(self) -> None:
        if self.orchestrator.is_running:
            logger.info("Shutting down with an active run; cancelling in-flight inspections")
        await self.orchestrator.reset()
        await self.locks.close()

    # ── Runs ──────────────────────────────────────────────────────────────

    def start(self, resource_ids: list[str], principal: str, *, concurrency: int | None = None) -> dict:
        return self.orchestrator.start(resource_ids, principal, concurrency=concurrency)

    def stop(self, principal: str) -> dict:
        return self.orchestrator.stop(principal)

    async def reset(self) -> None:
        await self.orchestrator.reset()

    def update_concurrency(self, value: int) -> dict:
        return self.orchestrator.update_concurrency(value)

    def stats_snapshot(self) -> dict:
        return self.orchestrator.stats_snapshot()

    def recent_results(self) -> list[dict]:
        return self.orchestrator.recent_results()

    # ── Locks ─────────────────────────────────────────────────────────────

    def acquire_lock(self, resource_id: str, principal: str, display_name: str) -> dict:
        return self.locks.acquire(resource_id, principal, display_name)

    def release_lock(self, resource_id: str, principal: str) -> bool:
        return self.locks.release(resource_id, principal)

    def force_release_lock(self, resource_id: str) -> bool:
        return self.locks.force_release(resource_id)

    def list_locks(self) -> list[Lock]:
        return self.locks.list_all()
