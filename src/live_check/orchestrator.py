"""Run lifecycle: idle -> running -> (completed | stopped) -> idle.

One run is active at a time and belongs to a single principal. The drain
loop fills free slots from the task queue, each dispatched task runs its
inspection as its own asyncio task, and every completion wakes the loop to
backfill. All queue and counter mutation happens on the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Protocol

from .config import DEFAULT_CONCURRENCY, clamp_concurrency
from .events import EventBus, EventKind
from .models import Outcome, Target, Task, Verdict, utcnow
from .task_queue import TaskQueue

logger = logging.getLogger(__name__)

SESSION_BUSY = "another session is active"
NO_TARGETS = "no valid targets"


class TargetLoader(Protocol):
    def load_targets(self, resource_ids: list[str]) -> list[Target]: ...


class ResultSink(Protocol):
    def persist_verdict(self, verdict: Verdict) -> None: ...


class InspectorLike(Protocol):
    async def inspect(self, target: Target) -> Verdict: ...


class Orchestrator:
    def __init__(
        self,
        loader: TargetLoader,
        sink: ResultSink,
        inspector: InspectorLike,
        *,
        bus: EventBus | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.loader = loader
        self.sink = sink
        self.inspector = inspector
        self.bus = bus or EventBus()
        self.queue = TaskQueue(concurrency)
        self._default_concurrency = self.queue.concurrency
        self._running = False
        self._principal: str | None = None
        self._session_id: str | None = None
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._wake_event = asyncio.Event()
        self._started_at: str | None = None
        self._finished_at: str | None = None
        self._retries = 0
        self._persist_failures = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def principal(self) -> str | None:
        return self._principal

    @property
    def session_id(self) -> str | None:
        return self._session_id

    # ── Control ───────────────────────────────────────────────────────────

    def start(self, resource_ids: list[str], principal: str, *, concurrency: int | None = None) -> dict:
        """Begin a run (or extend the caller's own). Returns immediately.

        Must be called from within the running event loop.
        """
        if self._running and self._principal != principal:
            logger.warning("Rejected start from %s: run owned by %s is active", principal, self._principal)
            return {"accepted": False, "reason": SESSION_BUSY}

        targets = self.loader.load_targets(list(resource_ids))
        if not targets:
            return {"accepted": False, "reason": NO_TARGETS}
        tasks = [Task.for_target(t) for t in targets]

        if self._running:
            if self.queue.stopped:
                return {"accepted": False, "reason": "run is stopping"}
            if concurrency is not None:
                self.update_concurrency(concurrency)
            added = self.queue.enqueue(tasks)
            logger.info("Added %d task(s) to %s's run", added, principal)
            self._publish_stats()
            self._wake_event.set()
            return {"accepted": True, "session_id": self._session_id, "queued": added}

        self.queue.reset()
        self.queue.set_concurrency(self._default_concurrency if concurrency is None else concurrency)
        added = self.queue.enqueue(tasks)
        self._running = True
        self._principal = principal
        self._session_id = uuid.uuid4().hex
        self._started_at = utcnow().isoformat()
        self._finished_at = None
        self._retries = 0
        self._persist_failures = 0
        logger.info(
            "Run %s started by %s: %d task(s), concurrency %d",
            self._session_id, principal, added, self.queue.concurrency,
        )
        self._publish_stats()
        self._task = asyncio.create_task(self._drain_loop(self._session_id))
        return {"accepted": True, "session_id": self._session_id, "queued": added}

    def stop(self, principal: str) -> dict:
        """Cancel pending work. In-flight inspections finish on their own."""
        if not self._running:
            return {"accepted": False, "reason": "no active run"}
        if principal != self._principal:
            logger.warning("Rejected stop from %s: run owned by %s", principal, self._principal)
            return {"accepted": False, "reason": SESSION_BUSY}
        drained = self.queue.stop()
        logger.info("Run %s stopped by %s (%d pending cancelled)", self._session_id, principal, len(drained))
        self._publish_stats()
        self._wake_event.set()
        return {"accepted": True, "cancelled": len(drained)}

    async def reset(self) -> None:
        """Hard clear, whatever state the run is in."""
        tasks = [t for t in (self._task, *self._inflight) if t is not None]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._inflight.clear()
        self.queue.reset()
        self._running = False
        self._principal = None
        self._session_id = None
        self._finished_at = utcnow().isoformat()
        logger.info("Run state reset")
        self._publish_stats()

    def update_concurrency(self, value: int) -> dict:
        if isinstance(value, bool) or not isinstance(value, int):
            return {"accepted": False, "concurrency": self.queue.concurrency}
        self._default_concurrency = clamp_concurrency(value)
        applied = self.queue.set_concurrency(value)
        logger.info("Concurrency set to %d", applied)
        self._wake_event.set()
        self._publish_stats()
        return {"accepted": True, "concurrency": applied}

    async def wait_idle(self) -> None:
        """Resolve once the current drain loop has finished."""
        if self._task is not None:
            await asyncio.wait({self._task})

    # ── Snapshots ─────────────────────────────────────────────────────────

    def stats_snapshot(self) -> dict:
        return {
            **self.queue.stats(),
            "active": self._running,
            "principal": self._principal,
            "session_id": self._session_id,
            "started_at": self._started_at,
            "finished_at": self._finished_at,
            "retries": self._retries,
            "persist_failures": self._persist_failures,
        }

    def recent_results(self) -> list[dict]:
        return self.queue.recent_results()

    # ── Drain loop ────────────────────────────────────────────────────────

    async def _drain_loop(self, session_id: str) -> None:
        while self._running and self._session_id == session_id:
            dispatched = 0
            while True:
                task = self.queue.dequeue()
                if task is None:
                    break
                self._spawn(task, session_id)
                dispatched += 1
            if dispatched:
                self._publish_stats()
            if self.queue.is_idle:
                break
            self._wake_event.clear()
            await self._wake_event.wait()
        if self._session_id == session_id:
            self._finish()

    def _spawn(self, task: Task, session_id: str) -> None:
        runner = asyncio.create_task(self._run_task(task, session_id))
        self._inflight.add(runner)
        runner.add_done_callback(self._inflight.discard)

    async def _run_task(self, task: Task, session_id: str) -> None:
        try:
            try:
                verdict = await self.inspector.inspect(task.payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Inspector raised for %s", task.resource_id)
                verdict = Verdict.failed(task.resource_id, str(e) or type(e).__name__)
            if self._session_id != session_id:
                logger.debug("Discarding verdict for %s from a stale run", task.resource_id)
                return
            self._handle_verdict(task, verdict)
        finally:
            self._wake_event.set()

    def _handle_verdict(self, task: Task, verdict: Verdict) -> None:
        if verdict.outcome is Outcome.failed:
            if self.queue.retry(task):
                self._retries += 1
                logger.warning(
                    "Retrying %s (attempt %d): %s", task.resource_id, task.retry_count + 2, verdict.error,
                )
                self._publish_stats()
                return
        else:
            self.queue.complete(task.resource_id, verdict.outcome)

        self._persist(verdict)
        self.bus.publish(EventKind.result, {
            "resource_id": verdict.resource_id,
            "outcome": verdict.outcome.value,
            "timestamp": verdict.timestamp.isoformat(),
            "error": verdict.error,
        })
        self._publish_stats()

    def _persist(self, verdict: Verdict) -> None:
        try:
            self.sink.persist_verdict(verdict)
        except Exception:
            self._persist_failures += 1
            logger.exception("Failed to persist verdict for %s", verdict.resource_id)

    def _finish(self) -> None:
        stopped = self.queue.stopped
        self._running = False
        self._finished_at = utcnow().isoformat()
        self._task = None
        stats = self.queue.stats()
        logger.info(
            "Run %s %s: %d confirmed, %d absent, %d failed",
            self._session_id, "stopped" if stopped else "completed",
            stats["confirmed"], stats["absent"], stats["failed"],
        )
        self._publish_stats()
        self.bus.publish(EventKind.completed, {"timestamp": self._finished_at, "stopped": stopped})

    def _publish_stats(self) -> None:
        self.bus.publish(EventKind.stats, self.stats_snapshot())
