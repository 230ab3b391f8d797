"""Bounded-concurrency task queue for one check run.

Per task: queued -> dispatched -> completed | retrying -> queued | abandoned.
A resource id lives in exactly one of pending / dispatched / completed.
Only the orchestrator's control loop mutates the queue; nothing here is
guarded for concurrent mutation.
"""

from __future__ import annotations

import logging
from collections import deque

from .config import DEFAULT_CONCURRENCY, MAX_RETRIES, clamp_concurrency
from .models import Outcome, Task, utcnow

logger = logging.getLogger(__name__)


class TaskQueue:
    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY, max_retries: int = MAX_RETRIES) -> None:
        self._concurrency = clamp_concurrency(concurrency)
        self.max_retries = max_retries
        self._pending: deque[Task] = deque()
        self._dispatched: dict[str, Task] = {}
        self._completed: dict[str, dict] = {}
        self._stopped = False

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def is_idle(self) -> bool:
        return not self._pending and not self._dispatched

    def set_concurrency(self, value: int) -> int:
        """Clamp to [1, 10]. Already-dispatched tasks are left alone."""
        self._concurrency = clamp_concurrency(value)
        return self._concurrency

    def _is_pending(self, resource_id: str) -> bool:
        return any(t.resource_id == resource_id for t in self._pending)

    def state_of(self, resource_id: str) -> str | None:
        if resource_id in self._dispatched:
            return "dispatched"
        if self._is_pending(resource_id):
            return "pending"
        if resource_id in self._completed:
            return "completed"
        return None

    def enqueue(self, tasks: list[Task]) -> int:
        """Queue tasks, skipping ids already queued or dispatched.

        A completed id is pulled back out of ``completed`` and queued again.
        Returns the number of tasks added; 0 while hard-stopped.
        """
        if self._stopped:
            logger.warning("Queue is stopped; rejected %d task(s)", len(tasks))
            return 0
        added = 0
        for task in tasks:
            rid = task.resource_id
            if rid in self._dispatched or self._is_pending(rid):
                logger.debug("Skipped %s (already queued or dispatched)", rid)
                continue
            if self._completed.pop(rid, None) is not None:
                logger.debug("Re-checking %s", rid)
            self._pending.append(task)
            added += 1
        logger.info("Queued %d task(s): %d pending, %d dispatched", added, len(self._pending), len(self._dispatched))
        return added

    def dequeue(self) -> Task | None:
        if self._stopped:
            return None
        if len(self._dispatched) >= self._concurrency:
            return None
        if not self._pending:
            return None
        task = self._pending.popleft()
        self._dispatched[task.resource_id] = task
        logger.debug(
            "Dispatched %s (%d/%d slots used)",
            task.resource_id, len(self._dispatched), self._concurrency,
        )
        return task

    def complete(self, resource_id: str, outcome: Outcome) -> None:
        self._dispatched.pop(resource_id, None)
        self._completed[resource_id] = {
            "resource_id": resource_id,
            "outcome": Outcome(outcome).value,
            "completed_at": utcnow().isoformat(),
        }
        logger.debug("Completed %s: %s (%d still dispatched)", resource_id, Outcome(outcome).value, len(self._dispatched))

    def retry(self, task: Task) -> bool:
        """Re-queue a failed attempt. Returns False when finalized as FAILED."""
        self._dispatched.pop(task.resource_id, None)
        if task.retry_count < self.max_retries and not self._stopped:
            self._pending.append(task.model_copy(update={"retry_count": task.retry_count + 1}))
            logger.debug("Re-queued %s (attempt %d)", task.resource_id, task.retry_count + 2)
            return True
        self.complete(task.resource_id, Outcome.failed)
        return False

    def stop(self) -> list[str]:
        """Hard stop: drain every queued task into completed as FAILED."""
        self._stopped = True
        drained = [t.resource_id for t in self._pending]
        self._pending.clear()
        for rid in drained:
            self.complete(rid, Outcome.failed)
        logger.info("Queue stopped; %d pending task(s) marked FAILED", len(drained))
        return drained

    def resume(self) -> None:
        self._stopped = False

    def reset(self) -> None:
        self._pending.clear()
        self._dispatched.clear()
        self._completed.clear()
        self._stopped = False

    def recent_results(self) -> list[dict]:
        return [dict(entry) for entry in self._completed.values()]

    def stats(self) -> dict:
        counts = {o: 0 for o in Outcome}
        for entry in self._completed.values():
            counts[Outcome(entry["outcome"])] += 1
        pending = len(self._pending)
        dispatched = len(self._dispatched)
        completed = len(self._completed)
        total = pending + dispatched + completed
        return {
            "pending": pending,
            "dispatched": dispatched,
            "completed": completed,
            "total": total,
            "confirmed": counts[Outcome.confirmed],
            "absent": counts[Outcome.absent],
            "failed": counts[Outcome.failed],
            "stopped": self._stopped,
            "concurrency": self._concurrency,
            "progress": round(completed / total * 100) if total else 0,
        }
