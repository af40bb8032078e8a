"""Sweeper: reclaims stuck agent tasks and settles jobs from their tasks.

Every non-terminal task state needs a time-bound way out, because agents
may vanish mid-task and the server never hears back. The sweeper provides
it, and it is also where a job learns how its agent tasks ended.

Each tick::

    1. reset_stale_assigned(grace)   assigned too long, never started → pending
    2. fail_timed_out()              running past timeout → retry policy
    3. cancellation                  open tasks of cancelled jobs → cancelled
    4. terminal propagation          running job, all tasks of the current
                                     attempt terminal →
                                       any failed     → job failed (errors joined)
                                       any cancelled  → job cancelled
                                       otherwise      → job completed
                                                        {"tasks": [{id, exit_code, result}]}

All of it is conditional updates, so overlapping sweepers are harmless.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from backplane.core.errors import InvalidTransitionError, OrchestrationError
from backplane.core.timestamps import utc_now
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.models import AgentTask, TaskStatus
from backplane.execution.queue import JobQueue

from .protocol import SchedulerBackend

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts of what one sweep changed."""

    reset_assigned: int = 0
    timed_out_requeued: int = 0
    timed_out_failed: int = 0
    tasks_cancelled: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    jobs_cancelled: int = 0
    timed_out_task_ids: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any((
            self.reset_assigned, self.timed_out_requeued, self.timed_out_failed,
            self.tasks_cancelled, self.jobs_completed, self.jobs_failed, self.jobs_cancelled,
        ))

    def to_dict(self) -> dict[str, Any]:
        return {
            "reset_assigned": self.reset_assigned,
            "timed_out_requeued": self.timed_out_requeued,
            "timed_out_failed": self.timed_out_failed,
            "tasks_cancelled": self.tasks_cancelled,
            "jobs_completed": self.jobs_completed,
            "jobs_failed": self.jobs_failed,
            "jobs_cancelled": self.jobs_cancelled,
            "timed_out_task_ids": list(self.timed_out_task_ids),
        }


class Sweeper:
    """Periodic reclamation and job settlement.

    Example:
        >>> sweeper = Sweeper(dispatcher, queue)
        >>> result = sweeper.tick()
        >>> result.reset_assigned, result.jobs_completed
        (0, 1)
    """

    def __init__(
        self,
        dispatcher: AgentTaskDispatcher,
        queue: JobQueue,
        backend: SchedulerBackend | None = None,
        *,
        assigned_grace_seconds: int = 60,
        cancel_lookback_seconds: int = 86400,
        interval_seconds: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.queue = queue
        self.backend = backend
        self.assigned_grace_seconds = assigned_grace_seconds
        self.cancel_lookback_seconds = cancel_lookback_seconds
        self.interval = interval_seconds
        self._clock = clock or utc_now
        self._running = False
        self.tick_count = 0
        self.last_result: SweepResult | None = None

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.warning("Sweeper already running")
            return
        if self.backend is None:
            raise OrchestrationError("Sweeper has no timing backend; call tick() directly")
        logger.info("Starting Sweeper with %s backend (interval=%ss)", self.backend.name, self.interval)
        self.backend.start(self._tick, self.interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self.backend.stop()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def _tick(self) -> None:
        self.tick()

    # === Tick ===

    def tick(self, now: datetime | None = None) -> SweepResult:
        now = now or self._clock()
        result = SweepResult()

        result.reset_assigned = self.dispatcher.reset_stale_assigned(self.assigned_grace_seconds, now=now)

        for outcome in self.dispatcher.fail_timed_out(now=now):
            result.timed_out_task_ids.append(outcome.task.id)
            if outcome.requeued:
                result.timed_out_requeued += 1
            else:
                result.timed_out_failed += 1

        since = now - timedelta(seconds=self.cancel_lookback_seconds)
        for job_id in self.queue.recently_cancelled_ids(since):
            result.tasks_cancelled += self.dispatcher.cancel_open_for_job(job_id)

        for job_id in self.queue.running_job_ids():
            self._settle_job(job_id, result)

        self.tick_count += 1
        self.last_result = result
        if result.changed:
            logger.info("Sweep: %s", result.to_dict())
        return result

    def _settle_job(self, job_id: str, result: SweepResult) -> None:
        job = self.queue.find_job(job_id)
        if job is None or job.started_at is None:
            return
        # Tasks from earlier attempts of a retried job do not count.
        tasks = [t for t in self.dispatcher.find_by_job(job_id) if t.created_at >= job.started_at]
        if not tasks or not all(t.is_terminal for t in tasks):
            return

        failed = [t for t in tasks if t.status == TaskStatus.FAILED]
        try:
            if failed:
                self.queue.fail(job_id, _joined_errors(failed))
                result.jobs_failed += 1
            elif any(t.status == TaskStatus.CANCELLED for t in tasks):
                self.queue.cancel(job_id)
                result.jobs_cancelled += 1
            else:
                self.queue.complete(job_id, {
                    "tasks": [
                        {"id": t.id, "exit_code": t.exit_code, "result": t.result}
                        for t in tasks
                    ]
                })
                result.jobs_completed += 1
        except InvalidTransitionError:
            logger.debug("Job %s settled concurrently", job_id)


def _joined_errors(tasks: list[AgentTask]) -> str:
    return "; ".join(t.error or f"task {t.id} failed" for t in tasks)
