"""Scheduler loop: turns due backup schedules into queued jobs.

Manifesto:
    The scheduler holds no state between ticks. Every tick re-reads the
    schedules from the store, so any number of instances can run side by
    side: the compare-and-set on ``next_run_at`` decides which one fires a
    given due instant.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE                                                            │
│                                                                               │
│   Backend (timing) ──tick()──► SchedulerService.tick(now)                     │
│                                                                               │
│   1. reconcile   outcome of each schedule's last pushed job                   │
│                  success → consecutive_failures = 0                           │
│                  failure → consecutive_failures += 1, retry pulled forward    │
│   2. initialize  schedules with no next_run_at                                │
│   3. for each due schedule:                                                   │
│      ├── claim_next_run(expected → next_eligible_run(now))   CAS              │
│      ├── should_fire_now(next_run_at)? push : skipped                         │
│      └── record_run(queue_job_id)                                             │
│                                                                               │
│   Public API: start() stop() tick() trigger(job_id) pause() resume()          │
│               health() get_stats()                                            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from backplane.core.errors import BackplaneError, JobNotFoundError, OrchestrationError
from backplane.core.timestamps import from_iso8601, to_iso8601, utc_now
from backplane.execution.handlers import BACKUP_RUN
from backplane.execution.models import JobStatus
from backplane.execution.queue import JobQueue

from .engine import next_eligible_run, should_fire_now
from .models import BackupSchedule, RunStatus
from .protocol import SchedulerBackend
from .repository import BackupScheduleRepository

logger = logging.getLogger(__name__)

TRIGGERED_BY_SCHEDULER = "scheduler"
TRIGGERED_BY_MANUAL = "manual"


@dataclass
class SchedulerStats:
    """Statistics for the scheduler service."""

    tick_count: int = 0
    schedules_processed: int = 0
    schedules_skipped: int = 0
    schedules_failed: int = 0
    outcomes_reconciled: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "schedules_processed": self.schedules_processed,
            "schedules_skipped": self.schedules_skipped,
            "schedules_failed": self.schedules_failed,
            "outcomes_reconciled": self.outcomes_reconciled,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the scheduler service."""

    healthy: bool
    backend: dict[str, Any]
    schedules_enabled: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "schedules_enabled": self.schedules_enabled,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": self.stats.to_dict(),
        }


@dataclass
class TickResult:
    """What one scheduler tick did."""

    pushed: dict[str, str] = field(default_factory=dict)  # schedule_id -> queue job id
    skipped: list[str] = field(default_factory=list)
    lost: list[str] = field(default_factory=list)
    initialized: list[str] = field(default_factory=list)
    reconciled: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pushed": dict(self.pushed),
            "skipped": list(self.skipped),
            "lost": list(self.lost),
            "initialized": list(self.initialized),
            "reconciled": self.reconciled,
            "errors": list(self.errors),
        }


class SchedulerService:
    """Scheduler loop, beat-as-poller.

    Example:
        >>> service = SchedulerService(
        ...     backend=ThreadSchedulerBackend(),
        ...     repository=BackupScheduleRepository(conn),
        ...     queue=JobQueue(conn, cache),
        ... )
        >>> service.tick()          # one evaluation pass, e.g. from cron
        >>> service.start()         # or keep ticking in a daemon thread
    """

    def __init__(
        self,
        backend: SchedulerBackend | None,
        repository: BackupScheduleRepository,
        queue: JobQueue,
        *,
        queue_name: str = "default",
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.backend = backend
        self.repository = repository
        self.queue = queue
        self.queue_name = queue_name
        self.interval = interval_seconds
        self._clock = clock or utc_now

        self._stats = SchedulerStats()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        """Begin the backend tick loop."""
        if self._running:
            logger.warning("SchedulerService already running")
            return
        if self.backend is None:
            raise OrchestrationError("SchedulerService has no timing backend; call tick() directly")

        logger.info(
            "Starting SchedulerService with %s backend (interval=%ss)",
            self.backend.name, self.interval,
        )
        self.backend.start(self._tick, self.interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping SchedulerService")
        self.backend.stop()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def _tick(self) -> None:
        self.tick()

    # === Tick ===

    def tick(self, now: datetime | None = None) -> TickResult:
        """Run one evaluation pass over all enabled schedules."""
        now = now or self._clock()
        result = TickResult()
        self._stats.tick_count += 1
        self._stats.last_tick = now

        result.reconciled = self._reconcile_outcomes(now, result)
        self._initialize(now, result)

        for schedule in self.repository.get_due(now):
            try:
                self._process_schedule(schedule, now, result)
            except BackplaneError as e:
                self._stats.schedules_failed += 1
                self._stats.last_error = str(e)
                result.errors.append(f"{schedule.id}: {e}")
                logger.exception("Failed to process schedule %s (backup job %s)", schedule.id, schedule.job_id)

        if result.pushed or result.errors:
            logger.info(
                "Scheduler tick: pushed=%d skipped=%d lost=%d errors=%d",
                len(result.pushed), len(result.skipped), len(result.lost), len(result.errors),
            )
        return result

    def _process_schedule(self, schedule: BackupSchedule, now: datetime, result: TickResult) -> None:
        following = next_eligible_run(schedule, now)
        if not self.repository.claim_next_run(schedule.id, schedule.next_run_at, following):
            # Another scheduler instance fired this due instant.
            result.lost.append(schedule.id)
            return

        candidate = schedule.next_run_at or now
        if not should_fire_now(schedule, candidate):
            self.repository.record_run(schedule.id, None, now, RunStatus.SKIPPED)
            self._stats.schedules_skipped += 1
            result.skipped.append(schedule.id)
            logger.info(
                "Schedule %s due at %s is outside its window or in blackout; next run %s",
                schedule.id, candidate.isoformat(), following.isoformat() if following else None,
            )
            return

        queue_job_id = self._push(schedule, scheduled_for=candidate,
                                  triggered_by=TRIGGERED_BY_SCHEDULER)
        self.repository.record_run(schedule.id, queue_job_id, now, RunStatus.QUEUED)
        self._stats.schedules_processed += 1
        result.pushed[schedule.id] = queue_job_id

    def _push(
        self,
        schedule: BackupSchedule,
        *,
        scheduled_for: datetime,
        triggered_by: str,
        extra: dict[str, Any] | None = None,
    ) -> str:
        payload = {
            **(extra or {}),
            "backup_job_id": schedule.job_id,
            "schedule_id": schedule.id,
            "scheduled_for": to_iso8601(scheduled_for),
            "triggered_by": triggered_by,
            "max_runtime": schedule.max_runtime,
        }
        job_id = self.queue.push(
            BACKUP_RUN,
            payload,
            queue=self.queue_name,
            max_attempts=schedule.job_max_attempts,
            created_by=triggered_by,
        )
        logger.info("Queued backup job %s as %s (%s)", schedule.job_id, job_id, triggered_by)
        return job_id

    def _initialize(self, now: datetime, result: TickResult) -> None:
        for schedule in self.repository.list_uninitialized():
            try:
                first = next_eligible_run(schedule, now)
            except BackplaneError as e:
                result.errors.append(f"{schedule.id}: {e}")
                logger.warning("Cannot initialize schedule %s: %s", schedule.id, e)
                continue
            if first is not None and self.repository.claim_next_run(schedule.id, None, first):
                result.initialized.append(schedule.id)
                logger.debug("Schedule %s first run at %s", schedule.id, first.isoformat())

    def _reconcile_outcomes(self, now: datetime, result: TickResult) -> int:
        """Fold finished jobs back into each schedule's failure bookkeeping."""
        settled = 0
        for schedule in self.repository.list_awaiting_outcome():
            job_id = schedule.last_queue_job_id
            try:
                info = self.queue.get_progress_info(job_id)
            except JobNotFoundError:
                info = {"status": JobStatus.FAILED.value, "updated_at": None}
            except BackplaneError as e:
                result.errors.append(f"{schedule.id}: {e}")
                continue

            status = info.get("status")
            if status == JobStatus.COMPLETED.value:
                settled += self.repository.record_outcome(schedule.id, job_id, RunStatus.SUCCESS, 0)
            elif status == JobStatus.CANCELLED.value:
                settled += self.repository.record_outcome(
                    schedule.id, job_id, RunStatus.CANCELLED, schedule.consecutive_failures
                )
            elif status == JobStatus.FAILED.value:
                settled += self._record_failure(schedule, info, now)

        self._stats.outcomes_reconciled += settled
        return settled

    def _record_failure(self, schedule: BackupSchedule, info: dict[str, Any], now: datetime) -> bool:
        failures = schedule.consecutive_failures + 1
        retry_at = None
        if schedule.retry_on_failure and failures <= schedule.max_retries:
            failed_at = from_iso8601(info.get("updated_at")) or now
            retry_at = failed_at + timedelta(minutes=schedule.retry_delay_minutes)
            if schedule.next_run_at is not None and schedule.next_run_at <= retry_at:
                retry_at = None
        won = self.repository.record_outcome(
            schedule.id, schedule.last_queue_job_id, RunStatus.FAILED, failures, retry_at
        )
        if won:
            logger.warning(
                "Backup job %s failed (%d consecutive); retry at %s",
                schedule.job_id, failures, retry_at.isoformat() if retry_at else "next scheduled run",
            )
        return won

    # === Manual Operations ===

    def trigger(self, job_id: str, payload: dict[str, Any] | None = None) -> str:
        """Queue a backup run now, outside the recurrence; returns the queue job id.

        Raises:
            ScheduleNotFoundError: If the backup job has no schedule.
        """
        schedule = self.repository.require_by_job(job_id)
        now = self._clock()
        queue_job_id = self._push(schedule, scheduled_for=now, triggered_by=TRIGGERED_BY_MANUAL, extra=payload)
        self.repository.record_run(schedule.id, queue_job_id, now, RunStatus.QUEUED)
        return queue_job_id

    def pause(self, job_id: str) -> bool:
        """Disable the schedule of *job_id*; False if it has none."""
        paused = self.repository.set_enabled(job_id, False)
        if paused:
            logger.info("Paused schedule of backup job %s", job_id)
        return paused

    def resume(self, job_id: str) -> bool:
        """Re-enable the schedule of *job_id* from now on; False if it has none."""
        schedule = self.repository.get_by_job(job_id)
        if schedule is None:
            return False
        following = next_eligible_run(schedule, self._clock())
        resumed = self.repository.set_enabled(job_id, True, following)
        if resumed:
            logger.info("Resumed schedule of backup job %s (next run %s)", job_id, following)
        return resumed

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health() if self.backend is not None else {"healthy": False}
        return SchedulerHealth(
            healthy=self._running and backend_health.get("healthy", False),
            backend=backend_health,
            schedules_enabled=self.repository.count_enabled(),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats
