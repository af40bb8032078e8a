"""Backup schedule repository: CRUD plus the scheduler loop's bookkeeping.

┌──────────────────────────────────────────────────────────────────────────────┐
│  BACKUP SCHEDULE REPOSITORY                                                   │
│                                                                               │
│   CRUD Operations:                                                            │
│   ├── create(spec) → BackupSchedule                                           │
│   ├── get(id) / get_by_job(job_id) → BackupSchedule | None                    │
│   ├── list_all() / list_enabled() / count_enabled()                           │
│   ├── set_enabled(job_id, enabled) → bool                                     │
│   └── delete(job_id) → bool                                                   │
│                                                                               │
│   Scheduler Loop Operations (conditional updates):                            │
│   ├── get_due(now) → list[BackupSchedule]                                     │
│   ├── list_uninitialized() → list[BackupSchedule]                             │
│   ├── claim_next_run(id, expected, next_run_at) → bool                        │
│   ├── record_run(id, queue_job_id, run_at)                                    │
│   ├── list_awaiting_outcome() → list[BackupSchedule]                          │
│   └── record_outcome(id, queue_job_id, status, failures, next_run_at) → bool  │
└──────────────────────────────────────────────────────────────────────────────┘

``next_run_at`` is written only through ``claim_next_run``, a compare-and-set
on the value the caller read, so two scheduler instances evaluating the same
due schedule cannot both fire it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from backplane.core.errors import ScheduleNotFoundError, ValidationError
from backplane.core.repository import BaseRepository
from backplane.core.schema import SCHEDULES_TABLE
from backplane.core.scheduling.engine import validate_schedule
from backplane.core.scheduling.models import (
    BackupSchedule,
    BlackoutPeriod,
    RunStatus,
    ScheduleType,
)
from backplane.core.timestamps import generate_ulid, to_iso8601, utc_now

logger = logging.getLogger(__name__)

SCHEDULE_COLUMNS = [
    "id", "job_id", "type", "time", "timezone", "weekdays", "monthdays",
    "interval_hours", "cron_expression", "window_start", "window_end",
    "max_runtime", "blackout_periods", "retry_on_failure", "max_retries",
    "retry_delay_minutes", "enabled", "next_run_at", "last_run_at",
    "last_run_status", "last_queue_job_id", "consecutive_failures",
    "created_at", "updated_at",
]
_SELECT = f"SELECT {', '.join(SCHEDULE_COLUMNS)} FROM {SCHEDULES_TABLE}"


# ---------------------------------------------------------------------------
# Create DTO
# ---------------------------------------------------------------------------


@dataclass
class ScheduleCreate:
    """DTO for creating a backup schedule."""

    job_id: str
    type: ScheduleType | str = ScheduleType.DAILY
    time: str = "00:00:00"
    timezone: str = "UTC"
    weekdays: int | None = None
    monthdays: int | None = None
    interval_hours: int | None = None
    cron_expression: str | None = None
    window_start: str | None = None
    window_end: str | None = None
    max_runtime: int = 14400
    blackout_periods: list[dict[str, str]] = field(default_factory=list)
    retry_on_failure: bool = True
    max_retries: int = 3
    retry_delay_minutes: int = 30
    enabled: bool = True


# ---------------------------------------------------------------------------
# Repository Implementation
# ---------------------------------------------------------------------------


class BackupScheduleRepository(BaseRepository):
    """Repository for backup schedules.

    Example:
        >>> repo = BackupScheduleRepository(conn)
        >>> schedule = repo.create(ScheduleCreate(job_id="bj-1", type="daily", time="02:00:00"))
        >>> due = repo.get_due(utc_now())
    """

    def _to_schedule(self, row: Any) -> BackupSchedule:
        return BackupSchedule.from_row(SCHEDULE_COLUMNS, row, self.loads)

    # === CRUD Operations ===

    def create(self, spec: ScheduleCreate, now: datetime | None = None) -> BackupSchedule:
        """Validate and insert a schedule; one schedule per backup job."""
        now = now or utc_now()
        schedule = BackupSchedule(
            id=generate_ulid(),
            job_id=spec.job_id,
            type=ScheduleType(spec.type),
            time=spec.time,
            timezone=spec.timezone,
            weekdays=spec.weekdays,
            monthdays=spec.monthdays,
            interval_hours=spec.interval_hours,
            cron_expression=spec.cron_expression,
            window_start=spec.window_start,
            window_end=spec.window_end,
            max_runtime=spec.max_runtime,
            blackout_periods=[BlackoutPeriod.from_dict(p) for p in spec.blackout_periods],
            retry_on_failure=spec.retry_on_failure,
            max_retries=spec.max_retries,
            retry_delay_minutes=spec.retry_delay_minutes,
            enabled=spec.enabled,
            created_at=now,
            updated_at=now,
        )
        validate_schedule(schedule)
        if self.get_by_job(spec.job_id) is not None:
            raise ValidationError(f"Backup job {spec.job_id} already has a schedule")

        self.insert(SCHEDULES_TABLE, {
            "id": schedule.id,
            "job_id": schedule.job_id,
            "type": schedule.type.value,
            "time": schedule.time,
            "timezone": schedule.timezone,
            "weekdays": schedule.weekdays,
            "monthdays": schedule.monthdays,
            "interval_hours": schedule.interval_hours,
            "cron_expression": schedule.cron_expression,
            "window_start": schedule.window_start,
            "window_end": schedule.window_end,
            "max_runtime": schedule.max_runtime,
            "blackout_periods": self.dumps([p.to_dict() for p in schedule.blackout_periods]),
            "retry_on_failure": 1 if schedule.retry_on_failure else 0,
            "max_retries": schedule.max_retries,
            "retry_delay_minutes": schedule.retry_delay_minutes,
            "enabled": 1 if schedule.enabled else 0,
            "consecutive_failures": 0,
            "created_at": to_iso8601(now),
            "updated_at": to_iso8601(now),
        })
        logger.info("Created %s schedule %s for backup job %s", schedule.type.value, schedule.id, schedule.job_id)
        return schedule

    def get(self, schedule_id: str) -> BackupSchedule | None:
        row = self.select_one(f"{_SELECT} WHERE id = ?", (schedule_id,))
        return self._to_schedule(row) if row else None

    def get_by_job(self, job_id: str) -> BackupSchedule | None:
        row = self.select_one(f"{_SELECT} WHERE job_id = ?", (job_id,))
        return self._to_schedule(row) if row else None

    def require_by_job(self, job_id: str) -> BackupSchedule:
        schedule = self.get_by_job(job_id)
        if schedule is None:
            raise ScheduleNotFoundError(job_id)
        return schedule

    def list_all(self) -> list[BackupSchedule]:
        return [self._to_schedule(r) for r in self.select(f"{_SELECT} ORDER BY created_at, id")]

    def list_enabled(self) -> list[BackupSchedule]:
        rows = self.select(f"{_SELECT} WHERE enabled = 1 ORDER BY created_at, id")
        return [self._to_schedule(r) for r in rows]

    def count_enabled(self) -> int:
        row = self.select_one(f"SELECT COUNT(*) FROM {SCHEDULES_TABLE} WHERE enabled = 1")
        return row[0] if row else 0

    def set_enabled(self, job_id: str, enabled: bool, next_run_at: datetime | None = None) -> bool:
        """Pause or resume; resuming also resets ``next_run_at``."""
        now = utc_now()
        if enabled:
            return self.update(
                f"UPDATE {SCHEDULES_TABLE} SET enabled = 1, next_run_at = ?, updated_at = ? "
                "WHERE job_id = ?",
                (to_iso8601(next_run_at), to_iso8601(now), job_id),
            ) == 1
        return self.update(
            f"UPDATE {SCHEDULES_TABLE} SET enabled = 0, updated_at = ? WHERE job_id = ?",
            (to_iso8601(now), job_id),
        ) == 1

    def delete(self, job_id: str) -> bool:
        return self.update(f"DELETE FROM {SCHEDULES_TABLE} WHERE job_id = ?", (job_id,)) == 1

    # === Scheduler Loop Operations ===

    def get_due(self, now: datetime) -> list[BackupSchedule]:
        """Enabled schedules whose ``next_run_at`` is at or before *now*."""
        rows = self.select(
            f"{_SELECT} WHERE enabled = 1 AND next_run_at IS NOT NULL AND next_run_at <= ? "
            "ORDER BY next_run_at, id",
            (to_iso8601(now),),
        )
        return [self._to_schedule(r) for r in rows]

    def list_uninitialized(self) -> list[BackupSchedule]:
        """Enabled recurring schedules that have never had a next run computed."""
        rows = self.select(
            f"{_SELECT} WHERE enabled = 1 AND next_run_at IS NULL AND type != ? "
            "AND last_run_at IS NULL ORDER BY created_at, id",
            (ScheduleType.MANUAL.value,),
        )
        return [self._to_schedule(r) for r in rows]

    def claim_next_run(
        self,
        schedule_id: str,
        expected: datetime | None,
        next_run_at: datetime | None,
    ) -> bool:
        """Move ``next_run_at`` from *expected* to *next_run_at*; ``False`` if someone else did."""
        now = to_iso8601(utc_now())
        if expected is None:
            return self.update(
                f"UPDATE {SCHEDULES_TABLE} SET next_run_at = ?, updated_at = ? "
                "WHERE id = ? AND next_run_at IS NULL",
                (to_iso8601(next_run_at), now, schedule_id),
            ) == 1
        return self.update(
            f"UPDATE {SCHEDULES_TABLE} SET next_run_at = ?, updated_at = ? "
            "WHERE id = ? AND next_run_at = ?",
            (to_iso8601(next_run_at), now, schedule_id, to_iso8601(expected)),
        ) == 1

    def record_run(self, schedule_id: str, queue_job_id: str | None, run_at: datetime, status: RunStatus) -> None:
        """Remember what the last evaluation did (queued a job or skipped).

        A skip never replaces a queued run whose outcome is still awaited.
        """
        if queue_job_id is None:
            self.update(
                f"UPDATE {SCHEDULES_TABLE} SET last_run_status = ?, updated_at = ? "
                "WHERE id = ? AND (last_run_status IS NULL OR last_run_status <> ?)",
                (RunStatus(status).value, to_iso8601(utc_now()), schedule_id, RunStatus.QUEUED.value),
            )
            return
        self.update(
            f"UPDATE {SCHEDULES_TABLE} SET last_run_at = ?, last_run_status = ?, "
            "last_queue_job_id = ?, updated_at = ? WHERE id = ?",
            (to_iso8601(run_at), RunStatus(status).value, queue_job_id,
             to_iso8601(utc_now()), schedule_id),
        )

    def list_awaiting_outcome(self) -> list[BackupSchedule]:
        rows = self.select(
            f"{_SELECT} WHERE last_run_status = ? AND last_queue_job_id IS NOT NULL "
            "ORDER BY last_run_at, id",
            (RunStatus.QUEUED.value,),
        )
        return [self._to_schedule(r) for r in rows]

    def record_outcome(
        self,
        schedule_id: str,
        queue_job_id: str,
        status: RunStatus,
        consecutive_failures: int,
        next_run_at: datetime | None = None,
    ) -> bool:
        """Settle the outcome of *queue_job_id* once.

        Guarded on the schedule still waiting for that job, so concurrent
        scheduler instances count a failure once.
        """
        now = to_iso8601(utc_now())
        sets = "last_run_status = ?, consecutive_failures = ?, updated_at = ?"
        params: list[Any] = [RunStatus(status).value, consecutive_failures, now]
        if next_run_at is not None:
            sets += ", next_run_at = ?"
            params.append(to_iso8601(next_run_at))
        return self.update(
            f"UPDATE {SCHEDULES_TABLE} SET {sets} "
            "WHERE id = ? AND last_queue_job_id = ? AND last_run_status = ?",
            (*params, schedule_id, queue_job_id, RunStatus.QUEUED.value),
        ) == 1
