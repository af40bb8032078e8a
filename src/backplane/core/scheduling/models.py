"""Backup schedule models (``core_backup_schedules``).

A schedule describes when a backup job should run: one recurrence shape
(selected by ``type``), an optional daily maintenance window, blackout
periods and a failure retry policy. The bookkeeping fields at the end
(``enabled`` … ``consecutive_failures``) are owned by the scheduler loop.

Weekday bitmask: bit 0 = Monday … bit 6 = Sunday.
Monthday bitmask: bit 0 = day 1 … bit 30 = day 31.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from backplane.core.timestamps import from_iso8601, utc_now


class ScheduleType(str, Enum):
    """Recurrence shape of a backup schedule."""

    MANUAL = "manual"
    INTERVAL = "interval"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


class RunStatus(str, Enum):
    """Outcome recorded in ``last_run_status``."""

    QUEUED = "queued"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BlackoutPeriod:
    """An inclusive range during which a schedule must not fire.

    ``start``/``end`` are either ISO datetimes (absolute range) or
    ``HH:MM[:SS]`` times of day (recurring daily range, may cross midnight).
    """

    start: str
    end: str

    @property
    def is_recurring(self) -> bool:
        return "T" not in self.start and "-" not in self.start

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BlackoutPeriod:
        return cls(start=str(data["start"]), end=str(data["end"]))

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass
class BackupSchedule:
    """Schedule row for one backup job."""

    id: str
    job_id: str
    type: ScheduleType = ScheduleType.DAILY
    time: str = "00:00:00"
    timezone: str = "UTC"
    weekdays: int | None = None
    monthdays: int | None = None
    interval_hours: int | None = None
    cron_expression: str | None = None
    window_start: str | None = None
    window_end: str | None = None
    max_runtime: int = 14400
    blackout_periods: list[BlackoutPeriod] = field(default_factory=list)
    retry_on_failure: bool = True
    max_retries: int = 3
    retry_delay_minutes: int = 30
    enabled: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: str | None = None
    last_queue_job_id: str | None = None
    consecutive_failures: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def job_max_attempts(self) -> int:
        """Attempt budget of the ``backup_run`` jobs this schedule pushes."""
        return self.max_retries + 1 if self.retry_on_failure else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "type": self.type.value,
            "time": self.time,
            "timezone": self.timezone,
            "weekdays": self.weekdays,
            "monthdays": self.monthdays,
            "interval_hours": self.interval_hours,
            "cron_expression": self.cron_expression,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "max_runtime": self.max_runtime,
            "blackout_periods": [p.to_dict() for p in self.blackout_periods],
            "retry_on_failure": self.retry_on_failure,
            "max_retries": self.max_retries,
            "retry_delay_minutes": self.retry_delay_minutes,
            "enabled": self.enabled,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_queue_job_id": self.last_queue_job_id,
            "consecutive_failures": self.consecutive_failures,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_row(cls, columns: Sequence[str], row: Any, loads: Any) -> BackupSchedule:
        d = dict(row) if isinstance(row, Mapping) else dict(zip(columns, row))
        blackouts = loads(d["blackout_periods"]) or []
        return cls(
            id=d["id"],
            job_id=d["job_id"],
            type=ScheduleType(d["type"]),
            time=d["time"] or "00:00:00",
            timezone=d["timezone"] or "UTC",
            weekdays=d["weekdays"],
            monthdays=d["monthdays"],
            interval_hours=d["interval_hours"],
            cron_expression=d["cron_expression"],
            window_start=d["window_start"],
            window_end=d["window_end"],
            max_runtime=d["max_runtime"],
            blackout_periods=[BlackoutPeriod.from_dict(p) for p in blackouts],
            retry_on_failure=bool(d["retry_on_failure"]),
            max_retries=d["max_retries"],
            retry_delay_minutes=d["retry_delay_minutes"],
            enabled=bool(d["enabled"]),
            next_run_at=from_iso8601(d["next_run_at"]),
            last_run_at=from_iso8601(d["last_run_at"]),
            last_run_status=d["last_run_status"],
            last_queue_job_id=d["last_queue_job_id"],
            consecutive_failures=d["consecutive_failures"] or 0,
            created_at=from_iso8601(d["created_at"]),
            updated_at=from_iso8601(d["updated_at"]),
        )
