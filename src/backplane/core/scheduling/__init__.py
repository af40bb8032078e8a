"""Scheduling for backplane: schedule engine, scheduler loop and sweeper.

Manifesto:
    Backup schedules need more than ``time.sleep()`` in a loop. Due
    instants are computed in each schedule's timezone and gated by
    maintenance windows and blackouts; firing is decided by a
    compare-and-set on ``next_run_at`` so several instances can run; and
    agents that vanish mid-task are reclaimed by a sweeper instead of
    leaving work stuck forever.

Quick start::

    from backplane.core.scheduling import create_scheduler, create_sweeper

    scheduler = create_scheduler(conn, queue, interval_seconds=60)
    sweeper = create_sweeper(dispatcher, queue, interval_seconds=30)
    scheduler.start()
    sweeper.start()

Modules:
    models.py          ─ BackupSchedule, ScheduleType, BlackoutPeriod
    engine.py          ─ next_run, should_fire_now, next_eligible_run
    repository.py      ─ BackupScheduleRepository, ScheduleCreate
    protocol.py        ─ SchedulerBackend protocol
    thread_backend.py  ─ ThreadSchedulerBackend (default ticker)
    service.py         ─ SchedulerService (scheduler loop)
    sweeper.py         ─ Sweeper

Guardrails:
    ❌ Treating a candidate rejected by should_fire_now as due
    ✅ ``next_eligible_run()`` moves on to the next candidate
    ❌ Writing next_run_at with a plain UPDATE
    ✅ ``claim_next_run()`` compare-and-set on the value read
    ❌ Constructing scheduler components individually
    ✅ ``create_scheduler()`` / ``create_sweeper()`` factories
"""

from __future__ import annotations

from .engine import (
    describe,
    monthdays_bitmap,
    next_eligible_run,
    next_run,
    selected_monthdays,
    selected_weekdays,
    should_fire_now,
    upcoming_runs,
    validate_schedule,
    weekdays_bitmap,
)
from .models import BackupSchedule, BlackoutPeriod, RunStatus, ScheduleType
from .protocol import BackendHealth, SchedulerBackend
from .repository import BackupScheduleRepository, ScheduleCreate
from .service import SchedulerHealth, SchedulerService, SchedulerStats, TickResult
from .sweeper import SweepResult, Sweeper
from .thread_backend import ThreadSchedulerBackend

__all__ = [
    # Engine
    "describe",
    "monthdays_bitmap",
    "next_eligible_run",
    "next_run",
    "selected_monthdays",
    "selected_weekdays",
    "should_fire_now",
    "upcoming_runs",
    "validate_schedule",
    "weekdays_bitmap",
    # Models
    "BackupSchedule",
    "BlackoutPeriod",
    "RunStatus",
    "ScheduleType",
    # Protocol / backends
    "BackendHealth",
    "SchedulerBackend",
    "ThreadSchedulerBackend",
    # Repository
    "BackupScheduleRepository",
    "ScheduleCreate",
    # Services
    "SchedulerHealth",
    "SchedulerService",
    "SchedulerStats",
    "SweepResult",
    "Sweeper",
    "TickResult",
    "create_scheduler",
    "create_sweeper",
]


def create_scheduler(
    conn,
    queue,
    interval_seconds: float = 60.0,
    queue_name: str = "default",
) -> SchedulerService:
    """Factory: a scheduler loop wired to a thread backend.

    Args:
        conn: Database connection
        queue: JobQueue the backup_run jobs are pushed to
        interval_seconds: Tick interval
        queue_name: Queue name for pushed jobs

    Example:
        >>> scheduler = create_scheduler(conn, queue)
        >>> scheduler.start()
    """
    return SchedulerService(
        backend=ThreadSchedulerBackend(thread_name="backplane-scheduler"),
        repository=BackupScheduleRepository(conn),
        queue=queue,
        queue_name=queue_name,
        interval_seconds=interval_seconds,
    )


def create_sweeper(
    dispatcher,
    queue,
    interval_seconds: float = 30.0,
    assigned_grace_seconds: int = 60,
) -> Sweeper:
    """Factory: a sweeper wired to a thread backend."""
    return Sweeper(
        dispatcher,
        queue,
        backend=ThreadSchedulerBackend(thread_name="backplane-sweeper"),
        assigned_grace_seconds=assigned_grace_seconds,
        interval_seconds=interval_seconds,
    )
