"""Job and agent task models.

Two independent state machines live here. A ``Job`` is a unit of
asynchronous work tracked by the job queue; an ``AgentTask`` is a unit of
work addressed to one remote agent, optionally fulfilling a job through
``job_id``. Their attempt counters are separate: a job's terminal state is
derived from its tasks by the sweeper, never coupled implicitly.

Job transitions::

    PENDING   → RUNNING | CANCELLED
    RUNNING   → COMPLETED | FAILED | CANCELLED
    FAILED    → PENDING (retry, while attempts < max_attempts)
    COMPLETED → (terminal)
    CANCELLED → (terminal)

Agent task transitions::

    PENDING   → ASSIGNED | CANCELLED
    ASSIGNED  → RUNNING | PENDING (stale) | FAILED | CANCELLED
    RUNNING   → COMPLETED | FAILED | PENDING (retry with backoff)
    COMPLETED / FAILED / CANCELLED → (terminal)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from backplane.core.timestamps import from_iso8601, generate_ulid, utc_now


class JobStatus(str, Enum):
    """Status of a queued job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskStatus(str, Enum):
    """Status of an agent task."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class TaskPriority(str, Enum):
    """Agent task priority. Lower rank is served first."""

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 3,
}


def clamp_progress(value: int | float | None) -> int:
    """Clamp an advisory progress value to the non-terminal band 0..99."""
    if value is None:
        return 0
    return max(0, min(99, int(value)))


def _row_dict(columns: Sequence[str], row: Any) -> dict[str, Any]:
    if isinstance(row, Mapping):
        return dict(row)
    return dict(zip(columns, row))


@dataclass
class Job:
    """A unit of asynchronous work tracked by the job queue.

    ``log`` is append-only (progress lines); ``result`` is written once by
    ``complete``.

    Example:
        >>> job = Job.create("backup_run", {"backup_job_id": "bj-1"})
        >>> job.status
        <JobStatus.PENDING: 'pending'>
    """

    id: str
    type: str
    payload: dict[str, Any]
    queue: str = "default"
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    attempts: int = 0
    max_attempts: int = 3
    log: str | None = None
    result: Any = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    created_by: str | None = None

    @classmethod
    def create(
        cls,
        type: str,
        payload: dict[str, Any] | None = None,
        queue: str = "default",
        max_attempts: int = 3,
        created_by: str | None = None,
        now: datetime | None = None,
    ) -> Job:
        """Create a new job in PENDING status."""
        now = now or utc_now()
        return cls(
            id=generate_ulid(),
            type=type,
            payload=payload or {},
            queue=queue,
            max_attempts=max_attempts,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    @property
    def can_retry(self) -> bool:
        return self.status == JobStatus.FAILED and self.attempts < self.max_attempts

    @property
    def is_terminal(self) -> bool:
        if self.status == JobStatus.FAILED:
            return not self.can_retry
        return self.status in (JobStatus.COMPLETED, JobStatus.CANCELLED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "queue": self.queue,
            "type": self.type,
            "payload": self.payload,
            "status": self.status.value,
            "progress": self.progress,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "log": self.log,
            "result": self.result,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
        }

    @classmethod
    def from_row(cls, columns: Sequence[str], row: Any, loads: Any) -> Job:
        d = _row_dict(columns, row)
        return cls(
            id=d["id"],
            queue=d["queue"],
            type=d["type"],
            payload=loads(d["payload"]) or {},
            status=JobStatus(d["status"]),
            progress=d["progress"] or 0,
            attempts=d["attempts"] or 0,
            max_attempts=d["max_attempts"],
            log=d["log"],
            result=loads(d["result"]),
            error=d["error"],
            started_at=from_iso8601(d["started_at"]),
            completed_at=from_iso8601(d["completed_at"]),
            created_at=from_iso8601(d["created_at"]),
            updated_at=from_iso8601(d["updated_at"]),
            created_by=d["created_by"],
        )


@dataclass
class AgentTask:
    """A unit of work addressed to exactly one agent.

    ``retry_after`` gates re-eligibility after a failure; ``timeout_seconds``
    bounds how long the task may stay running before the sweeper reclaims it.
    """

    id: str
    agent_id: str
    type: str
    payload: dict[str, Any]
    job_id: str | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    progress_message: str | None = None
    result: Any = None
    exit_code: int | None = None
    error: str | None = None
    attempts: int = 0
    max_attempts: int = 3
    retry_after: datetime | None = None
    timeout_seconds: int = 3600
    created_at: datetime = field(default_factory=utc_now)
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = field(default_factory=utc_now)
    created_by: str | None = None

    @classmethod
    def create(
        cls,
        agent_id: str,
        type: str,
        payload: dict[str, Any] | None = None,
        priority: TaskPriority | str = TaskPriority.NORMAL,
        job_id: str | None = None,
        timeout_seconds: int = 3600,
        max_attempts: int = 3,
        created_by: str | None = None,
        now: datetime | None = None,
    ) -> AgentTask:
        """Create a new task in PENDING status."""
        now = now or utc_now()
        return cls(
            id=generate_ulid(),
            agent_id=agent_id,
            type=type,
            payload=payload or {},
            job_id=job_id,
            priority=TaskPriority(priority),
            timeout_seconds=timeout_seconds,
            max_attempts=max_attempts,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "job_id": self.job_id,
            "type": self.type,
            "priority": self.priority.value,
            "payload": self.payload,
            "status": self.status.value,
            "progress": self.progress,
            "progress_message": self.progress_message,
            "result": self.result,
            "exit_code": self.exit_code,
            "error": self.error,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "retry_after": self.retry_after.isoformat() if self.retry_after else None,
            "timeout_seconds": self.timeout_seconds,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
        }

    @classmethod
    def from_row(cls, columns: Sequence[str], row: Any, loads: Any) -> AgentTask:
        d = _row_dict(columns, row)
        return cls(
            id=d["id"],
            agent_id=d["agent_id"],
            job_id=d["job_id"],
            type=d["type"],
            priority=TaskPriority(d["priority"]),
            payload=loads(d["payload"]) or {},
            status=TaskStatus(d["status"]),
            progress=d["progress"] or 0,
            progress_message=d["progress_message"],
            result=loads(d["result"]),
            exit_code=d["exit_code"],
            error=d["error"],
            attempts=d["attempts"] or 0,
            max_attempts=d["max_attempts"],
            retry_after=from_iso8601(d["retry_after"]),
            timeout_seconds=d["timeout_seconds"],
            created_at=from_iso8601(d["created_at"]),
            assigned_at=from_iso8601(d["assigned_at"]),
            started_at=from_iso8601(d["started_at"]),
            completed_at=from_iso8601(d["completed_at"]),
            updated_at=from_iso8601(d["updated_at"]),
            created_by=d["created_by"],
        )
