"""Built-in job handlers.

``backup_run`` is the job the scheduler loop pushes for every due backup.
Its handler does not run the backup itself: it resolves which agent owns
the backup job and hands it one :class:`~backplane.execution.models.AgentTask`
bound to the job through ``job_id``. The job then stays ``running`` until
the sweeper derives its terminal state from the task.

ARCHITECTURE
────────────
::

    JobWorker ──claim()──► Job(type="backup_run")
                              │
                   BackupRunHandler(job)
                              │  resolver.resolve(backup_job_id, payload)
                              ▼
                   dispatcher.create(agent_id, task_type, job_id=job.id,
                                     timeout_seconds=max_runtime)
                              │
                   return AWAIT_TASKS  (job stays running)

Backup-job records live outside this package; a
:class:`BackupTargetResolver` is the narrow contract to them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from backplane.core.errors import ValidationError
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.models import Job, TaskPriority
from backplane.execution.registry import HandlerRegistry

logger = logging.getLogger(__name__)

BACKUP_RUN = "backup_run"
DEFAULT_TASK_TYPE = "backup"
DEFAULT_MAX_RUNTIME = 14400


class _AwaitTasks:
    """Sentinel: the job is finished by its agent tasks, not by the handler."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "AWAIT_TASKS"


AWAIT_TASKS = _AwaitTasks()


@dataclass
class BackupTarget:
    """Where and how a backup job runs."""

    agent_id: str
    task_type: str = DEFAULT_TASK_TYPE
    payload: dict[str, Any] = field(default_factory=dict)
    priority: TaskPriority | str = TaskPriority.NORMAL


@runtime_checkable
class BackupTargetResolver(Protocol):
    """Maps a backup job id to the agent that should run it."""

    def resolve(self, backup_job_id: str, payload: dict[str, Any]) -> BackupTarget: ...


class PayloadTargetResolver:
    """Reads the target from the job payload.

    Expects ``agent_id`` in the payload; ``task_type``, ``task_payload`` and
    ``priority`` are optional.
    """

    def resolve(self, backup_job_id: str, payload: dict[str, Any]) -> BackupTarget:
        agent_id = payload.get("agent_id")
        if not agent_id:
            raise ValidationError(
                f"Backup job {backup_job_id} has no agent_id in its payload"
            ).with_context(backup_job_id=backup_job_id)
        task_payload = dict(payload.get("task_payload") or {})
        task_payload.setdefault("backup_job_id", backup_job_id)
        return BackupTarget(
            agent_id=agent_id,
            task_type=payload.get("task_type", DEFAULT_TASK_TYPE),
            payload=task_payload,
            priority=payload.get("priority", TaskPriority.NORMAL),
        )


class BackupRunHandler:
    """Turns a ``backup_run`` job into one agent task bound to the job."""

    def __init__(
        self,
        dispatcher: AgentTaskDispatcher,
        resolver: BackupTargetResolver | None = None,
        *,
        task_max_attempts: int = 1,
    ) -> None:
        self.dispatcher = dispatcher
        self.resolver = resolver or PayloadTargetResolver()
        # Retries of a scheduled backup happen at job level.
        self.task_max_attempts = task_max_attempts

    def __call__(self, job: Job) -> Any:
        backup_job_id = job.payload.get("backup_job_id")
        if not backup_job_id:
            raise ValidationError(f"Job {job.id} has no backup_job_id").with_context(job_id=job.id)

        target = self.resolver.resolve(str(backup_job_id), job.payload)
        payload = {
            **target.payload,
            "backup_job_id": backup_job_id,
            "schedule_id": job.payload.get("schedule_id"),
            "scheduled_for": job.payload.get("scheduled_for"),
        }
        task = self.dispatcher.create(
            target.agent_id,
            target.task_type,
            payload,
            priority=target.priority,
            job_id=job.id,
            timeout_seconds=int(job.payload.get("max_runtime") or DEFAULT_MAX_RUNTIME),
            max_attempts=self.task_max_attempts,
            created_by=job.payload.get("triggered_by") or "worker",
        )
        logger.info(
            "Job %s dispatched backup %s to agent %s as task %s",
            job.id, backup_job_id, target.agent_id, task.id,
        )
        return AWAIT_TASKS


def register_builtin_handlers(
    registry: HandlerRegistry,
    dispatcher: AgentTaskDispatcher,
    resolver: BackupTargetResolver | None = None,
) -> HandlerRegistry:
    """Register ``backup_run`` on *registry* and return it."""
    registry.register(
        BACKUP_RUN,
        BackupRunHandler(dispatcher, resolver),
        description="Dispatch a scheduled backup to its agent.",
    )
    return registry
