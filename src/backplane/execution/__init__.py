"""Backplane Execution: job queue, agent task dispatch and the job worker.

ARCHITECTURE
────────────
::

    JobQueue (durable jobs, progress projection)
      │  push / claim / update_progress / complete / fail / cancel / retry
      ▼
    JobWorker ── HandlerRegistry ── BackupRunHandler
      │                                  │ create(job_id=...)
      ▼                                  ▼
    AgentTaskDispatcher (pull protocol for agents)
      ├── AgentTaskRepository  ─ CAS transitions on core_agent_tasks
      └── TaskRetryPolicy      ─ linear backoff, capped

MODULE MAP
──────────
  models.py           ─ Job, AgentTask, status enums, transition tables
  job_repository.py   ─ SQL for core_jobs
  queue.py            ─ JobQueue
  task_repository.py  ─ SQL for core_agent_tasks
  retry.py            ─ TaskRetryPolicy
  dispatcher.py       ─ AgentTaskDispatcher, TaskFailureOutcome
  registry.py         ─ HandlerRegistry
  handlers.py         ─ backup_run handler, BackupTargetResolver
  worker.py           ─ JobWorker
"""

from backplane.execution.dispatcher import AgentTaskDispatcher, TaskFailureOutcome
from backplane.execution.handlers import (
    AWAIT_TASKS,
    BACKUP_RUN,
    BackupRunHandler,
    BackupTarget,
    BackupTargetResolver,
    PayloadTargetResolver,
    register_builtin_handlers,
)
from backplane.execution.models import (
    AgentTask,
    Job,
    JobStatus,
    TaskPriority,
    TaskStatus,
)
from backplane.execution.queue import PROGRESS_KEY, JobQueue
from backplane.execution.registry import (
    HandlerRegistry,
    get_default_registry,
    register_handler,
    reset_default_registry,
)
from backplane.execution.retry import DEFAULT_RETRY_POLICY, TaskRetryPolicy
from backplane.execution.worker import JobWorker, WorkerStats

__all__ = [
    "AWAIT_TASKS",
    "AgentTask",
    "AgentTaskDispatcher",
    "BACKUP_RUN",
    "BackupRunHandler",
    "BackupTarget",
    "BackupTargetResolver",
    "DEFAULT_RETRY_POLICY",
    "HandlerRegistry",
    "Job",
    "JobQueue",
    "JobStatus",
    "JobWorker",
    "PROGRESS_KEY",
    "PayloadTargetResolver",
    "TaskFailureOutcome",
    "TaskPriority",
    "TaskRetryPolicy",
    "TaskStatus",
    "WorkerStats",
    "get_default_registry",
    "register_builtin_handlers",
    "register_handler",
    "reset_default_registry",
]
