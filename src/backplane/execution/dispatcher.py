"""
Agent Task Dispatcher: pull-based work for remote agents.

Manifesto:
    Agents are untrusted, intermittently connected and never reachable from
    the server. They poll for work, claim it, report progress and finish it.
    Every hop is a conditional update on the task row, so two agents (or an
    agent and the sweeper) racing on the same task produce exactly one
    winner and the loser is told so.

ARCHITECTURE
────────────
::

    create() ──► pending ──assign()──► assigned ──start()──► running
                   ▲  │                   │                    │
                   │  └──cancel()─────────┴──► cancelled       ├─complete()─► completed
                   │                      │                    │
                   │   reset_stale_assigned()                  ├─fail()─┬─► failed (budget spent)
                   └──────────────────────┘                    │        │
                   └──────────── retry_after gate ◄────────────┴────────┘
                                                  fail_timed_out() uses the same path

Progress reported on a task linked to a job is forwarded to the job queue.

Tags:
    backplane, execution, agent, dispatcher, cas, retry, backoff
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from backplane.core.errors import (
    AuthError,
    InvalidTransitionError,
    TaskNotFoundError,
)
from backplane.core.protocols import Connection
from backplane.core.timestamps import utc_now
from backplane.execution.models import AgentTask, TaskPriority, TaskStatus, clamp_progress
from backplane.execution.queue import JobQueue
from backplane.execution.retry import DEFAULT_RETRY_POLICY, TaskRetryPolicy
from backplane.execution.task_repository import AgentTaskRepository

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "Task timed out after {seconds}s"


@dataclass
class TaskFailureOutcome:
    """What happened to a failed task: requeued with a delay, or terminal."""

    task: AgentTask
    requeued: bool
    retry_after: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task.id,
            "status": self.task.status.value,
            "requeued": self.requeued,
            "attempts": self.task.attempts,
            "retry_after": self.retry_after.isoformat() if self.retry_after else None,
        }


class AgentTaskDispatcher:
    """Dispatches agent tasks through their lifecycle.

    Example:
        >>> dispatcher = AgentTaskDispatcher(conn, job_queue=queue)
        >>> task = dispatcher.create("agent-7", "backup", {"paths": ["/srv"]})
        >>> [t.id for t in dispatcher.list_pending("agent-7")] == [task.id]
        True
        >>> dispatcher.assign(task.id)
        True
        >>> dispatcher.assign(task.id)
        False
    """

    def __init__(
        self,
        conn: Connection,
        job_queue: JobQueue | None = None,
        *,
        retry_policy: TaskRetryPolicy = DEFAULT_RETRY_POLICY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = AgentTaskRepository(conn)
        self.job_queue = job_queue
        self.retry_policy = retry_policy
        self._clock = clock or utc_now

    # === Creation and polling ===

    def create(
        self,
        agent_id: str,
        type: str,
        payload: dict[str, Any] | None = None,
        priority: TaskPriority | str = TaskPriority.NORMAL,
        job_id: str | None = None,
        timeout_seconds: int = 3600,
        max_attempts: int = 3,
        created_by: str | None = None,
    ) -> AgentTask:
        task = AgentTask.create(
            agent_id,
            type,
            payload,
            priority=priority,
            job_id=job_id,
            timeout_seconds=timeout_seconds,
            max_attempts=max_attempts,
            created_by=created_by,
            now=self._clock(),
        )
        self.repository.insert_task(task)
        logger.info(
            "Created agent task %s (type=%s, agent=%s, priority=%s, job=%s)",
            task.id, type, agent_id, task.priority.value, job_id,
        )
        return task

    def list_pending(self, agent_id: str, limit: int = 5, now: datetime | None = None) -> list[AgentTask]:
        """Pending tasks eligible now: highest priority first, then oldest."""
        return self.repository.pending_for_agent(agent_id, now or self._clock(), limit)

    # === Lifecycle ===

    def assign(self, task_id: str) -> bool:
        """pending → assigned. ``False`` means another caller got there first."""
        won = self.repository.mark_assigned(task_id, self._clock())
        if won:
            logger.debug("Assigned agent task %s", task_id)
        return won

    def start(self, task_id: str) -> AgentTask:
        """assigned → running."""
        if not self.repository.mark_running(task_id, self._clock()):
            self._reject(task_id, TaskStatus.RUNNING)
        task = self._load(task_id)
        logger.info("Agent task %s started on agent %s", task_id, task.agent_id)
        return task

    def claim(self, task_id: str, agent_id: str) -> AgentTask:
        """Assign then start *task_id* on behalf of *agent_id*.

        Raises:
            TaskNotFoundError: unknown task.
            AuthError: the task belongs to another agent.
            InvalidTransitionError: the task is no longer pending.
        """
        task = self._load(task_id)
        self._check_owner(task, agent_id)
        if not self.assign(task_id):
            self._reject(task_id, TaskStatus.ASSIGNED)
        return self.start(task_id)

    def report_progress(
        self,
        task_id: str,
        percent: int | float,
        message: str | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> bool:
        """Record progress on a running task; ``False`` when it is not running."""
        progress = clamp_progress(percent)
        if not self.repository.set_progress(task_id, progress, message, self._clock()):
            return False
        task = self.repository.get(task_id)
        if task is not None and task.job_id and self.job_queue is not None:
            self._forward_progress(task, progress, message, metrics)
        return True

    def complete(self, task_id: str, result: Any = None, exit_code: int = 0) -> AgentTask:
        """running → completed with progress 100."""
        if not self.repository.mark_completed(task_id, result, exit_code, self._clock()):
            self._reject(task_id, TaskStatus.COMPLETED)
        task = self._load(task_id)
        logger.info("Agent task %s completed (exit_code=%s)", task_id, exit_code)
        return task

    def fail(self, task_id: str, error: str, exit_code: int | None = None) -> TaskFailureOutcome:
        """Record a failure and requeue the task while its budget lasts.

        Only assigned or running tasks can fail. The update is guarded on the
        attempt counter that was read, so concurrent failures of the same
        run count once.
        """
        task = self._load(task_id)
        if task.status not in (TaskStatus.ASSIGNED, TaskStatus.RUNNING):
            self._reject(task_id, TaskStatus.FAILED, current=task)
        outcome = self._apply_failure(task, error or "Unknown error", exit_code)
        if outcome is None:
            self._reject(task_id, TaskStatus.FAILED)
        return outcome

    def cancel(self, task_id: str) -> AgentTask:
        """Cancel a task that has not started yet."""
        if not self.repository.mark_cancelled(task_id, self._clock()):
            self._reject(task_id, TaskStatus.CANCELLED)
        logger.info("Cancelled agent task %s", task_id)
        return self._load(task_id)

    # === Recovery (driven by the sweeper) ===

    def reset_stale_assigned(self, grace_seconds: int = 60, now: datetime | None = None) -> int:
        """Return assigned tasks that never started within *grace_seconds* to pending."""
        now = now or self._clock()
        count = self.repository.reset_assigned_before(now - timedelta(seconds=grace_seconds), now)
        if count:
            logger.warning("Reset %d stale assigned task(s) to pending", count)
        return count

    def fail_timed_out(self, now: datetime | None = None) -> list[TaskFailureOutcome]:
        """Force-fail running tasks past their timeout through the retry policy.

        Each reclaim is guarded on ``(id, status='running', started_at)``;
        a task that finished or was reclaimed meanwhile is skipped.
        """
        now = now or self._clock()
        outcomes = []
        for task in self.repository.running():
            deadline = task.started_at + timedelta(seconds=task.timeout_seconds)
            if deadline >= now:
                continue
            outcome = self._apply_failure(
                task, TIMEOUT_ERROR.format(seconds=task.timeout_seconds), None, now=now
            )
            if outcome is not None:
                logger.warning(
                    "Agent task %s on agent %s timed out (requeued=%s)",
                    task.id, task.agent_id, outcome.requeued,
                )
                outcomes.append(outcome)
        return outcomes

    # === Queries and bulk operations ===

    def get_task(self, task_id: str) -> AgentTask:
        return self._load(task_id)

    def find_task(self, task_id: str) -> AgentTask | None:
        return self.repository.get(task_id)

    def list_tasks(
        self,
        agent_id: str | None = None,
        status: TaskStatus | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AgentTask]:
        status = TaskStatus(status) if status is not None else None
        return self.repository.list_tasks(agent_id=agent_id, status=status, limit=limit, offset=offset)

    def find_by_job(self, job_id: str) -> list[AgentTask]:
        return self.repository.by_job(job_id)

    def find_running_for_agent(self, agent_id: str) -> list[AgentTask]:
        return self.repository.by_agent_and_status(agent_id, TaskStatus.RUNNING)

    def cancel_all_pending_for_agent(self, agent_id: str) -> int:
        """Cancel every pending or assigned task of *agent_id* (e.g. agent removed)."""
        count = self.repository.cancel_open_for_agent(agent_id, self._clock())
        if count:
            logger.info("Cancelled %d open task(s) for agent %s", count, agent_id)
        return count

    def cancel_open_for_job(self, job_id: str) -> int:
        count = self.repository.cancel_open_for_job(job_id, self._clock())
        if count:
            logger.info("Cancelled %d open task(s) of job %s", count, job_id)
        return count

    def get_stats_for_agent(self, agent_id: str) -> dict[str, int]:
        counts = self.repository.counts_for_agent(agent_id)
        stats = {s.value: counts.get(s.value, 0) for s in TaskStatus}
        stats["total"] = sum(counts.values())
        return stats

    def delete_old_tasks(self, days: int = 30) -> int:
        deleted = self.repository.delete_finished_before(self._clock() - timedelta(days=days))
        if deleted:
            logger.info("Deleted %d finished task(s) older than %d days", deleted, days)
        return deleted

    # === Internals ===

    def _apply_failure(
        self,
        task: AgentTask,
        error: str,
        exit_code: int | None,
        now: datetime | None = None,
    ) -> TaskFailureOutcome | None:
        now = now or self._clock()
        if self.retry_policy.should_retry(task.attempts, task.max_attempts):
            retry_after = self.retry_policy.retry_after(task.attempts, now)
            if not self.repository.requeue_failed(task, error, exit_code, retry_after, now):
                return None
            logger.warning(
                "Agent task %s failed (attempt %d/%d), retry after %s: %s",
                task.id, task.attempts + 1, task.max_attempts, retry_after.isoformat(), error,
            )
            return TaskFailureOutcome(self._load(task.id), requeued=True, retry_after=retry_after)

        if not self.repository.mark_failed(task, error, exit_code, now):
            return None
        logger.error(
            "Agent task %s failed permanently after %d attempt(s): %s",
            task.id, task.attempts + 1, error,
        )
        return TaskFailureOutcome(self._load(task.id), requeued=False)

    def _forward_progress(
        self,
        task: AgentTask,
        progress: int,
        message: str | None,
        metrics: dict[str, Any] | None,
    ) -> None:
        try:
            self.job_queue.update_progress(task.job_id, progress, message)
        except InvalidTransitionError:
            logger.debug("Job %s is not running; progress of task %s not forwarded", task.job_id, task.id)
            return
        if metrics:
            self.job_queue.set_progress_info(task.job_id, metrics)

    def _check_owner(self, task: AgentTask, agent_id: str) -> None:
        if task.agent_id != agent_id:
            raise AuthError(
                f"Agent task {task.id} is not addressed to agent {agent_id}"
            ).with_context(task_id=task.id, agent_id=agent_id)

    def _load(self, task_id: str) -> AgentTask:
        task = self.repository.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _reject(self, task_id: str, target: TaskStatus, *, current: AgentTask | None = None) -> None:
        current = current or self._load(task_id)
        raise InvalidTransitionError(
            f"Cannot move agent task {task_id} from {current.status.value} to {target.value}",
            current=current.status.value,
            target=target.value,
        ).with_context(task_id=task_id, agent_id=current.agent_id)
