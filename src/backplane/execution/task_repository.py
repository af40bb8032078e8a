"""SQL access for ``core_agent_tasks``.

Poll ordering uses the integer ``priority_rank`` column (critical=0 …
low=3), never the text priority. Every transition is a conditional update
returning whether this caller won it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from backplane.core.repository import BaseRepository
from backplane.core.schema import AGENT_TASKS_TABLE
from backplane.core.timestamps import to_iso8601
from backplane.execution.models import AgentTask, TaskStatus

TASK_COLUMNS = [
    "id", "agent_id", "job_id", "type", "priority", "payload", "status",
    "progress", "progress_message", "result", "exit_code", "error", "attempts",
    "max_attempts", "retry_after", "timeout_seconds", "created_at",
    "assigned_at", "started_at", "completed_at", "updated_at", "created_by",
]
_SELECT = f"SELECT {', '.join(TASK_COLUMNS)} FROM {AGENT_TASKS_TABLE}"

_T = AGENT_TASKS_TABLE


class AgentTaskRepository(BaseRepository):
    """Rows addressed to agents."""

    def _to_task(self, row: Any) -> AgentTask:
        return AgentTask.from_row(TASK_COLUMNS, row, self.loads)

    # -- Insert / read -----------------------------------------------------

    def insert_task(self, task: AgentTask) -> None:
        self.insert(_T, {
            "id": task.id,
            "agent_id": task.agent_id,
            "job_id": task.job_id,
            "type": task.type,
            "priority": task.priority.value,
            "priority_rank": task.priority.rank,
            "payload": self.dumps(task.payload),
            "status": task.status.value,
            "progress": task.progress,
            "attempts": task.attempts,
            "max_attempts": task.max_attempts,
            "timeout_seconds": task.timeout_seconds,
            "created_at": to_iso8601(task.created_at),
            "updated_at": to_iso8601(task.updated_at),
            "created_by": task.created_by,
        })

    def get(self, task_id: str) -> AgentTask | None:
        row = self.select_one(f"{_SELECT} WHERE id = ?", (task_id,))
        return self._to_task(row) if row else None

    def pending_for_agent(self, agent_id: str, now: datetime, limit: int) -> list[AgentTask]:
        rows = self.select(
            f"{_SELECT} WHERE agent_id = ? AND status = ? "
            "AND (retry_after IS NULL OR retry_after <= ?) "
            "ORDER BY priority_rank ASC, created_at ASC, id ASC LIMIT ?",
            (agent_id, TaskStatus.PENDING.value, to_iso8601(now), limit),
        )
        return [self._to_task(r) for r in rows]

    def by_job(self, job_id: str) -> list[AgentTask]:
        rows = self.select(f"{_SELECT} WHERE job_id = ? ORDER BY created_at ASC, id ASC", (job_id,))
        return [self._to_task(r) for r in rows]

    def by_agent_and_status(self, agent_id: str, status: TaskStatus) -> list[AgentTask]:
        rows = self.select(
            f"{_SELECT} WHERE agent_id = ? AND status = ? ORDER BY started_at ASC, id ASC",
            (agent_id, status.value),
        )
        return [self._to_task(r) for r in rows]

    def list_tasks(
        self,
        agent_id: str | None = None,
        status: TaskStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AgentTask]:
        clauses, params = [], []
        if agent_id is not None:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.select(
            f"{_SELECT}{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [self._to_task(r) for r in rows]

    def running(self) -> list[AgentTask]:
        rows = self.select(
            f"{_SELECT} WHERE status = ? AND started_at IS NOT NULL ORDER BY started_at ASC",
            (TaskStatus.RUNNING.value,),
        )
        return [self._to_task(r) for r in rows]

    def counts_for_agent(self, agent_id: str) -> dict[str, int]:
        rows = self.select(
            f"SELECT status, COUNT(*) FROM {_T} WHERE agent_id = ? GROUP BY status",
            (agent_id,),
        )
        return {row[0]: row[1] for row in rows}

    # -- Conditional updates ----------------------------------------------

    def mark_assigned(self, task_id: str, now: datetime) -> bool:
        return self.update(
            f"UPDATE {_T} SET status = ?, assigned_at = ?, updated_at = ? "
            "WHERE id = ? AND status = ?",
            (TaskStatus.ASSIGNED.value, to_iso8601(now), to_iso8601(now),
             task_id, TaskStatus.PENDING.value),
        ) == 1

    def mark_running(self, task_id: str, now: datetime) -> bool:
        return self.update(
            f"UPDATE {_T} SET status = ?, started_at = ?, progress = 0, "
            "progress_message = NULL, updated_at = ? WHERE id = ? AND status = ?",
            (TaskStatus.RUNNING.value, to_iso8601(now), to_iso8601(now),
             task_id, TaskStatus.ASSIGNED.value),
        ) == 1

    def set_progress(self, task_id: str, progress: int, message: str | None, now: datetime) -> bool:
        return self.update(
            f"UPDATE {_T} SET progress = ?, progress_message = ?, updated_at = ? "
            "WHERE id = ? AND status = ?",
            (progress, message, to_iso8601(now), task_id, TaskStatus.RUNNING.value),
        ) == 1

    def mark_completed(self, task_id: str, result: Any, exit_code: int, now: datetime) -> bool:
        return self.update(
            f"UPDATE {_T} SET status = ?, progress = 100, result = ?, exit_code = ?, "
            "completed_at = ?, updated_at = ? WHERE id = ? AND status = ?",
            (TaskStatus.COMPLETED.value, self.dumps(result), exit_code, to_iso8601(now),
             to_iso8601(now), task_id, TaskStatus.RUNNING.value),
        ) == 1

    def requeue_failed(
        self,
        task: AgentTask,
        error: str,
        exit_code: int | None,
        retry_after: datetime,
        now: datetime,
    ) -> bool:
        """Failure with budget left: back to pending, gated by *retry_after*.

        ``assigned_at``/``started_at`` keep their stale values until the next
        assignment overwrites them.
        """
        return self.update(
            f"UPDATE {_T} SET status = ?, attempts = attempts + 1, error = ?, "
            "exit_code = ?, retry_after = ?, updated_at = ? "
            "WHERE id = ? AND status = ? AND attempts = ? AND "
            "(started_at = ? OR (started_at IS NULL AND ? IS NULL))",
            (TaskStatus.PENDING.value, error, exit_code, to_iso8601(retry_after),
             to_iso8601(now), task.id, task.status.value, task.attempts,
             to_iso8601(task.started_at), to_iso8601(task.started_at)),
        ) == 1

    def mark_failed(self, task: AgentTask, error: str, exit_code: int | None, now: datetime) -> bool:
        """Failure without budget: terminal."""
        return self.update(
            f"UPDATE {_T} SET status = ?, attempts = attempts + 1, error = ?, "
            "exit_code = ?, completed_at = ?, updated_at = ? "
            "WHERE id = ? AND status = ? AND attempts = ? AND "
            "(started_at = ? OR (started_at IS NULL AND ? IS NULL))",
            (TaskStatus.FAILED.value, error, exit_code, to_iso8601(now), to_iso8601(now),
             task.id, task.status.value, task.attempts,
             to_iso8601(task.started_at), to_iso8601(task.started_at)),
        ) == 1

    def mark_cancelled(self, task_id: str, now: datetime) -> bool:
        return self.update(
            f"UPDATE {_T} SET status = ?, completed_at = ?, updated_at = ? "
            "WHERE id = ? AND status IN (?, ?)",
            (TaskStatus.CANCELLED.value, to_iso8601(now), to_iso8601(now), task_id,
             TaskStatus.PENDING.value, TaskStatus.ASSIGNED.value),
        ) == 1

    def cancel_open_for_agent(self, agent_id: str, now: datetime) -> int:
        return self.update(
            f"UPDATE {_T} SET status = ?, completed_at = ?, updated_at = ? "
            "WHERE agent_id = ? AND status IN (?, ?)",
            (TaskStatus.CANCELLED.value, to_iso8601(now), to_iso8601(now), agent_id,
             TaskStatus.PENDING.value, TaskStatus.ASSIGNED.value),
        )

    def cancel_open_for_job(self, job_id: str, now: datetime) -> int:
        return self.update(
            f"UPDATE {_T} SET status = ?, completed_at = ?, updated_at = ? "
            "WHERE job_id = ? AND status IN (?, ?)",
            (TaskStatus.CANCELLED.value, to_iso8601(now), to_iso8601(now), job_id,
             TaskStatus.PENDING.value, TaskStatus.ASSIGNED.value),
        )

    def reset_assigned_before(self, cutoff: datetime, now: datetime) -> int:
        return self.update(
            f"UPDATE {_T} SET status = ?, assigned_at = NULL, updated_at = ? "
            "WHERE status = ? AND assigned_at < ?",
            (TaskStatus.PENDING.value, to_iso8601(now), TaskStatus.ASSIGNED.value,
             to_iso8601(cutoff)),
        )

    def delete_finished_before(self, cutoff: datetime) -> int:
        return self.update(
            f"DELETE FROM {_T} WHERE status IN (?, ?, ?) AND completed_at < ?",
            (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value,
             TaskStatus.CANCELLED.value, to_iso8601(cutoff)),
        )
