"""SQL access for ``core_jobs``.

Every state change is a conditional ``UPDATE ... WHERE status = ?``; the
returned rowcount tells the caller whether the transition happened. The
repository never decides policy: the :class:`~backplane.execution.queue.JobQueue`
does.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from backplane.core.repository import BaseRepository
from backplane.core.schema import JOBS_TABLE
from backplane.core.timestamps import to_iso8601
from backplane.execution.models import Job, JobStatus

JOB_COLUMNS = [
    "id", "queue", "type", "payload", "status", "progress", "attempts",
    "max_attempts", "log", "result", "error", "started_at", "completed_at",
    "created_at", "updated_at", "created_by",
]
_SELECT = f"SELECT {', '.join(JOB_COLUMNS)} FROM {JOBS_TABLE}"


class JobRepository(BaseRepository):
    """Rows of the job queue."""

    def _to_job(self, row: Any) -> Job:
        return Job.from_row(JOB_COLUMNS, row, self.loads)

    # -- Insert / read -----------------------------------------------------

    def insert_job(self, job: Job) -> None:
        self.insert(JOBS_TABLE, {
            "id": job.id,
            "queue": job.queue,
            "type": job.type,
            "payload": self.dumps(job.payload),
            "status": job.status.value,
            "progress": job.progress,
            "attempts": job.attempts,
            "max_attempts": job.max_attempts,
            "log": job.log,
            "result": self.dumps(job.result),
            "error": job.error,
            "started_at": to_iso8601(job.started_at),
            "completed_at": to_iso8601(job.completed_at),
            "created_at": to_iso8601(job.created_at),
            "updated_at": to_iso8601(job.updated_at),
            "created_by": job.created_by,
        })

    def get(self, job_id: str) -> Job | None:
        row = self.select_one(f"{_SELECT} WHERE id = ?", (job_id,))
        return self._to_job(row) if row else None

    def pending_candidates(self, queue: str, limit: int = 10) -> list[str]:
        """Ids of the oldest pending jobs in *queue*."""
        rows = self.select(
            f"SELECT id FROM {JOBS_TABLE} WHERE queue = ? AND status = ? "
            "ORDER BY created_at ASC, id ASC LIMIT ?",
            (queue, JobStatus.PENDING.value, limit),
        )
        return [row[0] for row in rows]

    def list_jobs(
        self,
        status: JobStatus | None = None,
        queue: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        where, params = self._filters(status, queue)
        rows = self.select(
            f"{_SELECT}{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [self._to_job(r) for r in rows]

    def count(self, status: JobStatus | None = None, queue: str | None = None) -> int:
        where, params = self._filters(status, queue)
        row = self.select_one(f"SELECT COUNT(*) FROM {JOBS_TABLE}{where}", params)
        return row[0] if row else 0

    def counts_by_status(self, queue: str | None = None) -> dict[str, int]:
        where, params = self._filters(None, queue)
        rows = self.select(
            f"SELECT status, COUNT(*) FROM {JOBS_TABLE}{where} GROUP BY status",
            params,
        )
        return {row[0]: row[1] for row in rows}

    @staticmethod
    def _filters(status: JobStatus | None, queue: str | None) -> tuple[str, tuple]:
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(JobStatus(status).value)
        if queue is not None:
            clauses.append("queue = ?")
            params.append(queue)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, tuple(params)

    # -- Conditional updates ----------------------------------------------

    def mark_running(self, job_id: str, now: datetime) -> bool:
        return self.update(
            f"UPDATE {JOBS_TABLE} SET status = ?, started_at = ?, updated_at = ? "
            "WHERE id = ? AND status = ?",
            (JobStatus.RUNNING.value, to_iso8601(now), to_iso8601(now),
             job_id, JobStatus.PENDING.value),
        ) == 1

    def set_progress(self, job_id: str, progress: int, log_line: str | None, now: datetime) -> bool:
        if log_line is None:
            return self.update(
                f"UPDATE {JOBS_TABLE} SET progress = ?, updated_at = ? "
                "WHERE id = ? AND status = ?",
                (progress, to_iso8601(now), job_id, JobStatus.RUNNING.value),
            ) == 1
        return self.update(
            f"UPDATE {JOBS_TABLE} SET progress = ?, updated_at = ?, "
            "log = CASE WHEN log IS NULL OR log = '' THEN ? ELSE log || ? END "
            "WHERE id = ? AND status = ?",
            (progress, to_iso8601(now), log_line, "\n" + log_line,
             job_id, JobStatus.RUNNING.value),
        ) == 1

    def mark_completed(self, job_id: str, result: Any, now: datetime) -> bool:
        return self.update(
            f"UPDATE {JOBS_TABLE} SET status = ?, progress = 100, result = ?, "
            "completed_at = ?, updated_at = ? WHERE id = ? AND status = ?",
            (JobStatus.COMPLETED.value, self.dumps(result), to_iso8601(now),
             to_iso8601(now), job_id, JobStatus.RUNNING.value),
        ) == 1

    def mark_failed(self, job_id: str, error: str, now: datetime) -> bool:
        return self.update(
            f"UPDATE {JOBS_TABLE} SET status = ?, error = ?, attempts = attempts + 1, "
            "completed_at = ?, updated_at = ? WHERE id = ? AND status = ?",
            (JobStatus.FAILED.value, error, to_iso8601(now), to_iso8601(now),
             job_id, JobStatus.RUNNING.value),
        ) == 1

    def mark_cancelled(self, job_id: str, now: datetime) -> bool:
        return self.update(
            f"UPDATE {JOBS_TABLE} SET status = ?, completed_at = ?, updated_at = ? "
            "WHERE id = ? AND status IN (?, ?)",
            (JobStatus.CANCELLED.value, to_iso8601(now), to_iso8601(now), job_id,
             JobStatus.PENDING.value, JobStatus.RUNNING.value),
        ) == 1

    def mark_retry(self, job_id: str, now: datetime) -> bool:
        return self.update(
            f"UPDATE {JOBS_TABLE} SET status = ?, progress = 0, started_at = NULL, "
            "completed_at = NULL, updated_at = ? "
            "WHERE id = ? AND status = ? AND attempts < max_attempts",
            (JobStatus.PENDING.value, to_iso8601(now), job_id, JobStatus.FAILED.value),
        ) == 1

    def delete_finished_before(self, cutoff: datetime) -> list[str]:
        """Delete completed and cancelled jobs finished before *cutoff*; returns their ids."""
        where = "WHERE status IN (?, ?) AND completed_at < ?"
        params = (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value, to_iso8601(cutoff))
        ids = [row[0] for row in self.select(f"SELECT id FROM {JOBS_TABLE} {where}", params)]
        if ids:
            self.update(f"DELETE FROM {JOBS_TABLE} {where}", params)
        return ids

    def running_ids(self, limit: int = 500) -> list[str]:
        rows = self.select(
            f"SELECT id FROM {JOBS_TABLE} WHERE status = ? ORDER BY started_at ASC LIMIT ?",
            (JobStatus.RUNNING.value, limit),
        )
        return [row[0] for row in rows]

    def ids_with_status(self, status: JobStatus, since: datetime | None = None, limit: int = 500) -> list[str]:
        if since is None:
            rows = self.select(
                f"SELECT id FROM {JOBS_TABLE} WHERE status = ? ORDER BY updated_at DESC LIMIT ?",
                (JobStatus(status).value, limit),
            )
        else:
            rows = self.select(
                f"SELECT id FROM {JOBS_TABLE} WHERE status = ? AND updated_at >= ? "
                "ORDER BY updated_at DESC LIMIT ?",
                (JobStatus(status).value, to_iso8601(since), limit),
            )
        return [row[0] for row in rows]
