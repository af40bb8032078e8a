"""
Job Queue: durable units of asynchronous work.

Manifesto:
    Producers (API handlers, the scheduler loop, operators on the CLI) hand
    work to the queue and walk away. Workers claim it, report progress and
    finish it. The queue keeps exactly one durable row per job and moves it
    through its lifecycle with conditional updates only, so any number of
    workers can poll the same queue without coordination.

ARCHITECTURE
────────────
::

    producer ──push()──► core_jobs (pending)
                              │
    worker ───claim()─────────┤  CAS pending → running (oldest first)
                              │
    worker ───update_progress()  log += line, progress ≤ 99
                              │
    worker ───complete() / fail()    running → completed | failed
    producer ─cancel()               pending | running → cancelled
    producer ─retry()                failed (attempts < max) → pending
                              │
                  every mutation ──► cache "backplane:job:<id>:progress"
                                          ▲
    producer ─get_progress_info()─────────┘  (durable row on miss)

The cache projection is advisory. Its loss only makes a progress read stale.

Tags:
    backplane, execution, job-queue, cas, progress, cache
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from backplane.core.cache import CacheBackend
from backplane.core.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    RetriesExhaustedError,
)
from backplane.core.protocols import Connection
from backplane.core.timestamps import utc_now
from backplane.execution.job_repository import JobRepository
from backplane.execution.models import Job, JobStatus, clamp_progress

logger = logging.getLogger(__name__)

PROGRESS_KEY = "backplane:job:{job_id}:progress"


class JobQueue:
    """Durable job queue with a write-through progress projection.

    Example:
        >>> queue = JobQueue(conn, cache=InMemoryCache())
        >>> job_id = queue.push("backup_run", {"backup_job_id": "bj-1"})
        >>> job = queue.claim("default")
        >>> queue.update_progress(job.id, 40, "copied 4/10 archives")
        >>> queue.complete(job.id, {"archives": 10})
        >>> queue.get_progress_info(job_id)["status"]
        'completed'
    """

    def __init__(
        self,
        conn: Connection,
        cache: CacheBackend | None = None,
        *,
        cache_ttl_seconds: int = 300,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = JobRepository(conn)
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock or utc_now

    # === Producer side ===

    def push(
        self,
        type: str,
        payload: dict[str, Any] | None = None,
        queue: str = "default",
        max_attempts: int = 3,
        created_by: str | None = None,
    ) -> str:
        """Insert a pending job and return its id.

        No deduplication: identical pushes create independent jobs.
        """
        job = Job.create(
            type,
            payload,
            queue=queue,
            max_attempts=max_attempts,
            created_by=created_by,
            now=self._clock(),
        )
        self.repository.insert_job(job)
        self._project(job)
        logger.info("Pushed job %s (type=%s, queue=%s)", job.id, type, queue)
        return job.id

    def cancel(self, job_id: str) -> Job:
        """Cancel a pending or running job.

        Running work is not interrupted; handlers and agents observe the
        cancelled status on their next check.
        """
        if not self.repository.mark_cancelled(job_id, self._clock()):
            self._reject(job_id, JobStatus.CANCELLED)
        job = self._load(job_id)
        self._project(job)
        logger.info("Cancelled job %s", job_id)
        return job

    def retry(self, job_id: str) -> Job:
        """Move a failed job back to pending while its attempt budget lasts."""
        if not self.repository.mark_retry(job_id, self._clock()):
            current = self._load(job_id)
            if current.status == JobStatus.FAILED:
                raise RetriesExhaustedError(
                    f"Job {job_id} has used {current.attempts}/{current.max_attempts} attempts",
                    current=current.status.value,
                    target=JobStatus.PENDING.value,
                ).with_context(job_id=job_id)
            self._reject(job_id, JobStatus.PENDING, current=current)
        job = self._load(job_id)
        self._project(job)
        logger.info("Retrying job %s (attempt %d/%d)", job_id, job.attempts + 1, job.max_attempts)
        return job

    def get_progress_info(self, job_id: str) -> dict[str, Any]:
        """Low-latency progress read; falls back to the durable row."""
        cached = self._cache_get(job_id)
        if cached is not None:
            return cached
        return self._project(self._load(job_id))

    def set_progress_info(self, job_id: str, metrics: dict[str, Any]) -> None:
        """Merge advisory metrics (e.g. bytes processed) into the projection."""
        if not metrics:
            return
        info = self.get_progress_info(job_id)
        merged = {**info.get("metrics", {}), **metrics}
        self._cache_set(job_id, {**info, "metrics": merged})

    # === Worker side ===

    def claim(self, queue: str = "default", *, scan: int = 10) -> Job | None:
        """Claim the oldest pending job in *queue*, or ``None``.

        Candidates are read oldest-first, then each is claimed with a
        conditional update; a lost race moves on to the next candidate.
        """
        for job_id in self.repository.pending_candidates(queue, limit=scan):
            if not self.repository.mark_running(job_id, self._clock()):
                continue
            job = self._load(job_id)
            self._project(job)
            logger.debug("Claimed job %s from queue %s", job_id, queue)
            return job
        return None

    def update_progress(self, job_id: str, percent: int | float, log_line: str | None = None) -> Job:
        """Set progress (clamped to 0..99) and append *log_line* to the log."""
        progress = clamp_progress(percent)
        if not self.repository.set_progress(job_id, progress, log_line, self._clock()):
            self._reject(job_id, JobStatus.RUNNING, action="update progress of")
        job = self._load(job_id)
        self._project(job)
        return job

    def complete(self, job_id: str, result: Any = None) -> Job:
        """running → completed; progress becomes 100 and *result* is stored once."""
        if not self.repository.mark_completed(job_id, result, self._clock()):
            self._reject(job_id, JobStatus.COMPLETED)
        job = self._load(job_id)
        self._project(job)
        logger.info("Completed job %s", job_id)
        return job

    def fail(self, job_id: str, error: str) -> Job:
        """running → failed; the attempt counter goes up by one."""
        if not self.repository.mark_failed(job_id, error or "Unknown error", self._clock()):
            self._reject(job_id, JobStatus.FAILED)
        job = self._load(job_id)
        self._project(job)
        logger.warning(
            "Job %s failed (attempt %d/%d): %s", job_id, job.attempts, job.max_attempts, error
        )
        return job

    # === Queries ===

    def get_job(self, job_id: str) -> Job:
        return self._load(job_id)

    def find_job(self, job_id: str) -> Job | None:
        return self.repository.get(job_id)

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        queue: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        status = JobStatus(status) if status is not None else None
        return self.repository.list_jobs(status=status, queue=queue, limit=limit, offset=offset)

    def count_jobs(self, status: JobStatus | str | None = None, queue: str | None = None) -> int:
        status = JobStatus(status) if status is not None else None
        return self.repository.count(status=status, queue=queue)

    def get_stats(self, queue: str | None = None) -> dict[str, int]:
        """Counts per status plus ``total``."""
        counts = self.repository.counts_by_status(queue)
        stats = {s.value: counts.get(s.value, 0) for s in JobStatus}
        stats["total"] = sum(counts.values())
        return stats

    def running_job_ids(self, limit: int = 500) -> list[str]:
        return self.repository.running_ids(limit)

    def recently_cancelled_ids(self, since: datetime, limit: int = 500) -> list[str]:
        return self.repository.ids_with_status(JobStatus.CANCELLED, since=since, limit=limit)

    def delete_old_completed(self, days: int = 30) -> int:
        """Delete completed and cancelled jobs finished more than *days* ago."""
        deleted = self.repository.delete_finished_before(self._clock() - timedelta(days=days))
        for job_id in deleted:
            self._cache_delete(job_id)
        if deleted:
            logger.info("Deleted %d finished job(s) older than %d days", len(deleted), days)
        return len(deleted)

    # === Internals ===

    def _load(self, job_id: str) -> Job:
        job = self.repository.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _reject(
        self,
        job_id: str,
        target: JobStatus,
        *,
        current: Job | None = None,
        action: str | None = None,
    ) -> None:
        current = current or self._load(job_id)
        verb = action or f"move to {target.value}"
        raise InvalidTransitionError(
            f"Cannot {verb} job {job_id} in status {current.status.value}",
            current=current.status.value,
            target=target.value,
        ).with_context(job_id=job_id, queue=current.queue)

    def _project(self, job: Job) -> dict[str, Any]:
        info = {
            "id": job.id,
            "type": job.type,
            "queue": job.queue,
            "status": job.status.value,
            "progress": job.progress,
            "attempts": job.attempts,
            "max_attempts": job.max_attempts,
            "error": job.error,
            "updated_at": job.updated_at.isoformat() if job.updated_at else None,
        }
        previous = self._cache_get(job.id)
        if previous and previous.get("metrics"):
            info["metrics"] = previous["metrics"]
        self._cache_set(job.id, info)
        return info

    def _cache_get(self, job_id: str) -> dict[str, Any] | None:
        if self.cache is None:
            return None
        try:
            return self.cache.get(PROGRESS_KEY.format(job_id=job_id))
        except Exception:
            logger.warning("Progress cache read failed for job %s", job_id, exc_info=True)
            return None

    def _cache_set(self, job_id: str, info: dict[str, Any]) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(PROGRESS_KEY.format(job_id=job_id), info, ttl_seconds=self.cache_ttl_seconds)
        except Exception:
            logger.warning("Progress cache write failed for job %s", job_id, exc_info=True)

    def _cache_delete(self, job_id: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.delete(PROGRESS_KEY.format(job_id=job_id))
        except Exception:
            logger.warning("Progress cache delete failed for job %s", job_id, exc_info=True)
