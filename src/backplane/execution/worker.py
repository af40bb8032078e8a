"""Job worker: claims queued jobs and runs their handlers.

The worker bridges the job queue to handler code. Each poll claims up to
``batch_size`` jobs from one queue with :meth:`JobQueue.claim` and runs
the registered handler inline, on the worker's own connection. More
throughput means more worker processes, not more threads.

Outcome of a handler call:

- returns a value → ``complete(job, value)``
- returns :data:`~backplane.execution.handlers.AWAIT_TASKS` → the job stays
  ``running``; the sweeper settles it from its agent tasks
- raises → ``fail(job, error)``, then ``retry`` while the job's attempt
  budget lasts
- no handler registered → ``fail``

Usage (programmatic)::

    from backplane.execution.worker import JobWorker

    worker = JobWorker(queue, registry, queue_name="default")
    worker.start()  # blocking; runs until SIGINT/SIGTERM

Usage (CLI)::

    backplane worker start --queue default --poll-interval 2
"""

from __future__ import annotations

import logging
import os
import platform
import signal
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from backplane.core.errors import HandlerNotFoundError, InvalidTransitionError
from backplane.core.logging import log_context
from backplane.execution.handlers import AWAIT_TASKS
from backplane.execution.models import Job
from backplane.execution.queue import JobQueue
from backplane.execution.registry import HandlerRegistry, get_default_registry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    total_processed: int = 0
    total_completed: int = 0
    total_failed: int = 0
    total_retried: int = 0
    total_awaiting: int = 0
    uptime_seconds: float = 0
    last_poll_at: datetime | None = None
    current_job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
            "total_retried": self.total_retried,
            "total_awaiting": self.total_awaiting,
            "uptime_seconds": round(self.uptime_seconds, 2),
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "current_job_id": self.current_job_id,
        }


class JobWorker:
    """Polls one queue and runs claimed jobs inline.

    Example:
        >>> worker = JobWorker(queue, registry)
        >>> worker.run_once()   # claim and run up to batch_size jobs
        2
    """

    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry | None = None,
        *,
        queue_name: str = "default",
        poll_interval: float = 2.0,
        batch_size: int = 10,
        worker_id: str | None = None,
    ):
        self.queue = queue
        self.registry = registry or get_default_registry()
        self.queue_name = queue_name
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.hostname = platform.node()
        self.pid = os.getpid()

        self._shutdown = threading.Event()
        self._started_at = _utcnow()
        self._stats = WorkerStats()
        self._retry_later: list[str] = []

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the poll loop (blocking). Installs signal handlers for
        graceful shutdown on SIGINT / SIGTERM when called from the main thread.
        """
        logger.info(
            "Worker %s starting on queue %s, polling every %.1fs, batch=%d",
            self.worker_id, self.queue_name, self.poll_interval, self.batch_size,
        )
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)

        while not self._shutdown.is_set():
            try:
                processed = self.run_once()
                if processed:
                    logger.debug("Worker %s processed %d job(s)", self.worker_id, processed)
            except Exception:
                logger.exception("Worker %s poll error", self.worker_id)
            self._shutdown.wait(self.poll_interval)

        logger.info(
            "Worker %s stopped (processed=%d, failed=%d)",
            self.worker_id, self._stats.total_processed, self._stats.total_failed,
        )

    def start_background(self) -> threading.Thread:
        """Start the worker in a daemon thread. Returns the thread."""
        t = threading.Thread(target=self.start, name=f"{self.worker_id}-loop", daemon=True)
        t.start()
        return t

    def stop(self) -> None:
        """Request graceful shutdown."""
        logger.info("Worker %s shutting down", self.worker_id)
        self._shutdown.set()

    @property
    def is_running(self) -> bool:
        return not self._shutdown.is_set()

    def get_stats(self) -> WorkerStats:
        self._stats.uptime_seconds = (_utcnow() - self._started_at).total_seconds()
        return self._stats

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    def run_once(self) -> int:
        """Claim and run up to ``batch_size`` jobs. Returns how many ran."""
        processed = 0
        while processed < self.batch_size and not self._shutdown.is_set():
            job = self.queue.claim(self.queue_name)
            if job is None:
                break
            self.process(job)
            processed += 1
        # Failed jobs return to pending after the batch; retries run on the next poll.
        self._requeue_failed()
        self._stats.last_poll_at = _utcnow()
        return processed

    def process(self, job: Job) -> None:
        """Run the handler for an already claimed (running) job."""
        with log_context(job_id=job.id, worker_id=self.worker_id):
            self._run(job)

    def _run(self, job: Job) -> None:
        logger.info("Worker %s executing job %s (%s)", self.worker_id, job.id, job.type)
        self._stats.total_processed += 1
        self._stats.current_job_id = job.id
        try:
            try:
                handler = self.registry.get(job.type)
            except HandlerNotFoundError as exc:
                logger.warning("Worker %s job %s no handler: %s", self.worker_id, job.id, exc)
                self._fail(job, str(exc), retry=False)
                return

            try:
                result = handler(job)
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                logger.error("Worker %s job %s failed: %s", self.worker_id, job.id, error)
                self._fail(job, error, retry=True)
                return

            if result is AWAIT_TASKS:
                self._stats.total_awaiting += 1
                logger.info("Worker %s job %s waiting on agent tasks", self.worker_id, job.id)
                return

            try:
                self.queue.complete(job.id, result)
                self._stats.total_completed += 1
            except InvalidTransitionError:
                # Cancelled while the handler ran.
                logger.info("Job %s left running state before completion; result dropped", job.id)
        finally:
            self._stats.current_job_id = None

    def _fail(self, job: Job, error: str, *, retry: bool) -> None:
        try:
            failed = self.queue.fail(job.id, error)
        except InvalidTransitionError:
            logger.info("Job %s left running state before failure was recorded", job.id)
            return
        self._stats.total_failed += 1
        if retry and failed.can_retry:
            self._retry_later.append(job.id)

    def _requeue_failed(self) -> None:
        pending, self._retry_later = self._retry_later, []
        for job_id in pending:
            try:
                self.queue.retry(job_id)
            except InvalidTransitionError:
                logger.info("Job %s changed state before its retry", job_id)
                continue
            self._stats.total_retried += 1

    def _handle_signal(self, signum, frame):
        logger.info("Worker %s received signal %s, shutting down", self.worker_id, signum)
        self.stop()
