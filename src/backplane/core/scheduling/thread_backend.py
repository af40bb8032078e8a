"""Daemon-thread tick backend.

Used by both the scheduler loop and the sweeper. The first tick runs one
interval after ``start``; a tick that raises is logged and the next one
runs on schedule, since every tick starts from the durable store again.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from .protocol import BackendHealth, TickCallback

logger = logging.getLogger(__name__)


class ThreadSchedulerBackend:
    """Runs the tick callback on one daemon thread.

    Example:
        >>> backend = ThreadSchedulerBackend(thread_name="backplane-sweeper")
        >>> backend.start(sweeper.tick, interval_seconds=30.0)
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, thread_name: str = "backplane-scheduler", join_timeout: float = 5.0) -> None:
        self.thread_name = thread_name
        self.join_timeout = join_timeout
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._interval: float | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None

    def start(self, tick_callback: TickCallback, interval_seconds: float = 10.0) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("%s already running", self.thread_name)
            return
        self._interval = interval_seconds
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(tick_callback, interval_seconds),
            name=self.thread_name,
            daemon=True,
        )
        self._thread.start()

    def _run(self, tick_callback: TickCallback, interval_seconds: float) -> None:
        logger.info("%s running every %ss", self.thread_name, interval_seconds)
        while not self._stopping.wait(interval_seconds):
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
            try:
                tick_callback()
            except Exception:
                logger.exception("%s tick %d failed", self.thread_name, self._tick_count)
        logger.info("%s stopped after %d ticks", self.thread_name, self._tick_count)

    def stop(self) -> None:
        """Signal the loop and wait up to ``join_timeout`` for the running tick."""
        thread = self._thread
        if thread is None:
            return
        self._stopping.set()
        thread.join(timeout=self.join_timeout)
        if thread.is_alive():
            logger.warning("%s still busy after %.1fs", self.thread_name, self.join_timeout)

    def wait(self) -> None:
        """Block until the loop thread exits, e.g. after a signal handler calls ``stop``."""
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=1.0)

    def health(self) -> dict[str, Any]:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        ).to_dict()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopping.is_set()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
