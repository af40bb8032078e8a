"""Retry policy for agent tasks.

A failed agent task goes back to ``pending`` while its attempt budget
lasts, gated by ``retry_after``. The delay grows linearly with the number
of attempts already made and is capped::

    delay(attempts) = min(step * (attempts + 1), max_delay)
                    = 300, 600, 900, 1200, 1500, 1800, 1800, ...  (defaults)

where ``attempts`` is the counter *before* the failure being handled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class TaskRetryPolicy:
    """Linear backoff capped at ``max_delay_seconds``."""

    step_seconds: int = 300
    max_delay_seconds: int = 1800

    def next_delay(self, attempts: int) -> int:
        """Seconds to wait after a failure when *attempts* were already used."""
        return min(self.step_seconds * (attempts + 1), self.max_delay_seconds)

    def should_retry(self, attempts: int, max_attempts: int) -> bool:
        """True while the failure being handled leaves budget for another run."""
        return attempts + 1 < max_attempts

    def retry_after(self, attempts: int, now: datetime) -> datetime:
        return now + timedelta(seconds=self.next_delay(attempts))


DEFAULT_RETRY_POLICY = TaskRetryPolicy()
