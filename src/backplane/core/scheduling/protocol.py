"""Tick backend protocol.

The scheduler loop and the sweeper keep no state between ticks; everything
they need is re-read from the store. A backend only decides when the next
tick runs, so anything that can call a function every N seconds (a daemon
thread, a cron-driven one-shot, a host application's own timer) can drive
either service.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], None]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Calls a tick callback every ``interval_seconds`` until stopped."""

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float) -> None: ...

    def stop(self) -> None: ...

    def health(self) -> dict[str, Any]:
        """At least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
        }
        data.update(self.extra)
        return data
