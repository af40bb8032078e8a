"""Runtime settings for backplane processes.

All services (API, job worker, scheduler loop, sweeper) read the same
``BackplaneSettings``. Values come from environment variables prefixed with
``BACKPLANE_``, then a ``.env`` file, then the defaults below.

Examples:
    >>> from backplane.core.settings import BackplaneSettings
    >>> s = BackplaneSettings(database_url="sqlite:///tmp/bp.db")
    >>> s.assigned_grace_seconds
    60

Tags:
    settings, configuration, pydantic, environment, backplane
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackplaneSettings(BaseSettings):
    """Common settings shared by every backplane process."""

    model_config = SettingsConfigDict(
        env_prefix="BACKPLANE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = Field(
        default=None,
        description="JSON log output; None auto-detects (JSON when stdout is not a tty)",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///backplane.db",
        description="sqlite:///path, a bare file path, memory, or postgresql://...",
    )
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".backplane",
        description="Directory that relative SQLite paths resolve against",
    )

    # ── Cache ────────────────────────────────────────────────────
    cache_url: str = Field(
        default="memory",
        description="'memory' for an in-process cache or a redis:// URL",
    )
    cache_ttl_seconds: int = Field(default=300, ge=1, description="Progress projection TTL")

    # ── Job queue / worker ───────────────────────────────────────
    default_queue: str = "default"
    worker_poll_interval: float = Field(default=2.0, gt=0)
    worker_batch_size: int = Field(default=10, ge=1)

    # ── Periodic services ────────────────────────────────────────
    scheduler_interval_seconds: float = Field(default=60.0, gt=0)
    sweeper_interval_seconds: float = Field(default=30.0, gt=0)
    assigned_grace_seconds: int = Field(
        default=60,
        ge=1,
        description="How long a task may stay assigned without starting",
    )

    # ── Agent protocol ───────────────────────────────────────────
    agent_poll_limit: int = Field(default=5, ge=1, le=100)
