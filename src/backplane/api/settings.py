"""
API-specific settings.

Extends :class:`~backplane.core.settings.BackplaneSettings` with the
parameters that govern the REST transport (bind address, prefix, CORS).

All values can be overridden via environment variables prefixed with
``BACKPLANE_``.
"""

from __future__ import annotations

from pydantic import Field

from backplane.core.settings import BackplaneSettings


class BackplaneAPISettings(BackplaneSettings):
    """Settings for the backplane REST API.

    Order of precedence (highest → lowest):
        1. Environment variables (``BACKPLANE_API_PREFIX``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    # ── Server ───────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=12080, description="Bind port")

    # ── API ──────────────────────────────────────────────────────────────
    api_prefix: str = Field(default="/api/v1", description="URL prefix for all endpoints")
    api_title: str = Field(default="backplane API", description="OpenAPI title")
    api_version: str = Field(default="0.1.0", description="OpenAPI version string")

    # ── Startup ──────────────────────────────────────────────────────────
    init_schema_on_startup: bool = Field(
        default=True,
        description="Apply the (idempotent) schema when the app starts",
    )

    # ── CORS ─────────────────────────────────────────────────────────────
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )
