"""
FastAPI application for backplane.

Two audiences share one app:

- agents poll ``/api/v1/agent/...`` for their tasks and report back
- operators and the web tier push and inspect jobs under ``/api/v1/jobs``

Container probes hit ``/health``, ``/health/ready`` and ``/health/live``
without the prefix.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from backplane.api.deps import get_settings
from backplane.api.middleware.errors import (
    backplane_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from backplane.api.middleware.request_id import RequestIDMiddleware
from backplane.api.routers import agent, jobs
from backplane.api.routers.health import create_health_router, default_checks
from backplane.api.settings import BackplaneAPISettings
from backplane.core.connection import create_connection
from backplane.core.errors import BackplaneError
from backplane.core.logging import get_logger

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: BackplaneAPISettings = app.state.settings
    if settings.init_schema_on_startup:
        conn, info = create_connection(settings.database_url, init_schema=True, data_dir=settings.data_dir)
        conn.close()
        log.info("schema_ready", backend=info.backend)
    log.info("api_started", version=app.version, prefix=settings.api_prefix)
    yield
    log.info("api_stopped")


def create_app(*, settings: BackplaneAPISettings | None = None) -> FastAPI:
    """Build the app; *settings* replaces the cached :func:`get_settings` value."""
    settings = settings or get_settings()
    prefix = settings.api_prefix

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{prefix}/docs",
        redoc_url=None,
        openapi_url=f"{prefix}/openapi.json",
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    app.add_exception_handler(BackplaneError, backplane_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_health_router("backplane", settings.api_version, default_checks(settings)))
    app.include_router(agent.router, prefix=prefix, tags=["agent"])
    app.include_router(jobs.router, prefix=prefix, tags=["jobs"])
    return app
