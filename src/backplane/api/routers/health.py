"""
Health endpoints for container probes.

``GET /health``        store and cache checks; 503 if the store is down
``GET /health/ready``  readiness; 503 unless every check is healthy
``GET /health/live``   liveness; always 200

Checks are plain callables run in a worker thread with a timeout. A
required check that fails makes the service ``unhealthy``; an optional one
(the cache, which is advisory) only makes it ``degraded``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backplane.api.settings import BackplaneAPISettings
from backplane.core.cache import create_cache
from backplane.core.connection import create_connection

_START_TIME = time.monotonic()

Status = Literal["healthy", "degraded", "unhealthy"]


class CheckResult(BaseModel):
    status: Status
    latency_ms: float | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    status: Status = "healthy"
    service: str = ""
    version: str = ""
    uptime_s: float = 0.0
    timestamp: str = ""
    checks: dict[str, CheckResult] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    status: str = "alive"


@dataclass
class HealthCheck:
    """A named dependency check. ``check_fn`` returns normally or raises."""

    name: str
    check_fn: Callable[[], Any]
    required: bool = True
    timeout_s: float = 5.0


async def _run_checks(checks: list[HealthCheck]) -> dict[str, CheckResult]:
    async def _one(hc: HealthCheck) -> tuple[str, CheckResult]:
        start = time.monotonic()
        try:
            await asyncio.wait_for(asyncio.to_thread(hc.check_fn), timeout=hc.timeout_s)
        except TimeoutError:
            return hc.name, CheckResult(status="unhealthy", error="timeout")
        except Exception as exc:  # noqa: BLE001
            return hc.name, CheckResult(
                status="unhealthy",
                latency_ms=round((time.monotonic() - start) * 1000, 2),
                error=str(exc)[:200],
            )
        return hc.name, CheckResult(status="healthy", latency_ms=round((time.monotonic() - start) * 1000, 2))

    pairs = await asyncio.gather(*[_one(hc) for hc in checks])
    return dict(pairs)


def _compute_status(results: dict[str, CheckResult], checks: list[HealthCheck]) -> Status:
    required = {hc.name for hc in checks if hc.required}
    down = {name for name, r in results.items() if r.status != "healthy"}
    if down & required:
        return "unhealthy"
    if down:
        return "degraded"
    return "healthy"


def default_checks(settings: BackplaneAPISettings) -> list[HealthCheck]:
    """Store (required) and cache (optional) round-trips."""

    def _database() -> None:
        conn, _info = create_connection(settings.database_url, data_dir=settings.data_dir)
        try:
            conn.execute("SELECT 1")
            conn.fetchone()
        finally:
            conn.close()

    def _cache() -> None:
        cache = create_cache(settings.cache_url, default_ttl_seconds=5)
        cache.set("backplane:health", "ok")
        cache.get("backplane:health")

    return [
        HealthCheck("database", _database),
        HealthCheck("cache", _cache, required=False),
    ]


def create_health_router(
    service_name: str,
    version: str,
    checks: list[HealthCheck] | None = None,
    prefix: str = "/health",
) -> APIRouter:
    router = APIRouter(tags=["health"])
    _checks = checks or []

    def _response(status: Status, results: dict[str, CheckResult]) -> HealthResponse:
        return HealthResponse(
            status=status,
            service=service_name,
            version=version,
            uptime_s=round(time.monotonic() - _START_TIME, 1),
            timestamp=datetime.now(UTC).isoformat(),
            checks=results,
        )

    @router.get(prefix, response_model=HealthResponse)
    async def health() -> JSONResponse:
        results = await _run_checks(_checks)
        status = _compute_status(results, _checks)
        code = 503 if status == "unhealthy" else 200
        return JSONResponse(content=_response(status, results).model_dump(), status_code=code)

    @router.get(f"{prefix}/ready", response_model=HealthResponse)
    async def readiness() -> JSONResponse:
        results = await _run_checks(_checks)
        status = _compute_status(results, _checks)
        code = 503 if status != "healthy" else 200
        return JSONResponse(content=_response(status, results).model_dump(), status_code=code)

    @router.get(f"{prefix}/live", response_model=LivenessResponse)
    async def liveness() -> LivenessResponse:
        return LivenessResponse()

    return router
