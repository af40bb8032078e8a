"""
Error-handling middleware: maps core errors to RFC 7807 responses.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backplane.api.schemas.common import ErrorDetail, ProblemDetail
from backplane.core.errors import BackplaneError
from backplane.core.logging import get_logger

log = get_logger(__name__)

# ── Error code → HTTP status mapping ─────────────────────────────────────

ERROR_CODE_TO_STATUS: dict[str, int] = {
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "VALIDATION": 422,
    "CONFIG": 500,
    "AUTH": 403,
    "UNAUTHENTICATED": 401,
    "STORAGE": 503,
    "DATABASE": 503,
    "ORCHESTRATION": 500,
    "INTERNAL": 500,
}

_STATUS_TO_CODE: dict[int, str] = {
    400: "VALIDATION",
    401: "UNAUTHENTICATED",
    403: "AUTH",
    404: "NOT_FOUND",
    405: "CONFLICT",
    409: "CONFLICT",
    422: "VALIDATION",
}


def status_for_error_code(code: str) -> int:
    """Resolve an error code to HTTP status, defaulting to 500."""
    return ERROR_CODE_TO_STATUS.get(code, 500)


def problem_response(
    *,
    status: int,
    title: str,
    code: str = "INTERNAL",
    detail: str = "",
    instance: str = "",
    errors: list[dict[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        code=code,
        detail=detail,
        instance=instance,
    )
    if errors:
        body.errors = [ErrorDetail(**e) for e in errors]
    return JSONResponse(status_code=status, content=body.model_dump(), headers=headers)


async def backplane_error_handler(request: Request, exc: BackplaneError) -> JSONResponse:
    """Map a :class:`BackplaneError` to its category's status."""
    code = exc.category.value
    status = status_for_error_code(code)
    if status >= 500:
        log.error("request_failed", path=request.url.path, **exc.to_dict())
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    return problem_response(
        status=status,
        title=exc.message,
        code=code,
        instance=str(request.url.path),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework HTTP errors (404 routes, 401 identity) as ProblemDetail."""
    return problem_response(
        status=exc.status_code,
        title=str(exc.detail),
        code=_STATUS_TO_CODE.get(exc.status_code, "INTERNAL"),
        instance=str(request.url.path),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body / query validation failures → 422 with field errors."""
    errors = [
        {
            "code": err.get("type", "invalid").upper(),
            "message": err.get("msg", "invalid value"),
            "field": ".".join(str(p) for p in err.get("loc", ())),
        }
        for err in exc.errors()
    ]
    return problem_response(
        status=422,
        title="Request validation failed",
        code="VALIDATION",
        instance=str(request.url.path),
        errors=errors,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions; returns 500 with ProblemDetail."""
    log.exception("unhandled_exception", path=request.url.path)
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url.path),
    )
