"""
Response envelopes shared by every router.

Successful calls answer ``{"data": ..., "warnings": [...]}``; list calls
add a ``page`` block. Failures answer an RFC 7807 problem document whose
``code`` is the :class:`~backplane.core.errors.ErrorCategory` of the error.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ErrorDetail(BaseModel):
    """One rejected field of a request."""

    code: str
    message: str
    field: str | None = Field(default=None, description="Dotted location, e.g. body.max_attempts")


class ProblemDetail(BaseModel):
    """RFC 7807 problem document.

    ``code`` → status:

    - ``NOT_FOUND`` 404: unknown job or task, or another agent's task
    - ``CONFLICT`` 409: lost claim, or status forbids the transition
    - ``VALIDATION`` 422: malformed body or query
    - ``UNAUTHENTICATED`` 401 / ``AUTH`` 403: missing or mismatched agent identity
    - ``DATABASE`` / ``STORAGE`` 503: store unavailable; safe to retry

    Example:
        {"type": "about:blank", "title": "Cannot move to running task 01HX... in status running",
         "status": 409, "detail": "", "instance": "/api/v1/agent/tasks/01HX.../start",
         "code": "CONFLICT", "errors": []}
    """

    type: str = "about:blank"
    title: str
    status: int
    detail: str = ""
    instance: str = Field(default="", description="Request path")
    code: str = "INTERNAL"
    errors: list[ErrorDetail] = Field(default_factory=list)


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def from_result(cls, total: int, limit: int, offset: int) -> PageMeta:
        return cls(total=total, limit=limit, offset=offset, has_more=offset + limit < total)


class SuccessResponse(BaseModel, Generic[T]):
    data: T
    warnings: list[str] = Field(default_factory=list)


class PagedResponse(BaseModel, Generic[T]):
    data: list[T]
    page: PageMeta
    warnings: list[str] = Field(default_factory=list)
