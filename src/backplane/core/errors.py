"""
Structured error types for backplane.

Every error raised by the orchestration core extends ``BackplaneError`` so
that callers (HTTP routers, the CLI, the periodic services) can classify,
log and map failures without string matching.

Manifesto:
    The core has four failure families and callers must be able to tell
    them apart:

    - **Not found:** the referenced id does not exist. Never retried.
    - **Invalid transition:** the row exists but its state forbids the
      operation. Idempotent callers treat it as a no-op.
    - **Storage:** the store is unavailable. Retryable; every core
      mutation is an insert or a conditional update, so retrying is safe.
    - **Exhausted retries:** the attempt budget is spent. Terminal until a
      human or the scheduler intervenes.

Architecture:
    ::

        BackplaneError
        ├── NotFoundError
        │   ├── JobNotFoundError
        │   ├── TaskNotFoundError
        │   └── ScheduleNotFoundError
        ├── InvalidTransitionError  (also a ValueError)
        │   └── RetriesExhaustedError
        ├── StorageError
        │   └── DatabaseError        (retryable)
        ├── ValidationError
        ├── ConfigError
        ├── AuthError
        └── OrchestrationError
            └── ScheduleError

Examples:
    >>> err = JobNotFoundError("01HX...")
    >>> err.category
    <ErrorCategory.NOT_FOUND: 'NOT_FOUND'>
    >>> err.to_dict()["error_type"]
    'JobNotFoundError'

Tags:
    error-handling, exception-hierarchy, retry-logic, backplane
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification, HTTP mapping and alerting."""

    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    DATABASE = "DATABASE"
    STORAGE = "STORAGE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    AUTH = "AUTH"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover the identifiers the core deals in; anything else goes
    into ``metadata``. ``to_dict()`` drops unset fields so log lines stay short.
    """

    job_id: str | None = None
    task_id: str | None = None
    agent_id: str | None = None
    schedule_id: str | None = None
    queue: str | None = None
    status: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "task_id", "agent_id", "schedule_id", "queue", "status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BackplaneError(Exception):
    """
    Base exception for all backplane errors.

    Carries a category, a retryable flag, an optional ``retry_after`` hint in
    seconds, an ``ErrorContext`` and the underlying cause. Subclasses set
    ``default_category`` / ``default_retryable``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BackplaneError:
        """
        Add context to this error (fluent API).

        Usage:
            raise InvalidTransitionError("...").with_context(job_id=job.id)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# NOT FOUND
# =============================================================================


class NotFoundError(BackplaneError):
    """A referenced record does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


class JobNotFoundError(NotFoundError):
    """Unknown job id."""

    def __init__(self, job_id: str, **kwargs: Any):
        super().__init__(f"Job not found: {job_id}", **kwargs)
        self.context.job_id = job_id


class TaskNotFoundError(NotFoundError):
    """Unknown agent task id."""

    def __init__(self, task_id: str, **kwargs: Any):
        super().__init__(f"Agent task not found: {task_id}", **kwargs)
        self.context.task_id = task_id


class ScheduleNotFoundError(NotFoundError):
    """No schedule for the given schedule or backup job id."""

    def __init__(self, key: str, **kwargs: Any):
        super().__init__(f"Schedule not found: {key}", **kwargs)
        self.context.schedule_id = key


# =============================================================================
# STATE TRANSITIONS
# =============================================================================


class InvalidTransitionError(BackplaneError, ValueError):
    """
    The record's current status forbids the requested operation.

    A failed conditional update (0 rows affected) surfaces as this error so
    callers can tell "nothing happened" apart from success.
    """

    default_category = ErrorCategory.CONFLICT
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        current: str | None = None,
        target: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.current = current
        self.target = target
        if current is not None:
            self.context.status = current


class RetriesExhaustedError(InvalidTransitionError):
    """The attempt budget is spent; only manual intervention can revive it."""


# =============================================================================
# STORAGE
# =============================================================================


class StorageError(BackplaneError):
    """The durable store or cache could not serve the request."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class DatabaseError(StorageError):
    """A database driver error, wrapped with the original as cause."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# INPUT / CONFIGURATION
# =============================================================================


class ValidationError(BackplaneError):
    """Input data failed validation."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ConfigError(BackplaneError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class AuthError(BackplaneError):
    """The caller's identity does not allow the operation."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


# =============================================================================
# ORCHESTRATION
# =============================================================================


class OrchestrationError(BackplaneError):
    """Scheduler, worker or sweeper failure."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class ScheduleError(OrchestrationError):
    """A schedule definition cannot be evaluated (bad time, timezone or cron)."""

    default_category = ErrorCategory.VALIDATION


class HandlerNotFoundError(OrchestrationError):
    """No handler is registered for a job type."""


__all__ = [
    "AuthError",
    "BackplaneError",
    "ConfigError",
    "DatabaseError",
    "ErrorCategory",
    "ErrorContext",
    "HandlerNotFoundError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "NotFoundError",
    "OrchestrationError",
    "RetriesExhaustedError",
    "ScheduleError",
    "ScheduleNotFoundError",
    "StorageError",
    "TaskNotFoundError",
    "ValidationError",
]
