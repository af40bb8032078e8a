"""Tests for the backplane error hierarchy."""

import pytest

from backplane.core.errors import (
    BackplaneError,
    DatabaseError,
    ErrorCategory,
    InvalidTransitionError,
    JobNotFoundError,
    NotFoundError,
    RetriesExhaustedError,
    ScheduleError,
    StorageError,
    TaskNotFoundError,
    ValidationError,
)


class TestCategories:
    """Each family maps to one category."""

    def test_not_found(self):
        err = JobNotFoundError("01HX")
        assert isinstance(err, NotFoundError)
        assert err.category == ErrorCategory.NOT_FOUND
        assert err.context.job_id == "01HX"
        assert not err.retryable

    def test_task_not_found_context(self):
        assert TaskNotFoundError("t-1").context.task_id == "t-1"

    def test_invalid_transition_is_value_error(self):
        """Callers catching ValueError still see transition errors."""
        err = InvalidTransitionError("nope", current="completed", target="failed")
        assert isinstance(err, ValueError)
        assert err.category == ErrorCategory.CONFLICT
        assert err.context.status == "completed"

    def test_retries_exhausted_is_transition(self):
        assert issubclass(RetriesExhaustedError, InvalidTransitionError)

    def test_storage_is_retryable(self):
        assert StorageError("down").retryable
        assert DatabaseError("down").category == ErrorCategory.DATABASE
        assert DatabaseError("down").retryable

    def test_schedule_error_is_validation(self):
        assert ScheduleError("bad cron").category == ErrorCategory.VALIDATION


class TestSerialization:
    """to_dict / with_context."""

    def test_to_dict(self):
        cause = RuntimeError("disk full")
        err = DatabaseError("write failed", cause=cause, retry_after=5).with_context(job_id="j1", table="core_jobs")
        d = err.to_dict()
        assert d["error_type"] == "DatabaseError"
        assert d["category"] == "DATABASE"
        assert d["retry_after"] == 5
        assert d["context"] == {"job_id": "j1", "table": "core_jobs"}
        assert d["cause"] == "disk full"
        assert err.__cause__ is cause

    def test_unset_context_omitted(self):
        assert "context" not in ValidationError("bad").to_dict()

    def test_raise_and_catch_as_base(self):
        with pytest.raises(BackplaneError):
            raise ValidationError("bad")
