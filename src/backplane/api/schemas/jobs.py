"""Schemas for the producer-facing jobs endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from backplane.execution.models import Job


class PushJobBody(BaseModel):
    """Request body for pushing a job.

    Example:
        {"type": "backup_run", "payload": {"backup_job_id": "bj-1", "agent_id": "agent-7"}}
    """

    type: str = Field(min_length=1, description="Handler name the worker dispatches on")
    payload: dict[str, Any] = Field(default_factory=dict)
    queue: str | None = Field(default=None, description="Queue name; settings default when omitted")
    max_attempts: int = Field(default=3, ge=1)


class JobAcceptedSchema(BaseModel):
    id: str
    status: str = "pending"


class JobSchema(BaseModel):
    """Full job record."""

    id: str
    queue: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str
    progress: int
    attempts: int
    max_attempts: int
    log: str | None = None
    result: Any = None
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    created_by: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobSchema:
        return cls(**job.to_dict())
