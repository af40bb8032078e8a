"""Schemas for the agent poll protocol."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from backplane.execution.models import AgentTask


class AgentTaskSchema(BaseModel):
    """A pending task as handed to a polling agent."""

    id: str
    type: str
    priority: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: int
    created_at: str | None = None

    @classmethod
    def from_task(cls, task: AgentTask) -> AgentTaskSchema:
        return cls(
            id=task.id,
            type=task.type,
            priority=task.priority.value,
            payload=task.payload,
            timeout_seconds=task.timeout_seconds,
            created_at=task.created_at.isoformat() if task.created_at else None,
        )


class AgentTaskListSchema(BaseModel):
    tasks: list[AgentTaskSchema]
    count: int


class AgentTaskStatusSchema(BaseModel):
    """Current state of one task; agents read it to notice cancellation."""

    id: str
    status: str
    progress: int
    progress_message: str | None = None
    attempts: int
    max_attempts: int
    retry_after: str | None = None
    exit_code: int | None = None
    error: str | None = None

    @classmethod
    def from_task(cls, task: AgentTask) -> AgentTaskStatusSchema:
        return cls(
            id=task.id,
            status=task.status.value,
            progress=task.progress,
            progress_message=task.progress_message,
            attempts=task.attempts,
            max_attempts=task.max_attempts,
            retry_after=task.retry_after.isoformat() if task.retry_after else None,
            exit_code=task.exit_code,
            error=task.error,
        )


class ProgressBody(BaseModel):
    """Progress report. Any extra fields are forwarded as job metrics.

    Example:
        {"progress": 40, "message": "4/10 archives", "bytes_processed": 1048576}
    """

    model_config = ConfigDict(extra="allow")

    progress: float = Field(default=0, description="Percent done; clamped to 0..99")
    message: str | None = None

    @property
    def metrics(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class ProgressAckSchema(BaseModel):
    updated: bool = Field(description="False when the task is no longer running")


class CompleteBody(BaseModel):
    result: Any = None
    exit_code: int = 0


class FailBody(BaseModel):
    error: str = "Unknown error"
    exit_code: int | None = None


class AgentInfoSchema(BaseModel):
    agent_id: str
    task_stats: dict[str, int]
