"""
Agent router: the pull protocol agents use to fetch and report work.

GET    /agent/tasks                   Poll pending tasks
POST   /agent/tasks/{task_id}/start     Claim (assign + start) a task
POST   /agent/tasks/{task_id}/progress  Report progress and metrics
POST   /agent/tasks/{task_id}/complete  Report success
POST   /agent/tasks/{task_id}/fail      Report failure (retried or terminal)
GET    /agent/tasks/{task_id}           Current status (cancellation check)
GET    /agent/info                      Task counts for the calling agent

Agents never hold a connection open: they poll, claim with ``start`` and
then report. A lost claim answers 409 and the agent moves on to the next
task in its poll result.
"""

from __future__ import annotations

from fastapi import APIRouter, Path

from backplane.api.deps import AgentId, Dispatcher, Settings
from backplane.api.schemas.agents import (
    AgentInfoSchema,
    AgentTaskListSchema,
    AgentTaskSchema,
    AgentTaskStatusSchema,
    CompleteBody,
    FailBody,
    ProgressAckSchema,
    ProgressBody,
)
from backplane.api.schemas.common import SuccessResponse
from backplane.core.errors import TaskNotFoundError
from backplane.core.logging import get_logger
from backplane.execution.dispatcher import AgentTaskDispatcher
from backplane.execution.models import AgentTask

router = APIRouter(prefix="/agent")
log = get_logger(__name__)

TaskId = Path(..., description="Agent task id")


def _owned_task(dispatcher: AgentTaskDispatcher, task_id: str, agent_id: str) -> AgentTask:
    """Load *task_id*; another agent's task is reported as not found."""
    task = dispatcher.find_task(task_id)
    if task is None or task.agent_id != agent_id:
        raise TaskNotFoundError(task_id).with_context(agent_id=agent_id)
    return task


@router.get("/tasks", response_model=SuccessResponse[AgentTaskListSchema])
def poll_tasks(agent_id: AgentId, dispatcher: Dispatcher, settings: Settings):
    """Pending tasks for the calling agent, highest priority first.

    Example:
        GET /api/v1/agent/tasks?agent=agent-7

        Response:
        {
            "data": {
                "tasks": [
                    {"id": "01HX...", "type": "backup", "priority": "high",
                     "payload": {"paths": ["/srv"]}, "timeout_seconds": 14400,
                     "created_at": "2026-03-01T02:00:00+00:00"}
                ],
                "count": 1
            }
        }
    """
    tasks = dispatcher.list_pending(agent_id, limit=settings.agent_poll_limit)
    items = [AgentTaskSchema.from_task(t) for t in tasks]
    return SuccessResponse(data=AgentTaskListSchema(tasks=items, count=len(items)))


@router.post("/tasks/{task_id}/start", response_model=SuccessResponse[None])
def start_task(agent_id: AgentId, dispatcher: Dispatcher, task_id: str = TaskId):
    """Claim a task: pending → assigned → running.

    Raises:
        404 NOT_FOUND: unknown task.
        403 AUTH: the task belongs to another agent.
        409 CONFLICT: the task is no longer pending.
    """
    dispatcher.claim(task_id, agent_id)
    log.info("task_started", task_id=task_id, agent_id=agent_id)
    return SuccessResponse(data=None)


@router.post("/tasks/{task_id}/progress", response_model=SuccessResponse[ProgressAckSchema])
def report_progress(
    body: ProgressBody,
    agent_id: AgentId,
    dispatcher: Dispatcher,
    task_id: str = TaskId,
):
    """Record progress (clamped to 0..99); extra body fields become job metrics.

    ``updated`` is false when the task is no longer running, e.g. it was
    cancelled or reclaimed; the agent should stop the work.
    """
    _owned_task(dispatcher, task_id, agent_id)
    updated = dispatcher.report_progress(task_id, body.progress, body.message, body.metrics)
    return SuccessResponse(data=ProgressAckSchema(updated=updated))


@router.post("/tasks/{task_id}/complete", response_model=SuccessResponse[AgentTaskStatusSchema])
def complete_task(
    body: CompleteBody,
    agent_id: AgentId,
    dispatcher: Dispatcher,
    task_id: str = TaskId,
):
    """running → completed. 409 when the task is not running."""
    _owned_task(dispatcher, task_id, agent_id)
    task = dispatcher.complete(task_id, body.result, body.exit_code)
    log.info("task_completed", task_id=task_id, agent_id=agent_id, exit_code=body.exit_code)
    return SuccessResponse(data=AgentTaskStatusSchema.from_task(task))


@router.post("/tasks/{task_id}/fail", response_model=SuccessResponse[None])
def fail_task(
    body: FailBody,
    agent_id: AgentId,
    dispatcher: Dispatcher,
    task_id: str = TaskId,
):
    """Record a failure.

    The body is the same whether the task was requeued or is now terminal;
    the retry decision stays on the server.
    """
    _owned_task(dispatcher, task_id, agent_id)
    outcome = dispatcher.fail(task_id, body.error, body.exit_code)
    log.warning(
        "task_failed",
        task_id=task_id,
        agent_id=agent_id,
        error=body.error,
        requeued=outcome.requeued,
        retry_after=outcome.retry_after.isoformat() if outcome.retry_after else None,
    )
    return SuccessResponse(data=None)


@router.get("/tasks/{task_id}", response_model=SuccessResponse[AgentTaskStatusSchema])
def get_task(agent_id: AgentId, dispatcher: Dispatcher, task_id: str = TaskId):
    """Current status of an owned task."""
    task = _owned_task(dispatcher, task_id, agent_id)
    return SuccessResponse(data=AgentTaskStatusSchema.from_task(task))


@router.get("/info", response_model=SuccessResponse[AgentInfoSchema])
def agent_info(agent_id: AgentId, dispatcher: Dispatcher):
    """Per-status task counts for the calling agent."""
    return SuccessResponse(
        data=AgentInfoSchema(agent_id=agent_id, task_stats=dispatcher.get_stats_for_agent(agent_id))
    )
