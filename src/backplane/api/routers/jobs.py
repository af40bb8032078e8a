"""
Jobs router: producer-facing access to the job queue.

POST   /jobs                     Push a job
GET    /jobs                     List jobs (filter by status / queue)
GET    /jobs/stats               Counts per status
GET    /jobs/{job_id}            Full job record
GET    /jobs/{job_id}/progress   Low-latency progress projection
POST   /jobs/{job_id}/cancel     Cancel a pending or running job
POST   /jobs/{job_id}/retry      Requeue a failed job while attempts remain
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query

from backplane.api.deps import Queue, Settings
from backplane.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from backplane.api.schemas.jobs import JobAcceptedSchema, JobSchema, PushJobBody
from backplane.core.logging import get_logger
from backplane.execution.models import JobStatus

router = APIRouter(prefix="/jobs")
log = get_logger(__name__)

JobId = Path(..., description="Job id")


@router.post("", status_code=202, response_model=SuccessResponse[JobAcceptedSchema])
def push_job(body: PushJobBody, queue: Queue, settings: Settings):
    """Push a job. Identical bodies create independent jobs.

    Example:
        POST /api/v1/jobs
        {"type": "backup_run", "payload": {"backup_job_id": "bj-1", "agent_id": "agent-7"}}

        Response (202):
        {"data": {"id": "01HX...", "status": "pending"}}
    """
    job_id = queue.push(
        body.type,
        body.payload,
        queue=body.queue or settings.default_queue,
        max_attempts=body.max_attempts,
        created_by="api",
    )
    log.info("job_pushed", job_id=job_id, type=body.type)
    return SuccessResponse(data=JobAcceptedSchema(id=job_id))


@router.get("", response_model=PagedResponse[JobSchema])
def list_jobs(
    queue: Queue,
    status: JobStatus | None = Query(None, description="Filter by status"),
    queue_name: str | None = Query(None, alias="queue", description="Filter by queue"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Newest jobs first."""
    jobs = queue.list_jobs(status=status, queue=queue_name, limit=limit, offset=offset)
    total = queue.count_jobs(status=status, queue=queue_name)
    return PagedResponse(
        data=[JobSchema.from_job(j) for j in jobs],
        page=PageMeta.from_result(total=total, limit=limit, offset=offset),
    )


@router.get("/stats", response_model=SuccessResponse[dict[str, int]])
def job_stats(queue: Queue, queue_name: str | None = Query(None, alias="queue")):
    """Counts per status plus ``total``."""
    return SuccessResponse(data=queue.get_stats(queue_name))


@router.get("/{job_id}", response_model=SuccessResponse[JobSchema])
def get_job(queue: Queue, job_id: str = JobId):
    return SuccessResponse(data=JobSchema.from_job(queue.get_job(job_id)))


@router.get("/{job_id}/progress", response_model=SuccessResponse[dict[str, Any]])
def get_progress(queue: Queue, job_id: str = JobId):
    """Progress projection served from the cache, falling back to the durable row."""
    return SuccessResponse(data=queue.get_progress_info(job_id))


@router.post("/{job_id}/cancel", response_model=SuccessResponse[JobSchema])
def cancel_job(queue: Queue, job_id: str = JobId):
    """Cancel a pending or running job. 409 once the job has finished."""
    job = queue.cancel(job_id)
    log.info("job_cancelled", job_id=job_id)
    return SuccessResponse(data=JobSchema.from_job(job))


@router.post("/{job_id}/retry", response_model=SuccessResponse[JobSchema])
def retry_job(queue: Queue, job_id: str = JobId):
    """failed → pending. 409 when not failed or when attempts are exhausted."""
    job = queue.retry(job_id)
    log.info("job_retried", job_id=job_id, attempts=job.attempts)
    return SuccessResponse(data=JobSchema.from_job(job))
