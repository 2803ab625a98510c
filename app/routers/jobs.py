"""Job endpoints: enqueue, history, inspect, retry, cancel, inline run."""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status

from app.deps.security import require_admin_token
from app.deps.services import get_job_service
from app.jobs.definitions import parse_job_type
from app.jobs.service import JobService
from app.jobs.types import JobStatus
from app.schemas import (
    ERROR_RESPONSES,
    EnqueueJobRequest,
    JobListResponse,
    JobResponse,
    RunJobsRequest,
    RunJobsResponse,
)

router = APIRouter(
    prefix="/jobs",
    tags=["Jobs"],
    dependencies=[Depends(require_admin_token)],
    responses=ERROR_RESPONSES,
)
logger = structlog.get_logger(__name__)


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    body: EnqueueJobRequest,
    service: JobService = Depends(get_job_service),
) -> dict:
    """
    Queue a new background job.

    Returns 409 DUPLICATE_JOB with `existing_job_id` when an identical job
    (same type and payload) is still open.
    """
    job = await service.enqueue_job(body.type, body.payload, body.priority)
    return job.to_dict()


@router.get("", response_model=JobListResponse)
async def list_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    job_type: Optional[str] = Query(None, alias="type"),
    service: JobService = Depends(get_job_service),
) -> dict:
    """Job history, newest first."""
    result = await service.get_job_history(
        page=page,
        limit=limit,
        status=job_status,
        job_type=parse_job_type(job_type) if job_type else None,
    )
    return result.to_dict()


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: UUID, service: JobService = Depends(get_job_service)) -> dict:
    job = await service.get_job(job_id)
    return job.to_dict()


@router.post("/{job_id}/retry", response_model=JobResponse)
async def retry_job(job_id: UUID, service: JobService = Depends(get_job_service)) -> dict:
    """Re-queue a FAILED job. 409 INVALID_STATE for any other status."""
    job = await service.retry_job(job_id)
    return job.to_dict()


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: UUID, service: JobService = Depends(get_job_service)) -> dict:
    """
    Cancel a job.

    Pending jobs are cancelled immediately. A running job gets
    `cancel_requested=true` and stops at its next step boundary.
    """
    job = await service.cancel_job(job_id)
    return job.to_dict()


@router.post("/run", response_model=RunJobsResponse)
async def run_jobs(
    body: Optional[RunJobsRequest] = None,
    service: JobService = Depends(get_job_service),
) -> dict:
    """Run up to `limit` queued jobs inline (cron trigger)."""
    limit = body.limit if body else 5
    result = await service.process_batch(limit)
    return result.to_dict()
