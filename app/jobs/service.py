"""Job service - the operations callers use: enqueue, inspect, retry, cancel."""

from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import UUID, uuid4

import structlog

from app.core.errors import InvalidStateError, NotFoundError, ValidationFailedError
from app.core.pagination import Page
from app.jobs.dedupe import DedupeGuard
from app.jobs.definitions import normalize_payload, parse_job_type, validate_priority
from app.jobs.models import BatchResult, Job
from app.jobs.queue import PriorityJobQueue
from app.jobs.registry import WorkflowRegistry, default_registry
from app.jobs.runner import JobRunner
from app.jobs.types import JobPriority, JobStatus, JobType
from app.jobs.worker import generate_worker_id
from app.repositories.store import JobStore

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobService:
    """Entry point for job operations."""

    def __init__(
        self,
        store: JobStore,
        queue: PriorityJobQueue,
        runner: JobRunner,
        registry: WorkflowRegistry = default_registry,
        dedupe_window_s: int = 300,
        max_attempts: int = 3,
    ):
        self._store = store
        self._queue = queue
        self._runner = runner
        self._registry = registry
        self._dedupe = DedupeGuard(store, window_s=dedupe_window_s)
        self.max_attempts = max_attempts

    async def enqueue_job(
        self,
        job_type: Union[JobType, str],
        payload: Optional[dict[str, Any]] = None,
        priority: Union[int, str] = JobPriority.NORMAL,
    ) -> Job:
        """Validate, dedupe and queue a new job.

        Raises:
            ValidationFailedError: unknown type, bad payload or priority
            DuplicateJobError: an identical job is still open
        """
        jt = parse_job_type(job_type)
        if not self._registry.is_registered(jt):
            raise ValidationFailedError(f"No workflow registered for {jt.value}")
        priority = validate_priority(priority)
        normalized = normalize_payload(jt, payload or {})

        async with self._dedupe.check_and_reserve(jt, normalized) as fingerprint:
            job = await self._store.create(
                Job(
                    id=uuid4(),
                    type=jt,
                    status=JobStatus.PENDING,
                    payload=normalized,
                    priority=priority,
                    fingerprint=fingerprint,
                )
            )

        self._queue.enqueue(job)
        logger.info(
            "job_enqueued", job_id=str(job.id), job_type=jt.value, priority=priority
        )
        return job

    async def get_job(self, job_id: UUID) -> Job:
        job = await self._store.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def get_job_history(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
    ) -> Page:
        """Paged job list, newest first."""
        if page < 1 or limit < 1 or limit > 100:
            raise ValidationFailedError("page must be >= 1 and limit between 1 and 100")
        jobs, total = await self._store.list_jobs(
            limit=limit, offset=(page - 1) * limit, status=status, job_type=job_type
        )
        return Page(data=jobs, total=total, page=page, limit=limit)

    async def retry_job(self, job_id: UUID) -> Job:
        """FAILED -> PENDING with attempts + 1, then back onto the queue."""
        job = await self.get_job(job_id)
        if job.status != JobStatus.FAILED:
            raise InvalidStateError("Job", job_id, job.status.value, "retry")
        if job.attempts >= self.max_attempts:
            raise InvalidStateError(
                "Job", job_id, "failed (retry budget exhausted)", "retry"
            )

        async with self._dedupe.check_and_reserve(job.type, job.payload):
            updated = await self._store.transition(
                job.id,
                (JobStatus.FAILED,),
                status=JobStatus.PENDING,
                attempts=job.attempts + 1,
                cancel_requested=False,
                locked_by=None,
                locked_at=None,
                completed_at=None,
            )
        if updated is None:
            latest = await self.get_job(job_id)
            raise InvalidStateError("Job", job_id, latest.status.value, "retry")

        self._queue.enqueue(updated)
        logger.info("job_retried", job_id=str(job_id), attempts=updated.attempts)
        return updated

    async def cancel_job(self, job_id: UUID) -> Job:
        """Cancel a job.

        PENDING and STEP_COMPLETE jobs are cancelled immediately. A RUNNING
        job is flagged and stops at its next step boundary.
        """
        for _ in range(3):
            job = await self.get_job(job_id)
            if job.status in (JobStatus.PENDING, JobStatus.STEP_COMPLETE):
                cancelled = await self._store.transition(
                    job.id,
                    (JobStatus.PENDING, JobStatus.STEP_COMPLETE),
                    status=JobStatus.CANCELLED,
                    locked_by=None,
                    locked_at=None,
                    completed_at=_now(),
                )
                if cancelled is not None:
                    self._queue.remove(job.id)
                    logger.info("job_cancelled", job_id=str(job_id))
                    return cancelled
            elif job.status == JobStatus.RUNNING:
                flagged = await self._store.transition(
                    job.id, (JobStatus.RUNNING,), cancel_requested=True
                )
                if flagged is not None:
                    logger.info("job_cancel_requested", job_id=str(job_id))
                    return flagged
            else:
                raise InvalidStateError("Job", job_id, job.status.value, "cancel")
            # Status moved between read and update; look again

        job = await self.get_job(job_id)
        raise InvalidStateError("Job", job_id, job.status.value, "cancel")

    async def process_batch(self, limit: int = 5) -> BatchResult:
        """Run up to ``limit`` queued jobs inline (cron-style trigger)."""
        if limit < 1 or limit > 50:
            raise ValidationFailedError("limit must be between 1 and 50")
        return await self._runner.process_batch(limit, worker_id=f"{generate_worker_id()}#batch")
