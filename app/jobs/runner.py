"""Job runner - drives a claimed job through its workflow steps.

Transitions (all persisted through the store's conditional update):

    PENDING / STEP_COMPLETE --claim--> RUNNING
    RUNNING --step ok, more steps--> STEP_COMPLETE --resume--> RUNNING
    RUNNING --step ok, last step--> SUCCEEDED
    RUNNING --step failure--> FAILED (attempts + 1, last_error set)
    STEP_COMPLETE with cancel_requested --> CANCELLED

Every step outcome is written before the next step starts, so a crashed
worker leaves the job resumable from the last completed step. A failed step
ends the run; retrying is an explicit operation on the service.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import sentry_sdk
import structlog

from app.core.errors import ValidationFailedError
from app.jobs.definitions import validate_payload
from app.jobs.models import BatchResult, Job, StepResult
from app.jobs.registry import StepContext, WorkflowRegistry, default_registry
from app.jobs.types import JobStatus
from app.repositories.store import JobStore

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 500


def _now() -> datetime:
    return datetime.now(timezone.utc)


def summarize_error(error: BaseException) -> str:
    """One-line error summary safe to store on the job."""
    text = f"{type(error).__name__}: {error}".strip()
    return text[:MAX_ERROR_LENGTH]


class JobRunner:
    """Executes workflow steps for claimed jobs."""

    def __init__(
        self,
        store: JobStore,
        registry: WorkflowRegistry = default_registry,
        step_timeout_s: float = 120.0,
        services: Optional[dict[str, Any]] = None,
    ):
        self._store = store
        self._registry = registry
        self.step_timeout_s = step_timeout_s
        self.services = services if services is not None else {}

    async def claim(self, job_id: UUID, worker_id: str) -> Optional[Job]:
        """Move a claimable job to RUNNING. Returns None if someone else won."""
        job = await self._store.get(job_id)
        if job is None or not job.status.is_claimable:
            return None

        try:
            start_step = self._start_step(job)
        except KeyError as e:
            logger.error("job_no_workflow", job_id=str(job_id), error=str(e))
            await self._store.transition(
                job.id,
                (job.status,),
                status=JobStatus.FAILED,
                last_error=summarize_error(e),
                attempts=job.attempts + 1,
                completed_at=_now(),
            )
            return None

        claimed = await self._store.transition(
            job.id,
            (job.status,),
            status=JobStatus.RUNNING,
            step=start_step,
            locked_by=worker_id,
            locked_at=_now(),
            started_at=job.started_at or _now(),
        )
        if claimed:
            logger.info(
                "job_claimed",
                job_id=str(job.id),
                job_type=job.type.value,
                step=start_step,
                worker_id=worker_id,
            )
        return claimed

    def _start_step(self, job: Job) -> str:
        """Step a claim resumes at.

        - never run: first registered step
        - STEP_COMPLETE: the step after the last completed one
        - PENDING with a step (retried or reaped): re-run that step
        """
        if job.step is None:
            return self._registry.first_step(job.type)
        if job.status == JobStatus.STEP_COMPLETE:
            nxt = self._registry.next_step(job.type, job.step)
            if nxt is None:
                raise KeyError(f"Job {job.id} has no step after '{job.step}'")
            return nxt
        # Validates the stored step is still registered
        self._registry.get_step(job.type, job.step)
        return job.step

    async def run(self, job: Job, worker_id: Optional[str] = None) -> Job:
        """Run a RUNNING job until it succeeds, fails or is cancelled."""
        log = logger.bind(job_id=str(job.id), job_type=job.type.value)

        try:
            payload = validate_payload(job.type, job.payload)
        except ValidationFailedError as e:
            return await self._fail(job, e.message, log)

        current = job
        while True:
            step_name = current.step
            if step_name is None:
                return await self._fail(current, "Job is running without a step", log)
            try:
                step = self._registry.get_step(current.type, step_name)
            except KeyError as e:
                return await self._fail(current, summarize_error(e), log)
            ctx = StepContext(
                payload=payload,
                results=dict(current.result),
                services=self.services,
                worker_id=worker_id,
            )

            log.info("job_step_started", step=step_name)
            try:
                with sentry_sdk.start_span(
                    op="job.step", description=f"{current.type.value}.{step_name}"
                ):
                    outcome = await asyncio.wait_for(
                        step.fn(current, ctx), timeout=self.step_timeout_s
                    )
            except asyncio.TimeoutError:
                outcome = StepResult.fail(
                    f"Step '{step_name}' timed out after {self.step_timeout_s}s"
                )
            except Exception as e:
                log.exception("job_step_raised", step=step_name, error=str(e))
                sentry_sdk.set_tag("job_type", current.type.value)
                sentry_sdk.capture_exception(e)
                outcome = StepResult.fail(summarize_error(e))

            if not isinstance(outcome, StepResult):
                outcome = StepResult.fail(f"Step '{step_name}' returned no StepResult")

            if not outcome.success:
                return await self._fail(
                    current, outcome.error or f"Step '{step_name}' failed", log
                )

            registry_next = self._registry.next_step(current.type, step_name)
            if outcome.next_step is not None and outcome.next_step != registry_next:
                return await self._fail(
                    current,
                    f"Step '{step_name}' requested '{outcome.next_step}', "
                    f"expected '{registry_next}'",
                    log,
                )

            merged = {**current.result, step_name: outcome.data}

            if registry_next is None:
                done = await self._store.transition(
                    current.id,
                    (JobStatus.RUNNING,),
                    status=JobStatus.SUCCEEDED,
                    result=merged,
                    last_error=None,
                    locked_by=None,
                    locked_at=None,
                    completed_at=_now(),
                )
                if done is None:
                    return await self._lost(current, log)
                log.info("job_succeeded", step=step_name)
                return done

            checkpoint = await self._store.transition(
                current.id,
                (JobStatus.RUNNING,),
                status=JobStatus.STEP_COMPLETE,
                result=merged,
            )
            if checkpoint is None:
                return await self._lost(current, log)
            log.info("job_step_completed", step=step_name, next_step=registry_next)

            if checkpoint.cancel_requested:
                cancelled = await self._store.transition(
                    current.id,
                    (JobStatus.STEP_COMPLETE,),
                    status=JobStatus.CANCELLED,
                    locked_by=None,
                    locked_at=None,
                    completed_at=_now(),
                )
                if cancelled is None:
                    return await self._lost(current, log)
                log.info("job_cancelled_at_boundary", step=step_name)
                return cancelled

            resumed = await self._store.transition(
                current.id,
                (JobStatus.STEP_COMPLETE,),
                status=JobStatus.RUNNING,
                step=registry_next,
                locked_at=_now(),
            )
            if resumed is None:
                # Cancelled between steps
                return await self._lost(current, log)
            current = resumed

    async def _fail(self, job: Job, error: str, log) -> Job:
        error = error[:MAX_ERROR_LENGTH]
        failed = await self._store.transition(
            job.id,
            (JobStatus.RUNNING,),
            status=JobStatus.FAILED,
            last_error=error,
            attempts=job.attempts + 1,
            locked_by=None,
            locked_at=None,
            completed_at=_now(),
        )
        if failed is None:
            return await self._lost(job, log)
        log.warning("job_failed", step=job.step, error=error, attempts=failed.attempts)
        return failed

    async def _lost(self, job: Job, log) -> Job:
        """Another actor changed the job under us; report its current state."""
        latest = await self._store.get(job.id)
        log.warning(
            "job_state_changed_externally",
            step=job.step,
            status=latest.status.value if latest else None,
        )
        return latest or job

    async def run_job(self, job_id: UUID, worker_id: str) -> Optional[Job]:
        """Claim and run. Returns None when the claim was lost."""
        claimed = await self.claim(job_id, worker_id)
        if claimed is None:
            return None
        return await self.run(claimed, worker_id=worker_id)

    async def process_batch(self, limit: int, worker_id: str) -> BatchResult:
        """Run up to ``limit`` claimable jobs inline, in queue order."""
        result = BatchResult()
        candidates = await self._store.list_claimable(limit=limit)
        for job in candidates:
            result.processed += 1
            final = await self.run_job(job.id, worker_id)
            if final is None:
                result.skipped += 1
                result.details.append(
                    {"job_id": str(job.id), "type": job.type.value, "status": "skipped"}
                )
                continue
            entry = {
                "job_id": str(final.id),
                "type": final.type.value,
                "step": final.step,
                "status": final.status.value,
            }
            if final.status == JobStatus.SUCCEEDED:
                result.succeeded += 1
            elif final.status == JobStatus.FAILED:
                result.failed += 1
                entry["error"] = final.last_error
            else:
                result.skipped += 1
            result.details.append(entry)
        logger.info(
            "job_batch_processed",
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result
