"""Repository for job records (asyncpg)."""

import json
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID

import structlog

from app.jobs.models import Job
from app.jobs.types import JobStatus, JobType
from app.repositories.store import JOB_MUTABLE_FIELDS, check_fields

logger = structlog.get_logger(__name__)

JSON_COLUMNS = {"payload", "result"}


def _load_json(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


class JobRepository:
    """Repository for job records."""

    def __init__(self, pool):
        self._pool = pool

    async def create(self, job: Job) -> Job:
        """Insert a new job."""
        query = """
            INSERT INTO jobs (id, type, status, payload, priority, step, result,
                              fingerprint, attempts, created_at, updated_at)
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7::jsonb, $8, $9, $10, $10)
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                job.id,
                job.type.value,
                job.status.value,
                json.dumps(job.payload),
                int(job.priority),
                job.step,
                json.dumps(job.result or {}),
                job.fingerprint,
                job.attempts,
                job.created_at,
            )
        logger.info("job_created", job_id=str(job.id), job_type=job.type.value)
        return self._row_to_job(row)

    async def get(self, job_id: UUID) -> Optional[Job]:
        """Get a job by ID."""
        query = "SELECT * FROM jobs WHERE id = $1"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, job_id)
        return self._row_to_job(row) if row else None

    async def transition(
        self, job_id: UUID, expected: Sequence[JobStatus], **changes: Any
    ) -> Optional[Job]:
        """Conditional update: applies only when status is one of ``expected``.

        Returns the updated job, or None if the job is missing or its status
        no longer matches.
        """
        check_fields(changes, JOB_MUTABLE_FIELDS)
        sets = ["updated_at = now()"]
        params: list[Any] = [job_id, [s.value for s in expected]]
        for key, value in changes.items():
            params.append(self._to_db(key, value))
            cast = "::jsonb" if key in JSON_COLUMNS else ""
            sets.append(f"{key} = ${len(params)}{cast}")

        query = f"""
            UPDATE jobs SET {", ".join(sets)}
            WHERE id = $1 AND status = ANY($2::text[])
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
        return self._row_to_job(row) if row else None

    async def find_open_by_fingerprint(
        self, fingerprint: str, since: datetime
    ) -> Optional[Job]:
        """Most recent open job with this fingerprint created after ``since``."""
        query = """
            SELECT * FROM jobs
            WHERE fingerprint = $1
              AND status IN ('pending', 'running', 'step_complete')
              AND created_at >= $2
            ORDER BY created_at DESC
            LIMIT 1
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, fingerprint, since)
        return self._row_to_job(row) if row else None

    async def list_jobs(
        self,
        limit: int = 20,
        offset: int = 0,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
    ) -> tuple[list[Job], int]:
        """List jobs with filters and pagination, newest first.

        Returns:
            Tuple of (jobs list, total count)
        """
        conditions = []
        params: list[Any] = []
        param_idx = 1

        if status:
            conditions.append(f"status = ${param_idx}")
            params.append(status.value)
            param_idx += 1

        if job_type:
            conditions.append(f"type = ${param_idx}")
            params.append(job_type.value)
            param_idx += 1

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        query = f"""
            SELECT * FROM jobs
            {where_clause}
            ORDER BY created_at DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        params.extend([limit, offset])

        count_query = f"""
            SELECT COUNT(*) as total FROM jobs
            {where_clause}
        """

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
            # For count, exclude limit/offset params
            count_row = await conn.fetchrow(count_query, *params[:-2])

        jobs = [self._row_to_job(row) for row in rows]
        total = count_row["total"] if count_row else 0
        return jobs, total

    async def list_claimable(self, limit: Optional[int] = None) -> list[Job]:
        """Pending and step-complete jobs in dispatch order."""
        query = """
            SELECT * FROM jobs
            WHERE status IN ('pending', 'step_complete')
            ORDER BY priority DESC, created_at ASC
        """
        params: list[Any] = []
        if limit is not None:
            query += " LIMIT $1"
            params.append(limit)
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_job(row) for row in rows]

    async def reap_stale(self, locked_before: datetime) -> list[Job]:
        """Reset running jobs whose lock is older than ``locked_before``."""
        query = """
            UPDATE jobs SET
                status = 'pending',
                locked_at = NULL,
                locked_by = NULL,
                updated_at = now()
            WHERE status = 'running'
              AND locked_at < $1
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, locked_before)
        if rows:
            logger.warning("stale_jobs_reaped", count=len(rows))
        return [self._row_to_job(row) for row in rows]

    @staticmethod
    def _to_db(key: str, value: Any) -> Any:
        if key in JSON_COLUMNS:
            return json.dumps(value or {})
        if key == "status" and isinstance(value, JobStatus):
            return value.value
        return value

    def _row_to_job(self, row) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            type=JobType(row["type"]),
            status=JobStatus(row["status"]),
            payload=_load_json(row["payload"]),
            priority=row["priority"],
            step=row["step"],
            result=_load_json(row["result"]),
            fingerprint=row["fingerprint"],
            attempts=row["attempts"],
            last_error=row["last_error"],
            cancel_requested=row["cancel_requested"],
            locked_at=row["locked_at"],
            locked_by=row["locked_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )
