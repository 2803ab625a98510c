"""Tests for duplicate job detection."""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.core.errors import DuplicateJobError
from app.jobs.dedupe import DedupeGuard, canonical_json, compute_fingerprint
from app.jobs.models import Job
from app.jobs.types import JobStatus, JobType
from app.repositories.memory import InMemoryJobStore


async def _create(store, fingerprint, status=JobStatus.PENDING, created_at=None):
    job = Job(
        id=uuid4(),
        type=JobType.SEO_PLANNER,
        status=status,
        payload={"post_id": "p1"},
        fingerprint=fingerprint,
    )
    if created_at is not None:
        job.created_at = created_at
    return await store.create(job)


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        a = compute_fingerprint(JobType.SEO_PLANNER, {"a": 1, "b": [1, 2]})
        b = compute_fingerprint(JobType.SEO_PLANNER, {"b": [1, 2], "a": 1})
        assert a == b

    def test_type_is_part_of_fingerprint(self):
        payload = {"post_id": "p1"}
        assert compute_fingerprint(JobType.SEO_PLANNER, payload) != compute_fingerprint(
            JobType.DISTRIBUTION, payload
        )

    def test_sha256_hex(self):
        fp = compute_fingerprint(JobType.SEO_PLANNER, {})
        assert len(fp) == 64
        int(fp, 16)

    def test_canonical_json_compact(self):
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'


class TestDedupeGuard:
    @pytest.mark.asyncio
    async def test_first_submission_passes(self):
        store = InMemoryJobStore()
        guard = DedupeGuard(store, window_s=300)
        async with guard.check_and_reserve(JobType.SEO_PLANNER, {"post_id": "p1"}) as fp:
            assert fp == compute_fingerprint(JobType.SEO_PLANNER, {"post_id": "p1"})

    @pytest.mark.asyncio
    async def test_open_job_blocks(self):
        store = InMemoryJobStore()
        guard = DedupeGuard(store, window_s=300)
        payload = {"post_id": "p1"}
        existing = await _create(store, compute_fingerprint(JobType.SEO_PLANNER, payload))

        with pytest.raises(DuplicateJobError) as exc:
            async with guard.check_and_reserve(JobType.SEO_PLANNER, payload):
                pass
        assert exc.value.existing_job_id == str(existing.id)
        assert exc.value.to_dict()["existing_job_id"] == str(existing.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED]
    )
    async def test_terminal_job_does_not_block(self, status):
        store = InMemoryJobStore()
        guard = DedupeGuard(store, window_s=300)
        payload = {"post_id": "p1"}
        await _create(store, compute_fingerprint(JobType.SEO_PLANNER, payload), status=status)

        async with guard.check_and_reserve(JobType.SEO_PLANNER, payload):
            pass

    @pytest.mark.asyncio
    async def test_job_outside_window_does_not_block(self):
        store = InMemoryJobStore()
        guard = DedupeGuard(store, window_s=60)
        payload = {"post_id": "p1"}
        await _create(
            store,
            compute_fingerprint(JobType.SEO_PLANNER, payload),
            created_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        )

        async with guard.check_and_reserve(JobType.SEO_PLANNER, payload):
            pass

    @pytest.mark.asyncio
    async def test_concurrent_identical_submissions_single_winner(self):
        """Only one of many simultaneous submissions gets to create its job."""
        store = InMemoryJobStore()
        guard = DedupeGuard(store, window_s=300)
        payload = {"post_id": "p1"}

        async def submit():
            async with guard.check_and_reserve(JobType.SEO_PLANNER, payload) as fp:
                await asyncio.sleep(0)
                return await _create(store, fp)

        results = await asyncio.gather(*(submit() for _ in range(10)), return_exceptions=True)

        created = [r for r in results if isinstance(r, Job)]
        rejected = [r for r in results if isinstance(r, DuplicateJobError)]
        assert len(created) == 1
        assert len(rejected) == 9
        assert all(r.existing_job_id == str(created[0].id) for r in rejected)

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self):
        store = InMemoryJobStore()
        guard = DedupeGuard(store, window_s=300)
        async with guard.check_and_reserve(JobType.SEO_PLANNER, {"post_id": "p1"}):
            assert len(guard._locks) == 1
        assert guard._locks == {}
        assert guard._holders == {}
