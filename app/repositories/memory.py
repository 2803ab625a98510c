"""In-memory stores.

Used when no DATABASE_URL is configured and throughout the unit tests. Each
store guards its dict with an ``asyncio.Lock`` so conditional updates are
atomic with respect to other coroutines. Records are copied on the way in
and out; callers never hold a live reference into the store.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Optional, Sequence
from uuid import UUID

from app.jobs.models import Job
from app.jobs.types import CLAIMABLE_STATUSES, OPEN_STATUSES, JobStatus, JobType
from app.repositories.store import (
    CHANNEL_MUTABLE_FIELDS,
    JOB_MUTABLE_FIELDS,
    RECORD_MUTABLE_FIELDS,
    check_fields,
)
from app.services.distribution.models import (
    OPEN_DISTRIBUTION_STATUSES,
    Channel,
    DeliveryErrorKind,
    DistributionFilter,
    DistributionRecord,
    DistributionStatus,
)
from app.services.posts import PostData


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryJobStore:
    """JobStore backed by a dict."""

    def __init__(self):
        self._jobs: dict[UUID, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> Job:
        async with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    async def get(self, job_id: UUID) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    async def transition(
        self, job_id: UUID, expected: Sequence[JobStatus], **changes: Any
    ) -> Optional[Job]:
        check_fields(changes, JOB_MUTABLE_FIELDS)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in expected:
                return None
            for key, value in changes.items():
                setattr(job, key, copy.deepcopy(value))
            job.updated_at = _now()
            return copy.deepcopy(job)

    async def find_open_by_fingerprint(
        self, fingerprint: str, since: datetime
    ) -> Optional[Job]:
        async with self._lock:
            matches = [
                j
                for j in self._jobs.values()
                if j.fingerprint == fingerprint
                and j.status in OPEN_STATUSES
                and j.created_at >= since
            ]
            if not matches:
                return None
            return copy.deepcopy(max(matches, key=lambda j: j.created_at))

    async def list_jobs(
        self,
        limit: int = 20,
        offset: int = 0,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
    ) -> tuple[list[Job], int]:
        async with self._lock:
            jobs = [
                j
                for j in self._jobs.values()
                if (status is None or j.status == status)
                and (job_type is None or j.type == job_type)
            ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [copy.deepcopy(j) for j in jobs[offset : offset + limit]], len(jobs)

    async def list_claimable(self, limit: Optional[int] = None) -> list[Job]:
        async with self._lock:
            jobs = [j for j in self._jobs.values() if j.status in CLAIMABLE_STATUSES]
        jobs.sort(key=lambda j: (-j.priority, j.created_at))
        if limit is not None:
            jobs = jobs[:limit]
        return [copy.deepcopy(j) for j in jobs]

    async def reap_stale(self, locked_before: datetime) -> list[Job]:
        reaped = []
        async with self._lock:
            for job in self._jobs.values():
                if (
                    job.status == JobStatus.RUNNING
                    and job.locked_at is not None
                    and job.locked_at < locked_before
                ):
                    job.status = JobStatus.PENDING
                    job.locked_at = None
                    job.locked_by = None
                    job.updated_at = _now()
                    reaped.append(copy.deepcopy(job))
        return reaped


class InMemoryDistributionStore:
    """DistributionStore backed by a dict."""

    def __init__(self):
        self._records: dict[UUID, DistributionRecord] = {}
        self._lock = asyncio.Lock()

    async def create_if_absent(
        self, record: DistributionRecord
    ) -> Optional[DistributionRecord]:
        async with self._lock:
            for existing in self._records.values():
                if (
                    existing.post_id == record.post_id
                    and existing.channel_id == record.channel_id
                    and existing.status in OPEN_DISTRIBUTION_STATUSES
                ):
                    return None
            self._records[record.id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    async def get(self, record_id: UUID) -> Optional[DistributionRecord]:
        async with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record else None

    async def transition(
        self,
        record_id: UUID,
        expected: Sequence[DistributionStatus],
        **changes: Any,
    ) -> Optional[DistributionRecord]:
        check_fields(changes, RECORD_MUTABLE_FIELDS)
        async with self._lock:
            record = self._records.get(record_id)
            if record is None or record.status not in expected:
                return None
            for key, value in changes.items():
                setattr(record, key, copy.deepcopy(value))
            record.updated_at = _now()
            return copy.deepcopy(record)

    async def find_open(
        self, post_id: str, channel_id: str
    ) -> Optional[DistributionRecord]:
        async with self._lock:
            for record in self._records.values():
                if (
                    record.post_id == post_id
                    and record.channel_id == channel_id
                    and record.status in OPEN_DISTRIBUTION_STATUSES
                ):
                    return copy.deepcopy(record)
        return None

    async def list_records(
        self, filters: DistributionFilter
    ) -> tuple[list[DistributionRecord], int]:
        async with self._lock:
            records = [
                r
                for r in self._records.values()
                if (filters.post_id is None or r.post_id == filters.post_id)
                and (filters.channel_id is None or r.channel_id == filters.channel_id)
                and (filters.platform is None or r.platform == filters.platform)
                and (filters.status is None or r.status == filters.status)
            ]
        records.sort(key=lambda r: r.created_at, reverse=filters.sort_order != "asc")
        page = records[filters.offset : filters.offset + filters.limit]
        return [copy.deepcopy(r) for r in page], len(records)

    async def list_for_post(self, post_id: str) -> list[DistributionRecord]:
        async with self._lock:
            records = [r for r in self._records.values() if r.post_id == post_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in records]

    async def list_due_scheduled(
        self, now: datetime, limit: int
    ) -> list[DistributionRecord]:
        async with self._lock:
            due = [
                r
                for r in self._records.values()
                if r.status == DistributionStatus.SCHEDULED
                and r.scheduled_at is not None
                and r.scheduled_at <= now
            ]
        due.sort(key=lambda r: r.scheduled_at)
        return [copy.deepcopy(r) for r in due[:limit]]

    async def reap_stale_in_progress(
        self, updated_before: datetime, error: str
    ) -> list[DistributionRecord]:
        reaped = []
        async with self._lock:
            for record in self._records.values():
                if (
                    record.status == DistributionStatus.IN_PROGRESS
                    and record.updated_at < updated_before
                ):
                    record.status = DistributionStatus.FAILED
                    record.error_kind = DeliveryErrorKind.TRANSIENT_NETWORK
                    record.last_error = error
                    record.updated_at = _now()
                    reaped.append(copy.deepcopy(record))
        return reaped

    async def delete_finished_before(self, cutoff: datetime) -> int:
        finished = (DistributionStatus.SUCCEEDED, DistributionStatus.CANCELLED)
        async with self._lock:
            doomed = [
                rid
                for rid, r in self._records.items()
                if r.status in finished and r.updated_at < cutoff
            ]
            for rid in doomed:
                del self._records[rid]
        return len(doomed)

    async def count_by_status(self) -> dict[str, int]:
        counts = {s.value: 0 for s in DistributionStatus}
        async with self._lock:
            for r in self._records.values():
                counts[r.status.value] += 1
        return counts


class InMemoryChannelStore:
    """ChannelStore backed by a dict. Seed it with ``add``."""

    def __init__(self, channels: Optional[list[Channel]] = None):
        self._channels: dict[str, Channel] = {c.id: c for c in channels or []}
        self._lock = asyncio.Lock()

    def add(self, channel: Channel) -> None:
        self._channels[channel.id] = copy.deepcopy(channel)

    async def create(self, channel: Channel) -> Channel:
        async with self._lock:
            if channel.id in self._channels:
                raise ValueError(f"Channel {channel.id} already exists")
            self._channels[channel.id] = copy.deepcopy(channel)
            return copy.deepcopy(channel)

    async def get(self, channel_id: str) -> Optional[Channel]:
        async with self._lock:
            channel = self._channels.get(channel_id)
            return copy.deepcopy(channel) if channel else None

    async def update(self, channel_id: str, **changes: Any) -> Optional[Channel]:
        check_fields(changes, CHANNEL_MUTABLE_FIELDS)
        async with self._lock:
            channel = self._channels.get(channel_id)
            if channel is None:
                return None
            for key, value in changes.items():
                setattr(channel, key, copy.deepcopy(value))
            channel.updated_at = _now()
            return copy.deepcopy(channel)

    async def delete(self, channel_id: str) -> bool:
        async with self._lock:
            return self._channels.pop(channel_id, None) is not None

    async def list_channels(self, enabled_only: bool = False) -> list[Channel]:
        async with self._lock:
            channels = [
                c for c in self._channels.values() if c.enabled or not enabled_only
            ]
        channels.sort(key=lambda c: c.created_at)
        return [copy.deepcopy(c) for c in channels]


class InMemoryPostSource:
    """PostSource backed by a dict. Seed it with ``add``."""

    def __init__(self, posts: Optional[list[PostData]] = None):
        self._posts: dict[str, PostData] = {p.id: p for p in posts or []}
        self._lock = asyncio.Lock()

    def add(self, post: PostData) -> None:
        self._posts[post.id] = post

    async def get_post(self, post_id: str) -> Optional[PostData]:
        async with self._lock:
            post = self._posts.get(post_id)
            return copy.deepcopy(post) if post else None

    async def find_posts(
        self, status: str, tag: Optional[str] = None, limit: int = 20
    ) -> list[PostData]:
        async with self._lock:
            posts = [
                p
                for p in self._posts.values()
                if p.status == status and (tag is None or tag in p.tags)
            ]
        return [copy.deepcopy(p) for p in posts[:limit]]

    async def publish_post(self, post_id: str) -> Optional[PostData]:
        async with self._lock:
            post = self._posts.get(post_id)
            if post is None:
                return None
            post.status = "published"
            post.published_at = _now()
            return copy.deepcopy(post)
