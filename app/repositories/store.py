"""Record store protocols.

Services depend on these protocols, not on a concrete backend. The asyncpg
repositories and the in-memory stores both implement them. ``transition`` is
the conditional update every state change goes through: it applies
``changes`` only if the record's current status is one of ``expected`` and
returns None otherwise.
"""

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence
from uuid import UUID

from app.jobs.models import Job
from app.jobs.types import JobStatus, JobType
from app.services.distribution.models import (
    Channel,
    DistributionFilter,
    DistributionRecord,
    DistributionStatus,
)

JOB_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "step",
        "result",
        "attempts",
        "last_error",
        "cancel_requested",
        "locked_at",
        "locked_by",
        "started_at",
        "completed_at",
    }
)

RECORD_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "content",
        "scheduled_at",
        "attempts",
        "last_error",
        "error_kind",
        "external_ref",
        "external_url",
        "published_at",
    }
)

CHANNEL_MUTABLE_FIELDS = frozenset(
    {"name", "credentials", "config", "enabled", "auto_publish"}
)


def check_fields(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")


class JobStore(Protocol):
    async def create(self, job: Job) -> Job:
        ...

    async def get(self, job_id: UUID) -> Optional[Job]:
        ...

    async def transition(
        self, job_id: UUID, expected: Sequence[JobStatus], **changes: Any
    ) -> Optional[Job]:
        ...

    async def find_open_by_fingerprint(
        self, fingerprint: str, since: datetime
    ) -> Optional[Job]:
        ...

    async def list_jobs(
        self,
        limit: int = 20,
        offset: int = 0,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
    ) -> tuple[list[Job], int]:
        ...

    async def list_claimable(self, limit: Optional[int] = None) -> list[Job]:
        ...

    async def reap_stale(self, locked_before: datetime) -> list[Job]:
        ...


class DistributionStore(Protocol):
    async def create_if_absent(
        self, record: DistributionRecord
    ) -> Optional[DistributionRecord]:
        ...

    async def get(self, record_id: UUID) -> Optional[DistributionRecord]:
        ...

    async def transition(
        self,
        record_id: UUID,
        expected: Sequence[DistributionStatus],
        **changes: Any,
    ) -> Optional[DistributionRecord]:
        ...

    async def find_open(
        self, post_id: str, channel_id: str
    ) -> Optional[DistributionRecord]:
        ...

    async def list_records(
        self, filters: DistributionFilter
    ) -> tuple[list[DistributionRecord], int]:
        ...

    async def list_for_post(self, post_id: str) -> list[DistributionRecord]:
        ...

    async def list_due_scheduled(
        self, now: datetime, limit: int
    ) -> list[DistributionRecord]:
        ...

    async def reap_stale_in_progress(
        self, updated_before: datetime, error: str
    ) -> list[DistributionRecord]:
        ...

    async def delete_finished_before(self, cutoff: datetime) -> int:
        ...

    async def count_by_status(self) -> dict[str, int]:
        ...


class ChannelStore(Protocol):
    async def create(self, channel: Channel) -> Channel:
        ...

    async def get(self, channel_id: str) -> Optional[Channel]:
        ...

    async def update(self, channel_id: str, **changes: Any) -> Optional[Channel]:
        ...

    async def delete(self, channel_id: str) -> bool:
        ...

    async def list_channels(self, enabled_only: bool = False) -> list[Channel]:
        ...
