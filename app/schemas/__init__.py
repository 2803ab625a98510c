"""Pydantic models for request/response validation.

Imports like `from app.schemas import X` re-export the submodules.
"""

from app.schemas.common import (
    ERROR_RESPONSES,
    DependencyHealth,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    PageMeta,
)
from app.schemas.distribution import (
    BulkDistributeRequest,
    BulkDistributeResponse,
    ChannelCreateRequest,
    ChannelHealthResponse,
    ChannelListResponse,
    ChannelResponse,
    ChannelUpdateRequest,
    CleanupResponse,
    CredentialCheckResponse,
    DistributionHealthResponse,
    DistributionListResponse,
    DistributionRecordResponse,
    KillSwitchRequest,
    KillSwitchResponse,
    PostDistributionsResponse,
    ScheduledRunResponse,
    StatsResponse,
)
from app.schemas.jobs import (
    EnqueueJobRequest,
    JobListResponse,
    JobResponse,
    RunJobsRequest,
    RunJobsResponse,
)

__all__ = [
    # Common
    "ERROR_RESPONSES",
    "DependencyHealth",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "PageMeta",
    # Jobs
    "EnqueueJobRequest",
    "JobListResponse",
    "JobResponse",
    "RunJobsRequest",
    "RunJobsResponse",
    # Distribution
    "BulkDistributeRequest",
    "BulkDistributeResponse",
    "ChannelCreateRequest",
    "ChannelHealthResponse",
    "ChannelListResponse",
    "ChannelResponse",
    "ChannelUpdateRequest",
    "CleanupResponse",
    "CredentialCheckResponse",
    "DistributionHealthResponse",
    "DistributionListResponse",
    "DistributionRecordResponse",
    "KillSwitchRequest",
    "KillSwitchResponse",
    "PostDistributionsResponse",
    "ScheduledRunResponse",
    "StatsResponse",
]
