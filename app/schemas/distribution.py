"""Distribution API schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.schemas.common import PageMeta
from app.services.distribution.constants import (
    MAX_BULK_CHANNELS,
    MAX_BULK_POST_IDS,
    MAX_CHANNEL_NAME_LENGTH,
    MAX_MESSAGE_OVERRIDE_LENGTH,
)
from app.services.distribution.models import SocialPlatform


# ===========================================
# Records
# ===========================================


class BulkDistributeRequest(BaseModel):
    """Request body for POST /distribution/bulk."""

    post_ids: list[str] = Field(..., min_length=1, max_length=MAX_BULK_POST_IDS)
    channel_ids: Optional[list[str]] = Field(
        None,
        min_length=1,
        max_length=MAX_BULK_CHANNELS,
        description="Target channels; omit for every enabled channel",
    )
    scheduled_at: Optional[datetime] = Field(
        None, description="Deliver at this time instead of immediately"
    )
    message_override: Optional[str] = Field(
        None, max_length=MAX_MESSAGE_OVERRIDE_LENGTH
    )


class DistributionRecordResponse(BaseModel):
    id: str
    post_id: str
    channel_id: str
    platform: str
    status: str
    content: str
    scheduled_at: Optional[str] = None
    attempts: int
    last_error: Optional[str] = None
    error_kind: Optional[str] = None
    retry_likely_to_succeed: Optional[bool] = None
    external_ref: Optional[str] = None
    external_url: Optional[str] = None
    created_at: str
    updated_at: str
    published_at: Optional[str] = None


class BulkDistributeResponse(BaseModel):
    created: list[DistributionRecordResponse]
    skipped: list[dict[str, str]]
    errors: list[dict[str, str]]
    total_created: int
    total_skipped: int


class DistributionListResponse(PageMeta):
    data: list[DistributionRecordResponse]


class PostDistributionsResponse(BaseModel):
    post_id: str
    records: list[DistributionRecordResponse]


# ===========================================
# Health, stats, kill switch
# ===========================================


class ChannelHealthResponse(BaseModel):
    channel_id: str
    breaker_state: str
    consecutive_failures: int
    tokens_available: float
    next_retry_at: Optional[str] = None


class DistributionHealthResponse(BaseModel):
    enabled: bool
    channels: dict[str, ChannelHealthResponse]


class KillSwitchRequest(BaseModel):
    enabled: bool = Field(..., description="False stops all new dispatches")
    reason: Optional[str] = Field(None, max_length=500)


class KillSwitchResponse(BaseModel):
    enabled: bool


class ScheduledRunResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    skipped: int


class CleanupResponse(BaseModel):
    deleted: int
    retention_days: int


class StatsResponse(BaseModel):
    enabled: bool
    records: dict[str, int]
    total_records: int
    success_rate: Optional[float] = None
    channels: dict[str, int]
    platforms: dict[str, dict[str, int]]


# ===========================================
# Channels
# ===========================================


class ChannelCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=MAX_CHANNEL_NAME_LENGTH)
    platform: SocialPlatform
    credentials: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    auto_publish: bool = Field(
        default=False, description="Receive every post the autopublish workflow publishes"
    )


class ChannelUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=MAX_CHANNEL_NAME_LENGTH)
    credentials: Optional[dict[str, Any]] = None
    config: Optional[dict[str, Any]] = None
    enabled: Optional[bool] = None
    auto_publish: Optional[bool] = None


class ChannelResponse(BaseModel):
    id: str
    name: str
    platform: str
    config: dict[str, Any]
    enabled: bool
    auto_publish: bool = False
    has_credentials: bool
    created_at: str
    updated_at: str


class ChannelListResponse(BaseModel):
    channels: list[ChannelResponse]


class CredentialCheckResponse(BaseModel):
    valid: bool
    missing: list[str] = Field(default_factory=list)
    error: Optional[str] = None
