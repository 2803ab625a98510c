"""Distribution endpoints: bulk fan-out, record lifecycle, channels, health."""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from app.deps.security import require_admin_token
from app.deps.services import get_distribution_service, get_scheduler
from app.schemas import (
    ERROR_RESPONSES,
    BulkDistributeRequest,
    BulkDistributeResponse,
    ChannelCreateRequest,
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
from app.services.distribution.models import (
    DistributionFilter,
    DistributionStatus,
    SocialPlatform,
)
from app.services.distribution.scheduler import ScheduledDistributionPoller
from app.services.distribution.service import DistributionService

router = APIRouter(
    prefix="/distribution",
    tags=["Distribution"],
    dependencies=[Depends(require_admin_token)],
    responses=ERROR_RESPONSES,
)
logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@router.post("/bulk", response_model=BulkDistributeResponse)
async def bulk_distribute(
    body: BulkDistributeRequest,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    """
    Distribute posts to channels.

    Creates one record per (post, channel) pair. Pairs that already have an
    open record are reported under `skipped`; unknown posts or channels under
    `errors`. Records without `scheduled_at` are dispatched immediately.
    """
    result = await service.bulk_distribute(
        body.post_ids,
        channel_ids=body.channel_ids,
        scheduled_at=body.scheduled_at,
        message_override=body.message_override,
    )
    return result.to_dict()


@router.get("/records", response_model=DistributionListResponse)
async def list_records(
    post_id: Optional[str] = None,
    channel_id: Optional[str] = None,
    platform: Optional[SocialPlatform] = None,
    record_status: Optional[DistributionStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    result = await service.get_distributions(
        DistributionFilter(
            post_id=post_id,
            channel_id=channel_id,
            platform=platform,
            status=record_status,
            page=page,
            limit=limit,
            sort_order=sort_order,
        )
    )
    return result.to_dict()


@router.get("/records/{record_id}", response_model=DistributionRecordResponse)
async def get_record(
    record_id: UUID,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    record = await service.get_distribution_by_id(record_id)
    return record.to_dict()


@router.post("/records/{record_id}/retry", response_model=DistributionRecordResponse)
async def retry_record(
    record_id: UUID,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    """
    Retry a FAILED record and dispatch it right away.

    503 CIRCUIT_OPEN while the channel's breaker is open; the record is left
    as it was.
    """
    record = await service.retry_distribution(record_id)
    return record.to_dict()


@router.post("/records/{record_id}/cancel", response_model=DistributionRecordResponse)
async def cancel_record(
    record_id: UUID,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    record = await service.cancel_distribution(record_id)
    return record.to_dict()


@router.get("/posts/{post_id}", response_model=PostDistributionsResponse)
async def get_post_records(
    post_id: str,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    records = await service.get_post_distributions(post_id)
    return {"post_id": post_id, "records": [r.to_dict() for r in records]}


# ---------------------------------------------------------------------------
# Health, stats, kill switch, scheduled processing
# ---------------------------------------------------------------------------


@router.get("/health", response_model=DistributionHealthResponse)
async def distribution_health(
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    """Breaker and rate limiter state per channel. Read-only."""
    health = await service.health_check()
    return {
        "enabled": service.is_enabled(),
        "channels": {cid: h.to_dict() for cid, h in health.items()},
    }


@router.get("/stats", response_model=StatsResponse)
async def distribution_stats(
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    return await service.get_stats()


@router.get("/kill-switch", response_model=KillSwitchResponse)
async def get_kill_switch(
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    return {"enabled": service.is_enabled()}


@router.post("/kill-switch", response_model=KillSwitchResponse)
async def set_kill_switch(
    body: KillSwitchRequest,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    """Turn distribution on or off for this process."""
    return {"enabled": service.set_enabled(body.enabled, reason=body.reason)}


@router.post("/scheduled/run", response_model=ScheduledRunResponse)
async def run_scheduled(
    scheduler: ScheduledDistributionPoller = Depends(get_scheduler),
) -> dict:
    """Dispatch due scheduled records now instead of waiting for the poller."""
    return await scheduler.run_once()


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_records(
    retention_days: Optional[int] = Query(None, ge=1),
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    days = retention_days or service.retention_days
    deleted = await service.cleanup_old_records(days)
    return {"deleted": deleted, "retention_days": days}


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


@router.get("/channels", response_model=ChannelListResponse)
async def list_channels(
    enabled_only: bool = False,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    channels = await service.list_channels(enabled_only=enabled_only)
    return {"channels": [c.to_dict() for c in channels]}


@router.post(
    "/channels", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED
)
async def create_channel(
    body: ChannelCreateRequest,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    channel = await service.create_channel(
        name=body.name,
        platform=body.platform,
        credentials=body.credentials,
        config=body.config,
        enabled=body.enabled,
        auto_publish=body.auto_publish,
    )
    return channel.to_dict()


@router.get("/channels/{channel_id}", response_model=ChannelResponse)
async def get_channel(
    channel_id: str,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    channel = await service.get_channel(channel_id)
    return channel.to_dict()


@router.patch("/channels/{channel_id}", response_model=ChannelResponse)
async def update_channel(
    channel_id: str,
    body: ChannelUpdateRequest,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    channel = await service.update_channel(
        channel_id, **body.model_dump(exclude_unset=True)
    )
    return channel.to_dict()


@router.delete("/channels/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_channel(
    channel_id: str,
    service: DistributionService = Depends(get_distribution_service),
) -> Response:
    await service.delete_channel(channel_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/channels/{channel_id}/validate", response_model=CredentialCheckResponse)
async def validate_channel(
    channel_id: str,
    service: DistributionService = Depends(get_distribution_service),
) -> dict:
    """Check the channel's credentials against the platform where possible."""
    return await service.validate_channel_credentials(channel_id)
