"""Distribution service - fan-out of posts to social channels.

Owns the record lifecycle:

    SCHEDULED / PENDING --dispatch--> IN_PROGRESS --> SUCCEEDED | FAILED
    SCHEDULED / PENDING --cancel--> CANCELLED
    FAILED --retry--> PENDING --dispatch--> ...

Delivery itself (limiter, breaker, connector) lives in the Dispatcher.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence
from uuid import UUID, uuid4

import structlog

from app.core.errors import (
    InvalidStateError,
    ModuleDisabledError,
    NotFoundError,
    ValidationFailedError,
)
from app.core.pagination import Page
from app.services.distribution.breaker import BreakerState
from app.services.distribution.constants import (
    MAX_BULK_CHANNELS,
    MAX_BULK_POST_IDS,
    MAX_CHANNEL_NAME_LENGTH,
    MAX_MESSAGE_OVERRIDE_LENGTH,
    MAX_PAGE_SIZE,
    REQUIRED_CREDENTIALS,
)
from app.services.distribution.dispatcher import Dispatcher
from app.services.distribution.guards import ChannelHealth
from app.services.distribution.message_builder import build_message
from app.services.distribution.models import (
    CANCELLABLE_STATUSES,
    DISPATCHABLE_STATUSES,
    BulkDistributeResult,
    Channel,
    DeliveryError,
    DeliveryErrorKind,
    DistributionFilter,
    DistributionRecord,
    DistributionStatus,
    OutboundMessage,
    SocialPlatform,
)
from app.services.posts import PostData, PostSource
from app.repositories.store import ChannelStore, DistributionStore

logger = structlog.get_logger(__name__)

INTERRUPTED_ERROR = "Dispatch interrupted before the platform outcome was recorded"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DistributionService:
    """Bulk distribution, retry/cancel, queries, channels and the kill switch."""

    def __init__(
        self,
        records: DistributionStore,
        channels: ChannelStore,
        posts: PostSource,
        dispatcher: Dispatcher,
        enabled: bool = True,
        max_retries: int = 3,
        site_base_url: Optional[str] = None,
        utm_source: Optional[str] = None,
        scheduled_batch_size: int = 50,
        retention_days: int = 90,
        stale_timeout_minutes: int = 10,
    ):
        self._records = records
        self._channels = channels
        self._posts = posts
        self._dispatcher = dispatcher
        self._enabled = enabled
        self.max_retries = max_retries
        self.site_base_url = site_base_url
        self.utm_source = utm_source
        self.scheduled_batch_size = scheduled_batch_size
        self.retention_days = retention_days
        self.stale_timeout_minutes = stale_timeout_minutes

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    # =========================================================================
    # Kill switch
    # =========================================================================

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool, reason: Optional[str] = None) -> bool:
        if enabled != self._enabled:
            logger.warning(
                "distribution_kill_switch_changed", enabled=enabled, reason=reason
            )
        self._enabled = enabled
        return self._enabled

    def _ensure_enabled(self) -> None:
        if not self._enabled:
            raise ModuleDisabledError("distribution")

    # =========================================================================
    # Bulk distribution
    # =========================================================================

    async def distribute_post(
        self,
        post_id: str,
        channel_ids: Optional[list[str]] = None,
        scheduled_at: Optional[datetime] = None,
        message_override: Optional[str] = None,
    ) -> BulkDistributeResult:
        """Distribute a single post. Same semantics as ``bulk_distribute``."""
        return await self.bulk_distribute(
            [post_id],
            channel_ids=channel_ids,
            scheduled_at=scheduled_at,
            message_override=message_override,
        )

    async def bulk_distribute(
        self,
        post_ids: Sequence[str],
        channel_ids: Optional[Sequence[str]] = None,
        scheduled_at: Optional[datetime] = None,
        message_override: Optional[str] = None,
    ) -> BulkDistributeResult:
        """
        Create one record per (post, channel) pair and dispatch the
        non-scheduled ones.

        Pairs that already have an open record are skipped, so calling this
        twice with the same arguments creates nothing the second time.
        Unknown posts and unknown or disabled channels end up in ``errors``.

        Args:
            post_ids: Posts to distribute (1..MAX_BULK_POST_IDS)
            channel_ids: Target channels; None means every enabled channel
            scheduled_at: Future time for deferred delivery
            message_override: Text used instead of the built message

        Raises:
            ModuleDisabledError: kill switch is off
            ValidationFailedError: empty or oversized input
        """
        self._ensure_enabled()
        post_ids = list(dict.fromkeys(post_ids))
        if not post_ids:
            raise ValidationFailedError("At least one post_id is required")
        if len(post_ids) > MAX_BULK_POST_IDS:
            raise ValidationFailedError(
                f"At most {MAX_BULK_POST_IDS} posts per bulk request"
            )
        if channel_ids is not None:
            channel_ids = list(dict.fromkeys(channel_ids))
            if not channel_ids:
                raise ValidationFailedError("channel_ids must not be empty")
            if len(channel_ids) > MAX_BULK_CHANNELS:
                raise ValidationFailedError(
                    f"At most {MAX_BULK_CHANNELS} channels per bulk request"
                )
        if message_override and len(message_override) > MAX_MESSAGE_OVERRIDE_LENGTH:
            raise ValidationFailedError(
                f"message_override exceeds {MAX_MESSAGE_OVERRIDE_LENGTH} characters"
            )

        result = BulkDistributeResult()
        channels = await self._resolve_channels(channel_ids, result)

        deferred = scheduled_at is not None and scheduled_at > _now()
        initial_status = (
            DistributionStatus.SCHEDULED if deferred else DistributionStatus.PENDING
        )

        to_dispatch: list[DistributionRecord] = []
        for post_id in post_ids:
            post = await self._posts.get_post(post_id)
            if post is None:
                result.errors.append({"post_id": post_id, "error": "Post not found"})
                continue

            for channel in channels:
                message = self.build_message_for(post, channel, message_override)
                record = DistributionRecord(
                    id=uuid4(),
                    post_id=post_id,
                    channel_id=channel.id,
                    platform=channel.platform,
                    status=initial_status,
                    content=message.text,
                    scheduled_at=scheduled_at if deferred else None,
                    message_override=message_override,
                )
                created = await self._records.create_if_absent(record)
                if created is None:
                    result.skipped.append(
                        {
                            "post_id": post_id,
                            "channel_id": channel.id,
                            "reason": "already_open",
                        }
                    )
                    continue
                result.created.append(created)
                if not deferred:
                    to_dispatch.append(created)

        if to_dispatch:
            channel_map = {c.id: c for c in channels}
            dispatched = await self._dispatch_many(to_dispatch, channel_map)
            result.created = [dispatched.get(r.id, r) for r in result.created]

        logger.info(
            "distribution_bulk_completed",
            posts=len(post_ids),
            channels=len(channels),
            created=len(result.created),
            skipped=len(result.skipped),
            errors=len(result.errors),
            scheduled=deferred,
        )
        return result

    async def auto_distribute(self, post_id: str) -> Optional[BulkDistributeResult]:
        """
        Hand a freshly published post to every enabled auto-publish channel.

        Channels that already delivered this post are left out. Returns None,
        without raising, when the kill switch is off or no channel is due.
        """
        if not self._enabled:
            logger.info("distribution_auto_skipped", post_id=post_id, reason="disabled")
            return None

        channels = [
            c
            for c in await self._channels.list_channels(enabled_only=True)
            if c.auto_publish
        ]
        delivered = {
            r.channel_id
            for r in await self._records.list_for_post(post_id)
            if r.status == DistributionStatus.SUCCEEDED
        }
        channel_ids = [c.id for c in channels if c.id not in delivered]
        if not channel_ids:
            logger.info(
                "distribution_auto_skipped", post_id=post_id, reason="no_channels"
            )
            return None

        return await self.bulk_distribute([post_id], channel_ids=channel_ids)

    async def _resolve_channels(
        self, channel_ids: Optional[list[str]], result: BulkDistributeResult
    ) -> list[Channel]:
        if channel_ids is None:
            return await self._channels.list_channels(enabled_only=True)

        channels = []
        for channel_id in channel_ids:
            channel = await self._channels.get(channel_id)
            if channel is None:
                result.errors.append(
                    {"channel_id": channel_id, "error": "Channel not found"}
                )
            elif not channel.enabled:
                result.errors.append(
                    {"channel_id": channel_id, "error": "Channel disabled"}
                )
            else:
                channels.append(channel)
        return channels

    def build_message_for(
        self, post: PostData, channel: Channel, override: Optional[str]
    ) -> OutboundMessage:
        return build_message(
            post,
            channel.platform,
            override=override,
            site_base_url=self.site_base_url,
            utm_source=self.utm_source,
        )

    async def _dispatch_many(
        self,
        records: list[DistributionRecord],
        channels: dict[str, Channel],
    ) -> dict[UUID, DistributionRecord]:
        """Concurrent across channels, sequential within one channel."""
        by_channel: dict[str, list[DistributionRecord]] = defaultdict(list)
        for record in records:
            by_channel[record.channel_id].append(record)

        async def run_channel(batch: list[DistributionRecord]) -> list[DistributionRecord]:
            done = []
            for record in batch:
                done.append(
                    await self._dispatch_record(record, channels.get(record.channel_id))
                )
            return done

        finished = await asyncio.gather(*(run_channel(b) for b in by_channel.values()))
        return {r.id: r for batch in finished for r in batch}

    async def _dispatch_record(
        self,
        record: DistributionRecord,
        channel: Optional[Channel] = None,
    ) -> DistributionRecord:
        """Deliver one SCHEDULED/PENDING record and persist the outcome."""
        log = logger.bind(record_id=str(record.id), channel_id=record.channel_id)

        claimed = await self._records.transition(
            record.id, DISPATCHABLE_STATUSES, status=DistributionStatus.IN_PROGRESS
        )
        if claimed is None:
            # Cancelled or picked up elsewhere
            latest = await self._records.get(record.id)
            log.info(
                "distribution_dispatch_skipped",
                status=latest.status.value if latest else None,
            )
            return latest or record

        try:
            if channel is None:
                channel = await self._channels.get(claimed.channel_id)
            if channel is None or not channel.enabled:
                raise DeliveryError(
                    DeliveryErrorKind.PERMANENT,
                    "Channel not found" if channel is None else "Channel disabled",
                    channel_id=claimed.channel_id,
                )
            message = await self._message_for(claimed, channel)
            delivery = await self._dispatcher.dispatch(claimed, channel, message)
        except asyncio.CancelledError:
            # Shielded so a second cancel cannot strand the record IN_PROGRESS
            await asyncio.shield(
                self._records.transition(
                    claimed.id,
                    (DistributionStatus.IN_PROGRESS,),
                    status=DistributionStatus.FAILED,
                    last_error=INTERRUPTED_ERROR,
                    error_kind=DeliveryErrorKind.TRANSIENT_NETWORK,
                )
            )
            log.warning("distribution_interrupted", attempts=claimed.attempts)
            raise
        except DeliveryError as e:
            failed = await asyncio.shield(
                self._records.transition(
                    claimed.id,
                    (DistributionStatus.IN_PROGRESS,),
                    status=DistributionStatus.FAILED,
                    last_error=e.message,
                    error_kind=e.kind,
                )
            )
            log.warning(
                "distribution_failed",
                kind=e.kind.value,
                error=e.message,
                attempts=claimed.attempts,
            )
            return failed or claimed

        # The platform accepted the post; persist that even if we are cancelled now
        succeeded = await asyncio.shield(
            self._records.transition(
                claimed.id,
                (DistributionStatus.IN_PROGRESS,),
                status=DistributionStatus.SUCCEEDED,
                external_ref=delivery.external_ref,
                external_url=delivery.external_url,
                last_error=None,
                error_kind=None,
                published_at=_now(),
            )
        )
        log.info("distribution_succeeded", external_ref=delivery.external_ref)
        return succeeded or claimed

    async def _message_for(
        self, record: DistributionRecord, channel: Channel
    ) -> OutboundMessage:
        post = await self._posts.get_post(record.post_id)
        if post is None:
            return OutboundMessage(text=record.content)
        return self.build_message_for(post, channel, record.message_override)

    # =========================================================================
    # Retry / cancel
    # =========================================================================

    async def retry_distribution(self, record_id: UUID) -> DistributionRecord:
        """
        Re-dispatch a FAILED record.

        Fails fast with CIRCUIT_OPEN, leaving the record and its attempt count
        as they are, while the channel's breaker would refuse a dispatch: open,
        or half-open with its trial already in flight.

        Raises:
            ModuleDisabledError: kill switch is off
            NotFoundError: unknown record
            InvalidStateError: not FAILED, or retry budget used up
            DeliveryError: CIRCUIT_OPEN
        """
        self._ensure_enabled()
        record = await self.get_distribution_by_id(record_id)
        if record.status != DistributionStatus.FAILED:
            raise InvalidStateError(
                "DistributionRecord", record_id, record.status.value, "retry"
            )
        if record.attempts >= self.max_retries:
            raise InvalidStateError(
                "DistributionRecord",
                record_id,
                "failed (retry budget exhausted)",
                "retry",
            )

        guard = self._dispatcher.guards.peek(record.channel_id)
        if guard is not None:
            async with guard.lock:
                admissible = guard.breaker.would_admit()
                retry_after = guard.breaker.retry_after()
            if not admissible:
                raise DeliveryError(
                    DeliveryErrorKind.CIRCUIT_OPEN,
                    "Circuit open for channel",
                    channel_id=record.channel_id,
                    retry_after_s=retry_after,
                    local=True,
                )

        pending = await self._records.transition(
            record.id,
            (DistributionStatus.FAILED,),
            status=DistributionStatus.PENDING,
            attempts=record.attempts + 1,
        )
        if pending is None:
            latest = await self.get_distribution_by_id(record_id)
            raise InvalidStateError(
                "DistributionRecord", record_id, latest.status.value, "retry"
            )

        logger.info(
            "distribution_retried", record_id=str(record_id), attempts=pending.attempts
        )
        return await self._dispatch_record(pending)

    async def cancel_distribution(self, record_id: UUID) -> DistributionRecord:
        record = await self.get_distribution_by_id(record_id)
        cancelled = await self._records.transition(
            record.id, CANCELLABLE_STATUSES, status=DistributionStatus.CANCELLED
        )
        if cancelled is None:
            latest = await self.get_distribution_by_id(record_id)
            raise InvalidStateError(
                "DistributionRecord", record_id, latest.status.value, "cancel"
            )
        logger.info("distribution_cancelled", record_id=str(record_id))
        return cancelled

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_distribution_by_id(self, record_id: UUID) -> DistributionRecord:
        record = await self._records.get(record_id)
        if record is None:
            raise NotFoundError("DistributionRecord", record_id)
        return record

    async def get_post_distributions(self, post_id: str) -> list[DistributionRecord]:
        return await self._records.list_for_post(post_id)

    async def get_distributions(self, filters: DistributionFilter) -> Page:
        if filters.page < 1 or filters.limit < 1 or filters.limit > MAX_PAGE_SIZE:
            raise ValidationFailedError(
                f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}"
            )
        if filters.sort_order not in ("asc", "desc"):
            raise ValidationFailedError("sort_order must be 'asc' or 'desc'")
        records, total = await self._records.list_records(filters)
        return Page(data=records, total=total, page=filters.page, limit=filters.limit)

    async def health_check(self) -> dict[str, ChannelHealth]:
        """Breaker/limiter snapshot per configured channel. Never creates state."""
        channels = await self._channels.list_channels()
        return {c.id: self._dispatcher.guards.health(c.id) for c in channels}

    async def get_stats(self) -> dict[str, Any]:
        counts = await self._records.count_by_status()
        channels = await self._channels.list_channels()
        health = await self.health_check()

        succeeded = counts.get(DistributionStatus.SUCCEEDED.value, 0)
        failed = counts.get(DistributionStatus.FAILED.value, 0)
        finished = succeeded + failed

        platforms: dict[str, dict[str, int]] = {}
        for channel in channels:
            entry = platforms.setdefault(
                channel.platform.value, {"channels": 0, "open_circuits": 0}
            )
            entry["channels"] += 1
            if health[channel.id].breaker_state != BreakerState.CLOSED:
                entry["open_circuits"] += 1

        return {
            "enabled": self._enabled,
            "records": {s.value: counts.get(s.value, 0) for s in DistributionStatus},
            "total_records": sum(counts.values()),
            "success_rate": round(succeeded / finished, 4) if finished else None,
            "channels": {
                "total": len(channels),
                "enabled": sum(1 for c in channels if c.enabled),
            },
            "platforms": platforms,
        }

    # =========================================================================
    # Scheduled processing and retention
    # =========================================================================

    async def process_scheduled(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Dispatch SCHEDULED records that are due."""
        summary = {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}
        if not self._enabled:
            logger.info("distribution_scheduled_skipped", reason="disabled")
            return summary

        due = await self._records.list_due_scheduled(
            now or _now(), self.scheduled_batch_size
        )
        if not due:
            return summary

        channel_ids = {r.channel_id for r in due}
        channels = {}
        for channel_id in channel_ids:
            channel = await self._channels.get(channel_id)
            if channel is not None:
                channels[channel_id] = channel

        finished = await self._dispatch_many(due, channels)
        for record in finished.values():
            summary["processed"] += 1
            if record.status == DistributionStatus.SUCCEEDED:
                summary["succeeded"] += 1
            elif record.status == DistributionStatus.FAILED:
                summary["failed"] += 1
            else:
                summary["skipped"] += 1

        logger.info("distribution_scheduled_processed", **summary)
        return summary

    async def reap_stale_distributions(
        self, stale_minutes: Optional[int] = None
    ) -> list[DistributionRecord]:
        """Fail IN_PROGRESS records left behind by a dispatch that never finished."""
        minutes = self.stale_timeout_minutes if stale_minutes is None else stale_minutes
        reaped = await self._records.reap_stale_in_progress(
            _now() - timedelta(minutes=minutes), INTERRUPTED_ERROR
        )
        for record in reaped:
            logger.warning(
                "distribution_reaped",
                record_id=str(record.id),
                channel_id=record.channel_id,
            )
        return reaped

    async def cleanup_old_records(self, retention_days: Optional[int] = None) -> int:
        days = self.retention_days if retention_days is None else retention_days
        if days < 1:
            raise ValidationFailedError("retention_days must be >= 1")
        deleted = await self._records.delete_finished_before(
            _now() - timedelta(days=days)
        )
        logger.info("distribution_records_cleaned", deleted=deleted, retention_days=days)
        return deleted

    # =========================================================================
    # Channels
    # =========================================================================

    async def list_channels(self, enabled_only: bool = False) -> list[Channel]:
        return await self._channels.list_channels(enabled_only=enabled_only)

    async def get_channel(self, channel_id: str) -> Channel:
        channel = await self._channels.get(channel_id)
        if channel is None:
            raise NotFoundError("Channel", channel_id)
        return channel

    async def create_channel(
        self,
        name: str,
        platform: SocialPlatform,
        credentials: Optional[dict[str, Any]] = None,
        config: Optional[dict[str, Any]] = None,
        enabled: bool = True,
        auto_publish: bool = False,
    ) -> Channel:
        name = (name or "").strip()
        if not name or len(name) > MAX_CHANNEL_NAME_LENGTH:
            raise ValidationFailedError(
                f"Channel name must be 1-{MAX_CHANNEL_NAME_LENGTH} characters"
            )
        channel = await self._channels.create(
            Channel(
                id=str(uuid4()),
                name=name,
                platform=platform,
                credentials=credentials or {},
                config=config or {},
                enabled=enabled,
                auto_publish=auto_publish,
            )
        )
        logger.info(
            "channel_created", channel_id=channel.id, platform=platform.value
        )
        return channel

    async def update_channel(self, channel_id: str, **changes: Any) -> Channel:
        changes = {k: v for k, v in changes.items() if v is not None}
        if "name" in changes:
            name = changes["name"].strip()
            if not name or len(name) > MAX_CHANNEL_NAME_LENGTH:
                raise ValidationFailedError(
                    f"Channel name must be 1-{MAX_CHANNEL_NAME_LENGTH} characters"
                )
            changes["name"] = name
        if not changes:
            return await self.get_channel(channel_id)

        channel = await self._channels.update(channel_id, **changes)
        if channel is None:
            raise NotFoundError("Channel", channel_id)
        logger.info("channel_updated", channel_id=channel_id, fields=sorted(changes))
        return channel

    async def delete_channel(self, channel_id: str) -> None:
        if not await self._channels.delete(channel_id):
            raise NotFoundError("Channel", channel_id)
        self._dispatcher.guards.discard(channel_id)
        logger.info("channel_deleted", channel_id=channel_id)

    async def validate_channel_credentials(self, channel_id: str) -> dict[str, Any]:
        """Check credential shape and, where the platform allows, liveness."""
        channel = await self.get_channel(channel_id)
        required = REQUIRED_CREDENTIALS.get(channel.platform, ())
        missing = [k for k in required if not channel.credentials.get(k)]
        if missing:
            return {"valid": False, "missing": missing}

        try:
            connector = self._dispatcher.connectors.get(channel.platform)
        except KeyError:
            return {"valid": False, "error": "No connector for platform"}
        valid = await connector.validate_credentials(channel.credentials)
        return {"valid": valid, "missing": []}
