"""Distribution data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from app.core.errors import EngineError, ErrorCode


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SocialPlatform(str, Enum):
    """Supported distribution targets."""

    TWITTER = "twitter"
    FACEBOOK = "facebook"
    LINKEDIN = "linkedin"
    TELEGRAM = "telegram"
    DISCORD = "discord"
    WEBHOOK = "webhook"


class DistributionStatus(str, Enum):
    """Distribution record lifecycle."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in OPEN_DISTRIBUTION_STATUSES


OPEN_DISTRIBUTION_STATUSES = (
    DistributionStatus.SCHEDULED,
    DistributionStatus.PENDING,
    DistributionStatus.IN_PROGRESS,
)
CANCELLABLE_STATUSES = (DistributionStatus.SCHEDULED, DistributionStatus.PENDING)
DISPATCHABLE_STATUSES = (DistributionStatus.SCHEDULED, DistributionStatus.PENDING)


class MessageStyle(str, Enum):
    CONCISE = "concise"
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    THREAD = "thread"
    PROMOTIONAL = "promotional"


class DeliveryErrorKind(str, Enum):
    """Why a dispatch did not succeed."""

    RATE_LIMITED = "RATE_LIMITED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    PLATFORM_REJECTED = "PLATFORM_REJECTED"
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    PERMANENT = "PERMANENT"

    @property
    def counts_as_breaker_failure(self) -> bool:
        # CIRCUIT_OPEN is produced by the breaker itself
        return self is not DeliveryErrorKind.CIRCUIT_OPEN

    @property
    def retry_likely_to_succeed(self) -> bool:
        return self not in (
            DeliveryErrorKind.PERMANENT,
            DeliveryErrorKind.PLATFORM_REJECTED,
        )


class DeliveryError(EngineError):
    """A dispatch to an external platform failed."""

    def __init__(
        self,
        kind: DeliveryErrorKind,
        message: str,
        channel_id: Optional[str] = None,
        retry_after_s: Optional[float] = None,
        local: bool = False,
    ):
        details: dict[str, Any] = {"kind": kind.value}
        if channel_id:
            details["channel_id"] = channel_id
        if retry_after_s is not None:
            details["retry_after_s"] = round(retry_after_s, 3)
        super().__init__(
            message, details=details, retryable=kind.retry_likely_to_succeed
        )
        self.kind = kind
        self.channel_id = channel_id
        self.retry_after_s = retry_after_s
        # Raised by our own limiter/breaker before any external call
        self.local = local

    @property
    def code(self) -> ErrorCode:  # type: ignore[override]
        return ErrorCode(self.kind.value)


@dataclass
class Channel:
    """One external distribution target."""

    id: str
    name: str
    platform: SocialPlatform
    credentials: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    # Receives every post the autopublish workflow takes live
    auto_publish: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self, include_credentials: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "platform": self.platform.value,
            "config": self.config,
            "enabled": self.enabled,
            "auto_publish": self.auto_publish,
            "has_credentials": bool(self.credentials),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_credentials:
            data["credentials"] = self.credentials
        return data


@dataclass
class DistributionRecord:
    """Delivery of one post to one channel."""

    id: UUID
    post_id: str
    channel_id: str
    platform: SocialPlatform
    status: DistributionStatus
    content: str = ""
    scheduled_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None
    error_kind: Optional[DeliveryErrorKind] = None
    external_ref: Optional[str] = None
    external_url: Optional[str] = None
    message_override: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    published_at: Optional[datetime] = None

    @property
    def retry_likely_to_succeed(self) -> Optional[bool]:
        if self.error_kind is None:
            return None
        return self.error_kind.retry_likely_to_succeed

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "post_id": self.post_id,
            "channel_id": self.channel_id,
            "platform": self.platform.value,
            "status": self.status.value,
            "content": self.content,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "retry_likely_to_succeed": self.retry_likely_to_succeed,
            "external_ref": self.external_ref,
            "external_url": self.external_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }


@dataclass
class DeliveryResult:
    """Successful delivery returned by a connector."""

    external_ref: Optional[str] = None
    external_url: Optional[str] = None


@dataclass
class OutboundMessage:
    """Built message handed to a connector."""

    text: str
    title: str = ""
    url: Optional[str] = None
    hashtags: list[str] = field(default_factory=list)
    truncated: bool = False


@dataclass
class DistributionFilter:
    post_id: Optional[str] = None
    channel_id: Optional[str] = None
    platform: Optional[SocialPlatform] = None
    status: Optional[DistributionStatus] = None
    page: int = 1
    limit: int = 20
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class BulkDistributeResult:
    created: list[DistributionRecord] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": [r.to_dict() for r in self.created],
            "skipped": self.skipped,
            "errors": self.errors,
            "total_created": len(self.created),
            "total_skipped": len(self.skipped),
        }
