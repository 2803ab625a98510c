"""Per-channel breaker, rate limiter and lock, created lazily."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.config import Settings
from app.services.distribution.breaker import (
    BreakerConfig,
    BreakerState,
    CircuitBreaker,
    Clock,
)
from app.services.distribution.models import DeliveryError, DeliveryErrorKind
from app.services.distribution.rate_limiter import TokenBucket


@dataclass
class ChannelHealth:
    """Read-only health snapshot for one channel."""

    channel_id: str
    breaker_state: BreakerState
    consecutive_failures: int
    tokens_available: float
    next_retry_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "breaker_state": self.breaker_state.value,
            "consecutive_failures": self.consecutive_failures,
            "tokens_available": round(self.tokens_available, 3),
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


@dataclass
class ChannelGuard:
    channel_id: str
    breaker: CircuitBreaker
    bucket: TokenBucket
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def precheck(self) -> int:
        """Admit one dispatch or raise a local DeliveryError.

        Returns the breaker generation the admission belongs to. Must be
        called while holding ``lock``.
        """
        generation = self.breaker.admit()
        if generation is None:
            raise DeliveryError(
                DeliveryErrorKind.CIRCUIT_OPEN,
                "Circuit open for channel",
                channel_id=self.channel_id,
                retry_after_s=self.breaker.retry_after(),
                local=True,
            )
        if not self.bucket.try_acquire():
            # Never reached the platform: do not hold the half-open trial
            self.breaker.release_trial(generation)
            raise DeliveryError(
                DeliveryErrorKind.RATE_LIMITED,
                "Channel rate limit reached",
                channel_id=self.channel_id,
                retry_after_s=self.bucket.seconds_until_available(),
                local=True,
            )
        return generation

    def health(self) -> ChannelHealth:
        return ChannelHealth(
            channel_id=self.channel_id,
            breaker_state=self.breaker.state,
            consecutive_failures=self.breaker.consecutive_failures,
            tokens_available=self.bucket.tokens_available,
            next_retry_at=self.breaker.next_retry_at(),
        )


class ChannelGuardRegistry:
    """Process-wide guards keyed by channel id."""

    def __init__(
        self,
        breaker_config: BreakerConfig,
        rate_per_second: float,
        burst: int,
        clock: Clock = time.monotonic,
    ):
        self._breaker_config = breaker_config
        self._rate_per_second = rate_per_second
        self._burst = burst
        self._clock = clock
        self._guards: dict[str, ChannelGuard] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Clock = time.monotonic
    ) -> "ChannelGuardRegistry":
        return cls(
            breaker_config=BreakerConfig.from_settings(settings),
            rate_per_second=settings.channel_rate_per_second,
            burst=settings.channel_rate_burst,
            clock=clock,
        )

    def get(self, channel_id: str) -> ChannelGuard:
        """Get or create the guard for a channel."""
        guard = self._guards.get(channel_id)
        if guard is None:
            # No await between check and insert: creation is atomic on the loop
            guard = ChannelGuard(
                channel_id=channel_id,
                breaker=CircuitBreaker(channel_id, self._breaker_config, self._clock),
                bucket=TokenBucket(self._rate_per_second, self._burst, self._clock),
            )
            self._guards[channel_id] = guard
        return guard

    def peek(self, channel_id: str) -> Optional[ChannelGuard]:
        """Existing guard or None. Never creates state."""
        return self._guards.get(channel_id)

    def health(self, channel_id: str) -> ChannelHealth:
        guard = self.peek(channel_id)
        if guard is None:
            return ChannelHealth(
                channel_id=channel_id,
                breaker_state=BreakerState.CLOSED,
                consecutive_failures=0,
                tokens_available=float(self._burst),
            )
        return guard.health()

    def discard(self, channel_id: str) -> None:
        self._guards.pop(channel_id, None)
