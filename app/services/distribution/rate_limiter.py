"""Per-channel token bucket."""

import time
from typing import Any, Callable

Clock = Callable[[], float]


class TokenBucket:
    """
    Token bucket with continuous refill.

    Holds at most ``burst`` tokens and refills at ``rate_per_second``. Each
    dispatch takes one token; an empty bucket rejects without waiting.
    Not thread-safe on its own; callers serialize through the channel lock.
    """

    def __init__(
        self,
        rate_per_second: float,
        burst: int,
        clock: Clock = time.monotonic,
    ):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate_per_second = rate_per_second
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last_refill = clock()

    def _refilled(self, now: float) -> float:
        elapsed = max(0.0, now - self._last_refill)
        return min(float(self.burst), self._tokens + elapsed * self.rate_per_second)

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take tokens if available. Returns False when the bucket is short."""
        now = self._clock()
        self._tokens = self._refilled(now)
        self._last_refill = now
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    @property
    def tokens_available(self) -> float:
        """Current token count. Does not change bucket state."""
        return self._refilled(self._clock())

    def seconds_until_available(self, tokens: float = 1.0) -> float:
        missing = tokens - self.tokens_available
        if missing <= 0:
            return 0.0
        return missing / self.rate_per_second

    def snapshot(self) -> dict[str, Any]:
        return {
            "tokens_available": round(self.tokens_available, 3),
            "burst": self.burst,
            "rate_per_second": self.rate_per_second,
        }
