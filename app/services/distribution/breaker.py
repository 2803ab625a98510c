"""Per-channel circuit breaker.

State machine:
- CLOSED: dispatches pass. ``failure_threshold`` consecutive failures inside
  ``failure_window_s`` trip the circuit.
- OPEN: dispatches fail fast until the cooldown elapses.
- HALF_OPEN: exactly one trial dispatch is admitted. Success closes the
  circuit and resets the cooldown; failure re-opens it with the cooldown
  multiplied by ``backoff_multiplier`` (capped at ``cooldown_max_s``).

Every state change starts a new generation. An admission carries the
generation it was granted in, and outcomes from an older generation are
ignored, so a slow CLOSED-era call cannot close or re-open a circuit that
has since moved on.
"""

import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from app.config import Settings

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int = 5
    failure_window_s: float = 300.0
    cooldown_s: float = 300.0
    cooldown_max_s: float = 3600.0
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "BreakerConfig":
        return cls(
            failure_threshold=settings.breaker_failure_threshold,
            failure_window_s=settings.breaker_failure_window_s,
            cooldown_s=settings.breaker_cooldown_s,
            cooldown_max_s=settings.breaker_cooldown_max_s,
            backoff_multiplier=settings.breaker_backoff_multiplier,
        )


class CircuitBreaker:
    """Circuit breaker for one channel. Callers serialize access."""

    def __init__(
        self,
        name: str,
        config: Optional[BreakerConfig] = None,
        clock: Clock = time.monotonic,
    ):
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failure_times: deque[float] = deque()
        self._consecutive_failures = 0
        self._last_failure_at: Optional[float] = None
        self._open_until: Optional[float] = None
        self._cooldown_s = self.config.cooldown_s
        self._trial_in_flight = False
        self._generation = 0

    @property
    def state(self) -> BreakerState:
        """Effective state. An OPEN circuit past its cooldown reads as HALF_OPEN."""
        if self._state is BreakerState.OPEN and self._cooldown_elapsed():
            return BreakerState.HALF_OPEN
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def trial_in_flight(self) -> bool:
        return self._trial_in_flight

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def cooldown_s(self) -> float:
        return self._cooldown_s

    def _cooldown_elapsed(self) -> bool:
        return self._open_until is not None and self._clock() >= self._open_until

    def retry_after(self) -> float:
        """Seconds until the next trial is allowed (0 when not open)."""
        if self._state is not BreakerState.OPEN or self._open_until is None:
            return 0.0
        return max(0.0, self._open_until - self._clock())

    def next_retry_at(self) -> Optional[datetime]:
        """Wall-clock time of the next allowed trial, if the circuit is open."""
        if self._state is not BreakerState.OPEN:
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=self.retry_after())

    def allow_request(self) -> bool:
        """Admit a dispatch. In HALF_OPEN only one trial may be in flight."""
        if self._state is BreakerState.CLOSED:
            return True

        if self._state is BreakerState.OPEN:
            if not self._cooldown_elapsed():
                return False
            self._state = BreakerState.HALF_OPEN
            self._generation += 1
            logger.info("circuit_half_open", channel_id=self.name)

        # HALF_OPEN
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def would_admit(self) -> bool:
        """Whether ``allow_request`` would admit a dispatch now. No side effects."""
        state = self.state
        if state is BreakerState.CLOSED:
            return True
        if state is BreakerState.OPEN:
            return False
        return not self._trial_in_flight

    def admit(self) -> Optional[int]:
        """Admit a dispatch and return its generation, or None when refused."""
        if not self.allow_request():
            return None
        return self._generation

    def _is_stale(self, generation: Optional[int]) -> bool:
        if generation is None or generation == self._generation:
            return False
        logger.info(
            "circuit_outcome_stale",
            channel_id=self.name,
            generation=generation,
            current_generation=self._generation,
        )
        return True

    def release_trial(self, generation: Optional[int] = None) -> None:
        """Give back an admitted trial that produced no platform outcome."""
        if self._is_stale(generation):
            return
        self._trial_in_flight = False

    def record_success(self, generation: Optional[int] = None) -> None:
        if self._is_stale(generation):
            return
        was = self._state
        self._state = BreakerState.CLOSED
        self._failure_times.clear()
        self._consecutive_failures = 0
        self._open_until = None
        self._cooldown_s = self.config.cooldown_s
        self._trial_in_flight = False
        if was is not BreakerState.CLOSED:
            self._generation += 1
            logger.info("circuit_closed", channel_id=self.name)

    def record_failure(self, generation: Optional[int] = None) -> None:
        if self._is_stale(generation):
            return
        now = self._clock()
        self._consecutive_failures += 1
        self._last_failure_at = now
        self._failure_times.append(now)
        window_start = now - self.config.failure_window_s
        while self._failure_times and self._failure_times[0] < window_start:
            self._failure_times.popleft()

        if self._state is BreakerState.HALF_OPEN:
            self._cooldown_s = min(
                self._cooldown_s * self.config.backoff_multiplier,
                self.config.cooldown_max_s,
            )
            self._trip(now)
        elif (
            self._state is BreakerState.CLOSED
            and len(self._failure_times) >= self.config.failure_threshold
        ):
            self._trip(now)

    def _trip(self, now: float) -> None:
        self._state = BreakerState.OPEN
        self._open_until = now + self._cooldown_s
        self._trial_in_flight = False
        self._generation += 1
        logger.warning(
            "circuit_opened",
            channel_id=self.name,
            consecutive_failures=self._consecutive_failures,
            cooldown_s=self._cooldown_s,
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "cooldown_s": self._cooldown_s,
            "retry_after_s": round(self.retry_after(), 3),
        }
