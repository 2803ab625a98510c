"""Dispatch one distribution record to its channel."""

import asyncio
from typing import Optional

import sentry_sdk
import structlog

from app.services.distribution.connectors import ConnectorRegistry
from app.services.distribution.guards import ChannelGuardRegistry
from app.services.distribution.models import (
    Channel,
    DeliveryError,
    DeliveryErrorKind,
    DeliveryResult,
    DistributionRecord,
    OutboundMessage,
)

logger = structlog.get_logger(__name__)


class Dispatcher:
    """
    Wraps connectors with the channel's rate limiter and circuit breaker.

    The pre-check and the outcome bookkeeping for a channel run under that
    channel's lock. The platform call itself runs outside the lock, so
    channels never block each other and a slow platform does not hold up
    health reads.
    """

    def __init__(
        self,
        guards: ChannelGuardRegistry,
        connectors: ConnectorRegistry,
        timeout_s: float = 30.0,
    ):
        self.guards = guards
        self.connectors = connectors
        self.timeout_s = timeout_s

    async def dispatch(
        self,
        record: DistributionRecord,
        channel: Channel,
        message: Optional[OutboundMessage] = None,
    ) -> DeliveryResult:
        """Deliver a record. Raises DeliveryError on any non-delivery."""
        log = logger.bind(
            record_id=str(record.id),
            channel_id=channel.id,
            platform=channel.platform.value,
        )
        try:
            connector = self.connectors.get(channel.platform)
        except KeyError as e:
            raise DeliveryError(
                DeliveryErrorKind.PERMANENT, str(e), channel_id=channel.id
            ) from e

        guard = self.guards.get(channel.id)
        async with guard.lock:
            try:
                generation = guard.precheck()
            except DeliveryError as e:
                log.info("dispatch_rejected_locally", kind=e.kind.value)
                raise

        outbound = message or OutboundMessage(text=record.content)
        error: Optional[DeliveryError] = None
        result: Optional[DeliveryResult] = None
        try:
            with sentry_sdk.start_span(
                op="distribution.dispatch", description=channel.platform.value
            ):
                result = await asyncio.wait_for(
                    connector.post(channel, outbound), timeout=self.timeout_s
                )
        except asyncio.CancelledError:
            # No await here: this runs while the task is being torn down
            guard.breaker.release_trial(generation)
            log.warning("dispatch_cancelled")
            raise
        except asyncio.TimeoutError:
            error = DeliveryError(
                DeliveryErrorKind.TRANSIENT_NETWORK,
                f"Connector timed out after {self.timeout_s}s",
                channel_id=channel.id,
            )
        except DeliveryError as e:
            error = e
            error.channel_id = error.channel_id or channel.id
        except Exception as e:
            # Connector bug or unexpected library error; still a failed delivery
            log.exception("dispatch_unexpected_error", error=str(e))
            sentry_sdk.set_tag("platform", channel.platform.value)
            sentry_sdk.capture_exception(e)
            error = DeliveryError(
                DeliveryErrorKind.TRANSIENT_NETWORK,
                f"Unexpected connector error: {e}",
                channel_id=channel.id,
            )

        if error is None and result is None:
            error = DeliveryError(
                DeliveryErrorKind.PERMANENT,
                "Connector returned no result",
                channel_id=channel.id,
            )

        async with guard.lock:
            if error is not None:
                if error.kind.counts_as_breaker_failure:
                    guard.breaker.record_failure(generation)
                else:
                    guard.breaker.release_trial(generation)
            else:
                guard.breaker.record_success(generation)

        if error is not None:
            log.warning("dispatch_failed", kind=error.kind.value, error=error.message)
            raise error

        log.info("dispatch_succeeded", external_ref=result.external_ref)
        return result
