"""Webhook notifier for workflow events (e.g. posts published)."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    """Raised when notification delivery fails after retries."""

    pass


class WebhookNotifier:
    """Posts JSON events to a webhook with retry logic."""

    def __init__(
        self,
        webhook_url: Optional[str],
        max_retries: int = 3,
        timeout: float = 10.0,
        backoff_s: float = 0.5,
    ):
        """
        Initialize notifier.

        Args:
            webhook_url: Target URL; None disables delivery
            max_retries: Maximum attempts (default 3)
            timeout: Request timeout in seconds (default 10)
            backoff_s: Base delay between attempts, doubled each time
        """
        self.webhook_url = webhook_url
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff_s = backoff_s

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, event: str, data: dict[str, Any]) -> bool:
        """
        Deliver one event.

        Returns:
            False when no webhook is configured, True once delivered

        Raises:
            NotificationError: If delivery fails after retries
        """
        if not self.webhook_url:
            logger.debug("notification_skipped", notify_event=event)
            return False

        payload = {
            "event": event,
            "data": data,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.webhook_url, json=payload)
                    response.raise_for_status()
                logger.info("notification_delivered", notify_event=event, attempt=attempt + 1)
                return True

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                logger.warning(
                    "notification_http_error",
                    notify_event=event,
                    attempt=attempt + 1,
                    status_code=status_code,
                )
                # Client errors will not get better on retry
                if 400 <= status_code < 500 or attempt + 1 >= self.max_retries:
                    raise NotificationError(
                        f"Webhook returned {status_code} after {attempt + 1} attempts"
                    ) from e

            except httpx.HTTPError as e:
                logger.warning(
                    "notification_transport_error",
                    notify_event=event,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt + 1 >= self.max_retries:
                    raise NotificationError(
                        f"Webhook unreachable after {self.max_retries} attempts: {e}"
                    ) from e

            await asyncio.sleep(self.backoff_s * (2**attempt))

        return False
