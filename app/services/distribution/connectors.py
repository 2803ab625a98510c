"""Platform connectors.

Each connector turns an ``OutboundMessage`` into one platform API call and
maps the response onto ``DeliveryResult`` or a typed ``DeliveryError``:

- 2xx: delivered
- 429: RATE_LIMITED
- 5xx, transport errors, timeouts: TRANSIENT_NETWORK
- 401/403, missing credentials: PERMANENT
- other 4xx: PLATFORM_REJECTED
"""

import base64
import hashlib
import hmac
import secrets
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog

from app.services.distribution.constants import REQUIRED_CREDENTIALS
from app.services.distribution.models import (
    Channel,
    DeliveryError,
    DeliveryErrorKind,
    DeliveryResult,
    OutboundMessage,
    SocialPlatform,
)

logger = structlog.get_logger(__name__)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        for key in ("description", "message", "detail", "error"):
            value = data.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if value:
                return str(value)[:200]
    return str(data)[:200]


def classify_response(response: httpx.Response, platform: SocialPlatform) -> None:
    """Raise DeliveryError for a non-2xx response."""
    status = response.status_code
    if 200 <= status < 300:
        return
    detail = _error_detail(response)
    if status == 429:
        raise DeliveryError(
            DeliveryErrorKind.RATE_LIMITED,
            f"{platform.value} rate limit exceeded",
            retry_after_s=_retry_after(response),
        )
    if status >= 500:
        raise DeliveryError(
            DeliveryErrorKind.TRANSIENT_NETWORK,
            f"{platform.value} server error {status}: {detail}",
        )
    if status in (401, 403):
        raise DeliveryError(
            DeliveryErrorKind.PERMANENT,
            f"{platform.value} rejected credentials ({status}): {detail}",
        )
    raise DeliveryError(
        DeliveryErrorKind.PLATFORM_REJECTED,
        f"{platform.value} rejected post ({status}): {detail}",
    )


class Connector:
    """Base connector. Subclasses implement ``_post``."""

    platform: SocialPlatform

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def missing_credentials(self, credentials: dict[str, Any]) -> list[str]:
        required = REQUIRED_CREDENTIALS.get(self.platform, ())
        return [key for key in required if not credentials.get(key)]

    async def post(self, channel: Channel, message: OutboundMessage) -> DeliveryResult:
        missing = self.missing_credentials(channel.credentials)
        if missing:
            raise DeliveryError(
                DeliveryErrorKind.PERMANENT,
                f"Missing credentials: {', '.join(missing)}",
                channel_id=channel.id,
            )
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await self._post(client, channel, message)
        except httpx.TimeoutException as e:
            raise DeliveryError(
                DeliveryErrorKind.TRANSIENT_NETWORK,
                f"{self.platform.value} request timed out",
                channel_id=channel.id,
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(
                DeliveryErrorKind.TRANSIENT_NETWORK,
                f"{self.platform.value} request failed: {e}",
                channel_id=channel.id,
            ) from e

    async def _post(
        self, client: httpx.AsyncClient, channel: Channel, message: OutboundMessage
    ) -> DeliveryResult:
        raise NotImplementedError

    async def validate_credentials(self, credentials: dict[str, Any]) -> bool:
        """Cheap credential check. Defaults to presence of required keys."""
        return not self.missing_credentials(credentials)


class TelegramConnector(Connector):
    platform = SocialPlatform.TELEGRAM
    TELEGRAM_API = "https://api.telegram.org/bot{token}/{method}"
    MAX_MESSAGE_LENGTH = 4096

    async def _post(self, client, channel, message):
        creds = channel.credentials
        chat_id = str(creds["chat_id"])
        response = await client.post(
            self.TELEGRAM_API.format(token=creds["bot_token"], method="sendMessage"),
            json={
                "chat_id": chat_id,
                "text": message.text[: self.MAX_MESSAGE_LENGTH],
                "disable_web_page_preview": False,
            },
        )
        classify_response(response, self.platform)
        data = response.json()
        if not data.get("ok"):
            raise DeliveryError(
                DeliveryErrorKind.PLATFORM_REJECTED,
                data.get("description") or "Telegram API error",
            )
        message_id = str(data.get("result", {}).get("message_id", "")) or None
        url = None
        if message_id and chat_id.startswith("@"):
            url = f"https://t.me/{chat_id[1:]}/{message_id}"
        return DeliveryResult(external_ref=message_id, external_url=url)

    async def validate_credentials(self, credentials):
        if self.missing_credentials(credentials):
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self.TELEGRAM_API.format(token=credentials["bot_token"], method="getMe")
                )
            return response.status_code == 200 and bool(response.json().get("ok"))
        except httpx.HTTPError as e:
            logger.warning("telegram_validate_failed", error=str(e))
            return False


def oauth1_header(
    method: str,
    url: str,
    api_key: str,
    api_secret: str,
    access_token: str,
    access_token_secret: str,
    nonce: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> str:
    """OAuth 1.0a HMAC-SHA1 Authorization header (JSON body, no signed params)."""

    def enc(value: str) -> str:
        return quote(value, safe="~")

    params = {
        "oauth_consumer_key": api_key,
        "oauth_nonce": nonce or secrets.token_hex(16),
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": timestamp or str(int(time.time())),
        "oauth_token": access_token,
        "oauth_version": "1.0",
    }
    param_str = "&".join(f"{enc(k)}={enc(v)}" for k, v in sorted(params.items()))
    base = "&".join([method.upper(), enc(url), enc(param_str)])
    key = f"{enc(api_secret)}&{enc(access_token_secret)}"
    digest = hmac.new(key.encode(), base.encode(), hashlib.sha1).digest()
    params["oauth_signature"] = base64.b64encode(digest).decode()
    return "OAuth " + ", ".join(
        f'{enc(k)}="{enc(v)}"' for k, v in sorted(params.items())
    )


class TwitterConnector(Connector):
    platform = SocialPlatform.TWITTER
    TWEETS_URL = "https://api.twitter.com/2/tweets"

    async def _post(self, client, channel, message):
        creds = channel.credentials
        auth = oauth1_header(
            "POST",
            self.TWEETS_URL,
            creds["api_key"],
            creds["api_secret"],
            creds["access_token"],
            creds["access_token_secret"],
        )
        response = await client.post(
            self.TWEETS_URL,
            json={"text": message.text[:280]},
            headers={"Authorization": auth},
        )
        classify_response(response, self.platform)
        tweet_id = response.json().get("data", {}).get("id")
        url = f"https://twitter.com/i/web/status/{tweet_id}" if tweet_id else None
        return DeliveryResult(external_ref=tweet_id, external_url=url)


class FacebookConnector(Connector):
    platform = SocialPlatform.FACEBOOK
    GRAPH_API = "https://graph.facebook.com/v21.0"

    async def _post(self, client, channel, message):
        creds = channel.credentials
        body: dict[str, str] = {
            "message": message.text,
            "access_token": creds["access_token"],
        }
        if message.url:
            body["link"] = message.url
        response = await client.post(f"{self.GRAPH_API}/{creds['page_id']}/feed", json=body)
        classify_response(response, self.platform)
        post_id = response.json().get("id")
        url = f"https://www.facebook.com/{post_id}" if post_id else None
        return DeliveryResult(external_ref=post_id, external_url=url)


class LinkedInConnector(Connector):
    platform = SocialPlatform.LINKEDIN
    UGC_POSTS_URL = "https://api.linkedin.com/v2/ugcPosts"

    async def _post(self, client, channel, message):
        creds = channel.credentials
        author_id = creds.get("author") or "me"
        author = author_id if author_id.startswith("urn:") else f"urn:li:person:{author_id}"
        share: dict[str, Any] = {
            "shareCommentary": {"text": message.text[:3000]},
            "shareMediaCategory": "ARTICLE" if message.url else "NONE",
        }
        if message.url:
            share["media"] = [
                {
                    "status": "READY",
                    "originalUrl": message.url,
                    "title": {"text": message.title},
                }
            ]
        response = await client.post(
            self.UGC_POSTS_URL,
            json={
                "author": author,
                "lifecycleState": "PUBLISHED",
                "specificContent": {"com.linkedin.ugc.ShareContent": share},
                "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
            },
            headers={
                "Authorization": f"Bearer {creds['access_token']}",
                "X-Restli-Protocol-Version": "2.0.0",
            },
        )
        classify_response(response, self.platform)
        post_id = response.json().get("id") or response.headers.get("x-restli-id")
        url = f"https://www.linkedin.com/feed/update/{post_id}" if post_id else None
        return DeliveryResult(external_ref=post_id, external_url=url)


class DiscordConnector(Connector):
    platform = SocialPlatform.DISCORD

    async def _post(self, client, channel, message):
        # wait=true makes Discord return the created message
        response = await client.post(
            channel.credentials["webhook_url"],
            params={"wait": "true"},
            json={"content": message.text[:2000]},
        )
        classify_response(response, self.platform)
        message_id = None
        if response.status_code == 200:
            message_id = response.json().get("id")
        return DeliveryResult(external_ref=message_id)


class WebhookConnector(Connector):
    """Generic JSON webhook for custom integrations."""

    platform = SocialPlatform.WEBHOOK

    async def _post(self, client, channel, message):
        headers = {}
        secret = channel.credentials.get("secret")
        if secret:
            headers["X-Webhook-Secret"] = str(secret)
        response = await client.post(
            channel.credentials["webhook_url"],
            json={
                "text": message.text,
                "title": message.title,
                "url": message.url,
                "hashtags": message.hashtags,
                "channel_id": channel.id,
            },
            headers=headers,
        )
        classify_response(response, self.platform)
        external_ref = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict) and data.get("id") is not None:
                external_ref = str(data["id"])
        return DeliveryResult(external_ref=external_ref)


CONNECTOR_CLASSES: dict[SocialPlatform, type[Connector]] = {
    SocialPlatform.TELEGRAM: TelegramConnector,
    SocialPlatform.TWITTER: TwitterConnector,
    SocialPlatform.FACEBOOK: FacebookConnector,
    SocialPlatform.LINKEDIN: LinkedInConnector,
    SocialPlatform.DISCORD: DiscordConnector,
    SocialPlatform.WEBHOOK: WebhookConnector,
}


class ConnectorRegistry:
    """Connector instances by platform."""

    def __init__(self, connectors: Optional[dict[SocialPlatform, Connector]] = None):
        self._connectors: dict[SocialPlatform, Connector] = dict(connectors or {})

    @classmethod
    def default(cls, timeout: float = 30.0) -> "ConnectorRegistry":
        return cls({p: c(timeout=timeout) for p, c in CONNECTOR_CLASSES.items()})

    def register(self, platform: SocialPlatform, connector: Connector) -> None:
        self._connectors[platform] = connector

    def get(self, platform: SocialPlatform) -> Connector:
        """Get the connector for a platform. Raises KeyError if unsupported."""
        if platform not in self._connectors:
            raise KeyError(f"No connector registered for platform: {platform.value}")
        return self._connectors[platform]

    def platforms(self) -> list[SocialPlatform]:
        return list(self._connectors)
