"""Distribution platform rules and limits."""

from dataclasses import dataclass

from app.services.distribution.models import MessageStyle, SocialPlatform


@dataclass(frozen=True)
class PlatformRule:
    max_chars: int
    style: MessageStyle
    include_hashtags: bool
    hashtag_limit: int


PLATFORM_RULES: dict[SocialPlatform, PlatformRule] = {
    SocialPlatform.TWITTER: PlatformRule(280, MessageStyle.CONCISE, True, 3),
    SocialPlatform.FACEBOOK: PlatformRule(63_206, MessageStyle.PROFESSIONAL, True, 5),
    SocialPlatform.LINKEDIN: PlatformRule(3_000, MessageStyle.PROFESSIONAL, True, 5),
    SocialPlatform.TELEGRAM: PlatformRule(4_096, MessageStyle.CASUAL, True, 10),
    SocialPlatform.DISCORD: PlatformRule(2_000, MessageStyle.CASUAL, False, 0),
    SocialPlatform.WEBHOOK: PlatformRule(10_000, MessageStyle.PROFESSIONAL, True, 10),
}

DEFAULT_RULE = PlatformRule(280, MessageStyle.PROFESSIONAL, True, 3)

# Credentials each connector needs before it is worth calling the platform
REQUIRED_CREDENTIALS: dict[SocialPlatform, tuple[str, ...]] = {
    SocialPlatform.TWITTER: (
        "api_key",
        "api_secret",
        "access_token",
        "access_token_secret",
    ),
    SocialPlatform.FACEBOOK: ("page_id", "access_token"),
    SocialPlatform.LINKEDIN: ("access_token",),
    SocialPlatform.TELEGRAM: ("bot_token", "chat_id"),
    SocialPlatform.DISCORD: ("webhook_url",),
    SocialPlatform.WEBHOOK: ("webhook_url",),
}

MAX_BULK_POST_IDS = 50
MAX_BULK_CHANNELS = 10
MAX_MESSAGE_OVERRIDE_LENGTH = 5_000
MAX_CHANNEL_NAME_LENGTH = 100
MAX_HASHTAG_LENGTH = 50
MAX_PAGE_SIZE = 100
