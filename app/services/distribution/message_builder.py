"""Build platform-specific message text for a post."""

import html
import re
from typing import Optional
from urllib.parse import urlencode

from app.services.distribution.constants import (
    DEFAULT_RULE,
    MAX_HASHTAG_LENGTH,
    PLATFORM_RULES,
)
from app.services.distribution.models import MessageStyle, OutboundMessage, SocialPlatform
from app.services.posts import PostData

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \t]+")
_HASHTAG_STRIP_RE = re.compile(r"[^\w]+", re.UNICODE)

ELLIPSIS = "…"


def clean_text(text: Optional[str], max_chars: Optional[int] = None) -> str:
    """Strip markup and collapse runs of spaces."""
    if not text:
        return ""
    cleaned = html.unescape(_TAG_RE.sub("", text))
    cleaned = _WS_RE.sub(" ", cleaned).strip()
    if max_chars is not None and len(cleaned) > max_chars:
        cleaned = cleaned[: max_chars - 1] + ELLIPSIS
    return cleaned


def build_hashtags(tags: list[str], limit: int) -> list[str]:
    """Normalize tags into unique #hashtags, capped at ``limit``."""
    out: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        if len(out) >= limit:
            break
        word = _HASHTAG_STRIP_RE.sub("", tag or "")[:MAX_HASHTAG_LENGTH]
        if not word or word.lower() in seen:
            continue
        seen.add(word.lower())
        out.append(f"#{word}")
    return out


def build_post_url(
    post: PostData, site_base_url: Optional[str], utm_source: Optional[str]
) -> str:
    if site_base_url:
        url = f"{site_base_url.rstrip('/')}/blog/{post.slug}"
    else:
        url = post.published_url or ""
    if url and utm_source:
        params = urlencode(
            {
                "utm_source": utm_source,
                "utm_medium": "social",
                "utm_campaign": "distribution",
            }
        )
        url = f"{url}{'&' if '?' in url else '?'}{params}"
    return url


def build_message(
    post: PostData,
    platform: SocialPlatform,
    style: Optional[MessageStyle] = None,
    override: Optional[str] = None,
    hashtags: Optional[list[str]] = None,
    site_base_url: Optional[str] = None,
    utm_source: Optional[str] = None,
) -> OutboundMessage:
    """Build the outbound text for one platform.

    The platform rule decides the character budget, the default style and
    how many hashtags are included. Text longer than the budget is cut and
    ends with an ellipsis.
    """
    rule = PLATFORM_RULES.get(platform, DEFAULT_RULE)
    url = build_post_url(post, site_base_url, utm_source)
    tags = (
        build_hashtags(hashtags if hashtags is not None else post.tags, rule.hashtag_limit)
        if rule.include_hashtags
        else []
    )
    title = clean_text(post.title)

    if override:
        text = clean_text(override, rule.max_chars)
        return OutboundMessage(
            text=text,
            title=title,
            url=url or None,
            hashtags=tags,
            truncated=len(override) > rule.max_chars,
        )

    excerpt = clean_text(post.excerpt)
    excerpt_block = f"{excerpt}\n\n" if excerpt else ""
    hashtag_block = "\n\n" + " ".join(tags) if tags else ""

    style = style or rule.style
    if style is MessageStyle.CONCISE:
        body = f"{title}\n\n{url}{hashtag_block}"
    elif style is MessageStyle.CASUAL:
        body = f"Check this out! {title}\n\n{excerpt_block}{url}{hashtag_block}"
    elif style is MessageStyle.PROMOTIONAL:
        body = f"🚀 {title}\n\n{excerpt_block}Read more: {url}{hashtag_block}"
    elif style is MessageStyle.THREAD:
        body = f"🧵 {title}\n\n{excerpt_block}{url}{hashtag_block}"
    else:
        body = f"{title}\n\n{excerpt_block}{url}{hashtag_block}"

    body = body.strip()
    truncated = len(body) > rule.max_chars
    text = body[: rule.max_chars - 1] + ELLIPSIS if truncated else body
    return OutboundMessage(
        text=text, title=title, url=url or None, hashtags=tags, truncated=truncated
    )
