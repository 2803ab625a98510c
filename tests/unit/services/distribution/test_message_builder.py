"""Tests for platform message building."""

from app.services.distribution.message_builder import (
    ELLIPSIS,
    build_hashtags,
    build_message,
    build_post_url,
    clean_text,
)
from app.services.distribution.models import MessageStyle, SocialPlatform
from app.services.posts import PostData


def _post(**overrides):
    fields = {
        "id": "p1",
        "title": "Shipping a job queue",
        "slug": "shipping-a-job-queue",
        "excerpt": "<p>What we learned &amp; what broke.</p>",
        "tags": ["python", "async io", "Python"],
    }
    fields.update(overrides)
    return PostData(**fields)


class TestCleanText:
    def test_strips_markup_and_entities(self):
        assert clean_text("<p>Fish &amp;   chips</p>") == "Fish & chips"

    def test_truncates_with_ellipsis(self):
        text = clean_text("abcdefghij", max_chars=5)
        assert text == "abcd" + ELLIPSIS
        assert len(text) == 5

    def test_empty(self):
        assert clean_text(None) == ""


class TestHashtags:
    def test_normalizes_and_dedupes(self):
        assert build_hashtags(["python", "async io", "Python", "c++"], limit=5) == [
            "#python",
            "#asyncio",
            "#c",
        ]

    def test_respects_limit(self):
        assert build_hashtags(["a1", "b2", "c3"], limit=2) == ["#a1", "#b2"]


class TestPostUrl:
    def test_site_url_with_utm(self):
        url = build_post_url(_post(), "https://blog.example/", "social")
        assert url.startswith("https://blog.example/blog/shipping-a-job-queue?")
        assert "utm_source=social" in url
        assert "utm_medium=social" in url

    def test_falls_back_to_published_url(self):
        post = _post(published_url="https://cms.example/p?id=1")
        assert build_post_url(post, None, "x") == (
            "https://cms.example/p?id=1&utm_source=x&utm_medium=social"
            "&utm_campaign=distribution"
        )

    def test_no_url(self):
        assert build_post_url(_post(), None, "social") == ""


class TestBuildMessage:
    def test_twitter_is_concise(self):
        msg = build_message(_post(), SocialPlatform.TWITTER, site_base_url="https://blog.example")

        assert msg.text.startswith("Shipping a job queue\n\nhttps://blog.example/blog/")
        assert "What we learned" not in msg.text
        assert msg.hashtags == ["#python", "#asyncio"]
        assert msg.truncated is False

    def test_linkedin_includes_excerpt(self):
        msg = build_message(_post(), SocialPlatform.LINKEDIN, site_base_url="https://blog.example")
        assert "What we learned & what broke." in msg.text

    def test_discord_has_no_hashtags(self):
        msg = build_message(_post(), SocialPlatform.DISCORD, site_base_url="https://blog.example")
        assert msg.hashtags == []
        assert "#" not in msg.text

    def test_explicit_style(self):
        msg = build_message(
            _post(), SocialPlatform.TELEGRAM, style=MessageStyle.PROMOTIONAL
        )
        assert msg.text.startswith("🚀 Shipping a job queue")

    def test_long_text_truncated_to_platform_limit(self):
        post = _post(title="word " * 100)
        msg = build_message(post, SocialPlatform.TWITTER, site_base_url="https://blog.example")

        assert len(msg.text) == 280
        assert msg.text.endswith(ELLIPSIS)
        assert msg.truncated is True

    def test_override_replaces_body(self):
        msg = build_message(
            _post(), SocialPlatform.TWITTER, override="Custom <b>announcement</b>"
        )
        assert msg.text == "Custom announcement"
        assert msg.title == "Shipping a job queue"

    def test_override_truncated(self):
        msg = build_message(_post(), SocialPlatform.TWITTER, override="x" * 500)
        assert len(msg.text) == 280
        assert msg.truncated is True
