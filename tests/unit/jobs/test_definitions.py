"""Tests for job payload schemas and input validation."""

import pytest

from app.core.errors import ErrorCode, ValidationFailedError
from app.jobs.definitions import (
    normalize_payload,
    parse_job_type,
    validate_payload,
    validate_priority,
)
from app.jobs.types import JobType


class TestParseJobType:
    @pytest.mark.parametrize(
        "raw", ["blog_autopublish", "BLOG_AUTOPUBLISH", "blog-autopublish", " blog_autopublish "]
    )
    def test_accepts_variants(self, raw):
        assert parse_job_type(raw) == JobType.BLOG_AUTOPUBLISH

    def test_unknown_type(self):
        with pytest.raises(ValidationFailedError) as exc:
            parse_job_type("image_gen")
        assert exc.value.code == ErrorCode.VALIDATION_ERROR
        assert "Allowed" in exc.value.message


class TestValidatePayload:
    def test_autopublish_defaults(self):
        payload = normalize_payload(JobType.BLOG_AUTOPUBLISH, {})
        assert payload == {
            "post_id": None,
            "criteria": {"status": "scheduled", "tag": None, "limit": 20},
            "dry_run": False,
        }

    def test_autopublish_single_post(self):
        payload = validate_payload(JobType.BLOG_AUTOPUBLISH, {"postId": "p1"})
        assert payload.post_id == "p1"

    def test_camel_case_aliases(self):
        payload = validate_payload(JobType.DISTRIBUTION, {"postId": "p1", "channels": ["c1"]})
        assert payload.post_id == "p1"
        assert payload.channel_ids == ["c1"]

    def test_distribution_requires_post_id(self):
        with pytest.raises(ValidationFailedError) as exc:
            validate_payload(JobType.DISTRIBUTION, {})
        assert exc.value.details["errors"]

    def test_empty_channel_list_rejected(self):
        with pytest.raises(ValidationFailedError):
            validate_payload(JobType.DISTRIBUTION, {"post_id": "p1", "channel_ids": []})

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationFailedError):
            validate_payload(JobType.SEO_PLANNER, {"post_id": "p1", "bogus": 1})

    def test_normalized_payload_is_stable(self):
        """Alias and field-name spellings normalize to the same dict."""
        a = normalize_payload(JobType.SEO_PLANNER, {"postId": "p1"})
        b = normalize_payload(JobType.SEO_PLANNER, {"post_id": "p1", "target_keywords": []})
        assert a == b


class TestValidatePriority:
    @pytest.mark.parametrize("value", [0, 50, 100])
    def test_in_range(self, value):
        assert validate_priority(value) == value

    @pytest.mark.parametrize("value", [-1, 101])
    def test_out_of_range(self, value):
        with pytest.raises(ValidationFailedError):
            validate_priority(value)

    def test_bool_rejected(self):
        with pytest.raises(ValidationFailedError):
            validate_priority(True)

    @pytest.mark.parametrize(
        "name, expected",
        [("low", 0), ("normal", 50), ("HIGH", 75), (" critical ", 100), ("60", 60)],
    )
    def test_named_levels(self, name, expected):
        assert validate_priority(name) == expected

    @pytest.mark.parametrize("value", ["urgent", "", "5.5", None, 7.5])
    def test_unparseable_is_validation_error(self, value):
        with pytest.raises(ValidationFailedError) as exc:
            validate_priority(value)
        assert exc.value.code == ErrorCode.VALIDATION_ERROR
