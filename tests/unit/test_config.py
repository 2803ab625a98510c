"""Unit tests for app.config module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from app.config import Settings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults_use_in_memory_stores(monkeypatch):
    """Without DATABASE_URL the engine falls back to in-memory stores."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    settings = Settings(_env_file=None)

    assert settings.database_url is None
    assert settings.distribution_enabled is True
    assert settings.distribution_max_retries == 3
    assert settings.job_max_attempts == 3
    assert settings.retention_days == 90


def test_breaker_defaults():
    settings = Settings(_env_file=None)

    assert settings.breaker_failure_threshold == 5
    assert settings.breaker_cooldown_s <= settings.breaker_cooldown_max_s
    assert settings.breaker_backoff_multiplier == 2.0


def test_env_overrides():
    with patch.dict(
        os.environ,
        {
            "DISTRIBUTION_ENABLED": "false",
            "JOB_WORKER_CONCURRENCY": "4",
            "CHANNEL_RATE_BURST": "10",
        },
    ):
        settings = get_settings()

    assert settings.distribution_enabled is False
    assert settings.job_worker_concurrency == 4
    assert settings.channel_rate_burst == 10


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_site_url_strips_trailing_slash():
    settings = Settings(_env_file=None, site_base_url="https://blog.example/")
    assert settings.site_url == "https://blog.example"


@pytest.mark.parametrize(
    "overrides",
    [
        {"job_worker_concurrency": 0},
        {"job_max_attempts": 0},
        {"sentry_traces_sample_rate": 1.5},
        {"breaker_backoff_multiplier": 0.5},
        {"job_batch_size": 51},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_step_timeout_must_exceed_connector_timeout():
    with pytest.raises(ValidationError, match="job_step_timeout_s"):
        Settings(_env_file=None, job_step_timeout_s=30.0, connector_timeout_s=30.0)

    settings = Settings(_env_file=None, job_step_timeout_s=31.0, connector_timeout_s=30.0)
    assert settings.job_step_timeout_s == 31.0
