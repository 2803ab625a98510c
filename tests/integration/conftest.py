"""Shared fixtures for integration tests.

Runs the real application with in-memory stores and the worker pool and
scheduler started by the lifespan.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.config import Settings

# Test admin token - shared across integration tests
TEST_ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def admin_headers():
    """Headers with admin token for protected endpoints."""
    return {"X-Admin-Token": TEST_ADMIN_TOKEN}


@pytest.fixture
def test_settings():
    """In-memory settings with short poll intervals."""
    return Settings(
        _env_file=None,
        database_url=None,
        job_poll_interval_s=0.05,
        scheduled_poll_interval_s=0.05,
        site_base_url="https://blog.example",
    )


@pytest.fixture
def client(monkeypatch, test_settings):
    """Client over the full app; the lifespan builds a fresh engine per test.

    Patches the stable seam in app.core.lifespan, not internal module globals.
    """
    monkeypatch.setenv("ADMIN_TOKEN", TEST_ADMIN_TOKEN)

    with patch("app.core.lifespan.get_settings", return_value=test_settings):
        from app.main import app

        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
