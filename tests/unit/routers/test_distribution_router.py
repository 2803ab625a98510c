"""Unit tests for distribution API endpoints."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.middleware import setup_error_handlers
from app.deps.services import get_distribution_service, get_scheduler
from app.routers import distribution
from app.services.distribution.models import DeliveryError, DeliveryErrorKind

TOKEN = "test-admin-token"
AUTH = {"X-Admin-Token": TOKEN}


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.run_once = AsyncMock(
        return_value={"processed": 2, "succeeded": 1, "failed": 1, "skipped": 0}
    )
    return mock


@pytest.fixture
def client(monkeypatch, distribution_service, scheduler):
    monkeypatch.setenv("ADMIN_TOKEN", TOKEN)

    app = FastAPI()
    app.include_router(distribution.router)
    setup_error_handlers(app)
    app.dependency_overrides[get_distribution_service] = lambda: distribution_service
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    with TestClient(app) as test_client:
        yield test_client


def _bulk(client, **body):
    body.setdefault("post_ids", ["p1"])
    return client.post("/distribution/bulk", json=body, headers=AUTH)


class TestBulk:
    def test_requires_admin_token(self, client):
        response = client.post("/distribution/bulk", json={"post_ids": ["p1"]})
        assert response.status_code == 401

    def test_bulk_dispatches(self, client):
        response = _bulk(client, channel_ids=["ch-a", "ch-b"])

        assert response.status_code == 200
        data = response.json()
        assert data["total_created"] == 2
        assert {r["status"] for r in data["created"]} == {"succeeded"}

    def test_bulk_scheduled_then_skipped(self, client):
        when = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()

        first = _bulk(client, channel_ids=["ch-a"], scheduled_at=when).json()
        second = _bulk(client, channel_ids=["ch-a"], scheduled_at=when).json()

        assert first["created"][0]["status"] == "scheduled"
        assert second["total_created"] == 0
        assert second["skipped"][0]["reason"] == "already_open"

    def test_bulk_reports_errors(self, client):
        data = _bulk(client, post_ids=["p1", "ghost"], channel_ids=["ch-a", "nope"]).json()

        assert {"post_id": "ghost", "error": "Post not found"} in data["errors"]
        assert {"channel_id": "nope", "error": "Channel not found"} in data["errors"]

    @pytest.mark.parametrize(
        "body",
        [
            {"post_ids": []},
            {"post_ids": ["p1"], "channel_ids": []},
            {"post_ids": ["p1"], "message_override": "x" * 5001},
        ],
    )
    def test_bulk_validation(self, client, body):
        response = client.post("/distribution/bulk", json=body, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_kill_switch_returns_503(self, client, distribution_service):
        distribution_service.set_enabled(False)

        response = _bulk(client)

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "MODULE_DISABLED"
        assert error["message"] == "Module disabled"


class TestRecords:
    def test_list_and_get(self, client):
        _bulk(client, post_ids=["p1", "p2"], channel_ids=["ch-a"])

        listed = client.get(
            "/distribution/records", params={"post_id": "p2"}, headers=AUTH
        ).json()
        assert listed["total"] == 1

        record_id = listed["data"][0]["id"]
        response = client.get(f"/distribution/records/{record_id}", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["post_id"] == "p2"

    def test_list_bad_sort(self, client):
        response = client.get(
            "/distribution/records", params={"sort_order": "up"}, headers=AUTH
        )
        assert response.status_code == 400

    def test_get_unknown(self, client):
        response = client.get(f"/distribution/records/{uuid4()}", headers=AUTH)
        assert response.status_code == 404

    def test_post_records(self, client):
        _bulk(client, channel_ids=["ch-a", "ch-b"])

        data = client.get("/distribution/posts/p1", headers=AUTH).json()

        assert data["post_id"] == "p1"
        assert len(data["records"]) == 2

    def test_retry_circuit_open_returns_503(self, client, connector, post_source, make_post):
        post_source.add(make_post("p3"))
        connector.fail_with = DeliveryError(DeliveryErrorKind.TRANSIENT_NETWORK, "502")
        created = _bulk(client, post_ids=["p1", "p2", "p3"], channel_ids=["ch-a"]).json()
        record_id = created["created"][0]["id"]

        response = client.post(f"/distribution/records/{record_id}/retry", headers=AUTH)

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "CIRCUIT_OPEN"
        assert error["retryable"] is True
        assert error["retry_after_s"] > 0
        record = client.get(f"/distribution/records/{record_id}", headers=AUTH).json()
        assert record["status"] == "failed"

    def test_retry_failed_record(self, client, connector):
        connector.errors.append(
            DeliveryError(DeliveryErrorKind.TRANSIENT_NETWORK, "502")
        )
        record_id = _bulk(client, channel_ids=["ch-a"]).json()["created"][0]["id"]

        response = client.post(f"/distribution/records/{record_id}/retry", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["status"] == "succeeded"
        assert response.json()["attempts"] == 1

    def test_cancel(self, client):
        when = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        record_id = _bulk(client, channel_ids=["ch-a"], scheduled_at=when).json()[
            "created"
        ][0]["id"]

        response = client.post(f"/distribution/records/{record_id}/cancel", headers=AUTH)
        again = client.post(f"/distribution/records/{record_id}/cancel", headers=AUTH)

        assert response.json()["status"] == "cancelled"
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "INVALID_STATE"


class TestOperations:
    def test_health(self, client):
        data = client.get("/distribution/health", headers=AUTH).json()

        assert data["enabled"] is True
        assert data["channels"]["ch-a"]["breaker_state"] == "closed"

    def test_stats(self, client):
        _bulk(client, channel_ids=["ch-a"])

        data = client.get("/distribution/stats", headers=AUTH).json()

        assert data["records"]["succeeded"] == 1
        assert data["success_rate"] == 1.0

    def test_kill_switch_toggle(self, client):
        assert client.get("/distribution/kill-switch", headers=AUTH).json() == {
            "enabled": True
        }

        response = client.post(
            "/distribution/kill-switch",
            json={"enabled": False, "reason": "platform incident"},
            headers=AUTH,
        )

        assert response.json() == {"enabled": False}
        assert client.get("/distribution/kill-switch", headers=AUTH).json() == {
            "enabled": False
        }

    def test_run_scheduled(self, client, scheduler):
        response = client.post("/distribution/scheduled/run", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["processed"] == 2
        scheduler.run_once.assert_awaited_once()

    def test_cleanup(self, client):
        response = client.post(
            "/distribution/cleanup", params={"retention_days": 30}, headers=AUTH
        )
        assert response.json() == {"deleted": 0, "retention_days": 30}

    def test_cleanup_default_retention(self, client):
        response = client.post("/distribution/cleanup", headers=AUTH)
        assert response.json()["retention_days"] == 90


class TestChannels:
    def test_list_hides_credentials(self, client):
        data = client.get("/distribution/channels", headers=AUTH).json()

        ids = [c["id"] for c in data["channels"]]
        assert ids == ["ch-a", "ch-b", "ch-off"]
        assert all("credentials" not in c for c in data["channels"])
        assert data["channels"][0]["has_credentials"] is True

    def test_create_get_update_delete(self, client):
        created = client.post(
            "/distribution/channels",
            json={
                "name": "Announcements",
                "platform": "telegram",
                "credentials": {"bot_token": "t", "chat_id": "@news"},
            },
            headers=AUTH,
        )
        assert created.status_code == 201
        channel_id = created.json()["id"]

        fetched = client.get(f"/distribution/channels/{channel_id}", headers=AUTH)
        assert fetched.json()["platform"] == "telegram"

        updated = client.patch(
            f"/distribution/channels/{channel_id}",
            json={"enabled": False},
            headers=AUTH,
        )
        assert updated.json()["enabled"] is False
        assert updated.json()["name"] == "Announcements"

        deleted = client.delete(f"/distribution/channels/{channel_id}", headers=AUTH)
        assert deleted.status_code == 204
        assert (
            client.get(f"/distribution/channels/{channel_id}", headers=AUTH).status_code
            == 404
        )

    def test_auto_publish_flag(self, client):
        created = client.post(
            "/distribution/channels",
            json={"name": "Feed", "platform": "telegram", "auto_publish": True},
            headers=AUTH,
        )
        assert created.status_code == 201
        assert created.json()["auto_publish"] is True

        updated = client.patch(
            f"/distribution/channels/{created.json()['id']}",
            json={"auto_publish": False},
            headers=AUTH,
        )
        assert updated.json()["auto_publish"] is False

    def test_create_unknown_platform(self, client):
        response = client.post(
            "/distribution/channels",
            json={"name": "X", "platform": "myspace"},
            headers=AUTH,
        )
        assert response.status_code == 400

    def test_validate_credentials(self, client):
        response = client.post("/distribution/channels/ch-a/validate", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["valid"] is True
