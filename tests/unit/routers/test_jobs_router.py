"""Unit tests for job API endpoints."""

from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.middleware import setup_error_handlers
from app.deps.services import get_job_service
from app.routers import jobs

TOKEN = "test-admin-token"
AUTH = {"X-Admin-Token": TOKEN}


@pytest.fixture
def client(monkeypatch, job_service):
    """Test client over a JobService backed by in-memory stores."""
    monkeypatch.setenv("ADMIN_TOKEN", TOKEN)

    app = FastAPI()
    app.include_router(jobs.router)
    setup_error_handlers(app)
    app.dependency_overrides[get_job_service] = lambda: job_service

    with TestClient(app) as test_client:
        yield test_client


def _enqueue(client, job_type="seo_planner", payload=None, **extra):
    body = {"type": job_type, "payload": payload or {"postId": "p1"}, **extra}
    return client.post("/jobs", json=body, headers=AUTH)


class TestAuth:
    def test_missing_token(self, client):
        response = client.get("/jobs")
        assert response.status_code == 401

    def test_wrong_token(self, client):
        response = client.get("/jobs", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 403


class TestEnqueue:
    def test_enqueue_returns_201(self, client):
        response = _enqueue(client, priority=75)

        assert response.status_code == 201
        data = response.json()
        assert data["type"] == "seo_planner"
        assert data["status"] == "pending"
        assert data["priority"] == 75
        assert data["fingerprint"]

    def test_named_priority_and_post_id(self, client):
        response = _enqueue(
            client, job_type="blog-autopublish", payload={"postId": "p1"}, priority="normal"
        )

        assert response.status_code == 201
        data = response.json()
        assert data["type"] == "blog_autopublish"
        assert data["priority"] == 50
        assert data["step"] is None
        assert data["payload"]["post_id"] == "p1"

    def test_unknown_priority_name_is_validation_error(self, client):
        response = _enqueue(client, priority="asap")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_duplicate_returns_409_with_existing_id(self, client):
        first = _enqueue(client).json()

        response = _enqueue(client)

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "DUPLICATE_JOB"
        assert body["error"]["existing_job_id"] == first["id"]
        assert body["error"]["retryable"] is False

    def test_unknown_type_is_validation_error(self, client):
        response = _enqueue(client, job_type="image_gen")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_bad_payload_is_validation_error(self, client):
        response = _enqueue(client, payload={"unexpected": True})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_malformed_body(self, client):
        response = client.post("/jobs", json={"payload": {}}, headers=AUTH)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["errors"][0]["loc"] == "body.type"


class TestHistoryAndInspect:
    def test_list_and_filter(self, client):
        _enqueue(client)
        _enqueue(client, job_type="distribution", payload={"postId": "p1"})

        response = client.get("/jobs", params={"type": "distribution"}, headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["data"][0]["type"] == "distribution"
        assert data["has_next"] is False

    def test_list_limit_bounds(self, client):
        response = client.get("/jobs", params={"limit": 101}, headers=AUTH)
        assert response.status_code == 400

    def test_get_job(self, client):
        job_id = _enqueue(client).json()["id"]

        response = client.get(f"/jobs/{job_id}", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["id"] == job_id

    def test_get_unknown_job(self, client):
        response = client.get(f"/jobs/{uuid4()}", headers=AUTH)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Resource not found"


class TestLifecycle:
    def test_run_inline(self, client):
        job_id = _enqueue(client).json()["id"]

        response = client.post("/jobs/run", json={"limit": 5}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["succeeded"] == 1
        job = client.get(f"/jobs/{job_id}", headers=AUTH).json()
        assert job["status"] == "succeeded"
        assert job["step"] == "suggest"

    def test_run_without_body(self, client):
        response = client.post("/jobs/run", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["processed"] == 0

    def test_run_limit_bounds(self, client):
        response = client.post("/jobs/run", json={"limit": 500}, headers=AUTH)
        assert response.status_code == 400

    def test_cancel_pending(self, client):
        job_id = _enqueue(client).json()["id"]

        response = client.post(f"/jobs/{job_id}/cancel", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_terminal_is_invalid_state(self, client):
        job_id = _enqueue(client).json()["id"]
        client.post(f"/jobs/{job_id}/cancel", headers=AUTH)

        response = client.post(f"/jobs/{job_id}/cancel", headers=AUTH)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE"

    def test_retry_non_failed_is_invalid_state(self, client):
        job_id = _enqueue(client).json()["id"]

        response = client.post(f"/jobs/{job_id}/retry", headers=AUTH)

        assert response.status_code == 409

    def test_retry_failed(self, client):
        job_id = _enqueue(client, payload={"postId": "ghost"}).json()["id"]
        client.post("/jobs/run", headers=AUTH)

        response = client.post(f"/jobs/{job_id}/retry", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"
        assert data["attempts"] == 2
