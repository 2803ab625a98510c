"""Tests for request middleware and error handlers."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.config import Settings
from app.core.errors import ModuleDisabledError, NotFoundError
from app.core.middleware import setup_middleware


class Body(BaseModel):
    name: str


def _build_app(**overrides) -> FastAPI:
    settings = Settings(_env_file=None, **overrides)
    app = FastAPI()
    setup_middleware(app, settings)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/echo")
    async def echo(body: Body):
        return body.model_dump()

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Job", "secret-id")

    @app.get("/disabled")
    async def disabled():
        raise ModuleDisabledError()

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return app


@pytest.fixture
def client():
    return TestClient(_build_app(), raise_server_exceptions=False)


class TestHeaders:
    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" not in response.headers

    def test_hsts_behind_tls(self, client):
        response = client.get("/health", headers={"X-Forwarded-Proto": "https"})
        assert "max-age" in response.headers["Strict-Transport-Security"]

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"
        assert "X-Response-Time-Ms" in response.headers

    def test_request_id_generated(self, client):
        assert client.get("/health").headers["X-Request-ID"]


class TestApiKey:
    @pytest.fixture
    def keyed_client(self):
        return TestClient(_build_app(api_key="k-1"), raise_server_exceptions=False)

    def test_health_is_public(self, keyed_client):
        assert keyed_client.get("/health").status_code == 200

    def test_missing_key(self, keyed_client):
        response = keyed_client.get("/missing")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_wrong_key(self, keyed_client):
        response = keyed_client.get("/missing", headers={"X-API-Key": "nope"})
        assert response.status_code == 403

    def test_valid_key(self, keyed_client):
        response = keyed_client.get("/missing", headers={"X-API-Key": "k-1"})
        assert response.status_code == 404


class TestBodyLimit:
    def test_oversized_body_rejected(self):
        client = TestClient(_build_app(max_request_body_size=64))

        response = client.post("/echo", json={"name": "x" * 200})

        assert response.status_code == 413
        assert response.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"


class TestErrorEnvelope:
    def test_engine_error(self, client):
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": {
                "code": "NOT_FOUND",
                "message": "Resource not found",
                "retryable": False,
            },
        }

    def test_module_disabled(self, client):
        response = client.get("/disabled")

        assert response.status_code == 503
        assert response.json()["error"]["retryable"] is True

    def test_request_validation(self, client):
        response = client.post("/echo", json={})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["errors"][0]["loc"] == "body.name"

    def test_unhandled_exception(self, client):
        response = client.get("/boom")

        assert response.status_code == 500
        assert "kaboom" not in response.text
