"""Tests for middleware components."""
import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from quillauth.main import create_app


@pytest.mark.asyncio
async def test_correlation_id_generated(app):
    """Test that correlation ID is auto-generated if not provided."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/api/v1/auth/login", json={"email": "nobody@example.com", "password": "whatever1"})
        assert response.status_code == 401
        assert response.headers["X-Correlation-ID"]
        assert response.json()["correlation_id"] == response.headers["X-Correlation-ID"]


@pytest.mark.asyncio
async def test_correlation_id_preserved(app):
    """Test that provided correlation ID is preserved."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health", headers={"X-Correlation-ID": "test-correlation-123"})
        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "test-correlation-123"


@pytest.mark.asyncio
async def test_payload_too_large_rejection(app, settings):
    """Test that oversized payloads are rejected."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "big@example.com", "password": "x" * (settings.MAX_REQUEST_SIZE + 100)},
        )
        assert response.status_code == 413
        data = response.json()
        assert data["error"]["code"] == "payload_too_large"
        assert data["error"]["details"]["max_size"] == settings.MAX_REQUEST_SIZE


@pytest.mark.asyncio
async def test_invalid_json_rejection(app):
    """Test that invalid JSON is rejected."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/v1/auth/login",
            content=b'{"email": "a@example.com", "password": ',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "validation_error"
        assert body["path"] == "/api/v1/auth/login"
        assert body["correlation_id"] == response.headers["X-Correlation-ID"]


def test_unexpected_error_returns_envelope(settings, services):
    """Unhandled exceptions become a 500 with the standard envelope."""
    app = create_app(settings=settings, services=services)
    boom = APIRouter()

    @boom.get("/boom")
    def explode():
        raise RuntimeError("database password is hunter2")

    app.include_router(boom)

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/boom")

    assert response.status_code == 500
    body = response.json()
    assert body["error"]["code"] == "internal_error"
    assert "hunter2" not in response.text


def test_active_requests_gauge_settles(client, metrics):
    client.get("/health")
    value = metrics.registry.get_sample_value("http_requests_active", {"service": "quillauth"})
    assert value == 0
