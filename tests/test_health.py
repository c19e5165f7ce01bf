"""Tests for health check endpoints."""

from unittest.mock import AsyncMock

from httpx import AsyncClient

from healthqueue.api.v1.endpoints import health


async def test_health(client: AsyncClient):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_ping(client: AsyncClient):
    response = await client.get("/api/v1/ping")

    assert response.json() == {"message": "pong"}


async def test_detailed_health_degrades_without_cache(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(health, "check_database_connection", AsyncMock(return_value=True))
    monkeypatch.setattr(health, "check_redis_connection", AsyncMock(return_value=False))

    response = await client.get("/api/v1/health/detailed")

    body = response.json()
    assert body["status"] == "degraded"
    assert body["database"] == "healthy"
    assert body["cache"] == "unhealthy"
    assert body["realtime_subscribers"] == {"patient": 0, "doctor": 0, "admin": 0}


async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/api/v1/ping", headers={"X-Request-ID": "abc123"})

    assert response.headers["X-Request-ID"] == "abc123"
    assert "X-Process-Time" in response.headers
