"""
Liveness, readiness and API root tests.
"""

import pytest
from httpx import AsyncClient, ASGITransport

import app.main as server
from app.main import app


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_ready_with_log_notifier(client: AsyncClient):
    """With log notifications only the database is probed."""
    response = await client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


@pytest.mark.asyncio
async def test_ready_reports_unreachable_redis(client: AsyncClient, monkeypatch):
    async def _down():
        return False

    monkeypatch.setattr(server.settings, "notifier", "redis")
    monkeypatch.setattr(server, "redis_ready", _down)

    response = await client.get("/ready")
    assert response.status_code == 503
    assert response.json()["failing"] == ["redis"]


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    response = await client.get("/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_api_root(client: AsyncClient):
    response = await client.get("/api/v1/")
    assert response.status_code == 200
    data = response.json()
    assert data["api"] == "v1"
    assert data["endpoints"] == ["/tasks", "/templates", "/enquiries"]
