"""
tests/test_main.py
App-level routes and middleware.
"""

import pytest

from config.settings import settings


@pytest.mark.asyncio
async def test_root_describes_the_api(client):
    resp = await client.get("/")
    assert resp.json() == {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@pytest.mark.asyncio
async def test_health_reports_degraded_without_redis(client):
    resp = await client.get("/health")

    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "degraded"
    assert body["database"] == "ok"
    assert body["redis"] == "error"


@pytest.mark.asyncio
async def test_request_id_is_echoed_or_generated(client):
    given = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert given.headers["X-Request-ID"] == "req-123"

    generated = await client.get("/")
    assert len(generated.headers["X-Request-ID"]) == 36
    assert generated.headers["X-Process-Time"].endswith("ms")
