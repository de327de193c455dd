"""
Integration tests for health endpoint.
"""
from datetime import datetime

import pytest
from httpx import AsyncClient

from qkey_service.main import app
from qkey_service.services.pool_maintainer import KeyPoolMaintainer


@pytest.mark.asyncio
async def test_health_degraded_with_empty_pool(client: AsyncClient):
    """An empty pool is reported as degraded, not as an error."""
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["pool"]["key_count"] == 0
    assert data["maintenance"] == {
        "enabled": False,
        "running": False,
        "interval_seconds": None,
        "last_run_at": None,
        "last_error": None,
        "failure_count": 0,
    }


@pytest.mark.asyncio
async def test_health_check_success(client: AsyncClient):
    """A filled pool reports healthy."""
    await client.post("/api/v1/keys/maintain")

    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["kem_provider"] == "CRYSTALS-Kyber-768-Simulated"
    assert data["pool"]["key_count"] > 0


@pytest.mark.asyncio
async def test_health_reports_maintenance_task(client: AsyncClient, key_service):
    """Health includes the maintenance task state."""
    maintainer = KeyPoolMaintainer(key_service, 2, 64, interval_seconds=60, timeout_seconds=5)
    await maintainer.run_once()
    maintainer.start()
    app.state.pool_maintainer = maintainer
    try:
        data = (await client.get("/health")).json()
    finally:
        await maintainer.stop()

    assert data["status"] == "healthy"
    assert data["maintenance"]["enabled"] is True
    assert data["maintenance"]["running"] is True
    assert data["maintenance"]["interval_seconds"] == 60
    assert data["maintenance"]["last_run_at"] is not None


@pytest.mark.asyncio
async def test_health_check_timestamp_format(client: AsyncClient):
    """Test that timestamp is in ISO format."""
    response = await client.get("/health")

    data = response.json()
    parsed_time = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
    now = datetime.now(parsed_time.tzinfo)
    assert abs((now - parsed_time).total_seconds()) < 60


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient):
    """The request id is echoed or generated in the response headers."""
    response = await client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert response.headers["X-Request-ID"] == "trace-123"

    response = await client.get("/health")
    assert response.headers["X-Request-ID"]
