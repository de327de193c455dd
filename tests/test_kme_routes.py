"""
Integration tests for the ETSI-style KME endpoints and the key pool endpoints.
"""
import base64

import pytest
from httpx import AsyncClient


async def request_key(client: AsyncClient, request_id: str, bits: int = 512) -> dict:
    response = await client.post(
        "/kme/requestKey",
        json={"request_id": request_id, "key_length_bits": bits, "recipient": "bob@example.com"},
    )
    assert response.status_code == 200
    return response.json()


# =============================================================================
# ETSI-style surface
# =============================================================================


@pytest.mark.asyncio
async def test_request_fetch_ack_flow(client: AsyncClient):
    """Request a key, fetch its material, acknowledge part of it."""
    delivery = await request_key(client, "req-flow")

    assert delivery["status"] == "delivered"
    assert delivery["delivery_uri"] == f"/kme/keys/{delivery['key_id']}"

    response = await client.get(delivery["delivery_uri"])
    assert response.status_code == 200
    data = response.json()
    assert data["key_id"] == delivery["key_id"]
    assert len(base64.b64decode(data["key_material"])) == 64
    assert "timestamp" in data

    response = await client.post(
        f"/kme/keys/{delivery['key_id']}/ack",
        json={"consumed_bytes": 16, "message_id": "msg-1"},
    )
    assert response.status_code == 200
    assert response.json() == {"status": "acknowledged", "consumed_bytes": 16}


@pytest.mark.asyncio
@pytest.mark.parametrize("bits", [0, -1, (1024 * 1024 + 1) * 8])
async def test_request_invalid_length(client: AsyncClient, bits: int):
    """Invalid key lengths are rejected."""
    response = await client.post(
        "/kme/requestKey",
        json={"request_id": f"req-{bits}", "key_length_bits": bits},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_request_duplicate_id(client: AsyncClient):
    """Reusing a request id returns 409."""
    await request_key(client, "req-dup")

    response = await client.post(
        "/kme/requestKey",
        json={"request_id": "req-dup", "key_length_bits": 128},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_fetch_unknown_key(client: AsyncClient):
    """Fetching an unknown key returns 404."""
    response = await client.get("/kme/keys/qkey-0-0000000000000000")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_ack_overrun_rejected(client: AsyncClient):
    """Acknowledging past the cap returns 409 and keeps the total."""
    delivery = await request_key(client, "req-overrun", bits=64 * 8)
    key_id = delivery["key_id"]

    response = await client.post(f"/kme/keys/{key_id}/ack", json={"consumed_bytes": 65})
    assert response.status_code == 400

    response = await client.post(f"/kme/keys/{key_id}/ack", json={"consumed_bytes": 64})
    assert response.status_code == 200
    assert response.json()["consumed_bytes"] == 64

    # Exhausted keys are no longer served
    response = await client.get(f"/kme/keys/{key_id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_ack_invalid_amount_and_unknown_key(client: AsyncClient):
    """Invalid amounts and unknown keys are rejected."""
    delivery = await request_key(client, "req-ack-zero")

    response = await client.post(f"/kme/keys/{delivery['key_id']}/ack", json={"consumed_bytes": 0})
    assert response.status_code == 400

    response = await client.post("/kme/keys/qkey-missing/ack", json={"consumed_bytes": 1})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_destroy_is_idempotent(client: AsyncClient):
    """Destroy always returns 204 and the key is gone afterwards."""
    delivery = await request_key(client, "req-destroy")
    key_id = delivery["key_id"]

    assert (await client.delete(f"/kme/keys/{key_id}")).status_code == 204
    assert (await client.delete(f"/kme/keys/{key_id}")).status_code == 204
    assert (await client.delete("/kme/keys/qkey-missing")).status_code == 204

    response = await client.get(f"/kme/keys/{key_id}")
    assert response.status_code == 404


# =============================================================================
# Key pool endpoints
# =============================================================================


@pytest.mark.asyncio
async def test_pool_stats_empty(client: AsyncClient):
    """An empty pool reports zero figures."""
    response = await client.get("/api/v1/keys/pool")

    assert response.status_code == 200
    assert response.json() == {
        "key_count": 0,
        "total_capacity_bytes": 0,
        "consumed_bytes": 0,
        "remaining_bytes": 0,
        "utilization_percent": 0.0,
    }


@pytest.mark.asyncio
async def test_app_request_uses_bytes(client: AsyncClient):
    """The application endpoint sizes keys in bytes."""
    response = await client.post("/api/v1/keys/request", json={"key_length": 256})
    assert response.status_code == 200

    response = await client.get("/api/v1/keys/pool")
    assert response.json()["total_capacity_bytes"] == 256


@pytest.mark.asyncio
async def test_app_request_default_length(client: AsyncClient):
    """The application endpoint falls back to the default size."""
    response = await client.post("/api/v1/keys/request", json={})
    assert response.status_code == 200

    keys = (await client.get("/api/v1/keys")).json()
    assert keys["count"] == 1
    assert keys["keys"][0]["key_length"] == 8192


@pytest.mark.asyncio
async def test_app_request_too_large(client: AsyncClient):
    """Oversized application requests are rejected."""
    response = await client.post("/api/v1/keys/request", json={"key_length": 2 * 1024 * 1024})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_keys_never_exposes_material(client: AsyncClient):
    """Key listings carry metadata only."""
    delivery = await request_key(client, "req-list")
    await client.post(f"/kme/keys/{delivery['key_id']}/ack", json={"consumed_bytes": 32})

    response = await client.get("/api/v1/keys")
    assert response.status_code == 200
    summary = response.json()["keys"][0]

    assert "key_material" not in summary
    assert summary["status"] == "active"
    assert summary["utilization_percent"] == 50.0


@pytest.mark.asyncio
async def test_maintain_endpoint_is_idempotent(client: AsyncClient):
    """A second maintenance request issues no keys."""
    from qkey_service.config import settings

    response = await client.post("/api/v1/keys/maintain")
    assert response.status_code == 200
    first = response.json()
    assert first["keys_issued"] == settings.KME_POOL_TARGET_KEYS
    assert first["active_keys"] == settings.KME_POOL_TARGET_KEYS

    response = await client.post("/api/v1/keys/maintain")
    assert response.json()["keys_issued"] == 0
