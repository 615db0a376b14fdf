"""
Tests for health checks, Redis introspection and metrics.
"""

import json

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from eventhub.services.cache_keys import event_slots_key


@pytest.mark.asyncio
async def test_live(client: AsyncClient):
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert response.text == "Alive"


@pytest.mark.asyncio
async def test_ready(client: AsyncClient):
    response = await client.get("/health/ready")
    assert response.status_code == 200
    assert response.text == "Ready"


@pytest.mark.asyncio
async def test_not_ready_when_redis_ping_fails(client: AsyncClient, fake_redis, monkeypatch):
    async def broken_ping(*args, **kwargs):
        raise RedisConnectionError("down")

    monkeypatch.setattr(fake_redis, "ping", broken_ping)

    response = await client.get("/health/ready")

    assert response.status_code == 503
    assert "redis" in response.text


@pytest.mark.asyncio
async def test_redis_keys_lists_slot_entries(client: AsyncClient, make_event):
    first = await make_event(max_slots=3)
    second = await make_event(max_slots=4, registered_slots=4)
    await client.get(f"/api/v1/events/{first.id}/slots")
    await client.get(f"/api/v1/events/{second.id}/slots")

    response = await client.get("/health/redis")

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    values = {k["key"]: k["value"] for k in data["keys"]}
    assert values[event_slots_key(first.id)] == {"available": 3, "total": 3}
    assert values[event_slots_key(second.id)] == {"available": 0, "total": 4}
    assert all(0 < k["ttl"] <= 300 for k in data["keys"])


@pytest.mark.asyncio
async def test_redis_key_lookup(client: AsyncClient, fake_redis):
    await fake_redis.setex("event:5:slots", 120, json.dumps({"available": 1, "total": 2}))

    found = await client.get("/health/redis/key/event:5:slots")
    missing = await client.get("/health/redis/key/event:6:slots")

    assert found.status_code == 200
    assert found.json()["value"] == {"available": 1, "total": 2}
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_redis_stats(client: AsyncClient):
    response = await client.get("/health/redis-stats")

    assert response.status_code == 200
    assert response.json()["status"] in ("connected", "error")


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/health/live", headers={"X-Request-ID": "abc123"})

    assert response.headers["X-Request-ID"] == "abc123"
    assert response.headers["X-Instance-ID"] == "test-instance"
    assert response.headers["X-Response-Time"].endswith("ms")


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient, make_event):
    event = await make_event()
    await client.get(f"/api/v1/events/{event.id}/slots")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "slot_cache_operations_total" in response.text
