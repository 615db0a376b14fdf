"""
Tests for the operator cache endpoints and the coordinator behind them.
"""

import asyncio
import json

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from eventhub.services import cache_keys
from eventhub.services.cache_coordinator import CacheCoordinator


async def _wait_for_reinitialization(client: AsyncClient) -> dict:
    for _ in range(200):
        response = await client.get("/api/v1/cache/reinitialize/status")
        if response.status_code == 200 and response.json()["status"] in ("completed", "failed"):
            return response.json()
        await asyncio.sleep(0.01)
    raise AssertionError("reinitialization did not finish")


@pytest.mark.asyncio
async def test_reinitialize_rebuilds_cache(client: AsyncClient, fake_redis, make_event):
    """Manual reinitialization returns 202 and rebuilds every entry in the background."""
    events = [await make_event(max_slots=5, registered_slots=i) for i in range(3)]

    response = await client.post("/api/v1/cache/reinitialize")

    assert response.status_code == 202
    assert response.json()["instance_id"] == "test-instance"

    status = await _wait_for_reinitialization(client)
    assert status["status"] == "completed"
    assert status["totalEvents"] == 3
    assert status["percentComplete"] == 100.0
    for i, event in enumerate(events):
        raw = await fake_redis.get(cache_keys.event_slots_key(event.id))
        assert json.loads(raw) == {"available": 5 - i, "total": 5}
    assert await fake_redis.exists(cache_keys.MANUAL_REINITIALIZATION_FLAG) == 0


@pytest.mark.asyncio
async def test_reinitialize_status_before_any_run(client: AsyncClient):
    response = await client.get("/api/v1/cache/reinitialize/status")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_consistency_run_and_status(client: AsyncClient, fake_redis, make_event):
    event = await make_event(max_slots=10, registered_slots=8)
    await fake_redis.setex(
        cache_keys.event_slots_key(event.id), 300, json.dumps({"available": 5, "total": 10})
    )

    run = await client.post("/api/v1/cache/consistency/run")

    assert run.status_code == 200
    assert run.json()["status"] == "completed"
    assert run.json()["fixed"] == 1

    status = await client.get("/api/v1/cache/consistency/status")
    assert status.status_code == 200
    assert status.json()["fixed"] == 1
    assert status.json()["instanceId"] == "test-instance"


@pytest.mark.asyncio
async def test_consistency_run_skipped_when_lock_held(client: AsyncClient, fake_redis):
    await fake_redis.set(cache_keys.CONSISTENCY_LOCK, "other-instance", ex=60)

    response = await client.post("/api/v1/cache/consistency/run")

    assert response.status_code == 200
    assert "skipped" in response.json()


@pytest.mark.asyncio
async def test_consistency_run_skipped_during_reinitialization(client: AsyncClient, fake_redis):
    await fake_redis.setex(cache_keys.MANUAL_REINITIALIZATION_FLAG, 3600, "1")

    response = await client.post("/api/v1/cache/consistency/run")

    assert response.json() == {"skipped": "reconciliation suppressed"}


@pytest.mark.asyncio
async def test_cache_endpoints_unavailable_without_redis(client: AsyncClient, redis_client):
    redis_client.reconnect_base_delay = 60
    redis_client.mark_unavailable()

    response = await client.post("/api/v1/cache/reinitialize")

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_startup_population_is_leader_elected(coordinator, fake_redis, make_event):
    event = await make_event(max_slots=4, registered_slots=1)

    outcome = await coordinator.populate_on_startup()

    assert outcome.acquired is True
    assert outcome.result == 1
    raw = await fake_redis.get(cache_keys.event_slots_key(event.id))
    assert json.loads(raw) == {"available": 3, "total": 4}
    assert await fake_redis.exists(cache_keys.INITIALIZATION_LOCK) == 0


@pytest.mark.asyncio
async def test_startup_population_skipped_when_another_instance_leads(coordinator, fake_redis, make_event):
    await make_event()
    await fake_redis.set(cache_keys.INITIALIZATION_LOCK, "other-instance", ex=300)

    outcome = await coordinator.populate_on_startup()

    assert outcome.acquired is False
    assert [k async for k in fake_redis.scan_iter(match=cache_keys.EVENT_SLOTS_PATTERN)] == []


@pytest.mark.asyncio
async def test_coordinator_start_and_stop(redis_client, database, settings, fake_redis, make_event):
    """Background population and reconciliation run until stop() is called."""
    event = await make_event(max_slots=6, registered_slots=2)
    enabled = settings.model_copy(update={"POPULATE_ON_STARTUP": True, "RECONCILE_ENABLED": True})
    coordinator = CacheCoordinator(redis_client, database, enabled)

    coordinator.start()
    for _ in range(200):
        if await fake_redis.exists(cache_keys.event_slots_key(event.id)):
            break
        await asyncio.sleep(0.01)
    await coordinator.stop()

    raw = await fake_redis.get(cache_keys.event_slots_key(event.id))
    assert json.loads(raw) == {"available": 4, "total": 6}


@pytest.mark.asyncio
async def test_startup_population_failure_propagates(coordinator, fake_redis, monkeypatch):
    """A failed population is reported to the caller, not passed off as an empty run."""

    async def broken_load():
        raise OperationalError("SELECT", {}, Exception("database is gone"))

    monkeypatch.setattr(coordinator.populator, "_load_events", broken_load)

    with pytest.raises(OperationalError):
        await coordinator.populate_on_startup()

    assert await fake_redis.exists(cache_keys.INITIALIZATION_LOCK) == 0
