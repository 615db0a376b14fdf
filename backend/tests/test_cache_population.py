"""
Tests for bulk cache population and progress-tracked reinitialization.
"""

import asyncio
import json

import pytest
from sqlalchemy.exc import OperationalError

from eventhub.infrastructure.redis_client import RedisClient
from eventhub.services import cache_keys
from eventhub.services.cache_population import CachePopulator


@pytest.mark.asyncio
async def test_populates_every_event(populator, fake_redis, make_event):
    """Three fresh events with 10 slots each end up cached at {10, 10}."""
    events = [await make_event(max_slots=10) for _ in range(3)]

    written = await populator.populate_all()

    assert written == 3
    for event in events:
        key = cache_keys.event_slots_key(event.id)
        assert json.loads(await fake_redis.get(key)) == {"available": 10, "total": 10}
        assert 0 < await fake_redis.ttl(key) <= 300


@pytest.mark.asyncio
async def test_population_reflects_registered_counts(populator, fake_redis, make_event):
    event = await make_event(max_slots=50, registered_slots=12)

    await populator.populate_all()

    raw = await fake_redis.get(cache_keys.event_slots_key(event.id))
    assert json.loads(raw) == {"available": 38, "total": 50}


@pytest.mark.asyncio
async def test_population_is_idempotent(populator, fake_redis, make_event):
    event = await make_event(max_slots=4, registered_slots=1)

    await populator.populate_all()
    first = await fake_redis.get(cache_keys.event_slots_key(event.id))
    await populator.populate_all()
    second = await fake_redis.get(cache_keys.event_slots_key(event.id))

    assert first == second
    assert len([k async for k in fake_redis.scan_iter(match=cache_keys.EVENT_SLOTS_PATTERN)]) == 1


@pytest.mark.asyncio
async def test_population_reports_progress_per_batch(populator, make_event):
    """Batch size 2 over 5 events gives progress at 0, 2, 4 and 5."""
    for _ in range(5):
        await make_event()
    seen = []

    async def progress(done, total):
        seen.append((done, total))

    await populator.populate_all(progress=progress)

    assert seen == [(0, 5), (2, 5), (4, 5), (5, 5)]


@pytest.mark.asyncio
async def test_population_stops_when_requested(populator, fake_redis, make_event):
    for _ in range(4):
        await make_event()
    stop = asyncio.Event()
    stop.set()

    written = await populator.populate_all(stop=stop)

    assert written == 0
    assert [k async for k in fake_redis.scan_iter(match=cache_keys.EVENT_SLOTS_PATTERN)] == []


@pytest.mark.asyncio
async def test_population_with_no_events(populator):
    assert await populator.populate_all() == 0


@pytest.mark.asyncio
async def test_population_skipped_without_redis(database, status_store, settings, make_event):
    await make_event()
    redis = RedisClient("redis://unused", enabled=False)
    await redis.open()
    offline = CachePopulator(redis, database, status_store, settings)

    assert await offline.populate_all() == 0


@pytest.mark.asyncio
async def test_reinitialization_completes_and_clears_flag(populator, status_store, fake_redis, make_event):
    """Tracked population ends with a completed record and no manual flag."""
    for _ in range(3):
        await make_event(max_slots=6, registered_slots=2)
    await status_store.set_manual_flag()

    record = await populator.populate_with_progress(instance_id="test-instance")

    assert record.status == "completed"
    assert record.total_events == 3
    assert record.completed_events == 3
    assert record.percent_complete == 100.0
    assert record.completion_time is not None

    stored = await status_store.read(cache_keys.REINITIALIZATION_STATUS)
    assert stored.status == "completed"
    assert stored.instance_id == "test-instance"
    assert 0 < await fake_redis.ttl(cache_keys.REINITIALIZATION_STATUS) <= 3600
    assert await fake_redis.exists(cache_keys.MANUAL_REINITIALIZATION_FLAG) == 0


@pytest.mark.asyncio
async def test_reinitialization_status_uses_camel_case(populator, fake_redis, make_event):
    await make_event()

    await populator.populate_with_progress(instance_id="test-instance")

    body = json.loads(await fake_redis.get(cache_keys.REINITIALIZATION_STATUS))
    assert body["status"] == "completed"
    assert body["instanceId"] == "test-instance"
    assert body["totalEvents"] == 1
    assert "startTime" in body
    assert "completionTime" in body


@pytest.mark.asyncio
async def test_reinitialization_failure_is_recorded(populator, status_store, fake_redis, monkeypatch):
    """A database failure ends in a failed record and still clears the flag."""
    await status_store.set_manual_flag()

    async def broken_load():
        raise OperationalError("SELECT", {}, Exception("database is gone"))

    monkeypatch.setattr(populator, "_load_events", broken_load)

    record = await populator.populate_with_progress(instance_id="test-instance")

    assert record.status == "failed"
    assert "database is gone" in record.error
    stored = await status_store.read(cache_keys.REINITIALIZATION_STATUS)
    assert stored.status == "failed"
    assert await fake_redis.exists(cache_keys.MANUAL_REINITIALIZATION_FLAG) == 0


@pytest.mark.asyncio
async def test_cancelled_reinitialization_is_failed(populator, make_event):
    for _ in range(3):
        await make_event()
    stop = asyncio.Event()
    stop.set()

    record = await populator.populate_with_progress(instance_id="test-instance", stop=stop)

    assert record.status == "failed"
    assert record.error == "cancelled before completion"
