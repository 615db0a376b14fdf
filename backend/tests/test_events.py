"""
Tests for event CRUD endpoints and the slot availability endpoint.
"""

import json

import pytest
from datetime import datetime, timezone, timedelta
from httpx import AsyncClient

from eventhub.services.cache_keys import event_slots_key


@pytest.mark.asyncio
async def test_create_event(client: AsyncClient):
    future_date = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
    response = await client.post(
        "/api/v1/events/",
        json={
            "title": "Python Conference 2026",
            "description": "Annual Python gathering",
            "venue": "Convention Center",
            "schedule": future_date,
            "max_slots": 500,
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Python Conference 2026"
    assert data["max_slots"] == 500
    assert data["registered_slots"] == 0


@pytest.mark.asyncio
async def test_create_event_past_schedule(client: AsyncClient):
    """Event scheduled in the past returns 400."""
    past_date = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    response = await client.post(
        "/api/v1/events/",
        json={"title": "Past Event", "schedule": past_date, "max_slots": 100},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_event_overbooked(client: AsyncClient):
    """registered_slots above max_slots fails validation."""
    response = await client.post(
        "/api/v1/events/",
        json={"title": "Overbooked", "max_slots": 5, "registered_slots": 6},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_events(client: AsyncClient, make_event):
    for i in range(3):
        await make_event(title=f"Event {i}")

    response = await client.get("/api/v1/events/", params={"page": 1, "page_size": 2})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert [e["title"] for e in data["events"]] == ["Event 0", "Event 1"]


@pytest.mark.asyncio
async def test_get_event_not_found(client: AsyncClient):
    response = await client.get("/api/v1/events/99999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_slots_endpoint_populates_cache(client: AsyncClient, fake_redis, make_event):
    """A miss is served from the database and cached for the next read."""
    event = await make_event(max_slots=20, registered_slots=3)

    response = await client.get(f"/api/v1/events/{event.id}/slots")

    assert response.status_code == 200
    assert response.json() == {"available": 17, "total": 20}
    cached = json.loads(await fake_redis.get(event_slots_key(event.id)))
    assert cached == {"available": 17, "total": 20}


@pytest.mark.asyncio
async def test_slots_endpoint_verify_corrects_stale_entry(client: AsyncClient, fake_redis, make_event):
    event = await make_event(max_slots=10, registered_slots=8)
    await fake_redis.setex(event_slots_key(event.id), 300, json.dumps({"available": 5, "total": 10}))

    trusted = await client.get(f"/api/v1/events/{event.id}/slots")
    verified = await client.get(f"/api/v1/events/{event.id}/slots", params={"verify": True})

    assert trusted.json() == {"available": 5, "total": 10}
    assert verified.json() == {"available": 2, "total": 10}


@pytest.mark.asyncio
async def test_slots_endpoint_unknown_event(client: AsyncClient):
    response = await client.get("/api/v1/events/424242/slots")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_slots_invalidates_cache(client: AsyncClient, fake_redis, make_event):
    """Changing capacity drops the cached entry so the next read recomputes it."""
    event = await make_event(max_slots=10, registered_slots=2)
    await client.get(f"/api/v1/events/{event.id}/slots")

    response = await client.put(f"/api/v1/events/{event.id}", json={"max_slots": 30})

    assert response.status_code == 200
    assert response.json()["max_slots"] == 30
    assert await fake_redis.exists(event_slots_key(event.id)) == 0

    slots = await client.get(f"/api/v1/events/{event.id}/slots")
    assert slots.json() == {"available": 28, "total": 30}


@pytest.mark.asyncio
async def test_update_title_keeps_cache(client: AsyncClient, fake_redis, make_event):
    event = await make_event(max_slots=10)
    await client.get(f"/api/v1/events/{event.id}/slots")

    response = await client.put(f"/api/v1/events/{event.id}", json={"title": "Renamed"})

    assert response.status_code == 200
    assert await fake_redis.exists(event_slots_key(event.id)) == 1


@pytest.mark.asyncio
async def test_update_below_registered_rejected(client: AsyncClient, make_event):
    event = await make_event(max_slots=10, registered_slots=6)

    response = await client.put(f"/api/v1/events/{event.id}", json={"max_slots": 5})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_event_removes_cache_entry(client: AsyncClient, fake_redis, make_event):
    event = await make_event()
    await client.get(f"/api/v1/events/{event.id}/slots")

    response = await client.delete(f"/api/v1/events/{event.id}")

    assert response.status_code == 204
    assert await fake_redis.exists(event_slots_key(event.id)) == 0
    assert (await client.get(f"/api/v1/events/{event.id}/slots")).status_code == 404
