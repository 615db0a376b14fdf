"""
Event endpoints. Slot availability is served from the Redis slot cache.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from eventhub.api.deps import get_slot_cache
from eventhub.db.session import get_db
from eventhub.schemas.cache import SlotCacheEntry
from eventhub.schemas.event import EventCreate, EventUpdate, EventResponse, EventListResponse
from eventhub.services.event_service import create_event, get_event, list_events, update_event, delete_event
from eventhub.services.slot_cache import SlotCache
from eventhub.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a new event."""
    return await create_event(db, event_data)


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List events with pagination."""
    events, total = await list_events(db, page, page_size)
    return EventListResponse(
        events=[EventResponse.model_validate(e) for e in events],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{event_id}/slots", response_model=SlotCacheEntry)
async def get_event_slots_endpoint(
    event_id: int,
    verify: bool = Query(False, description="Compare a cache hit against the database"),
    slot_cache: SlotCache = Depends(get_slot_cache),
):
    """
    Available/total slots for an event.
    Served from Redis when cached; computed from the database and cached otherwise.
    """
    slots = await slot_cache.get_available_slots(event_id, verify=verify or None)
    if slots is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found",
        )
    return slots


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single event by ID."""
    return await get_event(db, event_id)


@router.put("/{event_id}", response_model=EventResponse)
async def update_event_endpoint(
    event_id: int,
    event_data: EventUpdate,
    db: AsyncSession = Depends(get_db),
    slot_cache: SlotCache = Depends(get_slot_cache),
):
    """Update an event. Slot changes invalidate the cached availability."""
    return await update_event(db, event_id, event_data, slot_cache)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event_endpoint(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    slot_cache: SlotCache = Depends(get_slot_cache),
):
    await delete_event(db, event_id, slot_cache)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
