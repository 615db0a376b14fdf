"""
Event service handling CRUD operations.
Administrative changes to slot counts drop the cached entry after commit.
"""

from datetime import datetime, timezone
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from eventhub.models.event import Event
from eventhub.schemas.event import EventCreate, EventUpdate
from eventhub.services.slot_cache import SlotCache
from eventhub.core.logging import get_logger

logger = get_logger(__name__)


async def create_event(db: AsyncSession, event_data: EventCreate) -> Event:
    """Create a new event."""
    schedule = event_data.schedule
    if schedule is not None and schedule.tzinfo is None:
        schedule = schedule.replace(tzinfo=timezone.utc)
    if schedule is not None and schedule <= datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event schedule must be in the future",
        )

    event = Event(**event_data.model_dump())
    db.add(event)
    await db.commit()
    await db.refresh(event)

    logger.info("event_created", event_id=event.id, title=event.title, max_slots=event.max_slots)
    return event


async def get_event(db: AsyncSession, event_id: int) -> Event:
    """Get a single event by ID."""
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()

    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found",
        )
    return event


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Event], int]:
    """List events with pagination, ordered by id."""
    total = (await db.execute(select(func.count()).select_from(Event))).scalar()

    result = await db.execute(
        select(Event)
        .order_by(Event.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def update_event(
    db: AsyncSession,
    event_id: int,
    event_data: EventUpdate,
    slot_cache: SlotCache,
) -> Event:
    """
    Partially update an event.
    Slot changes go to the DB first; the cache entry is dropped afterwards
    so the next read recomputes it.
    """
    event = await get_event(db, event_id)
    changes = event_data.model_dump(exclude_unset=True)

    max_slots = changes.get("max_slots", event.max_slots)
    registered_slots = changes.get("registered_slots", event.registered_slots)
    if registered_slots > max_slots:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="registered_slots cannot exceed max_slots",
        )

    for field, value in changes.items():
        setattr(event, field, value)
    await db.commit()
    await db.refresh(event)

    if "max_slots" in changes or "registered_slots" in changes:
        await slot_cache.invalidate(event_id)

    logger.info("event_updated", event_id=event_id, fields=sorted(changes))
    return event


async def delete_event(db: AsyncSession, event_id: int, slot_cache: SlotCache) -> None:
    """Delete an event and its cached slot entry."""
    await get_event(db, event_id)
    await db.execute(delete(Event).where(Event.id == event_id))
    await db.commit()
    await slot_cache.invalidate(event_id)
    logger.info("event_deleted", event_id=event_id)
