"""
Registration service with row-locked slot accounting.

CONCURRENCY STRATEGY: Pessimistic row lock
==========================================

  1. SELECT ... FOR UPDATE on the event row inside a transaction
  2. Reject if registered_slots >= max_slots, or the user is already registered
  3. INSERT the registration and increment registered_slots
  4. COMMIT
  5. Only then decrement the cached `available` counter

  The row lock serializes registrations per event, which is the single
  strong consistency boundary; the DB CHECK constraint is the final safety
  net. The cache update in step 5 happens after commit so the reconciler
  never sees a cache decrement the events table does not yet reflect, and
  a cache failure can never undo a committed registration.
"""

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from eventhub.models.event import Event
from eventhub.models.registration import Registration
from eventhub.services.slot_cache import SlotCache
from eventhub.core.logging import get_logger

logger = get_logger(__name__)


async def register_user_for_event(
    db: AsyncSession,
    user_id: int,
    event_id: int,
    slot_cache: SlotCache,
) -> Registration:
    """Register a user for an event, holding one slot."""
    try:
        result = await db.execute(
            select(Event.id, Event.max_slots, Event.registered_slots)
            .where(Event.id == event_id)
            .with_for_update()
        )
        event = result.one_or_none()

        if event is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Event {event_id} not found",
            )

        if event.registered_slots >= event.max_slots:
            logger.warning(
                "registration_failed_no_slots",
                event_id=event_id,
                registered=event.registered_slots,
                max_slots=event.max_slots,
            )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="No available slots for this event",
            )

        existing = await db.execute(
            select(Registration.id).where(
                Registration.user_id == user_id,
                Registration.event_id == event_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="User already registered for this event",
            )

        registration = Registration(user_id=user_id, event_id=event_id)
        db.add(registration)
        await db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(registered_slots=Event.registered_slots + 1)
        )
        await db.commit()
    except (HTTPException, SQLAlchemyError):
        await db.rollback()
        raise

    logger.info(
        "registration_created",
        registration_id=registration.id,
        user_id=user_id,
        event_id=event_id,
    )

    # The registration is durable now; the cache must follow even if loading it back fails
    await slot_cache.on_registration_committed(event_id)
    await db.refresh(registration)
    return registration


async def get_user_registrations(db: AsyncSession, user_id: int) -> list[dict]:
    """All registrations for a user, newest first, with the event title."""
    result = await db.execute(
        select(Registration, Event.title)
        .join(Event, Registration.event_id == Event.id)
        .where(Registration.user_id == user_id)
        .order_by(Registration.registration_date.desc(), Registration.id.desc())
    )
    return [
        {
            "id": registration.id,
            "user_id": registration.user_id,
            "event_id": registration.event_id,
            "registration_date": registration.registration_date,
            "event_title": title,
        }
        for registration, title in result.all()
    ]
