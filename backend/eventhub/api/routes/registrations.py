"""
Registration endpoints with row-locked slot accounting.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from eventhub.api.deps import get_slot_cache
from eventhub.db.session import get_db
from eventhub.schemas.registration import RegistrationCreate, RegistrationResponse, UserRegistrationResponse
from eventhub.services.registration_service import register_user_for_event, get_user_registrations
from eventhub.services.slot_cache import SlotCache

router = APIRouter(prefix="/registrations", tags=["Registrations"])


@router.post("/", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def create_registration(
    registration_data: RegistrationCreate,
    db: AsyncSession = Depends(get_db),
    slot_cache: SlotCache = Depends(get_slot_cache),
):
    """
    Register a user for an event.

    The event row is locked for the duration of the transaction, so two
    simultaneous registrations for the last slot cannot both succeed.
    The cached slot counter is decremented after the commit.
    """
    return await register_user_for_event(
        db, registration_data.user_id, registration_data.event_id, slot_cache
    )


@router.get("/user/{user_id}", response_model=list[UserRegistrationResponse])
async def list_user_registrations(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    """All registrations for a user, newest first."""
    return await get_user_registrations(db, user_id)
