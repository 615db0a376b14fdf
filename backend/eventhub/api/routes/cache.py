"""
Operator endpoints for the slot cache: manual rebuild and status polling.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from eventhub.api.deps import get_coordinator
from eventhub.schemas.cache import ReinitializationAccepted
from eventhub.services.cache_coordinator import CacheCoordinator

router = APIRouter(prefix="/cache", tags=["Cache"])


def _or_404(record, what: str) -> dict:
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {what} has been recorded",
        )
    return record.model_dump(by_alias=True, mode="json")


@router.post(
    "/reinitialize",
    response_model=ReinitializationAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reinitialize_cache(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """
    Rebuild every slot entry from the database in the background.
    Reconciliation is suppressed until the rebuild finishes.
    """
    return await coordinator.trigger_manual_reinitialization()


@router.get("/reinitialize/status")
async def reinitialization_status(coordinator: CacheCoordinator = Depends(get_coordinator)):
    return _or_404(await coordinator.get_reinitialization_status(), "reinitialization")


@router.get("/consistency/status")
async def consistency_status(coordinator: CacheCoordinator = Depends(get_coordinator)):
    return _or_404(await coordinator.get_consistency_status(), "consistency check")


@router.post("/consistency/run")
async def run_consistency_check(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """Run one reconciliation cycle now, if this instance can take the lock."""
    return await coordinator.run_consistency_check()
