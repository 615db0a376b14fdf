"""
Liveness/readiness checks and Redis introspection.
The readiness check pings the stores directly, bypassing the cache machinery.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, PlainTextResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from eventhub.api.deps import get_coordinator, get_database, get_redis_client
from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.schemas.cache import CacheKeyValue, CacheKeysResponse
from eventhub.services.cache_coordinator import CacheCoordinator
from eventhub.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])


@router.get("/live", response_class=PlainTextResponse)
async def live():
    return "Alive"


@router.get("/ready", response_class=PlainTextResponse)
async def ready(
    database: Database = Depends(get_database),
    redis: RedisClient = Depends(get_redis_client),
):
    """Ready when the database answers and, if Redis is enabled, Redis answers too."""
    try:
        await database.ping()
    except SQLAlchemyError as e:
        logger.error("readiness_db_failed", error=str(e))
        return PlainTextResponse(f"Not ready: database: {e}", status_code=503)

    if redis.enabled:
        if not redis.is_configured:
            return PlainTextResponse("Redis client not available", status_code=503)
        try:
            await redis.ping()
        except RedisError as e:
            logger.error("readiness_redis_failed", error=str(e))
            return PlainTextResponse(f"Not ready: redis: {e}", status_code=503)

    return "Ready"


@router.get("/redis", response_model=CacheKeysResponse)
async def redis_keys(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """All cached event keys with their parsed values and TTLs."""
    try:
        return await coordinator.list_slot_keys()
    except RedisError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Error accessing Redis", "message": str(e)},
        )


@router.get("/redis/key/{key}", response_model=CacheKeyValue)
async def redis_key(key: str, coordinator: CacheCoordinator = Depends(get_coordinator)):
    try:
        entry = await coordinator.get_key(key)
    except RedisError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Error accessing Redis", "message": str(e)},
        )
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f'Key "{key}" not found')
    return entry


@router.get("/redis-stats")
async def redis_stats(coordinator: CacheCoordinator = Depends(get_coordinator)):
    stats = await coordinator.stats()
    if stats["status"] == "unavailable":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=stats)
    return stats
