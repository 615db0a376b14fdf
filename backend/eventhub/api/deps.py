"""
Request-scoped access to the components built in the application lifespan.
"""

from fastapi import Request

from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.services.cache_coordinator import CacheCoordinator
from eventhub.services.slot_cache import SlotCache


def get_coordinator(request: Request) -> CacheCoordinator:
    return request.app.state.coordinator


def get_slot_cache(request: Request) -> SlotCache:
    return request.app.state.coordinator.slot_cache


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_redis_client(request: Request) -> RedisClient:
    return request.app.state.redis
