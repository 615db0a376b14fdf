"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from eventhub.api.routes import events, registrations, cache

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events.router)
api_router.include_router(registrations.router)
api_router.include_router(cache.router)
