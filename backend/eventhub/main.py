"""
Event Hub API - Main Application Entry Point

Event-management backend whose slot availability is served from a Redis
cache kept consistent with PostgreSQL:
- Row-locked registrations with post-commit cache decrements
- Leader-elected cache population and periodic reconciliation across instances
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eventhub.core.config import Settings, get_settings
from eventhub.core.logging import setup_logging, get_logger
from eventhub.core.metrics import metrics_endpoint
from eventhub.api.router import api_router
from eventhub.api.routes import health
from eventhub.api.middleware import RequestLoggingMiddleware
from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.services.cache_coordinator import CacheCoordinator


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    redis: Optional[RedisClient] = None,
) -> FastAPI:
    """
    Build the application. Collaborators default to ones built from settings;
    tests pass their own.
    """
    settings = settings or get_settings()
    database = database or Database.from_settings(settings)
    redis = redis or RedisClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle: open stores, start cache jobs, close on shutdown."""
        setup_logging(settings)
        logger = get_logger(__name__)

        logger.info(
            "application_starting",
            app=settings.APP_NAME,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
        )

        await database.open()
        if await redis.open():
            logger.info("redis_ready")
        else:
            logger.warning("redis_unavailable", message="Serving slot counts from the database")

        coordinator = CacheCoordinator(redis, database, settings)
        app.state.settings = settings
        app.state.database = database
        app.state.redis = redis
        app.state.coordinator = coordinator
        coordinator.start()

        yield

        await coordinator.stop()
        await redis.close()
        await database.close()
        logger.info("application_shutdown")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Event management API with a self-healing slot availability cache",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(api_router)
    app.include_router(health.router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return metrics_endpoint()

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "message": f"{settings.APP_NAME} is running, use /health/ready and /health/live for healthchecks",
            "version": settings.APP_VERSION,
            "docs": "/docs",
        }

    return app


app = create_app()
