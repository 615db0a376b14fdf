"""
Pytest fixtures for the database, the Redis fake, the slot cache components
and the HTTP client.

The durable store is an in-memory SQLite database shared through a
StaticPool; Redis is a fakeredis instance injected into RedisClient, so the
suite needs no running services.
"""

from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from eventhub.core.config import Settings
from eventhub.db.base import Base
from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.main import create_app
from eventhub.models.event import Event
from eventhub.services.cache_coordinator import CacheCoordinator
from eventhub.services.cache_population import CachePopulator
from eventhub.services.leader_election import LeaderElection
from eventhub.services.reconciler import ConsistencyReconciler
from eventhub.services.slot_cache import SlotCache
from eventhub.services.status_store import StatusStore

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
def settings() -> Settings:
    """Settings with all delays zeroed and background jobs off."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        LOG_LEVEL="WARNING",
        DATABASE_URL=TEST_DATABASE_URL,
        INSTANCE_ID="test-instance",
        POPULATE_ON_STARTUP=False,
        RECONCILE_ENABLED=False,
        POPULATION_BATCH_SIZE=2,
        POPULATION_BATCH_DELAY=0,
        RECONCILE_BATCH_SIZE=2,
        RECONCILE_BATCH_DELAY=0,
        RECONCILE_FIX_BACKOFF=0,
        SLOT_DECREMENT_BACKOFF=0,
        REDIS_RECONNECT_BASE_DELAY=0,
    )


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Fresh in-memory schema per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield Database.from_engine(engine)

    await engine.dispose()


@pytest.fixture
def fake_redis() -> fakeredis.FakeAsyncRedis:
    """Isolated fake server per test."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest_asyncio.fixture
async def redis_client(fake_redis, settings: Settings) -> RedisClient:
    client = RedisClient.from_client(
        fake_redis,
        reconnect_base_delay=settings.REDIS_RECONNECT_BASE_DELAY,
    )
    await client.open()
    return client


@pytest_asyncio.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def status_store(redis_client: RedisClient, settings: Settings) -> StatusStore:
    return StatusStore(redis_client, settings)


@pytest.fixture
def leader(redis_client: RedisClient) -> LeaderElection:
    return LeaderElection(redis_client, "test-instance")


@pytest.fixture
def slot_cache(redis_client: RedisClient, database: Database, settings: Settings) -> SlotCache:
    return SlotCache(redis_client, database, settings)


@pytest.fixture
def populator(redis_client, database, status_store, settings) -> CachePopulator:
    return CachePopulator(redis_client, database, status_store, settings)


@pytest.fixture
def reconciler(redis_client, database, status_store, leader, settings) -> ConsistencyReconciler:
    return ConsistencyReconciler(redis_client, database, status_store, leader, settings)


@pytest.fixture
def coordinator(redis_client, database, settings) -> CacheCoordinator:
    return CacheCoordinator(redis_client, database, settings)


@pytest.fixture
def make_event(db_session: AsyncSession):
    """Factory inserting an event with the given slot counts."""

    async def _make(max_slots: int = 10, registered_slots: int = 0, title: str = "Test Event", **kwargs) -> Event:
        event = Event(title=title, max_slots=max_slots, registered_slots=registered_slots, **kwargs)
        db_session.add(event)
        await db_session.commit()
        await db_session.refresh(event)
        return event

    return _make


@pytest_asyncio.fixture
async def app(settings, database, redis_client) -> AsyncGenerator[FastAPI, None]:
    """App wired to the test database and Redis fake, with its lifespan running."""
    application = create_app(settings, database=database, redis=redis_client)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
