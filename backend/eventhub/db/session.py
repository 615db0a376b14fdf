"""
Durable store lifecycle.

`Database` owns the async engine and session factory. It is constructed
once per process, opened in the application lifespan and handed to every
component that needs the store, instead of living as import-time global state.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from eventhub.core.config import Settings
from eventhub.core.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Async SQLAlchemy engine + session factory with explicit open/close."""

    def __init__(self, url: str, engine_options: Optional[dict] = None):
        self.url = url
        self._engine_options = engine_options or {}
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        options = {}
        if not settings.DATABASE_URL.startswith("sqlite"):
            options = {
                "pool_size": settings.DB_POOL_SIZE,
                "max_overflow": settings.DB_MAX_OVERFLOW,
                "pool_timeout": settings.DB_POOL_TIMEOUT,
                "pool_recycle": settings.DB_POOL_RECYCLE,
                "pool_pre_ping": True,
            }
        return cls(settings.DATABASE_URL, options)

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "Database":
        """Wrap an already-created engine (tests, scripts)."""
        db = cls(str(engine.url))
        db._engine = engine
        db._sessionmaker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return db

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    async def open(self) -> None:
        if self._engine is not None:
            return
        self._engine = create_async_engine(self.url, echo=False, **self._engine_options)
        self._sessionmaker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info("database_opened", url=self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("database_closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        async with self._sessionmaker() as session:
            yield session

    async def ping(self) -> None:
        """Lightweight readiness check. Raises on failure."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session from the app's Database."""
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
