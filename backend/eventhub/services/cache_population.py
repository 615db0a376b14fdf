"""
Bulk population of the slot cache from the events table.

All events are read in one query and written in pipelined batches with a
short pause between batches to bound Redis load. Population is idempotent:
every run writes the same projection, later runs simply overwrite.

The progress-tracked variant backs operator-triggered reinitialization.
It publishes a StatusRecord after each batch and always clears the manual
override flag when it finishes, successfully or not.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from eventhub.core.config import Settings
from eventhub.core.logging import get_logger
from eventhub.core.metrics import cache_population_duration, cache_population_events
from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.models.event import Event
from eventhub.schemas.cache import SlotCacheEntry, StatusRecord, utcnow
from eventhub.services import cache_keys
from eventhub.services.status_store import StatusStore

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


class CachePopulator:
    def __init__(
        self,
        redis: RedisClient,
        database: Database,
        status_store: StatusStore,
        settings: Settings,
    ):
        self.redis = redis
        self.database = database
        self.status_store = status_store
        self.ttl = settings.SLOTS_CACHE_TTL
        self.batch_size = settings.POPULATION_BATCH_SIZE
        self.batch_delay = settings.POPULATION_BATCH_DELAY

    async def _load_events(self) -> list:
        async with self.database.session() as session:
            result = await session.execute(
                select(Event.id, Event.max_slots, Event.registered_slots).order_by(Event.id)
            )
            return list(result.all())

    async def _write_batch(self, batch: list) -> None:
        async with self.redis.client.pipeline(transaction=False) as pipe:
            for row in batch:
                entry = SlotCacheEntry.from_counts(row.max_slots, row.registered_slots)
                pipe.setex(cache_keys.event_slots_key(row.id), self.ttl, entry.model_dump_json())
            await pipe.execute()

    async def populate_all(
        self,
        stop: Optional[asyncio.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Write every event's slot entry. Returns the number of entries written.

        A no-op when Redis is unavailable. Store errors propagate to the caller.
        """
        if not await self.redis.available():
            logger.info("cache_population_skipped", reason="redis_unavailable")
            return 0

        started = time.perf_counter()
        events = await self._load_events()
        total = len(events)
        written = 0
        logger.info("cache_population_started", total_events=total, batch_size=self.batch_size)

        if progress:
            await progress(0, total)

        for i in range(0, total, self.batch_size):
            if stop is not None and stop.is_set():
                logger.warning("cache_population_cancelled", written=written, total_events=total)
                break

            batch = events[i:i + self.batch_size]
            await self._write_batch(batch)
            written += len(batch)
            cache_population_events.inc(len(batch))
            logger.debug("cache_population_batch", size=len(batch), written=written)

            if progress:
                await progress(written, total)

            # Pace batches so a large table does not flood Redis
            if i + self.batch_size < total:
                await asyncio.sleep(self.batch_delay)

        duration = time.perf_counter() - started
        cache_population_duration.observe(duration)
        logger.info("cache_population_completed", written=written, duration_s=round(duration, 3))
        return written

    async def populate_with_progress(
        self,
        instance_id: Optional[str] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> StatusRecord:
        """Population that reports to cache:reinitialization:status. Never raises for store errors."""
        record = StatusRecord(status="starting", instance_id=instance_id)
        await self.status_store.write(cache_keys.REINITIALIZATION_STATUS, record)

        async def report(done: int, total: int) -> None:
            record.status = "running"
            record.total_events = total
            record.completed_events = done
            record.percent_complete = round(done / total * 100, 1) if total else 100.0
            await self.status_store.write(cache_keys.REINITIALIZATION_STATUS, record)

        try:
            if not await self.redis.available():
                raise RedisError("Redis unavailable")
            written = await self.populate_all(stop=stop, progress=report)
            record.completed_events = written
            if written < record.total_events:
                record.status = "failed"
                record.error = "cancelled before completion"
            else:
                record.status = "completed"
        except (RedisError, SQLAlchemyError) as e:
            logger.error("cache_reinitialization_failed", error=str(e))
            record.status = "failed"
            record.error = str(e)
        finally:
            record.completion_time = utcnow()
            await self.status_store.write(cache_keys.REINITIALIZATION_STATUS, record)
            await self.status_store.clear_manual_flag()

        logger.info(
            "cache_reinitialization_finished",
            status=record.status,
            completed_events=record.completed_events,
            total_events=record.total_events,
        )
        return record
