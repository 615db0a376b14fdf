"""
Slot availability cache: the read path and the registration write path.

CACHING STRATEGY
================

What we cache:
  - Per-event capacity as JSON {available, total}
  - Cache key pattern: "event:{id}:slots", TTL 5 minutes

Read path (get_available_slots):
  - "trust" policy (default): a hit is returned as-is; drift is repaired by
    the periodic reconciler, keeping the hot path off the database
  - "verify" policy: every hit is compared with the database row and
    overwritten when it disagrees. Used by admin/debug callers.
  - Miss, unreachable Redis or unreadable entry: compute from the database
    and repopulate. If the database fails too, the error propagates.

Write path (on_registration_committed):
  - Runs only after the registration transaction committed
  - WATCH/MULTI decrement of `available`, floored at zero, so concurrent
    decrements on the same entry cannot drive it negative
  - Absent entry is left absent; the next read recomputes it
  - Command errors (e.g. a lost WATCH race) retry with exponential backoff;
    when every attempt fails the entry is deleted instead of being left wrong
  - A connection error is not retried. The event is queued for deletion and
    the queue is flushed by the next read or decrement that reaches Redis,
    before any entry is served. Reads skip the cache until then.
  - Never raises for cache failures: the committed registration stands
"""

import asyncio
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy import select

from eventhub.core.config import Settings
from eventhub.core.logging import get_logger
from eventhub.core.metrics import record_slot_operation, slot_cache_decrement_retries
from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.models.event import Event
from eventhub.schemas.cache import SlotCacheEntry
from eventhub.services.cache_keys import event_slots_key

logger = get_logger(__name__)


class SlotCache:
    def __init__(self, redis: RedisClient, database: Database, settings: Settings):
        self.redis = redis
        self.database = database
        self.ttl = settings.SLOTS_CACHE_TTL
        self.verify_on_hit = settings.SLOT_READ_POLICY == "verify"
        self.decrement_attempts = settings.SLOT_DECREMENT_RETRIES
        self.decrement_backoff = settings.SLOT_DECREMENT_BACKOFF
        self._pending_invalidations: set[int] = set()

    async def get_entry(self, event_id: int) -> Optional[SlotCacheEntry]:
        """Raw cache read. Unparseable entries count as absent. Raises RedisError."""
        raw = await self.redis.client.get(event_slots_key(event_id))
        if raw is None:
            return None
        try:
            return SlotCacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("slot_cache_entry_corrupt", event_id=event_id, raw=raw)
            return None

    async def set_entry(self, event_id: int, entry: SlotCacheEntry) -> None:
        """Write an entry with the standard TTL. Raises RedisError."""
        await self.redis.client.setex(event_slots_key(event_id), self.ttl, entry.model_dump_json())

    async def invalidate(self, event_id: int) -> bool:
        """Delete the entry so the next read recomputes it. Returns False if Redis refused."""
        if not self.redis.is_configured:
            return False
        try:
            await self.redis.client.delete(event_slots_key(event_id))
        except RedisError as e:
            logger.error("slot_cache_invalidate_failed", event_id=event_id, error=str(e))
            self.redis.handle_error(e)
            return False
        logger.info("slot_cache_invalidated", event_id=event_id)
        return True

    async def load_from_db(self, event_id: int) -> Optional[SlotCacheEntry]:
        """Authoritative counts for one event, or None when the event does not exist."""
        async with self.database.session() as session:
            result = await session.execute(
                select(Event.max_slots, Event.registered_slots).where(Event.id == event_id)
            )
            row = result.one_or_none()
        if row is None:
            return None
        return SlotCacheEntry.from_counts(row.max_slots, row.registered_slots)

    async def get_available_slots(
        self, event_id: int, verify: Optional[bool] = None
    ) -> Optional[SlotCacheEntry]:
        """Return {available, total} for an event, or None if the event does not exist."""
        verify = self.verify_on_hit if verify is None else verify
        cache_usable = await self.redis.available() and await self._flush_pending_invalidations()
        cached = None

        if cache_usable:
            try:
                cached = await self.get_entry(event_id)
            except RedisError as e:
                logger.warning("slot_cache_read_failed", event_id=event_id, error=str(e))
                record_slot_operation("read", "error")
                self.redis.handle_error(e)
                cache_usable = False

        if cached is not None and not verify:
            record_slot_operation("read", "hit")
            return cached

        truth = await self.load_from_db(event_id)

        if truth is None:
            if cached is not None:
                await self.invalidate(event_id)
            return None

        if cached is not None:
            if cached == truth:
                record_slot_operation("read", "hit")
                return cached
            logger.warning(
                "slot_cache_mismatch",
                event_id=event_id,
                cached=cached.model_dump(),
                actual=truth.model_dump(),
            )
            record_slot_operation("read", "corrected")
        else:
            record_slot_operation("read", "miss")

        if cache_usable:
            try:
                await self.set_entry(event_id, truth)
            except RedisError as e:
                logger.warning("slot_cache_write_failed", event_id=event_id, error=str(e))
                self.redis.handle_error(e)

        return truth

    async def _flush_pending_invalidations(self) -> bool:
        """Delete entries whose decrement never reached Redis. False if Redis is still unreachable."""
        if not self._pending_invalidations:
            return True
        event_ids = sorted(self._pending_invalidations)
        try:
            await self.redis.client.delete(*(event_slots_key(i) for i in event_ids))
        except RedisError as e:
            logger.warning("slot_cache_deferred_invalidation_failed", event_ids=event_ids, error=str(e))
            self.redis.handle_error(e)
            return False
        self._pending_invalidations.difference_update(event_ids)
        logger.info("slot_cache_deferred_invalidation", event_ids=event_ids)
        return True

    def _defer_invalidation(self, event_id: int) -> None:
        self._pending_invalidations.add(event_id)
        record_slot_operation("decrement", "deferred")
        logger.warning("slot_decrement_deferred", event_id=event_id, reason="redis_unreachable")

    async def _decrement(self, event_id: int) -> str:
        key = event_slots_key(event_id)
        async with self.redis.client.pipeline(transaction=True) as pipe:
            await pipe.watch(key)
            raw = await pipe.get(key)
            if raw is None:
                return "absent"
            try:
                entry = SlotCacheEntry.model_validate_json(raw)
            except ValidationError:
                # Garbage is worse than a miss
                await self.redis.client.delete(key)
                return "invalidated"
            if entry.available <= 0:
                return "noop"
            pipe.multi()
            pipe.setex(
                key,
                self.ttl,
                SlotCacheEntry(available=entry.available - 1, total=entry.total).model_dump_json(),
            )
            # WatchError here means another writer touched the key; retried by caller
            await pipe.execute()
            return "ok"

    async def on_registration_committed(self, event_id: int) -> None:
        """Reflect one committed registration in the cache. Never raises for cache failures."""
        if not self.redis.is_configured:
            return

        # Attempted even inside the client's reconnect backoff: Redis may already be back
        if not await self._flush_pending_invalidations():
            self._defer_invalidation(event_id)
            return

        for attempt in range(self.decrement_attempts):
            try:
                outcome = await self._decrement(event_id)
            except RedisError as e:
                logger.warning(
                    "slot_decrement_failed",
                    event_id=event_id,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if self.redis.is_connection_error(e):
                    # Retrying an unreachable server only delays the response
                    self.redis.handle_error(e)
                    self._defer_invalidation(event_id)
                    return
                if attempt + 1 < self.decrement_attempts:
                    slot_cache_decrement_retries.inc()
                    await asyncio.sleep(self.decrement_backoff * (2 ** attempt))
                continue

            record_slot_operation("decrement", outcome)
            logger.debug("slot_decrement", event_id=event_id, outcome=outcome, attempt=attempt + 1)
            return

        logger.error(
            "slot_decrement_exhausted",
            event_id=event_id,
            attempts=self.decrement_attempts,
        )
        if await self.invalidate(event_id):
            record_slot_operation("decrement", "invalidated")
        else:
            self._defer_invalidation(event_id)
