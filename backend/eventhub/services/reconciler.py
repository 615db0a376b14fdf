"""
Periodic reconciliation of the slot cache against the events table.

Each cycle (gated by the cache:consistency:lock leader election):
  1. Skip if Redis is down or a manual reinitialization is in flight
  2. Snapshot id/max_slots/registered_slots inside one transaction; a failed
     read aborts only this cycle and is recorded as `failed`
  3. Check events in batches, concurrently within a batch; every event is
     settled independently so one failure never aborts its siblings
       - no entry          -> create it            (fixed)
       - entry disagrees   -> overwrite, retrying  (fixed)
       - overwrite failing -> delete the entry     (error)
       - entry matches     ->                      (consistent)
       - Redis unreachable ->                      (unavailable)
  4. Publish progress after every batch and a terminal record at the end

Leadership is re-contested every interval, so the job migrates to another
instance if this one stops renewing.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from eventhub.core.config import Settings
from eventhub.core.logging import get_logger
from eventhub.core.metrics import reconcile_duration, record_reconcile_outcome
from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.models.event import Event
from eventhub.schemas.cache import SlotCacheEntry, StatusRecord, utcnow
from eventhub.services import cache_keys
from eventhub.services.leader_election import LeaderElection, LeadershipResult
from eventhub.services.status_store import StatusStore

logger = get_logger(__name__)

CONSISTENT = "consistent"
FIXED = "fixed"
ERROR = "error"
UNAVAILABLE = "unavailable"


@dataclass
class EventCheck:
    event_id: int
    outcome: str
    message: Optional[str] = None


class ConsistencyReconciler:
    def __init__(
        self,
        redis: RedisClient,
        database: Database,
        status_store: StatusStore,
        leader: LeaderElection,
        settings: Settings,
    ):
        self.redis = redis
        self.database = database
        self.status_store = status_store
        self.leader = leader
        self.ttl = settings.SLOTS_CACHE_TTL
        self.interval = settings.RECONCILE_INTERVAL
        self.lock_ttl = settings.RECONCILE_LOCK_TTL
        self.batch_size = settings.RECONCILE_BATCH_SIZE
        self.batch_delay = settings.RECONCILE_BATCH_DELAY
        self.fix_retries = settings.RECONCILE_FIX_RETRIES
        self.fix_backoff = settings.RECONCILE_FIX_BACKOFF

    async def _snapshot(self) -> list:
        async with self.database.session() as session:
            async with session.begin():
                result = await session.execute(
                    select(Event.id, Event.max_slots, Event.registered_slots).order_by(Event.id)
                )
                return list(result.all())

    async def _overwrite(self, key: str, truth: SlotCacheEntry) -> bool:
        payload = truth.model_dump_json()
        for attempt in range(self.fix_retries + 1):
            try:
                await self.redis.client.setex(key, self.ttl, payload)
                return True
            except RedisError as e:
                logger.warning("reconcile_fix_failed", key=key, attempt=attempt + 1, error=str(e))
                if attempt < self.fix_retries:
                    await asyncio.sleep(self.fix_backoff * (2 ** attempt))
        return False

    async def verify_event(self, row) -> EventCheck:
        """Compare one event's cache entry with its database row and repair it."""
        key = cache_keys.event_slots_key(row.id)
        truth = SlotCacheEntry.from_counts(row.max_slots, row.registered_slots)

        try:
            raw = await self.redis.client.get(key)
        except RedisError as e:
            self.redis.handle_error(e)
            return EventCheck(row.id, UNAVAILABLE, str(e))

        if raw is None:
            try:
                await self.redis.client.setex(key, self.ttl, truth.model_dump_json())
            except RedisError as e:
                return EventCheck(row.id, ERROR, f"could not create entry: {e}")
            return EventCheck(row.id, FIXED, "cache created")

        try:
            cached = SlotCacheEntry.model_validate_json(raw)
        except ValidationError:
            cached = None

        if cached == truth:
            return EventCheck(row.id, CONSISTENT)

        logger.info(
            "reconcile_mismatch",
            event_id=row.id,
            cached=cached.model_dump() if cached else raw,
            actual=truth.model_dump(),
        )
        if await self._overwrite(key, truth):
            return EventCheck(row.id, FIXED, "cache updated")

        try:
            await self.redis.client.delete(key)
        except RedisError as e:
            return EventCheck(row.id, ERROR, f"fix and invalidation failed: {e}")
        return EventCheck(row.id, ERROR, "fix failed, entry invalidated")

    def _tally(self, record: StatusRecord, batch: list, results: list) -> None:
        for row, result in zip(batch, results):
            if isinstance(result, BaseException):
                record.errors += 1
                logger.error("reconcile_event_crashed", event_id=row.id, error=repr(result))
                continue
            if result.outcome == CONSISTENT:
                record.consistent += 1
            elif result.outcome == FIXED:
                record.fixed += 1
            elif result.outcome == UNAVAILABLE:
                record.unavailable += 1
            else:
                record.errors += 1
                logger.error("reconcile_event_error", event_id=row.id, message=result.message)

    async def reconcile(self, stop: Optional[asyncio.Event] = None) -> Optional[StatusRecord]:
        """
        Run one reconciliation cycle. Returns the terminal StatusRecord,
        or None when the cycle was skipped.
        """
        if not await self.redis.available():
            logger.info("reconcile_skipped", reason="redis_unavailable")
            return None

        try:
            if await self.status_store.manual_flag_set():
                logger.info("reconcile_skipped", reason="manual_reinitialization")
                return None
        except RedisError as e:
            self.redis.handle_error(e)
            logger.warning("reconcile_skipped", reason="flag_check_failed", error=str(e))
            return None

        started = time.perf_counter()
        record = StatusRecord(status="running", instance_id=self.leader.instance_id)
        await self.status_store.write(cache_keys.CONSISTENCY_STATUS, record)

        try:
            events = await self._snapshot()
        except SQLAlchemyError as e:
            logger.error("reconcile_snapshot_failed", error=str(e))
            record.status = "failed"
            record.error = str(e)
            record.completion_time = utcnow()
            await self.status_store.write(cache_keys.CONSISTENCY_STATUS, record)
            return record

        record.total_events = len(events)
        cancelled = False

        for i in range(0, len(events), self.batch_size):
            if stop is not None and stop.is_set():
                logger.warning("reconcile_cancelled", completed_events=record.completed_events)
                cancelled = True
                break

            batch = events[i:i + self.batch_size]
            results = await asyncio.gather(
                *(self.verify_event(row) for row in batch),
                return_exceptions=True,
            )
            self._tally(record, batch, results)

            record.completed_events += len(batch)
            record.percent_complete = round(record.completed_events / len(events) * 100, 1)
            await self.status_store.write(cache_keys.CONSISTENCY_STATUS, record)

            if i + self.batch_size < len(events):
                await asyncio.sleep(self.batch_delay)

        if cancelled:
            record.status = "failed"
            record.error = "cancelled before completion"
        else:
            record.status = "completed"
        record.completion_time = utcnow()
        if not events:
            record.percent_complete = 100.0
        await self.status_store.write(cache_keys.CONSISTENCY_STATUS, record)

        for outcome in ("consistent", "fixed", "errors", "unavailable"):
            record_reconcile_outcome(outcome, getattr(record, outcome))
        reconcile_duration.observe(time.perf_counter() - started)

        logger.info(
            "reconcile_finished",
            status=record.status,
            total_events=record.total_events,
            consistent=record.consistent,
            fixed=record.fixed,
            errors=record.errors,
            unavailable=record.unavailable,
        )
        return record

    async def run_once(self, stop: Optional[asyncio.Event] = None) -> LeadershipResult:
        """One leader-elected cycle; a non-leader returns acquired=False."""
        return await self.leader.run(
            cache_keys.CONSISTENCY_LOCK,
            self.lock_ttl,
            lambda: self.reconcile(stop),
        )

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Contest leadership every interval until `stop` is set."""
        logger.info("reconciler_started", interval_s=self.interval, instance_id=self.leader.instance_id)
        while not stop.is_set():
            try:
                await self.run_once(stop)
            except Exception as e:
                # A crashed cycle must not end the loop; the next interval retries
                logger.exception("reconcile_cycle_crashed", error=str(e))

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("reconciler_stopped")
