"""
Wiring and lifecycle for the slot cache subsystem.

The coordinator builds the slot cache, populator, reconciler and leader
election around one RedisClient/Database pair, runs the startup population
and the reconciliation loop as background tasks, and backs the operator
endpoints (manual reinitialization, status polling, key inspection).
"""

import asyncio
import json
from typing import Any, Coroutine, Optional

import structlog
from fastapi import HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from eventhub.core.config import Settings
from eventhub.core.logging import get_logger
from eventhub.db.session import Database
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.schemas.cache import CacheKeyValue, CacheKeysResponse, ReinitializationAccepted, StatusRecord
from eventhub.services import cache_keys
from eventhub.services.cache_population import CachePopulator
from eventhub.services.leader_election import LeaderElection, LeadershipResult
from eventhub.services.reconciler import ConsistencyReconciler
from eventhub.services.slot_cache import SlotCache
from eventhub.services.status_store import StatusStore

logger = get_logger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0


class CacheCoordinator:
    def __init__(self, redis: RedisClient, database: Database, settings: Settings):
        self.redis = redis
        self.database = database
        self.settings = settings

        self.leader = LeaderElection(redis, settings.INSTANCE_ID)
        self.status_store = StatusStore(redis, settings)
        self.slot_cache = SlotCache(redis, database, settings)
        self.populator = CachePopulator(redis, database, self.status_store, settings)
        self.reconciler = ConsistencyReconciler(redis, database, self.status_store, self.leader, settings)

        self._stop = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self._reinitialization: Optional[asyncio.Task] = None

    @property
    def instance_id(self) -> str:
        return self.leader.instance_id

    async def _as_job(self, coro: Coroutine[Any, Any, Any], name: str) -> Any:
        # Tasks run in a copy of the spawning context; replace request context with job context
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(job=name, instance_id=self.instance_id)
        return await coro

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(self._as_job(coro, name), name=name)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("background_task_failed", task=name, error=repr(t.exception()))

        task.add_done_callback(_done)
        return task

    # Lifecycle

    async def populate_on_startup(self) -> LeadershipResult:
        """
        Leader-elected full population; only one instance in the fleet does the work.
        Store failures are logged and re-raised; the lock is already released.
        """
        try:
            return await self.leader.run(
                cache_keys.INITIALIZATION_LOCK,
                self.settings.POPULATION_LOCK_TTL,
                lambda: self.populator.populate_all(stop=self._stop),
            )
        except (RedisError, SQLAlchemyError) as e:
            logger.error("startup_population_failed", error=str(e))
            raise

    def start(self) -> None:
        self._stop.clear()
        if self.settings.POPULATE_ON_STARTUP:
            self._spawn(self.populate_on_startup(), "cache-population")
        if self.settings.RECONCILE_ENABLED:
            self._spawn(self.reconciler.run_forever(self._stop), "cache-reconciler")
        logger.info("cache_coordinator_started", instance_id=self.instance_id)

    async def stop(self) -> None:
        self._stop.set()
        tasks = list(self._tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("cache_coordinator_stopped", instance_id=self.instance_id)

    # Operator surface

    async def _require_redis(self) -> None:
        if not await self.redis.available():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Redis not available",
            )

    async def trigger_manual_reinitialization(self) -> ReinitializationAccepted:
        """Flag a manual rebuild and start it in the background. Returns immediately."""
        await self._require_redis()

        if self._reinitialization is not None and not self._reinitialization.done():
            return ReinitializationAccepted(
                message="Cache reinitialization already in progress",
                instance_id=self.instance_id,
            )

        try:
            await self.status_store.set_manual_flag()
        except RedisError as e:
            self.redis.handle_error(e)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Could not start reinitialization: {e}",
            )

        self._reinitialization = self._spawn(
            self.populator.populate_with_progress(self.instance_id, stop=self._stop),
            "cache-reinitialization",
        )
        logger.info("cache_reinitialization_triggered", instance_id=self.instance_id)
        return ReinitializationAccepted(
            message="Cache reinitialization started",
            instance_id=self.instance_id,
        )

    async def _read_status(self, key: str) -> Optional[StatusRecord]:
        await self._require_redis()
        try:
            return await self.status_store.read(key)
        except RedisError as e:
            self.redis.handle_error(e)
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    async def get_reinitialization_status(self) -> Optional[StatusRecord]:
        return await self._read_status(cache_keys.REINITIALIZATION_STATUS)

    async def get_consistency_status(self) -> Optional[StatusRecord]:
        return await self._read_status(cache_keys.CONSISTENCY_STATUS)

    async def run_consistency_check(self) -> dict:
        """Run one leader-elected reconciliation now and return its summary."""
        await self._require_redis()
        outcome = await self.reconciler.run_once(self._stop)
        if not outcome.acquired:
            return {"skipped": "consistency lock held by another instance"}
        if outcome.result is None:
            return {"skipped": "reconciliation suppressed"}
        return outcome.result.model_dump(by_alias=True, mode="json")

    # Introspection

    @staticmethod
    def _decode(value: Optional[str]) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except ValueError:
            return value

    async def list_slot_keys(self) -> CacheKeysResponse:
        await self._require_redis()
        client = self.redis.client
        keys = sorted([key async for key in client.scan_iter(match=cache_keys.EVENT_SLOTS_PATTERN, count=100)])
        if not keys:
            return CacheKeysResponse(count=0, keys=[])

        async with client.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.get(key)
                pipe.ttl(key)
            raw = await pipe.execute()

        entries = [
            CacheKeyValue(key=key, value=self._decode(raw[i * 2]), ttl=raw[i * 2 + 1])
            for i, key in enumerate(keys)
        ]
        return CacheKeysResponse(count=len(entries), keys=entries)

    async def get_key(self, key: str) -> Optional[CacheKeyValue]:
        await self._require_redis()
        value = await self.redis.client.get(key)
        if value is None:
            return None
        ttl = await self.redis.client.ttl(key)
        return CacheKeyValue(key=key, value=self._decode(value), ttl=ttl)

    async def stats(self) -> dict:
        """Selected Redis INFO fields for monitoring."""
        if not await self.redis.available():
            return {"status": "unavailable"}
        try:
            info = await self.redis.client.info()
        except RedisError as e:
            return {"status": "error", "error": str(e)}

        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "uptime_in_seconds": info.get("uptime_in_seconds"),
            "connected_clients": info.get("connected_clients"),
            "used_memory_human": info.get("used_memory_human"),
            "total_connections_received": info.get("total_connections_received"),
            "total_commands_processed": info.get("total_commands_processed"),
            "keyspace_hits": hits,
            "keyspace_misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
