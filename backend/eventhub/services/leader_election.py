"""
Leader election for singleton background work across instances.

LOCKING STRATEGY: Best-effort TTL lock
======================================

  1. SET lock_key instance_id NX EX ttl
  2. Not set -> another instance is leader; return quietly, nothing ran
  3. Set -> run the work
  4. WATCH lock_key, GET, and DEL in MULTI only while the value is still
     our instance id, so a lock that expired mid-work and was taken by
     another instance is left alone

This is deliberately not consensus. If work outlives the TTL a second
instance can become leader while the first is still running. Population
and reconciliation tolerate that overlap: both write the same formula
from the same source of truth, last write wins.
"""

import os
import socket
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError, WatchError

from eventhub.core.logging import get_logger
from eventhub.core.metrics import record_leader_attempt
from eventhub.infrastructure.redis_client import RedisClient

logger = get_logger(__name__)


def generate_instance_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class LeadershipResult:
    acquired: bool
    result: Any = None


class LeaderElection:
    def __init__(self, redis: RedisClient, instance_id: Optional[str] = None):
        self.redis = redis
        self.instance_id = instance_id or generate_instance_id()

    async def try_acquire(self, lock_key: str, ttl_seconds: int) -> bool:
        """Atomic set-if-absent with expiry. Redis errors count as 'not leader'."""
        try:
            acquired = await self.redis.client.set(lock_key, self.instance_id, nx=True, ex=ttl_seconds)
        except RedisError as e:
            record_leader_attempt(lock_key, "error")
            logger.warning("leader_lock_error", lock=lock_key, error=str(e))
            self.redis.handle_error(e)
            return False

        if not acquired:
            record_leader_attempt(lock_key, "contended")
            logger.debug("leader_lock_held_elsewhere", lock=lock_key)
            return False

        record_leader_attempt(lock_key, "acquired")
        logger.info("leader_lock_acquired", lock=lock_key, instance_id=self.instance_id, ttl=ttl_seconds)
        return True

    async def release(self, lock_key: str) -> bool:
        """Delete the lock only if this instance still holds it."""
        try:
            async with self.redis.client.pipeline(transaction=True) as pipe:
                await pipe.watch(lock_key)
                holder = await pipe.get(lock_key)
                if holder != self.instance_id:
                    logger.warning(
                        "leader_lock_not_released",
                        lock=lock_key,
                        holder=holder,
                        instance_id=self.instance_id,
                    )
                    return False
                pipe.multi()
                pipe.delete(lock_key)
                await pipe.execute()
        except WatchError:
            logger.warning("leader_lock_changed_during_release", lock=lock_key)
            return False
        except RedisError as e:
            # TTL expiry frees the lock eventually
            logger.error("leader_lock_release_failed", lock=lock_key, error=str(e))
            return False

        logger.info("leader_lock_released", lock=lock_key)
        return True

    async def holder(self, lock_key: str) -> Optional[str]:
        return await self.redis.client.get(lock_key)

    async def run(
        self,
        lock_key: str,
        ttl_seconds: int,
        work: Callable[[], Awaitable[Any]],
    ) -> LeadershipResult:
        """
        Run `work` only if this instance wins `lock_key`.

        Returns LeadershipResult(acquired=False) without running anything
        when the lock is held elsewhere. Exceptions from `work` propagate
        after the guarded release.
        """
        if not await self.redis.available():
            logger.debug("leader_election_skipped", lock=lock_key, reason="redis_unavailable")
            return LeadershipResult(acquired=False)

        if not await self.try_acquire(lock_key, ttl_seconds):
            return LeadershipResult(acquired=False)

        try:
            result = await work()
        except Exception as e:
            logger.error("leader_work_failed", lock=lock_key, error=str(e))
            raise
        finally:
            await self.release(lock_key)

        return LeadershipResult(acquired=True, result=result)
