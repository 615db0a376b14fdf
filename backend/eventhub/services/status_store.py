"""
Status records and the manual-reinitialization flag, kept in Redis so any
instance can report on work another instance is doing.

Writes are best-effort: a status that fails to persist is logged and the
job carries on.
"""

from typing import Optional

from redis.exceptions import RedisError

from eventhub.core.config import Settings
from eventhub.core.logging import get_logger
from eventhub.infrastructure.redis_client import RedisClient
from eventhub.schemas.cache import StatusRecord
from eventhub.services import cache_keys

logger = get_logger(__name__)


class StatusStore:
    def __init__(self, redis: RedisClient, settings: Settings):
        self.redis = redis
        self.settings = settings

    def _ttl_for(self, key: str, record: StatusRecord) -> Optional[int]:
        if record.status == "completed":
            return self.settings.STATUS_TERMINAL_TTL
        if key == cache_keys.REINITIALIZATION_STATUS:
            # Reinitialization keeps in-flight progress until it finishes
            return self.settings.STATUS_TERMINAL_TTL if record.status == "failed" else None
        return self.settings.STATUS_RUNNING_TTL

    async def write(self, key: str, record: StatusRecord) -> None:
        if not await self.redis.available():
            return
        ttl = self._ttl_for(key, record)
        try:
            if ttl:
                await self.redis.client.setex(key, ttl, record.to_json())
            else:
                await self.redis.client.set(key, record.to_json())
        except RedisError as e:
            logger.warning("status_write_failed", key=key, status=record.status, error=str(e))

    async def read(self, key: str) -> Optional[StatusRecord]:
        """Return the stored record, or None when absent. Raises RedisError on store failure."""
        raw = await self.redis.client.get(key)
        if raw is None:
            return None
        return StatusRecord.model_validate_json(raw)

    async def set_manual_flag(self) -> None:
        await self.redis.client.setex(
            cache_keys.MANUAL_REINITIALIZATION_FLAG,
            self.settings.MANUAL_REINIT_FLAG_TTL,
            "1",
        )

    async def clear_manual_flag(self) -> None:
        try:
            await self.redis.client.delete(cache_keys.MANUAL_REINITIALIZATION_FLAG)
        except RedisError as e:
            # The flag TTL still bounds how long reconciliation stays paused
            logger.warning("manual_flag_clear_failed", error=str(e))

    async def manual_flag_set(self) -> bool:
        return bool(await self.redis.client.exists(cache_keys.MANUAL_REINITIALIZATION_FLAG))
