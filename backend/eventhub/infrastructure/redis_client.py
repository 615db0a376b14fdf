"""
Redis client for the slot cache and leader-election locks.
Separated from business logic for clean architecture.

The client is an explicitly constructed object with an open/close
lifecycle. Components receive it by injection and ask `available()`
before touching Redis; a failed operation may call `mark_unavailable()`
so later callers skip straight to their fallback until a reconnect attempt succeeds.
"""

import time
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from eventhub.core.config import Settings
from eventhub.core.logging import get_logger
from eventhub.core.metrics import redis_available, redis_connection_errors

logger = get_logger(__name__)


class RedisClient:
    """Redis connection with readiness tracking and backoff re-probing."""

    def __init__(
        self,
        url: str,
        *,
        enabled: bool = True,
        connect_timeout: float = 10.0,
        socket_timeout: float = 5.0,
        reconnect_base_delay: float = 0.1,
        reconnect_max_delay: float = 30.0,
        client: Optional[redis.Redis] = None,
    ):
        self.url = url
        self.enabled = enabled
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay

        self._client = client
        self._ready = False
        self._failures = 0
        self._next_attempt_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisClient":
        return cls(
            settings.REDIS_URL,
            enabled=settings.REDIS_ENABLED,
            connect_timeout=settings.REDIS_CONNECT_TIMEOUT,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            reconnect_base_delay=settings.REDIS_RECONNECT_BASE_DELAY,
            reconnect_max_delay=settings.REDIS_RECONNECT_MAX_DELAY,
        )

    @classmethod
    def from_client(cls, client: redis.Redis, **kwargs) -> "RedisClient":
        """Wrap an existing client (e.g. a fake in tests)."""
        return cls("injected://", client=client, **kwargs)

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client is not open")
        return self._client

    @property
    def is_configured(self) -> bool:
        return self.enabled and self._client is not None

    @property
    def is_ready(self) -> bool:
        return self.enabled and self._ready and self._client is not None

    def _create_client(self) -> redis.Redis:
        # Commands fail fast; reconnection is paced by mark_unavailable/available
        return redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.connect_timeout,
            socket_timeout=self.socket_timeout,
            retry=Retry(NoBackoff(), 0),
            health_check_interval=30,
        )

    async def open(self) -> bool:
        """Connect and ping. Returns readiness; never raises for an unreachable server."""
        if not self.enabled:
            logger.warning("redis_disabled", message="Running without cache")
            redis_available.set(0)
            return False

        if self._client is None:
            self._client = self._create_client()

        return await self._try_reconnect()

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning("redis_close_failed", error=str(e))
            self._client = None
        self._ready = False
        redis_available.set(0)
        logger.info("redis_closed")

    async def _try_reconnect(self) -> bool:
        try:
            await self.client.ping()
        except RedisError as e:
            self.mark_unavailable(e)
            return False

        if not self._ready:
            logger.info("redis_connected", url=self.url)
        self._ready = True
        self._failures = 0
        self._next_attempt_at = 0.0
        redis_available.set(1)
        return True

    def mark_unavailable(self, error: Optional[BaseException] = None) -> None:
        """Flag the connection as down and schedule the next reconnect attempt with capped backoff."""
        self._ready = False
        self._failures += 1
        delay = min(self.reconnect_base_delay * (2 ** self._failures), self.reconnect_max_delay)
        self._next_attempt_at = time.monotonic() + delay
        redis_connection_errors.inc()
        redis_available.set(0)
        logger.error(
            "redis_unavailable",
            error=str(error) if error else None,
            failures=self._failures,
            retry_in=round(delay, 2),
        )

    @staticmethod
    def is_connection_error(error: BaseException) -> bool:
        return isinstance(error, (ConnectionError, TimeoutError))

    def handle_error(self, error: RedisError) -> None:
        """Connection-level failures take the client offline; command errors do not."""
        if self.is_connection_error(error):
            self.mark_unavailable(error)

    async def available(self) -> bool:
        """True when Redis can be used now; retries a down connection once its backoff elapses."""
        if not self.enabled or self._client is None:
            return False
        if self._ready:
            return True
        if time.monotonic() < self._next_attempt_at:
            return False
        return await self._try_reconnect()

    async def ping(self) -> bool:
        """Readiness check used by the health endpoint. Raises on failure."""
        await self.client.ping()
        return True
