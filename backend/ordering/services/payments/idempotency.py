"""
Idempotency markers for payment gateway webhook events.

A processed event leaves a marker keyed by its gateway event ID for a limited
time; a short-lived claim marker is held while an event is being processed so
that concurrent deliveries of the same event are applied once.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Protocol

from redis.exceptions import RedisError

from ordering.cache.redis_client import CacheKeyManager, RedisClient, get_redis_client
from ordering.core.logging import get_logger

logger = get_logger(__name__)


class IdempotencyGuard(Protocol):
    """Marker store keyed by gateway event ID."""

    async def seen(self, event_id: str) -> bool:
        ...

    async def claim(self, event_id: str, ttl: int) -> bool:
        ...

    async def mark(self, event_id: str, ttl: int) -> None:
        ...

    async def release(self, event_id: str) -> None:
        ...


class RedisIdempotencyGuard:
    """
    Redis-backed guard.

    When Redis is unreachable the guard answers "not seen" and grants claims,
    logging a warning; order transitions applied twice are no-ops anyway.
    """

    def __init__(
        self,
        client_provider: Callable[[], Awaitable[RedisClient]] = get_redis_client,
        key_manager: Optional[CacheKeyManager] = None,
    ):
        self._client_provider = client_provider
        self._keys = key_manager or CacheKeyManager()

    async def seen(self, event_id: str) -> bool:
        try:
            client = await self._client_provider()
            return await client.exists(self._keys.webhook_event_key(event_id)) > 0
        except (RedisError, OSError) as e:
            self._log_outage("seen", event_id, e)
            return False

    async def claim(self, event_id: str, ttl: int) -> bool:
        try:
            client = await self._client_provider()
            return await client.set(
                self._keys.webhook_claim_key(event_id), "1", ex=ttl, nx=True
            )
        except (RedisError, OSError) as e:
            self._log_outage("claim", event_id, e)
            return True

    async def mark(self, event_id: str, ttl: int) -> None:
        try:
            client = await self._client_provider()
            await client.set(self._keys.webhook_event_key(event_id), "1", ex=ttl)
            await client.delete(self._keys.webhook_claim_key(event_id))
        except (RedisError, OSError) as e:
            self._log_outage("mark", event_id, e)

    async def release(self, event_id: str) -> None:
        try:
            client = await self._client_provider()
            await client.delete(self._keys.webhook_claim_key(event_id))
        except (RedisError, OSError) as e:
            self._log_outage("release", event_id, e)

    @staticmethod
    def _log_outage(operation: str, event_id: str, error: Exception) -> None:
        logger.warning(
            "Idempotency store unavailable",
            operation=operation,
            event_id=event_id,
            error=str(error),
            error_type=type(error).__name__,
        )


class InMemoryIdempotencyGuard:
    """Process-local guard for single-instance deployments without Redis and for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._markers: dict[str, float] = {}
        self._claims: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _alive(self, store: dict[str, float], event_id: str) -> bool:
        expires_at = store.get(event_id)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del store[event_id]
            return False
        return True

    async def seen(self, event_id: str) -> bool:
        async with self._lock:
            return self._alive(self._markers, event_id)

    async def claim(self, event_id: str, ttl: int) -> bool:
        async with self._lock:
            if self._alive(self._claims, event_id):
                return False
            self._claims[event_id] = self._clock() + ttl
            return True

    async def mark(self, event_id: str, ttl: int) -> None:
        async with self._lock:
            self._markers[event_id] = self._clock() + ttl
            self._claims.pop(event_id, None)

    async def release(self, event_id: str) -> None:
        async with self._lock:
            self._claims.pop(event_id, None)
