"""
Redis client configuration with connection pooling and async support.

Redis backs two concerns of the ordering core: short-lived webhook event
markers (idempotency) and the pub/sub channels the realtime gateway relays
to connected storefront clients.
"""

from typing import Optional, Union

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from ordering.core.config import get_settings
from ordering.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


class RedisClient:
    """
    Async Redis client with connection pooling and retry logic.

    Provides the small set of operations the ordering core needs with
    connection management and structured error logging.
    """

    def __init__(
        self,
        url: str,
        max_connections: Optional[int] = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        health_check_interval: int = 30,
    ):
        """
        Initialize Redis client settings; no connection is made yet.

        Args:
            url: Redis connection URL
            max_connections: Maximum pool connections (defaults to settings)
            socket_timeout: Socket operation timeout in seconds
            socket_connect_timeout: Socket connection timeout in seconds
            health_check_interval: Health check interval in seconds
        """
        self._url = url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Remove credentials from a Redis URL for logging."""
        if "@" in url:
            protocol, rest = url.split("://", 1)
            if "@" in rest:
                _, host_part = rest.split("@", 1)
                return f"{protocol}://***@{host_part}"
        return url

    async def connect(self) -> None:
        """
        Establish Redis connection with retry logic.

        Raises:
            ConnectionError: If connection cannot be established
        """
        if self._is_connected:
            return

        try:
            retry = Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3)

            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                health_check_interval=self._health_check_interval,
                retry=retry,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connection established",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
            )

        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self._release()
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def disconnect(self) -> None:
        """Close the connection pool and release resources."""
        if not self._is_connected:
            return

        await self._release()
        logger.info("Redis connection closed")

    async def _release(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
        self._is_connected = False

    async def health_check(self) -> bool:
        """
        Ping Redis.

        Returns:
            True if Redis is healthy and responsive, False otherwise
        """
        if not self._is_connected or not self._client:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.error(
                "Redis health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _ensure_connected(self) -> Redis:
        """
        Return the live client.

        Raises:
            ConnectionError: If client is not connected
        """
        if not self._is_connected or self._client is None:
            raise ConnectionError("Redis client is not connected")
        return self._client

    async def set(
        self,
        key: str,
        value: Union[str, int, float],
        ex: Optional[int] = None,
        nx: bool = False,
    ) -> bool:
        """
        Set value in Redis with optional expiration.

        Args:
            key: Cache key
            value: Value to store
            ex: Expiration time in seconds
            nx: Only set if key doesn't exist

        Returns:
            True if the key was written

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        client = self._ensure_connected()

        try:
            result = await client.set(key, value, ex=ex, nx=nx)
            logger.debug("Redis SET operation", key=key, ex=ex, nx=nx, success=bool(result))
            return bool(result)
        except RedisError as e:
            logger.error("Redis SET operation failed", key=key, error=str(e))
            raise

    async def delete(self, *keys: str) -> int:
        """
        Delete one or more keys.

        Returns:
            Number of keys deleted
        """
        client = self._ensure_connected()

        try:
            return await client.delete(*keys)
        except RedisError as e:
            logger.error("Redis DELETE operation failed", keys=keys, error=str(e))
            raise

    async def exists(self, *keys: str) -> int:
        """
        Check if keys exist.

        Returns:
            Number of existing keys
        """
        client = self._ensure_connected()

        try:
            return await client.exists(*keys)
        except RedisError as e:
            logger.error("Redis EXISTS operation failed", keys=keys, error=str(e))
            raise

    async def publish(self, channel: str, message: str) -> int:
        """
        Publish a message on a pub/sub channel.

        Returns:
            Number of subscribers that received the message
        """
        client = self._ensure_connected()

        try:
            receivers = await client.publish(channel, message)
            logger.debug("Redis PUBLISH operation", channel=channel, receivers=receivers)
            return receivers
        except RedisError as e:
            logger.error("Redis PUBLISH operation failed", channel=channel, error=str(e))
            raise


class CacheKeyManager:
    """
    Utility class for building namespaced keys and channels.

    Example:
        >>> manager = CacheKeyManager("ordering")
        >>> manager.webhook_event_key("evt_123")
        'ordering:stripe:event:evt_123'
    """

    def __init__(self, namespace: Optional[str] = None):
        self.namespace = namespace or settings.cache_namespace

    def make_key(self, *parts: Union[str, int]) -> str:
        """Join non-empty parts under the namespace."""
        key_parts = [str(part) for part in parts if part != "" and part is not None]
        return ":".join([self.namespace] + key_parts)

    def webhook_event_key(self, event_id: str) -> str:
        """Key marking a gateway event as processed."""
        return self.make_key("stripe", "event", event_id)

    def webhook_claim_key(self, event_id: str) -> str:
        """Key held while a gateway event is being processed."""
        return self.make_key("stripe", "event", event_id, "claim")

    def order_channel(self, order_id: Union[str, int]) -> str:
        """Pub/sub channel for one order's realtime updates.

        Not namespaced: the realtime gateway relays ``order-<id>`` topics as is.
        """
        return f"order-{order_id}"


_redis_client: Optional[RedisClient] = None


async def get_redis_client() -> RedisClient:
    """
    Get or create the global Redis client.

    Raises:
        ConnectionError: If Redis is not configured or cannot be reached
    """
    global _redis_client

    if settings.redis_url is None:
        raise ConnectionError("Redis URL is not configured")

    if _redis_client is None:
        _redis_client = RedisClient(settings.redis_url)

    if not _redis_client.is_connected:
        await _redis_client.connect()

    return _redis_client


async def close_redis_client() -> None:
    """Close the global Redis client connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
