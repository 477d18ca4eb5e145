"""
Realtime order update notifier.

Publishes ``{orderId, status, message}`` events to the ``order-<id>`` topic.
The realtime gateway that owns client subscriptions relays them to browsers.
Emission happens after commit and never fails the operation that caused it.
"""

import json
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from redis.exceptions import RedisError

from ordering.cache.redis_client import CacheKeyManager, RedisClient, get_redis_client
from ordering.core.logging import get_logger
from ordering.services.orders.enums import OrderStatus

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderUpdate:
    """A status change worth telling subscribers about."""

    order_id: str
    status: OrderStatus
    message: str

    def to_payload(self) -> dict[str, str]:
        return {
            "orderId": self.order_id,
            "status": self.status.value,
            "message": self.message,
        }


class OrderNotifier(Protocol):
    """Anything that can broadcast an order update."""

    async def emit(self, update: OrderUpdate) -> None:
        ...


class RedisOrderNotifier:
    """Publishes order updates on Redis pub/sub channels."""

    def __init__(
        self,
        client_provider: Callable[[], Awaitable[RedisClient]] = get_redis_client,
        key_manager: Optional[CacheKeyManager] = None,
    ):
        self._client_provider = client_provider
        self._keys = key_manager or CacheKeyManager()

    async def emit(self, update: OrderUpdate) -> None:
        channel = self._keys.order_channel(update.order_id)
        try:
            client = await self._client_provider()
            receivers = await client.publish(channel, json.dumps(update.to_payload()))
        except (RedisError, OSError) as e:
            logger.error(
                "Failed to publish order update",
                order_id=update.order_id,
                status=update.status.value,
                channel=channel,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.info(
            "Order update published",
            order_id=update.order_id,
            status=update.status.value,
            channel=channel,
            receivers=receivers,
        )


class LoggingOrderNotifier:
    """Used when no Redis is configured; updates are only logged."""

    async def emit(self, update: OrderUpdate) -> None:
        logger.info(
            "Order update (no realtime transport configured)",
            order_id=update.order_id,
            status=update.status.value,
            message=update.message,
        )
