"""
Order service orchestrating checkout and the order lifecycle.

This module implements the OrderService class: pricing and persisting new
orders as one transaction (including the payment intent for online
payments), degraded-mode checkout when the database is unreachable, admin
status changes and cancellation, and order lookups. Realtime updates are
emitted only after the corresponding transaction has committed.
"""

import secrets
import time
import uuid
from typing import AsyncContextManager, Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ordering.core.config import Settings, get_settings
from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger, log_performance
from ordering.core.security import Principal
from ordering.database.connection import StorageUnavailableError, session_scope
from ordering.database.models.order import Order, OrderLine, OrderLineOption
from ordering.schemas.orders import CheckoutRequest
from ordering.services.notifications.notifier import OrderNotifier, OrderUpdate
from ordering.services.orders.catalog import SqlCatalogReader
from ordering.services.orders.enums import OrderStatus, PaymentMethod, PaymentStatus
from ordering.services.orders.fallback import (
    CheckoutResult,
    DurableOrder,
    build_provisional_order,
)
from ordering.services.orders.pricing import PricingResolver, PricingResult
from ordering.services.orders.repository import OrderRepository
from ordering.services.orders.state_machine import OrderStateMachine
from ordering.services.payments.service import PaymentIntentHandle, PaymentService

logger = get_logger(__name__)

SessionScope = Callable[[], AsyncContextManager[AsyncSession]]

ORDER_PLACED = "Order placed successfully"


class OrderPersistenceFailedError(OrderingError):
    """Raised when the order could not be written for a non-connectivity reason."""

    code = "ORDER_PERSISTENCE_FAILED"
    status_code = 500


def generate_order_number(prefix: str) -> str:
    """
    Generate a human-readable order number.

    Returns:
        Prefix, last 8 digits of the epoch-millisecond clock and 3 random digits
    """
    millis = str(int(time.time() * 1000))[-8:]
    return f"{prefix}{millis}{secrets.randbelow(1000):03d}"


class OrderService:
    """
    Order service orchestrating checkout and lifecycle operations.

    Each operation opens its own session scope; nothing is shared between
    requests.

    Attributes:
        payment_service: Payment bridge used for intents
        notifier: Realtime order update publisher
        pricing: Authoritative cart pricing
        state_machine: Status transition rules
    """

    def __init__(
        self,
        payment_service: PaymentService,
        notifier: OrderNotifier,
        settings: Optional[Settings] = None,
        scope: SessionScope = session_scope,
    ):
        self.payment_service = payment_service
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.pricing = PricingResolver(self.settings.delivery_charge)
        self.state_machine = OrderStateMachine()
        self._scope = scope

    async def place_order(
        self,
        request: CheckoutRequest,
        principal: Optional[Principal] = None,
    ) -> CheckoutResult:
        """
        Price and persist a checkout.

        Args:
            request: Validated checkout payload
            principal: Authenticated caller, if any

        Returns:
            DurableOrder when committed, ProvisionalOrder when the database
            is unreachable

        Raises:
            PaymentUnavailableError: If online payment is requested without a gateway
            InvalidProductError: If the cart references an unavailable product
            PaymentProcessingFailedError: If the payment intent cannot be created
            OrderPersistenceFailedError: If the write fails for another reason
        """
        if request.payment_method.requires_gateway:
            self.payment_service.require_gateway()

        order_number = generate_order_number(self.settings.order_number_prefix)

        try:
            with log_performance(
                logger,
                "checkout",
                slow_ms=1000,
                order_number=order_number,
                item_count=len(request.order_items),
            ):
                return await self._place_durable(request, principal, order_number)
        except StorageUnavailableError as e:
            logger.warning(
                "Database unreachable, accepting provisional order",
                degraded_mode=True,
                order_number=order_number,
                client_total=str(request.total) if request.total is not None else None,
                error=e.message,
            )
            return build_provisional_order(order_number, request.total)

    async def _place_durable(
        self,
        request: CheckoutRequest,
        principal: Optional[Principal],
        order_number: str,
    ) -> DurableOrder:
        intent: Optional[PaymentIntentHandle] = None
        actor = principal.subject if principal else None

        try:
            async with self._scope() as session:
                pricing = await self.pricing.resolve(
                    SqlCatalogReader(session),
                    request.to_cart_lines(),
                    request.delivery_method,
                )

            async with self._scope() as session:
                repository = OrderRepository(session)
                customer_id = await repository.find_or_create_customer(
                    name=request.customer_name,
                    phone=request.customer_phone,
                    email=request.customer_email,
                    customer_id=principal.customer_id if principal else None,
                )

                order = self._build_order(request, pricing, order_number, customer_id)
                self.state_machine.record_event(order, ORDER_PLACED, actor=actor)
                await repository.add_order(order)

                if request.payment_method.requires_gateway:
                    intent = await self.payment_service.create_payment_intent(order)
                    order.payment_intent_id = intent.id
                    await session.flush()

        except SQLAlchemyError as e:
            await self._release_intent(intent)
            logger.error(
                "Failed to persist order",
                order_number=order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderPersistenceFailedError(
                "Failed to persist order",
                order_number=order_number,
            ) from e
        except OrderingError:
            await self._release_intent(intent)
            raise

        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            payment_method=order.payment_method.value,
            **pricing.to_log_context(),
        )

        await self._emit(order, ORDER_PLACED)
        return DurableOrder(order=order, payment_intent=intent)

    def _build_order(
        self,
        request: CheckoutRequest,
        pricing: PricingResult,
        order_number: str,
        customer_id: Optional[int],
    ) -> Order:
        order = Order(
            id=uuid.uuid4(),
            order_number=order_number,
            customer_id=customer_id,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            customer_email=request.customer_email,
            delivery_method=request.delivery_method,
            delivery_address=request.delivery_address,
            delivery_instructions=request.delivery_instructions,
            payment_method=request.payment_method,
            payment_status=PaymentStatus.PENDING,
            subtotal=pricing.subtotal,
            delivery_charge=pricing.delivery_charge,
            total=pricing.total,
            status=OrderStatus.PENDING,
            notes=request.notes,
        )

        for priced in pricing.lines:
            line = OrderLine(
                position=priced.position,
                product_id=priced.product_id,
                product_name=priced.product_name,
                unit_price=priced.unit_price,
                quantity=priced.quantity,
                line_total=priced.line_total,
            )
            for option in priced.options:
                line.options.append(
                    OrderLineOption(
                        option_id=option.option_id,
                        option_name=option.option_name,
                        option_value_id=option.value_id,
                        option_value_name=option.value_name,
                        price_adjustment=option.price_adjustment,
                    )
                )
            order.lines.append(line)

        return order

    async def _release_intent(self, intent: Optional[PaymentIntentHandle]) -> None:
        if intent is None:
            return
        logger.warning("Cancelling payment intent of failed checkout", payment_intent_id=intent.id)
        await self.payment_service.cancel_payment_intent(intent.id, reason="abandoned")

    async def get_order(self, order_id: str) -> Order:
        """
        Get an order with its lines and status history.

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        async with self._scope() as session:
            return await OrderRepository(session).require_order(order_id)

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders newest first.

        Args:
            status: Optional status filter
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (orders, total_count)
        """
        skip = (page - 1) * limit
        async with self._scope() as session:
            return await OrderRepository(session).list_orders(
                status=status,
                skip=skip,
                limit=limit,
            )

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        description: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Order:
        """
        Move an order to a new status.

        Raises:
            OrderNotFoundError: If order doesn't exist
            InvalidTransitionError: If the order is already closed
        """
        async with self._scope() as session:
            order = await OrderRepository(session).require_order(order_id, for_update=True)
            event = self.state_machine.apply_transition(
                order,
                status,
                description=description,
                actor=actor,
            )

        await self._emit(order, event.description or "")
        return order

    async def cancel_order(
        self,
        order_id: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Order:
        """
        Cancel an open order.

        An unpaid online order's payment intent is cancelled afterwards, best
        effort.

        Raises:
            OrderNotFoundError: If order doesn't exist
            OrderNotCancellableError: If the order is delivered or cancelled
        """
        async with self._scope() as session:
            order = await OrderRepository(session).require_order(order_id, for_update=True)
            event = self.state_machine.cancel(order, reason=reason, actor=actor)

        await self._emit(order, event.description or "")

        if (
            order.payment_method == PaymentMethod.ONLINE
            and order.payment_intent_id
            and order.payment_status != PaymentStatus.PAID
        ):
            await self.payment_service.cancel_payment_intent(
                order.payment_intent_id,
                reason="requested_by_customer",
            )

        return order

    async def _emit(self, order: Order, message: str) -> None:
        await self.notifier.emit(
            OrderUpdate(order_id=str(order.id), status=order.status, message=message)
        )
