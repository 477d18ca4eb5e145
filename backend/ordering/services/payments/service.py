"""
Payment service bridging orders and the Stripe gateway.

This module implements the PaymentService class: payment intent creation for
online checkouts, client-driven payment confirmation, and verified, idempotent
webhook ingestion. Gateway calls are blocking SDK calls and run in a worker
thread bounded by the configured timeout.
"""

import asyncio
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ordering.core.config import Settings, get_settings
from ordering.core.errors import OrderingError, ValidationFailedError
from ordering.core.logging import get_logger
from ordering.database.connection import session_scope
from ordering.database.models.order import Order, OrderStatusEvent
from ordering.services.notifications.notifier import OrderNotifier, OrderUpdate
from ordering.services.orders.enums import OrderStatus, PaymentStatus
from ordering.services.orders.repository import OrderRepository
from ordering.services.orders.state_machine import (
    InvalidTransitionError,
    OrderStateMachine,
)
from ordering.services.payments.idempotency import IdempotencyGuard
from ordering.services.payments.stripe_client import StripeClient, StripeClientError

logger = get_logger(__name__)

SessionScope = Callable[[], AsyncContextManager[AsyncSession]]

CONFIRMED_BY_CLIENT = "Payment confirmed and order confirmed"
CONFIRMED_BY_WEBHOOK = "Payment confirmed via webhook"
PAYMENT_FAILED = "Payment failed"

SUCCEEDED_EVENTS = frozenset({"payment_intent.succeeded", "charge.succeeded"})
FAILED_EVENTS = frozenset({"payment_intent.payment_failed"})

# Gateway calls still running after their caller timed out.
_late_calls: set[asyncio.Task] = set()


class PaymentUnavailableError(OrderingError):
    """Raised when online payment is requested but no gateway is configured."""

    code = "PAYMENT_UNAVAILABLE"
    status_code = 503


class PaymentNotCompletedError(OrderingError):
    """Raised when a payment intent has not succeeded yet."""

    code = "PAYMENT_NOT_COMPLETED"
    status_code = 400


class PaymentProcessingFailedError(OrderingError):
    """Raised when the gateway rejects or does not answer a request."""

    code = "PAYMENT_PROCESSING_FAILED"
    status_code = 400


class InvalidWebhookSignatureError(OrderingError):
    code = "INVALID_WEBHOOK_SIGNATURE"
    status_code = 400


class InvalidWebhookPayloadError(OrderingError):
    code = "INVALID_WEBHOOK_PAYLOAD"
    status_code = 400


@dataclass(frozen=True)
class PaymentIntentHandle:
    """What the storefront needs to collect an online payment."""

    id: str
    client_secret: Optional[str]


@dataclass(frozen=True)
class WebhookOutcome:
    """
    Result of one webhook delivery. Every outcome is acknowledged with 200.

    ``status`` is one of ``processed``, ``duplicate``, ``ignored``,
    ``skipped`` (webhooks not configured) or ``failed``.
    """

    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": True,
            "status": self.status,
            "event_id": self.event_id,
            "event_type": self.event_type,
        }


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to the gateway's minor units."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def metadata_order_id(stripe_object: Any) -> Optional[str]:
    """Order id stored in a gateway object's metadata, if any."""
    metadata = stripe_object.get("metadata") or {}
    order_id = metadata.get("order_id") or metadata.get("orderId")
    return str(order_id) if order_id else None


class PaymentService:
    """
    Payment service orchestrating Stripe integration and order updates.

    Attributes:
        gateway: Stripe client, or None when payments are not configured
        guard: Idempotency marker store for webhook events
        notifier: Realtime order update publisher
    """

    def __init__(
        self,
        gateway: Optional[StripeClient],
        guard: IdempotencyGuard,
        notifier: OrderNotifier,
        settings: Optional[Settings] = None,
        scope: SessionScope = session_scope,
    ):
        self.gateway = gateway
        self.guard = guard
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.state_machine = OrderStateMachine()
        self._scope = scope

        self._webhook_handlers: dict[
            str, Callable[[str, Any], Awaitable[str]]
        ] = {event_type: self._handle_payment_succeeded for event_type in SUCCEEDED_EVENTS}
        self._webhook_handlers.update(
            {event_type: self._handle_payment_failed for event_type in FAILED_EVENTS}
        )

    def require_gateway(self) -> StripeClient:
        """
        Return the configured gateway.

        Raises:
            PaymentUnavailableError: If online payments are not configured
        """
        if self.gateway is None:
            raise PaymentUnavailableError("Online payments are not available")
        return self.gateway

    async def _call_gateway(
        self,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        on_late_result: Optional[Callable[[Any], Awaitable[None]]] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Run a blocking gateway call in a worker thread, bounded by the timeout.

        The thread cannot be interrupted, so a timed-out call keeps running.
        When it later succeeds, ``on_late_result`` receives its result.
        """
        timeout = self.settings.payment_gateway_timeout_seconds
        call = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
        try:
            return await asyncio.wait_for(asyncio.shield(call), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "Payment gateway timed out",
                operation=operation,
                timeout_seconds=timeout,
            )
            if on_late_result is not None:
                _watch_late_result(operation, call, on_late_result)
            raise PaymentProcessingFailedError(
                "Payment gateway did not respond in time",
                operation=operation,
            ) from e
        except StripeClientError as e:
            logger.error(
                "Payment gateway request failed",
                operation=operation,
                error=str(e),
                error_code=e.code,
            )
            raise PaymentProcessingFailedError(
                f"Payment processing failed: {e}",
                operation=operation,
                gateway_code=e.code,
            ) from e

    async def create_payment_intent(self, order: Order) -> PaymentIntentHandle:
        """
        Create the payment intent for a freshly priced order.

        The amount is always the order's computed total.

        Raises:
            PaymentUnavailableError: If no gateway is configured
            PaymentProcessingFailedError: If the gateway fails or times out
        """
        gateway = self.require_gateway()
        amount = to_minor_units(order.total)

        intent = await self._call_gateway(
            "create_payment_intent",
            gateway.create_payment_intent,
            amount=amount,
            currency=self.settings.currency,
            metadata={
                "order_id": str(order.id),
                "order_number": order.order_number,
            },
            customer_email=order.customer_email,
            idempotency_key=f"order-{order.id}",
            on_late_result=self._cancel_late_intent,
        )

        logger.info(
            "Payment intent attached to order",
            order_id=str(order.id),
            payment_intent_id=intent["id"],
            amount=amount,
        )
        return PaymentIntentHandle(id=intent["id"], client_secret=intent.get("client_secret"))

    async def _cancel_late_intent(self, intent: Any) -> None:
        # The checkout that asked for this intent has already rolled back.
        logger.warning(
            "Cancelling payment intent created after timeout",
            payment_intent_id=intent["id"],
        )
        await self.cancel_payment_intent(intent["id"], reason="abandoned")

    async def cancel_payment_intent(self, payment_intent_id: str, reason: str) -> None:
        """Cancel an intent, logging instead of raising when that fails."""
        if self.gateway is None:
            return
        try:
            await self._call_gateway(
                "cancel_payment_intent",
                self.gateway.cancel_payment_intent,
                payment_intent_id,
                cancellation_reason=reason,
            )
        except PaymentProcessingFailedError as e:
            logger.warning(
                "Could not cancel payment intent",
                payment_intent_id=payment_intent_id,
                reason=reason,
                error=e.message,
            )

    async def confirm_payment(
        self,
        order_id: str,
        payment_intent_id: str,
        actor: Optional[str] = None,
    ) -> Order:
        """
        Confirm an order after the client completed its payment.

        Args:
            order_id: Order being paid
            payment_intent_id: Intent the client completed
            actor: Subject of the caller, if authenticated

        Returns:
            The updated (or unchanged) order

        Raises:
            PaymentUnavailableError: If no gateway is configured
            OrderNotFoundError: If the order does not exist
            ValidationFailedError: If the intent belongs to another order
            PaymentNotCompletedError: If the intent has not succeeded
            InvalidTransitionError: If the order is already closed
        """
        gateway = self.require_gateway()

        async with self._scope() as session:
            order = await OrderRepository(session).require_order(order_id)

        intent = await self._call_gateway(
            "retrieve_payment_intent",
            gateway.retrieve_payment_intent,
            payment_intent_id,
        )

        if intent["id"] != order.payment_intent_id and metadata_order_id(intent) != str(order.id):
            logger.warning(
                "Payment intent does not belong to order",
                order_id=str(order.id),
                payment_intent_id=payment_intent_id,
            )
            raise ValidationFailedError(
                "Payment intent does not belong to this order",
                order_id=str(order.id),
                payment_intent_id=payment_intent_id,
            )

        if intent["status"] != "succeeded":
            raise PaymentNotCompletedError(
                "Payment has not been completed",
                order_id=str(order.id),
                payment_intent_id=payment_intent_id,
                intent_status=intent["status"],
            )

        async with self._scope() as session:
            order = await OrderRepository(session).require_order(order_id, for_update=True)
            if order.status.is_terminal():
                raise InvalidTransitionError(
                    f"Cannot confirm payment for a {order.status.value} order",
                    order_id=str(order.id),
                    current_status=order.status.value,
                )
            if order.payment_intent_id is None:
                order.payment_intent_id = intent["id"]
            event = self._apply_payment_success(order, CONFIRMED_BY_CLIENT, actor)

        if event is not None:
            await self._emit(order, event)
        return order

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify and apply one webhook delivery.

        Only an invalid signature or payload raises; everything else is
        acknowledged so the gateway stops redelivering.

        Raises:
            InvalidWebhookSignatureError: If the signature does not verify
            InvalidWebhookPayloadError: If the payload is not a valid event
        """
        if self.gateway is None or not self.gateway.webhook_secret:
            logger.warning("Webhook received but webhook verification is not configured")
            return WebhookOutcome(status="skipped")

        try:
            event = self.gateway.construct_webhook_event(payload, signature or "")
        except StripeClientError as e:
            if e.code == "INVALID_PAYLOAD":
                raise InvalidWebhookPayloadError("Invalid webhook payload") from e
            raise InvalidWebhookSignatureError("Invalid webhook signature") from e

        event_id, event_type = event["id"], event["type"]
        ttl = self.settings.idempotency_ttl_seconds
        claim_ttl = self.settings.idempotency_claim_ttl_seconds

        if await self.guard.seen(event_id):
            logger.info("Duplicate webhook event", event_id=event_id, event_type=event_type)
            return WebhookOutcome("duplicate", event_id, event_type)

        if not await self.guard.claim(event_id, claim_ttl):
            logger.info("Webhook event already in progress", event_id=event_id)
            return WebhookOutcome("duplicate", event_id, event_type)

        # The event may have been marked between the first check and the claim.
        if await self.guard.seen(event_id):
            await self.guard.release(event_id)
            return WebhookOutcome("duplicate", event_id, event_type)

        try:
            status = await self._dispatch(event_type, event["data"]["object"], event_id)
        except (OrderingError, SQLAlchemyError) as e:
            await self.guard.release(event_id)
            logger.error(
                "Webhook processing failed",
                event_id=event_id,
                event_type=event_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            return WebhookOutcome("failed", event_id, event_type)

        await self.guard.mark(event_id, ttl)
        logger.info(
            "Webhook processed",
            event_id=event_id,
            event_type=event_type,
            outcome=status,
        )
        return WebhookOutcome(status, event_id, event_type)

    async def _dispatch(self, event_type: str, data: Any, event_id: str) -> str:
        handler = self._webhook_handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled webhook event type", event_type=event_type, event_id=event_id)
            return "ignored"

        order_id = metadata_order_id(data)
        if order_id is None:
            logger.warning(
                "Webhook event carries no order id",
                event_type=event_type,
                event_id=event_id,
            )
            return "ignored"

        return await handler(order_id, data)

    async def _handle_payment_succeeded(self, order_id: str, data: Any) -> str:
        async with self._scope() as session:
            order = await OrderRepository(session).get_order_by_id(order_id, for_update=True)
            if order is None:
                logger.warning("Webhook references unknown order", order_id=order_id)
                return "ignored"
            if order.payment_intent_id is None and str(data.get("id", "")).startswith("pi_"):
                order.payment_intent_id = data["id"]
            event = self._apply_payment_success(order, CONFIRMED_BY_WEBHOOK)

        if event is not None:
            await self._emit(order, event)
        return "processed"

    async def _handle_payment_failed(self, order_id: str, data: Any) -> str:
        async with self._scope() as session:
            order = await OrderRepository(session).get_order_by_id(order_id, for_update=True)
            if order is None:
                logger.warning("Webhook references unknown order", order_id=order_id)
                return "ignored"
            if order.payment_status == PaymentStatus.PAID:
                logger.info("Ignoring payment failure for a paid order", order_id=order_id)
                return "ignored"

            order.payment_status = PaymentStatus.FAILED
            event = self.state_machine.record_event(order, PAYMENT_FAILED)

        logger.warning("Payment failed", order_id=order_id)
        await self._emit(order, event)
        return "processed"

    def _apply_payment_success(
        self,
        order: Order,
        description: str,
        actor: Optional[str] = None,
    ) -> Optional[OrderStatusEvent]:
        order.payment_status = PaymentStatus.PAID
        if order.status != OrderStatus.PENDING:
            logger.info(
                "Payment recorded without transition",
                order_id=str(order.id),
                status=order.status.value,
            )
            return None
        return self.state_machine.apply_transition(
            order,
            OrderStatus.CONFIRMED,
            description=description,
            actor=actor,
        )

    async def _emit(self, order: Order, event: OrderStatusEvent) -> None:
        await self.notifier.emit(
            OrderUpdate(
                order_id=str(order.id),
                status=event.status,
                message=event.description or "",
            )
        )


def _watch_late_result(
    operation: str,
    call: "asyncio.Future[Any]",
    handler: Callable[[Any], Awaitable[None]],
) -> None:
    async def _settle() -> None:
        try:
            result = await call
        except StripeClientError as e:
            logger.info("Timed-out gateway call failed", operation=operation, error=str(e))
            return
        await handler(result)

    task = asyncio.create_task(_settle())
    _late_calls.add(task)
    task.add_done_callback(_late_calls.discard)
