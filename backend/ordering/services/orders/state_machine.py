"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class for moving orders through
their lifecycle. Every applied transition updates the order status, stamps the
matching lifecycle timestamp and appends a status event. The machine only
mutates the loaded aggregate; committing is up to the caller's session scope.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger
from ordering.database.models.order import Order, OrderStatusEvent
from ordering.services.orders.enums import OrderStatus

logger = get_logger(__name__)

DEFAULT_CANCEL_REASON = "Order cancelled by admin"


class InvalidTransitionError(OrderingError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"
    status_code = 400


class OrderNotCancellableError(OrderingError):
    """Raised when cancelling an order that is already closed."""

    code = "ORDER_NOT_CANCELLABLE"
    status_code = 400


def default_description(status: OrderStatus) -> str:
    return f"Order status updated to {status.value}"


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    Any non-terminal status may move to any status; delivered and cancelled
    orders are closed.
    """

    def __init__(self):
        self._side_effects: Dict[OrderStatus, Callable[[Order, datetime], None]] = {
            OrderStatus.CONFIRMED: self._effect_confirmed,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
        }

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Validate if transition to target status is allowed.

        Raises:
            InvalidTransitionError: If the order is terminal
        """
        if not order.status.can_transition_to(target_status):
            raise InvalidTransitionError(
                f"Cannot change status of a {order.status.value} order",
                order_id=str(order.id),
                current_status=order.status.value,
                target_status=target_status.value,
            )

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        description: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> OrderStatusEvent:
        """Apply state transition to order with side effects.

        Args:
            order: Loaded order to transition
            target_status: Target status to transition to
            description: Event description; defaults to the generic update text
            actor: Subject of whoever triggered the change

        Returns:
            The appended status event

        Raises:
            InvalidTransitionError: If transition is not allowed
        """
        self.validate_transition(order, target_status)

        old_status = order.status
        now = datetime.now(timezone.utc)
        order.status = target_status

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(order, now)

        event = self._append_event(
            order,
            target_status,
            description or default_description(target_status),
            actor,
            now,
        )

        logger.info(
            "State transition applied",
            order_id=str(order.id),
            transition=f"{old_status.value}->{target_status.value}",
            actor=actor,
        )
        return event

    def cancel(
        self,
        order: Order,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> OrderStatusEvent:
        """Cancel an open order.

        Raises:
            OrderNotCancellableError: If the order is delivered or cancelled
        """
        if not order.status.can_cancel():
            raise OrderNotCancellableError(
                f"Order in status {order.status.value} cannot be cancelled",
                order_id=str(order.id),
                current_status=order.status.value,
            )
        return self.apply_transition(
            order,
            OrderStatus.CANCELLED,
            description=reason or DEFAULT_CANCEL_REASON,
            actor=actor,
        )

    def record_event(
        self,
        order: Order,
        description: str,
        actor: Optional[str] = None,
    ) -> OrderStatusEvent:
        """Append an event at the current status without transitioning."""
        return self._append_event(
            order,
            order.status,
            description,
            actor,
            datetime.now(timezone.utc),
        )

    def _append_event(
        self,
        order: Order,
        status: OrderStatus,
        description: str,
        actor: Optional[str],
        created_at: datetime,
    ) -> OrderStatusEvent:
        event = OrderStatusEvent(
            status=status,
            description=description,
            actor=actor,
            created_at=created_at,
        )
        order.status_events.append(event)
        return event

    # Side effects

    def _effect_confirmed(self, order: Order, now: datetime) -> None:
        order.confirmed_at = now

    def _effect_delivered(self, order: Order, now: datetime) -> None:
        order.delivered_at = now

    def _effect_cancelled(self, order: Order, now: datetime) -> None:
        order.cancelled_at = now
