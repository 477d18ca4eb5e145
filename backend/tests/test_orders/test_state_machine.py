"""
Test suite for OrderStateMachine.

Tests cover permissive transitions between open statuses, closed terminal
statuses, lifecycle timestamps, cancellation rules, and the status event
trail.
"""

import pytest

from ordering.services.orders.enums import OrderStatus
from ordering.services.orders.state_machine import (
    DEFAULT_CANCEL_REASON,
    InvalidTransitionError,
    OrderNotCancellableError,
    OrderStateMachine,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def state_machine() -> OrderStateMachine:
    return OrderStateMachine()


# ============================================================================
# Transitions
# ============================================================================


class TestTransitions:
    """Test status changes and their side effects."""

    @pytest.mark.parametrize(
        "current, target",
        [
            (OrderStatus.PENDING, OrderStatus.CONFIRMED),
            (OrderStatus.PENDING, OrderStatus.READY),
            (OrderStatus.PREPARING, OrderStatus.DELIVERED),
            (OrderStatus.DELIVERING, OrderStatus.PENDING),
        ],
    )
    def test_open_order_may_move_anywhere(self, state_machine, make_order, current, target):
        order = make_order(status=current)

        state_machine.apply_transition(order, target)

        assert order.status == target

    @pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
    def test_terminal_order_rejects_transition(self, state_machine, make_order, terminal):
        order = make_order(status=terminal)
        events_before = len(order.status_events)

        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.apply_transition(order, OrderStatus.PREPARING)

        assert exc_info.value.code == "INVALID_TRANSITION"
        assert exc_info.value.context["current_status"] == terminal.value
        assert order.status == terminal
        assert len(order.status_events) == events_before

    def test_transition_appends_event(self, state_machine, make_order):
        order = make_order()

        event = state_machine.apply_transition(
            order,
            OrderStatus.PREPARING,
            description="Kitchen started",
            actor="admin-1",
        )

        assert order.status_events[-1] is event
        assert event.status == OrderStatus.PREPARING
        assert event.description == "Kitchen started"
        assert event.actor == "admin-1"
        assert event.created_at.tzinfo is not None

    def test_transition_uses_default_description(self, state_machine, make_order):
        order = make_order()

        event = state_machine.apply_transition(order, OrderStatus.READY)

        assert event.description == "Order status updated to ready"

    def test_confirm_stamps_confirmed_at(self, state_machine, make_order):
        order = make_order()

        state_machine.apply_transition(order, OrderStatus.CONFIRMED)

        assert order.confirmed_at is not None
        assert order.delivered_at is None

    def test_deliver_stamps_delivered_at(self, state_machine, make_order):
        order = make_order(status=OrderStatus.DELIVERING)

        state_machine.apply_transition(order, OrderStatus.DELIVERED)

        assert order.delivered_at is not None

    @pytest.mark.parametrize("target", list(OrderStatus))
    def test_open_order_accepts_any_status(self, state_machine, make_order, target):
        order = make_order(status=OrderStatus.CONFIRMED)

        state_machine.validate_transition(order, target)


# ============================================================================
# Cancellation
# ============================================================================


class TestCancellation:
    """Test cancellation of open and closed orders."""

    def test_cancel_open_order(self, state_machine, make_order):
        order = make_order(status=OrderStatus.PREPARING)

        event = state_machine.cancel(order, reason="Out of dough", actor="admin-1")

        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_at is not None
        assert event.description == "Out of dough"

    def test_cancel_without_reason_uses_default(self, state_machine, make_order):
        order = make_order()

        event = state_machine.cancel(order)

        assert event.description == DEFAULT_CANCEL_REASON

    @pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
    def test_cancel_closed_order_is_rejected(self, state_machine, make_order, terminal):
        order = make_order(status=terminal)
        events_before = len(order.status_events)

        with pytest.raises(OrderNotCancellableError) as exc_info:
            state_machine.cancel(order)

        assert exc_info.value.code == "ORDER_NOT_CANCELLABLE"
        assert len(order.status_events) == events_before


# ============================================================================
# Events Without Transition
# ============================================================================


class TestRecordEvent:
    def test_record_event_keeps_status(self, state_machine, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)

        event = state_machine.record_event(order, "Payment failed")

        assert order.status == OrderStatus.CONFIRMED
        assert event.status == OrderStatus.CONFIRMED
        assert event.actor is None
        assert order.status_events[-1] is event
