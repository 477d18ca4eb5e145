"""Order status and checkout enums for order lifecycle management.

The status state machine is intentionally permissive: any non-terminal status
may move to any other status, so staff can skip steps (for example a pickup
order going straight from pending to ready). Only terminal statuses are closed.
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Happy path:
    - PENDING -> CONFIRMED -> PREPARING -> READY -> DELIVERING -> DELIVERED

    CANCELLED is reachable from every non-terminal status.
    DELIVERED and CANCELLED are terminal.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in TERMINAL_STATUSES

    def can_cancel(self) -> bool:
        """Check if order can be cancelled from current status."""
        return not self.is_terminal()

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Every non-terminal status may move to any status."""
        return not self.is_terminal()


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class PaymentStatus(str, Enum):
    """Settlement state of the order's payment."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    """How the customer pays."""

    CASH = "cash"
    CARD = "card"
    ONLINE = "online"

    @property
    def requires_gateway(self) -> bool:
        """Online payments are collected through the payment gateway."""
        return self is PaymentMethod.ONLINE


class DeliveryMethod(str, Enum):
    """How the order reaches the customer."""

    PICKUP = "pickup"
    DELIVERY = "delivery"

