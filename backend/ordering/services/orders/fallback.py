"""
Checkout results for normal and degraded operation.

Checkout either produces a ``DurableOrder`` backed by committed rows or, when
the database cannot be reached, a ``ProvisionalOrder`` that only echoes the
request so the storefront can keep working. Callers branch on the ``fallback``
flag instead of catching storage errors themselves.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Optional, Union

from ordering.database.models.order import Order
from ordering.services.orders.enums import OrderStatus
from ordering.services.orders.pricing import ZERO, to_money
from ordering.services.payments.service import PaymentIntentHandle

PROVISIONAL_ID_PREFIX = "provisional-"


@dataclass(frozen=True)
class DurableOrder:
    """A committed order and, for online payment, its payment intent."""

    order: Order
    payment_intent: Optional[PaymentIntentHandle] = None

    fallback: ClassVar[bool] = False

    @property
    def id(self) -> str:
        return str(self.order.id)

    @property
    def order_number(self) -> str:
        return self.order.order_number

    @property
    def status(self) -> OrderStatus:
        return self.order.status

    @property
    def total(self) -> Decimal:
        return self.order.total


@dataclass(frozen=True)
class ProvisionalOrder:
    """An order acknowledged while storage was unreachable; nothing was written."""

    id: str
    order_number: str
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING

    fallback: ClassVar[bool] = True

    @property
    def payment_intent(self) -> None:
        return None


CheckoutResult = Union[DurableOrder, ProvisionalOrder]


def build_provisional_order(
    order_number: str,
    client_total: Optional[Decimal] = None,
) -> ProvisionalOrder:
    """
    Build the degraded-mode response for a checkout.

    Args:
        order_number: Number generated for the attempted order
        client_total: Total the client submitted, if any

    Returns:
        Provisional order with a synthetic ``provisional-<hex>`` id
    """
    return ProvisionalOrder(
        id=f"{PROVISIONAL_ID_PREFIX}{uuid.uuid4().hex}",
        order_number=order_number,
        total=to_money(client_total) if client_total is not None else ZERO,
    )
