"""
Order models for checkout persistence and status tracking.

An order is written once at checkout together with its lines, selected
options and the first status event. Lines and options snapshot catalog names
and prices so later menu edits never rewrite history. Status events form an
append-only audit trail.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ordering.database.base import Base, BaseModel
from ordering.services.orders.enums import (
    DeliveryMethod,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)


def _enum_column(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(BaseModel):
    """
    Customer order with contact snapshot and server-computed totals.

    Attributes:
        order_number: Human-readable unique reference
        customer_id: Optional link to a customer record
        customer_name / customer_phone / customer_email: Contact snapshot
        delivery_method: Pickup or delivery
        payment_method: Cash, card or online
        payment_status: Settlement state of the payment
        subtotal / delivery_charge / total: Money fields, total = subtotal + charge
        status: Current lifecycle status
        payment_intent_id: Gateway payment intent reference for online orders
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        comment="Human-readable order number",
    )

    customer_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        comment="Customer record, absent for anonymous orders",
    )

    customer_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Contact name at time of order",
    )

    customer_phone: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Contact phone at time of order",
    )

    customer_email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Contact email at time of order",
    )

    delivery_method: Mapped[DeliveryMethod] = mapped_column(
        _enum_column(DeliveryMethod, "delivery_method"),
        nullable=False,
        comment="Pickup or delivery",
    )

    delivery_address: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Delivery address, required for delivery orders",
    )

    delivery_instructions: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Courier instructions",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        _enum_column(PaymentMethod, "payment_method"),
        nullable=False,
        comment="Cash, card or online",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Settlement state of the payment",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Sum of line totals",
    )

    delivery_charge: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Fixed delivery charge",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Subtotal plus delivery charge",
    )

    status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="Current lifecycle status",
    )

    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Stripe payment intent identifier",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Customer notes for the kitchen",
    )

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    lines: Mapped[list["OrderLine"]] = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderLine.position",
    )

    status_events: Mapped[list["OrderStatusEvent"]] = relationship(
        "OrderStatusEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderStatusEvent.id",
    )

    __table_args__ = (
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint(
            "delivery_charge >= 0", name="ck_orders_delivery_charge_non_negative"
        ),
        CheckConstraint(
            "total = subtotal + delivery_charge", name="ck_orders_total_matches"
        ),
        CheckConstraint(
            "delivery_method <> 'delivery' OR delivery_address IS NOT NULL",
            name="ck_orders_delivery_address_required",
        ),
        Index("ix_orders_status_created_at", "status", "created_at"),
        Index("ix_orders_customer_id", "customer_id"),
    )

    __mapper_args__ = {"eager_defaults": True}

    @property
    def is_terminal(self) -> bool:
        """Whether the order accepts no further transitions."""
        return self.status.is_terminal()


class OrderLine(Base):
    """Order line with product snapshot and computed line total."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Position of the line in the submitted cart",
    )

    product_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        comment="Catalog product, kept for reporting only",
    )

    product_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name at time of order",
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Base price plus option adjustments at time of order",
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    line_total: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Unit price times quantity",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="lines")

    options: Mapped[list["OrderLineOption"]] = relationship(
        "OrderLineOption",
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint(
            "line_total = unit_price * quantity", name="ck_order_items_line_total"
        ),
    )


class OrderLineOption(Base):
    """Selected option value snapshot on an order line."""

    __tablename__ = "order_item_options"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    option_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    option_name: Mapped[str] = mapped_column(String(255), nullable=False)

    option_value_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    option_value_name: Mapped[str] = mapped_column(String(255), nullable=False)

    price_adjustment: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Per-unit adjustment applied",
    )

    line: Mapped["OrderLine"] = relationship("OrderLine", back_populates="options")


class OrderStatusEvent(Base):
    """
    Append-only status audit entry.

    Attributes:
        order_id: Parent order
        status: Status the order moved to (or stayed at)
        description: Human-readable reason
        actor: Who triggered the change; empty for system events
        created_at: When the change happened
    """

    __tablename__ = "order_status_updates"

    id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
    )

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    actor: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Subject of the staff member or customer, null for system",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("now()"),
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_events")

    __table_args__ = (
        Index("ix_order_status_updates_order_id_created_at", "order_id", "created_at"),
    )
