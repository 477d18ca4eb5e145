"""
Order Pydantic schemas for API request/response validation.

This module defines the checkout payload (customer contact, fulfilment,
payment method and cart lines with selected options), admin status and
cancellation requests, and the order representations returned to clients.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from ordering.services.orders.enums import (
    DeliveryMethod,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from ordering.services.orders.pricing import CartLine, OptionSelection

PHONE_PATTERN = re.compile(r"^[0-9+\-\s()]{7,20}$")


class SelectedOptionValue(BaseModel):
    id: int = Field(..., ge=1, description="Option value ID")


class SelectedOption(BaseModel):
    """Values the customer picked for one product option."""

    option_id: int = Field(..., ge=1, description="Product option ID")
    values: list[SelectedOptionValue] = Field(
        default_factory=list,
        max_length=50,
        description="Selected values",
    )


class OrderItemRequest(BaseModel):
    """Cart line. Prices are never taken from the client."""

    product_id: int = Field(..., ge=1, description="Product ID")
    quantity: int = Field(..., ge=1, le=100, description="Quantity")
    selected_options: list[SelectedOption] = Field(
        default_factory=list,
        max_length=50,
        description="Selected product options",
    )

    def to_cart_line(self) -> CartLine:
        return CartLine(
            product_id=self.product_id,
            quantity=self.quantity,
            selections=tuple(
                OptionSelection(
                    option_id=option.option_id,
                    value_ids=tuple(value.id for value in option.values),
                )
                for option in self.selected_options
            ),
        )


class CheckoutRequest(BaseModel):
    """Request schema for placing an order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    customer_name: str = Field(
        ...,
        min_length=2,
        max_length=100,
        description="Customer name",
    )
    customer_phone: str = Field(
        ...,
        min_length=7,
        max_length=20,
        description="Customer phone number",
    )
    customer_email: Optional[EmailStr] = Field(
        None,
        description="Customer email address",
    )
    delivery_method: DeliveryMethod = Field(..., description="Pickup or delivery")
    delivery_address: Optional[str] = Field(
        None,
        max_length=500,
        description="Delivery address, required for delivery",
    )
    delivery_instructions: Optional[str] = Field(
        None,
        max_length=500,
        description="Instructions for the courier",
    )
    payment_method: PaymentMethod = Field(..., description="Payment method")
    notes: Optional[str] = Field(
        None,
        max_length=1000,
        description="Order notes",
    )
    order_items: list[OrderItemRequest] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Cart lines",
    )
    subtotal: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=10,
        decimal_places=2,
        description="Client-side subtotal; informational only",
    )
    total: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=10,
        decimal_places=2,
        description="Client-side total; only echoed when storage is unavailable",
    )

    @field_validator("customer_phone")
    @classmethod
    def validate_phone_format(cls, v: str) -> str:
        """Validate phone number characters."""
        if not PHONE_PATTERN.match(v):
            raise ValueError(
                "Phone number may only contain digits, spaces, +, - and parentheses"
            )
        return v

    @field_validator("customer_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v: Optional[str]) -> Optional[str]:
        """Blank means not provided."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("customer_email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @field_validator("delivery_address", "delivery_instructions", "notes")
    @classmethod
    def blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def validate_delivery_address(self) -> "CheckoutRequest":
        """Require an address for delivery orders only."""
        if self.delivery_method == DeliveryMethod.DELIVERY and not self.delivery_address:
            raise ValueError("Delivery address is required for delivery orders")
        if self.delivery_method == DeliveryMethod.PICKUP:
            self.delivery_address = None
        return self

    def to_cart_lines(self) -> list[CartLine]:
        return [item.to_cart_line() for item in self.order_items]


class OrderStatusUpdateRequest(BaseModel):
    """Request schema for updating order status."""

    status: OrderStatus = Field(..., description="New order status")
    description: Optional[str] = Field(
        None,
        max_length=500,
        description="Status change description",
    )


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(
        None,
        max_length=500,
        description="Cancellation reason",
    )


class OrderLineOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    option_id: Optional[int] = None
    option_name: str
    option_value_id: Optional[int] = None
    option_value_name: str
    price_adjustment: Decimal


class OrderLineResponse(BaseModel):
    """Order line response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: Optional[int] = None
    product_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    options: list[OrderLineOptionResponse] = Field(default_factory=list)


class OrderStatusEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    description: Optional[str] = None
    actor: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseModel):
    """Complete order response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_id: Optional[int] = None
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    delivery_method: DeliveryMethod
    delivery_address: Optional[str] = None
    delivery_instructions: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    subtotal: Decimal
    delivery_charge: Decimal
    total: Decimal
    payment_intent_id: Optional[str] = None
    notes: Optional[str] = None
    lines: list[OrderLineResponse] = Field(default_factory=list)
    status_events: list[OrderStatusEventResponse] = Field(default_factory=list)
    confirmed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    """Paginated admin order listing."""

    items: list[OrderResponse]
    total: int
    page: int
    limit: int
    pages: int


class CheckoutOrderSummary(BaseModel):
    # A plain string: provisional orders carry a synthetic id.
    id: str
    order_number: str
    status: OrderStatus
    total: Decimal


class PaymentIntentResponse(BaseModel):
    id: str
    client_secret: Optional[str] = None


class CheckoutResponse(BaseModel):
    """Response for a placed order."""

    order: CheckoutOrderSummary
    payment_intent: Optional[PaymentIntentResponse] = None
    fallback: bool = False
