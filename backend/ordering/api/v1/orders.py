"""
Order API endpoints.

This module implements the FastAPI router for checkout, public order
tracking, and the admin back office operations: listing, status changes,
cancellation and client-side payment confirmation.
"""

import math
from typing import Optional

from fastapi import APIRouter, Query, status

from ordering.api.deps import CurrentAdmin, OptionalPrincipal, OrderServiceDep, PaymentServiceDep
from ordering.api.errors import raise_http_error
from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger
from ordering.schemas.orders import (
    CheckoutOrderSummary,
    CheckoutRequest,
    CheckoutResponse,
    OrderCancelRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
    PaymentIntentResponse,
)
from ordering.schemas.payments import ConfirmPaymentRequest
from ordering.services.orders.enums import OrderStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place order",
    description="Price the cart from the catalog and persist the order atomically",
)
async def place_order(
    request: CheckoutRequest,
    principal: OptionalPrincipal,
    order_service: OrderServiceDep,
) -> CheckoutResponse:
    """
    Place an order.

    Returns ``fallback: true`` when the order could only be accepted
    provisionally because the database was unreachable.
    """
    logger.info(
        "Placing order",
        item_count=len(request.order_items),
        delivery_method=request.delivery_method.value,
        payment_method=request.payment_method.value,
        authenticated=principal is not None,
    )

    try:
        result = await order_service.place_order(request, principal)
    except OrderingError as e:
        raise_http_error(e, "Checkout")

    intent = result.payment_intent
    return CheckoutResponse(
        order=CheckoutOrderSummary(
            id=result.id,
            order_number=result.order_number,
            status=result.status,
            total=result.total,
        ),
        payment_intent=(
            PaymentIntentResponse(id=intent.id, client_secret=intent.client_secret)
            if intent is not None
            else None
        ),
        fallback=result.fallback,
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="Paginated order listing for the back office",
)
async def list_orders(
    admin: CurrentAdmin,
    order_service: OrderServiceDep,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    try:
        orders, total = await order_service.list_orders(
            status=order_status,
            page=page,
            limit=limit,
        )
    except OrderingError as e:
        raise_http_error(e, "Order listing", admin=admin.subject)

    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Track order",
    description="Order details with lines and status history",
)
async def get_order(order_id: str, order_service: OrderServiceDep) -> OrderResponse:
    try:
        order = await order_service.get_order(order_id)
    except OrderingError as e:
        raise_http_error(e, "Order lookup", order_id=order_id)

    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    admin: CurrentAdmin,
    order_service: OrderServiceDep,
) -> OrderResponse:
    """
    Move an order to any status unless it is already delivered or cancelled.
    """
    try:
        order = await order_service.update_status(
            order_id,
            request.status,
            description=request.description,
            actor=admin.subject,
        )
    except OrderingError as e:
        raise_http_error(
            e,
            "Status update",
            order_id=order_id,
            target_status=request.status.value,
        )

    logger.info(
        "Order status updated",
        order_id=order_id,
        status=order.status.value,
        admin=admin.subject,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
)
async def cancel_order(
    order_id: str,
    admin: CurrentAdmin,
    order_service: OrderServiceDep,
    request: Optional[OrderCancelRequest] = None,
) -> OrderResponse:
    try:
        order = await order_service.cancel_order(
            order_id,
            reason=request.reason if request else None,
            actor=admin.subject,
        )
    except OrderingError as e:
        raise_http_error(e, "Cancellation", order_id=order_id)

    logger.info("Order cancelled", order_id=order_id, admin=admin.subject)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/confirm-payment",
    response_model=OrderResponse,
    summary="Confirm online payment",
    description="Confirm an order after the client completed its payment intent",
)
async def confirm_payment(
    order_id: str,
    request: ConfirmPaymentRequest,
    principal: OptionalPrincipal,
    payment_service: PaymentServiceDep,
) -> OrderResponse:
    try:
        order = await payment_service.confirm_payment(
            order_id,
            request.payment_intent_id,
            actor=principal.subject if principal else None,
        )
    except OrderingError as e:
        raise_http_error(
            e,
            "Payment confirmation",
            order_id=order_id,
            payment_intent_id=request.payment_intent_id,
        )

    return OrderResponse.model_validate(order)
