"""
Payment gateway webhook endpoint.

Stripe posts payment events here. The raw body is verified against the
``Stripe-Signature`` header before anything else is looked at; apart from
signature and payload problems every delivery is acknowledged with 200.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, Request, status

from ordering.api.deps import PaymentServiceDep
from ordering.api.errors import raise_http_error
from ordering.core.errors import OrderingError
from ordering.core.logging import get_logger
from ordering.schemas.payments import WebhookResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhook",
    description="Verify and apply Stripe webhook events idempotently",
)
async def handle_webhook(
    request: Request,
    payment_service: PaymentServiceDep,
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
) -> WebhookResponse:
    """
    Handle Stripe webhook event.

    Raises:
        HTTPException: 400 for an invalid signature or payload
    """
    payload = await request.body()
    logger.info("Received Stripe webhook", payload_bytes=len(payload))

    try:
        outcome = await payment_service.handle_webhook(payload, stripe_signature)
    except OrderingError as e:
        raise_http_error(e, "Webhook verification")

    return WebhookResponse(**outcome.to_dict())
