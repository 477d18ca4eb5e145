"""
Payment Pydantic schemas for API request/response validation.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ConfirmPaymentRequest(BaseModel):
    """Request schema for confirming a completed online payment."""

    payment_intent_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Stripe payment intent ID",
    )

    @field_validator("payment_intent_id")
    @classmethod
    def validate_stripe_id(cls, v: str) -> str:
        """Validate Stripe ID format."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Stripe ID cannot be empty")
        return stripped

    model_config = {
        "json_schema_extra": {
            "examples": [{"payment_intent_id": "pi_1234567890abcdef"}]
        }
    }


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True
    status: str = Field(..., description="processed, duplicate, ignored, skipped or failed")
    event_id: Optional[str] = None
    event_type: Optional[str] = None
