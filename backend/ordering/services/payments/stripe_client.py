"""
Stripe API client wrapper with error handling and retry logic.

This module wraps the blocking Stripe SDK calls the ordering core needs:
creating, retrieving and cancelling payment intents and verifying webhook
payloads. Retryable failures (connection, rate limit, API errors) are retried
with exponential backoff; everything else is mapped onto ``StripeClientError``
subclasses. Callers run these methods in a worker thread.
"""

import time
from typing import Any, Callable, Optional

import stripe
from stripe import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    CardError,
    IdempotencyError,
    InvalidRequestError,
    RateLimitError,
    SignatureVerificationError,
    StripeError,
)

from ordering.core.config import Settings
from ordering.core.logging import get_logger

logger = get_logger(__name__)


class StripeClientError(Exception):
    """Base exception for Stripe client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        stripe_error: Optional[StripeError] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.stripe_error = stripe_error
        self.context = context


class StripePaymentError(StripeClientError):
    """Exception for payment processing errors."""

    pass


class StripeAuthenticationError(StripeClientError):
    """Exception for authentication errors."""

    pass


class StripeRateLimitError(StripeClientError):
    """Exception for rate limit errors."""

    pass


class StripeConnectionError(StripeClientError):
    """Exception for connection errors."""

    pass


class StripeClient:
    """
    Stripe API client with error handling and retry logic.

    The API key is passed on every request instead of being set globally, so
    several clients (for example in tests) never interfere with each other.
    """

    RETRYABLE_ERRORS = (APIConnectionError, RateLimitError, APIError)

    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str] = None,
        max_retries: int = 2,
        initial_backoff: float = 0.5,
        max_backoff: float = 4.0,
        backoff_multiplier: float = 2.0,
    ):
        """
        Initialize Stripe client with configuration.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            backoff_multiplier: Backoff multiplier for exponential backoff
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

        logger.info(
            "Stripe client initialized",
            max_retries=max_retries,
            webhook_verification=webhook_secret is not None,
        )

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _should_retry(self, error: StripeError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return isinstance(error, self.RETRYABLE_ERRORS)

    def _execute_with_retry(
        self,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute Stripe API call with exponential backoff retry logic.

        Args:
            operation: Operation name for logging
            func: Stripe API function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result from Stripe API call

        Raises:
            StripeClientError: If operation fails after all retries
        """
        kwargs.setdefault("api_key", self.api_key)
        last_error: Optional[StripeError] = None

        for attempt in range(self.max_retries + 1):
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(
                        "Stripe operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result

            except AuthenticationError as e:
                logger.error(
                    "Stripe authentication error",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise StripeAuthenticationError(
                    f"Authentication failed: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except CardError as e:
                logger.warning(
                    "Stripe card error",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise StripePaymentError(
                    f"Card error: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except (InvalidRequestError, IdempotencyError) as e:
                logger.error(
                    "Stripe rejected request",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                    error_type=type(e).__name__,
                )
                raise StripeClientError(
                    f"Invalid request: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except self.RETRYABLE_ERRORS as e:
                last_error = e
                if not self._should_retry(e, attempt):
                    logger.error(
                        "Stripe operation failed",
                        operation=operation,
                        error=str(e),
                        error_type=type(e).__name__,
                        attempt=attempt,
                    )
                    error_cls = {
                        RateLimitError: StripeRateLimitError,
                        APIConnectionError: StripeConnectionError,
                    }.get(type(e), StripeClientError)
                    raise error_cls(
                        f"{operation} failed: {e.user_message or str(e)}",
                        code=e.code,
                        stripe_error=e,
                    ) from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Stripe operation failed, retrying",
                    operation=operation,
                    error_type=type(e).__name__,
                    attempt=attempt,
                    backoff_seconds=backoff,
                )
                time.sleep(backoff)

            except StripeError as e:
                logger.error(
                    "Unexpected Stripe error",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StripeClientError(
                    f"Stripe error: {e.user_message or str(e)}",
                    code=getattr(e, "code", None),
                    stripe_error=e,
                ) from e

        raise StripeClientError(
            f"Operation failed after {self.max_retries} retries",
            stripe_error=last_error,
        )

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Optional[dict[str, str]] = None,
        customer_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a Stripe payment intent.

        Args:
            amount: Payment amount in minor units
            currency: Three-letter ISO currency code
            metadata: Metadata attached to the intent
            customer_email: Customer email for receipt
            idempotency_key: Idempotency key for safe retries

        Returns:
            Stripe PaymentIntent object

        Raises:
            StripeClientError: If payment intent creation fails
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
        }
        if metadata:
            params["metadata"] = metadata
        if customer_email:
            params["receipt_email"] = customer_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        payment_intent = self._execute_with_retry(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            **params,
        )

        logger.info(
            "Payment intent created",
            payment_intent_id=payment_intent.id,
            amount=amount,
            currency=currency,
        )
        return payment_intent

    def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        """
        Retrieve a payment intent by ID.

        Raises:
            StripeClientError: If retrieval fails
        """
        payment_intent = self._execute_with_retry(
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
        )

        logger.debug(
            "Payment intent retrieved",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return payment_intent

    def cancel_payment_intent(
        self,
        payment_intent_id: str,
        cancellation_reason: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Cancel a payment intent.

        Args:
            payment_intent_id: Stripe payment intent ID
            cancellation_reason: One of Stripe's cancellation reasons

        Raises:
            StripeClientError: If cancellation fails
        """
        params: dict[str, Any] = {}
        if cancellation_reason:
            params["cancellation_reason"] = cancellation_reason

        payment_intent = self._execute_with_retry(
            "cancel_payment_intent",
            stripe.PaymentIntent.cancel,
            payment_intent_id,
            **params,
        )

        logger.info(
            "Payment intent cancelled",
            payment_intent_id=payment_intent.id,
            reason=cancellation_reason,
        )
        return payment_intent

    def construct_webhook_event(self, payload: bytes, signature: str) -> stripe.Event:
        """
        Construct and verify a webhook event from Stripe.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe signature header value

        Returns:
            Verified Stripe Event object

        Raises:
            StripeClientError: With code ``INVALID_SIGNATURE`` or
                ``INVALID_PAYLOAD`` if verification fails
        """
        if not self.webhook_secret:
            raise StripeClientError(
                "Webhook secret is not configured",
                code="WEBHOOK_SECRET_MISSING",
            )

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
            )
        except SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed", error=str(e))
            raise StripeClientError(
                "Webhook signature verification failed",
                code="INVALID_SIGNATURE",
                stripe_error=e,
            ) from e
        except ValueError as e:
            logger.warning("Invalid webhook payload", error=str(e))
            raise StripeClientError(
                "Invalid webhook payload",
                code="INVALID_PAYLOAD",
            ) from e

        logger.info(
            "Webhook event verified",
            event_id=event.id,
            event_type=event.type,
        )
        return event


def build_payment_gateway(settings: Settings) -> Optional[StripeClient]:
    """
    Build the payment gateway from settings.

    Returns:
        A configured StripeClient, or None when no secret key is set
    """
    if not settings.payments_configured:
        logger.warning("Stripe secret key not configured; online payments disabled")
        return None

    return StripeClient(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
