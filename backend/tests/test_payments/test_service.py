"""
Test suite for PaymentService.

Tests cover payment intent creation, gateway failure mapping, client-driven
payment confirmation, and verified, idempotent webhook processing including
duplicate and concurrent deliveries of the same event.
"""

import asyncio
import time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from ordering.core.errors import ValidationFailedError
from ordering.services.orders.enums import OrderStatus, PaymentMethod, PaymentStatus
from ordering.services.orders.state_machine import InvalidTransitionError
from ordering.services.payments import service as service_module
from ordering.services.payments.idempotency import InMemoryIdempotencyGuard
from ordering.services.payments.service import (
    CONFIRMED_BY_CLIENT,
    CONFIRMED_BY_WEBHOOK,
    PAYMENT_FAILED,
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    PaymentNotCompletedError,
    PaymentProcessingFailedError,
    PaymentService,
    PaymentUnavailableError,
    metadata_order_id,
    to_minor_units,
)
from ordering.services.payments.stripe_client import StripeClientError


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def gateway() -> MagicMock:
    """Stripe client mock with webhook verification configured."""
    gateway = MagicMock()
    gateway.webhook_secret = "whsec_test"
    gateway.create_payment_intent = MagicMock(
        return_value={"id": "pi_1", "client_secret": "pi_1_secret"}
    )
    gateway.retrieve_payment_intent = MagicMock()
    gateway.cancel_payment_intent = MagicMock()
    gateway.construct_webhook_event = MagicMock()
    return gateway


@pytest.fixture
def repository() -> MagicMock:
    repository = MagicMock()
    repository.require_order = AsyncMock()
    repository.get_order_by_id = AsyncMock()
    return repository


@pytest.fixture(autouse=True)
def patched_repository(monkeypatch, repository):
    monkeypatch.setattr(service_module, "OrderRepository", lambda session: repository)


@pytest.fixture
def guard() -> InMemoryIdempotencyGuard:
    return InMemoryIdempotencyGuard()


@pytest.fixture
def payment_service(gateway, guard, notifier, settings, recording_scope) -> PaymentService:
    return PaymentService(
        gateway=gateway,
        guard=guard,
        notifier=notifier,
        settings=settings,
        scope=recording_scope,
    )


@pytest.fixture
def online_order(make_order):
    return make_order(payment_method=PaymentMethod.ONLINE, payment_intent_id="pi_1")


def stripe_event(event_type: str, order_id, event_id: str = "evt_1", **data) -> dict:
    """Build a verified webhook event as the gateway client returns it."""
    obj = {"id": "pi_1", "metadata": {"order_id": str(order_id)} if order_id else {}}
    obj.update(data)
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def slow_intent(intent_id: str, delay: float = 0.3):
    """Gateway create call that answers only after the service timeout."""

    def _create(**kwargs) -> dict:
        time.sleep(delay)
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    return _create


async def wait_for_late_calls() -> None:
    await asyncio.gather(*list(service_module._late_calls))


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    def test_to_minor_units(self):
        assert to_minor_units(Decimal("25.00")) == 2500
        assert to_minor_units(Decimal("10.005")) == 1001

    def test_metadata_order_id(self):
        assert metadata_order_id({"metadata": {"order_id": "abc"}}) == "abc"
        assert metadata_order_id({"metadata": {"orderId": "abc"}}) == "abc"
        assert metadata_order_id({"metadata": None}) is None
        assert metadata_order_id({}) is None


# ============================================================================
# Payment Intents
# ============================================================================


class TestPaymentIntents:
    """Test intent creation and cancellation."""

    def test_require_gateway_without_configuration(self, guard, notifier, settings):
        service = PaymentService(gateway=None, guard=guard, notifier=notifier, settings=settings)

        with pytest.raises(PaymentUnavailableError) as exc_info:
            service.require_gateway()

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_create_payment_intent_uses_order_total(
        self, payment_service, gateway, online_order, settings
    ):
        handle = await payment_service.create_payment_intent(online_order)

        assert handle.id == "pi_1"
        assert handle.client_secret == "pi_1_secret"
        gateway.create_payment_intent.assert_called_once_with(
            amount=2500,
            currency=settings.currency,
            metadata={
                "order_id": str(online_order.id),
                "order_number": online_order.order_number,
            },
            customer_email="dana@example.com",
            idempotency_key=f"order-{online_order.id}",
        )

    @pytest.mark.asyncio
    async def test_gateway_error_is_mapped(self, payment_service, gateway, online_order):
        gateway.create_payment_intent.side_effect = StripeClientError(
            "card_declined", code="card_declined"
        )

        with pytest.raises(PaymentProcessingFailedError) as exc_info:
            await payment_service.create_payment_intent(online_order)

        assert exc_info.value.context["gateway_code"] == "card_declined"

    @pytest.fixture
    def impatient_service(self, gateway, guard, notifier, settings, recording_scope):
        return PaymentService(
            gateway=gateway,
            guard=guard,
            notifier=notifier,
            settings=settings.model_copy(update={"payment_gateway_timeout_seconds": 0.05}),
            scope=recording_scope,
        )

    @pytest.mark.asyncio
    async def test_gateway_timeout_is_mapped(self, impatient_service, gateway, online_order):
        gateway.create_payment_intent.side_effect = slow_intent("pi_late")

        with pytest.raises(PaymentProcessingFailedError) as exc_info:
            await impatient_service.create_payment_intent(online_order)

        assert exc_info.value.context["operation"] == "create_payment_intent"
        gateway.cancel_payment_intent.assert_not_called()
        await wait_for_late_calls()

    @pytest.mark.asyncio
    async def test_intent_created_after_timeout_is_cancelled(
        self, impatient_service, gateway, online_order
    ):
        gateway.create_payment_intent.side_effect = slow_intent("pi_late")

        with pytest.raises(PaymentProcessingFailedError):
            await impatient_service.create_payment_intent(online_order)
        await wait_for_late_calls()

        gateway.cancel_payment_intent.assert_called_once_with(
            "pi_late", cancellation_reason="abandoned"
        )

    @pytest.mark.asyncio
    async def test_late_gateway_failure_needs_no_cleanup(
        self, impatient_service, gateway, online_order
    ):
        def slow_failure(**kwargs):
            time.sleep(0.3)
            raise StripeClientError("card_declined", code="card_declined")

        gateway.create_payment_intent.side_effect = slow_failure

        with pytest.raises(PaymentProcessingFailedError):
            await impatient_service.create_payment_intent(online_order)
        await wait_for_late_calls()

        gateway.cancel_payment_intent.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_failure_is_swallowed(self, payment_service, gateway):
        gateway.cancel_payment_intent.side_effect = StripeClientError("already captured")

        await payment_service.cancel_payment_intent("pi_1", reason="abandoned")

        gateway.cancel_payment_intent.assert_called_once_with(
            "pi_1", cancellation_reason="abandoned"
        )


# ============================================================================
# Client Confirmation
# ============================================================================


class TestConfirmPayment:
    """Test confirmation after the client completed its payment."""

    @pytest.mark.asyncio
    async def test_confirms_pending_order(
        self, payment_service, gateway, repository, online_order, notifier
    ):
        repository.require_order.return_value = online_order
        gateway.retrieve_payment_intent.return_value = {"id": "pi_1", "status": "succeeded"}

        order = await payment_service.confirm_payment(str(online_order.id), "pi_1", actor="u-1")

        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.PAID
        assert order.confirmed_at is not None
        assert order.status_events[-1].description == CONFIRMED_BY_CLIENT
        assert order.status_events[-1].actor == "u-1"
        assert len(notifier.updates) == 1

    @pytest.mark.asyncio
    async def test_intent_matched_by_metadata(
        self, payment_service, gateway, repository, make_order
    ):
        order = make_order(payment_method=PaymentMethod.ONLINE)
        repository.require_order.return_value = order
        gateway.retrieve_payment_intent.return_value = {
            "id": "pi_9",
            "status": "succeeded",
            "metadata": {"order_id": str(order.id)},
        }

        confirmed = await payment_service.confirm_payment(str(order.id), "pi_9")

        assert confirmed.payment_intent_id == "pi_9"
        assert confirmed.status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_foreign_intent_is_rejected(
        self, payment_service, gateway, repository, online_order
    ):
        repository.require_order.return_value = online_order
        gateway.retrieve_payment_intent.return_value = {
            "id": "pi_other",
            "status": "succeeded",
            "metadata": {"order_id": "someone-else"},
        }

        with pytest.raises(ValidationFailedError):
            await payment_service.confirm_payment(str(online_order.id), "pi_other")

        assert online_order.payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_incomplete_payment_is_rejected(
        self, payment_service, gateway, repository, online_order, notifier
    ):
        repository.require_order.return_value = online_order
        gateway.retrieve_payment_intent.return_value = {
            "id": "pi_1",
            "status": "requires_payment_method",
        }

        with pytest.raises(PaymentNotCompletedError) as exc_info:
            await payment_service.confirm_payment(str(online_order.id), "pi_1")

        assert exc_info.value.context["intent_status"] == "requires_payment_method"
        assert online_order.status == OrderStatus.PENDING
        assert notifier.updates == []

    @pytest.mark.asyncio
    async def test_already_confirmed_order_only_records_payment(
        self, payment_service, gateway, repository, make_order, notifier
    ):
        order = make_order(
            status=OrderStatus.PREPARING,
            payment_method=PaymentMethod.ONLINE,
            payment_intent_id="pi_1",
        )
        repository.require_order.return_value = order
        gateway.retrieve_payment_intent.return_value = {"id": "pi_1", "status": "succeeded"}

        confirmed = await payment_service.confirm_payment(str(order.id), "pi_1")

        assert confirmed.status == OrderStatus.PREPARING
        assert confirmed.payment_status == PaymentStatus.PAID
        assert len(confirmed.status_events) == 1
        assert notifier.updates == []

    @pytest.mark.asyncio
    async def test_cancelled_order_cannot_be_confirmed(
        self, payment_service, gateway, repository, make_order
    ):
        order = make_order(status=OrderStatus.CANCELLED, payment_intent_id="pi_1")
        repository.require_order.return_value = order
        gateway.retrieve_payment_intent.return_value = {"id": "pi_1", "status": "succeeded"}

        with pytest.raises(InvalidTransitionError):
            await payment_service.confirm_payment(str(order.id), "pi_1")


# ============================================================================
# Webhooks
# ============================================================================


class TestWebhookVerification:
    """Test signature and payload handling."""

    @pytest.mark.asyncio
    async def test_skipped_without_webhook_secret(self, payment_service, gateway):
        gateway.webhook_secret = None

        outcome = await payment_service.handle_webhook(b"{}", "t=1,v1=abc")

        assert outcome.status == "skipped"
        gateway.construct_webhook_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_signature(self, payment_service, gateway, repository):
        gateway.construct_webhook_event.side_effect = StripeClientError(
            "Webhook signature verification failed", code="INVALID_SIGNATURE"
        )

        with pytest.raises(InvalidWebhookSignatureError):
            await payment_service.handle_webhook(b"{}", "t=1,v1=forged")

        repository.get_order_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_signature_is_invalid(self, payment_service, gateway):
        gateway.construct_webhook_event.side_effect = StripeClientError(
            "Webhook signature verification failed", code="INVALID_SIGNATURE"
        )

        with pytest.raises(InvalidWebhookSignatureError):
            await payment_service.handle_webhook(b"{}", None)

        gateway.construct_webhook_event.assert_called_once_with(b"{}", "")

    @pytest.mark.asyncio
    async def test_invalid_payload(self, payment_service, gateway):
        gateway.construct_webhook_event.side_effect = StripeClientError(
            "Invalid webhook payload", code="INVALID_PAYLOAD"
        )

        with pytest.raises(InvalidWebhookPayloadError):
            await payment_service.handle_webhook(b"not json", "t=1,v1=abc")


class TestWebhookProcessing:
    """Test event application and idempotency."""

    @pytest.mark.asyncio
    async def test_unknown_event_type_changes_nothing(
        self, payment_service, gateway, repository, online_order, notifier
    ):
        gateway.construct_webhook_event.return_value = stripe_event(
            "customer.created", online_order.id
        )

        outcome = await payment_service.handle_webhook(b"{}", "sig")

        assert outcome.status == "ignored"
        assert outcome.to_dict()["received"] is True
        repository.get_order_by_id.assert_not_awaited()
        assert len(online_order.status_events) == 1
        assert notifier.updates == []

    @pytest.mark.asyncio
    async def test_payment_succeeded_confirms_order(
        self, payment_service, gateway, repository, online_order, notifier
    ):
        repository.get_order_by_id.return_value = online_order
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.succeeded", online_order.id
        )

        outcome = await payment_service.handle_webhook(b"{}", "sig")

        assert outcome.status == "processed"
        repository.get_order_by_id.assert_awaited_once_with(
            str(online_order.id), for_update=True
        )
        assert online_order.status == OrderStatus.CONFIRMED
        assert online_order.payment_status == PaymentStatus.PAID
        assert online_order.status_events[-1].description == CONFIRMED_BY_WEBHOOK
        assert len(notifier.updates) == 1

    @pytest.mark.asyncio
    async def test_charge_succeeded_is_handled(
        self, payment_service, gateway, repository, online_order
    ):
        repository.get_order_by_id.return_value = online_order
        gateway.construct_webhook_event.return_value = stripe_event(
            "charge.succeeded", online_order.id, id="ch_1"
        )

        outcome = await payment_service.handle_webhook(b"{}", "sig")

        assert outcome.status == "processed"
        assert online_order.payment_intent_id == "pi_1"
        assert online_order.status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_applied_once(
        self, payment_service, gateway, repository, online_order, notifier
    ):
        repository.get_order_by_id.return_value = online_order
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.succeeded", online_order.id
        )

        first = await payment_service.handle_webhook(b"{}", "sig")
        second = await payment_service.handle_webhook(b"{}", "sig")

        assert first.status == "processed"
        assert second.status == "duplicate"
        assert len(online_order.status_events) == 2
        assert len(notifier.updates) == 1

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_are_applied_once(
        self, payment_service, gateway, repository, online_order, notifier
    ):
        async def slow_lookup(order_id, for_update=False):
            await asyncio.sleep(0.01)
            return online_order

        repository.get_order_by_id.side_effect = slow_lookup
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.succeeded", online_order.id
        )

        outcomes = await asyncio.gather(
            payment_service.handle_webhook(b"{}", "sig"),
            payment_service.handle_webhook(b"{}", "sig"),
        )

        assert sorted(outcome.status for outcome in outcomes) == ["duplicate", "processed"]
        assert len(online_order.status_events) == 2
        assert len(notifier.updates) == 1

    @pytest.mark.asyncio
    async def test_payment_failed_marks_order(
        self, payment_service, gateway, repository, online_order, notifier
    ):
        repository.get_order_by_id.return_value = online_order
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.payment_failed", online_order.id
        )

        outcome = await payment_service.handle_webhook(b"{}", "sig")

        assert outcome.status == "processed"
        assert online_order.payment_status == PaymentStatus.FAILED
        assert online_order.status == OrderStatus.PENDING
        assert online_order.status_events[-1].description == PAYMENT_FAILED
        assert notifier.updates[-1].message == PAYMENT_FAILED

    @pytest.mark.asyncio
    async def test_payment_failed_after_payment_is_ignored(
        self, payment_service, gateway, repository, make_order
    ):
        order = make_order(
            status=OrderStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            payment_intent_id="pi_1",
        )
        repository.get_order_by_id.return_value = order
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.payment_failed", order.id
        )

        outcome = await payment_service.handle_webhook(b"{}", "sig")

        assert outcome.status == "ignored"
        assert order.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_event_without_order_id_is_ignored(self, payment_service, gateway, repository):
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.succeeded", None
        )

        outcome = await payment_service.handle_webhook(b"{}", "sig")

        assert outcome.status == "ignored"
        repository.get_order_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_order_is_ignored(self, payment_service, gateway, repository):
        repository.get_order_by_id.return_value = None
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.succeeded", "0b8f1a5e-0000-4000-8000-000000000000"
        )

        outcome = await payment_service.handle_webhook(b"{}", "sig")

        assert outcome.status == "ignored"

    @pytest.mark.asyncio
    async def test_processing_failure_releases_claim(
        self, payment_service, gateway, repository, online_order, guard
    ):
        repository.get_order_by_id.side_effect = SQLAlchemyError("deadlock detected")
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.succeeded", online_order.id
        )

        failed = await payment_service.handle_webhook(b"{}", "sig")

        assert failed.status == "failed"
        assert await guard.seen("evt_1") is False

        repository.get_order_by_id.side_effect = None
        repository.get_order_by_id.return_value = online_order
        retried = await payment_service.handle_webhook(b"{}", "sig")

        assert retried.status == "processed"

    @pytest.mark.asyncio
    async def test_unreachable_database_is_acknowledged_as_failed(
        self, gateway, guard, notifier, settings, unavailable_scope, online_order
    ):
        service = PaymentService(
            gateway=gateway,
            guard=guard,
            notifier=notifier,
            settings=settings,
            scope=unavailable_scope,
        )
        gateway.construct_webhook_event.return_value = stripe_event(
            "payment_intent.succeeded", online_order.id
        )

        outcome = await service.handle_webhook(b"{}", "sig")

        assert outcome.status == "failed"
        assert await guard.seen("evt_1") is False
        assert notifier.updates == []
