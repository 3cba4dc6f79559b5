"""
Tests for the Stripe adapter.

Tests cover:
- Idempotency key generation
- PaymentIntent create/confirm/cancel/retrieve
- Refund creation
- Status mapping
- Error translation for each exception type
"""

import uuid
from decimal import Decimal

import pytest

from payments.adapters import (
    CancelOutcome,
    IdempotencyKeyGenerator,
    IntentRef,
    StripeAdapter,
)
from payments.exceptions import (
    GatewayNotFoundError,
    GatewayRejectedError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from payments.state_machines import PaymentStatus


@pytest.fixture
def adapter():
    return StripeAdapter()


# =============================================================================
# IdempotencyKeyGenerator Tests
# =============================================================================


class TestIdempotencyKeyGenerator:
    """Tests for idempotency key generation."""

    def test_key_format(self):
        """Should produce operation:entity:attempt:hash."""
        entity_id = uuid.uuid4()
        key = IdempotencyKeyGenerator.generate("create_intent", entity_id)

        operation, entity, attempt, short_hash = key.split(":")
        assert operation == "create_intent"
        assert entity == str(entity_id)
        assert attempt == "1"
        assert len(short_hash) == 8

    def test_same_input_same_key(self):
        """Should be deterministic for retries of the same operation."""
        entity_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("refund", entity_id) == (
            IdempotencyKeyGenerator.generate("refund", entity_id)
        )

    def test_attempt_changes_key(self):
        """Should produce a new key for a new attempt."""
        entity_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("refund", entity_id, attempt=1) != (
            IdempotencyKeyGenerator.generate("refund", entity_id, attempt=2)
        )


# =============================================================================
# Create Tests
# =============================================================================


class TestCreate:
    """Tests for StripeAdapter.create."""

    def test_create_returns_intent_ref_and_client_secret(
        self, adapter, make_params, mock_stripe_payment_intent
    ):
        """Should create an intent and return its reference and client secret."""
        result = adapter.create(make_params())

        assert result.ref == IntentRef(intent_id="pi_test123456")
        assert result.status == PaymentStatus.PENDING
        assert result.provider_payload == {
            "client_secret": "pi_test123456_secret_abc123",
            "publishable_key": "pk_test_123",
        }
        assert result.provider_status == "requires_payment_method"

    def test_create_sends_minor_units_and_metadata(
        self, adapter, make_params, payment_id, mock_stripe_payment_intent
    ):
        """Should send the amount in cents, lowercase currency and our ids."""
        params = make_params(description="Invoice INV-1")

        adapter.create(params)

        kwargs = mock_stripe_payment_intent.create.call_args.kwargs
        assert kwargs["amount"] == 12550
        assert kwargs["currency"] == "usd"
        assert kwargs["metadata"]["payment_id"] == str(payment_id)
        assert kwargs["description"] == "Invoice INV-1"
        assert kwargs["idempotency_key"].startswith(f"create_intent:{payment_id}:1:")

    def test_create_card_declined(self, adapter, make_params, mock_stripe_payment_intent, card_error):
        """Should translate a CardError to GatewayRejectedError."""
        mock_stripe_payment_intent.create.side_effect = card_error

        with pytest.raises(GatewayRejectedError) as exc_info:
            adapter.create(make_params())

        assert exc_info.value.error_code == "CARD_DECLINED"
        assert exc_info.value.gateway == "stripe"


# =============================================================================
# Confirm / Cancel / Status Tests
# =============================================================================


class TestConfirm:
    """Tests for StripeAdapter.confirm."""

    def test_confirm_maps_status(self, adapter, mock_stripe_payment_intent):
        """Should confirm the intent and return the canonical status."""
        status = adapter.confirm(
            IntentRef("pi_test123456"),
            {"payment_method": "pm_card_visa", "return_url": "https://shop.test/done"},
        )

        assert status == PaymentStatus.COMPLETED
        mock_stripe_payment_intent.confirm.assert_called_once_with(
            "pi_test123456",
            payment_method="pm_card_visa",
            return_url="https://shop.test/done",
        )

    def test_confirm_requires_action_is_pending(
        self, adapter, mock_stripe_payment_intent, mock_payment_intent
    ):
        """3-D Secure challenges leave the payment pending."""
        mock_stripe_payment_intent.confirm.return_value = mock_payment_intent(status="requires_action")

        assert adapter.confirm(IntentRef("pi_test123456")) == PaymentStatus.PENDING


class TestCancel:
    """Tests for StripeAdapter.cancel."""

    def test_cancel_success(self, adapter, mock_stripe_payment_intent):
        """Should report CANCELLED when Stripe cancels the intent."""
        result = adapter.cancel(IntentRef("pi_test123456"))

        assert result.outcome == CancelOutcome.CANCELLED
        mock_stripe_payment_intent.cancel.assert_called_once_with(
            "pi_test123456", cancellation_reason="requested_by_customer"
        )

    def test_cancel_missing_intent(self, adapter, mock_stripe_payment_intent, invalid_request_error):
        """Should report NOT_FOUND for resource_missing."""
        mock_stripe_payment_intent.cancel.side_effect = invalid_request_error()

        assert adapter.cancel(IntentRef("pi_missing")).outcome == CancelOutcome.NOT_FOUND

    def test_cancel_settled_intent(self, adapter, mock_stripe_payment_intent, invalid_request_error):
        """Should report ALREADY_SETTLED for an intent in an unexpected state."""
        mock_stripe_payment_intent.cancel.side_effect = invalid_request_error(
            message="This PaymentIntent's status is succeeded",
            code="payment_intent_unexpected_state",
        )

        assert adapter.cancel(IntentRef("pi_test123456")).outcome == CancelOutcome.ALREADY_SETTLED

    def test_cancel_network_failure(self, adapter, mock_stripe_payment_intent, api_connection_error):
        """Should report FAILED instead of raising."""
        mock_stripe_payment_intent.cancel.side_effect = api_connection_error()

        result = adapter.cancel(IntentRef("pi_test123456"))

        assert result.outcome == CancelOutcome.FAILED
        assert result.message


class TestGetStatus:
    """Tests for StripeAdapter.get_status."""

    def test_get_status(self, adapter, mock_stripe_payment_intent):
        """Should retrieve the intent and map its status."""
        assert adapter.get_status(IntentRef("pi_test123456")) == PaymentStatus.PROCESSING
        mock_stripe_payment_intent.retrieve.assert_called_once_with("pi_test123456")

    def test_get_status_missing(self, adapter, mock_stripe_payment_intent, invalid_request_error):
        """Should raise GatewayNotFoundError for an unknown intent."""
        mock_stripe_payment_intent.retrieve.side_effect = invalid_request_error()

        with pytest.raises(GatewayNotFoundError):
            adapter.get_status(IntentRef("pi_missing"))


# =============================================================================
# Refund Tests
# =============================================================================


class TestCreateRefund:
    """Tests for StripeAdapter.create_refund."""

    def test_refund_success(self, adapter, mock_stripe_refund):
        """Should create a refund in cents and report success."""
        result = adapter.create_refund(
            IntentRef("pi_test123456"),
            Decimal("50.00"),
            reason="Customer request",
            idempotency_key="refund:abc",
        )

        assert result.success is True
        assert result.refund_ref == "re_test123456"
        mock_stripe_refund.create.assert_called_once_with(
            payment_intent="pi_test123456",
            amount=5000,
            reason="requested_by_customer",
            metadata={"reason": "Customer request"},
            idempotency_key="refund:abc",
        )

    def test_pending_refund_counts_as_accepted(self, adapter, mock_stripe_refund, mock_refund):
        """Stripe settles some refunds asynchronously; pending is accepted."""
        mock_stripe_refund.create.return_value = mock_refund(status="pending")

        assert adapter.create_refund(IntentRef("pi_test123456"), Decimal("50.00")).success is True

    def test_failed_refund(self, adapter, mock_stripe_refund, mock_refund):
        """Should report a failed refund without raising."""
        mock_stripe_refund.create.return_value = mock_refund(status="failed")

        result = adapter.create_refund(IntentRef("pi_test123456"), Decimal("50.00"))

        assert result.success is False
        assert result.error_message == "Refund failed"


# =============================================================================
# Status Mapping Tests
# =============================================================================


class TestMapStatus:
    """Tests for StripeAdapter.map_status."""

    @pytest.mark.parametrize(
        "provider_status,expected",
        [
            ("requires_payment_method", PaymentStatus.PENDING),
            ("requires_confirmation", PaymentStatus.PENDING),
            ("requires_action", PaymentStatus.PENDING),
            ("processing", PaymentStatus.PROCESSING),
            ("succeeded", PaymentStatus.COMPLETED),
            ("canceled", PaymentStatus.FAILED),
        ],
    )
    def test_known_statuses(self, adapter, provider_status, expected):
        assert adapter.map_status(provider_status) == expected

    def test_unknown_status_is_pending(self, adapter):
        """Unknown statuses never settle a payment."""
        assert adapter.map_status("something_new") == PaymentStatus.PENDING


# =============================================================================
# Error Translation Tests
# =============================================================================


class TestErrorTranslation:
    """Tests for Stripe exception translation."""

    def test_rate_limit(self, adapter, mock_stripe_payment_intent, rate_limit_error):
        mock_stripe_payment_intent.retrieve.side_effect = rate_limit_error

        with pytest.raises(GatewayUnavailableError):
            adapter.get_status(IntentRef("pi_test123456"))

    def test_connection_timeout(self, adapter, mock_stripe_payment_intent, api_connection_error):
        mock_stripe_payment_intent.retrieve.side_effect = api_connection_error("Request timed out")

        with pytest.raises(GatewayTimeoutError):
            adapter.get_status(IntentRef("pi_test123456"))

    def test_connection_failure(self, adapter, mock_stripe_payment_intent, api_connection_error):
        mock_stripe_payment_intent.retrieve.side_effect = api_connection_error()

        with pytest.raises(GatewayUnavailableError):
            adapter.get_status(IntentRef("pi_test123456"))

    def test_invalid_request(self, adapter, mock_stripe_payment_intent, invalid_request_error):
        mock_stripe_payment_intent.confirm.side_effect = invalid_request_error(code="parameter_invalid")

        with pytest.raises(GatewayRejectedError):
            adapter.confirm(IntentRef("pi_test123456"))

    def test_authentication_error(self, adapter, make_params, mock_stripe_payment_intent, authentication_error):
        mock_stripe_payment_intent.create.side_effect = authentication_error

        with pytest.raises(GatewayRejectedError) as exc_info:
            adapter.create(make_params())

        assert exc_info.value.error_code == "GATEWAY_REJECTED"

    def test_api_error(self, adapter, mock_stripe_payment_intent, api_error):
        mock_stripe_payment_intent.retrieve.side_effect = api_error

        with pytest.raises(GatewayUnavailableError):
            adapter.get_status(IntentRef("pi_test123456"))
