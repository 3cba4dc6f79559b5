"""
Tests for PaymentOrchestrator.

Tests cover:
- Request validation (no Payment created on failure)
- Payment creation per gateway and gateway failure handling
- Confirm, cancel and manual confirmation
- Status sync
- Bulk status and payment history lookups
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from billing.models import InvoiceStatus
from billing.tests.factories import AccountFactory, InvoiceFactory
from payments.adapters import CancelOutcome, CancelResult, GatewayPaymentResult, IntentRef
from payments.exceptions import (
    GatewayRejectedError,
    GatewayUnavailableError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from payments.models import Payment
from payments.services import PaymentOrchestrator, ProcessPaymentParams
from payments.state_machines import Gateway, PaymentMethod, PaymentStatus
from payments.tests.factories import PaymentFactory


BILLING = {
    "email": "payer@example.com",
    "first_name": "Mona",
    "last_name": "Adel",
    "phone_number": "+201000000000",
}


@pytest.fixture
def make_params(invoice):
    """Build ProcessPaymentParams for the default invoice."""

    def _create(**overrides) -> ProcessPaymentParams:
        values = {
            "invoice_id": invoice.id,
            "account_id": invoice.account_id,
            "amount": "100.00",
            "currency": "usd",
            "method": PaymentMethod.STRIPE,
        }
        values.update(overrides)
        return ProcessPaymentParams(**values)

    return _create


# =============================================================================
# Validation Tests
# =============================================================================


@pytest.mark.django_db
class TestValidation:
    """Tests for process_payment validation."""

    def test_amount_is_normalized(self, make_params):
        params = make_params(amount="42.5")

        assert params.amount == Decimal("42.5")
        assert params.currency == "USD"

    def test_non_numeric_amount(self, make_params):
        with pytest.raises(PaymentValidationError):
            make_params(amount="lots")

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"amount": "0"}, "greater than zero"),
            ({"amount": "-1"}, "greater than zero"),
            ({"amount": "100.01"}, "exceeds the invoice balance"),
            ({"method": "bitcoin"}, "Unsupported payment method"),
            ({"currency": "EGP"}, "Currency does not match"),
            ({"account_id": uuid.uuid4()}, "Account not found"),
            ({"invoice_id": uuid.uuid4()}, "Invoice not found"),
        ],
    )
    def test_invalid_requests(self, make_params, overrides, message):
        """Invalid requests raise before anything is written."""
        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentOrchestrator.process_payment(make_params(**overrides))

        assert message in exc_info.value.message
        assert Payment.objects.count() == 0

    def test_inactive_account(self, make_params, account):
        account.is_active = False
        account.save()

        with pytest.raises(PaymentValidationError, match="not active"):
            PaymentOrchestrator.process_payment(make_params())

    def test_invoice_of_other_account(self, make_params):
        other = AccountFactory()

        with pytest.raises(PaymentValidationError, match="does not belong"):
            PaymentOrchestrator.process_payment(make_params(account_id=other.id))

    @pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.CANCELLED])
    def test_closed_invoice(self, make_params, invoice, status):
        invoice.status = status
        invoice.save()

        with pytest.raises(PaymentValidationError, match="cannot be paid"):
            PaymentOrchestrator.process_payment(make_params())

    def test_paymob_requires_billing_data(self, egp_invoice):
        params = ProcessPaymentParams(
            invoice_id=egp_invoice.id,
            account_id=egp_invoice.account_id,
            amount="250.00",
            currency="EGP",
            method=PaymentMethod.PAYMOB,
            billing_data={"email": "payer@example.com"},
        )

        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentOrchestrator.process_payment(params)

        assert exc_info.value.details["missing_fields"] == ["first_name", "last_name", "phone_number"]

    def test_vodafone_requires_wallet(self, egp_invoice):
        params = ProcessPaymentParams(
            invoice_id=egp_invoice.id,
            account_id=egp_invoice.account_id,
            amount="250.00",
            currency="EGP",
            method=PaymentMethod.VODAFONE_CASH,
            billing_data=BILLING,
        )

        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentOrchestrator.process_payment(params)

        assert exc_info.value.details["missing_fields"] == ["wallet_number"]


# =============================================================================
# Creation Tests
# =============================================================================


@pytest.mark.django_db
class TestProcessPayment:
    """Tests for process_payment."""

    def test_stripe_payment(self, make_params, mock_stripe_gateway):
        result = PaymentOrchestrator.process_payment(make_params())

        payment = result.payment
        assert payment.status == PaymentStatus.PENDING
        assert payment.gateway == Gateway.STRIPE
        assert payment.gateway_reference == "pi_new_123"
        assert payment.gateway_data["client_secret"] == "pi_new_123_secret"
        assert result.provider_payload["publishable_key"] == "pk_test_123"

    def test_payment_exists_before_gateway_call(self, make_params, mock_stripe_gateway):
        def create(params):
            assert Payment.objects.filter(id=params.payment_id, status=PaymentStatus.PENDING).exists()
            return mock_stripe_gateway.create.return_value

        mock_stripe_gateway.create.side_effect = create

        PaymentOrchestrator.process_payment(make_params())

    def test_gateway_params(self, make_params, invoice, mock_stripe_gateway):
        PaymentOrchestrator.process_payment(make_params(return_url="https://shop.test/done"))

        params = mock_stripe_gateway.create.call_args.args[0]
        assert params.amount == Decimal("100.00")
        assert params.currency == "USD"
        assert params.description == f"Invoice {invoice.number}"
        assert params.return_url == "https://shop.test/done"

    def test_paymob_payment(self, egp_invoice, mock_paymob_gateway):
        result = PaymentOrchestrator.process_payment(
            ProcessPaymentParams(
                invoice_id=egp_invoice.id,
                account_id=egp_invoice.account_id,
                amount="250.00",
                currency="EGP",
                method=PaymentMethod.PAYMOB,
                billing_data=BILLING,
            )
        )

        assert result.payment.gateway == Gateway.PAYMOB
        assert result.payment.gateway_reference == "555"
        assert result.provider_payload["redirect_url"].startswith("https://paymob.test/")
        params = mock_paymob_gateway.create.call_args.args[0]
        assert params.billing_data.first_name == "Mona"

    def test_bank_transfer_uses_manual_adapter(self, make_params):
        result = PaymentOrchestrator.process_payment(make_params(method=PaymentMethod.BANK_TRANSFER))

        assert result.payment.gateway == Gateway.MANUAL
        assert result.payment.gateway_reference.startswith("BT-")
        assert "instructions" in result.provider_payload

    def test_partial_amount(self, make_params, mock_stripe_gateway):
        result = PaymentOrchestrator.process_payment(make_params(amount="40.00"))

        assert result.payment.amount == Decimal("40.00")

    def test_immediately_settled_payment_is_reconciled(self, make_params, invoice, mock_stripe_gateway):
        mock_stripe_gateway.create.return_value = GatewayPaymentResult(
            ref=IntentRef("pi_instant"),
            status=PaymentStatus.COMPLETED,
            provider_payload={},
            provider_status="succeeded",
        )

        result = PaymentOrchestrator.process_payment(make_params())

        assert result.payment.status == PaymentStatus.COMPLETED
        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.PAID

    def test_gateway_error_marks_payment_failed(self, make_params, mock_stripe_gateway):
        mock_stripe_gateway.create.side_effect = GatewayRejectedError(
            "Your card was declined.", error_code="CARD_DECLINED", gateway="stripe"
        )

        with pytest.raises(GatewayRejectedError):
            PaymentOrchestrator.process_payment(make_params())

        payment = Payment.objects.get()
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "CARD_DECLINED: Your card was declined."

    def test_failed_payment_does_not_block_retry(self, make_params, mock_stripe_gateway):
        mock_stripe_gateway.create.side_effect = GatewayUnavailableError("down", gateway="stripe")
        with pytest.raises(GatewayUnavailableError):
            PaymentOrchestrator.process_payment(make_params())

        mock_stripe_gateway.create.side_effect = None
        result = PaymentOrchestrator.process_payment(make_params())

        assert result.payment.status == PaymentStatus.PENDING
        assert Payment.objects.count() == 2


# =============================================================================
# Confirm / Cancel Tests
# =============================================================================


@pytest.mark.django_db
class TestConfirmPayment:
    """Tests for confirm_payment."""

    def test_confirm_completes_payment(self, stripe_payment, mock_stripe_gateway):
        payment = PaymentOrchestrator.confirm_payment(stripe_payment.id, {"payment_method": "pm_card_visa"})

        assert payment.status == PaymentStatus.COMPLETED
        mock_stripe_gateway.confirm.assert_called_once_with(
            IntentRef("pi_test_pending"), {"payment_method": "pm_card_visa"}
        )

    def test_confirm_not_supported_for_paymob(self, paymob_payment, mock_paymob_gateway):
        with pytest.raises(PaymentValidationError, match="do not need confirmation"):
            PaymentOrchestrator.confirm_payment(paymob_payment.id)

    def test_confirm_closed_payment(self, completed_payment, mock_stripe_gateway):
        with pytest.raises(PaymentValidationError):
            PaymentOrchestrator.confirm_payment(completed_payment.id)

    def test_confirm_unknown_payment(self, db):
        with pytest.raises(PaymentNotFoundError):
            PaymentOrchestrator.confirm_payment(uuid.uuid4())

    def test_confirm_gateway_error_leaves_payment(self, stripe_payment, mock_stripe_gateway):
        mock_stripe_gateway.confirm.side_effect = GatewayUnavailableError("down", gateway="stripe")

        with pytest.raises(GatewayUnavailableError):
            PaymentOrchestrator.confirm_payment(stripe_payment.id)

        stripe_payment.refresh_from_db()
        assert stripe_payment.status == PaymentStatus.PENDING


@pytest.mark.django_db
class TestCancelPayment:
    """Tests for cancel_payment."""

    def test_cancel_fails_payment(self, stripe_payment, mock_stripe_gateway):
        result = PaymentOrchestrator.cancel_payment(stripe_payment.id, reason="Changed my mind")

        assert result.gateway_outcome == CancelOutcome.CANCELLED
        assert result.payment.status == PaymentStatus.FAILED
        assert result.payment.failure_reason == "Cancelled: Changed my mind"

    def test_default_reason(self, stripe_payment, mock_stripe_gateway):
        result = PaymentOrchestrator.cancel_payment(stripe_payment.id)

        assert result.payment.failure_reason == "Cancelled: requested by client"

    def test_gateway_failure_still_fails_locally(self, stripe_payment, mock_stripe_gateway):
        mock_stripe_gateway.cancel.return_value = CancelResult(
            outcome=CancelOutcome.FAILED, message="Stripe is unavailable"
        )

        result = PaymentOrchestrator.cancel_payment(stripe_payment.id)

        assert result.gateway_outcome == CancelOutcome.FAILED
        assert result.message == "Stripe is unavailable"
        assert result.payment.status == PaymentStatus.FAILED

    def test_already_settled_syncs_instead(self, stripe_payment, mock_stripe_gateway):
        mock_stripe_gateway.cancel.return_value = CancelResult(outcome=CancelOutcome.ALREADY_SETTLED)
        mock_stripe_gateway.get_status.return_value = PaymentStatus.COMPLETED

        result = PaymentOrchestrator.cancel_payment(stripe_payment.id)

        assert result.payment.status == PaymentStatus.COMPLETED

    def test_cancel_closed_payment(self, completed_payment, mock_stripe_gateway):
        with pytest.raises(PaymentValidationError, match="cannot be cancelled"):
            PaymentOrchestrator.cancel_payment(completed_payment.id)

        mock_stripe_gateway.cancel.assert_not_called()


# =============================================================================
# Manual Confirmation Tests
# =============================================================================


@pytest.mark.django_db
class TestConfirmManualPayment:
    """Tests for confirm_manual_payment."""

    def test_completes_and_credits_invoice(self, bank_transfer_payment, staff_user):
        payment = PaymentOrchestrator.confirm_manual_payment(
            bank_transfer_payment.id,
            transaction_reference="FT-2024-0001",
            confirmed_by=staff_user,
        )

        assert payment.status == PaymentStatus.COMPLETED
        assert payment.paid_at is not None
        assert payment.gateway_transaction_id == "FT-2024-0001"
        payment.invoice.refresh_from_db()
        assert payment.invoice.status == InvoiceStatus.PAID
        assert payment.invoice.paid_amount == Decimal("250.00")

    def test_records_confirmation_in_metadata(self, bank_transfer_payment, staff_user):
        """Who confirmed, the reference and the notes are kept with the payment."""
        PaymentOrchestrator.confirm_manual_payment(
            bank_transfer_payment.id,
            transaction_reference="FT-2024-0001",
            confirmed_by=staff_user,
            notes="Matched on statement",
        )

        stored = Payment.objects.get(pk=bank_transfer_payment.pk)
        confirmation = stored.metadata["manual_confirmation"]
        assert confirmation["transaction_reference"] == "FT-2024-0001"
        assert confirmation["confirmed_by"] == str(staff_user.pk)
        assert confirmation["confirmed_by_username"] == staff_user.username
        assert confirmation["notes"] == "Matched on statement"
        assert confirmation["confirmed_at"]

    def test_paid_at_is_honored(self, bank_transfer_payment, staff_user):
        paid_at = timezone.now() - timedelta(days=2)

        payment = PaymentOrchestrator.confirm_manual_payment(
            bank_transfer_payment.id,
            transaction_reference="FT-2024-0001",
            confirmed_by=staff_user,
            paid_at=paid_at,
        )

        assert Payment.objects.get(pk=payment.pk).paid_at == paid_at

    def test_gateway_payment_rejected(self, stripe_payment, staff_user):
        """Card payments are confirmed by their gateway, never by staff."""
        with pytest.raises(PaymentValidationError, match="confirmed by their gateway"):
            PaymentOrchestrator.confirm_manual_payment(
                stripe_payment.id,
                transaction_reference="FT-2024-0001",
                confirmed_by=staff_user,
            )

        stripe_payment.refresh_from_db()
        assert stripe_payment.status == PaymentStatus.PENDING

    def test_confirmed_twice_credits_once(self, bank_transfer_payment, staff_user):
        PaymentOrchestrator.confirm_manual_payment(
            bank_transfer_payment.id,
            transaction_reference="FT-2024-0001",
            confirmed_by=staff_user,
        )

        with pytest.raises(PaymentValidationError, match="already completed"):
            PaymentOrchestrator.confirm_manual_payment(
                bank_transfer_payment.id,
                transaction_reference="FT-2024-0002",
                confirmed_by=staff_user,
            )

        stored = Payment.objects.get(pk=bank_transfer_payment.pk)
        assert stored.gateway_transaction_id == "FT-2024-0001"
        stored.invoice.refresh_from_db()
        assert stored.invoice.paid_amount == Decimal("250.00")

    def test_unknown_payment(self, staff_user):
        with pytest.raises(PaymentNotFoundError):
            PaymentOrchestrator.confirm_manual_payment(
                uuid.uuid4(),
                transaction_reference="FT-2024-0001",
                confirmed_by=staff_user,
            )


# =============================================================================
# Lookup / Sync Tests
# =============================================================================


@pytest.mark.django_db
class TestGetAndSync:
    """Tests for get_payment and sync_payment."""

    def test_get_payment(self, stripe_payment):
        assert PaymentOrchestrator.get_payment(stripe_payment.id) == stripe_payment

    def test_get_unknown_payment(self, db):
        with pytest.raises(PaymentNotFoundError) as exc_info:
            PaymentOrchestrator.get_payment(uuid.uuid4())

        assert exc_info.value.error_code == "PAYMENT_NOT_FOUND"

    def test_sync_applies_gateway_status(self, stripe_payment, mock_stripe_gateway):
        mock_stripe_gateway.get_status.return_value = PaymentStatus.PROCESSING

        payment = PaymentOrchestrator.get_payment(stripe_payment.id, sync=True)

        assert payment.status == PaymentStatus.PROCESSING
        mock_stripe_gateway.get_status.assert_called_once_with(IntentRef("pi_test_pending"), Decimal("100.00"))

    def test_sync_gateway_error_returns_stored(self, stripe_payment, mock_stripe_gateway):
        mock_stripe_gateway.get_status.side_effect = GatewayUnavailableError("down", gateway="stripe")

        payment = PaymentOrchestrator.get_payment(stripe_payment.id, sync=True)

        assert payment.status == PaymentStatus.PENDING

    def test_sync_conflict_returns_stored(self, completed_payment, mock_stripe_gateway):
        mock_stripe_gateway.get_status.return_value = PaymentStatus.PENDING

        payment = PaymentOrchestrator.sync_payment(completed_payment)

        assert payment.status == PaymentStatus.COMPLETED

    @pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.REFUNDED])
    def test_sync_skips_terminal(self, invoice, status, mock_stripe_gateway):
        payment = PaymentFactory(invoice=invoice, status=status)

        PaymentOrchestrator.sync_payment(payment)

        mock_stripe_gateway.get_status.assert_not_called()

    def test_find_by_gateway_reference(self, stripe_payment):
        assert PaymentOrchestrator.find_by_gateway_reference(Gateway.STRIPE, "pi_test_pending") == stripe_payment
        assert PaymentOrchestrator.find_by_gateway_reference(Gateway.PAYMOB, "pi_test_pending") is None
        assert PaymentOrchestrator.find_by_gateway_reference(Gateway.STRIPE, "") is None


@pytest.mark.django_db
class TestBulkStatus:
    """Tests for bulk_status."""

    def test_found_and_not_found(self, stripe_payment, completed_payment):
        missing = str(uuid.uuid4())

        result = PaymentOrchestrator.bulk_status(
            [str(stripe_payment.id), str(completed_payment.id), missing, "garbage"]
        )

        assert set(result.payments) == {stripe_payment, completed_payment}
        assert result.not_found == [missing, "garbage"]

    def test_duplicates_collapsed(self, stripe_payment):
        result = PaymentOrchestrator.bulk_status([str(stripe_payment.id)] * 3)

        assert result.payments == [stripe_payment]

    def test_empty(self, db):
        with pytest.raises(PaymentValidationError):
            PaymentOrchestrator.bulk_status([])

    def test_too_many(self, db, settings):
        settings.PAYMENT_BULK_STATUS_LIMIT = 2

        with pytest.raises(PaymentValidationError):
            PaymentOrchestrator.bulk_status([str(uuid.uuid4()) for _ in range(3)])


@pytest.mark.django_db
class TestPaymentHistory:
    """Tests for payment_history."""

    def test_newest_first_for_account(self, account):
        invoice = InvoiceFactory(account=account, total=Decimal("500.00"))
        payments = [PaymentFactory(invoice=invoice, amount=Decimal("10.00")) for _ in range(3)]
        for offset, payment in enumerate(payments):
            Payment.objects.filter(pk=payment.pk).update(
                created_at=payment.created_at.replace(microsecond=0) - timedelta(minutes=offset)
            )
        PaymentFactory()

        history = PaymentOrchestrator.payment_history(account.id)

        assert history == payments

    def test_limit_is_capped(self, account, settings):
        invoice = InvoiceFactory(account=account, total=Decimal("500.00"))
        for _ in range(3):
            PaymentFactory(invoice=invoice, amount=Decimal("10.00"))

        assert len(PaymentOrchestrator.payment_history(account.id, limit=2)) == 2
        assert len(PaymentOrchestrator.payment_history(account.id, limit=0)) == 1

    def test_invalid_account_id(self, db):
        with pytest.raises(PaymentValidationError):
            PaymentOrchestrator.payment_history("nope")
