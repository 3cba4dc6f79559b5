"""
Tests for webhook handlers.

Tests cover:
- Handler registry and dispatch
- Payment resolution by reference and echoed payment id
- Transaction, order and refund handlers
"""

from decimal import Decimal

import pytest

from billing.models import InvoiceStatus
from payments.exceptions import ReconciliationConflict
from payments.models import Payment, Refund, RefundSource
from payments.state_machines import EventKind, Gateway, PaymentStatus
from payments.webhooks.classifier import GatewayEvent
from payments.webhooks.handlers import (
    WEBHOOK_HANDLERS,
    dispatch_webhook,
    register_handler,
    resolve_payment,
)


def make_event(**overrides) -> GatewayEvent:
    values = {
        "gateway": Gateway.STRIPE,
        "kind": EventKind.TRANSACTION,
        "event_type": "payment_intent.succeeded",
        "idempotency_key": "evt_handler_1",
        "payload": {},
    }
    values.update(overrides)
    return GatewayEvent(**values)


# =============================================================================
# Registry Tests
# =============================================================================


class TestRegistry:
    """Tests for the handler registry."""

    def test_builtin_handlers_registered(self):
        assert {EventKind.TRANSACTION, EventKind.ORDER, EventKind.REFUND} <= set(WEBHOOK_HANDLERS)

    def test_register_and_dispatch(self, mocker):
        """Should dispatch to a registered handler."""
        mocker.patch.dict(WEBHOOK_HANDLERS)
        calls = []

        @register_handler("custom")
        def handle_custom(event):
            calls.append(event)
            return "handled"

        event = make_event(kind="custom")
        assert dispatch_webhook(event) == "handled"
        assert calls == [event]

    def test_unknown_kind_is_acknowledged(self):
        result = dispatch_webhook(make_event(kind=EventKind.UNKNOWN))

        assert result.success is True
        assert result.data is None


# =============================================================================
# Resolution Tests
# =============================================================================


@pytest.mark.django_db
class TestResolvePayment:
    """Tests for resolve_payment."""

    def test_by_gateway_reference(self, stripe_payment):
        assert resolve_payment(make_event(gateway_reference="pi_test_pending")) == stripe_payment

    def test_falls_back_to_payment_id(self, stripe_payment):
        event = make_event(gateway_reference="pi_unknown", payment_id=str(stripe_payment.id))

        assert resolve_payment(event) == stripe_payment

    def test_payment_id_must_match_gateway(self, stripe_payment):
        event = make_event(gateway=Gateway.PAYMOB, payment_id=str(stripe_payment.id))

        assert resolve_payment(event) is None

    def test_malformed_payment_id(self, db):
        assert resolve_payment(make_event(payment_id="not-a-uuid")) is None


# =============================================================================
# Transaction Handler Tests
# =============================================================================


@pytest.mark.django_db
class TestHandleTransaction:
    """Tests for transaction events."""

    def test_success_completes_payment_and_credits_invoice(self, stripe_payment):
        event = make_event(gateway_reference="pi_test_pending", status=PaymentStatus.COMPLETED)

        result = dispatch_webhook(event)

        assert result.success is True
        stripe_payment.refresh_from_db()
        assert stripe_payment.status == PaymentStatus.COMPLETED
        assert stripe_payment.paid_at is not None
        stripe_payment.invoice.refresh_from_db()
        assert stripe_payment.invoice.status == InvoiceStatus.PAID
        assert stripe_payment.invoice.balance_due == Decimal("0.00")

    def test_failure_records_reason(self, stripe_payment):
        event = make_event(
            gateway_reference="pi_test_pending",
            status=PaymentStatus.FAILED,
            failure_reason="Your card was declined.",
        )

        dispatch_webhook(event)

        stripe_payment.refresh_from_db()
        assert stripe_payment.status == PaymentStatus.FAILED
        assert stripe_payment.failure_reason == "Your card was declined."

    def test_paymob_transaction_id_recorded(self, paymob_payment):
        event = make_event(
            gateway=Gateway.PAYMOB,
            event_type="TRANSACTION",
            gateway_reference="555",
            transaction_id="9001",
            status=PaymentStatus.COMPLETED,
        )

        dispatch_webhook(event)

        paymob_payment.refresh_from_db()
        assert paymob_payment.gateway_transaction_id == "9001"
        assert paymob_payment.status == PaymentStatus.COMPLETED

    def test_unknown_payment_is_acknowledged(self, db):
        result = dispatch_webhook(make_event(gateway_reference="pi_nobody", status=PaymentStatus.COMPLETED))

        assert result.success is True
        assert result.data is None

    def test_out_of_order_status_raises_conflict(self, completed_payment):
        event = make_event(gateway_reference="pi_test_completed", status=PaymentStatus.PENDING)

        with pytest.raises(ReconciliationConflict):
            dispatch_webhook(event)

        completed_payment.refresh_from_db()
        assert completed_payment.status == PaymentStatus.COMPLETED

    def test_event_without_status(self, stripe_payment):
        result = dispatch_webhook(make_event(gateway_reference="pi_test_pending"))

        assert result.data == stripe_payment
        stripe_payment.refresh_from_db()
        assert stripe_payment.status == PaymentStatus.PENDING


@pytest.mark.django_db
class TestHandleOrder:
    """Tests for order events."""

    def test_paid_order_completes_payment(self, paymob_payment):
        event = make_event(
            gateway=Gateway.PAYMOB,
            kind=EventKind.ORDER,
            event_type="ORDER",
            gateway_reference="555",
            status=PaymentStatus.COMPLETED,
        )

        dispatch_webhook(event)

        paymob_payment.refresh_from_db()
        assert paymob_payment.status == PaymentStatus.COMPLETED


# =============================================================================
# Refund Handler Tests
# =============================================================================


@pytest.mark.django_db
class TestHandleRefund:
    """Tests for refund events."""

    @staticmethod
    def paymob_refund(total, key="refund:9001:3000"):
        return make_event(
            gateway=Gateway.PAYMOB,
            kind=EventKind.REFUND,
            event_type="TRANSACTION",
            idempotency_key=key,
            gateway_reference="556",
            transaction_id="9001",
            refund_total=total,
        )

    def test_single_amount_preferred_over_total(self, completed_payment):
        event = make_event(
            kind=EventKind.REFUND,
            gateway_reference="pi_test_completed",
            refund_amount=Decimal("10.00"),
            refund_total=Decimal("90.00"),
        )

        dispatch_webhook(event)

        completed_payment.refresh_from_db()
        assert completed_payment.refunded_amount == Decimal("10.00")

    def test_cumulative_total_applies_only_new_part(self, completed_paymob_payment):
        dispatch_webhook(self.paymob_refund(Decimal("30.00")))
        dispatch_webhook(self.paymob_refund(Decimal("50.00"), key="refund:9001:5000"))

        completed_paymob_payment.refresh_from_db()
        assert completed_paymob_payment.refunded_amount == Decimal("50.00")
        amounts = sorted(completed_paymob_payment.refunds.values_list("amount", flat=True))
        assert amounts == [Decimal("20.00"), Decimal("30.00")]

    def test_cumulative_total_read_fresh_under_lock(self, completed_paymob_payment, mocker):
        """Two handlers holding the same stale payment apply the total once."""
        stale = Payment.objects.get(pk=completed_paymob_payment.pk)
        mocker.patch("payments.webhooks.handlers.resolve_payment", return_value=stale)

        dispatch_webhook(self.paymob_refund(Decimal("30.00")))
        dispatch_webhook(self.paymob_refund(Decimal("30.00")))

        completed_paymob_payment.refresh_from_db()
        assert completed_paymob_payment.refunded_amount == Decimal("30.00")
        assert completed_paymob_payment.refunds.count() == 1
        completed_paymob_payment.invoice.refresh_from_db()
        assert completed_paymob_payment.invoice.paid_amount == Decimal("220.00")

    def test_partial_refund_recorded(self, completed_payment):
        event = make_event(
            kind=EventKind.REFUND,
            event_type="charge.refund.updated",
            gateway_reference="pi_test_completed",
            refund_amount=Decimal("40.00"),
            refund_ref="re_hook_1",
        )

        dispatch_webhook(event)

        completed_payment.refresh_from_db()
        assert completed_payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert completed_payment.refunded_amount == Decimal("40.00")
        refund = Refund.objects.get(gateway_refund_ref="re_hook_1")
        assert refund.source == RefundSource.GATEWAY
        assert refund.success is True
        completed_payment.invoice.refresh_from_db()
        assert completed_payment.invoice.paid_amount == Decimal("60.00")
        assert completed_payment.invoice.status == InvoiceStatus.PARTIALLY_PAID

    def test_same_refund_ref_recorded_once(self, completed_payment):
        event = make_event(
            kind=EventKind.REFUND,
            gateway_reference="pi_test_completed",
            refund_amount=Decimal("40.00"),
            refund_ref="re_hook_1",
        )

        dispatch_webhook(event)
        dispatch_webhook(event)

        completed_payment.refresh_from_db()
        assert completed_payment.refunded_amount == Decimal("40.00")
        assert completed_payment.refunds.count() == 1

    def test_cumulative_total_already_recorded(self, completed_payment):
        """A total no higher than what is recorded adds nothing."""
        event = make_event(
            kind=EventKind.REFUND,
            gateway_reference="pi_test_completed",
            refund_total=Decimal("0.00"),
        )

        dispatch_webhook(event)

        assert completed_payment.refunds.count() == 0

    def test_full_refund_reported_by_paymob(self, completed_paymob_payment):
        event = make_event(
            gateway=Gateway.PAYMOB,
            kind=EventKind.REFUND,
            event_type="TRANSACTION",
            gateway_reference="556",
            transaction_id="9001",
            refund_total=Decimal("250.00"),
        )

        dispatch_webhook(event)

        completed_paymob_payment.refresh_from_db()
        assert completed_paymob_payment.status == PaymentStatus.REFUNDED
        completed_paymob_payment.invoice.refresh_from_db()
        assert completed_paymob_payment.invoice.status == InvoiceStatus.SENT

    def test_refund_of_unsettled_payment_conflicts(self, stripe_payment):
        event = make_event(
            kind=EventKind.REFUND,
            gateway_reference="pi_test_pending",
            refund_amount=Decimal("10.00"),
        )

        with pytest.raises(ReconciliationConflict):
            dispatch_webhook(event)
