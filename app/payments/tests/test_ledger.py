"""
Tests for the invoice ledger.

Tests cover:
- Pure balance and status derivation
- Applying settled payments
- Reversing refunded amounts
- Error handling
"""

import uuid
from decimal import Decimal

import pytest

from billing.models import InvoiceStatus
from billing.tests.factories import InvoiceFactory
from payments.ledger import (
    InvalidLedgerAmount,
    InvoiceNotFound,
    compute_balance_due,
    derive_status,
    invoice_ledger,
)


# =============================================================================
# Derivation Tests
# =============================================================================


class TestComputeBalanceDue:
    """Tests for compute_balance_due."""

    def test_outstanding(self):
        assert compute_balance_due(Decimal("100.00"), Decimal("40.00")) == Decimal("60.00")

    def test_never_negative(self):
        assert compute_balance_due(Decimal("100.00"), Decimal("120.00")) == Decimal("0.00")


class TestDeriveStatus:
    """Tests for derive_status."""

    @pytest.mark.parametrize(
        "current,paid,expected",
        [
            (InvoiceStatus.SENT, Decimal("100.00"), InvoiceStatus.PAID),
            (InvoiceStatus.SENT, Decimal("30.00"), InvoiceStatus.PARTIALLY_PAID),
            (InvoiceStatus.OVERDUE, Decimal("0.00"), InvoiceStatus.OVERDUE),
            (InvoiceStatus.DRAFT, Decimal("0.00"), InvoiceStatus.DRAFT),
            (InvoiceStatus.CANCELLED, Decimal("100.00"), InvoiceStatus.CANCELLED),
        ],
    )
    def test_status(self, current, paid, expected):
        assert derive_status(current, Decimal("100.00"), paid) == expected


# =============================================================================
# Ledger Service Tests
# =============================================================================


@pytest.mark.django_db
class TestApplyPayment:
    """Tests for InvoiceLedger.apply_payment."""

    def test_partial(self, invoice):
        update = invoice_ledger.apply_payment(invoice.id, Decimal("40.00"))

        assert update.previous_paid_amount == Decimal("0.00")
        assert update.paid_amount == Decimal("40.00")
        assert update.balance_due == Decimal("60.00")
        assert update.status == InvoiceStatus.PARTIALLY_PAID
        assert update.status_changed is True
        invoice.refresh_from_db()
        assert invoice.balance_due == Decimal("60.00")

    def test_settles_invoice(self, invoice):
        invoice_ledger.apply_payment(invoice.id, Decimal("40.00"))
        update = invoice_ledger.apply_payment(invoice.id, Decimal("60.00"))

        assert update.status == InvoiceStatus.PAID
        assert update.balance_due == Decimal("0.00")

    def test_overpayment_clamps_balance(self, invoice):
        update = invoice_ledger.apply_payment(invoice.id, Decimal("150.00"))

        assert update.paid_amount == Decimal("150.00")
        assert update.balance_due == Decimal("0.00")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00")])
    def test_non_positive_amount(self, invoice, amount):
        with pytest.raises(InvalidLedgerAmount):
            invoice_ledger.apply_payment(invoice.id, amount)

    def test_unknown_invoice(self, db):
        with pytest.raises(InvoiceNotFound):
            invoice_ledger.apply_payment(uuid.uuid4(), Decimal("10.00"))


@pytest.mark.django_db
class TestReversePayment:
    """Tests for InvoiceLedger.reverse_payment."""

    @pytest.fixture
    def paid_invoice(self, account):
        return InvoiceFactory(
            account=account,
            total=Decimal("100.00"),
            paid_amount=Decimal("100.00"),
            status=InvoiceStatus.PAID,
        )

    def test_partial_reversal(self, paid_invoice):
        update = invoice_ledger.reverse_payment(paid_invoice.id, Decimal("30.00"))

        assert update.amount == Decimal("-30.00")
        assert update.paid_amount == Decimal("70.00")
        assert update.balance_due == Decimal("30.00")
        assert update.status == InvoiceStatus.PARTIALLY_PAID

    def test_full_reversal_reopens_invoice(self, paid_invoice):
        update = invoice_ledger.reverse_payment(paid_invoice.id, Decimal("100.00"))

        assert update.status == InvoiceStatus.SENT
        assert update.balance_due == Decimal("100.00")

    def test_clamped_at_zero(self, invoice):
        update = invoice_ledger.reverse_payment(invoice.id, Decimal("10.00"))

        assert update.paid_amount == Decimal("0.00")

    def test_cancelled_invoice_keeps_status(self, account):
        invoice = InvoiceFactory(
            account=account,
            total=Decimal("100.00"),
            paid_amount=Decimal("100.00"),
            status=InvoiceStatus.CANCELLED,
        )

        update = invoice_ledger.reverse_payment(invoice.id, Decimal("100.00"))

        assert update.status == InvoiceStatus.CANCELLED
        assert update.paid_amount == Decimal("0.00")

    def test_non_positive_amount(self, paid_invoice):
        with pytest.raises(InvalidLedgerAmount):
            invoice_ledger.reverse_payment(paid_invoice.id, Decimal("0"))
