"""
Invoice ledger: the only code path that mutates invoice balances.

Tracks how much of an invoice has been paid. Every change locks the invoice
row, recomputes balance_due and the derived status, and saves only the
ledger fields.

Rules:
    balance_due = max(0, total - paid_amount)
    status = paid            when balance_due <= 0
             partially_paid  when 0 < paid_amount < total
             unchanged       otherwise
    On reversal paid_amount is clamped at 0 and an invoice that drops back
    to nothing paid returns to sent.

Usage:
    from payments.ledger import invoice_ledger

    # Payment settled
    update = invoice_ledger.apply_payment(payment.invoice_id, payment.amount)

    # Refund applied
    update = invoice_ledger.reverse_payment(payment.invoice_id, refund.amount)
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from django.db import transaction

from billing.models import Invoice, InvoiceStatus

from .exceptions import InvalidLedgerAmount, InvoiceNotFound
from .types import LedgerUpdate

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def compute_balance_due(total: Decimal, paid_amount: Decimal) -> Decimal:
    """Outstanding balance, never negative."""
    return max(ZERO, total - paid_amount)


def derive_status(current_status: str, total: Decimal, paid_amount: Decimal) -> str:
    """
    Invoice status implied by its paid amount.

    Draft, overdue and sent invoices keep their status until money arrives;
    cancelled invoices are never reopened.
    """
    if current_status == InvoiceStatus.CANCELLED:
        return current_status
    if compute_balance_due(total, paid_amount) <= 0:
        return InvoiceStatus.PAID
    if ZERO < paid_amount < total:
        return InvoiceStatus.PARTIALLY_PAID
    return current_status


class InvoiceLedger:
    """
    Service class for invoice balance operations.

    Key features:
    - Row lock (select_for_update) on the invoice for every change
    - Atomic update of paid_amount, balance_due and status
    - Before/after snapshot returned for logging and tests

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def _lock_invoice(invoice_id: uuid.UUID) -> Invoice:
        try:
            return Invoice.objects.select_for_update().get(id=invoice_id)
        except Invoice.DoesNotExist:
            raise InvoiceNotFound(
                f"Invoice {invoice_id} not found",
                details={"invoice_id": str(invoice_id)},
            )

    @staticmethod
    def _validate_amount(amount: Decimal) -> Decimal:
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidLedgerAmount(
                "Ledger amount must be positive",
                details={"amount": str(amount)},
            )
        return amount

    @staticmethod
    def _save(
        invoice: Invoice,
        amount: Decimal,
        paid_amount: Decimal,
        status: str,
    ) -> LedgerUpdate:
        previous_paid = invoice.paid_amount
        previous_status = invoice.status

        invoice.paid_amount = paid_amount
        invoice.balance_due = compute_balance_due(invoice.total, paid_amount)
        invoice.status = status
        invoice.save(update_fields=["paid_amount", "balance_due", "status", "updated_at"])

        update = LedgerUpdate(
            invoice_id=invoice.id,
            amount=amount,
            previous_paid_amount=previous_paid,
            paid_amount=invoice.paid_amount,
            balance_due=invoice.balance_due,
            previous_status=previous_status,
            status=invoice.status,
        )
        logger.info(
            "Invoice ledger updated",
            extra={
                "invoice_id": str(invoice.id),
                "amount": str(amount),
                "paid_amount": str(update.paid_amount),
                "balance_due": str(update.balance_due),
                "status": update.status,
            },
        )
        return update

    @staticmethod
    def apply_payment(invoice_id: uuid.UUID, amount: Decimal) -> LedgerUpdate:
        """
        Add a settled payment to the invoice.

        Must be called exactly once per payment, by whoever won the
        conditional status update to COMPLETED.

        Args:
            invoice_id: Invoice being paid
            amount: Settled amount (> 0)

        Returns:
            LedgerUpdate snapshot

        Raises:
            InvoiceNotFound: If the invoice does not exist
            InvalidLedgerAmount: If amount is not positive
        """
        amount = InvoiceLedger._validate_amount(amount)
        with transaction.atomic():
            invoice = InvoiceLedger._lock_invoice(invoice_id)
            paid_amount = invoice.paid_amount + amount
            status = derive_status(invoice.status, invoice.total, paid_amount)
            return InvoiceLedger._save(invoice, amount, paid_amount, status)

    @staticmethod
    def reverse_payment(invoice_id: uuid.UUID, amount: Decimal) -> LedgerUpdate:
        """
        Take a refunded amount back off the invoice.

        paid_amount is clamped at 0. An invoice with nothing paid returns to
        sent; one still partly paid becomes partially_paid.

        Args:
            invoice_id: Invoice the refunded payment settled
            amount: Refunded amount (> 0)

        Returns:
            LedgerUpdate snapshot (amount is negative)
        """
        amount = InvoiceLedger._validate_amount(amount)
        with transaction.atomic():
            invoice = InvoiceLedger._lock_invoice(invoice_id)
            paid_amount = max(ZERO, invoice.paid_amount - amount)

            if invoice.status == InvoiceStatus.CANCELLED:
                status = invoice.status
            elif paid_amount <= 0:
                status = InvoiceStatus.SENT
            elif paid_amount < invoice.total:
                status = InvoiceStatus.PARTIALLY_PAID
            else:
                status = InvoiceStatus.PAID

            return InvoiceLedger._save(invoice, -amount, paid_amount, status)


# Singleton instance for convenience
invoice_ledger = InvoiceLedger()
