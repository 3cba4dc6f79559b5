"""
Ledger - invoice paid-amount and balance tracking.

Public API:
    Service:
        invoice_ledger - Singleton instance of InvoiceLedger
        InvoiceLedger - Class with apply_payment / reverse_payment

    Types:
        LedgerUpdate - Before/after snapshot of a balance change

    Exceptions:
        LedgerError - Base exception for ledger operations
        InvoiceNotFound - Invoice lookup failures
        InvalidLedgerAmount - Non-positive amounts

Usage:
    from payments.ledger import invoice_ledger

    with transaction.atomic():
        updated = Payment.objects.filter(id=payment.id, status=previous).update(...)
        if updated == 1:
            invoice_ledger.apply_payment(payment.invoice_id, payment.amount)
"""

from .exceptions import InvalidLedgerAmount, InvoiceNotFound, LedgerError
from .services import InvoiceLedger, compute_balance_due, derive_status, invoice_ledger
from .types import LedgerUpdate

__all__ = [
    "InvoiceLedger",
    "InvalidLedgerAmount",
    "InvoiceNotFound",
    "LedgerError",
    "LedgerUpdate",
    "compute_balance_due",
    "derive_status",
    "invoice_ledger",
]
