"""
Ledger-specific exceptions for invoice balance operations.

This module provides a hierarchy of exceptions for ledger operations,
inheriting from the core exception base class for API consistency.

Exception Hierarchy:
    LedgerError (base)
    ├── InvoiceNotFound - Invoice lookup failures
    └── InvalidLedgerAmount - Non-positive or mismatched amounts

Usage:
    from payments.ledger.exceptions import InvoiceNotFound

    raise InvoiceNotFound(
        f"Invoice {invoice_id} not found",
        details={"invoice_id": str(invoice_id)},
    )
"""

from __future__ import annotations

from core.exceptions import BaseApplicationError


class LedgerError(BaseApplicationError):
    """
    Base exception for all ledger operations.

    All ledger-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent API error responses.

    Example:
        try:
            invoice_ledger.apply_payment(invoice.id, payment.amount)
        except LedgerError as e:
            logger.error(f"Ledger operation failed: {e}")
            return Response(e.to_dict(), status=400)
    """

    default_error_code: str = "LEDGER_ERROR"


class InvoiceNotFound(LedgerError):
    """Raised when the invoice being settled does not exist."""

    default_error_code: str = "INVOICE_NOT_FOUND"


class InvalidLedgerAmount(LedgerError):
    """
    Raised when an amount cannot be applied to an invoice.

    Use for:
    - Zero or negative amounts
    """

    default_error_code: str = "INVALID_LEDGER_AMOUNT"


__all__ = [
    "LedgerError",
    "InvoiceNotFound",
    "InvalidLedgerAmount",
]
