"""
Data types for ledger operations.

Types:
    LedgerUpdate: Before/after snapshot of one invoice balance change

Usage:
    from payments.ledger.types import LedgerUpdate

    update = invoice_ledger.apply_payment(invoice.id, Decimal("100.00"))
    if update.status_changed:
        logger.info(f"Invoice moved to {update.status}")
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class LedgerUpdate:
    """
    Result of applying or reversing a payment on an invoice.

    Attributes:
        invoice_id: Invoice that was updated
        amount: Amount applied (positive) or reversed (negative)
        previous_paid_amount: paid_amount before the change
        paid_amount: paid_amount after the change
        balance_due: balance_due after the change
        previous_status: Invoice status before the change
        status: Invoice status after the change
    """

    invoice_id: uuid.UUID
    amount: Decimal
    previous_paid_amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    previous_status: str
    status: str

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.status
