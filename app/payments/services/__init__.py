"""
Payment services for coordinating payment operations.

This module provides:
- PaymentOrchestrator: Entry point for payment creation, confirm, cancel and lookups
- Reconciler: Applies gateway-reported statuses to Payment and Invoice
- RefundManager: Validates and executes refunds

Usage:
    from payments.services import PaymentOrchestrator, ProcessPaymentParams

    result = PaymentOrchestrator.process_payment(
        ProcessPaymentParams(
            invoice_id=invoice.id,
            account_id=account.id,
            amount=Decimal("100.00"),
            currency="USD",
            method="stripe",
        )
    )

    # Create a refund
    from payments.services import RefundManager

    result = RefundManager.create_refund(payment_id, amount=Decimal("25.00"))
"""

from payments.services.payment_orchestrator import (
    BulkStatusResult,
    CancelPaymentResult,
    PaymentOrchestrator,
    PaymentResult,
    ProcessPaymentParams,
)
from payments.services.reconciler import ReconcileResult, Reconciler
from payments.services.refund_manager import RefundManager, RefundResult

__all__ = [
    "BulkStatusResult",
    "CancelPaymentResult",
    "PaymentOrchestrator",
    "PaymentResult",
    "ProcessPaymentParams",
    "ReconcileResult",
    "Reconciler",
    "RefundManager",
    "RefundResult",
]
