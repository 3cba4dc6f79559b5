"""
Payment gateway adapters.

All external payment API calls go through these adapters to ensure
consistent error handling, timeouts, idempotency, and observability.
Each adapter normalizes its gateway's status vocabulary into PaymentStatus.

Usage:
    from payments.adapters import CreatePaymentParams, get_adapter_for_method

    adapter = get_adapter_for_method("paymob")
    result = adapter.create(
        CreatePaymentParams(
            payment_id=payment.id,
            invoice_id=invoice.id,
            account_id=account.id,
            amount=Decimal("250.00"),
            currency="EGP",
            method="paymob",
            billing_data=billing,
        )
    )
"""

from payments.adapters.base import GatewayAdapter
from payments.adapters.manual_adapter import ManualAdapter
from payments.adapters.paymob_adapter import PaymobAdapter
from payments.adapters.registry import (
    get_adapter,
    get_adapter_for_method,
    reset_adapters,
    set_adapter,
)
from payments.adapters.stripe_adapter import IdempotencyKeyGenerator, StripeAdapter
from payments.adapters.types import (
    BillingData,
    CancelOutcome,
    CancelResult,
    CreatePaymentParams,
    GatewayPaymentResult,
    GatewayRef,
    GatewayRefundResult,
    IntentRef,
    ManualRef,
    OrderRef,
    from_minor_units,
    to_minor_units,
)

__all__ = [
    "BillingData",
    "CancelOutcome",
    "CancelResult",
    "CreatePaymentParams",
    "GatewayAdapter",
    "GatewayPaymentResult",
    "GatewayRef",
    "GatewayRefundResult",
    "IdempotencyKeyGenerator",
    "IntentRef",
    "ManualAdapter",
    "ManualRef",
    "OrderRef",
    "PaymobAdapter",
    "StripeAdapter",
    "from_minor_units",
    "get_adapter",
    "get_adapter_for_method",
    "reset_adapters",
    "set_adapter",
    "to_minor_units",
]
