"""
Payment domain models.

This module contains all payment-related models:
- Payment: Canonical payment entity tracking the full payment lifecycle
- Refund: Money returned to customers
- WebhookEvent: Gateway webhook idempotency ledger
"""

from payments.models.payment import Payment
from payments.models.refund import Refund, RefundSource
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "Payment",
    "Refund",
    "RefundSource",
    "WebhookEvent",
]
