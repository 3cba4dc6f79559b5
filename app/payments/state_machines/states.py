"""
State enums for payment models.

This module defines all state enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Payment States:
    pending → processing → completed (gateway settles asynchronously)
    pending → completed (gateway settles synchronously)
    pending/processing → failed
    completed → partially_refunded → refunded
    completed → refunded
    partially_refunded → partially_refunded (further partial refund)

Refund States:
    pending → succeeded
    pending → failed

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed (redelivery reprocesses)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment model lifecycle.

    Terminal states: FAILED, REFUNDED
    COMPLETED and PARTIALLY_REFUNDED only move further into refunds.

    State Flow:
        PENDING → PROCESSING → COMPLETED
        PENDING → COMPLETED
        PENDING/PROCESSING → FAILED

    Refund Flow:
        COMPLETED → PARTIALLY_REFUNDED / REFUNDED
        PARTIALLY_REFUNDED → PARTIALLY_REFUNDED / REFUNDED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"


# Payments the gateway has not settled yet
OPEN_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.PENDING,
        PaymentStatus.PROCESSING,
    }
)

REFUNDABLE_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.PARTIALLY_REFUNDED,
    }
)


class PaymentMethod(models.TextChoices):
    """
    Payment methods a client can request.

    Each method is served by exactly one gateway (see METHOD_GATEWAYS).
    """

    STRIPE = "stripe", "Card (Stripe)"
    PAYMOB = "paymob", "Card (Paymob)"
    VODAFONE_CASH = "vodafone_cash", "Vodafone Cash"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"
    CASH = "cash", "Cash"


class Gateway(models.TextChoices):
    """External payment gateways (plus the local manual gateway)."""

    STRIPE = "stripe", "Stripe"
    PAYMOB = "paymob", "Paymob"
    MANUAL = "manual", "Manual"


METHOD_GATEWAYS: dict[str, str] = {
    PaymentMethod.STRIPE: Gateway.STRIPE,
    PaymentMethod.PAYMOB: Gateway.PAYMOB,
    PaymentMethod.VODAFONE_CASH: Gateway.PAYMOB,
    PaymentMethod.BANK_TRANSFER: Gateway.MANUAL,
    PaymentMethod.CASH: Gateway.MANUAL,
}

# Methods that collect billing data for the Paymob payment key
PAYMOB_METHODS = frozenset({PaymentMethod.PAYMOB, PaymentMethod.VODAFONE_CASH})


class RefundStatus(models.TextChoices):
    """
    States for the Refund model lifecycle.

    State Flow:
        PENDING → SUCCEEDED
        PENDING → FAILED
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    Tracks the lifecycle of webhook event processing for idempotency.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class EventKind(models.TextChoices):
    """Classification of an inbound webhook event."""

    TRANSACTION = "transaction", "Transaction"
    ORDER = "order", "Order"
    REFUND = "refund", "Refund"
    UNKNOWN = "unknown", "Unknown"


__all__ = [
    "EventKind",
    "Gateway",
    "METHOD_GATEWAYS",
    "PAYMOB_METHODS",
    "PaymentMethod",
    "PaymentStatus",
    "REFUNDABLE_PAYMENT_STATUSES",
    "RefundStatus",
    "OPEN_PAYMENT_STATUSES",
    "WebhookEventStatus",
]
