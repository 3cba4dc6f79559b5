"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    METHOD_GATEWAYS,
    OPEN_PAYMENT_STATUSES,
    PAYMOB_METHODS,
    REFUNDABLE_PAYMENT_STATUSES,
    EventKind,
    Gateway,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    WebhookEventStatus,
)

__all__ = [
    "EventKind",
    "Gateway",
    "METHOD_GATEWAYS",
    "OPEN_PAYMENT_STATUSES",
    "PAYMOB_METHODS",
    "PaymentMethod",
    "PaymentStatus",
    "REFUNDABLE_PAYMENT_STATUSES",
    "RefundStatus",
    "WebhookEventStatus",
]
