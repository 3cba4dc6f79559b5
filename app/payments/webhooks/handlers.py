"""
Webhook event handlers.

This module provides a handler registry keyed by event kind and the
handlers that turn classified gateway events into state changes. Handlers
never touch Payment.status directly: transaction and order events go
through Reconciler.apply_status, refund events through
RefundManager.record_gateway_refund.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    # Register a custom handler
    @register_handler(EventKind.ORDER)
    def handle_order(event: GatewayEvent) -> ServiceResult:
        ...

    # Dispatch a classified event to its handler
    result = dispatch_webhook(event)
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from core.services import ServiceResult

from payments.models import Payment
from payments.services import PaymentOrchestrator, Reconciler, RefundManager
from payments.state_machines import EventKind
from payments.webhooks.classifier import GatewayEvent


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event kinds to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[GatewayEvent], ServiceResult]] = {}


def register_handler(kind: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler(EventKind.TRANSACTION)
        def handle_transaction(event: GatewayEvent) -> ServiceResult:
            ...

    Args:
        kind: The EventKind the handler processes

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Callable[[GatewayEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[kind] = func
        logger.debug(f"Registered webhook handler for {kind}")
        return func

    return decorator


def dispatch_webhook(event: GatewayEvent) -> ServiceResult:
    """
    Dispatch a classified event to the appropriate handler.

    Unknown kinds are logged and acknowledged with success so the gateway
    stops retrying them.

    Args:
        event: The classified GatewayEvent

    Returns:
        ServiceResult from the handler, or success if no handler
    """
    handler = WEBHOOK_HANDLERS.get(event.kind)
    log_context = {
        "gateway": event.gateway,
        "idempotency_key": event.idempotency_key,
        "event_type": event.event_type,
    }

    if not handler:
        logger.info(f"No handler registered for event kind: {event.kind}", extra=log_context)
        return ServiceResult.success(None)

    logger.info(f"Dispatching {event.event_type} ({event.kind}) to handler", extra=log_context)
    return handler(event)


# =============================================================================
# Helpers
# =============================================================================


def resolve_payment(event: GatewayEvent) -> Payment | None:
    """
    Find the payment an event concerns.

    Tries the gateway reference first, then the payment id the gateway
    echoed back from our metadata.
    """
    if event.gateway_reference:
        payment = PaymentOrchestrator.find_by_gateway_reference(
            event.gateway, event.gateway_reference
        )
        if payment is not None:
            return payment

    if event.payment_id:
        try:
            payment_id = uuid.UUID(str(event.payment_id))
        except ValueError:
            return None
        return Payment.objects.filter(pk=payment_id, gateway=event.gateway).first()

    return None


def _payment_not_found(event: GatewayEvent) -> ServiceResult:
    logger.warning(
        "Payment not found for webhook event",
        extra={
            "gateway": event.gateway,
            "idempotency_key": event.idempotency_key,
            "gateway_reference": event.gateway_reference,
            "payment_id": event.payment_id,
        },
    )
    return ServiceResult.success(None)


# =============================================================================
# Status Handlers
# =============================================================================


@register_handler(EventKind.TRANSACTION)
def handle_transaction(event: GatewayEvent) -> ServiceResult:
    """
    Apply the status reported by a transaction event.

    Stripe payment_intent.* and Paymob transaction callbacks land here.
    Raises ReconciliationConflict for an out-of-order status; the ingester
    acknowledges those.
    """
    payment = resolve_payment(event)
    if payment is None:
        return _payment_not_found(event)

    if not event.status:
        logger.info(
            "Transaction event carries no status",
            extra={"payment_id": str(payment.id), "event_type": event.event_type},
        )
        return ServiceResult.success(payment)

    result = Reconciler.apply_status(
        payment,
        event.status,
        reason=event.failure_reason,
        transaction_id=event.transaction_id,
        source=f"webhook:{event.gateway}",
    )
    return ServiceResult.success(result.payment)


@register_handler(EventKind.ORDER)
def handle_order(event: GatewayEvent) -> ServiceResult:
    """Apply the status derived from an order-level callback."""
    payment = resolve_payment(event)
    if payment is None:
        return _payment_not_found(event)

    if not event.status:
        return ServiceResult.success(payment)

    result = Reconciler.apply_status(payment, event.status, source=f"webhook:{event.gateway}")
    return ServiceResult.success(result.payment)


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler(EventKind.REFUND)
def handle_refund(event: GatewayEvent) -> ServiceResult:
    """
    Record a refund made (or confirmed) at the gateway.

    Events carrying a single refund amount are applied as is. Events
    carrying a cumulative total (Paymob) are handed over as the total; the
    refund manager records only the part not yet applied.
    """
    payment = resolve_payment(event)
    if payment is None:
        return _payment_not_found(event)

    result = RefundManager.record_gateway_refund(
        payment,
        amount=event.refund_amount,
        gateway_refund_ref=event.refund_ref,
        reason=f"Refunded at gateway ({event.event_type})",
        refund_total=event.refund_total if event.refund_amount is None else None,
    )

    if event.transaction_id:
        Reconciler.record_transaction_id(payment, event.transaction_id)

    logger.info(
        "Refund event processed",
        extra={
            "payment_id": str(payment.id),
            "refund_ref": event.refund_ref,
            "applied": bool(result and result.applied),
        },
    )
    return ServiceResult.success(result.payment if result else payment)
