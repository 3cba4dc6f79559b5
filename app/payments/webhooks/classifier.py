"""
Webhook event classification.

Turns a verified gateway payload into a GatewayEvent: what kind of event it
is (transaction, order, refund), which payment it concerns, the canonical
status it reports and, for refunds, how much was returned. Handlers only
ever see GatewayEvent, never raw gateway payloads.

Precedence:
    refund       Paymob: is_refunded with refunded_amount_cents > 0
                 Stripe: charge.refunded, charge.refund.*
    transaction  Paymob: id plus a success/pending flag
                 Stripe: payment_intent.*
    order        Paymob: an order object that is not a transaction
    unknown      anything else (acknowledged, not processed)
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from payments.adapters import from_minor_units, get_adapter
from payments.state_machines import EventKind, Gateway


@dataclass(frozen=True)
class GatewayEvent:
    """
    Normalized webhook event.

    Attributes:
        gateway: Gateway that sent the event
        kind: EventKind
        event_type: Gateway event type (Stripe type or Paymob "TRANSACTION")
        idempotency_key: Deduplication key, unique per gateway
        payload: Decoded payload
        gateway_reference: Intent id or order id of the payment
        payment_id: Our payment id echoed back by the gateway (metadata or
            merchant_order_id), used when the reference is unknown
        transaction_id: Settlement/transaction id (Paymob)
        status: Canonical status reported (transaction and order events)
        failure_reason: Gateway failure message, if any
        refund_amount: Amount returned by this refund event
        refund_total: Cumulative amount refunded on the payment
        refund_ref: Gateway refund id
    """

    gateway: str
    kind: str
    event_type: str
    idempotency_key: str
    payload: dict[str, Any]
    gateway_reference: str | None = None
    payment_id: str | None = None
    transaction_id: str | None = None
    status: str | None = None
    failure_reason: str | None = None
    refund_amount: Decimal | None = None
    refund_total: Decimal | None = None
    refund_ref: str | None = None


def payload_hash(payload: dict[str, Any]) -> str:
    """sha256 of the canonical JSON form of a payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _str_or_none(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


# =============================================================================
# Stripe
# =============================================================================


def classify_stripe(payload: dict[str, Any]) -> GatewayEvent:
    """Classify a Stripe event object."""
    event_type = payload.get("type") or ""
    obj = (payload.get("data") or {}).get("object") or {}
    event_id = payload.get("id")
    key = str(event_id) if event_id else payload_hash(payload)
    metadata = obj.get("metadata") or {}

    common = {
        "gateway": Gateway.STRIPE,
        "event_type": event_type,
        "idempotency_key": key,
        "payload": payload,
    }

    if event_type == "charge.refunded":
        refunds = (obj.get("refunds") or {}).get("data") or []
        return GatewayEvent(
            kind=EventKind.REFUND,
            gateway_reference=_str_or_none(obj.get("payment_intent")),
            payment_id=_str_or_none(metadata.get("payment_id")),
            refund_total=from_minor_units(obj.get("amount_refunded") or 0),
            refund_ref=_str_or_none(refunds[0].get("id")) if refunds else None,
            **common,
        )

    if event_type.startswith("charge.refund."):
        succeeded = obj.get("status") == "succeeded"
        return GatewayEvent(
            kind=EventKind.REFUND,
            gateway_reference=_str_or_none(obj.get("payment_intent")),
            payment_id=_str_or_none(metadata.get("payment_id")),
            refund_amount=from_minor_units(obj.get("amount") or 0) if succeeded else None,
            refund_ref=_str_or_none(obj.get("id")),
            **common,
        )

    if event_type.startswith("payment_intent."):
        last_error = obj.get("last_payment_error") or {}
        failure_reason = last_error.get("message") or obj.get("cancellation_reason")
        return GatewayEvent(
            kind=EventKind.TRANSACTION,
            gateway_reference=_str_or_none(obj.get("id")),
            payment_id=_str_or_none(metadata.get("payment_id")),
            status=get_adapter(Gateway.STRIPE).map_status(obj.get("status")),
            failure_reason=_str_or_none(failure_reason),
            **common,
        )

    return GatewayEvent(kind=EventKind.UNKNOWN, **common)


# =============================================================================
# Paymob
# =============================================================================


def _is_paymob_refund(obj: dict[str, Any]) -> bool:
    return bool(obj.get("is_refunded")) and int(obj.get("refunded_amount_cents") or 0) > 0


def _is_paymob_transaction(obj: dict[str, Any]) -> bool:
    return obj.get("id") is not None and ("success" in obj or "pending" in obj)


def classify_paymob(payload: dict[str, Any]) -> GatewayEvent:
    """Classify a Paymob callback (``{"type": ..., "obj": {...}}`` or a bare object)."""
    event_type = str(payload.get("type") or "TRANSACTION")
    obj = payload.get("obj") if isinstance(payload.get("obj"), dict) else payload
    order = obj.get("order") if isinstance(obj.get("order"), dict) else {}
    adapter = get_adapter(Gateway.PAYMOB)

    common = {
        "gateway": Gateway.PAYMOB,
        "event_type": event_type,
        "payload": payload,
    }

    if _is_paymob_refund(obj):
        transaction_id = obj.get("id")
        child = bool(obj.get("has_parent_transaction"))
        return GatewayEvent(
            kind=EventKind.REFUND,
            idempotency_key=(
                f"{EventKind.REFUND.value}:{transaction_id}"
                if child
                else f"{EventKind.REFUND.value}:{transaction_id}:{obj.get('refunded_amount_cents')}"
            ),
            gateway_reference=_str_or_none(order.get("id")),
            payment_id=_str_or_none(order.get("merchant_order_id")),
            transaction_id=_str_or_none(
                (obj.get("parent_transaction") or {}).get("id")
                if isinstance(obj.get("parent_transaction"), dict)
                else obj.get("parent_transaction")
            )
            or _str_or_none(transaction_id),
            refund_amount=from_minor_units(obj.get("amount_cents") or 0) if child else None,
            refund_total=None if child else from_minor_units(obj.get("refunded_amount_cents") or 0),
            refund_ref=_str_or_none(transaction_id) if child else None,
            **common,
        )

    if _is_paymob_transaction(obj):
        transaction_id = obj.get("id")
        return GatewayEvent(
            kind=EventKind.TRANSACTION,
            idempotency_key=f"{EventKind.TRANSACTION.value}:{transaction_id}",
            gateway_reference=_str_or_none(order.get("id")),
            payment_id=_str_or_none(order.get("merchant_order_id")),
            transaction_id=_str_or_none(transaction_id),
            status=adapter.map_status(obj),
            failure_reason=_str_or_none(
                (obj.get("data") or {}).get("message") if isinstance(obj.get("data"), dict) else None
            ),
            **common,
        )

    order_obj = order or (obj if event_type.upper() == "ORDER" and obj.get("id") is not None else {})
    if order_obj:
        return GatewayEvent(
            kind=EventKind.ORDER,
            idempotency_key=payload_hash(payload),
            gateway_reference=_str_or_none(order_obj.get("id")),
            payment_id=_str_or_none(order_obj.get("merchant_order_id")),
            status=adapter.map_status(order_obj),
            **common,
        )

    return GatewayEvent(kind=EventKind.UNKNOWN, idempotency_key=payload_hash(payload), **common)


CLASSIFIERS = {
    Gateway.STRIPE: classify_stripe,
    Gateway.PAYMOB: classify_paymob,
}


def classify(gateway: str, payload: dict[str, Any]) -> GatewayEvent:
    """Classify a verified payload from the given gateway."""
    return CLASSIFIERS[gateway](payload)
