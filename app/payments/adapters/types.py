"""
Data types shared by all gateway adapters.

Types:
    IntentRef / OrderRef / ManualRef: Typed gateway references (GatewayRef)
    BillingData: Customer billing details required by Paymob
    CreatePaymentParams: Canonical payment creation request
    GatewayPaymentResult: Outcome of creating a payment on a gateway
    GatewayRefundResult: Outcome of a refund call
    CancelOutcome / CancelResult: Tagged outcome of a void attempt

Usage:
    from payments.adapters.types import CreatePaymentParams, IntentRef

    params = CreatePaymentParams(
        payment_id=payment.id,
        invoice_id=invoice.id,
        account_id=account.id,
        amount=Decimal("125.50"),
        currency="USD",
        method="stripe",
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Union

# =============================================================================
# Money Helpers
# =============================================================================


def to_minor_units(amount: Decimal) -> int:
    """
    Convert a decimal amount to the smallest currency unit.

    Example:
        to_minor_units(Decimal("125.505"))  # 12551
    """
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    """Convert an amount in the smallest currency unit to a decimal amount."""
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


# =============================================================================
# Gateway References
# =============================================================================


@dataclass(frozen=True)
class IntentRef:
    """Stripe PaymentIntent reference (pi_xxx)."""

    intent_id: str

    def __str__(self) -> str:
        return self.intent_id


@dataclass(frozen=True)
class OrderRef:
    """
    Paymob reference.

    The order id is assigned at creation; the transaction id is only known
    once a transaction webhook has been received. Refunds need it.
    """

    order_id: str
    transaction_id: str | None = None

    def __str__(self) -> str:
        return self.order_id


@dataclass(frozen=True)
class ManualRef:
    """Locally generated reference for bank transfer and cash payments."""

    reference: str

    def __str__(self) -> str:
        return self.reference


GatewayRef = Union[IntentRef, OrderRef, ManualRef]


# =============================================================================
# Requests
# =============================================================================


@dataclass
class BillingData:
    """
    Customer billing details for Paymob payment keys.

    Paymob rejects payment keys with empty address fields, so optional
    fields default to "N/A" when sent.
    """

    email: str
    first_name: str
    last_name: str
    phone_number: str
    country: str = "EG"
    state: str = "N/A"
    city: str = "N/A"
    postal_code: str = "00000"
    street: str = "N/A"
    building: str = "N/A"
    floor: str = "N/A"
    apartment: str = "N/A"

    REQUIRED_FIELDS = ("email", "first_name", "last_name", "phone_number")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BillingData:
        """Build from request data, ignoring unknown keys and blank values."""
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known and v not in (None, "")})

    def to_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class CreatePaymentParams:
    """
    Canonical payment creation request passed to an adapter.

    Attributes:
        payment_id: Local Payment id (already persisted)
        invoice_id: Invoice being paid
        account_id: Paying account
        amount: Amount in major currency units
        currency: ISO 4217 currency code
        method: Requested payment method
        billing_data: Required for Paymob-family methods
        wallet_number: Required for vodafone_cash
        return_url: Optional redirect target after payment
        description: Optional human-readable description
    """

    payment_id: uuid.UUID | str
    invoice_id: uuid.UUID | str
    account_id: uuid.UUID | str
    amount: Decimal
    currency: str
    method: str
    billing_data: BillingData | None = None
    wallet_number: str | None = None
    return_url: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if self.amount is None or Decimal(self.amount) <= 0:
            raise ValueError("amount must be positive")
        if not self.currency:
            raise ValueError("currency is required")

    @property
    def amount_cents(self) -> int:
        return to_minor_units(self.amount)

    @property
    def metadata(self) -> dict[str, str]:
        """Identifiers attached to the gateway object for correlation."""
        return {
            "payment_id": str(self.payment_id),
            "invoice_id": str(self.invoice_id),
            "account_id": str(self.account_id),
        }


# =============================================================================
# Results
# =============================================================================


@dataclass
class GatewayPaymentResult:
    """
    Result of creating a payment on a gateway.

    Attributes:
        ref: Typed gateway reference
        status: Canonical status (PaymentStatus value)
        provider_payload: Non-secret data for the client (redirect_url,
            client_secret, instructions)
        provider_status: The gateway's own status string, for logging
    """

    ref: GatewayRef
    status: str
    provider_payload: dict[str, Any] = field(default_factory=dict)
    provider_status: str | None = None


@dataclass
class GatewayRefundResult:
    """
    Result of a refund call.

    Attributes:
        refund_ref: Gateway refund id
        success: Whether the gateway accepted the refund
        provider_status: The gateway's own refund status
        error_message: Client-safe reason when success is False
    """

    refund_ref: str | None
    success: bool
    provider_status: str | None = None
    error_message: str | None = None


class CancelOutcome(str, Enum):
    """Outcome of asking a gateway to void a payment."""

    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    ALREADY_SETTLED = "already_settled"
    FAILED = "failed"


@dataclass
class CancelResult:
    """Tagged result of a gateway cancel call."""

    outcome: CancelOutcome
    message: str | None = None


__all__ = [
    "BillingData",
    "CancelOutcome",
    "CancelResult",
    "CreatePaymentParams",
    "GatewayPaymentResult",
    "GatewayRef",
    "GatewayRefundResult",
    "IntentRef",
    "ManualRef",
    "OrderRef",
    "from_minor_units",
    "to_minor_units",
]
