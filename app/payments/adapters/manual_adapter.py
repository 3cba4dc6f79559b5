"""Manual gateway adapter for bank transfer and cash payments.

No external call is made. A reference is generated locally and the payer
gets instructions; the payment stays PENDING until it is confirmed out of
band (e.g. by an admin reconciling the bank statement).
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings

from payments.adapters.base import GatewayAdapter
from payments.adapters.types import (
    CancelOutcome,
    CancelResult,
    GatewayPaymentResult,
    GatewayRefundResult,
    ManualRef,
)
from payments.exceptions import GatewayRejectedError
from payments.state_machines import Gateway, PaymentMethod, PaymentStatus

if TYPE_CHECKING:
    from payments.adapters.types import CreatePaymentParams, GatewayRef


class ManualAdapter(GatewayAdapter):
    """Offline payments. Every operation succeeds locally; refunds are not supported."""

    gateway = Gateway.MANUAL
    supports_confirm = False
    supports_refund = False

    REFERENCE_PREFIXES = {
        PaymentMethod.BANK_TRANSFER: "BT",
        PaymentMethod.CASH: "CASH",
    }

    @classmethod
    def generate_reference(cls, method: str, invoice_id: Any) -> str:
        """Build a payer-facing reference, e.g. ``BT-1718000000000-3f2a9c1b``."""
        prefix = cls.REFERENCE_PREFIXES.get(method, "MAN")
        timestamp_ms = int(time.time() * 1000)
        return f"{prefix}-{timestamp_ms}-{str(invoice_id)[:8]}"

    def create(self, params: CreatePaymentParams) -> GatewayPaymentResult:
        reference = self.generate_reference(params.method, params.invoice_id)
        amount = f"{params.amount} {params.currency.upper()}"

        if params.method == PaymentMethod.BANK_TRANSFER:
            bank_details = dict(settings.MANUAL_BANK_DETAILS)
            lines = [f"Please transfer {amount} to the following account:", ""]
            lines += [
                f"{key.replace('_', ' ').title()}: {value}"
                for key, value in bank_details.items()
                if value
            ]
            lines += [
                "",
                f"Reference: {reference}",
                "",
                "Please include the reference number in your transfer description.",
            ]
            payload = {
                "reference": reference,
                "instructions": "\n".join(lines),
                "bank_details": bank_details,
            }
        else:
            payload = {
                "reference": reference,
                "instructions": (
                    f"Please bring {amount} in cash to our office.\n\n"
                    f"Reference Number: {reference}\n\n"
                    "Please provide this reference number when making payment."
                ),
            }

        self.get_logger().info(
            "Manual payment reference generated",
            extra={"payment_id": str(params.payment_id), "reference": reference},
        )
        return GatewayPaymentResult(
            ref=ManualRef(reference=reference),
            status=PaymentStatus.PENDING,
            provider_payload=payload,
            provider_status="awaiting_payment",
        )

    def cancel(self, ref: GatewayRef) -> CancelResult:
        return CancelResult(outcome=CancelOutcome.CANCELLED)

    def get_status(self, ref: GatewayRef, requested_amount: Decimal | None = None) -> str:
        return PaymentStatus.PENDING

    def create_refund(
        self,
        ref: GatewayRef,
        amount: Decimal,
        reason: str = "",
        idempotency_key: str | None = None,
    ) -> GatewayRefundResult:
        raise GatewayRejectedError(
            "Manual payments cannot be refunded through the gateway",
            gateway=self.gateway,
        )

    def map_status(self, provider_status: Any, requested_amount: Decimal | None = None) -> str:
        return PaymentStatus.PENDING
