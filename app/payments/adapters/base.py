"""Base gateway adapter interface.

All gateway adapters implement this interface. Adapters only talk to the
gateway and translate its vocabulary; business rules (eligibility, ledger,
state machine) live in the services.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings

from payments.exceptions import GatewayRejectedError

if TYPE_CHECKING:
    from payments.adapters.types import (
        CancelResult,
        CreatePaymentParams,
        GatewayPaymentResult,
        GatewayRef,
        GatewayRefundResult,
    )


class GatewayAdapter(ABC):
    """
    Abstract base class for payment gateways.

    Every outbound call carries a timeout. Failures are raised as
    GatewayError subclasses:
        - GatewayTimeoutError: no response within the timeout
        - GatewayUnavailableError: unreachable, 5xx or rate limited
        - GatewayRejectedError: request refused (4xx, declined)
        - GatewayNotFoundError: remote object missing

    Capabilities:
        supports_confirm: Intent-based flow with a server-side confirm step
        supports_refund: Gateway can return money
    """

    gateway: str = ""
    supports_confirm: bool = False
    supports_refund: bool = True

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @abstractmethod
    def create(self, params: CreatePaymentParams) -> GatewayPaymentResult:
        """Create the payment on the gateway.

        Args:
            params: Canonical payment request (Payment already persisted)

        Returns:
            GatewayPaymentResult with reference, canonical status and
            client-facing data
        """

    def confirm(self, ref: GatewayRef, extra: dict[str, Any] | None = None) -> str:
        """Confirm an intent-based payment and return its canonical status."""
        raise GatewayRejectedError(
            "This payment method does not support confirmation",
            gateway=self.gateway,
        )

    @abstractmethod
    def cancel(self, ref: GatewayRef) -> CancelResult:
        """Ask the gateway to void the payment.

        Never raises for gateway failures; the outcome is reported in the
        returned CancelResult.
        """

    @abstractmethod
    def get_status(self, ref: GatewayRef, requested_amount: Decimal | None = None) -> str:
        """Pull the current canonical status from the gateway."""

    @abstractmethod
    def create_refund(
        self,
        ref: GatewayRef,
        amount: Decimal,
        reason: str = "",
        idempotency_key: str | None = None,
    ) -> GatewayRefundResult:
        """Refund part or all of a settled payment."""

    @abstractmethod
    def map_status(self, provider_status: Any, requested_amount: Decimal | None = None) -> str:
        """Normalize a gateway status into a PaymentStatus value."""
