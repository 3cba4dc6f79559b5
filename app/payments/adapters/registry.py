"""
Gateway adapter registry.

The only place that maps a gateway (or payment method) to an adapter.
Adapters are created lazily and cached per process.

Usage:
    from payments.adapters import get_adapter

    adapter = get_adapter(payment.gateway)
    status = adapter.get_status(payment.gateway_ref, payment.amount)

    # Tests swap in doubles
    set_adapter(Gateway.PAYMOB, PaymobAdapter(transport=httpx.MockTransport(handler)))
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.adapters.manual_adapter import ManualAdapter
from payments.adapters.paymob_adapter import PaymobAdapter
from payments.adapters.stripe_adapter import StripeAdapter
from payments.exceptions import PaymentValidationError
from payments.state_machines import METHOD_GATEWAYS, Gateway

if TYPE_CHECKING:
    from payments.adapters.base import GatewayAdapter


ADAPTER_CLASSES: dict[str, type[GatewayAdapter]] = {
    Gateway.STRIPE: StripeAdapter,
    Gateway.PAYMOB: PaymobAdapter,
    Gateway.MANUAL: ManualAdapter,
}

_adapters: dict[str, GatewayAdapter] = {}


def get_adapter(gateway: str) -> GatewayAdapter:
    """Get or create the adapter for a gateway."""
    if gateway not in _adapters:
        adapter_class = ADAPTER_CLASSES.get(gateway)
        if adapter_class is None:
            raise PaymentValidationError(
                f"Unsupported gateway: {gateway}",
                details={"gateway": gateway},
            )
        _adapters[gateway] = adapter_class()
    return _adapters[gateway]


def get_adapter_for_method(method: str) -> GatewayAdapter:
    """Get the adapter serving a payment method."""
    gateway = METHOD_GATEWAYS.get(method)
    if gateway is None:
        raise PaymentValidationError(
            f"Unsupported payment method: {method}",
            details={"method": method},
        )
    return get_adapter(gateway)


def set_adapter(gateway: str, adapter: GatewayAdapter) -> None:
    """Install a specific adapter instance for a gateway."""
    _adapters[gateway] = adapter


def reset_adapters() -> None:
    """Drop cached adapters so the next lookup builds fresh ones."""
    _adapters.clear()
