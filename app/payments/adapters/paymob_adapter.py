"""
Paymob adapter (auth token / order / payment key flow).

Paymob has no intent object: a payment is an order plus a short-lived
payment key. The payer completes it in a hosted iframe (card) or through a
wallet redirect (Vodafone Cash), and Paymob reports the outcome by webhook.

Features:
- httpx client with a timeout on every call
- Auth token cached in the shared cache, refreshed once on 401
- Error translation to GatewayError subclasses
- Structured logging with timing metrics

Configuration (via settings):
- PAYMOB_BASE_URL: API base URL (default https://accept.paymob.com/api)
- PAYMOB_API_KEY: Merchant API key
- PAYMOB_INTEGRATION_ID: Card integration id
- PAYMOB_WALLET_INTEGRATION_ID: Mobile wallet integration id
- PAYMOB_IFRAME_ID: Hosted card iframe id
- PAYMOB_AUTH_TOKEN_TTL_SECONDS: How long the auth token is cached
- PAYMOB_PAYMENT_KEY_EXPIRATION_SECONDS: Payment key lifetime

Usage:
    from payments.adapters import PaymobAdapter

    adapter = PaymobAdapter()
    result = adapter.create(params)
    redirect_url = result.provider_payload["redirect_url"]
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
from django.conf import settings
from django.core.cache import cache

from payments.adapters.base import GatewayAdapter
from payments.adapters.types import (
    CancelOutcome,
    CancelResult,
    GatewayPaymentResult,
    GatewayRefundResult,
    OrderRef,
    to_minor_units,
)
from payments.exceptions import (
    GatewayError,
    GatewayNotFoundError,
    GatewayRejectedError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from payments.state_machines import Gateway, PaymentMethod, PaymentStatus

if TYPE_CHECKING:
    from payments.adapters.types import CreatePaymentParams, GatewayRef


class PaymobAdapter(GatewayAdapter):
    """
    Adapter for the Paymob Accept API.

    Status mapping (order or transaction object, in precedence order):
        is_canceled -> FAILED
        is_returned, or refunded >= requested -> REFUNDED
        error_occured -> FAILED
        pending -> PENDING
        transaction neither success nor pending -> FAILED
        paid >= requested -> COMPLETED
        0 < paid < requested -> PROCESSING
        otherwise -> PENDING
    """

    gateway = Gateway.PAYMOB
    supports_confirm = False
    supports_refund = True

    AUTH_TOKEN_CACHE_KEY = "paymob:auth_token"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.api_key = api_key if api_key is not None else settings.PAYMOB_API_KEY
        self.base_url = (base_url or settings.PAYMOB_BASE_URL).rstrip("/")
        self.transport = transport

    # =========================================================================
    # HTTP Plumbing
    # =========================================================================

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    def _send(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request, translating transport failures."""
        try:
            with self._client() as client:
                return client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(
                "Paymob did not respond in time. Please retry.",
                gateway=self.gateway,
                provider_code="timeout",
            ) from e
        except httpx.TransportError as e:
            raise GatewayUnavailableError(
                "Could not connect to Paymob. Please retry.",
                gateway=self.gateway,
                provider_code="connection_error",
            ) from e

    def _raise_for_status(self, response: httpx.Response, log_context: dict[str, Any]) -> None:
        """Map a non-2xx response to a gateway exception."""
        status_code = response.status_code
        if status_code < 400:
            return

        logger = self.get_logger()
        log_context = {**log_context, "status_code": status_code}

        if status_code >= 500 or status_code == 429:
            logger.error("Paymob server error", extra=log_context)
            raise GatewayUnavailableError(
                "Paymob is unavailable. Please retry.",
                gateway=self.gateway,
                provider_code=str(status_code),
            )
        if status_code == 404:
            logger.warning("Paymob object not found", extra=log_context)
            raise GatewayNotFoundError(
                "Order not found on Paymob",
                gateway=self.gateway,
                provider_code="404",
            )

        logger.warning("Paymob rejected the request", extra=log_context)
        raise GatewayRejectedError(
            "Paymob rejected the request",
            gateway=self.gateway,
            provider_code=str(status_code),
        )

    def _authenticate(self, force: bool = False) -> str:
        """
        Return a Paymob auth token, from the shared cache when possible.

        Args:
            force: Skip the cache and request a new token
        """
        if not force:
            token = cache.get(self.AUTH_TOKEN_CACHE_KEY)
            if token:
                return token

        if not self.api_key:
            raise GatewayRejectedError(
                "Paymob is not configured",
                gateway=self.gateway,
                provider_code="missing_api_key",
            )

        log_context = {"operation": "authenticate"}
        response = self._send("POST", "/auth/tokens", json={"api_key": self.api_key})
        self._raise_for_status(response, log_context)

        token = response.json().get("token")
        if not token:
            raise GatewayUnavailableError(
                "Paymob returned no auth token",
                gateway=self.gateway,
                provider_code="missing_token",
            )

        cache.set(self.AUTH_TOKEN_CACHE_KEY, token, timeout=settings.PAYMOB_AUTH_TOKEN_TTL_SECONDS)
        self.get_logger().info("Paymob auth token refreshed", extra=log_context)
        return token

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        operation: str = "",
    ) -> dict[str, Any]:
        """
        Make an authenticated request and return the decoded JSON body.

        The token is sent as a bearer header, as ``auth_token`` in JSON
        bodies and as a query parameter. A 401 drops the cached token and
        retries once with a fresh one.
        """
        logger = self.get_logger()
        log_context = {"operation": operation or f"{method} {path}", "path": path}

        start_time = time.time()
        logger.info("Starting Paymob operation", extra=log_context)

        response = None
        for attempt in (1, 2):
            token = self._authenticate(force=attempt == 2)
            body = {**payload, "auth_token": token} if payload is not None else None
            response = self._send(
                method,
                path,
                json=body,
                params={"token": token},
                headers={"Authorization": f"Bearer {token}"},
            )
            if response.status_code != 401:
                break
            cache.delete(self.AUTH_TOKEN_CACHE_KEY)
            logger.warning("Paymob auth token rejected", extra={**log_context, "attempt": attempt})

        duration_ms = (time.time() - start_time) * 1000
        self._raise_for_status(response, {**log_context, "duration_ms": duration_ms})

        logger.info(
            "Paymob operation completed",
            extra={**log_context, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailableError(
                "Paymob returned an unreadable response",
                gateway=self.gateway,
                provider_code="invalid_json",
            ) from e

    # =========================================================================
    # Core Operations
    # =========================================================================

    def create(self, params: CreatePaymentParams) -> GatewayPaymentResult:
        """
        Register an order and a payment key, then build the payer redirect.

        Card payments get the hosted iframe URL; Vodafone Cash payments get
        the wallet redirect returned by the pay endpoint.
        """
        if params.billing_data is None:
            raise GatewayRejectedError(
                "Billing data is required for Paymob payments",
                gateway=self.gateway,
                provider_code="missing_billing_data",
            )
        is_wallet = params.method == PaymentMethod.VODAFONE_CASH
        if is_wallet and not params.wallet_number:
            raise GatewayRejectedError(
                "Wallet number is required for Vodafone Cash payments",
                gateway=self.gateway,
                provider_code="missing_wallet_number",
            )

        currency = params.currency.upper()
        order = self._request(
            "POST",
            "/ecommerce/orders",
            {
                "delivery_needed": False,
                "amount_cents": params.amount_cents,
                "currency": currency,
                "merchant_order_id": str(params.payment_id),
                "items": [],
                "data": params.metadata,
            },
            operation="create_order",
        )
        order_id = order.get("id")
        if not order_id:
            raise GatewayUnavailableError(
                "Paymob returned no order id",
                gateway=self.gateway,
                provider_code="missing_order_id",
            )

        integration_id = (
            settings.PAYMOB_WALLET_INTEGRATION_ID if is_wallet else settings.PAYMOB_INTEGRATION_ID
        )
        payment_key = self._request(
            "POST",
            "/acceptance/payment_keys",
            {
                "amount_cents": params.amount_cents,
                "expiration": settings.PAYMOB_PAYMENT_KEY_EXPIRATION_SECONDS,
                "order_id": order_id,
                "billing_data": params.billing_data.to_dict(),
                "currency": currency,
                "integration_id": integration_id,
                "lock_order_when_paid": True,
            },
            operation="create_payment_key",
        )
        payment_token = payment_key.get("token")
        if not payment_token:
            raise GatewayUnavailableError(
                "Paymob returned no payment key",
                gateway=self.gateway,
                provider_code="missing_payment_key",
            )

        if is_wallet:
            wallet = self._request(
                "POST",
                "/acceptance/payments/pay",
                {
                    "source": {"identifier": params.wallet_number, "subtype": "WALLET"},
                    "payment_token": payment_token,
                },
                operation="wallet_pay",
            )
            redirect_url = wallet.get("redirect_url") or wallet.get("iframe_redirection_url")
        else:
            redirect_url = (
                f"{self.base_url}/acceptance/iframes/{settings.PAYMOB_IFRAME_ID}"
                f"?payment_token={payment_token}"
            )

        return GatewayPaymentResult(
            ref=OrderRef(order_id=str(order_id)),
            status=PaymentStatus.PENDING,
            provider_payload={"redirect_url": redirect_url, "order_id": str(order_id)},
            provider_status="order_created",
        )

    def cancel(self, ref: GatewayRef) -> CancelResult:
        """
        Cancel the Paymob order.

        404 -> NOT_FOUND; a rejected cancel on an order that is already
        paid -> ALREADY_SETTLED.
        """
        logger = self.get_logger()
        try:
            self._request("PUT", f"/ecommerce/orders/{ref}/cancel", operation="cancel_order")
            return CancelResult(outcome=CancelOutcome.CANCELLED)
        except GatewayNotFoundError:
            return CancelResult(outcome=CancelOutcome.NOT_FOUND, message="Order not found")
        except GatewayRejectedError:
            try:
                status = self.get_status(ref)
            except GatewayError:
                return CancelResult(outcome=CancelOutcome.FAILED, message="Paymob rejected the cancellation")
            if status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
                return CancelResult(
                    outcome=CancelOutcome.ALREADY_SETTLED,
                    message="Order is already paid",
                )
            return CancelResult(outcome=CancelOutcome.FAILED, message="Paymob rejected the cancellation")
        except GatewayError as e:
            logger.warning(
                "Paymob cancellation failed",
                extra={"order_id": str(ref), "error_code": e.error_code},
            )
            return CancelResult(outcome=CancelOutcome.FAILED, message=e.message)

    def get_status(self, ref: GatewayRef, requested_amount: Decimal | None = None) -> str:
        """Fetch the order and derive the canonical status from its flags."""
        order = self._request("GET", f"/ecommerce/orders/{ref}", operation="get_order")
        return self.map_status(order, requested_amount)

    def create_refund(
        self,
        ref: GatewayRef,
        amount: Decimal,
        reason: str = "",
        idempotency_key: str | None = None,
    ) -> GatewayRefundResult:
        """
        Refund a settled transaction.

        Paymob refunds target the transaction, not the order, so the
        reference must carry the transaction id reported by webhook.
        """
        transaction_id = getattr(ref, "transaction_id", None)
        if not transaction_id:
            raise GatewayRejectedError(
                "Payment has no Paymob transaction to refund",
                gateway=self.gateway,
                provider_code="missing_transaction_id",
            )

        response = self._request(
            "POST",
            "/acceptance/void_refund/refund",
            {
                "transaction_id": transaction_id,
                "amount_cents": to_minor_units(amount),
            },
            operation="create_refund",
        )

        success = bool(response.get("success")) and not response.get("error_occured")
        refund_ref = response.get("id")
        return GatewayRefundResult(
            refund_ref=str(refund_ref) if refund_ref is not None else None,
            success=success,
            provider_status="success" if success else "declined",
            error_message=None if success else "Paymob declined the refund",
        )

    def map_status(self, provider_status: Any, requested_amount: Decimal | None = None) -> str:
        """
        Derive the canonical status from a Paymob order or transaction.

        Args:
            provider_status: Order or transaction object (dict)
            requested_amount: Amount the payment asked for; defaults to the
                object's own amount_cents
        """
        data = provider_status or {}
        if requested_amount is not None:
            requested = to_minor_units(requested_amount)
        else:
            requested = int(data.get("amount_cents") or 0)

        if "paid_amount_cents" in data:
            paid = int(data.get("paid_amount_cents") or 0)
        elif data.get("success"):
            paid = int(data.get("amount_cents") or 0)
        else:
            paid = 0
        refunded = int(data.get("refunded_amount_cents") or 0)

        if data.get("is_canceled"):
            return PaymentStatus.FAILED
        if data.get("is_returned") or (requested > 0 and refunded >= requested):
            return PaymentStatus.REFUNDED
        if data.get("error_occured"):
            return PaymentStatus.FAILED
        if data.get("pending"):
            return PaymentStatus.PENDING
        # Transaction that neither succeeded nor is pending: declined
        if "success" in data and "paid_amount_cents" not in data and not data.get("success"):
            return PaymentStatus.FAILED
        if requested > 0 and paid >= requested:
            return PaymentStatus.COMPLETED
        if paid > 0:
            return PaymentStatus.PROCESSING
        return PaymentStatus.PENDING
