"""
Stripe adapter (intent/confirm flow).

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls go through this adapter to
ensure consistent error handling, timeouts, idempotency, and
observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to GatewayError subclasses
- Structured logging with timing metrics
- Idempotency keys on every write

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_PUBLISHABLE_KEY: Returned to the client with the client secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: GATEWAY_TIMEOUT_SECONDS)

Usage:
    from payments.adapters import StripeAdapter

    adapter = StripeAdapter()
    result = adapter.create(params)
    status = adapter.confirm(result.ref, {"payment_method": "pm_card_visa"})
"""

from __future__ import annotations

import hashlib
import time
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.adapters.base import GatewayAdapter
from payments.adapters.types import (
    CancelOutcome,
    CancelResult,
    GatewayPaymentResult,
    GatewayRefundResult,
    IntentRef,
    to_minor_units,
)
from payments.exceptions import (
    GatewayError,
    GatewayNotFoundError,
    GatewayRejectedError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from payments.state_machines import Gateway, PaymentStatus

if TYPE_CHECKING:
    from payments.adapters.types import CreatePaymentParams, GatewayRef


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash component provides uniqueness across environments sharing a
    Stripe account while the structured format aids debugging.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="create_intent",
            entity_id=payment.id,
        )
        # Result: "create_intent:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        """
        Generate a unique idempotency key.

        Args:
            operation: The Stripe operation (create_intent, confirm, refund, etc.)
            entity_id: The domain entity ID (payment id, refund id)
            attempt: Attempt number for retries (default: 1)

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter(GatewayAdapter):
    """
    Adapter for Stripe PaymentIntents and Refunds.

    Status mapping:
        requires_payment_method, requires_confirmation, requires_action -> PENDING
        requires_capture, processing -> PROCESSING
        succeeded -> COMPLETED
        canceled -> FAILED
    """

    gateway = Gateway.STRIPE
    supports_confirm = True
    supports_refund = True

    STATUS_MAP: dict[str, str] = {
        "requires_payment_method": PaymentStatus.PENDING,
        "requires_confirmation": PaymentStatus.PENDING,
        "requires_action": PaymentStatus.PENDING,
        "requires_capture": PaymentStatus.PROCESSING,
        "processing": PaymentStatus.PROCESSING,
        "succeeded": PaymentStatus.COMPLETED,
        "canceled": PaymentStatus.FAILED,
    }

    def __init__(self, api_key: str | None = None, timeout: float | None = None) -> None:
        super().__init__(timeout=timeout or settings.STRIPE_API_TIMEOUT_SECONDS)
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY

    # =========================================================================
    # Configuration
    # =========================================================================

    def _configure_stripe(self) -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = self.api_key
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    # =========================================================================
    # Core Operations
    # =========================================================================

    def create(self, params: CreatePaymentParams) -> GatewayPaymentResult:
        """
        Create a Stripe PaymentIntent.

        Returns:
            GatewayPaymentResult with IntentRef and the client secret

        Raises:
            GatewayRejectedError: Card declined or invalid parameters
            GatewayUnavailableError: Stripe service unavailable
            GatewayTimeoutError: Request timed out
        """
        self._configure_stripe()
        logger = self.get_logger()

        idempotency_key = IdempotencyKeyGenerator.generate("create_intent", params.payment_id)
        log_context = {
            "operation": "create_payment_intent",
            "payment_id": str(params.payment_id),
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            create_params: dict[str, Any] = {
                "amount": params.amount_cents,
                "currency": params.currency.lower(),
                "metadata": params.metadata,
                "automatic_payment_methods": {"enabled": True},
            }
            if params.description:
                create_params["description"] = params.description

            intent = stripe.PaymentIntent.create(
                idempotency_key=idempotency_key,
                **create_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "payment_intent_id": intent.id,
                    "status": intent.status,
                    "duration_ms": duration_ms,
                },
            )

            return GatewayPaymentResult(
                ref=IntentRef(intent_id=intent.id),
                status=self.map_status(intent.status),
                provider_payload={
                    "client_secret": intent.client_secret,
                    "publishable_key": settings.STRIPE_PUBLISHABLE_KEY,
                },
                provider_status=intent.status,
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise  # Never reached, but satisfies type checker

    def confirm(self, ref: GatewayRef, extra: dict[str, Any] | None = None) -> str:
        """
        Confirm a PaymentIntent.

        Args:
            ref: IntentRef of the payment
            extra: Optional payment_method and return_url

        Returns:
            Canonical status after confirmation
        """
        self._configure_stripe()
        logger = self.get_logger()
        extra = extra or {}

        log_context = {
            "operation": "confirm_payment_intent",
            "payment_intent_id": str(ref),
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            confirm_params: dict[str, Any] = {}
            for key in ("payment_method", "return_url"):
                if extra.get(key):
                    confirm_params[key] = extra[key]

            intent = stripe.PaymentIntent.confirm(str(ref), **confirm_params)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={**log_context, "status": intent.status, "duration_ms": duration_ms},
            )
            return self.map_status(intent.status)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

    def cancel(self, ref: GatewayRef) -> CancelResult:
        """
        Cancel a PaymentIntent.

        Stripe error codes:
            resource_missing -> NOT_FOUND
            payment_intent_unexpected_state -> ALREADY_SETTLED
        """
        self._configure_stripe()
        logger = self.get_logger()

        log_context = {
            "operation": "cancel_payment_intent",
            "payment_intent_id": str(ref),
        }
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.cancel(
                str(ref),
                cancellation_reason="requested_by_customer",
            )
            logger.info(
                "Stripe operation completed",
                extra={**log_context, "status": intent.status},
            )
            return CancelResult(outcome=CancelOutcome.CANCELLED)

        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                return CancelResult(outcome=CancelOutcome.NOT_FOUND, message="Payment intent not found")
            if e.code == "payment_intent_unexpected_state":
                return CancelResult(
                    outcome=CancelOutcome.ALREADY_SETTLED,
                    message="Payment intent can no longer be cancelled",
                )
            logger.warning(
                "Stripe rejected cancellation",
                extra={**log_context, "stripe_code": e.code},
            )
            return CancelResult(outcome=CancelOutcome.FAILED, message="Stripe rejected the cancellation")

        except stripe.StripeError:
            logger.warning("Stripe cancellation failed", extra=log_context, exc_info=True)
            return CancelResult(outcome=CancelOutcome.FAILED, message="Stripe is unavailable")

    def get_status(self, ref: GatewayRef, requested_amount: Decimal | None = None) -> str:
        """Retrieve a PaymentIntent and map its status."""
        self._configure_stripe()
        logger = self.get_logger()

        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": str(ref),
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.retrieve(str(ref))

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Stripe operation completed",
                extra={**log_context, "status": intent.status, "duration_ms": duration_ms},
            )
            return self.map_status(intent.status)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

    def create_refund(
        self,
        ref: GatewayRef,
        amount: Decimal,
        reason: str = "",
        idempotency_key: str | None = None,
    ) -> GatewayRefundResult:
        """
        Create a refund for a PaymentIntent.

        The free-text reason is stored in metadata; Stripe's own reason
        field only accepts a fixed vocabulary.
        """
        self._configure_stripe()
        logger = self.get_logger()

        amount_cents = to_minor_units(amount)
        idempotency_key = idempotency_key or IdempotencyKeyGenerator.generate(
            "refund", f"{ref}:{amount_cents}"
        )
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": str(ref),
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.create(
                payment_intent=str(ref),
                amount=amount_cents,
                reason="requested_by_customer",
                metadata={"reason": reason[:500]} if reason else {},
                idempotency_key=idempotency_key,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "refund_id": refund.id,
                    "status": refund.status,
                    "duration_ms": duration_ms,
                },
            )

            success = refund.status in ("succeeded", "pending")
            return GatewayRefundResult(
                refund_ref=refund.id,
                success=success,
                provider_status=refund.status,
                error_message=None if success else f"Refund {refund.status}",
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

    def map_status(self, provider_status: Any, requested_amount: Decimal | None = None) -> str:
        """Map a PaymentIntent status to a canonical status."""
        mapped = self.STATUS_MAP.get(str(provider_status))
        if mapped is None:
            self.get_logger().warning(
                "Unknown Stripe status, treating as pending",
                extra={"provider_status": provider_status},
            )
            return PaymentStatus.PENDING
        return mapped

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_stripe_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayRejectedError: Card declined, invalid request, bad API key
            GatewayNotFoundError: Referenced object does not exist
            GatewayUnavailableError: Rate limited, network or server error
            GatewayTimeoutError: Request timed out
        """
        logger = self.get_logger()

        # Add timing to context
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, GatewayError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise GatewayRejectedError(
                str(error.user_message or "Your card was declined."),
                error_code="CARD_DECLINED",
                gateway=self.gateway,
                provider_code=decline_code or error.code,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            if error.code == "resource_missing":
                raise GatewayNotFoundError(
                    "Payment not found on Stripe",
                    gateway=self.gateway,
                    provider_code=error.code,
                )
            raise GatewayRejectedError(
                "Stripe rejected the request",
                gateway=self.gateway,
                provider_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayUnavailableError(
                "Stripe rate limit exceeded. Please retry.",
                gateway=self.gateway,
                provider_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            if "timed out" in str(error).lower():
                raise GatewayTimeoutError(
                    "Stripe did not respond in time. Please retry.",
                    gateway=self.gateway,
                    provider_code="timeout",
                )
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Please retry.",
                gateway=self.gateway,
                provider_code="api_connection_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise GatewayRejectedError(
                "Stripe authentication failed",
                gateway=self.gateway,
                provider_code="authentication_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error. Please retry.",
                gateway=self.gateway,
                provider_code="api_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise GatewayUnavailableError(
                "Unexpected Stripe error. Please retry.",
                gateway=self.gateway,
                provider_code="unknown_error",
            )
