"""
Payment-specific exceptions for payment operations.

This module provides a hierarchy of exceptions for payment operations,
including payment domain errors, gateway errors and concurrency control
errors.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Payment/refund lookup failures
    ├── PaymentValidationError - Invalid payment request (HTTP 400)
    ├── SignatureError - Webhook authenticity check failed (HTTP 400)
    ├── IneligibleRefundError - Refund rules violated (HTTP 422)
    └── GatewayError - Base for all gateway call failures (HTTP 422)
        ├── GatewayTimeoutError - No response within the timeout (transient)
        ├── GatewayUnavailableError - Network failure or 5xx (transient)
        ├── GatewayRejectedError - Gateway refused the request (permanent)
        └── GatewayNotFoundError - Remote object does not exist (permanent)

    ReconciliationConflict - Disallowed status edge (inherits ConflictError)
    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payments.exceptions import (
        GatewayError,
        IneligibleRefundError,
        ReconciliationConflict,
    )

    # Gateway failure (message is safe to show to API clients)
    raise GatewayUnavailableError(
        "Paymob is unavailable. Please retry.",
        gateway="paymob",
        details={"status_code": 503},
    )

    # Disallowed state machine edge
    raise ReconciliationConflict(
        "Cannot move payment from 'processing' to 'pending'",
        details={"current_status": "processing", "target_status": "pending"}
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent API error responses.

    Example:
        try:
            PaymentOrchestrator.process_payment(request)
        except PaymentError as e:
            logger.error(f"Payment operation failed: {e}")
            return Response(e.to_dict(), status=400)
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity cannot be found.

    Use for:
    - Payment lookup fails
    - Refund lookup fails

    Example:
        payment = Payment.objects.filter(id=payment_id).first()
        if not payment:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)}
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class PaymentValidationError(PaymentError):
    """
    Raised when a payment request is invalid.

    Use for:
    - Amount not positive or above the invoice balance
    - Invoice closed (paid/cancelled) or currency mismatch
    - Account missing or inactive
    - Missing method-specific fields (billing_data, wallet_number)
    - Operations the payment's method does not support (confirm)

    No Payment row is created when this is raised by process_payment.
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class SignatureError(PaymentError):
    """
    Raised when a webhook fails authenticity verification.

    Covers missing/malformed signature headers, digest mismatch and
    timestamps outside the tolerance window. Webhook endpoints answer
    with HTTP 400 and write nothing.
    """

    default_error_code: str = "INVALID_SIGNATURE"


class IneligibleRefundError(PaymentError):
    """
    Raised when a refund request violates the refund rules.

    Use for:
    - Payment not COMPLETED or PARTIALLY_REFUNDED
    - Amount not positive or above the refundable remainder
    - Method does not support refunds
    - Payment older than REFUND_MAX_AGE_DAYS

    Raised before any side effect.
    """

    default_error_code: str = "REFUND_NOT_ELIGIBLE"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentError):
    """
    Base exception for all gateway call failures.

    Provides common attributes for gateway error handling:
    - gateway: Which gateway failed (stripe, paymob, manual)
    - provider_code: The gateway's own error code, if any
    - is_retryable: Whether the operation can be retried

    The message is written for API clients; raw provider payloads are never
    placed in it.

    Example:
        try:
            adapter.create(params)
        except GatewayError as e:
            if e.is_retryable:
                schedule_retry(e)
            else:
                mark_failed(e.message)
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway: str | None = None,
        provider_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway:
            details["gateway"] = gateway
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway = gateway
        self.provider_code = provider_code


class GatewayTimeoutError(GatewayError):
    """
    Gateway call timed out.

    IMPORTANT: The operation may have succeeded on the gateway's side.
    Webhooks (or a later status sync) are the source of truth.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """
    Gateway is unreachable or returned a server error (5xx).

    Also used for rate limiting.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayRejectedError(GatewayError):
    """
    Gateway refused the request (4xx, card declined, invalid parameters).

    This is a permanent error - the same request will not succeed.
    """

    default_error_code: str = "GATEWAY_REJECTED"
    is_retryable: bool = False


class GatewayNotFoundError(GatewayError):
    """
    The referenced remote object does not exist on the gateway.
    """

    default_error_code: str = "GATEWAY_NOT_FOUND"
    is_retryable: bool = False


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class ReconciliationConflict(ConflictError):
    """
    Raised when a reported status would move a payment along an edge the
    payment state machine does not allow.

    Nothing is mutated. Webhook endpoints log it and acknowledge with 200,
    since redelivering the same event cannot make the edge legal.

    Attributes:
        details: Contains payment_id, current_status and target_status
    """

    default_error_code: str = "RECONCILIATION_CONFLICT"


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    This exception indicates that the record was modified by another
    process between read and update operations. The caller should
    either retry the operation with fresh data or abort.

    Attributes:
        details: Contains pk, expected_version, and current_version

    Note:
        This exception inherits from ConflictError (HTTP 409) because
        it represents a state conflict that prevents the operation.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    This exception indicates that another process holds the lock
    and it couldn't be acquired within the timeout period.

    Attributes:
        details: Contains key and timeout information

    Example:
        lock = DistributedLock("refund:payment:123", ttl=60, timeout=10)
        if not lock.acquire():
            raise LockAcquisitionError(
                "Failed to acquire lock 'refund:payment:123' within 10s",
                details={"key": "refund:payment:123", "timeout": 10}
            )
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "SignatureError",
    "IneligibleRefundError",
    # Gateway
    "GatewayError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "GatewayRejectedError",
    "GatewayNotFoundError",
    # Concurrency control
    "ReconciliationConflict",
    "StaleRecordError",
    "LockAcquisitionError",
]
