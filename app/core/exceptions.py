"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the API and webhook endpoints
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── NotFoundError - Resource not found
    └── ConflictError - State conflicts (state machine, concurrent modifications)

Domain exceptions (payments.exceptions, payments.ledger.exceptions) extend
these classes.

Usage:
    from core.exceptions import BaseApplicationError, NotFoundError

    # Raise with error code and details
    raise NotFoundError(
        "Invoice not found",
        error_code="INVOICE_NOT_FOUND",
        details={"invoice_id": str(invoice_id)},
    )

    # Convert to dict for API response
    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, authentication, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)

    Example:
        try:
            payment = PaymentOrchestrator.get_payment(payment_id)
        except NotFoundError as e:
            logger.warning(f"Payment not found: {e.error_code}")
            return Response(e.to_dict(), status=404)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Payment not found",
                "error_code": "PAYMENT_NOT_FOUND",
                "details": {"payment_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        invoice = Invoice.objects.filter(id=invoice_id).first()
        if not invoice:
            raise NotFoundError(
                f"Invoice {invoice_id} not found",
                error_code="INVOICE_NOT_FOUND",
                details={"invoice_id": str(invoice_id)}
            )
    """

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when operation conflicts with current resource state.

    Use for:
    - Invalid state transitions
    - Optimistic locking failures
    - Contended distributed locks

    Example:
        if payment.status != "pending":
            raise ConflictError(
                f"Cannot confirm payment in {payment.status} status",
                error_code="INVALID_STATE_TRANSITION",
                details={"current_status": payment.status, "action": "confirm"}
            )

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
