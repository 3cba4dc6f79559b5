"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views handle HTTP concerns, models handle data, services handle logic.

Pattern Comparison:
    - ServiceResult: Use for expected outcomes that are not errors for the
      caller (e.g. a webhook event that needs no action)
    - Exceptions: Use for typed failures the caller must map (validation,
      gateway, eligibility) and for unexpected failures

Usage:
    from core.services import BaseService, ServiceResult

    class InvoiceService(BaseService):
        @classmethod
        def close_invoice(cls, invoice) -> ServiceResult[Invoice]:
            if invoice.balance_due > 0:
                return ServiceResult.failure(
                    "Invoice still has a balance",
                    error_code="BALANCE_OUTSTANDING",
                )

            invoice.status = "paid"
            invoice.save()

            cls.get_logger().info(f"Closed invoice {invoice.id}")
            return ServiceResult.success(invoice)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Generic, TypeVar

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        # Success case
        return ServiceResult.success(payment)

        # Failure case
        return ServiceResult.failure("Payment not found", "PAYMENT_NOT_FOUND")

        # Check result
        result = dispatch_webhook(event)
        if result.success:
            payment = result.data
        else:
            print(f"Error: {result.error} ({result.error_code})")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Collaborators that talk to the network are injectable for tests
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

