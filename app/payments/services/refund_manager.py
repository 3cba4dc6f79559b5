"""
Refund manager for returning money on settled payments.

This module provides the RefundManager class which validates refund
eligibility, calls the gateway and applies the refund to the Payment and
its Invoice.

The service implements:
1. Eligibility checking (status, remaining amount, method, age)
2. Partial and full refunds under a per-payment distributed lock
3. Version-checked Payment update plus invoice reversal in one transaction
4. Idempotent recording of refunds reported by gateway webhooks

Usage:
    from payments.services import RefundManager

    result = RefundManager.create_refund(
        payment_id=payment.id,
        amount=Decimal("50.00"),  # None refunds the full remainder
        reason="Customer request",
    )

    if result.success:
        print(f"Refund {result.refund.id} applied")
    else:
        print(f"Gateway refused: {result.error_message}")
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.services import BaseService

from payments.adapters import get_adapter
from payments.exceptions import (
    GatewayError,
    IneligibleRefundError,
    PaymentNotFoundError,
    ReconciliationConflict,
    StaleRecordError,
)
from payments.ledger import invoice_ledger
from payments.locks import DistributedLock, check_version, refund_lock_key
from payments.models import Payment, Refund, RefundSource
from payments.state_machines import REFUNDABLE_PAYMENT_STATUSES

if TYPE_CHECKING:
    from django.db.models import QuerySet


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Distributed lock TTL for refund execution (seconds)
REFUND_LOCK_TTL = 120

# Lock acquisition timeout (seconds)
REFUND_LOCK_TIMEOUT = 10.0

# Attempts at the version-checked payment update
REFUND_APPLY_ATTEMPTS = 3


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class RefundResult:
    """
    Result of a refund attempt.

    Attributes:
        refund: The Refund row (persisted whether or not the gateway accepted)
        payment: The Payment as stored after the attempt
        success: Whether the refund was accepted and applied
        applied: False when a gateway report was already recorded
        error_code: Machine-readable failure code
        error_message: Client-safe failure message
    """

    refund: Refund
    payment: Payment
    success: bool
    applied: bool = True
    error_code: str | None = None
    error_message: str | None = None


# =============================================================================
# Refund Manager
# =============================================================================


class RefundManager(BaseService):
    """
    Service for refunding settled payments.

    Refund flow:
        1. Check eligibility (no side effects on failure)
        2. Acquire the per-payment distributed lock
        3. Re-check eligibility against fresh data
        4. Persist a PENDING Refund row
        5. Call the gateway outside any transaction
        6. On failure, mark the Refund failed; Payment and Invoice untouched
        7. On success, in one transaction: version-checked Payment update,
           Refund marked succeeded, invoice reversal

    Eligibility (all must hold):
        - Payment is COMPLETED or PARTIALLY_REFUNDED
        - Amount (or the full remainder) is positive
        - Amount does not exceed amount - refunded_amount
        - The gateway supports refunds
        - Payment settled no more than REFUND_MAX_AGE_DAYS ago
    """

    # =========================================================================
    # Eligibility Checking
    # =========================================================================

    @classmethod
    def check_eligibility(cls, payment: Payment, amount: Decimal | None = None) -> Decimal:
        """
        Validate a refund request and return the amount to refund.

        Args:
            payment: Payment to refund
            amount: Requested amount (None = full remaining amount)

        Returns:
            The amount to refund

        Raises:
            IneligibleRefundError: If any rule is violated
        """
        details = {"payment_id": str(payment.id), "status": payment.status}

        if payment.status not in REFUNDABLE_PAYMENT_STATUSES:
            raise IneligibleRefundError(
                f"Cannot refund a payment in '{payment.status}' status",
                details=details,
            )

        remaining = payment.refundable_amount
        if amount is None:
            amount = remaining
        else:
            try:
                amount = Decimal(amount)
            except (InvalidOperation, TypeError, ValueError):
                raise IneligibleRefundError("Refund amount is not a number", details=details)

        if amount <= 0:
            raise IneligibleRefundError(
                "Refund amount must be positive",
                details={**details, "amount": str(amount)},
            )

        if amount > remaining:
            raise IneligibleRefundError(
                f"Refund amount exceeds the refundable balance of {remaining}",
                details={**details, "amount": str(amount), "refundable_amount": str(remaining)},
            )

        if not get_adapter(payment.gateway).supports_refund:
            raise IneligibleRefundError(
                f"Payments made with '{payment.method}' cannot be refunded",
                details={**details, "method": payment.method},
            )

        settled_at = payment.paid_at or payment.created_at
        max_age = timedelta(days=settings.REFUND_MAX_AGE_DAYS)
        if timezone.now() - settled_at > max_age:
            raise IneligibleRefundError(
                f"Payments older than {settings.REFUND_MAX_AGE_DAYS} days cannot be refunded",
                details={**details, "paid_at": settled_at.isoformat()},
            )

        return amount

    # =========================================================================
    # Refund Creation
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_id: uuid.UUID,
        amount: Decimal | None = None,
        reason: str = "",
    ) -> RefundResult:
        """
        Refund part or all of a settled payment.

        Args:
            payment_id: Payment to refund
            amount: Amount to refund (None = full remaining amount)
            reason: Reason recorded on the Refund

        Returns:
            RefundResult; success=False when the gateway refused or failed

        Raises:
            PaymentNotFoundError: If the payment does not exist
            IneligibleRefundError: If the request violates refund rules
            LockAcquisitionError: If another refund holds the payment lock
        """
        payment = cls._get_payment(payment_id)
        cls.check_eligibility(payment, amount)

        cls.get_logger().info(
            "Starting refund creation",
            extra={"payment_id": str(payment_id), "amount": str(amount) if amount else None},
        )

        with DistributedLock(
            refund_lock_key(payment.id), ttl=REFUND_LOCK_TTL, timeout=REFUND_LOCK_TIMEOUT
        ):
            payment = cls._get_payment(payment_id)
            refund_amount = cls.check_eligibility(payment, amount)

            refund = Refund.objects.create(
                payment=payment,
                amount=refund_amount,
                currency=payment.currency,
                reason=reason or "",
                source=RefundSource.API,
            )

            adapter = get_adapter(payment.gateway)
            try:
                gateway_result = adapter.create_refund(
                    payment.gateway_ref,
                    refund_amount,
                    reason=reason or "",
                    idempotency_key=f"refund:{refund.id}",
                )
            except GatewayError as e:
                cls.get_logger().warning(
                    "Gateway refund failed",
                    extra={
                        "payment_id": str(payment.id),
                        "refund_id": str(refund.id),
                        "error_code": e.error_code,
                    },
                )
                return cls._fail_refund(refund, payment, e.error_code, e.message)

            if not gateway_result.success:
                return cls._fail_refund(
                    refund,
                    payment,
                    "GATEWAY_DECLINED",
                    gateway_result.error_message or "Refund declined by gateway",
                )

            payment = cls._apply_refund(payment, refund, gateway_result.refund_ref)

        cls.get_logger().info(
            "Refund completed",
            extra={
                "payment_id": str(payment.id),
                "refund_id": str(refund.id),
                "amount": str(refund.amount),
                "payment_status": payment.status,
            },
        )
        return RefundResult(refund=refund, payment=payment, success=True)

    @classmethod
    def record_gateway_refund(
        cls,
        payment: Payment,
        amount: Decimal | None = None,
        gateway_refund_ref: str | None = None,
        reason: str = "",
        refund_total: Decimal | None = None,
    ) -> RefundResult | None:
        """
        Apply a refund reported by the gateway (webhook or status pull).

        Idempotent on gateway_refund_ref; the amount is clamped to the
        refundable remainder. A cumulative refund_total is turned into the
        amount not yet recorded, read under the payment's refund lock, so
        repeated reports of the same total apply once.

        Args:
            payment: Payment the gateway refunded
            amount: Amount of this single refund
            gateway_refund_ref: Gateway refund id, when known
            reason: Reason recorded on the Refund
            refund_total: Total refunded so far at the gateway, used when
                amount is not given

        Returns:
            RefundResult (applied=False for an already-recorded refund), or
            None when the report adds nothing

        Raises:
            ReconciliationConflict: If the payment was never settled
        """
        with DistributedLock(
            refund_lock_key(payment.id), ttl=REFUND_LOCK_TTL, timeout=REFUND_LOCK_TIMEOUT
        ):
            payment = cls._get_payment(payment.id)
            log_context = {
                "payment_id": str(payment.id),
                "gateway_refund_ref": gateway_refund_ref,
                "reported_amount": str(amount) if amount is not None else None,
                "reported_total": str(refund_total) if refund_total is not None else None,
            }

            if gateway_refund_ref:
                existing = Refund.objects.filter(
                    payment=payment,
                    gateway_refund_ref=gateway_refund_ref,
                ).first()
                if existing is not None:
                    cls.get_logger().info("Gateway refund already recorded", extra=log_context)
                    return RefundResult(
                        refund=existing,
                        payment=payment,
                        success=existing.success,
                        applied=False,
                    )

            if amount is None and refund_total is not None:
                amount = Decimal(refund_total) - payment.refunded_amount
            if amount is None or Decimal(amount) <= 0:
                cls.get_logger().info("Refund report adds nothing new", extra=log_context)
                return None

            if payment.status not in REFUNDABLE_PAYMENT_STATUSES:
                cls.get_logger().warning(
                    "Gateway reported a refund for an unsettled payment",
                    extra={**log_context, "status": payment.status},
                )
                raise ReconciliationConflict(
                    f"Cannot refund a payment in '{payment.status}' status",
                    details={"payment_id": str(payment.id), "current_status": payment.status},
                )

            refund_amount = min(Decimal(amount), payment.refundable_amount)
            if refund_amount <= 0:
                cls.get_logger().info("Nothing left to refund", extra=log_context)
                return None

            refund = Refund.objects.create(
                payment=payment,
                amount=refund_amount,
                currency=payment.currency,
                reason=reason or "Reported by gateway",
                source=RefundSource.GATEWAY,
            )
            payment = cls._apply_refund(payment, refund, gateway_refund_ref)

        cls.get_logger().info(
            "Gateway refund recorded",
            extra={**log_context, "refund_id": str(refund.id), "amount": str(refund_amount)},
        )
        return RefundResult(refund=refund, payment=payment, success=True)

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def list_refunds(cls, payment_id: uuid.UUID) -> QuerySet[Refund]:
        """Refunds of a payment, newest first."""
        payment = cls._get_payment(payment_id)
        return payment.refunds.order_by("-created_at")

    @classmethod
    def get_refund(cls, refund_id: uuid.UUID) -> Refund:
        """
        Get a refund by id.

        Raises:
            PaymentNotFoundError: If the refund does not exist
        """
        try:
            return Refund.objects.select_related("payment").get(id=refund_id)
        except (Refund.DoesNotExist, ValueError):
            raise PaymentNotFoundError(
                f"Refund {refund_id} not found",
                error_code="REFUND_NOT_FOUND",
                details={"refund_id": str(refund_id)},
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _get_payment(cls, payment_id: uuid.UUID) -> Payment:
        try:
            return Payment.objects.get(id=payment_id)
        except (Payment.DoesNotExist, ValueError):
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )

    @classmethod
    def _fail_refund(
        cls,
        refund: Refund,
        payment: Payment,
        error_code: str,
        error_message: str,
    ) -> RefundResult:
        refund.fail(error_code=error_code, error_message=error_message)
        refund.save(update_fields=["status", "success", "completed_at", "error_code", "error_message", "updated_at"])
        return RefundResult(
            refund=refund,
            payment=payment,
            success=False,
            error_code=error_code,
            error_message=error_message,
        )

    @classmethod
    def _apply_refund(
        cls,
        payment: Payment,
        refund: Refund,
        gateway_refund_ref: str | None,
    ) -> Payment:
        """
        Apply a gateway-accepted refund to Payment, Refund and Invoice.

        The Payment update is version-checked; a concurrent writer (e.g. a
        webhook recording the transaction id) causes a re-read and retry.
        """
        version = payment.version
        for attempt in range(1, REFUND_APPLY_ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    locked = check_version(Payment, payment.pk, version)
                    locked.refunded_amount += refund.amount
                    if locked.refunded_amount >= locked.amount:
                        locked.refund_full()
                    else:
                        locked.refund_partial()
                    locked.save(
                        update_fields=["refunded_amount", "status", "refunded_at", "updated_at"]
                    )

                    refund.succeed(gateway_refund_ref=gateway_refund_ref)
                    refund.save(
                        update_fields=["status", "success", "completed_at", "gateway_refund_ref", "updated_at"]
                    )

                    invoice_ledger.reverse_payment(locked.invoice_id, refund.amount)
                return locked
            except StaleRecordError:
                if attempt == REFUND_APPLY_ATTEMPTS:
                    raise
                cls.get_logger().info(
                    "Payment changed during refund, retrying",
                    extra={"payment_id": str(payment.pk), "attempt": attempt},
                )
                version = Payment.objects.values_list("version", flat=True).get(pk=payment.pk)
        return payment
