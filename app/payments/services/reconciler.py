"""
Reconciler: applies gateway-reported statuses to the payment state machine.

Every status change that originates outside this process (webhooks, the
confirm response, status pulls) goes through Reconciler.apply_status. It
finds the django-fsm transition that reaches the reported status, applies
it with a conditional update keyed on the previous status, and credits the
invoice exactly once when a payment completes.

Rules:
    - Same status: no-op
    - No declared edge to the reported status: ReconciliationConflict,
      nothing mutated, not even the transaction id
    - COMPLETED: conditional update, then InvoiceLedger.apply_payment only
      when this call won the update
    - REFUNDED: delegated to RefundManager.record_gateway_refund

Usage:
    from payments.services import Reconciler

    try:
        result = Reconciler.apply_status(
            payment,
            PaymentStatus.COMPLETED,
            transaction_id="192",
            source="webhook",
        )
    except ReconciliationConflict:
        # Out-of-order event (e.g. PROCESSING -> PENDING); acknowledged and ignored
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.services import BaseService

from payments.exceptions import ReconciliationConflict
from payments.ledger import invoice_ledger
from payments.models import Payment
from payments.services.refund_manager import RefundManager
from payments.state_machines import PaymentStatus

if TYPE_CHECKING:
    from payments.ledger import LedgerUpdate


logger = logging.getLogger(__name__)

# Statuses a gateway may report directly. PARTIALLY_REFUNDED is only ever
# reached through RefundManager.
GATEWAY_REPORTABLE_STATUSES = frozenset(
    {
        PaymentStatus.PENDING,
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.REFUNDED,
    }
)


@dataclass
class ReconcileResult:
    """
    Outcome of applying a reported status.

    Attributes:
        payment: Payment as stored after the call
        previous_status: Status before the call
        changed: Whether this call moved the payment
        ledger_update: Invoice change made by this call, if any
    """

    payment: Payment
    previous_status: str
    changed: bool
    ledger_update: LedgerUpdate | None = None

    @property
    def status(self) -> str:
        return self.payment.status


class Reconciler(BaseService):
    """
    Applies normalized gateway statuses to Payment and Invoice.

    All methods are classmethods - no instance state is maintained.
    """

    @classmethod
    def apply_status(
        cls,
        payment: Payment,
        target_status: str,
        reason: str | None = None,
        transaction_id: str | None = None,
        source: str = "webhook",
    ) -> ReconcileResult:
        """
        Move a payment to a gateway-reported status.

        Args:
            payment: Payment to update (reloaded from the database)
            target_status: Canonical status reported by the gateway
            reason: Failure reason when the target is FAILED
            transaction_id: Gateway transaction id to record (Paymob)
            source: Where the report came from, for logging

        Returns:
            ReconcileResult

        Raises:
            ReconciliationConflict: If no declared edge reaches target_status
        """
        payment = Payment.objects.get(pk=payment.pk)
        previous_status = payment.status
        log_context = {
            "payment_id": str(payment.id),
            "current_status": previous_status,
            "target_status": target_status,
            "source": source,
        }

        if target_status == previous_status:
            cls.get_logger().debug("Status unchanged, nothing to apply", extra=log_context)
            if transaction_id:
                cls.record_transaction_id(payment, transaction_id)
            return ReconcileResult(payment=payment, previous_status=previous_status, changed=False)

        if target_status == PaymentStatus.REFUNDED:
            result = cls._delegate_refund(payment, previous_status, log_context)
            if transaction_id:
                cls.record_transaction_id(result.payment, transaction_id)
            return result

        transition = cls._find_transition(payment, target_status)
        if transition is None or target_status not in GATEWAY_REPORTABLE_STATUSES:
            cls.get_logger().warning("Rejected disallowed status transition", extra=log_context)
            raise ReconciliationConflict(
                f"Cannot move payment from '{previous_status}' to '{target_status}'",
                details={
                    "payment_id": str(payment.id),
                    "current_status": previous_status,
                    "target_status": target_status,
                },
            )

        # Run the transition on the instance for its side effects
        # (timestamps, failure reason), then persist conditionally.
        if target_status == PaymentStatus.FAILED:
            getattr(payment, transition.name)(reason=reason)
        else:
            getattr(payment, transition.name)()

        changes = {
            "status": payment.status,
            "paid_at": payment.paid_at,
            "failed_at": payment.failed_at,
            "failure_reason": payment.failure_reason,
            "version": F("version") + 1,
            "updated_at": timezone.now(),
        }
        if transaction_id and not payment.gateway_transaction_id:
            changes["gateway_transaction_id"] = str(transaction_id)

        ledger_update = None
        with transaction.atomic():
            updated = Payment.objects.filter(pk=payment.pk, status=previous_status).update(**changes)
            if updated == 1 and target_status == PaymentStatus.COMPLETED:
                ledger_update = invoice_ledger.apply_payment(payment.invoice_id, payment.amount)

        payment.refresh_from_db()

        if updated != 1:
            cls.get_logger().info(
                "Lost conditional status update to a concurrent writer",
                extra={**log_context, "stored_status": payment.status},
            )
            return ReconcileResult(payment=payment, previous_status=previous_status, changed=False)

        cls.get_logger().info("Payment status reconciled", extra=log_context)
        return ReconcileResult(
            payment=payment,
            previous_status=previous_status,
            changed=True,
            ledger_update=ledger_update,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _find_transition(cls, payment: Payment, target_status: str):
        """Return the declared django-fsm transition from the current status to target."""
        for transition in payment.get_available_status_transitions():
            if transition.target == target_status:
                return transition
        return None

    @classmethod
    def record_transaction_id(cls, payment: Payment, transaction_id: str) -> None:
        """Store the gateway transaction id the first time it is reported."""
        if payment.gateway_transaction_id:
            return
        updated = Payment.objects.filter(
            pk=payment.pk,
            gateway_transaction_id__isnull=True,
        ).update(
            gateway_transaction_id=str(transaction_id),
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if updated:
            payment.refresh_from_db()

    @classmethod
    def _delegate_refund(
        cls,
        payment: Payment,
        previous_status: str,
        log_context: dict,
    ) -> ReconcileResult:
        """Hand a gateway-reported full refund to the refund manager."""
        result = RefundManager.record_gateway_refund(
            payment,
            refund_total=payment.amount,
            reason="Refunded at gateway",
        )
        payment.refresh_from_db()
        cls.get_logger().info(
            "Gateway-reported refund delegated",
            extra={**log_context, "applied": bool(result and result.applied)},
        )
        return ReconcileResult(
            payment=payment,
            previous_status=previous_status,
            changed=payment.status != previous_status,
        )
