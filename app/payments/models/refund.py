"""
Refund model for tracking money returned to customers.

A Refund represents money going back to the customer from a completed
payment. One Payment can have multiple Refunds (partial refunds). Failed
gateway attempts are kept as Refund rows with success=False for audit.

Usage:
    from payments.models import Refund
    from payments.state_machines import RefundStatus

    refund = Refund.objects.create(
        payment=payment,
        amount=Decimal("50.00"),
        currency=payment.currency,
        reason="Customer requested cancellation",
    )

    # After the gateway accepts the refund
    refund.succeed(gateway_refund_ref="re_123")
    refund.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import RefundStatus


class RefundSource(models.TextChoices):
    """Where a refund originated."""

    API = "api", "API Request"
    GATEWAY = "gateway", "Gateway Webhook"


class Refund(UUIDPrimaryKeyMixin, BaseModel):
    """
    Represents money returned to a customer.

    State Flow:
        PENDING -> SUCCEEDED
        PENDING -> FAILED

    Fields:
        payment: Payment being refunded
        amount: Refund amount in major currency units
        currency: ISO 4217 currency code
        reason: Customer/admin-facing refund reason
        status: Current FSM status
        success: Whether the gateway accepted the refund
        source: API request or gateway-initiated (webhook)
        gateway_refund_ref: Gateway refund id (re_xxx, Paymob txn id)
        error_code/error_message: Gateway failure details
        completed_at: When the refund succeeded or failed

    Note:
        The sum of successful refund amounts for a payment never exceeds
        the payment amount; Payment.refunded_amount carries the running
        total under a database check constraint.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Payment being refunded",
    )

    # ==========================================================================
    # Amount & Reason
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Refund amount in major currency units",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (uppercase)",
    )

    reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Reason for the refund",
    )

    source = models.CharField(
        max_length=20,
        choices=RefundSource.choices,
        default=RefundSource.API,
        help_text="Whether the refund was requested via API or reported by the gateway",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=False,
        help_text="Current status of the refund (managed by FSM)",
    )

    success = models.BooleanField(
        default=False,
        help_text="Whether the gateway accepted the refund",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway_refund_ref = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway refund id (Stripe re_xxx, Paymob transaction id)",
    )

    # ==========================================================================
    # Outcome
    # ==========================================================================

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund succeeded or failed",
    )

    error_code = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Machine-readable error code if the refund failed",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if the refund failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["payment", "status"], name="refund_payment_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="refund_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["payment", "gateway_refund_ref"],
                condition=Q(gateway_refund_ref__isnull=False),
                name="refund_unique_gateway_ref_per_payment",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        return f"Refund({self.id}, {self.status}, {self.amount} {self.currency})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.SUCCEEDED,
    )
    def succeed(self, gateway_refund_ref: str | None = None):
        """
        Mark refund as accepted by the gateway.

        Transition: PENDING -> SUCCEEDED
        """
        self.success = True
        self.completed_at = timezone.now()
        if gateway_refund_ref:
            self.gateway_refund_ref = gateway_refund_ref

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.FAILED,
    )
    def fail(self, error_code: str | None = None, error_message: str | None = None):
        """
        Mark refund as rejected or errored.

        Transition: PENDING -> FAILED

        Args:
            error_code: Machine-readable error code
            error_message: Client-safe error message
        """
        self.success = False
        self.completed_at = timezone.now()
        self.error_code = error_code
        self.error_message = error_message

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_pending(self) -> bool:
        """Check if refund is awaiting a gateway outcome."""
        return self.status == RefundStatus.PENDING
