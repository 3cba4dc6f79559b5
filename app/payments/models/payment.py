"""
Payment model: the canonical record of one attempt to pay an invoice.

A Payment is created PENDING by the orchestrator before any gateway call,
then moved along the state machine by the reconciler (gateway reports) and
the refund manager (refunds). Payments are never deleted.

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentMethod, PaymentStatus

    payment = Payment.objects.create(
        invoice=invoice,
        account=invoice.account,
        amount=Decimal("250.00"),
        currency="EGP",
        method=PaymentMethod.PAYMOB,
    )

    # Edges are declared once with django-fsm
    payment.complete()
    payment.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

from payments.adapters.types import GatewayRef, IntentRef, ManualRef, OrderRef
from payments.state_machines import (
    METHOD_GATEWAYS,
    Gateway,
    PaymentMethod,
    PaymentStatus,
)


class Payment(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Canonical payment entity tracking the full payment lifecycle.

    Uses django-fsm to declare the allowed status edges and an optimistic
    locking version field for refund bookkeeping.

    State Flow:
        PENDING -> PROCESSING -> COMPLETED
        PENDING -> COMPLETED
        PENDING/PROCESSING -> FAILED

    Refund Flow:
        COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED/REFUNDED

    Fields:
        invoice: Invoice being paid
        account: Account paying
        amount: Payment amount (> 0)
        currency: ISO 4217 currency code (uppercase)
        method: Requested payment method
        gateway: Gateway serving the method (derived from method)
        status: Current FSM status
        gateway_reference: Intent id, order id or manual reference
        gateway_transaction_id: Paymob transaction id, once known
        gateway_data: Non-secret redirect/token data returned to the client
        refunded_amount: Total successfully refunded (<= amount)
        failure_reason: Why the payment failed
        version: Optimistic locking version
        *_at timestamps: Track status transition times

    Note:
        The FSM field is not protected: status writes that race with
        webhooks go through conditional queryset updates keyed on the
        previous status, and those need refresh_from_db() to work.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    invoice = models.ForeignKey(
        "billing.Invoice",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Invoice this payment settles",
    )

    account = models.ForeignKey(
        "billing.Account",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Account making the payment",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Payment amount in major currency units",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (uppercase)",
    )

    refunded_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Total successfully refunded; never exceeds amount",
    )

    # ==========================================================================
    # Method & Gateway
    # ==========================================================================

    method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        help_text="Payment method requested by the client",
    )

    gateway = models.CharField(
        max_length=20,
        choices=Gateway.choices,
        db_index=True,
        help_text="Gateway serving the method (derived on save)",
    )

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=False,
        help_text="Current status of the payment (managed by FSM)",
    )

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    gateway_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway-assigned id: intent id, order id or manual reference",
    )

    gateway_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway transaction id (Paymob), once reported",
    )

    gateway_data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Non-secret data for the client (redirect URL, client secret)",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # Status Timestamps & Error Info
    # ==========================================================================

    paid_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway reported the payment completed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment failed or was cancelled",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the first refund was applied",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Reason the payment failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["account", "created_at"], name="payment_account_created_idx"),
            models.Index(fields=["status", "updated_at"], name="payment_status_updated_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="payment_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(refunded_amount__gte=0) & Q(refunded_amount__lte=F("amount")),
                name="payment_refunded_within_amount",
            ),
            models.UniqueConstraint(
                fields=["gateway", "gateway_reference"],
                condition=Q(gateway_reference__isnull=False),
                name="payment_unique_gateway_reference",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        return f"Payment({self.id}, {self.status}, {self.amount} {self.currency})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        Derives gateway from method on first save. On update, atomically
        increments the version field to detect concurrent modifications.
        """
        if not self.gateway and self.method:
            self.gateway = METHOD_GATEWAYS[self.method]

        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and "version" not in update_fields:
                kwargs["update_fields"] = [*update_fields, "version"]
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def refundable_amount(self) -> Decimal:
        """Amount that can still be refunded."""
        return self.amount - self.refunded_amount

    @property
    def gateway_ref(self) -> GatewayRef | None:
        """
        Typed gateway reference for adapter calls.

        Returns:
            IntentRef (Stripe), OrderRef (Paymob) or ManualRef (offline
            methods); None until the gateway has assigned a reference.
        """
        if not self.gateway_reference:
            return None
        if self.gateway == Gateway.STRIPE:
            return IntentRef(intent_id=self.gateway_reference)
        if self.gateway == Gateway.PAYMOB:
            return OrderRef(
                order_id=self.gateway_reference,
                transaction_id=self.gateway_transaction_id,
            )
        return ManualRef(reference=self.gateway_reference)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Gateway accepted the payment but has not settled it.

        Transition: PENDING -> PROCESSING
        """

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.COMPLETED,
    )
    def complete(self):
        """
        Gateway reported the payment settled.

        Transition: PENDING/PROCESSING -> COMPLETED

        The invoice ledger is updated by the caller, once, only when the
        conditional status update wins.
        """
        self.paid_at = timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark payment as failed.

        Transition: PENDING/PROCESSING -> FAILED

        Args:
            reason: Failure reason (gateway error, decline, cancellation)
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self):
        """
        Mark as partially refunded.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED

        Multiple partial refunds are allowed; refunded_amount never exceeds
        amount (database check constraint).
        """
        if self.refunded_at is None:
            self.refunded_at = timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.REFUNDED,
    )
    def refund_full(self):
        """
        Mark as fully refunded.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> REFUNDED

        Applied when refunded_amount reaches amount.
        """
        if self.refunded_at is None:
            self.refunded_at = timezone.now()
