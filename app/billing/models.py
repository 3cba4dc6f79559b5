"""
Billing models: the accounts that pay and the invoices they owe.

Usage:
    from billing.models import Account, Invoice, InvoiceStatus

    account = Account.objects.create(name="Acme", email="billing@acme.test")
    invoice = Invoice.objects.create(
        account=account,
        number="INV-2024-0001",
        currency="EGP",
        total=Decimal("1000.00"),
        balance_due=Decimal("1000.00"),
        status=InvoiceStatus.SENT,
    )

Note:
    paid_amount, balance_due and status are owned by
    payments.ledger.InvoiceLedger once an invoice has been issued.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class InvoiceStatus(models.TextChoices):
    """
    Invoice lifecycle states.

    Payable states: SENT, PARTIALLY_PAID, OVERDUE
    Closed states: PAID, CANCELLED
    """

    DRAFT = "draft", "Draft"
    SENT = "sent", "Sent"
    PARTIALLY_PAID = "partially_paid", "Partially Paid"
    PAID = "paid", "Paid"
    OVERDUE = "overdue", "Overdue"
    CANCELLED = "cancelled", "Cancelled"


class Account(UUIDPrimaryKeyMixin, BaseModel):
    """
    A paying customer.

    Inactive accounts cannot start new payments.
    """

    name = models.CharField(
        max_length=255,
        help_text="Display name of the account",
    )

    email = models.EmailField(
        help_text="Billing contact email",
    )

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive accounts cannot make new payments",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Account"
        verbose_name_plural = "Accounts"

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


class Invoice(UUIDPrimaryKeyMixin, BaseModel):
    """
    An amount owed by an account.

    Invariant:
        balance_due == max(0, total - paid_amount)

    Fields:
        account: Owning account
        number: Human-facing invoice number (unique)
        currency: ISO 4217 currency code (uppercase)
        total: Invoiced amount
        paid_amount: Sum of settled payments net of refunds
        balance_due: Remaining amount to collect
        status: Lifecycle state (see InvoiceStatus)
        due_date: Payment due date
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="invoices",
        help_text="Account that owes this invoice",
    )

    # ==========================================================================
    # Identification
    # ==========================================================================

    number = models.CharField(
        max_length=50,
        unique=True,
        help_text="Invoice number shown to the customer",
    )

    currency = models.CharField(
        max_length=3,
        default="EGP",
        help_text="ISO 4217 currency code (uppercase)",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    total = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Total invoiced amount",
    )

    paid_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Amount paid so far, net of refunds",
    )

    balance_due = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Outstanding amount: max(0, total - paid_amount)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=InvoiceStatus.choices,
        default=InvoiceStatus.DRAFT,
        db_index=True,
        help_text="Current invoice status",
    )

    due_date = models.DateField(
        null=True,
        blank=True,
        help_text="Date payment is due",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Invoice"
        verbose_name_plural = "Invoices"
        indexes = [
            models.Index(fields=["account", "status"], name="billing_inv_acct_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total__gte=0),
                name="invoice_total_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(paid_amount__gte=0),
                name="invoice_paid_amount_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(balance_due__gte=0),
                name="invoice_balance_due_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Invoice({self.number}, {self.status}, {self.balance_due} {self.currency})"

    @property
    def is_payable(self) -> bool:
        """Check if the invoice can accept new payments."""
        return self.status not in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)
