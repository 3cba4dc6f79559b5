import uuid
from decimal import Decimal

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Account",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "name",
                    models.CharField(help_text="Display name of the account", max_length=255),
                ),
                (
                    "email",
                    models.EmailField(help_text="Billing contact email", max_length=254),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Inactive accounts cannot make new payments",
                    ),
                ),
            ],
            options={
                "verbose_name": "Account",
                "verbose_name_plural": "Accounts",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "number",
                    models.CharField(
                        help_text="Invoice number shown to the customer",
                        max_length=50,
                        unique=True,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="EGP",
                        help_text="ISO 4217 currency code (uppercase)",
                        max_length=3,
                    ),
                ),
                (
                    "total",
                    models.DecimalField(
                        decimal_places=2, help_text="Total invoiced amount", max_digits=12
                    ),
                ),
                (
                    "paid_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Amount paid so far, net of refunds",
                        max_digits=12,
                    ),
                ),
                (
                    "balance_due",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Outstanding amount: max(0, total - paid_amount)",
                        max_digits=12,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("partially_paid", "Partially Paid"),
                            ("paid", "Paid"),
                            ("overdue", "Overdue"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="draft",
                        help_text="Current invoice status",
                        max_length=20,
                    ),
                ),
                (
                    "due_date",
                    models.DateField(blank=True, help_text="Date payment is due", null=True),
                ),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Account that owes this invoice",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="billing.account",
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice",
                "verbose_name_plural": "Invoices",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["account", "status"], name="billing_inv_acct_status_idx")
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total__gte", 0)),
                        name="invoice_total_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("paid_amount__gte", 0)),
                        name="invoice_paid_amount_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance_due__gte", 0)),
                        name="invoice_balance_due_non_negative",
                    ),
                ],
            },
        ),
    ]
