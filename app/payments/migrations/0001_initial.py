import uuid
from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
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
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Flexible key-value metadata storage",
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Payment amount in major currency units",
                        max_digits=12,
                    ),
                ),
                (
                    "currency",
                    models.CharField(help_text="ISO 4217 currency code (uppercase)", max_length=3),
                ),
                (
                    "refunded_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Total successfully refunded; never exceeds amount",
                        max_digits=12,
                    ),
                ),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("stripe", "Card (Stripe)"),
                            ("paymob", "Card (Paymob)"),
                            ("vodafone_cash", "Vodafone Cash"),
                            ("bank_transfer", "Bank Transfer"),
                            ("cash", "Cash"),
                        ],
                        help_text="Payment method requested by the client",
                        max_length=20,
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        choices=[("stripe", "Stripe"), ("paymob", "Paymob"), ("manual", "Manual")],
                        db_index=True,
                        help_text="Gateway serving the method (derived on save)",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current status of the payment (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "gateway_reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway-assigned id: intent id, order id or manual reference",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "gateway_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway transaction id (Paymob), once reported",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "gateway_data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Non-secret data for the client (redirect URL, client secret)",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "paid_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway reported the payment completed",
                        null=True,
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payment failed or was cancelled",
                        null=True,
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the first refund was applied",
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(blank=True, help_text="Reason the payment failed", null=True),
                ),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Account making the payment",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="billing.account",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        help_text="Invoice this payment settles",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="billing.invoice",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["account", "created_at"], name="payment_account_created_idx"),
                    models.Index(fields=["status", "updated_at"], name="payment_status_updated_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="payment_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("refunded_amount__gte", 0),
                            ("refunded_amount__lte", models.F("amount")),
                        ),
                        name="payment_refunded_within_amount",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("gateway_reference__isnull", False)),
                        fields=("gateway", "gateway_reference"),
                        name="payment_unique_gateway_reference",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
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
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Refund amount in major currency units",
                        max_digits=12,
                    ),
                ),
                (
                    "currency",
                    models.CharField(help_text="ISO 4217 currency code (uppercase)", max_length=3),
                ),
                (
                    "reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Reason for the refund",
                        max_length=255,
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[("api", "API Request"), ("gateway", "Gateway Webhook")],
                        default="api",
                        help_text="Whether the refund was requested via API or reported by the gateway",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current status of the refund (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "success",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the gateway accepted the refund",
                    ),
                ),
                (
                    "gateway_refund_ref",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway refund id (Stripe re_xxx, Paymob transaction id)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the refund succeeded or failed",
                        null=True,
                    ),
                ),
                (
                    "error_code",
                    models.CharField(
                        blank=True,
                        help_text="Machine-readable error code if the refund failed",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if the refund failed",
                        null=True,
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Payment being refunded",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payment", "status"], name="refund_payment_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="refund_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("gateway_refund_ref__isnull", False)),
                        fields=("payment", "gateway_refund_ref"),
                        name="refund_unique_gateway_ref_per_payment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
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
                    "gateway",
                    models.CharField(
                        choices=[("stripe", "Stripe"), ("paymob", "Paymob"), ("manual", "Manual")],
                        help_text="Gateway that sent the webhook",
                        max_length=20,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Deduplication key - unique per gateway",
                        max_length=255,
                    ),
                ),
                (
                    "event_kind",
                    models.CharField(
                        choices=[
                            ("transaction", "Transaction"),
                            ("order", "Order"),
                            ("refund", "Refund"),
                            ("unknown", "Unknown"),
                        ],
                        default="unknown",
                        help_text="Classification: transaction, order or refund",
                        max_length=20,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Gateway event type (e.g., 'payment_intent.succeeded', 'TRANSACTION')",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(help_text="Full webhook payload (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "expires_at",
                    models.DateTimeField(
                        db_index=True,
                        help_text="When this record stops deduplicating and may be purged",
                    ),
                ),
                (
                    "response_status",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        help_text="HTTP status returned for this event",
                        null=True,
                    ),
                ),
                (
                    "response_body",
                    models.JSONField(
                        blank=True,
                        help_text="Response body returned for this event",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("gateway", "idempotency_key"),
                        name="webhook_unique_gateway_key",
                    ),
                ],
            },
        ),
    ]
