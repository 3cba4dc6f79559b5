"""
Payment admin configuration.

Registers Payment, Refund and WebhookEvent with the Django admin. Money and
status fields are read-only: they change only through the orchestrator,
the reconciler and the refund manager.
"""

from django.contrib import admin

from payments.models import Payment, Refund, WebhookEvent

__all__ = [
    "PaymentAdmin",
    "RefundAdmin",
    "WebhookEventAdmin",
]


class RefundInline(admin.TabularInline):
    """Inline display of refunds for a payment."""

    model = Refund
    extra = 0
    fields = ["id", "amount", "status", "source", "gateway_refund_ref", "created_at"]
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Provides visibility into payment status, gateway references and refunds.
    """

    list_display = [
        "id",
        "invoice",
        "account",
        "amount_display",
        "method",
        "status",
        "gateway_reference",
        "created_at",
    ]
    list_filter = ["status", "method", "gateway", "currency", "created_at"]
    search_fields = [
        "id",
        "gateway_reference",
        "gateway_transaction_id",
        "invoice__number",
        "account__email",
    ]
    readonly_fields = [
        "id",
        "invoice",
        "account",
        "amount",
        "currency",
        "method",
        "gateway",
        "status",
        "gateway_reference",
        "gateway_transaction_id",
        "gateway_data",
        "refunded_amount",
        "failure_reason",
        "version",
        "paid_at",
        "failed_at",
        "refunded_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [RefundInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "invoice", "account", "method", "gateway", "status"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount", "currency", "refunded_amount"),
            },
        ),
        (
            "Gateway",
            {
                "fields": ("gateway_reference", "gateway_transaction_id", "gateway_data"),
            },
        ),
        (
            "Status Timestamps",
            {
                "fields": ("paid_at", "failed_at", "refunded_at"),
            },
        ),
        (
            "Failure Info",
            {
                "fields": ("failure_reason",),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: Payment) -> str:
        """Display the amount with its currency."""
        return f"{obj.amount:.2f} {obj.currency}"

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        """Payments are created through the API only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    """
    Admin configuration for Refund.

    Provides visibility into refund status and history.
    """

    list_display = [
        "id",
        "payment",
        "amount_display",
        "status",
        "source",
        "reason",
        "completed_at",
        "created_at",
    ]
    list_filter = ["status", "source", "currency", "created_at"]
    search_fields = [
        "id",
        "gateway_refund_ref",
        "payment__id",
        "reason",
    ]
    readonly_fields = [
        "id",
        "payment",
        "amount",
        "currency",
        "status",
        "success",
        "source",
        "gateway_refund_ref",
        "error_code",
        "error_message",
        "completed_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "payment", "status", "success", "source"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount", "currency"),
            },
        ),
        (
            "Refund Details",
            {
                "fields": ("reason", "gateway_refund_ref", "completed_at"),
            },
        ),
        (
            "Failure Info",
            {
                "fields": ("error_code", "error_message"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: Refund) -> str:
        """Display the amount with its currency."""
        return f"{obj.amount:.2f} {obj.currency}"

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        """Refunds are created through the API only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for refunds (audit trail)."""
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "gateway",
        "idempotency_key",
        "event_kind",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["gateway", "status", "event_kind", "created_at"]
    search_fields = ["id", "idempotency_key", "event_type"]
    readonly_fields = [
        "id",
        "gateway",
        "idempotency_key",
        "event_kind",
        "event_type",
        "payload",
        "status",
        "response_status",
        "response_body",
        "processed_at",
        "expires_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "gateway", "idempotency_key", "event_kind", "event_type", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("processed_at", "expires_at", "retry_count"),
            },
        ),
        (
            "Acknowledgment",
            {
                "fields": ("response_status", "response_body"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False
