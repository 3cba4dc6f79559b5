"""
Billing admin configuration.

Invoice amounts are maintained by the payments ledger; they are shown
read-only once the invoice exists.
"""

from django.contrib import admin

from billing.models import Account, Invoice


class InvoiceInline(admin.TabularInline):
    """Inline display of invoices for an account."""

    model = Invoice
    extra = 0
    fields = ["number", "currency", "total", "paid_amount", "balance_due", "status"]
    readonly_fields = ["paid_amount", "balance_due", "status"]
    show_change_link = True


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """Admin configuration for Account."""

    list_display = ["id", "name", "email", "is_active", "created_at"]
    list_filter = ["is_active"]
    search_fields = ["id", "name", "email"]
    readonly_fields = ["id", "created_at", "updated_at"]
    inlines = [InvoiceInline]


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    """
    Admin configuration for Invoice.

    paid_amount, balance_due and status change only through payments.
    """

    list_display = [
        "number",
        "account",
        "total",
        "paid_amount",
        "balance_due",
        "currency",
        "status",
        "due_date",
    ]
    list_filter = ["status", "currency"]
    search_fields = ["id", "number", "account__name", "account__email"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def get_readonly_fields(self, request, obj=None):
        """Lock ledger-owned fields on existing invoices."""
        readonly = ["id", "created_at", "updated_at"]
        if obj is not None:
            readonly += ["total", "currency", "paid_amount", "balance_due", "status"]
        return readonly

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for invoices (payments reference them)."""
        return False
