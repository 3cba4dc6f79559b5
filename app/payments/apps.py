"""
Payments app configuration.

This app provides the payment engine:
- Payment, Refund and WebhookEvent models
- Gateway adapters (Stripe, Paymob, manual)
- Orchestration, reconciliation and refunds
- Webhook ingestion and the invoice ledger
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
