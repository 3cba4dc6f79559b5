"""
Webhook handling for payment events from Stripe and Paymob.

Deliveries are verified, classified into gateway-independent events,
deduplicated against the WebhookEvent table and dispatched synchronously.

Usage:
    # In urls.py
    from payments.webhooks.views import paymob_webhook, stripe_webhook

    urlpatterns = [
        path("webhooks/gateway-a/", stripe_webhook, name="stripe_webhook"),
        path("webhooks/gateway-b/", paymob_webhook, name="paymob_webhook"),
    ]
"""

from payments.webhooks.classifier import GatewayEvent, classify
from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.idempotency import IdempotencyGuard
from payments.webhooks.ingester import WebhookIngester
from payments.webhooks.views import paymob_webhook, stripe_webhook

__all__ = [
    "GatewayEvent",
    "IdempotencyGuard",
    "WebhookIngester",
    "classify",
    "dispatch_webhook",
    "paymob_webhook",
    "register_handler",
    "stripe_webhook",
]
