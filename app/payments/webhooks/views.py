"""
Webhook endpoint views for Stripe and Paymob.

Each view hands the raw request to WebhookIngester with the verifier for
its gateway and returns the acknowledgment it decides. Events are
processed synchronously: a 2xx is only sent once the state change is
persisted, so a gateway retry after a 5xx is always safe.

Usage:
    # In urls.py
    from payments.webhooks.views import paymob_webhook, stripe_webhook

    urlpatterns = [
        path("webhooks/gateway-a/", stripe_webhook, name="stripe_webhook"),
        path("webhooks/gateway-b/", paymob_webhook, name="paymob_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.webhooks.ingester import WebhookIngester
from payments.webhooks.signatures import PaymobVerifier, StripeVerifier


logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive Stripe webhook events.

    Returns:
        JsonResponse with status:
        - 200: Event processed, ignored or duplicate
        - 400: Missing/invalid signature or payload
        - 409: Same event still being processed; retried later
        - 500: Processing failed; Stripe will retry

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    status_code, body = WebhookIngester.ingest(
        StripeVerifier(),
        request.body,
        request.headers,
        request.GET,
    )
    return JsonResponse(body, status=status_code)


@csrf_exempt
@require_POST
def paymob_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive Paymob transaction callbacks.

    The HMAC arrives in the x-paymob-signature header or the ``hmac``
    query parameter.

    Returns:
        JsonResponse with status:
        - 200: Event processed, ignored or duplicate
        - 400: Missing/invalid HMAC or payload
        - 409: Same event still being processed; retried later
        - 500: Processing failed; Paymob will retry
    """
    status_code, body = WebhookIngester.ingest(
        PaymobVerifier(),
        request.body,
        request.headers,
        request.GET,
    )
    return JsonResponse(body, status=status_code)
