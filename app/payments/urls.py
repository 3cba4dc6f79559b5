"""
URL configuration for the payments app.

Routes:
    - POST/GET payments/ - Create payment, bulk status, history
    - GET payments/{id}/ - Payment detail
    - POST payments/{id}/confirm/ - Confirm intent-based payment
    - POST payments/{id}/confirm-manual/ - Confirm bank transfer or cash (staff)
    - POST payments/{id}/cancel/ - Best-effort cancel
    - GET payments/{id}/refunds/ - Refunds of a payment
    - POST refunds/ - Create refund
    - GET refunds/{id}/ - Refund detail
    - POST webhooks/gateway-a/ - Stripe webhook endpoint
    - POST webhooks/gateway-b/ - Paymob webhook endpoint

All routes are prefixed with /api/v1/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import (
    PaymentCancelView,
    PaymentConfirmView,
    PaymentDetailView,
    PaymentListCreateView,
    PaymentManualConfirmView,
    PaymentRefundListView,
    RefundCreateView,
    RefundDetailView,
)
from payments.webhooks.views import paymob_webhook, stripe_webhook

app_name = "payments"

urlpatterns = [
    # Payments
    path("payments/", PaymentListCreateView.as_view(), name="payment_list"),
    path("payments/<uuid:payment_id>/", PaymentDetailView.as_view(), name="payment_detail"),
    path("payments/<uuid:payment_id>/confirm/", PaymentConfirmView.as_view(), name="payment_confirm"),
    path(
        "payments/<uuid:payment_id>/confirm-manual/",
        PaymentManualConfirmView.as_view(),
        name="payment_confirm_manual",
    ),
    path("payments/<uuid:payment_id>/cancel/", PaymentCancelView.as_view(), name="payment_cancel"),
    path(
        "payments/<uuid:payment_id>/refunds/",
        PaymentRefundListView.as_view(),
        name="payment_refunds",
    ),
    # Refunds
    path("refunds/", RefundCreateView.as_view(), name="refund_create"),
    path("refunds/<uuid:refund_id>/", RefundDetailView.as_view(), name="refund_detail"),
    # Webhook endpoints
    path("webhooks/gateway-a/", stripe_webhook, name="stripe_webhook"),
    path("webhooks/gateway-b/", paymob_webhook, name="paymob_webhook"),
]
