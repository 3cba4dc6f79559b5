"""
URL configuration for the payment engine.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - JWT endpoints
        token/                     - Obtain access/refresh pair
        token/refresh/             - Refresh access token
    /api/v1/                       - Payment endpoints (see payments.urls)
        payments/                  - Create (POST), bulk status / history (GET)
        payments/{id}/             - Payment detail (?sync=true)
        payments/{id}/confirm/     - Confirm intent-based payment
        payments/{id}/cancel/      - Best-effort cancel
        payments/{id}/refunds/     - Refunds of a payment
        refunds/                   - Create refund
        refunds/{id}/              - Refund detail
        webhooks/gateway-a/        - Stripe webhook endpoint
        webhooks/gateway-b/        - Paymob webhook endpoint

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (simplejwt)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Payments, refunds and gateway webhooks
    path("", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Payment Engine Admin"
admin.site.site_title = "Payment Engine"
admin.site.index_title = "Payments, refunds and webhooks"
