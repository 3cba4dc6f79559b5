"""
Project-wide pytest configuration.

Overrides settings that need external services (Redis) or slow down the
suite, auto-marks tests by filename and provides fixtures shared by every
app.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # Local memory cache instead of Redis (Paymob auth token cache)
    settings.CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "payment-engine-tests",
        }
    }

    # Gateway credentials used by adapter and webhook tests
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_PUBLISHABLE_KEY = "pk_test_123"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
    settings.PAYMOB_API_KEY = "paymob-api-key"
    settings.PAYMOB_BASE_URL = "https://paymob.test/api"
    settings.PAYMOB_INTEGRATION_ID = "1001"
    settings.PAYMOB_WALLET_INTEGRATION_ID = "2002"
    settings.PAYMOB_IFRAME_ID = "3003"
    settings.PAYMOB_HMAC_SECRET = "paymob-hmac-secret"
    settings.PAYMOB_REQUIRE_HMAC = True


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full payment journeys through the API)
    - test_views.py, test_tasks.py, service tests, etc. → integration
    - test_models.py, adapter tests, test_signatures.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    # Filename patterns for each category
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_ingester.py",
        "test_idempotency.py",
        "test_orchestrator.py",
        "test_reconciler.py",
        "test_refund_manager.py",
        "test_ledger.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_stripe_adapter.py",
        "test_paymob_adapter.py",
        "test_manual_adapter.py",
        "test_signatures.py",
        "test_classifier.py",
        "test_locks.py",
        "test_exceptions.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filepath = str(item.fspath)
        filename = filepath.split("/")[-1]

        # Check patterns in priority order
        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def reset_gateway_adapters():
    """Drop cached adapters so settings and doubles never leak between tests."""
    from payments.adapters import reset_adapters

    reset_adapters()
    yield
    reset_adapters()


@pytest.fixture(autouse=True)
def clear_cache():
    """Start every test with an empty cache (Paymob auth token)."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()
