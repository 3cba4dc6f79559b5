"""
Pytest fixtures for gateway adapter tests.

This module provides fixtures for testing the adapters, including mock
Stripe API objects and errors, a scripted Paymob HTTP transport, and
canonical request parameters.

Sections:
    - Test Data Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
    - Paymob Transport Fixtures
"""

import json
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from unittest.mock import patch

import httpx
import pytest
import stripe

from payments.adapters import BillingData, CreatePaymentParams


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest.fixture
def payment_id():
    """Generate a random UUID for testing."""
    return uuid.uuid4()


@pytest.fixture
def billing_data():
    """Billing details accepted by Paymob."""
    return BillingData(
        email="payer@example.com",
        first_name="Mona",
        last_name="Adel",
        phone_number="+201000000000",
    )


@pytest.fixture
def make_params(payment_id, billing_data):
    """Build CreatePaymentParams with sensible defaults."""

    def _create(**overrides) -> CreatePaymentParams:
        values = {
            "payment_id": payment_id,
            "invoice_id": uuid.uuid4(),
            "account_id": uuid.uuid4(),
            "amount": Decimal("125.50"),
            "currency": "USD",
            "method": "stripe",
            "billing_data": None,
        }
        if overrides.get("method") in ("paymob", "vodafone_cash"):
            values["billing_data"] = billing_data
            values["currency"] = "EGP"
        values.update(overrides)
        return CreatePaymentParams(**values)

    return _create


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_payment_method",
        amount: int = 12550,
        currency: str = "usd",
        client_secret: str = "pi_test123456_secret_abc123",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "client_secret": client_secret,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 5000,
        currency: str = "usd",
        status: str = "succeeded",
        payment_intent: str = "pi_test123456",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": currency,
                "status": status,
                "payment_intent": payment_intent,
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""
    return stripe.CardError(
        message="Your card was declined.",
        param=None,
        code="card_declined",
    )


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such payment_intent",
        param: str | None = "intent",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(
            message=message,
            param=param,
            code=code,
        )

    return _create


@pytest.fixture
def rate_limit_error():
    """Create a Stripe RateLimitError."""
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    """Create a Stripe APIConnectionError."""

    def _create(message: str = "Could not connect to Stripe.") -> stripe.APIConnectionError:
        return stripe.APIConnectionError(message=message)

    return _create


@pytest.fixture
def api_error():
    """Create a Stripe APIError."""
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    """Create a Stripe AuthenticationError."""
    return stripe.AuthenticationError(message="Invalid API Key provided.")


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def mock_stripe_http_client():
    """Mock stripe.RequestsClient so no HTTP client is built."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        mock.confirm.return_value = mock_payment_intent(status="succeeded")
        mock.cancel.return_value = mock_payment_intent(status="canceled")
        mock.retrieve.return_value = mock_payment_intent(status="processing")
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        yield mock


# =============================================================================
# Paymob Transport Fixtures
# =============================================================================


@dataclass
class PaymobRoute:
    """One scripted response; a list of responses is served in order."""

    responses: list[tuple[int, Any]]
    calls: list[httpx.Request] = field(default_factory=list)


class PaymobServer:
    """
    Scripted Paymob API for httpx.MockTransport.

    Routes are keyed by "METHOD /path" relative to the API base URL. The
    last response of a route is repeated once the others are used up.
    """

    def __init__(self, base_path: str = "/api") -> None:
        self.base_path = base_path
        self.routes: dict[str, PaymobRoute] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: tuple[int, Any]) -> PaymobRoute:
        route = PaymobRoute(responses=list(responses))
        self.routes[f"{method} {path}"] = route
        return route

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(self.base_path)
        route = self.routes.get(f"{request.method} {path}")
        if route is None:
            return httpx.Response(404, json={"detail": "not found"})
        route.calls.append(request)
        index = min(len(route.calls), len(route.responses)) - 1
        status_code, body = route.responses[index]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status_code, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content or b"{}")


@pytest.fixture
def paymob_server():
    """Scripted Paymob API with a working auth endpoint."""
    server = PaymobServer()
    server.add("POST", "/auth/tokens", (201, {"token": "auth-token-1"}))
    return server


@pytest.fixture
def paymob_adapter(paymob_server):
    """PaymobAdapter wired to the scripted server."""
    from payments.adapters import PaymobAdapter

    return PaymobAdapter(transport=paymob_server.transport())
