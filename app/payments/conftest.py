"""
Pytest fixtures shared by every payments test package.

This module provides fixtures for creating payment-related test data,
gateway doubles and signed webhook payloads.

Sections:
    - User and API Client Fixtures
    - Billing Fixtures
    - Payment State Fixtures
    - Gateway Double Fixtures
    - Webhook Payload Fixtures

Usage:
    def test_refund(completed_payment, mock_stripe_gateway):
        result = RefundManager.create_refund(completed_payment.id, Decimal("30.00"))
        assert result.success
"""

import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import InvoiceStatus
from billing.tests.factories import AccountFactory, InvoiceFactory
from payments.adapters import (
    CancelOutcome,
    CancelResult,
    GatewayPaymentResult,
    GatewayRefundResult,
    IntentRef,
    OrderRef,
    PaymobAdapter,
    StripeAdapter,
    set_adapter,
)
from payments.state_machines import Gateway, PaymentMethod, PaymentStatus
from payments.tests.factories import PaymentFactory, UserFactory
from payments.webhooks.signatures import PaymobVerifier


# =============================================================================
# User and API Client Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a test API user."""
    return UserFactory()


@pytest.fixture
def api_client(user):
    """API client authenticated as the test user."""
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def staff_user(db):
    """Create a staff user allowed to confirm manual payments."""
    return UserFactory(is_staff=True)


@pytest.fixture
def staff_client(staff_user):
    """API client authenticated as the staff user."""
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


# =============================================================================
# Billing Fixtures
# =============================================================================


@pytest.fixture
def account(db):
    """Create an active billing account."""
    return AccountFactory()


@pytest.fixture
def invoice(account):
    """Create a sent invoice of 100.00 USD with nothing paid."""
    return InvoiceFactory(account=account, total=Decimal("100.00"), currency="USD")


@pytest.fixture
def egp_invoice(account):
    """Create a sent invoice of 250.00 EGP for Paymob payments."""
    return InvoiceFactory(account=account, total=Decimal("250.00"), currency="EGP")


# =============================================================================
# Payment State Fixtures
# =============================================================================


@pytest.fixture
def stripe_payment(invoice):
    """Create a PENDING Stripe payment for the full invoice."""
    return PaymentFactory(invoice=invoice, gateway_reference="pi_test_pending")


@pytest.fixture
def paymob_payment(egp_invoice):
    """Create a PENDING Paymob payment for the full invoice."""
    return PaymentFactory(
        invoice=egp_invoice,
        method=PaymentMethod.PAYMOB,
        gateway_reference="555",
    )


@pytest.fixture
def bank_transfer_payment(egp_invoice):
    """Create a PENDING bank transfer awaiting manual confirmation."""
    return PaymentFactory(invoice=egp_invoice, method=PaymentMethod.BANK_TRANSFER)


@pytest.fixture
def completed_payment(account):
    """
    Create a COMPLETED Stripe payment of 100.00 whose invoice is paid.

    The invoice ledger matches the payment, as if the reconciler had
    applied it.
    """
    invoice = InvoiceFactory(
        account=account,
        total=Decimal("100.00"),
        paid_amount=Decimal("100.00"),
        status=InvoiceStatus.PAID,
    )
    return PaymentFactory(
        invoice=invoice,
        gateway_reference="pi_test_completed",
        status=PaymentStatus.COMPLETED,
        paid_at=timezone.now(),
    )


@pytest.fixture
def completed_paymob_payment(account):
    """Create a COMPLETED Paymob payment with a known transaction id."""
    invoice = InvoiceFactory(
        account=account,
        total=Decimal("250.00"),
        paid_amount=Decimal("250.00"),
        currency="EGP",
        status=InvoiceStatus.PAID,
    )
    return PaymentFactory(
        invoice=invoice,
        method=PaymentMethod.PAYMOB,
        gateway_reference="556",
        gateway_transaction_id="9001",
        status=PaymentStatus.COMPLETED,
        paid_at=timezone.now(),
    )


@pytest.fixture(autouse=True)
def no_refund_lock(mocker):
    """Replace the Redis refund lock with a no-op context manager."""
    return mocker.patch("payments.services.refund_manager.DistributedLock")


# =============================================================================
# Gateway Double Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_gateway(mocker):
    """
    Install a StripeAdapter double in the registry.

    Defaults: create returns a PENDING intent, confirm returns COMPLETED,
    cancel succeeds, refunds are accepted. Status mapping is real.
    """
    real = StripeAdapter()
    adapter = mocker.MagicMock(spec=StripeAdapter)
    adapter.gateway = Gateway.STRIPE
    adapter.supports_confirm = True
    adapter.supports_refund = True
    adapter.create.return_value = GatewayPaymentResult(
        ref=IntentRef("pi_new_123"),
        status=PaymentStatus.PENDING,
        provider_payload={"client_secret": "pi_new_123_secret", "publishable_key": "pk_test_123"},
        provider_status="requires_payment_method",
    )
    adapter.confirm.return_value = PaymentStatus.COMPLETED
    adapter.cancel.return_value = CancelResult(outcome=CancelOutcome.CANCELLED)
    adapter.get_status.return_value = PaymentStatus.PENDING
    adapter.create_refund.return_value = GatewayRefundResult(
        refund_ref="re_test_1",
        success=True,
        provider_status="succeeded",
    )
    adapter.map_status.side_effect = real.map_status
    set_adapter(Gateway.STRIPE, adapter)
    return adapter


@pytest.fixture
def mock_paymob_gateway(mocker):
    """
    Install a PaymobAdapter double in the registry.

    Defaults: create returns a PENDING order with a redirect URL, refunds
    are accepted. Status mapping is real.
    """
    real = PaymobAdapter()
    adapter = mocker.MagicMock(spec=PaymobAdapter)
    adapter.gateway = Gateway.PAYMOB
    adapter.supports_confirm = False
    adapter.supports_refund = True
    adapter.create.return_value = GatewayPaymentResult(
        ref=OrderRef(order_id="555"),
        status=PaymentStatus.PENDING,
        provider_payload={
            "redirect_url": "https://paymob.test/api/acceptance/iframes/3003?payment_token=tok",
            "order_id": "555",
        },
        provider_status="order_created",
    )
    adapter.cancel.return_value = CancelResult(outcome=CancelOutcome.CANCELLED)
    adapter.get_status.return_value = PaymentStatus.PENDING
    adapter.create_refund.return_value = GatewayRefundResult(
        refund_ref="9100",
        success=True,
        provider_status="success",
    )
    adapter.map_status.side_effect = real.map_status
    set_adapter(Gateway.PAYMOB, adapter)
    return adapter


# =============================================================================
# Webhook Payload Fixtures
# =============================================================================


@pytest.fixture
def stripe_event():
    """Build a Stripe event payload."""

    def _create(
        event_type: str = "payment_intent.succeeded",
        obj: dict | None = None,
        event_id: str | None = None,
    ) -> dict:
        return {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj or {}},
        }

    return _create


@pytest.fixture
def intent_object():
    """Build a Stripe PaymentIntent object."""

    def _create(
        intent_id: str = "pi_test_pending",
        status: str = "succeeded",
        payment_id: str | None = None,
        **extra,
    ) -> dict:
        obj = {
            "id": intent_id,
            "object": "payment_intent",
            "status": status,
            "metadata": {"payment_id": payment_id} if payment_id else {},
        }
        obj.update(extra)
        return obj

    return _create


@pytest.fixture
def stripe_signature(settings):
    """Compute a valid Stripe-Signature header for a raw body."""

    def _sign(body: bytes, timestamp: int | None = None, secret: str | None = None) -> str:
        timestamp = timestamp if timestamp is not None else int(time.time())
        signed_payload = f"{timestamp}.{body.decode('utf-8')}"
        digest = hmac.new(
            (secret or settings.STRIPE_WEBHOOK_SECRET).encode("utf-8"),
            signed_payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign


@pytest.fixture
def paymob_transaction():
    """Build a Paymob transaction callback payload."""

    def _create(
        transaction_id: int = 9001,
        order_id: int = 555,
        amount_cents: int = 25000,
        success: bool = True,
        pending: bool = False,
        merchant_order_id: str | None = None,
        **extra,
    ) -> dict:
        obj = {
            "id": transaction_id,
            "pending": pending,
            "amount_cents": amount_cents,
            "success": success,
            "is_auth": False,
            "is_capture": False,
            "is_standalone_payment": True,
            "is_voided": False,
            "is_refunded": False,
            "is_3d_secure": True,
            "integration_id": 1001,
            "has_parent_transaction": False,
            "order": {"id": order_id, "merchant_order_id": merchant_order_id},
            "created_at": "2024-06-01T10:00:00.000000",
            "currency": "EGP",
            "error_occured": False,
            "owner": 42,
            "source_data": {"pan": "2346", "type": "card", "sub_type": "MasterCard"},
            "data": {"message": "Approved" if success else "Declined"},
        }
        obj.update(extra)
        return {"type": "TRANSACTION", "obj": obj}

    return _create


@pytest.fixture
def paymob_signature(settings):
    """Compute the Paymob HMAC of a callback payload."""

    def _sign(payload: dict, secret: str | None = None) -> str:
        return PaymobVerifier.compute(payload["obj"], secret or settings.PAYMOB_HMAC_SECRET)

    return _sign


@pytest.fixture
def encode():
    """Serialize a payload to the raw body a gateway would send."""

    def _encode(payload: dict) -> bytes:
        return json.dumps(payload).encode("utf-8")

    return _encode
