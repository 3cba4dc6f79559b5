"""
DRF serializers for payments app.

This module provides serializers for:
- Payment creation requests and payment responses
- Confirm / cancel requests and manual receipt confirmation
- Refund requests and refund responses
- Bulk status lookups

Related files:
    - models/: Payment, Refund
    - views.py: Payment API views

Usage:
    serializer = CreatePaymentSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    params = serializer.to_params()
"""

from __future__ import annotations

from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from payments.models import Payment, Refund
from payments.services import ProcessPaymentParams
from payments.state_machines import PaymentMethod


class BillingDataSerializer(serializers.Serializer):
    """Customer billing details required by Paymob methods."""

    email = serializers.EmailField()
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100)
    phone_number = serializers.CharField(max_length=32)
    city = serializers.CharField(max_length=100, required=False)
    country = serializers.CharField(max_length=100, required=False)
    street = serializers.CharField(max_length=255, required=False)


class CreatePaymentSerializer(serializers.Serializer):
    """
    Payment creation request.

    Method-specific rules (billing data for Paymob methods, wallet number
    for Vodafone Cash, amount against the invoice balance) are enforced by
    PaymentOrchestrator so that API and service callers share them.

    Example:
        {
            "invoice_id": "4b0c...",
            "account_id": "9e1f...",
            "amount": "250.00",
            "currency": "EGP",
            "method": "vodafone_cash",
            "wallet_number": "01010101010",
            "billing_data": {"email": "...", "first_name": "...", ...}
        }
    """

    invoice_id = serializers.UUIDField()
    account_id = serializers.UUIDField()
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
    )
    currency = serializers.CharField(min_length=3, max_length=3)
    method = serializers.ChoiceField(choices=PaymentMethod.choices)
    billing_data = BillingDataSerializer(required=False)
    wallet_number = serializers.CharField(max_length=32, required=False)
    return_url = serializers.URLField(required=False)
    description = serializers.CharField(max_length=255, required=False, default="")

    def to_params(self) -> ProcessPaymentParams:
        """Build service parameters from validated data."""
        data = self.validated_data
        return ProcessPaymentParams(
            invoice_id=data["invoice_id"],
            account_id=data["account_id"],
            amount=data["amount"],
            currency=data["currency"],
            method=data["method"],
            billing_data=dict(data["billing_data"]) if data.get("billing_data") else None,
            wallet_number=data.get("wallet_number"),
            return_url=data.get("return_url"),
            description=data.get("description", ""),
        )


class PaymentSerializer(serializers.ModelSerializer):
    """Read-only payment representation. Never exposes gateway secrets."""

    invoice_id = serializers.UUIDField(read_only=True)
    account_id = serializers.UUIDField(read_only=True)
    refundable_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "invoice_id",
            "account_id",
            "amount",
            "currency",
            "method",
            "gateway",
            "status",
            "gateway_reference",
            "refunded_amount",
            "refundable_amount",
            "failure_reason",
            "paid_at",
            "failed_at",
            "refunded_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentCreatedSerializer(serializers.Serializer):
    """Response for a created payment: the payment plus client data."""

    payment = PaymentSerializer()
    provider_payload = serializers.DictField()


class ConfirmPaymentSerializer(serializers.Serializer):
    """Stripe confirmation parameters."""

    payment_method = serializers.CharField(max_length=255, required=False)
    return_url = serializers.URLField(required=False)


class ManualConfirmationSerializer(serializers.Serializer):
    """Receipt details for a bank transfer or cash payment."""

    transaction_reference = serializers.CharField(max_length=255)
    paid_at = serializers.DateTimeField(required=False)
    notes = serializers.CharField(max_length=1000, required=False, allow_blank=True, default="")

    def validate_paid_at(self, value):
        if value > timezone.now():
            raise serializers.ValidationError("Payment date cannot be in the future.")
        return value


class CancelPaymentSerializer(serializers.Serializer):
    """Cancellation request."""

    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class CancelPaymentResponseSerializer(serializers.Serializer):
    """Cancellation result: stored payment and what the gateway said."""

    payment = PaymentSerializer()
    gateway_outcome = serializers.CharField()
    message = serializers.CharField(allow_null=True)


class BulkStatusResponseSerializer(serializers.Serializer):
    """Bulk status lookup result."""

    payments = PaymentSerializer(many=True)
    not_found = serializers.ListField(child=serializers.CharField())


class RefundSerializer(serializers.ModelSerializer):
    """Read-only refund representation."""

    payment_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Refund
        fields = [
            "id",
            "payment_id",
            "amount",
            "currency",
            "reason",
            "source",
            "status",
            "success",
            "gateway_refund_ref",
            "error_code",
            "error_message",
            "completed_at",
            "created_at",
        ]
        read_only_fields = fields


class CreateRefundSerializer(serializers.Serializer):
    """
    Refund request. Omitting amount refunds the full remaining balance.

    Example:
        {"payment_id": "4b0c...", "amount": "25.00", "reason": "Duplicate charge"}
    """

    payment_id = serializers.UUIDField()
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        required=False,
        allow_null=True,
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
