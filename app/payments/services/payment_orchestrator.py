"""
Payment orchestrator service for coordinating payment operations.

This module provides the PaymentOrchestrator class which serves as the
entry point for all payment operations. It validates requests, selects the
gateway adapter, persists the Payment and hands gateway-reported statuses
to the Reconciler.

The orchestrator:
- Creates the Payment (PENDING) before any gateway call
- Records a failed gateway call on the Payment and surfaces the error
- Confirms, cancels and syncs payments with their gateway
- Answers bulk status and payment history lookups

Usage:
    from payments.services import PaymentOrchestrator, ProcessPaymentParams

    result = PaymentOrchestrator.process_payment(
        ProcessPaymentParams(
            invoice_id=invoice.id,
            account_id=account.id,
            amount=Decimal("250.00"),
            currency="EGP",
            method="paymob",
            billing_data={
                "email": "payer@example.com",
                "first_name": "Mona",
                "last_name": "Adel",
                "phone_number": "+201000000000",
            },
        )
    )

    redirect_url = result.provider_payload["redirect_url"]
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.services import BaseService

from billing.models import Account, Invoice
from payments.adapters import (
    BillingData,
    CancelOutcome,
    CreatePaymentParams,
    get_adapter,
    get_adapter_for_method,
)
from payments.exceptions import (
    GatewayError,
    PaymentNotFoundError,
    PaymentValidationError,
    ReconciliationConflict,
)
from payments.models import Payment
from payments.services.reconciler import Reconciler
from payments.state_machines import (
    OPEN_PAYMENT_STATUSES,
    PAYMOB_METHODS,
    Gateway,
    PaymentMethod,
    PaymentStatus,
)

if TYPE_CHECKING:
    from datetime import datetime

    from django.contrib.auth.base_user import AbstractBaseUser

    from payments.adapters import GatewayAdapter


logger = logging.getLogger(__name__)

# Statuses a status pull can no longer change
SYNC_SKIP_STATUSES = frozenset({PaymentStatus.FAILED, PaymentStatus.REFUNDED})

# Upper bound for a single history page
MAX_HISTORY_LIMIT = 100


# =============================================================================
# Parameter Types
# =============================================================================


@dataclass
class ProcessPaymentParams:
    """
    Parameters for a new payment request.

    Attributes:
        invoice_id: Invoice being paid
        account_id: Account paying
        amount: Amount in major currency units
        currency: ISO 4217 currency code (must match the invoice)
        method: stripe, paymob, vodafone_cash, bank_transfer or cash
        billing_data: Required for paymob and vodafone_cash (email,
            first_name, last_name, phone_number)
        wallet_number: Required for vodafone_cash
        return_url: Optional redirect target after payment
        description: Optional description sent to the gateway
    """

    invoice_id: uuid.UUID | str
    account_id: uuid.UUID | str
    amount: Decimal | str
    currency: str
    method: str
    billing_data: dict[str, Any] | None = None
    wallet_number: str | None = None
    return_url: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        """Normalize amount and currency."""
        try:
            self.amount = Decimal(str(self.amount))
        except (InvalidOperation, TypeError, ValueError):
            raise PaymentValidationError(
                "Amount must be a number",
                details={"amount": str(self.amount)},
            )
        self.currency = (self.currency or "").upper()


@dataclass
class PaymentResult:
    """
    Result of a successful payment request.

    Attributes:
        payment: The persisted Payment
        provider_payload: Non-secret client data (redirect_url,
            client_secret, instructions)
    """

    payment: Payment
    provider_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class CancelPaymentResult:
    """Result of a cancellation: stored payment plus what the gateway said."""

    payment: Payment
    gateway_outcome: CancelOutcome
    message: str | None = None


@dataclass
class BulkStatusResult:
    """Payments found for a bulk status request and the ids that were not."""

    payments: list[Payment]
    not_found: list[str]


# =============================================================================
# Payment Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Central coordinator for payment operations.

    The orchestrator is the primary entry point for payment operations.
    Adapter selection happens here (through the registry); nothing
    downstream branches on gateway identity.

    All methods are class methods - no instance state is maintained.

    Usage:
        result = PaymentOrchestrator.process_payment(params)
        payment = PaymentOrchestrator.confirm_payment(payment_id, {"payment_method": "pm_x"})
        payment = PaymentOrchestrator.get_payment(payment_id, sync=True)
    """

    # =========================================================================
    # Create
    # =========================================================================

    @classmethod
    def process_payment(cls, params: ProcessPaymentParams) -> PaymentResult:
        """
        Validate, persist and submit a new payment.

        The Payment row exists (PENDING) before the adapter is called. A
        gateway failure marks it FAILED with a reason and re-raises.

        Args:
            params: Payment request

        Returns:
            PaymentResult with the Payment and client-facing data

        Raises:
            PaymentValidationError: Invalid request; no Payment is created
            GatewayError: The gateway call failed; Payment is FAILED
        """
        invoice, account, billing_data = cls._validate(params)
        adapter = get_adapter_for_method(params.method)

        payment = Payment.objects.create(
            invoice=invoice,
            account=account,
            amount=params.amount,
            currency=params.currency,
            method=params.method,
            metadata={"return_url": params.return_url} if params.return_url else {},
        )

        log_context = {
            "payment_id": str(payment.id),
            "invoice_id": str(invoice.id),
            "method": params.method,
            "amount": str(params.amount),
            "currency": params.currency,
        }
        cls.get_logger().info("Payment created, calling gateway", extra=log_context)

        gateway_params = CreatePaymentParams(
            payment_id=payment.id,
            invoice_id=invoice.id,
            account_id=account.id,
            amount=params.amount,
            currency=params.currency,
            method=params.method,
            billing_data=billing_data,
            wallet_number=params.wallet_number,
            return_url=params.return_url,
            description=params.description or f"Invoice {invoice.number}",
        )

        try:
            result = adapter.create(gateway_params)
        except GatewayError as e:
            cls._mark_failed(payment, f"{e.error_code}: {e.message}")
            cls.get_logger().warning(
                "Gateway rejected payment creation",
                extra={**log_context, "error_code": e.error_code},
            )
            raise
        except Exception:
            cls._mark_failed(payment, "INTERNAL_ERROR: Unexpected error calling the gateway")
            cls.get_logger().error(
                "Unexpected error calling the gateway",
                extra=log_context,
                exc_info=True,
            )
            raise

        Payment.objects.filter(pk=payment.pk, gateway_reference__isnull=True).update(
            gateway_reference=str(result.ref),
            gateway_data=result.provider_payload,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        payment.refresh_from_db()

        if result.status != payment.status:
            reconciled = Reconciler.apply_status(payment, result.status, source="create")
            payment = reconciled.payment

        cls.get_logger().info(
            "Payment submitted to gateway",
            extra={**log_context, "gateway_reference": payment.gateway_reference, "status": payment.status},
        )
        return PaymentResult(payment=payment, provider_payload=result.provider_payload)

    @classmethod
    def _validate(
        cls, params: ProcessPaymentParams
    ) -> tuple[Invoice, Account, BillingData | None]:
        """Check every precondition before anything is written."""
        if params.amount <= 0:
            raise PaymentValidationError(
                "Amount must be greater than zero",
                details={"amount": str(params.amount)},
            )

        if params.method not in PaymentMethod.values:
            raise PaymentValidationError(
                f"Unsupported payment method: {params.method}",
                details={"method": params.method, "supported": list(PaymentMethod.values)},
            )

        try:
            account = Account.objects.get(id=params.account_id)
        except (Account.DoesNotExist, ValueError):
            raise PaymentValidationError(
                "Account not found",
                details={"account_id": str(params.account_id)},
            )
        if not account.is_active:
            raise PaymentValidationError(
                "Account is not active",
                details={"account_id": str(account.id)},
            )

        try:
            invoice = Invoice.objects.get(id=params.invoice_id)
        except (Invoice.DoesNotExist, ValueError):
            raise PaymentValidationError(
                "Invoice not found",
                details={"invoice_id": str(params.invoice_id)},
            )
        if invoice.account_id != account.id:
            raise PaymentValidationError(
                "Invoice does not belong to this account",
                details={"invoice_id": str(invoice.id), "account_id": str(account.id)},
            )
        if not invoice.is_payable:
            raise PaymentValidationError(
                f"Invoice is {invoice.status} and cannot be paid",
                details={"invoice_id": str(invoice.id), "invoice_status": invoice.status},
            )
        if params.currency != invoice.currency.upper():
            raise PaymentValidationError(
                "Currency does not match the invoice currency",
                details={"currency": params.currency, "invoice_currency": invoice.currency},
            )
        if params.amount > invoice.balance_due:
            raise PaymentValidationError(
                "Amount exceeds the invoice balance due",
                details={"amount": str(params.amount), "balance_due": str(invoice.balance_due)},
            )

        billing_data = None
        if params.method in PAYMOB_METHODS:
            raw = params.billing_data or {}
            missing = [name for name in BillingData.REQUIRED_FIELDS if not raw.get(name)]
            if missing:
                raise PaymentValidationError(
                    "Billing data is incomplete",
                    details={"missing_fields": missing},
                )
            billing_data = BillingData.from_dict(raw)

        if params.method == PaymentMethod.VODAFONE_CASH and not params.wallet_number:
            raise PaymentValidationError(
                "Wallet number is required for Vodafone Cash",
                details={"missing_fields": ["wallet_number"]},
            )

        return invoice, account, billing_data

    @classmethod
    def _mark_failed(cls, payment: Payment, reason: str) -> None:
        payment.fail(reason=reason)
        payment.save(update_fields=["status", "failed_at", "failure_reason", "updated_at"])

    # =========================================================================
    # Confirm / Cancel
    # =========================================================================

    @classmethod
    def confirm_payment(cls, payment_id: uuid.UUID, extra: dict[str, Any] | None = None) -> Payment:
        """
        Confirm an intent-based payment and reconcile the returned status.

        Raises:
            PaymentNotFoundError: Unknown payment
            PaymentValidationError: Method has no confirm step, or payment closed
            GatewayError: Gateway call failed; payment unchanged
        """
        payment = cls.get_payment(payment_id)
        adapter = get_adapter(payment.gateway)

        if not adapter.supports_confirm:
            raise PaymentValidationError(
                f"Payments made with '{payment.method}' do not need confirmation",
                details={"payment_id": str(payment.id), "method": payment.method},
            )
        if payment.status not in OPEN_PAYMENT_STATUSES:
            raise PaymentValidationError(
                f"Payment is already {payment.status}",
                details={"payment_id": str(payment.id), "status": payment.status},
            )

        status = adapter.confirm(payment.gateway_ref, extra or {})

        try:
            return Reconciler.apply_status(payment, status, source="confirm").payment
        except ReconciliationConflict:
            payment.refresh_from_db()
            return payment

    @classmethod
    def cancel_payment(cls, payment_id: uuid.UUID, reason: str = "") -> CancelPaymentResult:
        """
        Cancel an open payment.

        Step 1 asks the gateway to void the payment. Step 2 fails the local
        payment regardless of the gateway outcome, unless the gateway says
        the payment already settled; then its status is pulled and
        reconciled instead.

        Raises:
            PaymentNotFoundError: Unknown payment
            PaymentValidationError: Payment already terminal
        """
        payment = cls.get_payment(payment_id)
        if payment.status not in OPEN_PAYMENT_STATUSES:
            raise PaymentValidationError(
                f"Payment is already {payment.status} and cannot be cancelled",
                details={"payment_id": str(payment.id), "status": payment.status},
            )

        adapter = get_adapter(payment.gateway)
        ref = payment.gateway_ref
        if ref is None:
            outcome, message = CancelOutcome.NOT_FOUND, "Payment has no gateway reference"
        else:
            cancel_result = adapter.cancel(ref)
            outcome, message = cancel_result.outcome, cancel_result.message

        log_context = {
            "payment_id": str(payment.id),
            "gateway": payment.gateway,
            "gateway_outcome": outcome.value,
        }
        cls.get_logger().info("Gateway cancellation attempted", extra=log_context)

        if outcome == CancelOutcome.ALREADY_SETTLED:
            payment = cls.sync_payment(payment)
        else:
            cancel_reason = f"Cancelled: {reason or 'requested by client'}"
            try:
                payment = Reconciler.apply_status(
                    payment,
                    PaymentStatus.FAILED,
                    reason=cancel_reason,
                    source="cancel",
                ).payment
            except ReconciliationConflict:
                payment.refresh_from_db()

        return CancelPaymentResult(payment=payment, gateway_outcome=outcome, message=message)

    @classmethod
    def confirm_manual_payment(
        cls,
        payment_id: uuid.UUID,
        transaction_reference: str,
        confirmed_by: AbstractBaseUser,
        paid_at: datetime | None = None,
        notes: str = "",
    ) -> Payment:
        """
        Record that a bank transfer or cash payment was received.

        Completes the payment through the Reconciler, so the invoice is
        credited exactly once, and keeps who confirmed it and the bank or
        receipt reference in the payment metadata.

        Args:
            payment_id: Manual payment to confirm
            transaction_reference: Bank transfer or receipt reference
            confirmed_by: Staff user confirming the receipt
            paid_at: When the money arrived (defaults to now)
            notes: Free-form notes kept with the confirmation

        Raises:
            PaymentNotFoundError: Unknown payment
            PaymentValidationError: Not a manual payment, or no longer open
        """
        payment = cls.get_payment(payment_id)
        details = {"payment_id": str(payment.id), "method": payment.method, "status": payment.status}

        if payment.gateway != Gateway.MANUAL:
            raise PaymentValidationError(
                f"Payments made with '{payment.method}' are confirmed by their gateway",
                details=details,
            )
        if payment.status not in OPEN_PAYMENT_STATUSES:
            raise PaymentValidationError(f"Payment is already {payment.status}", details=details)

        confirmation = {
            "transaction_reference": transaction_reference,
            "confirmed_by": str(confirmed_by.pk),
            "confirmed_by_username": confirmed_by.get_username(),
            "confirmed_at": timezone.now().isoformat(),
            "notes": notes,
        }

        with transaction.atomic():
            result = Reconciler.apply_status(
                payment,
                PaymentStatus.COMPLETED,
                transaction_id=transaction_reference,
                source="manual",
            )
            if not result.changed:
                raise PaymentValidationError(
                    f"Payment is already {result.payment.status}",
                    details={**details, "status": result.payment.status},
                )

            payment = result.payment
            payment.metadata = {**(payment.metadata or {}), "manual_confirmation": confirmation}
            update_fields = ["metadata", "updated_at"]
            if paid_at is not None:
                payment.paid_at = paid_at
                update_fields.append("paid_at")
            payment.save(update_fields=update_fields)

        cls.get_logger().info(
            "Manual payment confirmed",
            extra={
                "payment_id": str(payment.id),
                "method": payment.method,
                "confirmed_by": confirmation["confirmed_by"],
            },
        )
        return payment

    # =========================================================================
    # Lookups
    # =========================================================================

    @classmethod
    def get_payment(cls, payment_id: uuid.UUID, sync: bool = False) -> Payment:
        """
        Get a stored payment, optionally pulling the gateway status first.

        A failed sync is logged and the stored payment returned.

        Raises:
            PaymentNotFoundError: Unknown payment
        """
        try:
            payment = Payment.objects.select_related("invoice").get(id=payment_id)
        except (Payment.DoesNotExist, ValueError):
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        if sync:
            payment = cls.sync_payment(payment)
        return payment

    @classmethod
    def sync_payment(cls, payment: Payment) -> Payment:
        """Pull the gateway status and reconcile it. Never raises for gateway errors."""
        if payment.status in SYNC_SKIP_STATUSES or payment.gateway_ref is None:
            return payment

        adapter: GatewayAdapter = get_adapter(payment.gateway)
        log_context = {"payment_id": str(payment.id), "gateway": payment.gateway}
        try:
            status = adapter.get_status(payment.gateway_ref, payment.amount)
            return Reconciler.apply_status(payment, status, source="sync").payment
        except (GatewayError, ReconciliationConflict) as e:
            cls.get_logger().warning(
                "Payment status sync failed",
                extra={**log_context, "error_code": e.error_code},
            )
        payment.refresh_from_db()
        return payment

    @classmethod
    def find_by_gateway_reference(cls, gateway: str, reference: str) -> Payment | None:
        """Look up a payment by the reference its gateway assigned."""
        if not reference:
            return None
        return Payment.objects.filter(gateway=gateway, gateway_reference=str(reference)).first()

    @classmethod
    def bulk_status(cls, ids: list[str]) -> BulkStatusResult:
        """
        Look up several payments at once.

        Raises:
            PaymentValidationError: If fewer than 1 or more than
                PAYMENT_BULK_STATUS_LIMIT ids are given
        """
        unique_ids = list(dict.fromkeys(str(i).strip() for i in ids if str(i).strip()))
        limit = settings.PAYMENT_BULK_STATUS_LIMIT
        if not unique_ids or len(unique_ids) > limit:
            raise PaymentValidationError(
                f"Provide between 1 and {limit} payment ids",
                details={"count": len(unique_ids), "limit": limit},
            )

        canonical: dict[str, uuid.UUID] = {}
        for raw in unique_ids:
            try:
                canonical[raw] = uuid.UUID(raw)
            except ValueError:
                continue

        payments = list(Payment.objects.filter(id__in=canonical.values()).order_by("-created_at"))
        found = {p.id for p in payments}
        not_found = [raw for raw in unique_ids if canonical.get(raw) not in found]
        return BulkStatusResult(payments=payments, not_found=not_found)

    @classmethod
    def payment_history(cls, account_id: uuid.UUID, limit: int | None = None) -> list[Payment]:
        """Most recent payments for an account, newest first."""
        if limit is None:
            limit = settings.PAYMENT_HISTORY_DEFAULT_LIMIT
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        try:
            account_uuid = uuid.UUID(str(account_id))
        except ValueError:
            raise PaymentValidationError(
                "Invalid account id",
                details={"account_id": str(account_id)},
            )
        return list(Payment.objects.filter(account_id=account_uuid).order_by("-created_at")[:limit])
