"""
DRF views for payments app.

This module provides API views for:
- Payment creation, bulk status and account history
- Payment detail with optional live status pull
- Confirm and cancel, and staff confirmation of manual payments
- Refund creation and lookup

Related files:
    - services/: PaymentOrchestrator, RefundManager
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/views.py: Gateway webhook endpoints

Endpoints:
    POST /api/v1/payments/ - Create payment
    GET /api/v1/payments/?ids=a,b,c - Bulk status
    GET /api/v1/payments/?account_id=... - Payment history
    GET /api/v1/payments/{id}/?sync=true - Payment detail
    POST /api/v1/payments/{id}/confirm/ - Confirm intent-based payment
    POST /api/v1/payments/{id}/confirm-manual/ - Confirm bank transfer or cash (staff)
    POST /api/v1/payments/{id}/cancel/ - Best-effort cancel
    GET /api/v1/payments/{id}/refunds/ - Refunds of a payment
    POST /api/v1/refunds/ - Create refund
    GET /api/v1/refunds/{id}/ - Refund detail

Security:
    - All endpoints require authentication (JWT or session)
    - Manual confirmation additionally requires a staff user
    - Errors return e.to_dict(); gateway secrets and raw provider
      payloads are never included
"""

from __future__ import annotations

import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError, ConflictError

from payments.exceptions import (
    GatewayError,
    IneligibleRefundError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from payments.serializers import (
    BulkStatusResponseSerializer,
    CancelPaymentResponseSerializer,
    CancelPaymentSerializer,
    ConfirmPaymentSerializer,
    CreatePaymentSerializer,
    CreateRefundSerializer,
    ManualConfirmationSerializer,
    PaymentCreatedSerializer,
    PaymentSerializer,
    RefundSerializer,
)
from payments.services import PaymentOrchestrator, RefundManager

logger = logging.getLogger(__name__)


def error_response(error: BaseApplicationError) -> Response:
    """Map a typed application error to its HTTP response."""
    if isinstance(error, PaymentNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PaymentValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, (GatewayError, IneligibleRefundError)):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(error, ConflictError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return Response(error.to_dict(), status=status_code)


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


class PaymentListCreateView(APIView):
    """
    Create payments and look them up in bulk.

    POST /api/v1/payments/
        Create a payment for an invoice.

    GET /api/v1/payments/?ids=a,b,c
        Status of up to PAYMENT_BULK_STATUS_LIMIT payments.

    GET /api/v1/payments/?account_id=...&limit=20
        Most recent payments of an account.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payment",
        summary="Create payment",
        description=(
            "Validate the request against the invoice, persist a PENDING payment "
            "and submit it to the gateway serving the method. Returns the payment "
            "and the client data needed to finish paying (client secret, redirect "
            "URL or offline instructions)."
        ),
        request=CreatePaymentSerializer,
        responses={
            201: OpenApiResponse(response=PaymentCreatedSerializer, description="Payment created"),
            400: OpenApiResponse(description="Validation error"),
            404: OpenApiResponse(description="Account or invoice not found"),
            422: OpenApiResponse(description="Gateway rejected or failed; payment recorded FAILED"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        """Create a payment."""
        serializer = CreatePaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = PaymentOrchestrator.process_payment(serializer.to_params())
        except BaseApplicationError as e:
            return error_response(e)

        output = PaymentCreatedSerializer(
            {"payment": result.payment, "provider_payload": result.provider_payload}
        )
        return Response(output.data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="list_payments",
        summary="Bulk status or payment history",
        parameters=[
            OpenApiParameter("ids", OpenApiTypes.STR, description="Comma-separated payment ids"),
            OpenApiParameter("account_id", OpenApiTypes.UUID, description="Account whose history to list"),
            OpenApiParameter("limit", OpenApiTypes.INT, description="History size (1-100)"),
        ],
        responses={
            200: OpenApiResponse(
                response=BulkStatusResponseSerializer,
                description="Bulk status, or a list of payments for account_id",
            ),
            400: OpenApiResponse(description="Missing or invalid query parameters"),
        },
        tags=["Payments"],
    )
    def get(self, request):
        """Bulk status (?ids=) or account history (?account_id=)."""
        ids = request.query_params.get("ids")
        account_id = request.query_params.get("account_id")

        try:
            if ids is not None:
                result = PaymentOrchestrator.bulk_status(ids.split(","))
                output = BulkStatusResponseSerializer(
                    {"payments": result.payments, "not_found": result.not_found}
                )
                return Response(output.data)

            if account_id:
                limit = request.query_params.get("limit")
                if limit is not None and not limit.isdigit():
                    return Response(
                        {"error": "limit must be a positive integer", "error_code": "VALIDATION_ERROR"},
                        status=status.HTTP_400_BAD_REQUEST,
                    )
                payments = PaymentOrchestrator.payment_history(
                    account_id,
                    int(limit) if limit is not None else None,
                )
                return Response(PaymentSerializer(payments, many=True).data)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(
            {"error": "Provide ids or account_id", "error_code": "VALIDATION_ERROR"},
            status=status.HTTP_400_BAD_REQUEST,
        )


class PaymentDetailView(APIView):
    """
    Get a payment.

    GET /api/v1/payments/{payment_id}/?sync=true
        Stored status; with sync=true the gateway status is pulled and
        reconciled first. A failed pull still returns the stored payment.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment",
        summary="Get payment",
        parameters=[
            OpenApiParameter("sync", OpenApiTypes.BOOL, description="Pull the live gateway status first"),
        ],
        responses={
            200: OpenApiResponse(response=PaymentSerializer, description="Payment"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments"],
    )
    def get(self, request, payment_id):
        """Get payment, optionally syncing with the gateway."""
        try:
            payment = PaymentOrchestrator.get_payment(
                payment_id,
                sync=_truthy(request.query_params.get("sync")),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(PaymentSerializer(payment).data)


class PaymentConfirmView(APIView):
    """
    Confirm an intent-based payment.

    POST /api/v1/payments/{payment_id}/confirm/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_payment",
        summary="Confirm payment",
        description="Confirm a Stripe PaymentIntent and reconcile the status it reports.",
        request=ConfirmPaymentSerializer,
        responses={
            200: OpenApiResponse(response=PaymentSerializer, description="Payment after confirmation"),
            400: OpenApiResponse(description="Payment closed or method has no confirm step"),
            404: OpenApiResponse(description="Payment not found"),
            422: OpenApiResponse(description="Gateway confirmation failed"),
        },
        tags=["Payments"],
    )
    def post(self, request, payment_id):
        """Confirm a payment."""
        serializer = ConfirmPaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            payment = PaymentOrchestrator.confirm_payment(payment_id, dict(serializer.validated_data))
        except BaseApplicationError as e:
            return error_response(e)
        return Response(PaymentSerializer(payment).data)


class PaymentManualConfirmView(APIView):
    """
    Confirm receipt of a bank transfer or cash payment.

    POST /api/v1/payments/{payment_id}/confirm-manual/
        Staff only. Completes the payment and credits its invoice.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="confirm_manual_payment",
        summary="Confirm manual payment",
        description="Record that a bank transfer or cash payment was received.",
        request=ManualConfirmationSerializer,
        responses={
            200: OpenApiResponse(response=PaymentSerializer, description="Completed payment"),
            400: OpenApiResponse(description="Not a manual payment, or no longer open"),
            403: OpenApiResponse(description="Staff access required"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments"],
    )
    def post(self, request, payment_id):
        """Confirm a manual payment."""
        serializer = ManualConfirmationSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            payment = PaymentOrchestrator.confirm_manual_payment(
                payment_id,
                transaction_reference=data["transaction_reference"],
                confirmed_by=request.user,
                paid_at=data.get("paid_at"),
                notes=data.get("notes", ""),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(PaymentSerializer(payment).data)


class PaymentCancelView(APIView):
    """
    Best-effort cancel.

    POST /api/v1/payments/{payment_id}/cancel/
        Asks the gateway to void the payment, then fails it locally unless
        the gateway reports it already settled.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_payment",
        summary="Cancel payment",
        request=CancelPaymentSerializer,
        responses={
            200: OpenApiResponse(response=CancelPaymentResponseSerializer, description="Cancellation result"),
            404: OpenApiResponse(description="Payment not found"),
            422: OpenApiResponse(description="Payment can no longer be cancelled"),
        },
        tags=["Payments"],
    )
    def post(self, request, payment_id):
        """Cancel a payment."""
        serializer = CancelPaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = PaymentOrchestrator.cancel_payment(
                payment_id,
                reason=serializer.validated_data.get("reason", ""),
            )
        except PaymentValidationError as e:
            return Response(e.to_dict(), status=status.HTTP_422_UNPROCESSABLE_ENTITY)
        except BaseApplicationError as e:
            return error_response(e)

        output = CancelPaymentResponseSerializer(
            {
                "payment": result.payment,
                "gateway_outcome": result.gateway_outcome.value,
                "message": result.message,
            }
        )
        return Response(output.data)


class PaymentRefundListView(APIView):
    """
    Refunds of a payment.

    GET /api/v1/payments/{payment_id}/refunds/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_payment_refunds",
        summary="List refunds of a payment",
        responses={
            200: OpenApiResponse(response=RefundSerializer(many=True), description="Refunds, newest first"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Refunds"],
    )
    def get(self, request, payment_id):
        """List refunds."""
        try:
            refunds = RefundManager.list_refunds(payment_id)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(RefundSerializer(refunds, many=True).data)


class RefundCreateView(APIView):
    """
    Create a refund.

    POST /api/v1/refunds/
        Refunds part or all of a settled payment.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_refund",
        summary="Create refund",
        request=CreateRefundSerializer,
        responses={
            201: OpenApiResponse(response=RefundSerializer, description="Refund succeeded"),
            400: OpenApiResponse(description="Validation error"),
            404: OpenApiResponse(description="Payment not found"),
            409: OpenApiResponse(description="Another refund is in progress for this payment"),
            422: OpenApiResponse(description="Refund ineligible, or refused by the gateway"),
        },
        tags=["Refunds"],
    )
    def post(self, request):
        """Create a refund."""
        serializer = CreateRefundSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            result = RefundManager.create_refund(
                data["payment_id"],
                amount=data.get("amount"),
                reason=data.get("reason", ""),
            )
        except BaseApplicationError as e:
            return error_response(e)

        if not result.success:
            return Response(
                {
                    "error": result.error_message or "Refund failed",
                    "error_code": result.error_code or "REFUND_FAILED",
                    "details": {"refund": RefundSerializer(result.refund).data},
                },
                status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            )

        return Response(RefundSerializer(result.refund).data, status=status.HTTP_201_CREATED)


class RefundDetailView(APIView):
    """
    Get a refund.

    GET /api/v1/refunds/{refund_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_refund",
        summary="Get refund",
        responses={
            200: OpenApiResponse(response=RefundSerializer, description="Refund"),
            404: OpenApiResponse(description="Refund not found"),
        },
        tags=["Refunds"],
    )
    def get(self, request, refund_id):
        """Get refund."""
        try:
            refund = RefundManager.get_refund(refund_id)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(RefundSerializer(refund).data)
