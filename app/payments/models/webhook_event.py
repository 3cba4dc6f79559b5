"""
WebhookEvent model: the idempotency ledger for inbound gateway webhooks.

Stores every accepted webhook delivery keyed on (gateway, idempotency_key)
together with the acknowledgment that was returned for it. A repeated
delivery of a processed, unexpired event is answered from this record
without reprocessing.

Usage:
    from payments.models import WebhookEvent
    from payments.state_machines import WebhookEventStatus

    event, created = WebhookEvent.objects.get_or_create(
        gateway="stripe",
        idempotency_key="evt_1234567890",
        defaults={
            "event_type": "payment_intent.succeeded",
            "payload": payload,
            "expires_at": timezone.now() + timedelta(hours=24),
        },
    )

    if not created and event.is_processed and not event.is_expired:
        # Duplicate delivery - replay the cached acknowledgment
        return JsonResponse(event.response_body, status=event.response_status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import EventKind, Gateway, WebhookEventStatus

if TYPE_CHECKING:
    from typing import Any


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks gateway webhook deliveries for idempotent processing.

    Stores the payload, the processing status and the cached response to:
    1. Prevent duplicate handling (idempotency)
    2. Reprocess deliveries that previously failed
    3. Provide an audit trail for debugging

    Processing Flow:
        1. Webhook arrives, signature verified
        2. Insert/get WebhookEvent with (gateway, idempotency_key)
        3. If PROCESSED and unexpired -> replay cached acknowledgment
        4. Set status to PROCESSING
        5. Classify and dispatch
        6. Set status to PROCESSED (cache response) or FAILED (no cache)

    Fields:
        gateway: Gateway that sent the event
        idempotency_key: Stripe event id, Paymob "{kind}:{txn id}" or a
            payload hash; unique per gateway
        event_kind: transaction, order or refund
        event_type: Gateway event type (e.g. 'payment_intent.succeeded')
        payload: Full JSON payload
        status: Processing status
        response_status/response_body: Cached acknowledgment
        processed_at: When event was successfully processed
        expires_at: When the idempotency record stops deduplicating
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    gateway = models.CharField(
        max_length=20,
        choices=Gateway.choices,
        help_text="Gateway that sent the webhook",
    )

    idempotency_key = models.CharField(
        max_length=255,
        help_text="Deduplication key - unique per gateway",
    )

    event_kind = models.CharField(
        max_length=20,
        choices=EventKind.choices,
        default=EventKind.UNKNOWN,
        help_text="Classification: transaction, order or refund",
    )

    event_type = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway event type (e.g., 'payment_intent.succeeded', 'TRANSACTION')",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Full webhook payload (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    expires_at = models.DateTimeField(
        db_index=True,
        help_text="When this record stops deduplicating and may be purged",
    )

    # ==========================================================================
    # Cached Acknowledgment
    # ==========================================================================

    response_status = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        help_text="HTTP status returned for this event",
    )

    response_body = models.JSONField(
        null=True,
        blank=True,
        help_text="Response body returned for this event",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["gateway", "idempotency_key"],
                name="webhook_unique_gateway_key",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with gateway, key and type."""
        return f"WebhookEvent({self.gateway}, {self.idempotency_key}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        """Check if event has been successfully processed."""
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_processing(self) -> bool:
        """Check if a delivery of this event is being processed."""
        return self.status == WebhookEventStatus.PROCESSING

    @property
    def is_failed(self) -> bool:
        """Check if event processing failed."""
        return self.status == WebhookEventStatus.FAILED

    @property
    def is_expired(self) -> bool:
        """Check if the idempotency window has passed."""
        return timezone.now() >= self.expires_at

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self, response_status: int, response_body: dict[str, Any]) -> None:
        """
        Mark event as successfully processed and cache the acknowledgment.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.response_status = response_status
        self.response_body = response_body
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        No acknowledgment is cached, so a redelivery reprocesses the event.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
        self.response_status = None
        self.response_body = None
