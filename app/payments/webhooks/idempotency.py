"""
Idempotency guard for inbound webhooks.

Backed by the WebhookEvent table so deduplication survives restarts and is
shared by every worker. Keys are unique per gateway:

    Stripe   event id (evt_...)
    Paymob   "{kind}:{transaction id}"
    other    sha256 of the canonical JSON payload

A processed, unexpired record replays its cached acknowledgment. A record
still being processed by another worker is reported as in progress so the
gateway retries later. A failed record, one left in PROCESSING past
STUCK_PROCESSING_THRESHOLD_MINUTES, or one whose window has passed is
processed again.

Usage:
    decision = IdempotencyGuard.begin(event)
    if decision.in_progress:
        return JsonResponse({"status": "in_progress"}, status=409)
    if decision.replay:
        return JsonResponse(decision.record.response_body, status=decision.record.response_status)

    ...process...
    IdempotencyGuard.complete(decision.record, 200, {"status": "processed"})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

if TYPE_CHECKING:
    from payments.webhooks.classifier import GatewayEvent


logger = logging.getLogger(__name__)


# A PROCESSING record untouched for longer than this is treated as abandoned
STUCK_PROCESSING_THRESHOLD_MINUTES = 30


@dataclass
class GuardDecision:
    """
    Outcome of checking an event against the idempotency ledger.

    Attributes:
        record: The WebhookEvent row for this delivery
        replay: True when the cached acknowledgment should be returned as is
        in_progress: True when another delivery of the event is still running
    """

    record: WebhookEvent
    replay: bool
    in_progress: bool = False


class IdempotencyGuard:
    """Deduplicates webhook deliveries. All methods are classmethods."""

    @classmethod
    def expiry(cls):
        return timezone.now() + timedelta(hours=settings.WEBHOOK_IDEMPOTENCY_TTL_HOURS)

    @classmethod
    def stuck_before(cls):
        return timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    @classmethod
    def begin(cls, event: GatewayEvent) -> GuardDecision:
        """
        Record a delivery and decide whether to process it.

        The row is locked while the decision is made so two concurrent
        deliveries of the same event cannot both claim it as new.
        """
        with transaction.atomic():
            record, created = WebhookEvent.objects.select_for_update().get_or_create(
                gateway=event.gateway,
                idempotency_key=event.idempotency_key,
                defaults={
                    "event_kind": event.kind,
                    "event_type": event.event_type,
                    "payload": event.payload,
                    "expires_at": cls.expiry(),
                },
            )

            log_context = {
                "gateway": event.gateway,
                "idempotency_key": event.idempotency_key,
                "event_type": event.event_type,
                "webhook_event_id": str(record.id),
            }

            if not created:
                if record.is_processed and not record.is_expired:
                    logger.info("Duplicate webhook delivery, replaying acknowledgment", extra=log_context)
                    return GuardDecision(record=record, replay=True)

                if record.is_processing and record.updated_at >= cls.stuck_before():
                    logger.info("Webhook delivery already in progress", extra=log_context)
                    return GuardDecision(record=record, replay=False, in_progress=True)

                logger.info(
                    f"Reprocessing webhook with status: {record.status}",
                    extra=log_context,
                )
                record.payload = event.payload
                record.event_kind = event.kind
                record.event_type = event.event_type
                record.expires_at = cls.expiry()

            record.mark_processing()
            record.save()

        return GuardDecision(record=record, replay=False)

    @classmethod
    def complete(cls, record: WebhookEvent, response_status: int, response_body: dict[str, Any]) -> None:
        """Cache the acknowledgment returned for a processed event."""
        record.mark_processed(response_status, response_body)
        record.save(
            update_fields=[
                "status",
                "processed_at",
                "response_status",
                "response_body",
                "error_message",
                "updated_at",
            ]
        )

    @classmethod
    def fail(cls, record: WebhookEvent, error_message: str) -> None:
        """Mark an event failed; no acknowledgment is cached, so redelivery reprocesses."""
        record.mark_failed(error_message)
        record.save(
            update_fields=[
                "status",
                "error_message",
                "response_status",
                "response_body",
                "updated_at",
            ]
        )

    @classmethod
    def purge_expired(cls) -> int:
        """Delete records whose idempotency window has passed."""
        deleted, _ = WebhookEvent.objects.filter(
            expires_at__lt=timezone.now(),
        ).exclude(status=WebhookEventStatus.PROCESSING).delete()
        return deleted
