"""
Celery tasks for payment processing.

This module provides periodic tasks for:
- Purging webhook idempotency records past their window
- Resetting webhook events stuck in PROCESSING
- Pulling gateway status for payments left open

Schedules are created by the 0002_periodic_tasks data migration
(django-celery-beat).

Usage:
    from payments.tasks import sync_pending_payments

    # Run a sync pass now
    sync_pending_payments.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.models import Payment, WebhookEvent
from payments.services import PaymentOrchestrator
from payments.state_machines import OPEN_PAYMENT_STATUSES, Gateway, WebhookEventStatus
from payments.webhooks.idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SYNC_BATCH_SIZE = 200


# =============================================================================
# Webhook Maintenance Tasks
# =============================================================================


@shared_task
def purge_expired_webhook_events() -> dict:
    """
    Periodic task to delete webhook records whose idempotency window passed.

    Returns:
        Dict with count of records deleted
    """
    deleted_count = IdempotencyGuard.purge_expired()

    if deleted_count > 0:
        logger.info(
            f"Purged {deleted_count} expired webhook events",
            extra={"deleted_count": deleted_count},
        )

    return {"deleted_count": deleted_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks.

    Finds webhooks that have been in PROCESSING status for too long and
    marks them FAILED, so the gateway's next redelivery reprocesses them.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = IdempotencyGuard.stuck_before()

    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        IdempotencyGuard.fail(webhook, "Processing timed out - reset for redelivery")
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "gateway": webhook.gateway,
                "idempotency_key": webhook.idempotency_key,
            },
        )

    if reset_count > 0:
        logger.info(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Payment Status Sync
# =============================================================================


@shared_task
def sync_pending_payments() -> dict:
    """
    Periodic task to reconcile payments the gateway never reported on.

    Pulls the gateway status of PENDING/PROCESSING payments older than
    PAYMENT_SYNC_STALE_MINUTES and applies it through the reconciler.
    Manual payments are skipped: nothing can be pulled for them.

    Returns:
        Dict with counts of payments checked and changed
    """
    cutoff = timezone.now() - timedelta(minutes=settings.PAYMENT_SYNC_STALE_MINUTES)

    payments = (
        Payment.objects.filter(
            status__in=OPEN_PAYMENT_STATUSES,
            created_at__lt=cutoff,
            gateway_reference__isnull=False,
        )
        .exclude(gateway=Gateway.MANUAL)
        .order_by("created_at")[:SYNC_BATCH_SIZE]
    )

    checked_count = 0
    changed_count = 0
    for payment in payments:
        previous_status = payment.status
        synced = PaymentOrchestrator.sync_payment(payment)
        checked_count += 1
        if synced.status != previous_status:
            changed_count += 1
            logger.info(
                "Payment status changed by sync",
                extra={
                    "payment_id": str(payment.id),
                    "previous_status": previous_status,
                    "status": synced.status,
                },
            )

    if checked_count > 0:
        logger.info(
            f"Synced {checked_count} open payments, {changed_count} changed",
            extra={"checked_count": checked_count, "changed_count": changed_count},
        )

    return {"checked_count": checked_count, "changed_count": changed_count}
