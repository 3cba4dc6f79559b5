"""
Webhook ingestion pipeline.

Runs one inbound delivery through verification, classification,
deduplication and dispatch, and decides the HTTP acknowledgment:

    invalid signature / body      400, nothing written
    duplicate of a processed event  cached acknowledgment
    duplicate still in progress   409 {"status": "in_progress"}, retried later
    processed                    200 {"status": "processed"}
    out-of-order status           200 {"status": "ignored"} (logged)
    unexpected error              500, event marked failed for redelivery

Usage:
    from payments.webhooks.ingester import WebhookIngester
    from payments.webhooks.signatures import StripeVerifier

    status_code, body = WebhookIngester.ingest(
        StripeVerifier(), request.body, request.headers, request.GET
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from core.services import BaseService

from payments.exceptions import ReconciliationConflict, SignatureError
from payments.webhooks.classifier import classify
from payments.webhooks.handlers import dispatch_webhook
from payments.webhooks.idempotency import IdempotencyGuard

if TYPE_CHECKING:
    from collections.abc import Mapping

    from payments.webhooks.signatures import SignatureVerifier


logger = logging.getLogger(__name__)


class WebhookIngester(BaseService):
    """Verifies, deduplicates and dispatches webhook deliveries."""

    @classmethod
    def ingest(
        cls,
        verifier: SignatureVerifier,
        body: bytes,
        headers: Mapping[str, str],
        query: Mapping[str, str] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        """
        Process one webhook delivery.

        Args:
            verifier: Signature verifier for the sending gateway
            body: Raw request body
            headers: Request headers
            query: Query parameters

        Returns:
            (HTTP status code, JSON response body)
        """
        try:
            payload = verifier.verify(body, headers, query)
        except SignatureError as e:
            return 400, e.to_dict()

        event = classify(verifier.gateway, payload)
        log_context = {
            "gateway": event.gateway,
            "event_kind": event.kind,
            "event_type": event.event_type,
            "idempotency_key": event.idempotency_key,
        }

        decision = IdempotencyGuard.begin(event)
        if decision.in_progress:
            return 409, {"status": "in_progress"}
        if decision.replay:
            record = decision.record
            return record.response_status or 200, record.response_body or {"status": "duplicate"}

        record = decision.record
        try:
            result = dispatch_webhook(event)
        except ReconciliationConflict as e:
            cls.get_logger().info(
                "Ignoring out-of-order webhook status",
                extra={**log_context, "error": e.message},
            )
            body_out = {"status": "ignored", "reason": e.message}
            IdempotencyGuard.complete(record, 200, body_out)
            return 200, body_out
        except Exception as e:
            cls.get_logger().error(
                f"Webhook processing failed: {e}",
                extra=log_context,
                exc_info=True,
            )
            IdempotencyGuard.fail(record, str(e))
            return 500, {"status": "error", "error": "Webhook processing failed"}

        body_out = {"status": "processed" if result.data is not None else "acknowledged"}
        IdempotencyGuard.complete(record, 200, body_out)
        cls.get_logger().info("Webhook processed", extra=log_context)
        return 200, body_out
