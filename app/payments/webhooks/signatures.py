"""
Webhook signature verification.

Each gateway proves authenticity differently:

- Stripe signs "{timestamp}.{raw body}" with HMAC-SHA256 and sends
  ``Stripe-Signature: t=...,v1=...``. Verified with the Stripe SDK;
  timestamps more than the tolerance away from now, in either direction,
  are rejected.
- Paymob signs a fixed list of transaction fields, concatenated without
  separators, with HMAC-SHA512. The digest arrives in the
  ``x-paymob-signature`` header or the ``hmac`` query parameter.

A verifier returns the decoded payload or raises SignatureError; nothing
is written before verification succeeds.

Usage:
    from payments.webhooks.signatures import PaymobVerifier

    payload = PaymobVerifier().verify(request.body, request.headers, request.GET)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.exceptions import SignatureError
from payments.state_machines import Gateway

if TYPE_CHECKING:
    from collections.abc import Mapping


logger = logging.getLogger(__name__)

# Transaction fields Paymob includes in its HMAC, in order
PAYMOB_HMAC_FIELDS = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)


def decode_json(body: bytes) -> dict[str, Any]:
    """Decode a JSON object body, raising SignatureError when it is not one."""
    try:
        payload = json.loads(body.decode("utf-8") if isinstance(body, bytes) else body)
    except (UnicodeDecodeError, ValueError):
        raise SignatureError("Invalid JSON payload", error_code="INVALID_PAYLOAD")
    if not isinstance(payload, dict):
        raise SignatureError("Payload must be a JSON object", error_code="INVALID_PAYLOAD")
    return payload


class SignatureVerifier(ABC):
    """Verifies that a webhook body was sent by its gateway."""

    gateway: str = ""

    @abstractmethod
    def verify(
        self,
        body: bytes,
        headers: Mapping[str, str],
        query: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Verify the request and return the decoded payload.

        Raises:
            SignatureError: Missing/invalid signature or unreadable body
        """


class StripeVerifier(SignatureVerifier):
    """Stripe-Signature verification through the Stripe SDK."""

    gateway = Gateway.STRIPE

    def __init__(self, secret: str | None = None, tolerance: int | None = None) -> None:
        self.secret = secret if secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.tolerance = (
            tolerance if tolerance is not None else settings.WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS
        )

    def verify(self, body, headers, query=None):
        signature = headers.get("Stripe-Signature", "")
        if not signature:
            logger.warning("Stripe webhook received without Stripe-Signature header")
            raise SignatureError("Missing signature", error_code="MISSING_SIGNATURE")

        if not self.secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
            raise SignatureError("Webhook verification is not configured")

        try:
            stripe.WebhookSignature.verify_header(
                body.decode("utf-8"),
                signature,
                self.secret,
                self.tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning(
                "Stripe webhook signature verification failed",
                extra={"error": str(e)},
            )
            raise SignatureError("Invalid signature")

        # The SDK only rejects timestamps in the past
        timestamp = self.signed_timestamp(signature)
        if timestamp is None or timestamp > time.time() + self.tolerance:
            logger.warning(
                "Stripe webhook timestamp outside the tolerance window",
                extra={"timestamp": timestamp, "tolerance": self.tolerance},
            )
            raise SignatureError("Invalid signature")

        return decode_json(body)

    @staticmethod
    def signed_timestamp(header: str) -> int | None:
        """Return the t= value of a Stripe-Signature header."""
        for item in header.split(","):
            key, _, value = item.strip().partition("=")
            if key == "t":
                try:
                    return int(value)
                except ValueError:
                    return None
        return None


class PaymobVerifier(SignatureVerifier):
    """
    Paymob HMAC-SHA512 verification.

    Without a configured secret the check is skipped with a WARNING,
    unless PAYMOB_REQUIRE_HMAC is set, in which case every webhook is
    refused.
    """

    gateway = Gateway.PAYMOB

    def __init__(self, secret: str | None = None, require_hmac: bool | None = None) -> None:
        self.secret = secret if secret is not None else settings.PAYMOB_HMAC_SECRET
        self.require_hmac = (
            require_hmac if require_hmac is not None else settings.PAYMOB_REQUIRE_HMAC
        )

    @staticmethod
    def _render(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if value is None:
            return ""
        return str(value)

    @classmethod
    def _lookup(cls, obj: Mapping[str, Any], path: str) -> str:
        value: Any = obj
        for part in path.split("."):
            if not isinstance(value, dict):
                return ""
            value = value.get(part)
        return cls._render(value)

    @classmethod
    def signing_string(cls, obj: Mapping[str, Any]) -> str:
        """Concatenate the signed transaction fields in Paymob's order."""
        return "".join(cls._lookup(obj, path) for path in PAYMOB_HMAC_FIELDS)

    @classmethod
    def compute(cls, obj: Mapping[str, Any], secret: str) -> str:
        """Hex HMAC-SHA512 of a transaction object."""
        return hmac.new(
            secret.encode("utf-8"),
            cls.signing_string(obj).encode("utf-8"),
            hashlib.sha512,
        ).hexdigest()

    def verify(self, body, headers, query=None):
        payload = decode_json(body)

        if not self.secret:
            if self.require_hmac:
                logger.error("PAYMOB_HMAC_SECRET is not configured; rejecting webhook")
                raise SignatureError("Webhook verification is not configured")
            logger.warning("PAYMOB_HMAC_SECRET is not configured; skipping signature verification")
            return payload

        signature = headers.get("x-paymob-signature", "") or (query or {}).get("hmac", "")
        if not signature:
            logger.warning("Paymob webhook received without a signature")
            raise SignatureError("Missing signature", error_code="MISSING_SIGNATURE")

        obj = payload.get("obj") if isinstance(payload.get("obj"), dict) else payload
        expected = self.compute(obj, self.secret)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            logger.warning(
                "Paymob webhook signature verification failed",
                extra={"transaction_id": obj.get("id")},
            )
            raise SignatureError("Invalid signature")

        return payload
