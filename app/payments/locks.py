"""
Concurrency control utilities for payment operations.

Two mechanisms, used together by RefundManager:

1. DistributedLock: Redis mutual exclusion shared by web and Celery
   workers. Refund execution spans a gateway call and several database
   writes, so it is serialized per payment.

2. check_version: version check plus select_for_update for the refund
   bookkeeping write on Payment.

Status changes driven by webhooks take neither; they use conditional
updates keyed on the previous status.

Usage:
    from payments.locks import DistributedLock, check_version, refund_lock_key

    with DistributedLock(refund_lock_key(payment.id), ttl=120):
        result = adapter.create_refund(payment.gateway_ref, amount, reason)
        with transaction.atomic():
            locked = check_version(Payment, payment.id, payment.version)
            locked.refunded_amount += amount
            locked.save()
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


T = TypeVar("T", bound=models.Model)

LOCK_PREFIX = "lock:"
RETRY_INTERVAL_SECONDS = 0.05


def refund_lock_key(payment_id: Any) -> str:
    """Lock key serializing refund execution for one payment."""
    return f"refund:payment:{payment_id}"


class DistributedLock:
    """
    Redis lock with an owner token and a TTL.

    The TTL bounds how long a crashed worker can hold the lock; the token
    ensures only the holder can release it.

    Example:
        try:
            with DistributedLock(refund_lock_key(payment_id), ttl=120, timeout=10.0):
                execute_refund()
        except LockAcquisitionError:
            # Another refund for this payment is in flight
            ...

    Args:
        key: Lock name (stored under "lock:{key}")
        ttl: Seconds before Redis expires the lock
        timeout: Seconds to keep retrying before giving up; 0 tries once
    """

    # Delete only if the stored token is ours
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    def __init__(self, key: str, ttl: int = 30, timeout: float = 10.0) -> None:
        self.key = f"{LOCK_PREFIX}{key}"
        self.ttl = ttl
        self.timeout = timeout
        self._token: str | None = None
        self._client: Redis | None = None

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def acquire(self) -> None:
        """
        Take the lock, retrying until timeout.

        Raises:
            LockAcquisitionError: The lock stayed held by someone else
        """
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.timeout

        while True:
            if self.client.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return
            if time.monotonic() >= deadline:
                raise LockAcquisitionError(
                    "Another operation is in progress for this payment",
                    details={"key": self.key, "timeout": self.timeout},
                )
            time.sleep(RETRY_INTERVAL_SECONDS)

    def release(self) -> bool:
        """Release the lock if this instance holds it. Returns whether it did."""
        if self._token is None:
            return False
        released = self.client.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(released)

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


def check_version(model_class: type[T], pk: Any, expected_version: int) -> T:
    """
    Lock a row for update, insisting it is still at the expected version.

    Call inside transaction.atomic(); the row lock lasts until commit.

    Raises:
        StaleRecordError: The row was modified since it was read
        NotFoundError: The row does not exist
    """
    model_name = model_class.__name__
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

        current_version = (
            model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
        )
        if current_version is None:
            raise NotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )
        raise StaleRecordError(
            f"{model_name} {pk} was modified concurrently",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )


__all__ = [
    "DistributedLock",
    "check_version",
    "refund_lock_key",
]
