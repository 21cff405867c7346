"""
Delivery errors and drop reasons.

None of these ever reach the caller of ``track()``; they classify failures
inside the pipeline so the dispatcher can decide between retrying and
dropping a batch.
"""

from __future__ import annotations

from enum import Enum


class DeliveryError(Exception):
    """A batch could not be delivered to the collector."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NonRetryableDeliveryError(DeliveryError):
    """The collector rejected the request (HTTP 4xx); sending it again cannot help."""


class RetryableDeliveryError(DeliveryError):
    """Transient failure (HTTP 5xx or an unexpected status); the batch may be retried."""


class DropReason(str, Enum):
    THROTTLED = "throttled"
    INVALID_EVENT = "invalid_event"
    NON_RETRYABLE = "non_retryable"
    RETRY_EXHAUSTED = "retry_exhausted"
    CAPACITY = "capacity"
