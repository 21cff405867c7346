"""
Retry policy for event delivery.

Delays grow exponentially with each consecutive failure: with the defaults a
batch is retried after 1s, 2s, 4s, 8s and 16s before it is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class RetryConfig:
    """
    Configuration for retry logic with exponential backoff.

    Attributes:
        max_retries: Number of retries after the first failed attempt
        base_delay: Delay before the first retry, in seconds
        backoff_multiplier: Factor applied to the delay on each further retry
        max_delay: Upper bound for a single delay, in seconds
    """

    max_retries: int = 5
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 60.0


def calculate_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Return the delay before retry number ``attempt + 1`` (``attempt`` is 0-based)."""
    delay = config.base_delay * (config.backoff_multiplier ** max(0, attempt))
    return min(delay, config.max_delay)


def is_retryable_status(status_code: int) -> bool:
    """Client errors (4xx) are the request's fault and are never retried."""
    return not 400 <= status_code < 500


def should_retry(exc: BaseException | None, status_code: int | None) -> bool:
    """
    Decide whether a failed delivery is transient.

    Args:
        exc: Exception raised while sending, if any
        status_code: HTTP status of the response, if one was received

    Returns:
        True for 5xx and other unexpected statuses, transport errors and
        any other exception; False for 4xx responses
    """
    if status_code is None:
        status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        return is_retryable_status(status_code)
    return exc is not None
