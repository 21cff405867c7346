"""
Sliding-window admission control for tracked events.
"""

from __future__ import annotations

import time
from collections.abc import Callable

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_CAPACITY = 200
DEFAULT_COMPACT_THRESHOLD = 1000


class SlidingWindowRateLimiter:
    """
    Admit at most ``capacity`` events within any trailing ``window`` seconds.

    Expired timestamps are skipped by moving a start index instead of being
    popped one by one; the backing list is compacted once more than
    ``compact_threshold`` expired entries have piled up in front of it.
    """

    def __init__(
        self,
        window: float = DEFAULT_WINDOW_SECONDS,
        capacity: int = DEFAULT_CAPACITY,
        *,
        compact_threshold: int = DEFAULT_COMPACT_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.window = window
        self.capacity = capacity
        self.compact_threshold = compact_threshold
        self._clock = clock
        self._timestamps: list[float] = []
        self._start = 0

    def admit(self, now: float | None = None) -> bool:
        """Record an admission at ``now`` and return True, or return False when full."""
        if now is None:
            now = self._clock()
        window_start = now - self.window

        timestamps = self._timestamps
        start = self._start
        while start < len(timestamps) and timestamps[start] < window_start:
            start += 1

        if start > self.compact_threshold:
            del timestamps[:start]
            start = 0
        self._start = start

        if len(timestamps) - start >= self.capacity:
            return False

        timestamps.append(now)
        return True

    def __len__(self) -> int:
        return len(self._timestamps) - self._start

    @property
    def backing_size(self) -> int:
        """Number of stored timestamps, expired ones included."""
        return len(self._timestamps)

    def reset(self) -> None:
        self._timestamps.clear()
        self._start = 0
