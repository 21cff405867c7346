"""
Ordered in-memory event buffer with a debounce timer.

The queue never sends anything itself. It tells its owner when a flush is
due: after ``flush_delay`` seconds without new events, or immediately once
``soft_cap`` events are waiting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from .logging_config import get_logger

if TYPE_CHECKING:
    from ..models.event_record import EventRecord

logger = get_logger()


class EventQueue:
    def __init__(self, flush_delay: float = 0.5, soft_cap: int = 50, max_size: int = 1000) -> None:
        self.flush_delay = flush_delay
        self.soft_cap = soft_cap
        self.max_size = max_size
        self._records: list[EventRecord] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_flush: Callable[[], None] | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None

    def bind(self, loop: asyncio.AbstractEventLoop, on_flush: Callable[[], None]) -> None:
        """Attach the loop that runs the debounce timer and the flush trigger."""
        self._loop = loop
        self._on_flush = on_flush

    def __len__(self) -> int:
        return len(self._records)

    @property
    def debounce_pending(self) -> bool:
        return self._debounce_handle is not None

    def enqueue(self, record: EventRecord) -> bool:
        """
        Append ``record`` and (re)arm the debounce timer.

        Must be called on the bound loop's thread. Without an open loop the
        record is only buffered; the next flush picks it up.

        Returns:
            False if the queue already holds ``max_size`` records and the
            record was refused
        """
        if len(self._records) >= self.max_size:
            return False
        self._records.append(record)

        loop = self._loop
        if loop is None or loop.is_closed() or self._on_flush is None:
            return True

        self.cancel_debounce()
        self._debounce_handle = loop.call_later(self.flush_delay, self._fire_debounce)

        if len(self._records) >= self.soft_cap:
            self._on_flush()
        return True

    def _fire_debounce(self) -> None:
        self._debounce_handle = None
        if self._on_flush is not None:
            self._on_flush()

    def cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def extract_batch(self, max_size: int) -> list[EventRecord]:
        """Remove and return up to ``max_size`` of the oldest records, in order."""
        if max_size <= 0:
            return []
        batch = self._records[:max_size]
        del self._records[:max_size]
        return batch

    def restore_to_front(self, records: Sequence[EventRecord], capacity: int) -> int:
        """
        Put a failed batch back at the head of the queue.

        Only the earliest records that fit under ``capacity`` are restored;
        the rest of the batch is discarded.

        Returns:
            Number of records that were dropped because they did not fit
        """
        room = max(0, capacity - len(self._records))
        restored = list(records[:room])
        if restored:
            self._records[0:0] = restored
        dropped = len(records) - len(restored)
        if dropped:
            logger.debug(f"Retry buffer full, dropping {dropped} of {len(records)} failed events")
        return dropped

    def snapshot(self) -> list[EventRecord]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()
        self.cancel_debounce()
