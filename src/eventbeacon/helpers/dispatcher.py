"""
Batch delivery with single-flight flushing and exponential-backoff retries.

The dispatcher drains the event queue one batch at a time. Only one send is
ever in flight: a flush requested while another is running is a no-op, and
the running flush schedules a follow-up itself when records remain. Failed
batches go back to the head of the queue and are retried with growing
delays until the retry budget is spent.

All errors are caught and logged - never propagated to the code that tracks
events.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..api.transport import Transport, TransportRequest
from ..core.errors import DropReason, NonRetryableDeliveryError, RetryableDeliveryError
from ..models.stats import PipelineStats
from .logging_config import get_logger
from .retry import calculate_backoff_delay, should_retry

if TYPE_CHECKING:
    from ..core.config import AnalyticsConfig
    from ..models.event_record import EventRecord
    from .event_queue import EventQueue

logger = get_logger()

RetryHook = Callable[[BaseException | None, int, float], None]


class DispatcherState(Enum):
    IDLE = "idle"
    FLUSHING = "flushing"
    BACKOFF_WAIT = "backoff_wait"
    CLOSED = "closed"


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class Dispatcher:
    """
    Owns the flush/retry state machine for one pipeline.

    Must be driven from a single asyncio event loop. ``request_flush`` is the
    only method that may be called from other threads.
    """

    def __init__(
        self,
        queue: EventQueue,
        transport: Transport,
        config: AnalyticsConfig,
        *,
        stats: PipelineStats | None = None,
        on_retry: RetryHook | None = None,
    ) -> None:
        self._queue = queue
        self._transport = transport
        self._config = config
        self._stats = stats if stats is not None else PipelineStats()
        self._on_retry = on_retry

        self._loop: asyncio.AbstractEventLoop | None = None
        self._flushing = False
        self._retry_count = 0
        self._retry_handle: asyncio.TimerHandle | None = None
        self._in_flight: list[EventRecord] | None = None
        self._closed = False
        self._tasks: set[asyncio.Task[None]] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._queue.bind(loop, self.request_flush)

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def in_flight(self) -> tuple[EventRecord, ...]:
        return tuple(self._in_flight or ())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> DispatcherState:
        if self._flushing:
            return DispatcherState.FLUSHING
        if self._closed:
            return DispatcherState.CLOSED
        if self._retry_handle is not None:
            return DispatcherState.BACKOFF_WAIT
        return DispatcherState.IDLE

    def request_flush(self) -> None:
        """Schedule ``flush()`` on the bound loop. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed() or self._closed:
            return
        if _running_loop() is loop:
            self._spawn_flush()
        else:
            loop.call_soon_threadsafe(self._spawn_flush)

    def _spawn_flush(self) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        task = self._loop.create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self) -> None:
        """
        Send the oldest batch of queued events.

        No-op when a flush is already in flight or the queue is empty.
        """
        self._queue.cancel_debounce()

        if self._flushing or len(self._queue) == 0:
            return

        if self._loop is None:
            self.bind_loop(asyncio.get_running_loop())

        self._flushing = True
        batch = self._queue.extract_batch(self._config.batch_max)
        self._in_flight = batch

        try:
            await self._deliver(batch)
        except asyncio.CancelledError:
            self._queue.restore_to_front(batch, self._config.max_failed_events)
            raise
        except NonRetryableDeliveryError as e:
            logger.debug(f"Non-retryable error, dropping {len(batch)} events: {e}")
            self._stats.record_drop(DropReason.NON_RETRYABLE, len(batch))
            self._reset_retry_state()
        except Exception as e:
            self._handle_failure(batch, e)
        else:
            self._stats.delivered += len(batch)
            self._reset_retry_state()
        finally:
            self._in_flight = None
            self._flushing = False

        if len(self._queue) > 0 and self._retry_handle is None and not self._closed:
            # deferred, so a long backlog never grows the call stack
            self._loop.call_soon(self._spawn_flush)

    async def _deliver(self, batch: list[EventRecord]) -> Any:
        request = TransportRequest(
            json={"events": [record.to_payload() for record in batch]},
            headers=self._build_headers(),
        )
        self._stats.batches_sent += 1
        response = await self._transport.send(self._config.endpoint, request)
        status = response.status_code

        if 200 <= status < 300:
            try:
                body = response.json()
            except ValueError:
                body = None
                logger.debug(f"Collector returned a non-JSON body with HTTP {status}")
            logger.debug(
                "Event batch delivered",
                extra={"event_count": len(batch), "status_code": status},
            )
            return body

        if not should_retry(None, status):
            raise NonRetryableDeliveryError(f"HTTP {status} - Client error", status_code=status)
        raise RetryableDeliveryError(f"HTTP {status} - Server error", status_code=status)

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-API-Key": self._config.api_key or "",
        }

    def _handle_failure(self, batch: list[EventRecord], exc: Exception) -> None:
        logger.debug(f"Failed to send events: {type(exc).__name__}: {exc}")
        retry_config = self._config.retry_config
        capacity = self._config.max_failed_events

        if not should_retry(exc, None):
            self._stats.record_drop(DropReason.NON_RETRYABLE, len(batch))
            self._reset_retry_state()
            return

        if self._closed:
            # no more retries once shutdown began; keep the events for the final flush
            dropped = self._queue.restore_to_front(batch, capacity)
            self._stats.record_drop(DropReason.CAPACITY, dropped)
            return

        if self._retry_count < retry_config.max_retries:
            dropped = self._queue.restore_to_front(batch, capacity)
            self._stats.record_drop(DropReason.CAPACITY, dropped)

            self._retry_count += 1
            delay = calculate_backoff_delay(self._retry_count - 1, retry_config)
            logger.debug(
                f"Scheduling retry {self._retry_count}/{retry_config.max_retries} in {delay}s",
                extra={"attempt": self._retry_count, "delay_seconds": delay},
            )
            self._schedule_retry(delay)
            self._stats.retries_scheduled += 1
            if self._on_retry is not None:
                try:
                    self._on_retry(exc, self._retry_count, delay)
                except Exception as hook_error:
                    logger.debug(f"Retry hook failed (ignored): {type(hook_error).__name__}: {hook_error}")
        else:
            logger.debug(f"Max retries ({retry_config.max_retries}) exceeded, dropping {len(batch)} events")
            self._stats.record_drop(DropReason.RETRY_EXHAUSTED, len(batch))
            self._reset_retry_state()

    def _schedule_retry(self, delay: float) -> None:
        self._cancel_retry()
        loop = self._loop or asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._fire_retry)

    def _fire_retry(self) -> None:
        self._retry_handle = None
        self._spawn_flush()

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _reset_retry_state(self) -> None:
        self._retry_count = 0
        self._cancel_retry()

    def _take_teardown_request(self) -> TransportRequest | None:
        if len(self._queue) == 0 or not self._config.is_active:
            return None
        batch = self._queue.extract_batch(self._config.batch_max)
        self._stats.teardown_sends += len(batch)
        return TransportRequest(
            json={"events": [record.to_payload() for record in batch]},
            headers=self._build_headers(),
        )

    def flush_sync(self) -> None:
        """
        Best-effort delivery of one batch while the process is going away.

        Uses the transport's blocking teardown send. No retry, no response
        check: whatever happens, the batch is gone from the queue. Blocks the
        calling thread, so async code uses :meth:`flush_keepalive` instead.
        """
        try:
            request = self._take_teardown_request()
            if request is not None:
                self._transport.send_keepalive(self._config.endpoint, request)
        except Exception as e:
            logger.debug(f"Teardown flush failed (ignored): {type(e).__name__}: {e}")

    async def flush_keepalive(self) -> None:
        """Same as :meth:`flush_sync`, with the blocking send moved to a worker thread."""
        try:
            # the batch is taken on the loop thread, only the send leaves it
            request = self._take_teardown_request()
            if request is not None:
                await asyncio.to_thread(self._transport.send_keepalive, self._config.endpoint, request)
        except Exception as e:
            logger.debug(f"Teardown flush failed (ignored): {type(e).__name__}: {e}")

    async def wait_idle(self) -> None:
        """Wait for flush tasks that are already running."""
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        """Cancel all timers and stop scheduling retries and follow-up flushes."""
        self._closed = True
        self._queue.cancel_debounce()
        self._cancel_retry()

    def clear(self) -> None:
        """Drop every queued event and reset the retry state."""
        self._queue.clear()
        self._reset_retry_state()
