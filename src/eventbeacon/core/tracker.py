"""
Tracker: the entry point of the event pipeline.

``track()`` is fire-and-forget. It validates and enriches the event, runs it
through the rate limiter and hands it to the queue; delivery happens later on
the event loop. Nothing in here raises into the caller.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Mapping
from typing import Any

from ..api.transport import Transport, build_transport
from ..core.errors import DropReason
from ..helpers.dispatcher import Dispatcher, RetryHook
from ..helpers.event_queue import EventQueue
from ..helpers.identity import DefaultIdentityProvider, IdentityProvider
from ..helpers.logging_config import get_logger
from ..helpers.rate_limiter import SlidingWindowRateLimiter
from ..helpers.validation import sanitize_params, validate_event_name
from ..instrumentation.lifecycle import LifecycleSignals, TeardownStrategy, select_teardown_strategy
from ..models.event_record import EventRecord
from ..models.stats import PipelineStats
from .config import AnalyticsConfig

logger = get_logger()


class Tracker:
    """
    One analytics pipeline: rate limiter, queue, dispatcher and lifecycle hooks.

    Args:
        config: Pipeline configuration; read once and kept for the lifetime
            of the tracker
        transport: Transport used for delivery (built from ``config`` if None)
        identity: Source of device id, platform and app version
        signals: Lifecycle signal source the teardown strategy subscribes to
        sandboxed: Whether the runtime forbids blocking sends during
            teardown. Derived from the transport when None
        rate_limiter: Admission control (built from ``config`` if None)
        on_retry: Hook called with ``(error, attempt, delay)`` whenever a
            retry is scheduled
    """

    def __init__(
        self,
        config: AnalyticsConfig | None = None,
        *,
        transport: Transport | None = None,
        identity: IdentityProvider | None = None,
        signals: LifecycleSignals | None = None,
        sandboxed: bool | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        on_retry: RetryHook | None = None,
    ) -> None:
        self._config = config if config is not None else AnalyticsConfig.from_env()
        self._owns_transport = transport is None
        self._transport: Transport = transport if transport is not None else build_transport(self._config)
        self._identity: IdentityProvider = identity if identity is not None else DefaultIdentityProvider()
        self._owns_signals = signals is None
        self._signals = signals
        self._sandboxed = sandboxed
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            self._config.throttle_window,
            self._config.throttle_capacity,
        )
        self.stats = PipelineStats()
        self._queue = EventQueue(self._config.flush_delay, self._config.soft_cap, self._config.max_queue_size)
        self._dispatcher = Dispatcher(
            self._queue,
            self._transport,
            self._config,
            stats=self.stats,
            on_retry=on_retry,
        )
        self._strategy: TeardownStrategy | None = None
        self._initialized = False
        self._closed = False
        self._init_lock = asyncio.Lock()
        self._loop_thread_id: int | None = None

    @property
    def config(self) -> AnalyticsConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.is_active and not self._closed

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def strategy(self) -> TeardownStrategy | None:
        return self._strategy

    @property
    def sandboxed(self) -> bool:
        if self._sandboxed is not None:
            return self._sandboxed
        return not getattr(self._transport, "supports_teardown_send", False)

    def describe_config(self) -> dict[str, Any]:
        return self._config.describe()

    async def init(self) -> None:
        """
        Bind to the running loop, preload identity and install the teardown strategy.

        Safe to call more than once; only the first call has an effect.
        """
        async with self._init_lock:
            if self._initialized or self._closed:
                return

            self._bind_loop(asyncio.get_running_loop())

            try:
                await self._identity.preload()
            except Exception as e:
                logger.debug(f"Identity preload failed (using fallbacks): {type(e).__name__}: {e}")

            if self._signals is None:
                self._signals = LifecycleSignals()
            self._strategy = select_teardown_strategy(self.sandboxed)
            self._strategy.install(self._signals, self._dispatcher)
            self._initialized = True

            logger.debug(
                "Analytics initialized",
                extra={"strategy": self._strategy.name, **self.describe_config()},
            )

    def _bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._dispatcher.bind_loop(loop)
        self._loop_thread_id = threading.get_ident()

    def track(self, event_name: str, params: Mapping[str, Any] | None = None) -> None:
        """
        Record an event. Returns immediately and never raises.

        Args:
            event_name: Non-empty event name
            params: Event parameters; reduced to JSON-safe scalar values
        """
        try:
            if not self.enabled:
                return

            try:
                name = validate_event_name(event_name)
            except (TypeError, ValueError) as e:
                logger.debug(f"Dropping invalid event: {e}")
                self.stats.record_drop(DropReason.INVALID_EVENT)
                return

            safe_params = sanitize_params(params, on_downgrade=self._count_downgrade)
            record = EventRecord(
                name=name,
                device_id=self._identity.get_device_id(),
                platform=self._identity.get_platform(),
                app_version=self._identity.get_app_version(),
                params=safe_params,
            )
            self._submit(record)
        except Exception as e:
            logger.debug(f"track({event_name!r}) failed (ignored): {type(e).__name__}: {e}")

    def _count_downgrade(self, key: str) -> None:
        self.stats.serialization_downgrades += 1

    def _submit(self, record: EventRecord) -> None:
        loop = self._dispatcher.loop
        if loop is None:
            try:
                self._bind_loop(asyncio.get_running_loop())
            except RuntimeError:
                pass
            loop = self._dispatcher.loop

        if loop is None or loop.is_closed() or threading.get_ident() == self._loop_thread_id:
            self._admit(record)
        else:
            loop.call_soon_threadsafe(self._admit, record)

    def _admit(self, record: EventRecord) -> None:
        if not self._rate_limiter.admit():
            logger.debug(f"Event throttled: {record.name}")
            self.stats.record_drop(DropReason.THROTTLED)
            return
        if not self._queue.enqueue(record):
            logger.debug(f"Event queue full ({self._queue.max_size}), dropping: {record.name}")
            self.stats.record_drop(DropReason.CAPACITY)
            return
        self.stats.admitted += 1

    async def flush(self) -> None:
        """Send the oldest pending batch now."""
        try:
            await self._dispatcher.flush()
        except Exception as e:
            logger.debug(f"flush failed (ignored): {type(e).__name__}: {e}")

    def flush_sync(self) -> None:
        """Blocking best-effort send of one batch, for use right before exit."""
        self._dispatcher.flush_sync()

    def clear(self) -> None:
        """Drop all queued events and reset the retry state."""
        self._dispatcher.clear()

    async def shutdown(self) -> None:
        """
        Stop the pipeline.

        Cancels pending timers, removes lifecycle hooks and makes one
        best-effort flush with the installed teardown strategy.
        """
        if self._closed:
            return
        self._closed = True
        self._dispatcher.close()

        strategy = self._strategy or select_teardown_strategy(self.sandboxed)
        strategy.uninstall()
        try:
            await self._dispatcher.wait_idle()
            if self._config.is_active:
                await strategy.final_flush(self._dispatcher)
        except Exception as e:
            logger.debug(f"Final flush failed (ignored): {type(e).__name__}: {e}")

        if self._owns_signals and self._signals is not None:
            self._signals.close()
        if self._owns_transport:
            await self._transport.aclose()

    dispose = shutdown
