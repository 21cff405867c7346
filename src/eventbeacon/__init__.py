"""
Public entrypoint for the EventBeacon analytics pipeline.

Usage::

    import eventbeacon

    await eventbeacon.init_analytics()
    eventbeacon.track("message_send", {"mode": "auto", "model": "sonnet"})

Configuration comes from the environment unless a config is passed:

- ``EVENTBEACON_ENABLED=true``
- ``EVENTBEACON_API_KEY=...``
- ``EVENTBEACON_ENDPOINT=...`` (optional)
- ``EVENTBEACON_PROXY=...`` (optional, selects the proxied transport)
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from .api.transport import DirectTransport, ProxiedTransport, Transport, TransportRequest
from .core import (
    AnalyticsConfig,
    DeliveryError,
    DropReason,
    NonRetryableDeliveryError,
    RetryableDeliveryError,
    Tracker,
    __version__,
)
from .helpers import global_state
from .helpers.identity import DefaultIdentityProvider, IdentityProvider, StaticIdentityProvider
from .helpers.logging_config import configure_logging, get_logger
from .helpers.retry import RetryConfig
from .instrumentation.lifecycle import LifecycleSignal, LifecycleSignals
from .models.event_record import EventRecord

__all__ = [
    "init_analytics",
    "track",
    "flush_events",
    "is_enabled",
    "get_tracker",
    "get_analytics_config",
    "shutdown_analytics",
    "Tracker",
    "AnalyticsConfig",
    "RetryConfig",
    "EventRecord",
    "Transport",
    "TransportRequest",
    "DirectTransport",
    "ProxiedTransport",
    "IdentityProvider",
    "DefaultIdentityProvider",
    "StaticIdentityProvider",
    "LifecycleSignal",
    "LifecycleSignals",
    "DeliveryError",
    "NonRetryableDeliveryError",
    "RetryableDeliveryError",
    "DropReason",
    "configure_logging",
    "get_logger",
    "__version__",
]

logger = get_logger()

_init_lock: asyncio.Lock | None = None


async def init_analytics(
    config: AnalyticsConfig | None = None,
    *,
    tracker: Tracker | None = None,
    **tracker_kwargs: Any,
) -> Tracker:
    """
    Initialize the global analytics pipeline.

    Only the first call does any work: it preloads identity values and
    registers the lifecycle hooks. Later calls return the same tracker.

    Args:
        config: Pipeline configuration (defaults to the environment)
        tracker: A ready-made tracker to adopt as the global one
        **tracker_kwargs: Passed to :class:`Tracker` when one is built

    Returns:
        Tracker: The global tracker
    """
    global _init_lock
    if _init_lock is None:
        _init_lock = asyncio.Lock()

    async with _init_lock:
        current = global_state.peek_tracker()
        if global_state.is_initialized() and current is not None:
            return current

        if tracker is None:
            if current is not None and config is None and not tracker_kwargs:
                tracker = current
            else:
                tracker = Tracker(config, **tracker_kwargs)
        if current is not None and current is not tracker:
            await current.shutdown()
        global_state.set_tracker(tracker)

        await tracker.init()
        global_state.mark_initialized()
        return tracker


def track(event_name: str, params: Mapping[str, Any] | None = None) -> None:
    """Track an event on the global tracker. Never raises."""
    try:
        global_state.get_tracker().track(event_name, params)
    except Exception as e:
        logger.debug(f"track failed (ignored): {type(e).__name__}: {e}")


async def flush_events() -> None:
    """Send pending events of the global tracker now."""
    tracker = global_state.peek_tracker()
    if tracker is not None:
        await tracker.flush()


def is_enabled() -> bool:
    tracker = global_state.peek_tracker()
    if tracker is not None:
        return tracker.enabled
    return AnalyticsConfig.from_env().is_active


def get_tracker() -> Tracker:
    return global_state.get_tracker()


def get_analytics_config() -> dict[str, Any]:
    """Enabled flag, endpoint and whether an API key is set. For debugging."""
    tracker = global_state.peek_tracker()
    if tracker is not None:
        return tracker.describe_config()
    return AnalyticsConfig.from_env().describe()


async def shutdown_analytics() -> None:
    """Shut down the global tracker and forget it."""
    global _init_lock
    tracker = global_state.reset_global_state()
    _init_lock = None
    if tracker is not None:
        await tracker.shutdown()
