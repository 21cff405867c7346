"""
Configuration for the EventBeacon pipeline.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..helpers.retry import RetryConfig
from .version import __version__

DEFAULT_ENDPOINT = "https://analytics.myagents.io/api/track"

ENV_ENABLED = "EVENTBEACON_ENABLED"
ENV_API_KEY = "EVENTBEACON_API_KEY"
ENV_ENDPOINT = "EVENTBEACON_ENDPOINT"
ENV_PROXY = "EVENTBEACON_PROXY"

_TRUTHY = frozenset({"true", "1", "yes", "on"})


@dataclass(slots=True)
class AnalyticsConfig:
    """
    Configuration for the analytics pipeline.

    Attributes:
        enabled: Master switch. ``track()`` is a no-op when False
        api_key: Collector API key. Missing or empty disables the pipeline
        endpoint: Delivery URL for event batches
        timeout: HTTP request timeout in seconds
        teardown_timeout: Timeout for the best-effort send at process exit
        user_agent: User agent string for HTTP requests
        flush_delay: Debounce window in seconds; a flush fires after this
            much enqueue inactivity
        soft_cap: Queue length that triggers an immediate flush
        batch_max: Maximum number of events per request
        max_failed_events: Upper bound on the queue length when a failed
            batch is put back for retry
        max_queue_size: Hard bound on the queue length. Events tracked while
            the queue is full are dropped
        throttle_window: Rate limiter window in seconds
        throttle_capacity: Events admitted per throttle window
        retry_config: Configuration for retries with exponential backoff
        proxy: Proxy URL used by the proxied transport
    """

    enabled: bool = False
    api_key: str | None = None
    endpoint: str = DEFAULT_ENDPOINT
    timeout: float = 10.0
    teardown_timeout: float = 2.0
    user_agent: str = f"EventBeacon/{__version__}"

    flush_delay: float = 0.5
    soft_cap: int = 50
    batch_max: int = 100
    max_failed_events: int = 500
    max_queue_size: int = 1000

    throttle_window: float = 60.0
    throttle_capacity: int = 200

    retry_config: RetryConfig = field(default_factory=RetryConfig)
    proxy: str | None = None

    @property
    def is_active(self) -> bool:
        """True when telemetry is enabled and an API key is configured."""
        return self.enabled and bool(self.api_key)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> AnalyticsConfig:
        """
        Build a configuration from ``EVENTBEACON_*`` environment variables.

        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {
            "enabled": env.get(ENV_ENABLED, "").strip().lower() in _TRUTHY,
            "api_key": env.get(ENV_API_KEY) or None,
            "endpoint": env.get(ENV_ENDPOINT) or DEFAULT_ENDPOINT,
            "proxy": env.get(ENV_PROXY) or None,
        }
        values.update(overrides)
        return cls(**values)

    def describe(self) -> dict[str, Any]:
        """Summary safe to log: never includes the API key itself."""
        return {
            "enabled": self.is_active,
            "endpoint": self.endpoint,
            "has_api_key": bool(self.api_key),
        }
