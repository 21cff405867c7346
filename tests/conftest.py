"""Shared fixtures for the pipeline tests.

No network: delivery goes through ``FakeTransport``, which records every
request and answers from a scripted list of outcomes.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

import httpx
import pytest

from eventbeacon.api.transport import TransportRequest
from eventbeacon.core.config import AnalyticsConfig
from eventbeacon.helpers.identity import StaticIdentityProvider
from eventbeacon.helpers.retry import RetryConfig
from eventbeacon.instrumentation.lifecycle import LifecycleSignals
from eventbeacon.models.event_record import EventRecord

ENDPOINT = "https://collector.test/api/track"
API_KEY = "test-api-key"


class FakeTransport:
    """Scripted transport. Outcomes are status codes or exceptions to raise."""

    def __init__(
        self,
        outcomes: Iterable[int | BaseException] | None = None,
        *,
        delay: float = 0.0,
        supports_teardown_send: bool = True,
        keepalive_error: BaseException | None = None,
        keepalive_delay: float = 0.0,
    ) -> None:
        self.outcomes: list[int | BaseException] = list(outcomes or [])
        self.delay = delay
        self.supports_teardown_send = supports_teardown_send
        self.keepalive_error = keepalive_error
        self.keepalive_delay = keepalive_delay
        self.requests: list[tuple[str, TransportRequest]] = []
        self.keepalive_requests: list[tuple[str, TransportRequest]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def send(self, url: str, request: TransportRequest) -> httpx.Response:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.requests.append((url, request))
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else 200
            if isinstance(outcome, BaseException):
                raise outcome
            return httpx.Response(outcome, json={"accepted": len(request.json["events"])})
        finally:
            self.in_flight -= 1

    def send_keepalive(self, url: str, request: TransportRequest) -> None:
        self.keepalive_requests.append((url, request))
        if self.keepalive_delay:
            time.sleep(self.keepalive_delay)
        if self.keepalive_error is not None:
            raise self.keepalive_error

    async def aclose(self) -> None:
        self.closed = True

    @property
    def batches(self) -> list[list[str]]:
        return [[event["event"] for event in request.json["events"]] for _, request in self.requests]

    @property
    def keepalive_batches(self) -> list[list[str]]:
        return [[event["event"] for event in request.json["events"]] for _, request in self.keepalive_requests]


def make_config(**overrides: Any) -> AnalyticsConfig:
    values: dict[str, Any] = {
        "enabled": True,
        "api_key": API_KEY,
        "endpoint": ENDPOINT,
        "flush_delay": 0.05,
        "retry_config": RetryConfig(base_delay=0.01),
    }
    values.update(overrides)
    return AnalyticsConfig(**values)


def make_record(name: str, **params: Any) -> EventRecord:
    return EventRecord(
        name=name,
        device_id="device-1",
        platform="linux-x86_64",
        app_version="1.2.3",
        params=params,
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def config() -> AnalyticsConfig:
    return make_config()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider("device-1", "linux-x86_64", "1.2.3")


@pytest.fixture
def signals() -> Iterator[LifecycleSignals]:
    hub = LifecycleSignals(install_atexit=False)
    yield hub
    hub.close()
