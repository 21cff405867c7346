"""
HTTP transports used to deliver event batches.

Two variants exist: a direct transport that talks to the collector itself,
and a proxied transport that routes every request through an HTTP proxy.
Only the direct transport can make a blocking send while the process is
shutting down.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from ..helpers.logging_config import get_logger, redact_sensitive_data

if TYPE_CHECKING:
    from ..core.config import AnalyticsConfig

logger = get_logger()


@dataclass(slots=True)
class TransportRequest:
    """A request ready to be sent by a transport."""

    json: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "POST"


@runtime_checkable
class Transport(Protocol):
    supports_teardown_send: bool

    async def send(self, url: str, request: TransportRequest) -> httpx.Response: ...

    def send_keepalive(self, url: str, request: TransportRequest) -> None: ...

    async def aclose(self) -> None: ...


class HTTPTransport:
    """
    Transport backed by an ``httpx.AsyncClient``.

    ``send`` lets transport errors (timeouts, refused connections) propagate;
    classifying them is the dispatcher's job.
    """

    supports_teardown_send = True

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        teardown_timeout: float = 2.0,
        user_agent: str | None = None,
        proxy: str | None = None,
        async_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._teardown_timeout = teardown_timeout
        self._proxy = proxy
        self._headers = {"User-Agent": user_agent} if user_agent else {}
        self._client = async_client
        self._owns_client = async_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: dict[str, Any] = {"timeout": self._timeout, "headers": self._headers}
            if self._proxy:
                kwargs["proxy"] = self._proxy
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def send(self, url: str, request: TransportRequest) -> httpx.Response:
        client = self._get_client()
        response: httpx.Response = await client.request(
            request.method,
            url,
            json=request.json,
            headers=request.headers or None,
        )
        return response

    def send_keepalive(self, url: str, request: TransportRequest) -> None:
        """
        Blocking best-effort send for process teardown.

        The response is not inspected and every error is swallowed: there is
        no later chance to retry.
        """
        try:
            with httpx.Client(timeout=self._teardown_timeout, headers=self._headers) as client:
                client.request(request.method, url, json=request.json, headers=request.headers or None)
        except Exception as e:
            logger.debug(
                f"Teardown send failed (ignored): {type(e).__name__}: {e}",
                extra={"url": url, "request_headers": redact_sensitive_data(request.headers)},
            )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.debug(f"Failed to close HTTP client: {type(e).__name__}: {e}")
        self._client = None


class DirectTransport(HTTPTransport):
    """Sends straight to the collector; usable during teardown."""

    supports_teardown_send = True


class ProxiedTransport(HTTPTransport):
    """
    Sends through an HTTP proxy.

    Runtimes that need the proxy cannot make a synchronous request while
    tearing down, so ``send_keepalive`` is a logged no-op here.
    """

    supports_teardown_send = False

    def __init__(self, proxy: str, **kwargs: Any) -> None:
        if not proxy:
            raise ValueError("ProxiedTransport requires a proxy URL")
        super().__init__(proxy=proxy, **kwargs)

    def send_keepalive(self, url: str, request: TransportRequest) -> None:
        events = request.json.get("events") or []
        logger.debug(f"Proxied transport cannot send during teardown, skipping {len(events)} events")


def build_transport(config: AnalyticsConfig) -> HTTPTransport:
    """Return a proxied transport when ``config.proxy`` is set, else a direct one."""
    kwargs: dict[str, Any] = {
        "timeout": config.timeout,
        "teardown_timeout": config.teardown_timeout,
        "user_agent": config.user_agent,
    }
    if config.proxy:
        return ProxiedTransport(config.proxy, **kwargs)
    return DirectTransport(**kwargs)
