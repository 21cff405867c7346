"""Tests for the httpx-backed transports."""

import json

import httpx
import pytest
import respx
from conftest import API_KEY, ENDPOINT, make_config, wait_for

from eventbeacon.api.transport import (
    DirectTransport,
    ProxiedTransport,
    TransportRequest,
    build_transport,
)
from eventbeacon.core.tracker import Tracker
from eventbeacon.helpers.identity import StaticIdentityProvider
from eventbeacon.instrumentation.lifecycle import LifecycleSignals


def sample_request() -> TransportRequest:
    return TransportRequest(
        json={"events": [{"event": "app_launch"}]},
        headers={"Content-Type": "application/json", "X-API-Key": API_KEY},
    )


@respx.mock
async def test_direct_transport_posts_json():
    route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200, json={"ok": True}))
    transport = DirectTransport(user_agent="EventBeacon/test")

    response = await transport.send(ENDPOINT, sample_request())
    await transport.aclose()

    assert response.status_code == 200
    sent = route.calls.last.request
    assert sent.method == "POST"
    assert sent.headers["X-API-Key"] == API_KEY
    assert sent.headers["User-Agent"] == "EventBeacon/test"
    assert json.loads(sent.content) == {"events": [{"event": "app_launch"}]}


@respx.mock
async def test_direct_transport_propagates_network_errors():
    respx.post(ENDPOINT).mock(side_effect=httpx.ConnectError("connection refused"))
    transport = DirectTransport()

    with pytest.raises(httpx.ConnectError):
        await transport.send(ENDPOINT, sample_request())
    await transport.aclose()


@respx.mock
def test_keepalive_send_swallows_errors(caplog):
    caplog.set_level("DEBUG", logger="eventbeacon")
    route = respx.post(ENDPOINT).mock(side_effect=httpx.ConnectError("connection refused"))

    DirectTransport().send_keepalive(ENDPOINT, sample_request())

    assert route.called
    record = next(r for r in caplog.records if r.getMessage().startswith("Teardown send failed"))
    assert record.request_headers["X-API-Key"] == "***REDACTED***"


@respx.mock
def test_keepalive_send_delivers_batch():
    route = respx.post(ENDPOINT).mock(return_value=httpx.Response(500))

    DirectTransport().send_keepalive(ENDPOINT, sample_request())

    assert route.call_count == 1


@respx.mock(assert_all_called=False)
def test_proxied_transport_skips_teardown_send():
    route = respx.post(ENDPOINT).mock(return_value=httpx.Response(200))
    transport = ProxiedTransport("http://127.0.0.1:8899")

    transport.send_keepalive(ENDPOINT, sample_request())

    assert transport.supports_teardown_send is False
    assert not route.called


def test_proxied_transport_requires_proxy():
    with pytest.raises(ValueError):
        ProxiedTransport("")


def test_build_transport_picks_variant_from_config():
    assert isinstance(build_transport(make_config()), DirectTransport)
    assert isinstance(build_transport(make_config(proxy="http://127.0.0.1:8899")), ProxiedTransport)


@respx.mock
async def test_tracker_delivers_through_real_transport():
    route = respx.post(ENDPOINT).mock(
        side_effect=[httpx.Response(502), httpx.Response(200, json={"accepted": 2})]
    )
    signals = LifecycleSignals(install_atexit=False)
    tracker = Tracker(
        make_config(),
        identity=StaticIdentityProvider("device-9", "darwin-aarch64", "2.0.0"),
        signals=signals,
    )
    await tracker.init()

    tracker.track("message_send", {"mode": "auto"})
    tracker.track("message_complete", {"tokens": 12})
    await wait_for(lambda: tracker.stats.delivered == 2)
    await tracker.shutdown()

    assert route.call_count == 2
    body = json.loads(route.calls.last.request.content)
    assert [event["event"] for event in body["events"]] == ["message_send", "message_complete"]
    assert body["events"][0]["params"] == {"mode": "auto"}
    assert body["events"][1]["device_id"] == "device-9"
    assert route.calls.last.request.headers["X-API-Key"] == API_KEY
