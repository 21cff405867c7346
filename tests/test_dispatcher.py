"""Tests for the Dispatcher flush/retry state machine.

Retry delays are shrunk (base 10ms) so the backoff sequences run in well
under a second; the delays actually scheduled are captured through the
``on_retry`` hook.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
from conftest import API_KEY, ENDPOINT, FakeTransport, make_config, make_record, wait_for

from eventbeacon.core.errors import DropReason, RetryableDeliveryError
from eventbeacon.helpers.dispatcher import Dispatcher, DispatcherState
from eventbeacon.helpers.event_queue import EventQueue
from eventbeacon.helpers.retry import RetryConfig
from eventbeacon.models.stats import PipelineStats


def build(transport: FakeTransport, *, bind: bool = True, **config_overrides):
    config = make_config(**config_overrides)
    queue = EventQueue(config.flush_delay, config.soft_cap)
    stats = PipelineStats()
    delays: list[float] = []
    dispatcher = Dispatcher(
        queue,
        transport,
        config,
        stats=stats,
        on_retry=lambda exc, attempt, delay: delays.append(delay),
    )
    if bind:
        dispatcher.bind_loop(asyncio.get_running_loop())
    return queue, dispatcher, stats, delays


def fill(queue: EventQueue, count: int, prefix: str = "e") -> list[str]:
    names = [f"{prefix}{i}" for i in range(count)]
    for name in names:
        queue.enqueue(make_record(name))
    return names


class TestSuccessfulFlush:
    async def test_sends_batch_with_headers_and_resets_state(self):
        transport = FakeTransport([200])
        queue, dispatcher, stats, _ = build(transport)
        names = fill(queue, 3)

        await dispatcher.flush()

        assert transport.batches == [names]
        url, request = transport.requests[0]
        assert url == ENDPOINT
        assert request.method == "POST"
        assert request.headers["X-API-Key"] == API_KEY
        assert request.headers["Content-Type"] == "application/json"
        assert set(request.json["events"][0]) == {
            "event",
            "device_id",
            "platform",
            "app_version",
            "params",
            "client_timestamp",
        }
        assert len(queue) == 0
        assert queue.debounce_pending is False
        assert dispatcher.retry_count == 0
        assert dispatcher.state is DispatcherState.IDLE
        assert stats.delivered == 3

    async def test_empty_queue_is_a_no_op(self):
        transport = FakeTransport()
        _, dispatcher, _, _ = build(transport)

        await dispatcher.flush()

        assert transport.requests == []

    async def test_non_json_success_body_still_counts_as_delivered(self):
        class TextTransport(FakeTransport):
            async def send(self, url, request):
                self.requests.append((url, request))
                return httpx.Response(204, text="")

        transport = TextTransport()
        queue, dispatcher, stats, _ = build(transport)
        fill(queue, 2)

        await dispatcher.flush()

        assert stats.delivered == 2
        assert dispatcher.retry_pending is False

    async def test_large_backlog_is_sent_in_bounded_ordered_batches(self):
        transport = FakeTransport()
        queue, dispatcher, stats, _ = build(transport, bind=False, soft_cap=10_000)
        names = fill(queue, 250)

        await dispatcher.flush()
        await wait_for(lambda: stats.delivered == 250)

        assert [len(batch) for batch in transport.batches] == [100, 100, 50]
        assert [name for batch in transport.batches for name in batch] == names


class TestPermanentFailure:
    async def test_client_error_drops_batch_without_retry(self):
        transport = FakeTransport([400])
        queue, dispatcher, stats, delays = build(transport)
        fill(queue, 3)

        await dispatcher.flush()

        assert len(queue) == 0
        assert dispatcher.retry_count == 0
        assert dispatcher.retry_pending is False
        assert delays == []
        assert stats.dropped_for(DropReason.NON_RETRYABLE) == 3

        await asyncio.sleep(0.05)
        assert len(transport.requests) == 1


class TestRetries:
    async def test_backoff_progression_then_success(self):
        transport = FakeTransport([503, 503, 503, 200])
        queue, dispatcher, stats, delays = build(transport)
        names = fill(queue, 5)

        await dispatcher.flush()
        await wait_for(lambda: stats.delivered == 5)

        assert delays == pytest.approx([0.01, 0.02, 0.04])
        assert len(transport.requests) == 4
        assert all(batch == names for batch in transport.batches)
        assert dispatcher.retry_count == 0
        assert dispatcher.retry_pending is False

    async def test_default_policy_schedules_one_two_four_seconds(self):
        transport = FakeTransport([503])
        queue, dispatcher, _, delays = build(transport, retry_config=RetryConfig())
        fill(queue, 1)

        await dispatcher.flush()

        assert delays == [1.0]
        assert dispatcher.retry_count == 1
        assert dispatcher.state is DispatcherState.BACKOFF_WAIT
        dispatcher.close()

    async def test_retry_exhaustion_drops_batch(self):
        transport = FakeTransport([500] * 10)
        queue, dispatcher, stats, delays = build(transport)
        fill(queue, 3)

        await dispatcher.flush()
        await wait_for(lambda: stats.dropped_for(DropReason.RETRY_EXHAUSTED) == 3)
        await asyncio.sleep(0.1)

        assert len(transport.requests) == 6
        assert delays == pytest.approx([0.01, 0.02, 0.04, 0.08, 0.16])
        assert dispatcher.retry_count == 0
        assert dispatcher.retry_pending is False
        assert len(queue) == 0

    async def test_network_errors_are_retried(self):
        transport = FakeTransport([httpx.ConnectError("connection refused"), httpx.ReadTimeout("slow"), 200])
        queue, dispatcher, stats, delays = build(transport)
        names = fill(queue, 2)

        await dispatcher.flush()
        await wait_for(lambda: stats.delivered == 2)

        assert len(delays) == 2
        assert transport.batches[-1] == names

    async def test_unexpected_errors_are_retried(self):
        transport = FakeTransport([RuntimeError("boom"), 200])
        queue, dispatcher, stats, _ = build(transport)
        fill(queue, 1)

        await dispatcher.flush()
        await wait_for(lambda: stats.delivered == 1)

        assert len(transport.requests) == 2

    async def test_success_during_backoff_cancels_pending_retry(self):
        transport = FakeTransport([503, 200])
        queue, dispatcher, _, _ = build(transport, retry_config=RetryConfig(base_delay=5.0))
        fill(queue, 2)

        await dispatcher.flush()
        assert dispatcher.retry_pending is True

        await dispatcher.flush()

        assert dispatcher.retry_pending is False
        assert dispatcher.retry_count == 0
        assert len(queue) == 0

    async def test_restoration_keeps_oldest_failed_records_within_capacity(self):
        transport = FakeTransport([503], delay=0.05)
        queue, dispatcher, stats, _ = build(transport, max_failed_events=5, flush_delay=10.0)
        fill(queue, 4, prefix="old")

        flush_task = asyncio.create_task(dispatcher.flush())
        await wait_for(lambda: dispatcher.is_flushing)
        fill(queue, 3, prefix="new")
        await flush_task

        assert [record.name for record in queue.snapshot()] == ["old0", "old1", "new0", "new1", "new2"]
        assert len(queue) <= 5
        assert stats.dropped_for(DropReason.CAPACITY) == 2
        dispatcher.close()


class TestSingleFlight:
    async def test_concurrent_flush_calls_never_overlap(self):
        transport = FakeTransport(delay=0.02)
        queue, dispatcher, stats, _ = build(transport)
        fill(queue, 3)

        await asyncio.gather(dispatcher.flush(), dispatcher.flush(), dispatcher.flush())

        assert len(transport.requests) == 1
        assert transport.max_in_flight == 1

    async def test_events_enqueued_during_send_stay_behind_in_flight_batch(self):
        transport = FakeTransport(delay=0.03)
        queue, dispatcher, stats, _ = build(transport)
        first = fill(queue, 3)

        flush_task = asyncio.create_task(dispatcher.flush())
        await wait_for(lambda: dispatcher.is_flushing)
        queue.enqueue(make_record("late"))

        assert [record.name for record in dispatcher.in_flight] == first
        await flush_task
        await wait_for(lambda: stats.delivered == 4)

        assert transport.batches == [first, ["late"]]
        assert transport.max_in_flight == 1

    async def test_request_flush_from_another_thread(self):
        transport = FakeTransport()
        queue, dispatcher, stats, _ = build(transport)
        fill(queue, 1)

        await asyncio.to_thread(dispatcher.request_flush)
        await wait_for(lambda: stats.delivered == 1)


class TestTeardown:
    async def test_close_stops_retries_but_keeps_events(self):
        transport = FakeTransport([503])
        queue, dispatcher, _, delays = build(transport)
        names = fill(queue, 2)
        dispatcher.close()

        await dispatcher.flush()

        assert delays == []
        assert dispatcher.retry_pending is False
        assert dispatcher.state is DispatcherState.CLOSED
        assert [record.name for record in queue.snapshot()] == names

    async def test_close_cancels_timers(self):
        transport = FakeTransport([503])
        queue, dispatcher, _, _ = build(transport, retry_config=RetryConfig(base_delay=5.0))
        fill(queue, 1)
        await dispatcher.flush()
        queue.enqueue(make_record("pending"))
        assert dispatcher.retry_pending and queue.debounce_pending

        dispatcher.close()

        assert dispatcher.retry_pending is False
        assert queue.debounce_pending is False

    async def test_flush_sync_sends_one_batch_without_verification(self):
        transport = FakeTransport(keepalive_error=httpx.ConnectError("gone"))
        queue, dispatcher, stats, _ = build(transport, bind=False, soft_cap=10_000)
        names = fill(queue, 120)

        dispatcher.flush_sync()

        assert transport.keepalive_batches == [names[:100]]
        assert transport.keepalive_requests[0][1].headers["X-API-Key"] == API_KEY
        assert len(queue) == 20
        assert stats.teardown_sends == 100
        assert transport.requests == []

    async def test_flush_keepalive_sends_off_the_loop_thread(self):
        transport = FakeTransport(keepalive_delay=0.1)
        queue, dispatcher, stats, _ = build(transport, soft_cap=10_000)
        names = fill(queue, 3)
        ticks = []

        async def ticker():
            while True:
                await asyncio.sleep(0.01)
                ticks.append(1)

        ticking = asyncio.create_task(ticker())
        await dispatcher.flush_keepalive()
        ticking.cancel()

        assert transport.keepalive_batches == [names]
        assert len(queue) == 0
        assert stats.teardown_sends == 3
        assert len(ticks) >= 3

    async def test_flush_keepalive_swallows_send_errors(self):
        transport = FakeTransport(keepalive_error=httpx.ConnectError("gone"))
        queue, dispatcher, _, _ = build(transport)
        fill(queue, 1)

        await dispatcher.flush_keepalive()

        assert len(transport.keepalive_requests) == 1

    async def test_flush_sync_does_nothing_when_disabled(self):
        transport = FakeTransport()
        queue, dispatcher, _, _ = build(transport, bind=False, enabled=False)
        fill(queue, 2)

        dispatcher.flush_sync()

        assert transport.keepalive_requests == []


def test_retryable_error_carries_status():
    error = RetryableDeliveryError("HTTP 503", status_code=503)
    assert error.status_code == 503
