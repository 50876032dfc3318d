import asyncio
import logging
import threading
import time
from typing import Any, List
from unittest.mock import patch

import httpx
import pytest

from tracebeam.client import TraceBeamCore
from tracebeam.config.log_codes import QUEUE_PERSIST_FAILED
from tracebeam.errors import (
    ClientDisabledError,
    EventSerializationError,
    EventTooLargeError,
    IngestionClientError,
    IngestionItemError,
    IngestionNetworkError,
)
from tracebeam.events.bus import ERROR, FLUSH, RETRY, WILDCARD
from tracebeam.events.types import EventEnvelope, IngestionEventType
from tracebeam.storage import JsonFileStore, MemoryStore, PersistedProperty
from tracebeam.transport.retry import BatchState

TRACE = IngestionEventType.TRACE_CREATE


class UnwritableStore(MemoryStore):
    """
    Persistent store whose every write fails.
    """

    persistent = True

    def set_item(self, key, value) -> None:
        raise OSError("disk full")


class Recorder:
    """
    Thread safe notification listener.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.received: List[Any] = []

    def __call__(self, *args) -> None:
        with self.lock:
            self.received.append(args[0] if len(args) == 1 else args)


@pytest.fixture
def core_factory(config_factory, fake_fetch):
    """
    Factory for clients on a FakeFetch; every client is shut down afterwards.
    """
    clients: List[TraceBeamCore] = []

    def _create(fetch=None, store=None, **overrides) -> TraceBeamCore:
        client = TraceBeamCore(
            config_factory(**overrides),
            store=store,
            fetch=fetch if fetch is not None else fake_fetch,
        )
        clients.append(client)
        return client

    yield _create

    for client in clients:
        client.shutdown(timeout=5)


def enqueue_traces(client: TraceBeamCore, count: int, **kwargs) -> List[EventEnvelope]:
    return [client.enqueue(TRACE, {"id": f"trace-{i}"}, **kwargs) for i in range(count)]


@pytest.mark.unit
class TestFlushing:
    """
    Test when and how queued events are delivered.
    """

    def test_flush_at_one_sends_immediately(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=1)

        envelope = client.enqueue(TRACE, {"id": "trace-1"})

        assert envelope.future.result(timeout=5) is None
        assert fake_fetch.batches == [[envelope.to_wire()]]

    def test_events_are_batched_by_flush_at(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=2)
        flushes = Recorder()
        client.on(FLUSH, flushes)

        envelopes = enqueue_traces(client, 101)
        assert client.shutdown(timeout=10)

        assert len(flushes.received) == 51
        assert all(outcome.state is BatchState.SUCCESS for outcome in flushes.received)
        assert sorted(len(batch) for batch in fake_fetch.batches) == [1] + [2] * 50
        assert fake_fetch.sent_ids == [e.id for e in envelopes]

        enqueue_traces(client, 3)
        assert len(flushes.received) == 51

    def test_below_threshold_waits_for_flush(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=10)

        envelopes = enqueue_traces(client, 3)
        assert fake_fetch.calls == []

        client.flush().result(timeout=5)

        assert fake_fetch.sent_ids == [e.id for e in envelopes]

    def test_flush_interval_sends_partial_batch(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=10, flush_interval=0.05)

        envelope = client.enqueue(TRACE, {"id": "trace-1"})

        assert envelope.future.result(timeout=5) is None
        assert fake_fetch.sent_ids == [envelope.id]

    def test_flush_async_without_events(self, core_factory, fake_fetch) -> None:
        client = core_factory()
        flushes = Recorder()
        client.on(FLUSH, flushes)

        asyncio.run(client.flush_async())

        assert fake_fetch.calls == []
        assert flushes.received == []

    def test_flush_async_waits_for_retries(self, core_factory, fake_fetch_factory) -> None:
        fetch = fake_fetch_factory([httpx.Response(503), httpx.Response(200, json={})])
        client = core_factory(fetch=fetch, flush_at=10)
        retries = Recorder()
        client.on(RETRY, retries)

        envelopes = enqueue_traces(client, 2)
        asyncio.run(client.flush_async())

        assert all(e.resolved for e in envelopes)
        assert len(fetch.calls) == 2
        assert len(retries.received) == 1
        assert retries.received[0]["attempt"] == 1

    def test_oversized_batch_is_split_in_order(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=10, max_batch_bytes=1000)

        envelopes = [client.enqueue(TRACE, {"id": str(i), "name": "x" * 300}) for i in range(5)]
        client.flush().result(timeout=5)

        assert all(len(batch) <= 2 for batch in fake_fetch.batches)
        assert fake_fetch.sent_ids == [e.id for e in envelopes]

    def test_oversized_event_is_dropped(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=10, max_event_bytes=1000)
        errors = Recorder()
        client.on(ERROR, errors)

        big = client.enqueue(TRACE, {"id": "big", "input": "test" * 1000})
        small = client.enqueue(TRACE, {"id": "small"})
        client.flush().result(timeout=5)

        assert isinstance(big.future.exception(timeout=5), EventTooLargeError)
        assert small.future.result(timeout=5) is None
        assert fake_fetch.sent_ids == [small.id]
        assert isinstance(errors.received[0], EventTooLargeError)


@pytest.mark.unit
class TestFailures:
    """
    Test how delivery failures surface.
    """

    def test_unreachable_endpoint_logs_one_error(
        self, core_factory, fake_fetch_factory, caplog
    ) -> None:
        fetch = fake_fetch_factory([httpx.ConnectError("connection refused")])
        client = core_factory(fetch=fetch, fetch_retry_count=3)
        errors = Recorder()
        client.on(ERROR, errors)

        with caplog.at_level(logging.WARNING):
            envelopes = enqueue_traces(client, 10)
            assert client.shutdown(timeout=10)

        assert len(fetch.calls) == 4
        assert len([r for r in caplog.records if r.levelno >= logging.ERROR]) == 1
        assert len(errors.received) == 1
        for envelope in envelopes:
            error = envelope.future.exception(timeout=0)
            assert isinstance(error, IngestionNetworkError)
            assert isinstance(error.__cause__, httpx.ConnectError)

    def test_unserializable_event_does_not_block_batch(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=10)
        errors = Recorder()
        client.on(ERROR, errors)

        broken = client.enqueue(TRACE, {"id": "trace-1", "input": object()})
        valid = client.enqueue(TRACE, {"id": "trace-2"})
        client.flush().result(timeout=5)

        assert isinstance(broken.future.exception(timeout=0), EventSerializationError)
        assert valid.future.result(timeout=0) is None
        assert fake_fetch.sent_ids == [valid.id]
        assert isinstance(errors.received[0], EventSerializationError)
        assert client.shutdown(timeout=5)

    def test_unexpected_delivery_error_resolves_batch(self, core_factory, fake_fetch) -> None:
        client = core_factory(flush_at=10)
        errors = Recorder()
        client.on(ERROR, errors)

        with patch.object(client.sender, "prepare", side_effect=RuntimeError("boom")):
            envelopes = enqueue_traces(client, 2)
            client.flush().result(timeout=5)

        for envelope in envelopes:
            assert isinstance(envelope.future.exception(timeout=0), RuntimeError)
        assert len(errors.received) == 1
        assert fake_fetch.calls == []
        assert len(client.queue) == 0
        assert client.shutdown(timeout=5)

    def test_failing_store_does_not_break_enqueue(
        self, core_factory, fake_fetch, caplog
    ) -> None:
        store = UnwritableStore()
        client = core_factory(store=store, flush_at=1)

        with caplog.at_level(logging.WARNING):
            envelope = client.enqueue(TRACE, {"id": "trace-1"})
            assert envelope.future.result(timeout=5) is None
            assert client.shutdown(timeout=5)

        assert fake_fetch.sent_ids == [envelope.id]
        failures = [r for r in caplog.records if r.getMessage() == QUEUE_PERSIST_FAILED]
        assert len(failures) == 1

    def test_client_error_is_not_retried(self, core_factory, fake_fetch_factory) -> None:
        fetch = fake_fetch_factory([httpx.Response(400, json={"message": "invalid"})])
        client = core_factory(fetch=fetch, flush_at=1, fetch_retry_count=3)
        received = []
        done = threading.Event()

        def callback(error):
            received.append(error)
            done.set()

        client.enqueue(TRACE, {"id": "trace-1"}, callback=callback)

        assert done.wait(5)
        assert len(fetch.calls) == 1
        assert isinstance(received[0], IngestionClientError)
        assert received[0].status_code == 400

    def test_partial_success(self, core_factory, fake_fetch_factory) -> None:
        fetch = fake_fetch_factory()
        client = core_factory(fetch=fetch, flush_at=10)
        errors = Recorder()
        client.on(ERROR, errors)

        ok, failed = enqueue_traces(client, 2)
        fetch.responses = [
            httpx.Response(
                207,
                json={
                    "successes": [{"id": ok.id, "status": 201}],
                    "errors": [{"id": failed.id, "status": 400, "message": "bad body"}],
                },
            )
        ]
        client.flush().result(timeout=5)

        assert ok.future.result(timeout=0) is None
        error = failed.future.exception(timeout=0)
        assert isinstance(error, IngestionItemError)
        assert error.event_id == failed.id
        assert errors.received == [error]


@pytest.mark.unit
class TestAdmission:
    """
    Test which events make it onto the queue.
    """

    def test_disabled_client_drops_events(self, core_factory, fake_fetch) -> None:
        client = core_factory(enabled=False)

        envelope = client.enqueue(TRACE, {"id": "trace-1"})

        error = envelope.future.exception(timeout=0)
        assert isinstance(error, ClientDisabledError)
        assert error.reason == "disabled"
        assert len(client.queue) == 0

    def test_opt_out_is_persisted(self, core_factory, tmp_path) -> None:
        store = JsonFileStore(tmp_path / "state.json")
        client = core_factory(store=store)

        client.opt_out()
        envelope = client.enqueue(TRACE, {"id": "trace-1"})

        assert client.opted_out
        assert envelope.future.exception(timeout=0).reason == "opted out"
        assert store.get_item(PersistedProperty.OPTED_OUT) is True
        assert core_factory(store=JsonFileStore(tmp_path / "state.json")).opted_out

        client.opt_in()
        assert not client.opted_out
        assert store.get_item(PersistedProperty.OPTED_OUT) is None
        assert client.enqueue(TRACE, {"id": "trace-2"}) in client.queue.snapshot()

    def test_sampled_out_events_are_dropped_silently(self, core_factory, fake_fetch) -> None:
        client = core_factory(sample_rate=0)
        notified = Recorder()
        client.on(TRACE.value, notified)

        envelope = client.enqueue(TRACE, {"id": "trace-1"})
        client.enqueue(IngestionEventType.SPAN_CREATE, {"id": "span-1", "traceId": "trace-1"})
        client.flush().result(timeout=5)

        assert envelope.future.result(timeout=0) is None
        assert len(client.queue) == 0
        assert notified.received == []
        assert fake_fetch.calls == []

    def test_type_notification_carries_body(self, core_factory) -> None:
        client = core_factory(flush_at=10)
        traces, everything = Recorder(), Recorder()
        client.on(TRACE.value, traces)
        client.on(WILDCARD, everything)

        client.enqueue(TRACE, {"id": "trace-1", "name": "chat"})

        assert traces.received == [{"id": "trace-1", "name": "chat"}]
        assert everything.received == [(TRACE.value, {"id": "trace-1", "name": "chat"})]

    def test_unsubscribe(self, core_factory) -> None:
        client = core_factory(flush_at=10)
        traces = Recorder()
        unsubscribe = client.on(TRACE.value, traces)

        unsubscribe()
        client.enqueue(TRACE, {"id": "trace-1"})

        assert traces.received == []


@pytest.mark.unit
class TestLifecycle:
    """
    Test startup, restore and shutdown.
    """

    def test_events_after_shutdown_are_rejected(self, core_factory, fake_fetch) -> None:
        client = core_factory()
        client.enqueue(TRACE, {"id": "trace-1"})

        assert client.shutdown(timeout=5)
        late = client.enqueue(TRACE, {"id": "trace-2"})

        assert client.is_shutdown
        assert late.future.exception(timeout=0).reason == "shut down"
        assert client.flush().done()
        assert len(fake_fetch.calls) == 1
        assert fake_fetch.closed

    def test_shutdown_is_idempotent(self, core_factory, fake_fetch) -> None:
        client = core_factory()
        enqueue_traces(client, 3)

        assert client.shutdown(timeout=5)
        assert client.shutdown(timeout=5)
        asyncio.run(client.shutdown_async())

        assert len(fake_fetch.calls) == 1

    def test_shutdown_without_events(self, core_factory, fake_fetch) -> None:
        client = core_factory()

        assert client.shutdown(timeout=5)
        assert client.bus.closed
        assert fake_fetch.calls == []

    def test_context_manager_shuts_down(self, config_factory, fake_fetch) -> None:
        with TraceBeamCore(config_factory(), fetch=fake_fetch) as client:
            envelope = client.enqueue(TRACE, {"id": "trace-1"})

        assert client.is_shutdown
        assert envelope.resolved
        assert fake_fetch.sent_ids == [envelope.id]

    def test_queue_is_restored_and_delivered(self, core_factory, fake_fetch_factory, tmp_path) -> None:
        path = tmp_path / "queue.json"
        envelopes = [EventEnvelope(type=TRACE, body={"id": f"trace-{i}"}) for i in range(3)]
        JsonFileStore(path).set_item(PersistedProperty.QUEUE, [e.to_wire() for e in envelopes])

        fetch = fake_fetch_factory()
        client = core_factory(fetch=fetch, store=JsonFileStore(path), flush_at=10)

        assert [e.id for e in client.queue.restored] == [e.id for e in envelopes]
        assert client.shutdown(timeout=5)
        assert fetch.sent_ids == [e.id for e in envelopes]
        assert JsonFileStore(path).get_item(PersistedProperty.QUEUE) == []

    def test_memory_store_is_not_persisted(self, core_factory) -> None:
        store = MemoryStore()
        client = core_factory(store=store, flush_at=10)

        client.enqueue(TRACE, {"id": "trace-1"})

        assert store.get_item(PersistedProperty.QUEUE) is None

    def test_debug_logs_notifications(self, core_factory, fake_fetch, caplog) -> None:
        client = core_factory(debug=True, flush_at=1)

        with caplog.at_level(logging.DEBUG, logger="tracebeam"):
            client.enqueue(TRACE, {"id": "trace-1"}).future.result(timeout=5)
            assert client.shutdown(timeout=5)

        assert "Notification trace-create" in caplog.text
        assert fake_fetch.calls[0]["payload"]["metadata"]["debug"] is True

        client.debug(False)
        assert client.sender.debug is False

    def test_shutdown_async_drains_and_silences_notifications(
        self, core_factory, fake_fetch_factory
    ) -> None:
        fetch = fake_fetch_factory([httpx.Response(503), httpx.Response(200, json={})])
        client = core_factory(fetch=fetch, flush_at=2)
        notifications = Recorder()
        client.on(WILDCARD, notifications)

        envelopes = enqueue_traces(client, 101)
        asyncio.run(client.shutdown_async())

        names = [name for name, _ in notifications.received]
        assert names.count(FLUSH) == 51
        assert names.count(RETRY) == 1
        assert all(e.future.result(timeout=0) is None for e in envelopes)
        assert list(dict.fromkeys(fetch.sent_ids)) == [e.id for e in envelopes]

        seen = len(notifications.received)
        enqueue_traces(client, 5)
        client.flush()
        time.sleep(1)

        assert len(notifications.received) == seen
