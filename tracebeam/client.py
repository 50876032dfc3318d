"""
Client lifecycle and producer API.

The client runs a daemon thread with its own asyncio loop, which hosts the
flush worker, the retry backoff and the HTTP client. Producer calls only
push onto the queue and wake the worker, so they never block on the network.
"""
from __future__ import annotations

import asyncio
import atexit
import concurrent.futures
import functools
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from tenacity import RetryCallState

from tracebeam.config import ClientConfig
from tracebeam.config.log_codes import INGESTION_BATCH_PARTIAL
from tracebeam.constants import SHUTDOWN_TIMEOUT
from tracebeam.errors import ClientDisabledError
from tracebeam.events.body import prepare_body, utc_now
from tracebeam.events.bus import ERROR, FLUSH, RETRY, WILDCARD, EventBus
from tracebeam.events.queue import EventQueue
from tracebeam.events.types import EnvelopeCallback, EventEnvelope, IngestionEventType
from tracebeam.objects import EventClient, GenerationClient, SpanClient, TraceClient
from tracebeam.sampling import get_sampling_key, is_in_sample
from tracebeam.scheduler import FlushScheduler
from tracebeam.storage import MemoryStore, PersistedProperty, PropertyStore
from tracebeam.transport.http import Fetch, HttpxFetch
from tracebeam.transport.retry import BatchOutcome, RetryController
from tracebeam.transport.sender import BatchSender

logger = logging.getLogger(__name__)


def _done_future() -> concurrent.futures.Future:
    future: concurrent.futures.Future = concurrent.futures.Future()
    future.set_result(None)
    return future


class TraceBeamCore:
    """
    Owns the queue, flush worker, sender, retry controller and notification
    bus of one client.

    Args:
        config (ClientConfig): The resolved client configuration.
        store (Optional[PropertyStore]): Backing store, in memory by default.
        fetch (Optional[Fetch]): Transport, ``HttpxFetch`` by default.
    """

    def __init__(
        self,
        config: ClientConfig,
        store: Optional[PropertyStore] = None,
        fetch: Optional[Fetch] = None,
    ):
        self.config = config
        self.store = store if store is not None else MemoryStore()
        self.bus = EventBus()
        self.queue = EventQueue(self.store)
        self.fetch = fetch if fetch is not None else HttpxFetch()
        self.sender = BatchSender(config, self.fetch)
        self.retry = RetryController.from_config(config, on_retry=self._on_retry)
        self.scheduler: Optional[FlushScheduler] = None

        self._opted_out = bool(self.store.get_item(PersistedProperty.OPTED_OUT))
        self._in_flight: List[EventEnvelope] = []

        # Thread management
        self._state_lock = threading.RLock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._shutdown_future: Optional[concurrent.futures.Future] = None

        self._remove_debug_listener: Optional[Callable[[], None]] = None
        if config.debug:
            self.debug(True)

        if len(self.queue):
            with self._state_lock:
                self._start()
                self._loop.call_soon_threadsafe(self._on_enqueued, len(self.queue))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    @property
    def opted_out(self) -> bool:
        return self._opted_out

    # Notifications

    def on(self, event: str, listener: Callable[..., None]) -> Callable[[], None]:
        """
        Subscribe to a notification channel.

        Args:
            event: "flush", "error", "retry", an ingestion event type such as
                "trace-create", or "*" for every channel
            listener: The callable to register

        Returns:
            A function that unsubscribes the listener
        """
        return self.bus.on(event, listener)

    def debug(self, enabled: bool = True) -> None:
        """Log every notification at DEBUG level while enabled."""
        if self._remove_debug_listener is not None:
            self._remove_debug_listener()
            self._remove_debug_listener = None

        self.sender.debug = enabled
        if enabled:
            self._remove_debug_listener = self.bus.on(WILDCARD, self._log_notification)

    def _log_notification(self, event: str, payload: Any) -> None:
        logger.debug("Notification %s: %r", event, payload)

    # Admission

    def opt_out(self) -> None:
        self._opted_out = True
        self.store.set_item(PersistedProperty.OPTED_OUT, True)

    def opt_in(self) -> None:
        self._opted_out = False
        self.store.set_item(PersistedProperty.OPTED_OUT, None)

    def _rejection_reason(self) -> Optional[str]:
        if not self.config.enabled:
            return "disabled"
        if self._opted_out:
            return "opted out"
        return None

    def enqueue(
        self,
        event_type: IngestionEventType,
        body: Dict[str, Any],
        callback: Optional[EnvelopeCallback] = None,
    ) -> EventEnvelope:
        """
        Admit an event and queue it for delivery.

        Rejected events are resolved right away: with ``ClientDisabledError``
        when the client is disabled, opted out or shut down, and without an
        error when their trace is sampled out.

        Args:
            event_type (IngestionEventType): The ingestion event type.
            body (Dict[str, Any]): The JSON-compatible event body.
            callback (Optional[EnvelopeCallback]): Called once with the delivery error or ``None``.

        Returns:
            EventEnvelope: The envelope, whose future tracks its delivery.
        """
        envelope = EventEnvelope(type=event_type, body=body, callback=callback)

        reason = self._rejection_reason()
        if reason is not None:
            envelope.resolve(ClientDisabledError(reason))
            return envelope

        key = get_sampling_key(envelope.type.value, body)
        if key is not None and not is_in_sample(key, self.config.sample_rate):
            logger.debug("Trace %s is not in the sample, dropping %s", key, envelope.type.value)
            envelope.resolve()
            return envelope

        with self._state_lock:
            if self._closed:
                envelope.resolve(ClientDisabledError("shut down"))
                return envelope

            self._start()
            length = self.queue.push(envelope)
            self._loop.call_soon_threadsafe(self._on_enqueued, length)

        self.bus.emit(envelope.type.value, envelope.body)
        return envelope

    # Worker

    def _start(self) -> None:
        if self._loop is not None:
            return

        ready = threading.Event()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_event_loop, args=(ready,), name="tracebeam-worker", daemon=True
        )
        self._thread.start()
        ready.wait()
        atexit.register(self._atexit_shutdown)

    def _run_event_loop(self, ready: threading.Event) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)

        async def start() -> None:
            self.scheduler = FlushScheduler(self._drain, self.config.flush_interval)
            self.scheduler.start()

        try:
            loop.run_until_complete(start())
            ready.set()
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            logger.debug("Worker loop closed")

    def _on_enqueued(self, length: int) -> None:
        if self.scheduler is None:
            return
        if length >= self.config.flush_at:
            self.scheduler.request()
        self.scheduler.arm()

    async def _drain(self, force: bool) -> None:
        flush_at = self.config.flush_at
        while force or len(self.queue) >= flush_at:
            batch = self.queue.drain(flush_at)
            if not batch:
                break
            await self._deliver(batch)

    async def _deliver(self, batch: List[EventEnvelope]) -> None:
        """
        Send one drained batch. Every envelope of ``batch`` ends up resolved
        or back at the head of the queue, whatever fails on the way.
        """
        self._in_flight = batch
        requeued: Set[str] = set()
        try:
            prepared = self.sender.prepare(batch)

            for envelope in batch:
                error = prepared.dropped.get(envelope.id)
                if error is not None:
                    envelope.resolve(error)
                    self.bus.emit(ERROR, error)

            self.queue.requeue_front(prepared.remaining)
            requeued = {envelope.id for envelope in prepared.remaining}
            if not prepared.envelopes:
                return

            outcome = await self.retry.run(
                prepared.envelopes, functools.partial(self.sender.send, prepared)
            )
            self._finalize(outcome)
        except Exception as e:
            logger.exception("Unexpected error while delivering %s events", len(batch))
            failed = [
                envelope for envelope in batch
                if envelope.id not in requeued and envelope.resolve(e)
            ]
            if failed:
                self.bus.emit(ERROR, e)
        finally:
            self._in_flight = []

    def _finalize(self, outcome: BatchOutcome) -> None:
        for envelope in outcome.envelopes:
            envelope.resolve(outcome.error_for(envelope))

        if outcome.error is not None:
            self.bus.emit(ERROR, outcome.error)
        elif outcome.item_errors:
            logger.warning(
                INGESTION_BATCH_PARTIAL,
                extra={"count": len(outcome.envelopes), "failed": len(outcome.item_errors)},
            )
            for error in outcome.item_errors.values():
                self.bus.emit(ERROR, error)

        self.bus.emit(FLUSH, outcome)

    def _on_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        self.bus.emit(
            RETRY,
            {"attempt": retry_state.attempt_number, "delay": delay, "error": error},
        )

    async def _flush_pending(self) -> None:
        pending = self.queue.snapshot() + list(self._in_flight)
        if not pending:
            return

        self.scheduler.request(force=True)
        await asyncio.gather(
            *(asyncio.wrap_future(envelope.future) for envelope in pending),
            return_exceptions=True,
        )

    # Lifecycle

    def flush(self) -> concurrent.futures.Future:
        """
        Trigger delivery of everything queued so far without waiting.

        Returns:
            A future resolved once those events are delivered or failed for
            good; it may be ignored.
        """
        with self._state_lock:
            if self._loop is None or self._shutdown_future is not None:
                return _done_future()
            return asyncio.run_coroutine_threadsafe(self._flush_pending(), self._loop)

    async def flush_async(self) -> None:
        """Wait until everything queued so far is delivered or failed for good."""
        await asyncio.wrap_future(self.flush())

    def shutdown(self, timeout: Optional[float] = SHUTDOWN_TIMEOUT) -> bool:
        """
        Deliver everything queued, then stop the worker. Producer calls are
        ignored from the moment shutdown starts.

        Args:
            timeout: Seconds to wait, ``None`` waits until done

        Returns:
            True if the shutdown completed within the timeout
        """
        future = self._begin_shutdown()
        try:
            future.result(timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Shutdown did not complete within %s seconds", timeout)
            return False

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        return True

    async def shutdown_async(self) -> None:
        """Coroutine version of :meth:`shutdown` without a timeout."""
        await asyncio.wrap_future(self._begin_shutdown())

    def _begin_shutdown(self) -> concurrent.futures.Future:
        with self._state_lock:
            if self._shutdown_future is not None:
                return self._shutdown_future

            self._closed = True

            if self._loop is None:
                self.bus.close()
                self._shutdown_future = _done_future()
                return self._shutdown_future

            self._shutdown_future = asyncio.run_coroutine_threadsafe(
                self._shutdown_on_loop(), self._loop
            )
            self._shutdown_future.add_done_callback(self._stop_event_loop)
            return self._shutdown_future

    async def _shutdown_on_loop(self) -> None:
        try:
            self.scheduler.stop()
            while len(self.queue) or self._in_flight:
                await self._flush_pending()
            await self.scheduler.close()
            # Last write of the drained queue, retried if earlier writes failed.
            self.queue.persist()

            aclose = getattr(self.fetch, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            self.bus.close()

    def _stop_event_loop(self, future: concurrent.futures.Future) -> None:
        atexit.unregister(self._atexit_shutdown)
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _atexit_shutdown(self) -> None:
        self.shutdown()


class TraceBeam(TraceBeamCore):
    """
    Tracing client.

    Settings not passed explicitly are read from ``TRACEBEAM_*`` environment
    variables and ``~/.tracebeam/config.ini``.

    Example:
        >>> tracebeam = TraceBeam(public_key="pk-...", secret_key="sk-...")
        >>> trace = tracebeam.trace(name="chat", user_id="user-1")
        >>> generation = trace.generation(name="completion", model="gpt-4o", input=messages)
        >>> generation.end(output=answer)
        >>> tracebeam.shutdown()
    """

    def __init__(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        *,
        store: Optional[PropertyStore] = None,
        fetch: Optional[Fetch] = None,
        config_path: Optional[Path] = None,
        **settings: Any,
    ):
        config = ClientConfig.resolve(
            config_path=config_path,
            public_key=public_key,
            secret_key=secret_key,
            **settings,
        )
        super().__init__(config, store=store, fetch=fetch)

    def _enqueue(
        self,
        event_type: IngestionEventType,
        body: Dict[str, Any],
        callback: Optional[EnvelopeCallback],
    ) -> EventEnvelope:
        return self.enqueue(
            event_type, prepare_body(body, self.config.max_event_bytes), callback
        )

    def trace(self, *, callback: Optional[EnvelopeCallback] = None, **body: Any) -> TraceClient:
        """Create or update a trace."""
        trace_id = body.pop("id", None) or str(uuid.uuid4())
        release = body.pop("release", None) or self.config.release
        self._enqueue(
            IngestionEventType.TRACE_CREATE,
            {"id": trace_id, "release": release, **body},
            callback,
        )
        return TraceClient(self, trace_id)

    def _observation(
        self,
        event_type: IngestionEventType,
        body: Dict[str, Any],
        callback: Optional[EnvelopeCallback],
    ) -> Tuple[str, str]:
        observation_id = body.pop("id", None) or str(uuid.uuid4())
        trace_id = body.pop("trace_id", None) or body.pop("traceId", None)
        if not trace_id:
            trace_id = self.trace(name=body.get("name")).id

        start_time = body.pop("start_time", None) or body.pop("startTime", None) or utc_now()
        self._enqueue(
            event_type,
            {"id": observation_id, "trace_id": trace_id, "start_time": start_time, **body},
            callback,
        )
        return observation_id, trace_id

    def span(self, *, callback: Optional[EnvelopeCallback] = None, **body: Any) -> SpanClient:
        """Create a span; without ``trace_id`` a trace named after it is created."""
        return SpanClient(self, *self._observation(IngestionEventType.SPAN_CREATE, body, callback))

    def generation(
        self, *, callback: Optional[EnvelopeCallback] = None, **body: Any
    ) -> GenerationClient:
        return GenerationClient(
            self, *self._observation(IngestionEventType.GENERATION_CREATE, body, callback)
        )

    def event(self, *, callback: Optional[EnvelopeCallback] = None, **body: Any) -> EventClient:
        return EventClient(self, *self._observation(IngestionEventType.EVENT_CREATE, body, callback))

    def score(self, *, callback: Optional[EnvelopeCallback] = None, **body: Any) -> "TraceBeam":
        """Attach a score to a trace or observation."""
        score_id = body.pop("id", None) or str(uuid.uuid4())
        self._enqueue(IngestionEventType.SCORE_CREATE, {"id": score_id, **body}, callback)
        return self

    def _update(
        self,
        event_type: IngestionEventType,
        observation_id: str,
        trace_id: str,
        body: Dict[str, Any],
    ) -> None:
        callback = body.pop("callback", None)
        body.pop("id", None)
        self._enqueue(event_type, {"id": observation_id, "trace_id": trace_id, **body}, callback)
