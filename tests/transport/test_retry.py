import asyncio
import logging
from typing import List

import pytest

from tracebeam.errors import (
    IngestionClientError,
    IngestionItemError,
    IngestionNetworkError,
    IngestionServerError,
)
from tracebeam.events.types import EventEnvelope, IngestionEventType
from tracebeam.transport.retry import BatchState, RetryController


class FlakyAttempt:
    """
    Coroutine function failing with the given errors before succeeding.
    """

    def __init__(self, errors: List[Exception], result=None):
        self.errors = list(errors)
        self.result = result if result is not None else {}
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleeps() -> List[float]:
    """
    Delays requested by the retry controller.
    """
    return []


@pytest.fixture
def controller_factory(sleeps: List[float]):
    """
    Factory for controllers that record their waits instead of sleeping.
    """

    def _create(retry_count: int = 3, retry_delay: float = 1.0, **kwargs) -> RetryController:
        async def record_sleep(delay: float) -> None:
            sleeps.append(delay)

        kwargs.setdefault("max_retry_delay", 30.0)
        return RetryController(
            retry_count=retry_count, retry_delay=retry_delay, sleep=record_sleep, **kwargs
        )

    return _create


@pytest.fixture
def envelopes() -> List[EventEnvelope]:
    """
    A small batch.
    """
    return [EventEnvelope(type=IngestionEventType.TRACE_CREATE) for _ in range(2)]


def error_records(caplog) -> list:
    return [r for r in caplog.records if r.levelno >= logging.ERROR]


@pytest.mark.unit
class TestRetryController:
    """
    Test the bounded retry state machine.
    """

    def test_success_on_first_attempt(self, controller_factory, envelopes, sleeps) -> None:
        attempt = FlakyAttempt([])

        outcome = asyncio.run(controller_factory().run(envelopes, attempt))

        assert outcome.state is BatchState.SUCCESS
        assert outcome.succeeded
        assert outcome.attempts == 1
        assert outcome.envelopes == envelopes
        assert sleeps == []

    def test_success_after_retries(self, controller_factory, envelopes, sleeps) -> None:
        retried = []
        attempt = FlakyAttempt([IngestionServerError(503), IngestionNetworkError()])
        controller = controller_factory(on_retry=retried.append)

        outcome = asyncio.run(controller.run(envelopes, attempt))

        assert outcome.state is BatchState.SUCCESS
        assert outcome.attempts == 3
        assert attempt.calls == 3
        assert len(retried) == 2
        assert sleeps == [1.0, 2.0]

    def test_exponential_backoff_is_capped(self, controller_factory, envelopes, sleeps) -> None:
        attempt = FlakyAttempt([IngestionServerError(500)] * 10)
        controller = controller_factory(retry_count=5, retry_delay=1.0, max_retry_delay=5.0)

        asyncio.run(controller.run(envelopes, attempt))

        assert sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_retries_exhausted(self, controller_factory, envelopes, caplog) -> None:
        attempt = FlakyAttempt([IngestionServerError(500)] * 10)
        controller = controller_factory(retry_count=2)

        with caplog.at_level(logging.WARNING):
            outcome = asyncio.run(controller.run(envelopes, attempt))

        assert outcome.state is BatchState.RETRIES_EXHAUSTED
        assert outcome.attempts == 3
        assert attempt.calls == 3
        assert isinstance(outcome.error, IngestionServerError)
        assert len(error_records(caplog)) == 1
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2

    def test_zero_retries(self, controller_factory, envelopes, sleeps) -> None:
        attempt = FlakyAttempt([IngestionNetworkError()] * 3)

        outcome = asyncio.run(controller_factory(retry_count=0).run(envelopes, attempt))

        assert outcome.state is BatchState.RETRIES_EXHAUSTED
        assert outcome.attempts == 1
        assert sleeps == []

    def test_non_retryable_failure(self, controller_factory, envelopes, sleeps, caplog) -> None:
        attempt = FlakyAttempt([IngestionClientError(400, "bad request")])

        with caplog.at_level(logging.WARNING):
            outcome = asyncio.run(controller_factory().run(envelopes, attempt))

        assert outcome.state is BatchState.NON_RETRYABLE_FAILURE
        assert outcome.attempts == 1
        assert attempt.calls == 1
        assert sleeps == []
        assert outcome.error_for(envelopes[0]).status_code == 400
        assert len(error_records(caplog)) == 1

    def test_item_errors_are_kept_on_success(self, controller_factory, envelopes) -> None:
        failed = IngestionItemError(envelopes[1].id, 400, "invalid")
        attempt = FlakyAttempt([], result={envelopes[1].id: failed})

        outcome = asyncio.run(controller_factory().run(envelopes, attempt))

        assert outcome.succeeded
        assert outcome.error_for(envelopes[0]) is None
        assert outcome.error_for(envelopes[1]) is failed

    def test_from_config(self, config_factory) -> None:
        config = config_factory(
            fetch_retry_count=4, fetch_retry_delay=0.5, fetch_retry_max_delay=8, fetch_retry_jitter=0.1
        )

        controller = RetryController.from_config(config)

        assert controller.retry_count == 4
        assert controller.retry_delay == 0.5
        assert controller.max_retry_delay == 8
        assert controller.retry_jitter == 0.1
