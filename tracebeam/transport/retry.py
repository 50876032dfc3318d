from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from tracebeam.config import ClientConfig
from tracebeam.config.log_codes import INGESTION_BATCH_FAILED, INGESTION_BATCH_REJECTED
from tracebeam.errors import IngestionError, IngestionItemError, RetryableIngestionError
from tracebeam.events.types import EventEnvelope

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    """Terminal states of one batch delivery."""

    SUCCESS = "success"
    NON_RETRYABLE_FAILURE = "non_retryable_failure"
    RETRIES_EXHAUSTED = "retries_exhausted"


@dataclass
class BatchOutcome:
    state: BatchState
    attempts: int
    envelopes: List[EventEnvelope] = field(default_factory=list)
    error: Optional[IngestionError] = None
    item_errors: Dict[str, IngestionItemError] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.state is BatchState.SUCCESS

    def error_for(self, envelope: EventEnvelope) -> Optional[IngestionError]:
        """The error an envelope of this batch resolves with, if any."""
        if self.error is not None:
            return self.error
        return self.item_errors.get(envelope.id)


class RetryController:
    """
    Bounded exponential backoff around a single batch delivery.

    ``retry_count`` retries follow the first attempt. The wait before attempt
    ``n + 1`` is ``retry_delay * 2 ** (n - 1)`` seconds plus up to
    ``retry_jitter`` seconds, capped at ``max_retry_delay``.
    """

    def __init__(
        self,
        retry_count: int,
        retry_delay: float,
        max_retry_delay: float,
        retry_jitter: float = 0.0,
        on_retry: Optional[Callable[[RetryCallState], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.retry_jitter = retry_jitter
        self.on_retry = on_retry
        self.sleep = sleep
        self._log_retry = before_sleep_log(logger, logging.WARNING)

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        on_retry: Optional[Callable[[RetryCallState], None]] = None,
    ) -> "RetryController":
        return cls(
            retry_count=config.fetch_retry_count,
            retry_delay=config.fetch_retry_delay,
            max_retry_delay=config.fetch_retry_max_delay,
            retry_jitter=config.fetch_retry_jitter,
            on_retry=on_retry,
        )

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self._log_retry(retry_state)
        if self.on_retry is not None:
            self.on_retry(retry_state)

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.retry_count + 1),
            wait=wait_exponential_jitter(
                initial=self.retry_delay,
                max=self.max_retry_delay,
                exp_base=2,
                jitter=self.retry_jitter,
            ),
            retry=retry_if_exception_type(RetryableIngestionError),
            before_sleep=self._before_sleep,
            sleep=self.sleep,
        )

    async def run(
        self,
        envelopes: List[EventEnvelope],
        attempt: Callable[[], Awaitable[Dict[str, IngestionItemError]]],
    ) -> BatchOutcome:
        """
        Run ``attempt`` until it succeeds, fails for good, or runs out of retries.

        Exactly one error is logged for a batch that fails.

        Args:
            envelopes: The envelopes delivered by ``attempt``, in order
            attempt: Coroutine function sending the batch once

        Returns:
            The terminal outcome of the batch
        """
        retrying = self.retrying()

        try:
            item_errors = await retrying(attempt)
        except RetryError as e:
            error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            logger.error(
                INGESTION_BATCH_FAILED,
                extra={"count": len(envelopes), "attempts": attempts, "error": str(error)},
            )
            return BatchOutcome(BatchState.RETRIES_EXHAUSTED, attempts, envelopes, error=error)
        except IngestionError as e:
            attempts = retrying.statistics.get("attempt_number", 1)
            logger.error(
                INGESTION_BATCH_REJECTED,
                extra={"count": len(envelopes), "status_code": e.status_code, "error": e.message},
            )
            return BatchOutcome(BatchState.NON_RETRYABLE_FAILURE, attempts, envelopes, error=e)

        attempts = retrying.statistics.get("attempt_number", 1)
        return BatchOutcome(BatchState.SUCCESS, attempts, envelopes, item_errors=item_errors)
