from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tracebeam.config import ClientConfig
from tracebeam.config.log_codes import INGESTION_BATCH_SENT, INGESTION_EVENT_DROPPED
from tracebeam.constants import INGESTION_ENDPOINT, RETRYABLE_STATUS_CODES
from tracebeam.errors import (
    EventSerializationError,
    EventTooLargeError,
    IngestionClientError,
    IngestionItemError,
    IngestionNetworkError,
    IngestionServerError,
    TraceBeamError,
)
from tracebeam.events.body import get_byte_size
from tracebeam.events.types import EventEnvelope
from tracebeam.meta import SDK_NAME, SDK_VARIANT, get_meta_http_headers, get_version

from .http import Fetch, FetchResponse, basic_auth_header

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


@dataclass
class PreparedBatch:
    """A drained batch split by the ingestion size limits."""

    envelopes: List[EventEnvelope] = field(default_factory=list)
    items: List[Dict[str, Any]] = field(default_factory=list)
    # Did not fit the request; goes back to the head of the queue.
    remaining: List[EventEnvelope] = field(default_factory=list)
    # Unencodable or larger than a single event may be; never sent.
    dropped: Dict[str, TraceBeamError] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.envelopes)


class BatchSender:
    """
    Turns one batch of envelopes into a single ingestion request and
    classifies the response.
    """

    def __init__(self, config: ClientConfig, fetch: Fetch):
        self.config = config
        self.fetch = fetch
        self.url = f"{config.base_url}{INGESTION_ENDPOINT}"
        self.debug = config.debug

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(get_meta_http_headers(self.config.public_key))
        headers.update(basic_auth_header(self.config.public_key, self.config.secret_key))
        return headers

    def metadata(self, batch_size: int) -> Dict[str, Any]:
        return {
            "batch_size": batch_size,
            "sdk_integration": self.config.sdk_integration,
            "sdk_name": SDK_NAME,
            "sdk_version": get_version(),
            "sdk_variant": SDK_VARIANT,
            "public_key": self.config.public_key,
            "debug": self.debug,
        }

    def prepare(self, batch: List[EventEnvelope]) -> PreparedBatch:
        """
        Apply the per-event and per-request size limits to a drained batch.

        Args:
            batch (List[EventEnvelope]): Envelopes in queue order.

        Returns:
            PreparedBatch: What to send, what to requeue and what to drop.
        """
        prepared = PreparedBatch()
        total = 0

        for index, envelope in enumerate(batch):
            try:
                item = envelope.to_wire()
                size = get_byte_size(item)
            except (TypeError, ValueError) as e:
                prepared.dropped[envelope.id] = EventSerializationError(envelope.id, str(e))
                logger.warning(
                    INGESTION_EVENT_DROPPED,
                    extra={"event_id": envelope.id, "error": str(e)},
                )
                continue

            if size > self.config.max_event_bytes:
                prepared.dropped[envelope.id] = EventTooLargeError(
                    envelope.id, size, self.config.max_event_bytes
                )
                logger.warning(
                    INGESTION_EVENT_DROPPED,
                    extra={"event_id": envelope.id, "size": size},
                )
                continue

            if prepared.envelopes and total + size > self.config.max_batch_bytes:
                prepared.remaining = batch[index:]
                break

            prepared.envelopes.append(envelope)
            prepared.items.append(item)
            total += size

        return prepared

    def serialize(self, prepared: PreparedBatch) -> bytes:
        payload = {"batch": prepared.items, "metadata": self.metadata(prepared.size)}
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    async def send(self, prepared: PreparedBatch) -> Dict[str, IngestionItemError]:
        """
        Deliver a prepared batch with exactly one request.

        Args:
            prepared (PreparedBatch): The batch to send.

        Returns:
            Dict[str, IngestionItemError]: Per-event failures reported by the API, by envelope id.

        Raises:
            IngestionNetworkError: If the request could not complete.
            IngestionServerError: For 5xx, 408 and 429 responses.
            IngestionClientError: For any other unsuccessful response.
        """
        content = self.serialize(prepared)

        try:
            response = await self.fetch(
                self.url, "POST", self.headers, content, self.config.request_timeout
            )
        except Exception as e:
            raise IngestionNetworkError(
                f"Network error while sending {prepared.size} events to {self.url}: {e!r}"
            ) from e

        item_errors = self.interpret(response)
        logger.debug(
            INGESTION_BATCH_SENT,
            extra={"count": prepared.size, "status_code": response.status_code},
        )
        return item_errors

    def interpret(self, response: FetchResponse) -> Dict[str, IngestionItemError]:
        status = response.status_code

        if 200 <= status < 300:
            return self._item_errors(response)

        reason = _extract_reason(response)
        if status >= 500 or status in RETRYABLE_STATUS_CODES:
            raise IngestionServerError(status, reason)

        raise IngestionClientError(status, reason)

    def _item_errors(self, response: FetchResponse) -> Dict[str, IngestionItemError]:
        try:
            data = response.json()
        except ValueError:
            return {}

        if not isinstance(data, dict) or not isinstance(data.get("errors"), list):
            return {}

        errors = {}
        for item in data["errors"]:
            if not isinstance(item, dict) or "id" not in item:
                continue
            event_id = str(item["id"])
            errors[event_id] = IngestionItemError(
                event_id,
                status_code=item.get("status"),
                reason=item.get("message") or item.get("error"),
            )
        return errors


def _extract_reason(response: FetchResponse) -> Optional[str]:
    text = response.text
    if not text:
        return None
    return text[:MAX_REASON_LENGTH]
