"""
Ingestion event types and the envelope queued for delivery.
"""
import logging
import threading
import uuid
from concurrent.futures import Future
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from .body import utc_now

logger = logging.getLogger(__name__)


class IngestionEventType(str, Enum):
    """
    Types accepted by the batch ingestion endpoint.
    """
    TRACE_CREATE = "trace-create"
    SPAN_CREATE = "span-create"
    SPAN_UPDATE = "span-update"
    GENERATION_CREATE = "generation-create"
    GENERATION_UPDATE = "generation-update"
    EVENT_CREATE = "event-create"
    SCORE_CREATE = "score-create"


# Legacy per-object routes; every envelope is delivered through the batch route.
INGESTION_ROUTES: Dict[IngestionEventType, Tuple[str, str]] = {
    IngestionEventType.TRACE_CREATE: ("POST", "/api/public/traces"),
    IngestionEventType.SPAN_CREATE: ("POST", "/api/public/spans"),
    IngestionEventType.SPAN_UPDATE: ("PATCH", "/api/public/spans"),
    IngestionEventType.GENERATION_CREATE: ("POST", "/api/public/generations"),
    IngestionEventType.GENERATION_UPDATE: ("PATCH", "/api/public/generations"),
    IngestionEventType.EVENT_CREATE: ("POST", "/api/public/events"),
    IngestionEventType.SCORE_CREATE: ("POST", "/api/public/scores"),
}

EnvelopeCallback = Callable[[Optional[BaseException]], None]


class EventEnvelope(BaseModel):
    """
    One create or update event waiting for delivery.

    The ``callback`` and completion future are process-local: they are never
    serialized, and an envelope restored from storage has neither a callback
    nor anyone waiting on its future.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: IngestionEventType
    timestamp: datetime = Field(default_factory=utc_now)
    body: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None

    callback: Optional[EnvelopeCallback] = Field(default=None, exclude=True)

    _future: Future = PrivateAttr(default_factory=Future)
    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @property
    def method(self) -> str:
        return INGESTION_ROUTES[self.type][0]

    @property
    def route(self) -> str:
        return INGESTION_ROUTES[self.type][1]

    @property
    def future(self) -> Future:
        """
        Completes with ``None`` once delivered, or with the failure exception.
        """
        return self._future

    @property
    def resolved(self) -> bool:
        return self._future.done()

    def resolve(self, error: Optional[BaseException] = None) -> bool:
        """
        Record the final fate of the envelope. Only the first call has any
        effect.

        Args:
            error (Optional[BaseException]): The failure, or ``None`` on success.

        Returns:
            bool: True if this call resolved the envelope.
        """
        with self._lock:
            if self._future.done():
                return False
            if error is None:
                self._future.set_result(None)
            else:
                self._future.set_exception(error)

        if self.callback is not None:
            try:
                self.callback(error)
            except Exception:
                logger.exception("Callback of event %s raised", self.id)

        return True

    def to_wire(self) -> Dict[str, Any]:
        """
        Return the JSON-ready dict sent in the ``batch`` array.
        """
        data = self.model_dump(mode="json")
        if data.get("metadata") is None:
            data.pop("metadata", None)
        return data

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "EventEnvelope":
        """
        Rebuild an envelope from its wire form, e.g. after a restart.
        """
        return cls.model_validate(
            {key: data[key] for key in ("id", "type", "timestamp", "body", "metadata") if key in data}
        )
