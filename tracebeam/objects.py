"""
Handles returned by the producer API.

Each handle remembers the ids it was created with and wires them into the
nested objects and updates it creates.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from tracebeam.events.body import utc_now
from tracebeam.events.types import IngestionEventType

if TYPE_CHECKING:
    from tracebeam.client import TraceBeam


class ObjectClient:
    def __init__(self, client: "TraceBeam", id: str, trace_id: str,
                 observation_id: Optional[str]):
        self.client = client
        self.id = id
        self.trace_id = trace_id
        self.observation_id = observation_id

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r}, trace_id={self.trace_id!r})"

    def span(self, **body: Any) -> "SpanClient":
        return self.client.span(**self._nested(body))

    def generation(self, **body: Any) -> "GenerationClient":
        return self.client.generation(**self._nested(body))

    def event(self, **body: Any) -> "EventClient":
        return self.client.event(**self._nested(body))

    def score(self, **body: Any) -> "ObjectClient":
        self.client.score(**{**body, "trace_id": self.trace_id,
                             "observation_id": self.observation_id})
        return self

    def _nested(self, body: dict) -> dict:
        return {**body, "trace_id": self.trace_id,
                "parent_observation_id": self.observation_id}


class TraceClient(ObjectClient):
    def __init__(self, client: "TraceBeam", trace_id: str):
        super().__init__(client, trace_id, trace_id, None)

    def update(self, **body: Any) -> "TraceClient":
        """Upsert the trace; the ingestion API merges bodies by id."""
        body.pop("id", None)
        self.client.trace(id=self.id, **body)
        return self


class ObservationClient(ObjectClient):
    update_type: IngestionEventType

    def __init__(self, client: "TraceBeam", id: str, trace_id: str):
        super().__init__(client, id, trace_id, id)

    def update(self, **body: Any) -> "ObservationClient":
        self.client._update(self.update_type, self.id, self.trace_id, body)
        return self

    def end(self, **body: Any) -> "ObservationClient":
        """Update the observation and set its end time to now."""
        body["end_time"] = utc_now()
        return self.update(**body)


class SpanClient(ObservationClient):
    update_type = IngestionEventType.SPAN_UPDATE


class GenerationClient(ObservationClient):
    update_type = IngestionEventType.GENERATION_UPDATE


class EventClient(ObjectClient):
    """Events are point in time and have no update."""

    def __init__(self, client: "TraceBeam", id: str, trace_id: str):
        super().__init__(client, id, trace_id, id)
