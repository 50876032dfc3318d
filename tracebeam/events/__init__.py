from .bus import ERROR, FLUSH, RETRY, WILDCARD, EventBus
from .queue import EventQueue
from .types import INGESTION_ROUTES, EventEnvelope, IngestionEventType

__all__ = [
    "EventBus",
    "EventEnvelope",
    "EventQueue",
    "IngestionEventType",
    "INGESTION_ROUTES",
    "FLUSH",
    "ERROR",
    "RETRY",
    "WILDCARD",
]
