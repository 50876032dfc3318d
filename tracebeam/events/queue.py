import logging
import threading
from typing import Iterable, List

from pydantic import ValidationError

from tracebeam.config.log_codes import (
    QUEUE_PERSIST_FAILED,
    QUEUE_PERSIST_RECOVERED,
    QUEUE_RESTORE_SKIPPED,
    QUEUE_RESTORED,
)
from tracebeam.storage import PersistedProperty, PropertyStore

from .types import EventEnvelope

logger = logging.getLogger(__name__)


class EventQueue:
    """
    FIFO of envelopes waiting for delivery.

    Producers push from application threads while the flush worker drains
    from its own thread, so every operation holds the queue lock. When the
    store is persistent the queue is written back after each mutation.
    """

    def __init__(self, store: PropertyStore):
        """
        Initialize the queue and reload anything persisted by a previous run.

        Args:
            store: The property store backing the queue
        """
        self.store = store
        self._items: List[EventEnvelope] = []
        self._lock = threading.Lock()
        self._persist_failed = False
        # Envelopes reloaded from the store when the queue was created
        self.restored: List[EventEnvelope] = []
        self.restore()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def push(self, envelope: EventEnvelope) -> int:
        """
        Append an envelope and return the new queue length.
        """
        with self._lock:
            self._items.append(envelope)
            self._persist()
            return len(self._items)

    def drain(self, max_count: int) -> List[EventEnvelope]:
        """
        Remove and return up to ``max_count`` of the oldest envelopes.
        """
        if max_count <= 0:
            return []

        with self._lock:
            if not self._items:
                return []
            batch = self._items[:max_count]
            del self._items[:max_count]
            self._persist()
            return batch

    def requeue_front(self, envelopes: Iterable[EventEnvelope]) -> None:
        """
        Put envelopes back at the head of the queue, keeping their order.
        """
        envelopes = list(envelopes)
        if not envelopes:
            return

        with self._lock:
            self._items[:0] = envelopes
            self._persist()

    def snapshot(self) -> List[EventEnvelope]:
        """
        Return a copy of the queued envelopes, oldest first.
        """
        with self._lock:
            return list(self._items)

    def restore(self) -> int:
        """
        Merge the persisted queue ahead of anything already queued.

        Returns:
            int: The number of envelopes restored.
        """
        stored = self.store.get_item(PersistedProperty.QUEUE) or []
        if not isinstance(stored, list):
            logger.warning(QUEUE_RESTORE_SKIPPED, extra={"reason": "queue is not a list"})
            return 0

        restored = []
        for data in stored:
            try:
                restored.append(EventEnvelope.from_wire(data))
            except (ValidationError, TypeError) as e:
                logger.warning(QUEUE_RESTORE_SKIPPED, extra={"reason": str(e)})

        if restored:
            with self._lock:
                known = {envelope.id for envelope in self._items}
                restored = [e for e in restored if e.id not in known]
                self._items[:0] = restored
                self._persist()
            self.restored.extend(restored)
            logger.info(QUEUE_RESTORED, extra={"count": len(restored)})

        return len(restored)

    def persist(self) -> None:
        """
        Write the current queue to the store, if the store survives the process.
        """
        with self._lock:
            self._persist()

    def _persist(self) -> None:
        if not self.store.persistent:
            return

        try:
            self.store.set_item(PersistedProperty.QUEUE, [e.to_wire() for e in self._items])
        except Exception as e:
            # The in-memory queue stays authoritative; log once per failure streak.
            if not self._persist_failed:
                logger.warning(QUEUE_PERSIST_FAILED, extra={"error": repr(e)})
            self._persist_failed = True
            return

        if self._persist_failed:
            logger.info(QUEUE_PERSIST_RECOVERED)
        self._persist_failed = False
