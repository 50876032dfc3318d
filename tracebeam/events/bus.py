"""
In-process notifications for observers of the delivery pipeline.
"""
import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

WILDCARD = "*"

# Notification names besides the ingestion event types
FLUSH = "flush"
ERROR = "error"
RETRY = "retry"

Listener = Callable[..., None]


class EventBus:
    """
    Named notification channels.

    Listeners of a named channel are called with the payload; wildcard
    listeners are called with the channel name and the payload. Once closed
    the bus drops every emit.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """
        Subscribe a listener to a channel.

        Args:
            event: The channel name, or "*" for every channel
            listener: The callable to register

        Returns:
            A function that removes the listener when called
        """
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(event, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> None:
        """
        Notify the listeners of ``event`` and the wildcard listeners.
        """
        with self._lock:
            if self._closed:
                return
            listeners = list(self._listeners.get(event, []))
            wildcard = list(self._listeners.get(WILDCARD, []))

        for listener in listeners:
            self._call(event, listener, payload)
        for listener in wildcard:
            self._call(event, listener, event, payload)

    def _call(self, event: str, listener: Listener, *args: Any) -> None:
        try:
            listener(*args)
        except Exception:
            logger.exception("Listener %r failed for %s notification", listener, event)

    def close(self) -> None:
        """
        Drop all listeners and ignore further emits.
        """
        with self._lock:
            self._closed = True
            self._listeners.clear()
