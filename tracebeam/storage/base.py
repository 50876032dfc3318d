from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional


class PersistedProperty(str, Enum):
    """
    Keys the client reads from and writes to its property store.
    """
    PROPS = "props"
    QUEUE = "queue"
    OPTED_OUT = "opted_out"


class PropertyStore(ABC):
    """
    Key/value store backing the event queue and client flags.

    Values are JSON-compatible structures. Setting ``None`` removes the key.
    """

    #: Whether values survive the current process.
    persistent: bool = False

    @abstractmethod
    def get_item(self, key: PersistedProperty) -> Optional[Any]:
        """
        Return the stored value or ``None`` when the key is absent.
        """

    @abstractmethod
    def set_item(self, key: PersistedProperty, value: Optional[Any]) -> None:
        """
        Store ``value`` under ``key``; ``None`` removes it.
        """
