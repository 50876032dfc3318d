from typing import Any, Dict, Optional

from .base import PersistedProperty, PropertyStore


class MemoryStore(PropertyStore):
    """
    Process-local store; the default for every client.
    """

    def __init__(self) -> None:
        self._items: Dict[str, Any] = {}

    def get_item(self, key: PersistedProperty) -> Optional[Any]:
        return self._items.get(PersistedProperty(key).value)

    def set_item(self, key: PersistedProperty, value: Optional[Any]) -> None:
        key = PersistedProperty(key).value
        if value is None:
            self._items.pop(key, None)
        else:
            self._items[key] = value
