from typing import Any, Optional

from .base import PersistedProperty, PropertyStore


class NoopStore(PropertyStore):
    """
    Store that keeps nothing.
    """

    def get_item(self, key: PersistedProperty) -> Optional[Any]:
        return None

    def set_item(self, key: PersistedProperty, value: Optional[Any]) -> None:
        pass
