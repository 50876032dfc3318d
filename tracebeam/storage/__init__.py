from .base import PersistedProperty, PropertyStore
from .file import JsonFileStore
from .memory import MemoryStore
from .noop import NoopStore

__all__ = [
    "PersistedProperty",
    "PropertyStore",
    "MemoryStore",
    "NoopStore",
    "JsonFileStore",
]
