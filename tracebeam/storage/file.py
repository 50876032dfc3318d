import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from filelock import FileLock

from tracebeam.config.log_codes import STORAGE_FILE_CORRUPT

from .base import PersistedProperty, PropertyStore

logger = logging.getLogger(__name__)


class JsonFileStore(PropertyStore):
    """
    Store that keeps a JSON document on disk so queued events survive a
    restart. Reads and writes are serialized across processes with a lock
    file next to the document.

    Args:
        path (Union[str, Path]): The JSON file to use.
        timeout (float): Seconds to wait for the lock file.
    """

    persistent = True

    def __init__(self, path: Union[str, Path], timeout: float = 10) -> None:
        self.path = Path(path).expanduser()
        self.lock = FileLock(str(self.path) + ".lock", timeout=timeout)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(STORAGE_FILE_CORRUPT, extra={"path": str(self.path), "error": str(e)})
            return {}

        if not isinstance(data, dict):
            logger.warning(STORAGE_FILE_CORRUPT, extra={"path": str(self.path), "error": "not an object"})
            return {}

        return data

    def get_item(self, key: PersistedProperty) -> Optional[Any]:
        with self.lock:
            return self._load().get(PersistedProperty(key).value)

    def set_item(self, key: PersistedProperty, value: Optional[Any]) -> None:
        key = PersistedProperty(key).value
        os.makedirs(self.path.parent, exist_ok=True)

        with self.lock:
            data = self._load()
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value

            tmp_path = self.path.with_name(self.path.name + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
