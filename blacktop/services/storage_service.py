"""Key/value storage abstraction with in-memory and JSON-file backends."""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract string-keyed store for JSON-serializable values."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if the key existed
        """
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def exists(self, key: str) -> bool:
        return key in self.keys()


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store, lost on restart."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def exists(self, key: str) -> bool:
        return key in self._data


class JsonFileKeyValueStore(KeyValueStore):
    """Durable store backed by a single JSON document.

    Every write replaces the file atomically so a crash never leaves a
    half-written document behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error loading key/value file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Key/value file {self.path} does not hold a JSON object, ignoring it")
            return {}
        return data

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".kv-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"Saved key/value store to {self.path}")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._save()

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._data:
                return False
            del self._data[key]
            self._save()
            return True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def reload(self) -> None:
        """Reload the document from disk."""
        with self._lock:
            self._data = self._load()
