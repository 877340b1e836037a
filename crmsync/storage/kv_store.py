"""Key-value stores backing links, cursors, tokens and configuration."""
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal get/set persistence."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get a value."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Set a value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a value (missing keys are ignored)."""

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with prefix."""


class MemoryStore(KeyValueStore):
    """In-process store, used for tests and dry runs."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(data or {})

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        # Hand out copies so callers cannot mutate stored state in place
        return json.loads(json.dumps(value)) if value is not None else value

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value, default=str))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileStore(MemoryStore):
    """Store persisted as a single JSON document, rewritten on every change."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        data = {}
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            logger.info(f"Loaded {len(data)} keys from {self.path}")
        super().__init__(data)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            super().set(key, value)
            self._flush()

    def delete(self, key: str) -> None:
        with self._lock:
            super().delete(key)
            self._flush()

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, default=str)
        tmp.replace(self.path)
