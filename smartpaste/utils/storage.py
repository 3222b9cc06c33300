"""
Local key-value storage for the learning stores.

Every store owns one key whose value is a JSON-serialized blob. The engine never
talks to the filesystem directly; it goes through a KeyValueStore so tests can
swap in the in-memory implementation.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal synchronous key-value interface (string keys, string values)."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store used by tests and ephemeral engines."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class JsonFileStore(KeyValueStore):
    """
    Directory-backed store: each key is written to `<root>/<key>.json`.

    Writes go straight to disk on every `set`, which is the persistence boundary
    the engine relies on (there is no explicit flush or teardown).
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _sanitize_key(self, key: str) -> str:
        """Map a storage key onto a safe filename."""
        safe_key = re.sub(r'[^\w\-\.]', '_', key)
        return re.sub(r'_+', '_', safe_key)

    def _path_for(self, key: str) -> Path:
        return self.root / f"{self._sanitize_key(key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding='utf-8')
        except OSError:
            logger.warning("Error reading storage key", extra={
                "key": key,
                "path": str(path)
            }, exc_info=True)
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp_path = path.with_suffix('.tmp')
        tmp_path.write_text(value, encoding='utf-8')
        tmp_path.replace(path)

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        if path.exists():
            path.unlink()


class JsonBackedStore(ABC):
    """
    Base class for the persisted learning stores.

    Subclasses describe how to decode/encode their in-memory structure; this
    class handles lazy loading on first access, corrupt-value recovery, and the
    write-after-every-mutation rule.
    """

    storage_key: str = ""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self._data: Any = None
        self._loaded = False

    @abstractmethod
    def _empty(self) -> Any:
        """Return the empty structure used when nothing (valid) is stored."""

    @abstractmethod
    def _decode(self, raw: Any) -> Any:
        """Turn parsed JSON into the in-memory structure (may raise)."""

    @abstractmethod
    def _encode(self) -> Any:
        """Turn the in-memory structure into JSON-serializable data."""

    def load(self) -> None:
        """(Re)load from storage, falling back to an empty structure."""
        raw = self.kv.get(self.storage_key)
        self._data = self._empty()
        if raw:
            try:
                self._data = self._decode(json.loads(raw))
            except (ValueError, TypeError, KeyError, AttributeError):
                # pydantic.ValidationError subclasses ValueError
                logger.warning("Malformed stored value, using empty default", extra={
                    "storage_key": self.storage_key
                }, exc_info=True)
                self._data = self._empty()
        self._loaded = True

    def save(self) -> None:
        """Write the current structure back to storage."""
        self.kv.set(self.storage_key, json.dumps(self._encode(), ensure_ascii=False))

    @property
    def data(self) -> Any:
        if not self._loaded:
            self.load()
        return self._data
