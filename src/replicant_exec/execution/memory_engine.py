from __future__ import annotations

import threading

from ..errors import ResourceError
from .store import CommandStore, validate_max_read_bytes


class _MemoryStorage:
    """Dict-backed ObjectStorage.

    Example:
        ```python
        storage = _MemoryStorage()
        ```
    """

    def __init__(self) -> None:
        """Create an empty storage.

        Example:
            ```python
            storage = _MemoryStorage()
            ```
        """
        self._objects: dict[str, bytes] = {}
        self.lock = threading.Lock()

    def load(self, object_id: str) -> bytes | None:
        """Return stored bytes or None.

        Example:
            ```python
            raw = storage.load("obj1")
            ```
        """
        return self._objects.get(object_id)

    def save(self, object_id: str, value: bytes) -> None:
        """Store a copy of `value`.

        Example:
            ```python
            storage.save("obj1", b"1")
            ```
        """
        self._objects[object_id] = bytes(value)

    def delete(self, object_id: str) -> bool:
        """Remove an id and report whether it existed.

        Example:
            ```python
            storage.delete("obj1")
            ```
        """
        return self._objects.pop(object_id, None) is not None

    def ids(self) -> list[str]:
        """Return stored ids in ascending order.

        Example:
            ```python
            storage.ids()
            ```
        """
        return sorted(self._objects)


class MemoryEngine:
    """Keep stores in process memory, keyed by their store spec.

    Reopening the same spec sees the data written through earlier connections.

    Example:
        ```python
        engine = MemoryEngine(max_read_bytes=4)
        store = engine.open_store(b"/tmp/foo")
        ```
    """

    def __init__(self, *, max_read_bytes: int | None = None) -> None:
        """Create an engine; `max_read_bytes` caps the bytes any read returns.

        Example:
            ```python
            engine = MemoryEngine()
            ```
        """
        self._max_read_bytes = validate_max_read_bytes(max_read_bytes)
        self._lock = threading.Lock()
        self._storages: dict[bytes, _MemoryStorage] = {}

    def open_store(self, store_spec: bytes) -> CommandStore:
        """Open (creating on first use) the in-memory store named by `store_spec`.

        Example:
            ```python
            store = engine.open_store(b"/tmp/foo")
            ```
        """
        key = bytes(store_spec)
        if not key:
            raise ResourceError("store spec must be non-empty")
        with self._lock:
            storage = self._storages.setdefault(key, _MemoryStorage())
        return CommandStore(storage, storage.lock, max_read_bytes=self._max_read_bytes)

    def drop_store(self, store_spec: bytes) -> None:
        """Discard the in-memory store named by `store_spec`, if any.

        Example:
            ```python
            engine.drop_store(b"/tmp/foo")
            ```
        """
        key = bytes(store_spec)
        if not key:
            raise ResourceError("store spec must be non-empty")
        with self._lock:
            self._storages.pop(key, None)
