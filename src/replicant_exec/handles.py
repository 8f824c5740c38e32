from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .errors import InvalidHandleError, ResourceError

T = TypeVar("T")

_INDEX_BITS = 24
_INDEX_MASK = (1 << _INDEX_BITS) - 1
MAX_SLOTS = _INDEX_MASK + 1


@dataclass(slots=True)
class _Slot:
    """One arena slot: the generation currently issued for it and its value.

    Example:
        ```python
        slot = _Slot(generation=1, value=None)
        ```
    """

    generation: int
    value: Any = None
    live: bool = False


def pack_handle(index: int, generation: int) -> int:
    """Combine a slot index and generation into one opaque integer handle.

    Example:
        ```python
        handle = pack_handle(0, 1)  # 16777216
        ```
    """
    return (generation << _INDEX_BITS) | index


def unpack_handle(handle: int) -> tuple[int, int]:
    """Split an opaque handle back into (index, generation).

    Example:
        ```python
        index, generation = unpack_handle(16777216)  # (0, 1)
        ```
    """
    return handle & _INDEX_MASK, handle >> _INDEX_BITS


class HandleTable(Generic[T]):
    """Arena mapping opaque integer handles to owned objects.

    Handles carry a generation counter, so a handle whose slot has been freed
    and reissued is still rejected as stale. Handle value 0 is never issued.

    Example:
        ```python
        table: HandleTable[str] = HandleTable("connection", capacity=8)
        handle = table.insert("conn")
        assert table.get(handle) == "conn"
        ```
    """

    def __init__(self, kind: str, *, capacity: int = MAX_SLOTS) -> None:
        """Create an empty table that holds at most `capacity` live entries.

        Example:
            ```python
            table = HandleTable("execution", capacity=16)
            ```
        """
        if capacity < 1 or capacity > MAX_SLOTS:
            raise ValueError(f"capacity must be between 1 and {MAX_SLOTS}")
        self._kind = kind
        self._capacity = capacity
        self._lock = threading.Lock()
        self._slots: list[_Slot] = []
        self._free: list[int] = []
        self._live = 0

    @property
    def kind(self) -> str:
        """Return the human-readable name used in error messages.

        Example:
            ```python
            table.kind  # "connection"
            ```
        """
        return self._kind

    def insert(self, value: T) -> int:
        """Store a value and return a fresh handle for it.

        Example:
            ```python
            handle = table.insert(session)
            ```
        """
        with self._lock:
            if self._live >= self._capacity:
                raise ResourceError(
                    f"too many open {self._kind}s (limit {self._capacity})"
                )
            if self._free:
                index = self._free.pop()
                slot = self._slots[index]
            else:
                index = len(self._slots)
                slot = _Slot(generation=1)
                self._slots.append(slot)
            slot.value = value
            slot.live = True
            self._live += 1
            return pack_handle(index, slot.generation)

    def get(self, handle: int) -> T:
        """Return the value for a live handle or raise InvalidHandleError.

        Example:
            ```python
            session = table.get(handle)
            ```
        """
        with self._lock:
            return self._lookup_locked(handle).value

    def remove(self, handle: int) -> T:
        """Invalidate a handle and return the value it referenced.

        The slot's generation is bumped so the removed handle stays invalid
        even after the slot is reused.

        Example:
            ```python
            session = table.remove(handle)
            ```
        """
        with self._lock:
            slot = self._lookup_locked(handle)
            value = slot.value
            slot.value = None
            slot.live = False
            slot.generation += 1
            self._free.append(unpack_handle(handle)[0])
            self._live -= 1
            return value

    def __contains__(self, handle: object) -> bool:
        """Return whether `handle` currently refers to a live entry.

        Example:
            ```python
            assert handle in table
            ```
        """
        if not isinstance(handle, int):
            return False
        with self._lock:
            try:
                self._lookup_locked(handle)
            except InvalidHandleError:
                return False
            return True

    def __len__(self) -> int:
        """Return the number of live entries.

        Example:
            ```python
            assert len(table) == 0
            ```
        """
        with self._lock:
            return self._live

    def _lookup_locked(self, handle: int) -> _Slot:
        """Resolve a handle to its slot; caller must hold the lock.

        Example:
            ```python
            slot = table._lookup_locked(handle)
            ```
        """
        if isinstance(handle, bool) or not isinstance(handle, int) or handle <= 0:
            raise InvalidHandleError(f"invalid {self._kind} handle: {handle!r}")
        index, generation = unpack_handle(handle)
        if index >= len(self._slots):
            raise InvalidHandleError(f"invalid {self._kind} handle: {handle}")
        slot = self._slots[index]
        if not slot.live or slot.generation != generation:
            raise InvalidHandleError(f"invalid {self._kind} handle: {handle}")
        return slot
