from __future__ import annotations

from typing import Protocol


class EngineExecution(Protocol):
    def write(self, data: bytes) -> None:
        """Hand the complete input payload to the running command.

        Example:
            ```python
            execution.write(b'"Hello"')
            ```
        """
        ...

    def read(self, size: int) -> bytes:
        """Return up to `size` bytes of the next unread output; `b""` once exhausted.

        Example:
            ```python
            chunk = execution.read(1024)
            ```
        """
        ...

    def finish(self) -> None:
        """Release engine resources, raising any deferred command failure.

        Example:
            ```python
            execution.finish()
            ```
        """
        ...


class Store(Protocol):
    def begin(self, command: bytes) -> EngineExecution:
        """Accept a command and return its engine-side execution.

        Example:
            ```python
            execution = store.begin(b'{"get": {"id": "obj1"}}')
            ```
        """
        ...

    def close(self) -> None:
        """Release the store.

        Example:
            ```python
            store.close()
            ```
        """
        ...


class StoreEngine(Protocol):
    def open_store(self, store_spec: bytes) -> Store:
        """Open the store described by an opaque location descriptor.

        Example:
            ```python
            store = engine.open_store(b"/tmp/foo")
            ```
        """
        ...


class DroppableStoreEngine(StoreEngine, Protocol):
    def drop_store(self, store_spec: bytes) -> None:
        """Delete the store described by `store_spec`; a missing store is not an error.

        Engines that cannot delete stores omit this method.

        Example:
            ```python
            engine.drop_store(b"/tmp/foo")
            ```
        """
        ...
