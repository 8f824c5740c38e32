from __future__ import annotations

import threading
from typing import Callable

from .errors import InvalidHandleError, ResourceError, SequenceError
from .execution.engine import Store
from .execution.state import Execution


class ConnectionSession:
    """One open store and the executions currently live against it.

    Example:
        ```python
        session = ConnectionSession(b"/tmp/foo", engine.open_store(b"/tmp/foo"), max_executions=16)
        ```
    """

    def __init__(self, store_spec: bytes, store: Store, *, max_executions: int) -> None:
        """Wrap an engine store; at most `max_executions` may be live at once.

        Example:
            ```python
            session = ConnectionSession(b"/tmp/foo", store, max_executions=2)
            ```
        """
        self.store_spec = store_spec
        self._store = store
        self._max_executions = max_executions
        self._lock = threading.Lock()
        self._executions: set[int] = set()
        self._closed = False

    @property
    def active_executions(self) -> int:
        """Return how many executions are live on this connection.

        Example:
            ```python
            session.active_executions  # 0
            ```
        """
        with self._lock:
            return len(self._executions)

    def begin(self, command: bytes, register: Callable[[Execution], int]) -> int:
        """Start a command on the store and register it, returning its handle.

        `register` allocates the execution handle; nothing is registered when
        the engine rejects the command.

        Example:
            ```python
            handle = session.begin(b'{"get": {"id": "obj1"}}', executions.insert)
            ```
        """
        with self._lock:
            if self._closed:
                raise InvalidHandleError("connection is closed")
            if len(self._executions) >= self._max_executions:
                raise ResourceError(
                    f"too many concurrent executions on connection (limit {self._max_executions})"
                )
            execution = Execution(self, self._store.begin(bytes(command)))
            handle = register(execution)
            self._executions.add(handle)
            return handle

    def detach(self, handle: int) -> None:
        """Forget a finalized execution handle.

        Example:
            ```python
            session.detach(handle)
            ```
        """
        with self._lock:
            self._executions.discard(handle)

    def close(self) -> None:
        """Close the store; refused while any execution is still live.

        Example:
            ```python
            session.close()
            ```
        """
        with self._lock:
            if self._executions:
                raise SequenceError(
                    f"connection has {len(self._executions)} active execution(s); end them before closing"
                )
            self._store.close()
            self._closed = True
