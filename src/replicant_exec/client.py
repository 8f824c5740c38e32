from __future__ import annotations

import logging
import threading

from .errors import MalformedInputError, ReplicantError, ResourceError
from .execution.engine import StoreEngine
from .execution.state import Execution, ExecutionBusyError
from .execution.types import BeginResult, OpenResult, ReadResult
from .handles import MAX_SLOTS, HandleTable
from .session import ConnectionSession
from .settings import ClientSettings

logger = logging.getLogger(__name__)


def describe_error(operation: str, exc: Exception) -> str:
    """Turn an exception raised below the client boundary into an error string.

    Example:
        ```python
        message = describe_error("open", ResourceError("store spec must be non-empty"))
        ```
    """
    if isinstance(exc, ReplicantError):
        logger.warning("%s failed: %s", operation, exc)
        return str(exc)
    logger.exception("%s failed with unexpected engine error", operation)
    return f"engine failure: {exc}"


def _payload_bytes(value: object, what: str) -> bytes:
    """Copy a bytes-like argument, rejecting anything else.

    Example:
        ```python
        spec = _payload_bytes(b"/tmp/foo", "store spec")
        ```
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise MalformedInputError(f"{what} must be bytes-like, got {type(value).__name__}")


class Client:
    """Handle-based execution protocol over a store engine.

    Every operation returns its error as a string (or None) instead of
    raising; when an error is returned, the other values of that call are
    meaningless. Every execution must be passed to `end_execution` exactly
    once, even after a failed write or read, or its engine resources leak.

    Example:
        ```python
        client = Client(MemoryEngine())
        conn = client.open(b"/tmp/foo").handle
        begun = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
        client.end_execution(begun.handle)
        ```
    """

    def __init__(self, engine: StoreEngine, settings: ClientSettings | None = None) -> None:
        """Create a client bound to `engine`, configured by `settings`.

        Example:
            ```python
            client = Client(FileEngine(), ClientSettings(max_executions_per_connection=4))
            ```
        """
        self._engine = engine
        self._settings = settings or ClientSettings()
        self._lock = threading.Lock()
        self._open_specs: dict[bytes, int] = {}
        self._connections: HandleTable[ConnectionSession] = HandleTable(
            "connection", capacity=min(self._settings.max_connections, MAX_SLOTS)
        )
        self._executions: HandleTable[Execution] = HandleTable(
            "execution",
            capacity=min(
                self._settings.max_connections * self._settings.max_executions_per_connection,
                MAX_SLOTS,
            ),
        )

    @property
    def settings(self) -> ClientSettings:
        """Return the settings this client was built with.

        Example:
            ```python
            chunk = client.settings.default_chunk_size
            ```
        """
        return self._settings

    def connection_count(self) -> int:
        """Return the number of open connections.

        Example:
            ```python
            assert client.connection_count() == 0
            ```
        """
        return len(self._connections)

    def execution_count(self) -> int:
        """Return the number of executions not yet finalized.

        Example:
            ```python
            assert client.execution_count() == 0
            ```
        """
        return len(self._executions)

    def open(self, store_spec: bytes) -> OpenResult:
        """Open the store named by an opaque location descriptor.

        Example:
            ```python
            res = client.open(b"/tmp/foo")
            ```
        """
        try:
            handle = self._open(_payload_bytes(store_spec, "store spec"))
        except Exception as exc:
            return OpenResult(handle=0, error=describe_error("open", exc))
        return OpenResult(handle=handle)

    def close(self, conn: int) -> str | None:
        """Close a connection that has no live executions.

        Example:
            ```python
            err = client.close(conn)
            ```
        """
        try:
            with self._lock:
                session = self._connections.get(conn)
                session.close()
                self._connections.remove(conn)
                self._open_specs.pop(session.store_spec, None)
        except Exception as exc:
            return describe_error("close", exc)
        logger.debug("Closed connection %d", conn)
        return None

    def drop(self, store_spec: bytes) -> str | None:
        """Close the store if this client has it open, then delete it.

        Refused while the open connection still has live executions; nothing
        is closed or deleted in that case.

        Example:
            ```python
            err = client.drop(b"/tmp/foo")
            ```
        """
        try:
            spec = _payload_bytes(store_spec, "store spec")
            if not spec:
                raise ResourceError("store spec must be non-empty")
            drop_store = getattr(self._engine, "drop_store", None)
            if drop_store is None:
                raise ResourceError("engine does not support dropping stores")
            with self._lock:
                conn = self._open_specs.get(spec)
                if conn is not None:
                    session = self._connections.get(conn)
                    session.close()
                    self._connections.remove(conn)
                    del self._open_specs[spec]
                    logger.debug("Closed connection %d before drop", conn)
                drop_store(spec)
        except Exception as exc:
            return describe_error("drop", exc)
        logger.debug("Dropped store %r", spec)
        return None

    def begin_execution(self, conn: int, command: bytes) -> BeginResult:
        """Dispatch a command on a connection and return its execution handle.

        Example:
            ```python
            res = client.begin_execution(conn, b'{"put": {"id": "obj1"}}')
            ```
        """
        try:
            session = self._connections.get(conn)
            handle = session.begin(_payload_bytes(command, "command"), self._executions.insert)
        except Exception as exc:
            return BeginResult(handle=0, error=describe_error("begin_execution", exc))
        logger.debug("Began execution %d on connection %d", handle, conn)
        return BeginResult(handle=handle)

    def write_input(self, exec_handle: int, data: bytes) -> str | None:
        """Supply the complete input payload; at most once and before any read.

        Example:
            ```python
            err = client.write_input(handle, b'"Hello, from Replicant!"')
            ```
        """
        try:
            self._executions.get(exec_handle).write_input(_payload_bytes(data, "input"))
        except Exception as exc:
            return describe_error("write_input", exc)
        return None

    def read_output(
        self, exec_handle: int, buffer: bytearray | memoryview, capacity: int
    ) -> ReadResult:
        """Read up to `capacity` output bytes into `buffer[:bytes_read]`.

        `bytes_read == 0` with no error is the only end-of-output signal.

        Example:
            ```python
            buf = bytearray(1024)
            res = client.read_output(handle, buf, len(buf))
            chunk = bytes(buf[: res.bytes_read])
            ```
        """
        try:
            size = self._executions.get(exec_handle).read_into(buffer, capacity)
        except Exception as exc:
            return ReadResult(bytes_read=0, error=describe_error("read_output", exc))
        return ReadResult(bytes_read=size)

    def end_execution(self, exec_handle: int) -> str | None:
        """Finalize an execution, surfacing any deferred engine failure.

        The handle is invalid afterwards, including when an error is returned;
        only a concurrent-use rejection leaves it live.

        Example:
            ```python
            err = client.end_execution(handle)
            ```
        """
        try:
            execution = self._executions.get(exec_handle)
            release = True
            try:
                execution.finish()
            except ExecutionBusyError:
                release = False
                raise
            finally:
                if release:
                    self._executions.remove(exec_handle)
                    execution.session.detach(exec_handle)
        except Exception as exc:
            return describe_error("end_execution", exc)
        logger.debug(
            "Ended execution %d after %d output bytes", exec_handle, execution.bytes_delivered
        )
        return None

    def _open(self, store_spec: bytes) -> int:
        """Open a store and register its session; raises on failure.

        Example:
            ```python
            handle = client._open(b"/tmp/foo")
            ```
        """
        if not store_spec:
            raise ResourceError("store spec must be non-empty")
        with self._lock:
            if store_spec in self._open_specs:
                raise ResourceError("specified store is already open")
            if len(self._connections) >= self._settings.max_connections:
                raise ResourceError(
                    f"too many open connections (limit {self._settings.max_connections})"
                )
            store = self._engine.open_store(store_spec)
            session = ConnectionSession(
                store_spec,
                store,
                max_executions=self._settings.max_executions_per_connection,
            )
            handle = self._connections.insert(session)
            self._open_specs[store_spec] = handle
        logger.debug("Opened connection %d for %r", handle, store_spec)
        return handle
