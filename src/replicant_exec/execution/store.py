from __future__ import annotations

import io
import threading

from ..errors import MalformedInputError, ReplicantError, ResourceError
from .commands import Command, ObjectStorage, parse_command, run_command, validate_value


def validate_max_read_bytes(max_read_bytes: int | None) -> int | None:
    """Validate the optional per-read cap shared by the bundled engines.

    Example:
        ```python
        cap = validate_max_read_bytes(4)
        ```
    """
    if max_read_bytes is None:
        return None
    if isinstance(max_read_bytes, bool) or not isinstance(max_read_bytes, int) or max_read_bytes < 1:
        raise ValueError("max_read_bytes must be a positive integer or None")
    return max_read_bytes


class CommandExecution:
    """Engine-side state for one command run against an ObjectStorage.

    The command runs once, on the first read or at finish. Its output is then
    served from memory; a failure is held back and raised by `finish`.

    Example:
        ```python
        execution = CommandExecution(parse_command(b'{"get": {"id": "a"}}'), storage, threading.Lock())
        ```
    """

    def __init__(
        self,
        command: Command,
        storage: ObjectStorage,
        lock: threading.Lock,
        *,
        max_read_bytes: int | None = None,
    ) -> None:
        """Bind a parsed command to the storage it will run against.

        Example:
            ```python
            execution = CommandExecution(cmd, storage, threading.Lock(), max_read_bytes=4)
            ```
        """
        self._command = command
        self._storage = storage
        self._lock = lock
        self._max_read_bytes = max_read_bytes
        self._input: bytes | None = None
        self._output: io.BytesIO | None = None
        self._error: ReplicantError | None = None

    def write(self, data: bytes) -> None:
        """Accept the input payload for commands that take one.

        A rejected payload cancels the command: it never runs, and `finish`
        reports the rejection again.

        Example:
            ```python
            execution.write(b'"Hello"')
            ```
        """
        try:
            if not self._command.accepts_input:
                raise MalformedInputError(f"Command '{self._command.verb}' does not accept input")
            self._input = validate_value(data)
        except ReplicantError as exc:
            self._error = exc
            self._output = io.BytesIO()
            raise

    def read(self, size: int) -> bytes:
        """Return the next slice of output, capped by `max_read_bytes`.

        Example:
            ```python
            chunk = execution.read(1024)
            ```
        """
        output = self._run_once()
        if self._max_read_bytes is not None:
            size = min(size, self._max_read_bytes)
        return output.read(size)

    def finish(self) -> None:
        """Run the command if nothing has read it yet and raise any failure.

        Example:
            ```python
            execution.finish()
            ```
        """
        output = self._run_once()
        output.close()
        if self._error is not None:
            raise self._error

    def _run_once(self) -> io.BytesIO:
        """Execute the command on first use and cache its output.

        Example:
            ```python
            output = execution._run_once()
            ```
        """
        if self._output is None:
            try:
                with self._lock:
                    result = run_command(self._command, self._storage, self._input)
            except ReplicantError as exc:
                self._error = exc
                result = b""
            self._output = io.BytesIO(result)
        return self._output


class CommandStore:
    """A Store that interprets JSON commands against an ObjectStorage.

    Example:
        ```python
        store = CommandStore(storage, threading.Lock())
        ```
    """

    def __init__(
        self,
        storage: ObjectStorage,
        lock: threading.Lock,
        *,
        max_read_bytes: int | None = None,
    ) -> None:
        """Create a store over `storage`; `lock` serializes command runs.

        Example:
            ```python
            store = CommandStore(storage, threading.Lock(), max_read_bytes=4)
            ```
        """
        self._storage = storage
        self._lock = lock
        self._max_read_bytes = max_read_bytes
        self._closed = False

    def begin(self, command: bytes) -> CommandExecution:
        """Parse a command payload and return its execution.

        Example:
            ```python
            execution = store.begin(b'{"has": {"id": "obj1"}}')
            ```
        """
        if self._closed:
            raise ResourceError("store is closed")
        return CommandExecution(
            parse_command(command),
            self._storage,
            self._lock,
            max_read_bytes=self._max_read_bytes,
        )

    def close(self) -> None:
        """Mark the store closed; later `begin` calls fail.

        Example:
            ```python
            store.close()
            ```
        """
        self._closed = True
