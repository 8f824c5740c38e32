from __future__ import annotations

import threading
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Iterator

from ..errors import EngineError, SequenceError
from .engine import EngineExecution

if TYPE_CHECKING:
    from ..session import ConnectionSession


class ExecutionBusyError(SequenceError):
    """Raised when one execution is driven from two threads at once."""


class ExecutionState(Enum):
    PENDING = "pending"
    INPUT_WRITTEN = "input_written"
    READING = "reading"
    DRAINED = "drained"
    FAILED = "failed"
    ENDED = "ended"


class Execution:
    """One in-flight command: input, chunked output and completion.

    The sub-protocol is strictly `write_input?` then `read_into*` then
    `finish`. Out-of-order calls raise SequenceError without touching the
    engine; an engine failure during write or read moves the execution to
    FAILED, after which only `finish` is accepted.

    Example:
        ```python
        execution = Execution(session, store.begin(b'{"get": {"id": "obj1"}}'))
        n = execution.read_into(bytearray(8), 8)
        execution.finish()
        ```
    """

    def __init__(self, session: "ConnectionSession", engine_execution: EngineExecution) -> None:
        """Wrap an engine-side execution owned by `session`.

        Example:
            ```python
            execution = Execution(session, engine_execution)
            ```
        """
        self.session = session
        self.state = ExecutionState.PENDING
        self.bytes_delivered = 0
        self._engine = engine_execution
        self._busy = threading.Lock()

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the execution for one call, rejecting concurrent use.

        Example:
            ```python
            with execution._exclusive():
                ...
            ```
        """
        if not self._busy.acquire(blocking=False):
            raise ExecutionBusyError("execution is busy: it is already being driven by another caller")
        try:
            yield
        finally:
            self._busy.release()

    def write_input(self, data: bytes) -> None:
        """Hand the full input payload to the engine, at most once and before any read.

        Example:
            ```python
            execution.write_input(b'"Hello, from Replicant!"')
            ```
        """
        with self._exclusive():
            if self.state is ExecutionState.INPUT_WRITTEN:
                raise SequenceError("input already written")
            if self.state in (ExecutionState.READING, ExecutionState.DRAINED):
                raise SequenceError("input must be written before the first read")
            self._check_usable()
            try:
                self._engine.write(bytes(data))
            except Exception:
                self.state = ExecutionState.FAILED
                raise
            self.state = ExecutionState.INPUT_WRITTEN

    def read_into(self, buffer: bytearray | memoryview, capacity: int) -> int:
        """Copy up to `capacity` bytes of the next unread output into `buffer`.

        Returns 0 only at end of output. A non-positive capacity is rejected
        rather than reported as end of output.

        Example:
            ```python
            buf = bytearray(4)
            n = execution.read_into(buf, 4)
            ```
        """
        with self._exclusive():
            if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
                raise SequenceError(f"read capacity must be a positive integer, got {capacity!r}")
            self._check_usable()
            try:
                raw = memoryview(buffer)
            except TypeError as exc:
                raise SequenceError(f"read buffer must support the buffer protocol: {exc}") from exc
            with raw, raw.cast("B") as view:
                if view.readonly:
                    raise SequenceError("read buffer must be writable")
                if view.nbytes < capacity:
                    raise SequenceError(
                        f"read buffer holds {view.nbytes} bytes, smaller than capacity {capacity}"
                    )
                if self.state is ExecutionState.DRAINED:
                    return 0
                try:
                    chunk = self._engine.read(capacity)
                    if len(chunk) > capacity:
                        raise EngineError(
                            f"engine returned {len(chunk)} bytes for a {capacity}-byte read"
                        )
                except Exception:
                    self.state = ExecutionState.FAILED
                    raise
                size = len(chunk)
                view[:size] = chunk
            self.bytes_delivered += size
            self.state = ExecutionState.READING if size else ExecutionState.DRAINED
            return size

    def finish(self) -> None:
        """End the execution and raise any deferred engine failure.

        Example:
            ```python
            execution.finish()
            ```
        """
        with self._exclusive():
            if self.state is ExecutionState.ENDED:
                raise SequenceError("execution already ended")
            self.state = ExecutionState.ENDED
            self._engine.finish()

    def _check_usable(self) -> None:
        """Reject writes and reads on failed or ended executions.

        Example:
            ```python
            execution._check_usable()
            ```
        """
        if self.state is ExecutionState.FAILED:
            raise SequenceError("execution has failed; end it to release resources")
        if self.state is ExecutionState.ENDED:
            raise SequenceError("execution already ended")
