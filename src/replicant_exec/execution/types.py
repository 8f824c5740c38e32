from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OpenResult:
    """Outcome of `Client.open`.

    `handle` is meaningful only when `error` is None.

    Example:
        ```python
        res = OpenResult(handle=16777216, error=None)
        ```
    """

    handle: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the call succeeded.

        Example:
            ```python
            assert OpenResult(handle=1).ok
            ```
        """
        return self.error is None


@dataclass(frozen=True, slots=True)
class BeginResult:
    """Outcome of `Client.begin_execution`.

    Example:
        ```python
        res = BeginResult(handle=0, error="invalid connection handle: 7")
        ```
    """

    handle: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the call succeeded.

        Example:
            ```python
            assert not BeginResult(handle=0, error="boom").ok
            ```
        """
        return self.error is None


@dataclass(frozen=True, slots=True)
class ReadResult:
    """Outcome of `Client.read_output`.

    `bytes_read == 0` with no error is end of stream.

    Example:
        ```python
        res = ReadResult(bytes_read=4)
        ```
    """

    bytes_read: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the call succeeded.

        Example:
            ```python
            assert ReadResult(bytes_read=0).ok
            ```
        """
        return self.error is None

    @property
    def eof(self) -> bool:
        """Return True for the canonical end-of-stream result.

        Example:
            ```python
            assert ReadResult(bytes_read=0).eof
            ```
        """
        return self.error is None and self.bytes_read == 0


@dataclass(frozen=True, slots=True)
class StreamResult:
    """Outcome of draining an execution's output with `read_all`.

    Example:
        ```python
        res = StreamResult(data=b"hello", chunks=2)
        ```
    """

    data: bytes
    chunks: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the stream ended on a zero-length read.

        Example:
            ```python
            assert StreamResult(data=b"").ok
            ```
        """
        return self.error is None


@dataclass(slots=True)
class CommandResult:
    """Normalized result of a full begin/write/read/end sequence.

    `stage` names the first operation that failed.

    Example:
        ```python
        result = CommandResult(ok=True, output=b'"Hello"')
        ```
    """

    ok: bool
    output: bytes = b""
    error: str | None = None
    stage: str | None = None
