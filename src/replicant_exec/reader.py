from __future__ import annotations

from typing import TYPE_CHECKING

from .execution.types import StreamResult

if TYPE_CHECKING:
    from .client import Client


class OutputBuffer:
    """Growable byte buffer that assembles output chunks at their logical offset.

    Space is reserved ahead of each read, so a chunk is always written into
    already-allocated memory.

    Example:
        ```python
        out = OutputBuffer(initial_capacity=8)
        with out.window(4) as view:
            view[:2] = b"hi"
        out.advance(2)
        assert out.getvalue() == b"hi"
        ```
    """

    def __init__(self, initial_capacity: int = 1024) -> None:
        """Allocate the initial backing storage.

        Example:
            ```python
            out = OutputBuffer(initial_capacity=1024)
            ```
        """
        if initial_capacity < 1:
            raise ValueError("initial_capacity must be positive")
        self._buffer = bytearray(initial_capacity)
        self._length = 0

    @property
    def capacity(self) -> int:
        """Return the number of bytes currently allocated.

        Example:
            ```python
            out.capacity  # 1024
            ```
        """
        return len(self._buffer)

    def __len__(self) -> int:
        """Return the number of bytes assembled so far.

        Example:
            ```python
            len(out)  # 0
            ```
        """
        return self._length

    def reserve(self, size: int) -> None:
        """Grow so at least `size` free bytes follow the current offset.

        Example:
            ```python
            out.reserve(4096)
            ```
        """
        needed = self._length + size
        if needed <= len(self._buffer):
            return
        new_capacity = max(len(self._buffer) * 2, needed)
        self._buffer.extend(bytes(new_capacity - len(self._buffer)))

    def window(self, size: int) -> memoryview:
        """Reserve `size` bytes and return a writable view over them.

        Release the view (use it as a context manager) before the next
        `window` call; the buffer cannot grow while a view is exported.

        Example:
            ```python
            with out.window(1024) as view:
                ...
            ```
        """
        self.reserve(size)
        return memoryview(self._buffer)[self._length : self._length + size]

    def advance(self, count: int) -> None:
        """Commit `count` bytes written into the last window.

        Example:
            ```python
            out.advance(4)
            ```
        """
        if count < 0 or self._length + count > len(self._buffer):
            raise ValueError(f"cannot advance by {count} bytes")
        self._length += count

    def append(self, data: bytes) -> None:
        """Copy `data` to the end of the assembled output.

        Example:
            ```python
            out.append(b"more")
            ```
        """
        with self.window(len(data)) as view:
            view[:] = data
        self.advance(len(data))

    def getvalue(self) -> bytes:
        """Return the assembled output.

        Example:
            ```python
            data = out.getvalue()
            ```
        """
        return bytes(self._buffer[: self._length])


def read_all(
    client: "Client",
    exec_handle: int,
    *,
    chunk_size: int | None = None,
    initial_capacity: int | None = None,
) -> StreamResult:
    """Read an execution's output until the zero-length read that ends it.

    The loop stops only on a zero-byte read or an error; a short chunk is
    not taken as the end. On error `data` is empty and must not be used.

    Example:
        ```python
        streamed = read_all(client, handle, chunk_size=4)
        assert streamed.ok
        ```
    """
    size = chunk_size if chunk_size is not None else client.settings.default_chunk_size
    if size < 1:
        return StreamResult(data=b"", error=f"read capacity must be a positive integer, got {size!r}")
    output = OutputBuffer(initial_capacity or client.settings.initial_buffer_capacity)
    chunks = 0
    while True:
        with output.window(size) as view:
            result = client.read_output(exec_handle, view, size)
        if result.error is not None:
            return StreamResult(data=b"", chunks=chunks, error=result.error)
        if result.bytes_read == 0:
            return StreamResult(data=output.getvalue(), chunks=chunks)
        output.advance(result.bytes_read)
        chunks += 1
