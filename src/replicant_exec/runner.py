from __future__ import annotations

import logging

from .client import Client
from .execution.types import CommandResult
from .reader import read_all

logger = logging.getLogger(__name__)


def _as_bytes(value: bytes | str) -> bytes:
    """Encode text payloads as UTF-8 and pass bytes through.

    Example:
        ```python
        payload = _as_bytes('{"get": {"id": "obj1"}}')
        ```
    """
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def run_command(
    client: Client,
    conn: int,
    command: bytes | str,
    input_data: bytes | str | None = None,
    *,
    read: bool = True,
    chunk_size: int | None = None,
) -> CommandResult:
    """Run begin, optional write, optional read-all and end as one sequence.

    The execution is always finalized once begun. The first failing stage and
    its message are reported verbatim; later errors are only logged.

    Example:
        ```python
        from replicant_exec import Client, MemoryEngine, run_command
        client = Client(MemoryEngine())
        conn = client.open(b"/tmp/foo").handle
        run_command(client, conn, '{"put": {"id": "obj1"}}', '"Hello, from Replicant!"', read=False)
        result = run_command(client, conn, '{"get": {"id": "obj1"}}', chunk_size=4)
        ```
    """
    begun = client.begin_execution(conn, _as_bytes(command))
    if begun.error is not None:
        return CommandResult(ok=False, error=begun.error, stage="begin")

    stage: str | None = None
    error: str | None = None
    output = b""
    if input_data is not None:
        error = client.write_input(begun.handle, _as_bytes(input_data))
        if error is not None:
            stage = "write"
    if error is None and read:
        streamed = read_all(client, begun.handle, chunk_size=chunk_size)
        if streamed.error is not None:
            stage, error = "read", streamed.error
        else:
            output = streamed.data

    end_error = client.end_execution(begun.handle)
    if error is not None:
        if end_error is not None:
            logger.debug("end_execution after failed %s also failed: %s", stage, end_error)
        return CommandResult(ok=False, error=error, stage=stage)
    if end_error is not None:
        return CommandResult(ok=False, error=end_error, stage="end")
    return CommandResult(ok=True, output=output)
