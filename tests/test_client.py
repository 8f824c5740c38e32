from __future__ import annotations

import threading

import pytest

from replicant_exec import Client, ClientSettings, MemoryEngine, read_all
from replicant_exec.errors import EngineError

GREETING = b'"Hello, from Replicant!"'


@pytest.fixture()
def client() -> Client:
    return Client(MemoryEngine())


@pytest.fixture()
def conn(client: Client) -> int:
    opened = client.open(b"/tmp/foo")
    assert opened.ok
    return opened.handle


def _put(client: Client, conn: int, object_id: str, value: bytes) -> None:
    begun = client.begin_execution(conn, f'{{"put": {{"id": "{object_id}"}}}}'.encode())
    assert begun.error is None
    assert client.write_input(begun.handle, value) is None
    assert client.end_execution(begun.handle) is None


def test_hello_round_trip_reassembles_small_chunks(client: Client, conn: int) -> None:
    _put(client, conn, "obj1", GREETING)

    begun = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
    assert begun.error is None
    buf = bytearray(4)
    chunks: list[bytes] = []
    sizes: list[int] = []
    while True:
        res = client.read_output(begun.handle, buf, 4)
        assert res.error is None
        sizes.append(res.bytes_read)
        if res.bytes_read == 0:
            break
        chunks.append(bytes(buf[: res.bytes_read]))
    assert client.end_execution(begun.handle) is None

    assert sizes == [4, 4, 4, 4, 4, 4, 0]
    assert b"".join(chunks) == GREETING


def test_short_engine_reads_do_not_end_stream() -> None:
    client = Client(MemoryEngine(max_read_bytes=3))
    conn = client.open(b"/tmp/foo").handle
    _put(client, conn, "obj1", GREETING)

    begun = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
    streamed = read_all(client, begun.handle, chunk_size=10)
    assert client.end_execution(begun.handle) is None

    assert streamed.ok
    assert streamed.data == GREETING
    assert streamed.chunks == 8


def test_reads_after_eof_keep_returning_zero(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"has": {"id": "missing"}}')
    buf = bytearray(16)
    first = client.read_output(begun.handle, buf, 16)
    assert (first.bytes_read, bytes(buf[:5])) == (5, b"false")
    assert client.read_output(begun.handle, buf, 16).eof
    assert client.read_output(begun.handle, buf, 16).eof
    assert client.end_execution(begun.handle) is None


def test_open_rejects_empty_spec(client: Client) -> None:
    res = client.open(b"")
    assert not res.ok
    assert res.error == "store spec must be non-empty"
    assert client.connection_count() == 0


def test_open_rejects_already_open_store(client: Client, conn: int) -> None:
    res = client.open(b"/tmp/foo")
    assert res.error == "specified store is already open"


def test_open_reports_connection_limit() -> None:
    client = Client(MemoryEngine(), ClientSettings(max_connections=1))
    assert client.open(b"a").ok
    res = client.open(b"b")
    assert res.error is not None
    assert "too many open connections" in res.error


def test_begin_on_invalid_connection_allocates_nothing(client: Client) -> None:
    res = client.begin_execution(12345, b'{"get": {"id": "obj1"}}')
    assert not res.ok
    assert "invalid connection handle" in (res.error or "")
    assert client.execution_count() == 0


def test_begin_on_closed_connection_fails(client: Client, conn: int) -> None:
    assert client.close(conn) is None
    res = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
    assert res.error is not None
    assert client.execution_count() == 0


def test_stale_connection_handle_rejected_after_slot_reuse(client: Client, conn: int) -> None:
    assert client.close(conn) is None
    reopened = client.open(b"/tmp/foo")
    assert reopened.ok
    assert reopened.handle != conn
    assert client.begin_execution(conn, b'{"get": {"id": "obj1"}}').error is not None
    assert client.begin_execution(reopened.handle, b'{"get": {"id": "obj1"}}').ok


def test_begin_rejects_malformed_command(client: Client, conn: int) -> None:
    for payload in (b"not json", b'{"get": {}}', b'{"frob": {"id": "a"}}', b"[]"):
        res = client.begin_execution(conn, payload)
        assert res.error is not None, payload
    assert client.execution_count() == 0


def test_begin_reports_execution_limit() -> None:
    client = Client(MemoryEngine(), ClientSettings(max_executions_per_connection=2))
    conn = client.open(b"/tmp/foo").handle
    first = client.begin_execution(conn, b'{"has": {"id": "a"}}')
    second = client.begin_execution(conn, b'{"has": {"id": "b"}}')
    third = client.begin_execution(conn, b'{"has": {"id": "c"}}')
    assert first.ok and second.ok
    assert "too many concurrent executions" in (third.error or "")
    assert client.end_execution(first.handle) is None
    fourth = client.begin_execution(conn, b'{"has": {"id": "c"}}')
    assert fourth.ok
    assert client.end_execution(second.handle) is None
    assert client.end_execution(fourth.handle) is None


def test_concurrent_executions_on_one_connection(client: Client, conn: int) -> None:
    _put(client, conn, "a", b"1")
    _put(client, conn, "b", b"2")
    first = client.begin_execution(conn, b'{"get": {"id": "a"}}')
    second = client.begin_execution(conn, b'{"get": {"id": "b"}}')
    assert first.handle != second.handle
    assert read_all(client, second.handle).data == b"2"
    assert read_all(client, first.handle).data == b"1"
    assert client.end_execution(first.handle) is None
    assert client.end_execution(second.handle) is None


def test_write_input_twice_is_rejected(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"put": {"id": "obj1"}}')
    assert client.write_input(begun.handle, GREETING) is None
    assert client.write_input(begun.handle, b'"other"') == "input already written"
    assert client.end_execution(begun.handle) is None

    check = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
    assert read_all(client, check.handle).data == GREETING
    assert client.end_execution(check.handle) is None


def test_write_input_after_read_is_rejected(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"put": {"id": "obj1"}}')
    assert client.read_output(begun.handle, bytearray(8), 8).eof
    err = client.write_input(begun.handle, GREETING)
    assert err == "input must be written before the first read"
    assert client.end_execution(begun.handle) == "Invalid value"


def test_write_input_rejected_for_command_without_input(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
    err = client.write_input(begun.handle, b'"x"')
    assert err == "Command 'get' does not accept input"
    read = client.read_output(begun.handle, bytearray(4), 4)
    assert read.error is not None
    assert client.end_execution(begun.handle) == err


def test_write_input_rejects_invalid_value(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"put": {"id": "obj1"}}')
    err = client.write_input(begun.handle, b"not json")
    assert (err or "").startswith("Invalid value")
    assert client.end_execution(begun.handle) == err
    assert client.execution_count() == 0

    check = client.begin_execution(conn, b'{"has": {"id": "obj1"}}')
    assert read_all(client, check.handle).data == b"false"
    assert client.end_execution(check.handle) is None


def test_put_without_input_fails_at_end(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"put": {"id": "obj1"}}')
    assert begun.ok
    assert client.end_execution(begun.handle) == "Invalid value"
    assert client.execution_count() == 0


def test_zero_capacity_read_is_rejected_not_eof(client: Client, conn: int) -> None:
    _put(client, conn, "obj1", GREETING)
    begun = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
    buf = bytearray(64)

    zero = client.read_output(begun.handle, buf, 0)
    assert zero.error is not None
    assert "positive" in zero.error

    res = client.read_output(begun.handle, buf, 64)
    assert res.error is None
    assert bytes(buf[: res.bytes_read]) == GREETING
    assert client.end_execution(begun.handle) is None


def test_read_rejects_buffer_smaller_than_capacity(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"has": {"id": "a"}}')
    res = client.read_output(begun.handle, bytearray(2), 8)
    assert "smaller than capacity" in (res.error or "")
    assert client.read_output(begun.handle, bytearray(8), 8).bytes_read == 5
    assert client.end_execution(begun.handle) is None


def test_read_rejects_readonly_buffer(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"has": {"id": "a"}}')
    res = client.read_output(begun.handle, memoryview(bytes(8)), 8)
    assert res.error == "read buffer must be writable"
    assert client.end_execution(begun.handle) is None


def test_end_twice_returns_invalid_handle(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"has": {"id": "a"}}')
    assert client.end_execution(begun.handle) is None
    second = client.end_execution(begun.handle)
    assert second is not None
    assert "invalid execution handle" in second
    assert client.read_output(begun.handle, bytearray(4), 4).error is not None
    assert client.write_input(begun.handle, b"1") is not None


def test_close_refused_while_executions_live(client: Client, conn: int) -> None:
    begun = client.begin_execution(conn, b'{"has": {"id": "a"}}')
    err = client.close(conn)
    assert err is not None
    assert "active execution" in err
    assert client.end_execution(begun.handle) is None
    assert client.close(conn) is None
    assert client.connection_count() == 0
    assert client.close(conn) is not None


def test_data_survives_reopen(client: Client, conn: int) -> None:
    _put(client, conn, "obj1", GREETING)
    assert client.close(conn) is None
    again = client.open(b"/tmp/foo").handle
    begun = client.begin_execution(again, b'{"get": {"id": "obj1"}}')
    assert read_all(client, begun.handle).data == GREETING
    assert client.end_execution(begun.handle) is None


def test_drop_closes_and_discards_store(client: Client, conn: int) -> None:
    _put(client, conn, "obj1", GREETING)
    assert client.drop(b"/tmp/foo") is None
    assert client.connection_count() == 0
    assert client.begin_execution(conn, b'{"has": {"id": "obj1"}}').error is not None

    again = client.open(b"/tmp/foo").handle
    begun = client.begin_execution(again, b'{"scan": {}}')
    assert read_all(client, begun.handle).data == b"[]"
    assert client.end_execution(begun.handle) is None


def test_drop_store_that_is_not_open(client: Client, conn: int) -> None:
    _put(client, conn, "obj1", GREETING)
    assert client.close(conn) is None
    assert client.drop(b"/tmp/foo") is None
    assert client.drop(b"/tmp/never-opened") is None

    again = client.open(b"/tmp/foo").handle
    begun = client.begin_execution(again, b'{"has": {"id": "obj1"}}')
    assert read_all(client, begun.handle).data == b"false"
    assert client.end_execution(begun.handle) is None


def test_drop_refused_while_executions_live(client: Client, conn: int) -> None:
    _put(client, conn, "obj1", GREETING)
    begun = client.begin_execution(conn, b'{"get": {"id": "obj1"}}')
    err = client.drop(b"/tmp/foo")
    assert err is not None
    assert "active execution" in err
    assert client.connection_count() == 1

    assert read_all(client, begun.handle).data == GREETING
    assert client.end_execution(begun.handle) is None
    assert client.drop(b"/tmp/foo") is None


def test_drop_rejects_empty_spec(client: Client) -> None:
    assert client.drop(b"") == "store spec must be non-empty"


def test_non_bytes_arguments_are_rejected(client: Client, conn: int) -> None:
    opened = client.open(5)  # type: ignore[arg-type]
    assert opened.error == "store spec must be bytes-like, got int"
    assert client.connection_count() == 1

    begun = client.begin_execution(conn, 3)  # type: ignore[arg-type]
    assert begun.error == "command must be bytes-like, got int"
    assert client.execution_count() == 0

    put = client.begin_execution(conn, b'{"put": {"id": "obj1"}}')
    assert client.write_input(put.handle, 7) == "input must be bytes-like, got int"  # type: ignore[arg-type]
    assert client.write_input(put.handle, bytearray(GREETING)) is None
    assert client.end_execution(put.handle) is None


class _PartialThenFailExecution:
    def __init__(self) -> None:
        self._chunks = [b"part", b""]

    def write(self, data: bytes) -> None:
        raise AssertionError("no input expected")

    def read(self, size: int) -> bytes:
        return self._chunks.pop(0)

    def finish(self) -> None:
        raise EngineError("command failed after partial output")


class _OneShotStore:
    def __init__(self, execution: object) -> None:
        self.execution = execution
        self.closed = False

    def begin(self, command: bytes) -> object:
        return self.execution

    def close(self) -> None:
        self.closed = True


class _FakeEngine:
    def __init__(self, execution: object) -> None:
        self.store = _OneShotStore(execution)
        self.specs: list[bytes] = []

    def open_store(self, store_spec: bytes) -> _OneShotStore:
        self.specs.append(store_spec)
        return self.store


def test_deferred_engine_error_surfaces_at_end() -> None:
    engine = _FakeEngine(_PartialThenFailExecution())
    client = Client(engine)  # type: ignore[arg-type]
    conn = client.open(b"opaque:spec").handle
    assert engine.specs == [b"opaque:spec"]

    begun = client.begin_execution(conn, b"anything")
    streamed = read_all(client, begun.handle, chunk_size=16)
    assert streamed.ok
    assert streamed.data == b"part"
    assert client.end_execution(begun.handle) == "command failed after partial output"
    assert client.execution_count() == 0
    assert client.close(conn) is None
    assert engine.store.closed


class _OversizedExecution(_PartialThenFailExecution):
    def read(self, size: int) -> bytes:
        return b"x" * (size + 1)

    def finish(self) -> None:
        return None


def test_engine_returning_too_many_bytes_fails_the_read() -> None:
    client = Client(_FakeEngine(_OversizedExecution()))  # type: ignore[arg-type]
    conn = client.open(b"spec").handle
    begun = client.begin_execution(conn, b"cmd")
    res = client.read_output(begun.handle, bytearray(4), 4)
    assert "engine returned 5 bytes" in (res.error or "")
    assert "failed" in (client.read_output(begun.handle, bytearray(4), 4).error or "")
    assert client.end_execution(begun.handle) is None


class _CrashingExecution(_PartialThenFailExecution):
    def read(self, size: int) -> bytes:
        raise KeyError("boom")


def test_unexpected_engine_exception_becomes_error_string(caplog: pytest.LogCaptureFixture) -> None:
    client = Client(_FakeEngine(_CrashingExecution()))  # type: ignore[arg-type]
    conn = client.open(b"spec").handle
    begun = client.begin_execution(conn, b"cmd")
    res = client.read_output(begun.handle, bytearray(4), 4)
    assert res.error == "engine failure: 'boom'"
    assert "read_output failed with unexpected engine error" in caplog.text
    assert client.end_execution(begun.handle) == "command failed after partial output"


class _BlockingExecution(_PartialThenFailExecution):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def read(self, size: int) -> bytes:
        self.entered.set()
        self.release.wait(timeout=5)
        return b""

    def finish(self) -> None:
        return None


def test_concurrent_use_of_one_execution_is_rejected() -> None:
    execution = _BlockingExecution()
    client = Client(_FakeEngine(execution))  # type: ignore[arg-type]
    conn = client.open(b"spec").handle
    begun = client.begin_execution(conn, b"cmd")

    results: list[object] = []
    reader = threading.Thread(
        target=lambda: results.append(client.read_output(begun.handle, bytearray(4), 4))
    )
    reader.start()
    assert execution.entered.wait(timeout=5)

    assert "busy" in (client.read_output(begun.handle, bytearray(4), 4).error or "")
    assert "busy" in (client.end_execution(begun.handle) or "")
    assert client.execution_count() == 1

    execution.release.set()
    reader.join(timeout=5)
    assert results and getattr(results[0], "eof")
    assert client.end_execution(begun.handle) is None


class _FlakyCloseStore(_OneShotStore):
    def __init__(self) -> None:
        super().__init__(_PartialThenFailExecution())
        self.failures = 1

    def close(self) -> None:
        if self.failures:
            self.failures -= 1
            raise EngineError("store is still flushing")
        super().close()


def test_failed_store_close_leaves_connection_usable() -> None:
    engine = _FakeEngine(_PartialThenFailExecution())
    engine.store = _FlakyCloseStore()
    client = Client(engine)  # type: ignore[arg-type]
    conn = client.open(b"spec").handle

    assert client.close(conn) == "store is still flushing"
    assert client.connection_count() == 1
    begun = client.begin_execution(conn, b"cmd")
    assert begun.ok
    assert client.read_output(begun.handle, bytearray(4), 4).bytes_read == 4
    assert client.end_execution(begun.handle) == "command failed after partial output"

    assert client.close(conn) is None
    assert engine.store.closed
    assert client.open(b"spec").ok


def test_drop_unsupported_by_engine() -> None:
    client = Client(_FakeEngine(_PartialThenFailExecution()))  # type: ignore[arg-type]
    conn = client.open(b"spec").handle
    assert client.drop(b"spec") == "engine does not support dropping stores"
    assert client.connection_count() == 1
    assert client.close(conn) is None
