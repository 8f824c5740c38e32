from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from ..errors import EngineError, MalformedInputError

VERBS = ("put", "has", "get", "del", "scan")
DEFAULT_SCAN_LIMIT = 50
_CONFLICTING_START = (
    "Only one of the startAtID, startAfterID, startAtIndex, startAfterIndex, "
    "and prefix fields may be present"
)


class ObjectStorage(Protocol):
    def load(self, object_id: str) -> bytes | None:
        """Return the stored bytes for an id, or None when absent.

        Example:
            ```python
            raw = storage.load("obj1")
            ```
        """
        ...

    def save(self, object_id: str, value: bytes) -> None:
        """Store `value` under `object_id`, replacing any previous value.

        Example:
            ```python
            storage.save("obj1", b'"Hello"')
            ```
        """
        ...

    def delete(self, object_id: str) -> bool:
        """Remove an id and report whether it existed.

        Example:
            ```python
            existed = storage.delete("obj1")
            ```
        """
        ...

    def ids(self) -> list[str]:
        """Return every stored id in ascending order.

        Example:
            ```python
            all_ids = storage.ids()
            ```
        """
        ...


@dataclass(frozen=True, slots=True)
class ScanOptions:
    """Range selection for the `scan` command.

    Example:
        ```python
        opts = ScanOptions(prefix="todo/", limit=10)
        ```
    """

    prefix: str = ""
    start_at_id: str = ""
    start_after_id: str = ""
    start_at_index: int = 0
    start_after_index: int = 0
    limit: int = 0


@dataclass(frozen=True, slots=True)
class Command:
    """A parsed store command.

    Example:
        ```python
        cmd = Command(verb="get", object_id="obj1")
        ```
    """

    verb: str
    object_id: str = ""
    scan: ScanOptions | None = None

    @property
    def accepts_input(self) -> bool:
        """Return whether the command takes an input payload.

        Example:
            ```python
            assert Command(verb="put", object_id="a").accepts_input
            ```
        """
        return self.verb == "put"


def _str_field(params: dict[str, Any], key: str) -> str:
    """Read an optional string field from command parameters.

    Example:
        ```python
        prefix = _str_field({"prefix": "a"}, "prefix")
        ```
    """
    value = params.get(key, "")
    if not isinstance(value, str):
        raise MalformedInputError(f"'{key}' must be a string")
    return value


def _int_field(params: dict[str, Any], key: str) -> int:
    """Read an optional non-negative integer field from command parameters.

    Example:
        ```python
        limit = _int_field({"limit": 5}, "limit")
        ```
    """
    value = params.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedInputError(f"'{key}' must be a non-negative integer")
    return value


def parse_scan_options(params: dict[str, Any]) -> ScanOptions:
    """Validate scan parameters and reject conflicting start constraints.

    Example:
        ```python
        opts = parse_scan_options({"startAfterID": "a", "limit": 2})
        ```
    """
    opts = ScanOptions(
        prefix=_str_field(params, "prefix"),
        start_at_id=_str_field(params, "startAtID"),
        start_after_id=_str_field(params, "startAfterID"),
        start_at_index=_int_field(params, "startAtIndex"),
        start_after_index=_int_field(params, "startAfterIndex"),
        limit=_int_field(params, "limit"),
    )
    starts = [
        opts.prefix,
        opts.start_at_id,
        opts.start_after_id,
        opts.start_at_index,
        opts.start_after_index,
    ]
    if sum(1 for start in starts if start) > 1:
        raise MalformedInputError(_CONFLICTING_START)
    return opts


def parse_command(command: bytes) -> Command:
    """Parse a JSON command payload such as `{"get": {"id": "obj1"}}`.

    Example:
        ```python
        cmd = parse_command(b'{"put": {"id": "obj1"}}')
        ```
    """
    try:
        raw = json.loads(bytes(command).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedInputError(f"Malformed command: {exc}") from exc
    if not isinstance(raw, dict) or len(raw) != 1:
        raise MalformedInputError("Command must be an object with exactly one verb")
    verb, params = next(iter(raw.items()))
    if verb not in VERBS:
        raise MalformedInputError(f"Unknown command: {verb}")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise MalformedInputError(f"Parameters for '{verb}' must be an object")
    if verb == "scan":
        return Command(verb=verb, scan=parse_scan_options(params))
    object_id = params.get("id")
    if not isinstance(object_id, str) or not object_id:
        raise MalformedInputError("Invalid id")
    return Command(verb=verb, object_id=object_id)


def validate_value(data: bytes) -> bytes:
    """Check that an input payload is a non-null JSON value and return it unchanged.

    Example:
        ```python
        raw = validate_value(b'"Hello, from Replicant!"')
        ```
    """
    try:
        parsed = json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedInputError(f"Invalid value: {exc}") from exc
    if parsed is None:
        raise MalformedInputError("Invalid value")
    return bytes(data)


def scan(storage: ObjectStorage, opts: ScanOptions) -> list[dict[str, Any]]:
    """Return `{"id", "value"}` items selected by `opts` in id order.

    Example:
        ```python
        items = scan(storage, ScanOptions(prefix="a"))
        ```
    """
    ids = storage.ids()
    if opts.start_at_id or opts.prefix:
        start = opts.start_at_id or opts.prefix
        ids = [object_id for object_id in ids if object_id >= start]
    elif opts.start_after_id:
        ids = [object_id for object_id in ids if object_id > opts.start_after_id]
    elif opts.start_at_index:
        ids = ids[opts.start_at_index :]
    elif opts.start_after_index:
        ids = ids[opts.start_after_index + 1 :]

    limit = opts.limit or DEFAULT_SCAN_LIMIT
    items: list[dict[str, Any]] = []
    for object_id in ids:
        if opts.prefix and not object_id.startswith(opts.prefix):
            break
        raw = storage.load(object_id)
        if raw is None:
            continue
        items.append({"id": object_id, "value": json.loads(raw.decode("utf-8"))})
        if len(items) == limit:
            break
    return items


def run_command(command: Command, storage: ObjectStorage, input_data: bytes | None) -> bytes:
    """Apply a parsed command to storage and return its complete output.

    Example:
        ```python
        out = run_command(Command(verb="get", object_id="obj1"), storage, None)
        ```
    """
    if command.verb == "put":
        if input_data is None:
            raise EngineError("Invalid value")
        storage.save(command.object_id, input_data)
        return b""
    if command.verb == "get":
        return storage.load(command.object_id) or b""
    if command.verb == "has":
        return b"true" if storage.load(command.object_id) is not None else b"false"
    if command.verb == "del":
        return b"true" if storage.delete(command.object_id) else b"false"
    if command.verb == "scan" and command.scan is not None:
        items = scan(storage, command.scan)
        return json.dumps(items, separators=(",", ":")).encode("utf-8")
    raise EngineError(f"Unknown command: {command.verb}")
