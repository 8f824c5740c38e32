from __future__ import annotations

import base64
import binascii
import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path

from ..errors import EngineError, ResourceError
from .store import CommandStore, validate_max_read_bytes

logger = logging.getLogger(__name__)

_TEMP_PREFIX = ".tmp-"


def _decode_spec(store_spec: bytes) -> str:
    """Decode a store spec into a path string, rejecting empty or non-UTF-8 specs.

    Example:
        ```python
        _decode_spec(b"/tmp/foo")  # "/tmp/foo"
        ```
    """
    try:
        raw = bytes(store_spec).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ResourceError(f"invalid store spec: {exc}") from exc
    if not raw.strip():
        raise ResourceError("store spec must be non-empty")
    return raw


def object_filename(object_id: str) -> str:
    """Return the on-disk file name for an object id (unpadded base64url).

    Example:
        ```python
        object_filename("obj1")  # "b2JqMQ"
        ```
    """
    return base64.urlsafe_b64encode(object_id.encode("utf-8")).decode("ascii").rstrip("=")


def object_id_from_filename(name: str) -> str | None:
    """Decode a file name back into an object id, or None for foreign files.

    Example:
        ```python
        object_id_from_filename("b2JqMQ")  # "obj1"
        ```
    """
    if name.startswith("."):
        return None
    padded = name + "=" * (-len(name) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        object_id = raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None
    if not object_id or object_filename(object_id) != name:
        return None
    return object_id


class _DirectoryStorage:
    """ObjectStorage keeping one file per object inside a directory.

    Example:
        ```python
        storage = _DirectoryStorage(Path("/tmp/foo"))
        ```
    """

    def __init__(self, root: Path) -> None:
        """Bind the storage to an existing directory.

        Example:
            ```python
            storage = _DirectoryStorage(Path("/tmp/foo"))
            ```
        """
        self._root = root

    def load(self, object_id: str) -> bytes | None:
        """Read an object's bytes, or None when no file exists.

        Example:
            ```python
            raw = storage.load("obj1")
            ```
        """
        path = self._root / object_filename(object_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise EngineError(f"could not read '{object_id}': {exc}") from exc

    def save(self, object_id: str, value: bytes) -> None:
        """Write an object atomically through a temp file and rename.

        Example:
            ```python
            storage.save("obj1", b'"Hello"')
            ```
        """
        target = self._root / object_filename(object_id)
        temp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=self._root, prefix=_TEMP_PREFIX, delete=False
            ) as handle:
                temp_name = handle.name
                handle.write(value)
            os.replace(temp_name, target)
        except OSError as exc:
            if temp_name is not None:
                Path(temp_name).unlink(missing_ok=True)
            raise EngineError(f"could not write '{object_id}': {exc}") from exc

    def delete(self, object_id: str) -> bool:
        """Remove an object's file and report whether it existed.

        Example:
            ```python
            storage.delete("obj1")
            ```
        """
        try:
            (self._root / object_filename(object_id)).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise EngineError(f"could not delete '{object_id}': {exc}") from exc
        return True

    def ids(self) -> list[str]:
        """List stored ids in ascending order, skipping unrelated entries.

        Example:
            ```python
            storage.ids()
            ```
        """
        ids: list[str] = []
        for entry in self._root.iterdir():
            if not entry.is_file():
                continue
            object_id = object_id_from_filename(entry.name)
            if object_id is not None:
                ids.append(object_id)
        return sorted(ids)


class FileEngine:
    """Persist each store as a directory of object files.

    The store spec is a filesystem path; the directory is created on open.

    Example:
        ```python
        engine = FileEngine()
        store = engine.open_store(b"/tmp/foo")
        ```
    """

    def __init__(self, *, max_read_bytes: int | None = None) -> None:
        """Create an engine; `max_read_bytes` caps the bytes any read returns.

        Example:
            ```python
            engine = FileEngine(max_read_bytes=512)
            ```
        """
        self._max_read_bytes = validate_max_read_bytes(max_read_bytes)
        self._lock = threading.Lock()
        self._path_locks: dict[Path, threading.Lock] = {}

    def open_store(self, store_spec: bytes) -> CommandStore:
        """Open the directory named by `store_spec`, creating it if needed.

        Example:
            ```python
            store = engine.open_store(b"/tmp/foo")
            ```
        """
        raw = _decode_spec(store_spec)
        root = Path(raw).expanduser()
        try:
            root.mkdir(parents=True, exist_ok=True)
            root = root.resolve()
        except OSError as exc:
            raise ResourceError(f"could not open store at '{raw}': {exc}") from exc
        if not root.is_dir():
            raise ResourceError(f"store path is not a directory: {root}")
        logger.debug("Opening file store at %s", root)
        with self._lock:
            lock = self._path_locks.setdefault(root, threading.Lock())
        return CommandStore(_DirectoryStorage(root), lock, max_read_bytes=self._max_read_bytes)

    def drop_store(self, store_spec: bytes) -> None:
        """Delete the directory named by `store_spec` with everything in it.

        A missing directory is not an error.

        Example:
            ```python
            engine.drop_store(b"/tmp/foo")
            ```
        """
        raw = _decode_spec(store_spec)
        root = Path(raw).expanduser().resolve()
        if not root.exists():
            return
        if not root.is_dir():
            raise ResourceError(f"store path is not a directory: {root}")
        try:
            shutil.rmtree(root)
        except OSError as exc:
            raise EngineError(f"could not drop store at '{raw}': {exc}") from exc
        logger.debug("Dropped file store at %s", root)
