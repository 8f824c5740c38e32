from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any


def _default_settings_path() -> Path:
    """Return bundled default settings TOML path.

    Example:
        ```python
        path = _default_settings_path()
        ```
    """
    return Path(__file__).with_name("default_settings.toml")


def _read_settings_toml(path: Path) -> dict[str, Any]:
    """Read settings TOML and return the normalized `[client]` table.

    Example:
        ```python
        raw = _read_settings_toml(Path("/tmp/replicant.toml"))
        ```
    """
    if not path.exists():
        return {
            "max_connections": 64,
            "max_executions_per_connection": 16,
            "default_chunk_size": 1024,
            "initial_buffer_capacity": 1024,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    client_obj = raw.get("client", raw)
    if not isinstance(client_obj, dict):
        raise ValueError("Client settings must be a TOML table")
    return client_obj


def _positive_int(value: Any, field_name: str) -> int:
    """Validate a positive integer settings field.

    Example:
        ```python
        size = _positive_int(1024, "default_chunk_size")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{field_name}' must be an integer")
    if value < 1:
        raise ValueError(f"'{field_name}' must be positive")
    return value


_DEFAULT_SETTINGS_RAW = _read_settings_toml(_default_settings_path())
DEFAULT_MAX_CONNECTIONS = int(_DEFAULT_SETTINGS_RAW.get("max_connections", 64))
DEFAULT_MAX_EXECUTIONS_PER_CONNECTION = int(
    _DEFAULT_SETTINGS_RAW.get("max_executions_per_connection", 16)
)
DEFAULT_CHUNK_SIZE = int(_DEFAULT_SETTINGS_RAW.get("default_chunk_size", 1024))
DEFAULT_INITIAL_BUFFER_CAPACITY = int(
    _DEFAULT_SETTINGS_RAW.get("initial_buffer_capacity", 1024)
)


@dataclass(slots=True)
class ClientSettings:
    """Limits and read defaults handed to a `Client` at construction.

    Example:
        ```python
        settings = ClientSettings(max_executions_per_connection=2, default_chunk_size=4)
        ```
    """

    max_connections: int = DEFAULT_MAX_CONNECTIONS
    max_executions_per_connection: int = DEFAULT_MAX_EXECUTIONS_PER_CONNECTION
    default_chunk_size: int = DEFAULT_CHUNK_SIZE
    initial_buffer_capacity: int = DEFAULT_INITIAL_BUFFER_CAPACITY
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            ClientSettings(default_chunk_size=0)  # raises ValueError
            ```
        """
        _positive_int(self.max_connections, "max_connections")
        _positive_int(self.max_executions_per_connection, "max_executions_per_connection")
        _positive_int(self.default_chunk_size, "default_chunk_size")
        _positive_int(self.initial_buffer_capacity, "initial_buffer_capacity")

    @classmethod
    def from_file(cls, config_path: str) -> "ClientSettings":
        """Create a settings instance from a TOML file.

        Example:
            ```python
            settings = ClientSettings.from_file("/tmp/replicant.toml")
            ```
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {config_path}")
        raw = _read_settings_toml(path)
        return cls(
            max_connections=raw.get("max_connections", DEFAULT_MAX_CONNECTIONS),
            max_executions_per_connection=raw.get(
                "max_executions_per_connection", DEFAULT_MAX_EXECUTIONS_PER_CONNECTION
            ),
            default_chunk_size=raw.get("default_chunk_size", DEFAULT_CHUNK_SIZE),
            initial_buffer_capacity=raw.get(
                "initial_buffer_capacity", DEFAULT_INITIAL_BUFFER_CAPACITY
            ),
            config_path=config_path,
        )
