from .client import Client
from .execution.file_engine import FileEngine
from .execution.memory_engine import MemoryEngine
from .execution.types import BeginResult, CommandResult, OpenResult, ReadResult, StreamResult
from .reader import OutputBuffer, read_all
from .runner import run_command
from .settings import ClientSettings

__all__ = [
    "BeginResult",
    "Client",
    "ClientSettings",
    "CommandResult",
    "FileEngine",
    "MemoryEngine",
    "OpenResult",
    "OutputBuffer",
    "ReadResult",
    "StreamResult",
    "read_all",
    "run_command",
]
