from __future__ import annotations


class ReplicantError(RuntimeError):
    """Base class for failures reported through the error channel.

    Example:
        ```python
        raise ReplicantError("something went wrong")
        ```
    """


class InvalidHandleError(ReplicantError):
    """Raised when a handle does not exist or was already finalized/closed."""


class ResourceError(ReplicantError):
    """Raised when a store cannot be opened or a limit is exhausted."""


class MalformedInputError(ReplicantError):
    """Raised when the engine rejects a command or input payload."""


class EngineError(ReplicantError):
    """Raised when a command fails inside the engine."""


class SequenceError(ReplicantError):
    """Raised when the write/read/end sub-protocol is driven out of order."""
