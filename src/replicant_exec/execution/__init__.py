from .engine import DroppableStoreEngine, EngineExecution, Store, StoreEngine
from .state import Execution, ExecutionState
from .types import BeginResult, CommandResult, OpenResult, ReadResult, StreamResult

__all__ = [
    "BeginResult",
    "CommandResult",
    "DroppableStoreEngine",
    "EngineExecution",
    "Execution",
    "ExecutionState",
    "OpenResult",
    "ReadResult",
    "Store",
    "StoreEngine",
    "StreamResult",
]
