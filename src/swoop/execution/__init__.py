from .engine import ExecutionEngine
from .types import ConsoleEntry, ExecutionRequest, ExecutionResult, ScriptDescriptor, ScriptError

__all__ = [
    "ConsoleEntry",
    "ExecutionEngine",
    "ExecutionRequest",
    "ExecutionResult",
    "ScriptDescriptor",
    "ScriptError",
]
