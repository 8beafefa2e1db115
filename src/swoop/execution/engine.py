from __future__ import annotations

from typing import Protocol

from .types import ExecutionRequest, ExecutionResult


class ExecutionEngine(Protocol):
    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request and return the snapshot, console entries and errors.

        Example:
            ```python
            result = engine.execute(request)
            ```
        """
        ...

    async def execute_async(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request on the running event loop.

        Example:
            ```python
            result = await engine.execute_async(request)
            ```
        """
        ...
