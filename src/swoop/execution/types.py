from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ..fetching import HostFetch
    from ..options import RenderOptions

ScriptKind = Literal["inline", "external", "module"]
ErrorStage = Literal["bootstrap", "script", "wait"]
ConsoleLevel = Literal["debug", "info", "warn", "error", "log"]


@dataclass(frozen=True, slots=True)
class ScriptDescriptor:
    """One script discovered in the page, in document order.

    `order` is the index of the `<script>` element among all script elements of the
    document. External and module scripts without `source` are fetched lazily.

    Example:
        ```python
        desc = ScriptDescriptor(kind="external", order=0, url="https://example.com/app.js")
        ```
    """

    kind: ScriptKind
    order: int
    source: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        if self.source is None and self.url is None:
            raise ValueError("ScriptDescriptor needs either 'source' or 'url'")
        if self.kind == "inline" and self.source is None:
            raise ValueError("inline scripts must carry their source")


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Immutable input to one engine invocation.

    `deadline` is an absolute value on the monotonic millisecond clock
    (`swoop.budget.monotonic_ms`).

    Example:
        ```python
        req = ExecutionRequest(
            final_url="https://example.com/",
            html="<html><body></body></html>",
            scripts=[],
            options=RenderOptions(),
            total_budget_ms=3000,
            deadline=monotonic_ms() + 3000,
            host_fetch=HttpxHostFetch(),
        )
        ```
    """

    final_url: str
    html: str
    scripts: list[ScriptDescriptor]
    options: RenderOptions
    total_budget_ms: int
    deadline: float
    host_fetch: HostFetch


@dataclass(slots=True)
class ConsoleEntry:
    """One captured sandbox console call.

    Example:
        ```python
        entry = ConsoleEntry(level="log", message="hello 1", args=["hello", "1"], time=1_700_000_000_000)
        ```
    """

    level: ConsoleLevel
    message: str
    args: list[str] = field(default_factory=list)
    time: int = 0


@dataclass(slots=True)
class ScriptError:
    """A recovered failure recorded during one call.

    Example:
        ```python
        err = ScriptError(stage="script", message="ReferenceError: x is not defined")
        ```
    """

    stage: ErrorStage
    message: str
    script_url: str | None = None
    stack: str | None = None


@dataclass(frozen=True, slots=True)
class WaitResult:
    """Outcome of the settle wait.

    Example:
        ```python
        result = WaitResult(timed_out=False)
        ```
    """

    timed_out: bool


@dataclass(slots=True)
class ExecutionResult:
    """Normalized result returned by an execution engine.

    Example:
        ```python
        out = ExecutionResult(snapshot="<html></html>", console_entries=[], engine_errors=[])
        ```
    """

    snapshot: str
    console_entries: list[ConsoleEntry] = field(default_factory=list)
    engine_errors: list[ScriptError] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-ready view of the result.

        Example:
            ```python
            payload = result.as_dict()
            ```
        """
        return {
            "snapshot": self.snapshot,
            "console_entries": [
                {"level": e.level, "message": e.message, "args": list(e.args), "time": e.time}
                for e in self.console_entries
            ],
            "engine_errors": [
                {"stage": e.stage, "message": e.message, "script_url": e.script_url, "stack": e.stack}
                for e in self.engine_errors
            ],
        }
