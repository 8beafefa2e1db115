from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .budget import effective_budget_ms
from .execution.types import ConsoleEntry, ScriptError

WAIT_STRATEGIES = frozenset({"timeout", "networkidle"})


def _default_options_path() -> Path:
    """Return bundled default options TOML path.

    Example:
        ```python
        path = _default_options_path()
        ```
    """
    return Path(__file__).with_name("default_options.toml")


def _read_options_toml(path: Path) -> dict[str, Any]:
    """Read an options TOML file and return the `[options]` table.

    Example:
        ```python
        raw = _read_options_toml(Path("/tmp/swoop.toml"))
        ```
    """
    if not path.exists():
        return {
            "execute_scripts": True,
            "timeout": 3000,
            "wait_strategy": "networkidle",
            "idle_time": 250,
            "poll_interval": 25,
            "max_scripts": 64,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    options_obj = raw.get("options", raw)
    if not isinstance(options_obj, dict):
        raise ValueError("Options config must be a TOML table")
    return options_obj


def _non_negative_int(value: Any, field_name: str) -> int:
    """Validate an integer option that must not be negative.

    Example:
        ```python
        idle = _non_negative_int(250, "idle_time")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{field_name}' must be a number")
    if value < 0:
        raise ValueError(f"'{field_name}' must not be negative")
    return int(value)


_DEFAULT_OPTIONS_RAW = _read_options_toml(_default_options_path())
DEFAULT_EXECUTE_SCRIPTS = bool(_DEFAULT_OPTIONS_RAW.get("execute_scripts", True))
DEFAULT_TIMEOUT_MS = int(_DEFAULT_OPTIONS_RAW.get("timeout", 3000))
DEFAULT_WAIT_STRATEGY = str(_DEFAULT_OPTIONS_RAW.get("wait_strategy", "networkidle"))
DEFAULT_IDLE_TIME_MS = int(_DEFAULT_OPTIONS_RAW.get("idle_time", 250))
DEFAULT_POLL_INTERVAL_MS = int(_DEFAULT_OPTIONS_RAW.get("poll_interval", 25))
DEFAULT_MAX_SCRIPTS = int(_DEFAULT_OPTIONS_RAW.get("max_scripts", 64))
DEFAULT_FORWARD_CONSOLE = bool(_DEFAULT_OPTIONS_RAW.get("forward_console", False))
DEFAULT_PERMISSIVE_SHIMS = bool(_DEFAULT_OPTIONS_RAW.get("permissive_shims", True))
DEFAULT_DEBUG_FETCH = bool(_DEFAULT_OPTIONS_RAW.get("debug_fetch", False))
DEFAULT_DEBUG_PROBES = bool(_DEFAULT_OPTIONS_RAW.get("debug_probes", False))
DEFAULT_ENGINE = str(_DEFAULT_OPTIONS_RAW.get("engine", "quickjs"))
DEFAULT_BUDGET_CAP_MS = int(_DEFAULT_OPTIONS_RAW.get("budget_cap", 5000))
DEFAULT_FETCH_TIMEOUT_MS = int(_DEFAULT_OPTIONS_RAW.get("fetch_timeout", 30000))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_OPTIONS_RAW.get("memory_limit_mb", 256))
DEFAULT_PROBE_ROOT_SELECTOR = str(_DEFAULT_OPTIONS_RAW.get("probe_root_selector", "app-root"))
DEFAULT_USER_AGENT = str(_DEFAULT_OPTIONS_RAW.get("user_agent", "Mozilla/5.0 swoop/0.1"))


@dataclass(slots=True)
class RenderOptions:
    """Options controlling one render call.

    Times are milliseconds. `timeout` is the requested call budget; it is clamped to
    `budget_cap` before any work starts.

    Example:
        ```python
        options = RenderOptions(timeout=2000, wait_strategy="timeout", max_scripts=10)
        ```
    """

    execute_scripts: bool = DEFAULT_EXECUTE_SCRIPTS
    timeout: int = DEFAULT_TIMEOUT_MS
    wait_strategy: str = DEFAULT_WAIT_STRATEGY
    idle_time: int = DEFAULT_IDLE_TIME_MS
    poll_interval: int = DEFAULT_POLL_INTERVAL_MS
    max_scripts: int = DEFAULT_MAX_SCRIPTS
    forward_console: bool = DEFAULT_FORWARD_CONSOLE
    permissive_shims: bool = DEFAULT_PERMISSIVE_SHIMS
    debug_fetch: bool = DEFAULT_DEBUG_FETCH
    debug_probes: bool = DEFAULT_DEBUG_PROBES
    engine: str = DEFAULT_ENGINE
    budget_cap: int = DEFAULT_BUDGET_CAP_MS
    fetch_timeout: int = DEFAULT_FETCH_TIMEOUT_MS
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    probe_root_selector: str = DEFAULT_PROBE_ROOT_SELECTOR
    user_agent: str = DEFAULT_USER_AGENT
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate option values after dataclass initialization.

        Example:
            ```python
            RenderOptions(wait_strategy="networkidle")
            ```
        """
        if self.wait_strategy not in WAIT_STRATEGIES:
            raise ValueError("wait_strategy must be 'timeout' or 'networkidle'")
        for name in ("timeout", "idle_time", "max_scripts", "budget_cap", "fetch_timeout"):
            _non_negative_int(getattr(self, name), name)
        if _non_negative_int(self.poll_interval, "poll_interval") == 0:
            raise ValueError("'poll_interval' must be at least 1ms")
        if _non_negative_int(self.memory_limit_mb, "memory_limit_mb") == 0:
            raise ValueError("'memory_limit_mb' must be at least 1")

    @property
    def total_budget_ms(self) -> int:
        """Return the call budget after applying the hard ceiling.

        Example:
            ```python
            assert RenderOptions(timeout=9000, budget_cap=5000).total_budget_ms == 5000
            ```
        """
        return effective_budget_ms(self.timeout, self.budget_cap)

    @classmethod
    def from_file(cls, config_path: str, **overrides: Any) -> "RenderOptions":
        """Create options from a TOML file, with keyword overrides applied last.

        Example:
            ```python
            options = RenderOptions.from_file("/tmp/swoop.toml", debug_fetch=True)
            ```
        """
        raw = _read_options_toml(Path(config_path))
        known = {name for name in cls.__dataclass_fields__ if name != "config_path"}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown option(s) in {config_path}: {', '.join(unknown)}")
        values: dict[str, Any] = {name: raw[name] for name in known if name in raw}
        values.update(overrides)
        return cls(**values, config_path=config_path)


@dataclass(slots=True)
class Timing:
    """Wall-clock timing of one render call in epoch milliseconds.

    Example:
        ```python
        timing = Timing(start=1_700_000_000_000, end=1_700_000_000_420, duration=420)
        ```
    """

    start: int
    end: int
    duration: int


@dataclass(slots=True)
class RenderResult:
    """Caller-facing result returned by `render` and `render_html`.

    Example:
        ```python
        result = RenderResult(url="https://example.com/", html="<html></html>")
        ```
    """

    url: str
    html: str
    console: list[ConsoleEntry] = field(default_factory=list)
    errors: list[ScriptError] = field(default_factory=list)
    timing: Timing | None = None
