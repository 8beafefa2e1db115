from __future__ import annotations

from pathlib import Path

LIFECYCLE_TIMEOUT_MS = 50
MIN_INTERVAL_MS = 4
MIN_EVAL_TIME_LIMIT_MS = 1
MAX_MICROTASKS_PER_DRAIN = 10_000
MODULE_SETTLE_POLL_MS = 5
RENDER_GRACE_MS = 250
PROBE_SAMPLE_DELAYS_MS = (250, 1000, 2500, 4500)
PROBE_TOP_DOM_OPS = 15
PROBE_TOP_LISTENERS = 20
HOST_NAMESPACE = "__swoop_host"

CLASSIC_SCRIPT_TYPES = frozenset(
    {
        "",
        "text/javascript",
        "application/javascript",
        "application/ecmascript",
        "text/ecmascript",
        "application/x-javascript",
        "text/jscript",
    }
)
MODULE_SCRIPT_TYPE = "module"

_JS_DIR = Path(__file__).resolve().parents[1] / "js"


def js_source(name: str) -> str:
    """Return the bundled sandbox JavaScript source for `name`.

    Example:
        ```python
        code = js_source("timers")
        ```
    """
    path = _JS_DIR / f"{name}.js"
    if not path.exists():
        raise FileNotFoundError(f"Missing bundled sandbox script: {path.name}")
    return path.read_text(encoding="utf-8")


def script_kind_for_type(type_attr: str | None) -> str | None:
    """Map a `<script type>` value to a script kind, or None if not executable.

    Example:
        ```python
        assert script_kind_for_type("module") == "module"
        assert script_kind_for_type("application/json") is None
        ```
    """
    normalized = (type_attr or "").split(";", 1)[0].strip().lower()
    if normalized == MODULE_SCRIPT_TYPE:
        return "module"
    if normalized in CLASSIC_SCRIPT_TYPES:
        return "classic"
    return None
