from __future__ import annotations

import logging
from typing import Any

from .budget import Deadline
from .errors import SwoopExecutionError
from .execution.config import LIFECYCLE_TIMEOUT_MS, MIN_EVAL_TIME_LIMIT_MS, js_source

logger = logging.getLogger(__name__)

LIFECYCLE_STEPS = (
    "loading",
    "interactive",
    "DOMContentLoaded",
    "complete",
    "visibilitychange",
    "pageshow",
    "load",
    "popstate",
    "hashchange",
    "finish",
)


def synthesize_lifecycle(sandbox: Any, timeout_ms: float = LIFECYCLE_TIMEOUT_MS) -> list[str]:
    """Fire the page lifecycle events client frameworks wait on.

    Runs every step even when an earlier one throws or the short lifecycle budget
    runs out, so `document.readyState` always ends at `"complete"` and
    `DOMContentLoaded` and `load` are dispatched exactly once. The budget is
    separate from the call deadline. Returns the names of steps that failed.

    Example:
        ```python
        failed = synthesize_lifecycle(sandbox, timeout_ms=50)
        assert sandbox.evaluate("document.readyState") == "complete"
        ```
    """
    deadline = Deadline.after(timeout_ms)
    if sandbox.evaluate("typeof __swoop_lifecycle", time_limit_ms=timeout_ms) == "undefined":
        sandbox.evaluate(js_source("lifecycle"), time_limit_ms=timeout_ms)
    failed: list[str] = []
    for step in LIFECYCLE_STEPS:
        limit_ms = max(MIN_EVAL_TIME_LIMIT_MS, deadline.remaining_ms())
        try:
            sandbox.call("__swoop_lifecycle.step", step, time_limit_ms=limit_ms)
        except SwoopExecutionError as exc:
            logger.debug("Lifecycle step %s failed: %s", step, exc)
            failed.append(step)
        sandbox.drain_microtasks(time_limit_ms=max(MIN_EVAL_TIME_LIMIT_MS, deadline.remaining_ms()))
    return failed
