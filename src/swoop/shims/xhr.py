from __future__ import annotations

from typing import Any

from ..execution.config import js_source


def install_xhr(sandbox: Any) -> None:
    """Define `XMLHttpRequest` on top of the sandbox `fetch`.

    Requires the fetch and timer shims: requests go through `fetch`, and
    `xhr.timeout` is armed with `setTimeout` for `min(timeout, remaining budget)`.

    Example:
        ```python
        install_xhr(sandbox)
        ```
    """
    for dependency in ("fetch", "setTimeout"):
        if not sandbox.capabilities.has(dependency):
            raise RuntimeError(f"XMLHttpRequest needs '{dependency}' installed first")
    sandbox.evaluate(js_source("xhr"))
    sandbox.capabilities.claim("XMLHttpRequest", owner="xhr")
