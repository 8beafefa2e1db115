from __future__ import annotations

import logging
from typing import Any

from ..execution.config import js_source

logger = logging.getLogger(__name__)

PERMISSIVE_FILLS = (
    "localStorage",
    "sessionStorage",
    "scrollTo",
    "scrollBy",
    "scroll",
    "getBoundingClientRect",
    "getClientRects",
    "scrollIntoView",
    "focus",
    "blur",
    "process",
    "customElements",
    "Blob",
    "FormData",
    "MessageChannel",
    "XMLHttpRequest",
)


def install_permissive(sandbox: Any) -> list[str]:
    """Fill commonly missing APIs, only where no earlier shim or the runtime provides them.

    Returns the names that were actually filled.

    Example:
        ```python
        filled = install_permissive(sandbox)
        assert "localStorage" not in filled
        ```
    """
    sandbox.evaluate(js_source("permissive"))
    filled = [
        name
        for name in PERMISSIVE_FILLS
        if sandbox.capabilities.provide(
            name,
            lambda name=name: sandbox.call("__swoop_permissive.fill", name),
            owner="permissive",
        )
    ]
    logger.debug("Permissive fallback filled: %s", ", ".join(filled) or "nothing")
    return filled
