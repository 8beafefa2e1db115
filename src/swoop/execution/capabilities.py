from __future__ import annotations

from dataclasses import dataclass

import quickjs

from ..errors import SwoopEnvironmentError


@dataclass(frozen=True, slots=True)
class RuntimeCapabilities:
    """Capability flags advertised by a JavaScript runtime.

    Example:
        ```python
        caps = RuntimeCapabilities(True, True, True, True)
        ```
    """

    supports_isolated_context: bool
    supports_module_evaluation: bool
    supports_host_callables: bool
    supports_memory_limit: bool


def capabilities_for_runtime(runtime: str) -> RuntimeCapabilities:
    """Return capability flags for a runtime name.

    Example:
        ```python
        caps = capabilities_for_runtime("quickjs")
        ```
    """
    if runtime.lower() in {"quickjs", "quickjsengine"}:
        context_type = getattr(quickjs, "Context", None)
        return RuntimeCapabilities(
            supports_isolated_context=context_type is not None,
            supports_module_evaluation=hasattr(context_type, "execute_pending_job"),
            supports_host_callables=hasattr(context_type, "add_callable"),
            supports_memory_limit=hasattr(context_type, "set_memory_limit"),
        )
    return RuntimeCapabilities(False, False, False, False)


def preflight_validate_runtime_capabilities(runtime: str) -> RuntimeCapabilities:
    """Fail fast when a runtime cannot host a sandboxed render.

    Example:
        ```python
        caps = preflight_validate_runtime_capabilities("quickjs")
        ```
    """
    caps = capabilities_for_runtime(runtime)
    if not caps.supports_isolated_context:
        raise SwoopEnvironmentError(
            f"JavaScript runtime '{runtime}' has no isolated-context primitive; cannot execute scripts"
        )
    if not caps.supports_host_callables:
        raise SwoopEnvironmentError(
            f"JavaScript runtime '{runtime}' cannot expose host functions to scripts"
        )
    return caps
