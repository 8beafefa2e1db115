from __future__ import annotations

import json
import logging
from typing import Any, Callable

import quickjs

from ..budget import Deadline
from ..errors import SwoopEnvironmentError, SwoopExecutionError
from ..execution.config import HOST_NAMESPACE, MAX_MICROTASKS_PER_DRAIN, MIN_EVAL_TIME_LIMIT_MS, js_source
from .guard import guard_loops

logger = logging.getLogger(__name__)

_PRIMITIVES = (str, int, float, bool, type(None))


class CapabilityRegistry:
    """Ordered set of global capability names with insert-if-absent semantics.

    Earlier installers `claim` the names they define; later fallback installers
    `provide` a name only when nobody claimed it first.

    Example:
        ```python
        registry = CapabilityRegistry()
        registry.claim("localStorage")
        assert registry.provide("localStorage", lambda: True) is False
        ```
    """

    def __init__(self) -> None:
        self._names: dict[str, str] = {}

    def claim(self, *names: str, owner: str = "shim") -> None:
        for name in names:
            self._names.setdefault(name, owner)

    def has(self, name: str) -> bool:
        return name in self._names

    def owner(self, name: str) -> str | None:
        return self._names.get(name)

    def provide(self, name: str, install: Callable[[], Any], *, owner: str = "fallback") -> bool:
        """Run `install` only if `name` is not present yet; return whether it ran.

        `install` may return False to signal that the sandbox already had the
        capability natively, in which case the name is still recorded.

        Example:
            ```python
            registry.provide("scrollTo", lambda: sandbox.call("__swoop_permissive.fill", "scrollTo"))
            ```
        """
        if name in self._names:
            return False
        installed = install()
        self._names[name] = owner if installed is not False else "native"
        return installed is not False

    def names(self) -> list[str]:
        return list(self._names)


class Sandbox:
    """One isolated QuickJS context plus the host functions exposed into it.

    Every entry into JavaScript carries a deadline, derived from the call deadline
    unless given explicitly, and is followed by an explicit microtask drain. Page
    code goes through `evaluate_script`, which guards its loops so a runaway script
    throws once the entry deadline passes. Host functions must never re-enter the
    sandbox; they only mutate Python state or schedule work on the event loop.

    Example:
        ```python
        sandbox = Sandbox(deadline=Deadline.after(3000))
        sandbox.expose("now", lambda: 1.0)
        assert sandbox.evaluate("__swoop_host.now() + 1") == 2.0
        sandbox.close()
        ```
    """

    def __init__(
        self,
        *,
        deadline: Deadline,
        memory_limit_mb: int = 256,
        on_microtasks: Callable[[int], None] | None = None,
    ) -> None:
        try:
            self._ctx = quickjs.Context()
        except Exception as exc:  # noqa: BLE001 - any failure means no usable context
            raise SwoopEnvironmentError(f"Unable to create an isolated JavaScript context: {exc}") from exc
        self._ctx.set_memory_limit(int(memory_limit_mb) * 1024 * 1024)
        # QuickJS refuses calls into Python while a time limit is set.
        self._ctx.set_time_limit(-1)
        self.deadline = deadline
        self._entry = deadline
        self.capabilities = CapabilityRegistry()
        self._on_microtasks = on_microtasks
        self._closed = False
        self._ctx.eval(
            f"Object.defineProperty(globalThis, '{HOST_NAMESPACE}', "
            "{value: Object.create(null), enumerable: false, configurable: false, writable: false});"
        )
        self.expose("guard_expired", lambda: self._entry.expired)
        self.expose("guard_loops", guard_loops)
        self._ctx.eval(js_source("guard"))

    @property
    def closed(self) -> bool:
        return self._closed

    def expose(self, name: str, fn: Callable[..., Any]) -> None:
        """Expose a Python callable as `__swoop_host.<name>` inside the sandbox.

        Arguments arrive as JavaScript primitives; the return value must be a
        primitive or JSON-serializable. Exceptions are logged and turned into `null`.

        Example:
            ```python
            sandbox.expose("cookie_read", jar.read)
            ```
        """
        global_name = f"__swoop_host_{name}"
        self._ctx.add_callable(global_name, _guard_host_function(name, fn))
        self._ctx.eval(
            f"{HOST_NAMESPACE}[{json.dumps(name)}] = globalThis[{json.dumps(global_name)}];"
            f"delete globalThis[{json.dumps(global_name)}];"
        )

    def evaluate(self, code: str, *, time_limit_ms: float | None = None) -> Any:
        """Evaluate global code, returning the converted result.

        Raises `SwoopExecutionError` when the code throws. `time_limit_ms` sets the
        entry deadline that guarded loops check; it defaults to the call deadline.

        Example:
            ```python
            value = sandbox.evaluate("1 + 1")
            ```
        """
        if self._closed:
            raise SwoopExecutionError("Sandbox is closed")
        self._enter(time_limit_ms)
        try:
            return self._ctx.eval(code)
        except quickjs.JSException as exc:
            raise SwoopExecutionError.from_js(exc) from exc

    def evaluate_script(self, source: str, *, time_limit_ms: float | None = None) -> Any:
        """Evaluate page code with its loops guarded against the entry deadline.

        Falls back to the unguarded source when the rewrite does not parse, so a
        scanner miss costs interruptibility, never the script.

        Example:
            ```python
            sandbox.evaluate_script("for (var i = 0; i < 3; i++) { total += i; }")
            ```
        """
        guarded = guard_loops(source)
        if guarded == source:
            return self.evaluate(source, time_limit_ms=time_limit_ms)
        try:
            return self.evaluate(guarded, time_limit_ms=time_limit_ms)
        except SwoopExecutionError as exc:
            if not exc.message.startswith("SyntaxError") or self.call("__swoop_guard.parses", guarded):
                raise
        logger.debug("Loop guard rewrite did not parse; running the script unguarded")
        return self.evaluate(source, time_limit_ms=time_limit_ms)

    def call(self, path: str, *args: Any, time_limit_ms: float | None = None) -> Any:
        """Call the sandbox function at dotted `path` with JSON-encodable arguments.

        Example:
            ```python
            sandbox.call("__swoop_timers.fire", 3)
            ```
        """
        rendered = ", ".join(json.dumps(arg) for arg in args)
        return self.evaluate(f"{path}({rendered})", time_limit_ms=time_limit_ms)

    def call_json(self, path: str, *args: Any, time_limit_ms: float | None = None) -> Any:
        """Call a sandbox function that returns a JSON string and decode it.

        Example:
            ```python
            status = sandbox.call_json("__swoop_modules.status", url)
            ```
        """
        raw = self.call(path, *args, time_limit_ms=time_limit_ms)
        if raw is None:
            return None
        return json.loads(raw)

    def run_callback(self, path: str, *args: Any) -> bool:
        """Enter the sandbox from a host loop callback, then drain microtasks.

        Used by timers, fetch completions and script loads. Never raises; a closed
        sandbox turns the call into a no-op and returns False.

        Example:
            ```python
            sandbox.run_callback("__swoop_fetch.reject", 7, "AbortError", "The operation was aborted.")
            ```
        """
        if self._closed:
            return False
        try:
            self.call(path, *args)
        except SwoopExecutionError as exc:
            logger.debug("Sandbox callback %s failed: %s", path, exc)
            return False
        finally:
            if not self._closed:
                self.drain_microtasks()
        return True

    def drain_microtasks(self, *, time_limit_ms: float | None = None) -> int:
        """Run pending promise jobs until the queue is empty; return how many ran.

        Example:
            ```python
            ran = sandbox.drain_microtasks()
            ```
        """
        if self._closed:
            return 0
        self._enter(time_limit_ms)
        ran = 0
        while ran < MAX_MICROTASKS_PER_DRAIN and not self._entry.expired:
            try:
                if not self._ctx.execute_pending_job():
                    break
            except quickjs.JSException as exc:
                logger.debug("Microtask raised: %s", exc)
            ran += 1
        if ran and self._on_microtasks is not None:
            self._on_microtasks(ran)
        return ran

    def _enter(self, time_limit_ms: float | None) -> None:
        if time_limit_ms is None:
            self._entry = self.deadline
        else:
            self._entry = Deadline.after(max(MIN_EVAL_TIME_LIMIT_MS, time_limit_ms))

    def close(self) -> None:
        """Mark the sandbox unusable and release the context.

        Example:
            ```python
            sandbox.close()
            ```
        """
        if self._closed:
            return
        self._closed = True
        self._ctx = None


def _guard_host_function(name: str, fn: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap a host function so it never raises into the sandbox.

    Example:
        ```python
        guarded = _guard_host_function("now", time.time)
        ```
    """

    def _host_function(*args: Any) -> Any:
        try:
            result = fn(*args)
        except Exception:  # noqa: BLE001 - shims are best-effort
            logger.debug("Host function %s failed", name, exc_info=True)
            return None
        if isinstance(result, _PRIMITIVES):
            return result
        return json.dumps(result, default=str)

    return _host_function
