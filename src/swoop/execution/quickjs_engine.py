from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from ..budget import Deadline, monotonic_ms
from ..console import ConsoleCapture, install_console
from ..dom import DomBridge
from ..errors import SwoopEnvironmentError, SwoopError, SwoopExecutionError
from ..fetching import fetch_text
from ..lifecycle import synthesize_lifecycle
from ..modules import ModuleLoader
from ..sandbox.activity import ActivityTracker
from ..sandbox.context import Sandbox
from ..sandbox.metrics import Metrics, NullMetrics
from ..scripts import ScriptLoader, run_classic_script
from ..shims.base_url import BaseUrl, install_base_url
from ..shims.cookies import CookieJar, install_cookies
from ..shims.environment import install_environment
from ..shims.fetch import FetchBridge
from ..shims.navigation import NavigationState
from ..shims.permissive import install_permissive
from ..shims.probes import emit_probe_summary, install_probes
from ..shims.storage import StorageShim
from ..shims.timers import TimerShim
from ..shims.xhr import install_xhr
from ..wait import wait_for_settle
from .capabilities import RuntimeCapabilities, preflight_validate_runtime_capabilities
from .config import LIFECYCLE_TIMEOUT_MS
from .types import ExecutionRequest, ExecutionResult, ScriptDescriptor, ScriptError

logger = logging.getLogger(__name__)


def _scripts_exceeded_message(total_budget_ms: int) -> str:
    return f"Hard time budget ({total_budget_ms}ms) exceeded while executing scripts; returning snapshot."


def _idle_exceeded_message(total_budget_ms: int) -> str:
    return f"Hard time budget ({total_budget_ms}ms) exceeded waiting for network idle; returning snapshot."


@dataclass(slots=True)
class _Session:
    """Per-call components that teardown must release, in creation order."""

    deadline: Deadline
    tracker: ActivityTracker
    capture: ConsoleCapture
    metrics: NullMetrics
    caps: RuntimeCapabilities | None = None
    errors: list[ScriptError] = field(default_factory=list)
    sandbox: Sandbox | None = None
    bridge: DomBridge | None = None
    base: BaseUrl | None = None
    timers: TimerShim | None = None
    fetch: FetchBridge | None = None
    navigation: NavigationState | None = None
    modules: ModuleLoader | None = None
    scripts: ScriptLoader | None = None
    script_nids: dict[int, int] = field(default_factory=dict)

    def components(self) -> tuple[Sandbox, DomBridge, BaseUrl]:
        if self.sandbox is None or self.bridge is None or self.base is None:
            raise SwoopEnvironmentError("Sandbox components used before bootstrap completed")
        return self.sandbox, self.bridge, self.base

    def loaders(self) -> tuple[ScriptLoader, ModuleLoader]:
        if self.scripts is None or self.modules is None:
            raise SwoopEnvironmentError("Script loaders used before shim installation completed")
        return self.scripts, self.modules


class QuickJSEngine:
    """Render one page inside an isolated QuickJS context.

    Each call owns its sandbox, timer registry, activity tracker and shim state;
    nothing is shared between calls. Script-level failures are collected as
    `ScriptError` entries; only an unusable runtime or a failed bootstrap raises.

    Example:
        ```python
        engine = QuickJSEngine()
        result = engine.execute(request)
        print(result.snapshot)
        ```
    """

    def __init__(self, *, runtime: str = "quickjs") -> None:
        self._runtime = runtime

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request on a fresh event loop.

        Example:
            ```python
            result = QuickJSEngine().execute(request)
            ```
        """
        return asyncio.run(self.execute_async(request))

    async def execute_async(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request on the running event loop.

        Example:
            ```python
            result = await QuickJSEngine().execute_async(request)
            ```
        """
        caps = preflight_validate_runtime_capabilities(request.options.engine or self._runtime)
        options = request.options
        session = _Session(
            deadline=Deadline(at_ms=request.deadline),
            tracker=ActivityTracker(),
            capture=ConsoleCapture(forward=options.forward_console),
            metrics=Metrics() if options.debug_probes else NullMetrics(),
            caps=caps,
        )
        try:
            self._bootstrap(session, request, caps)
            self._install_shims(session, request)
            if options.execute_scripts:
                await self._inject_scripts(session, request)
            await self._settle(session, request)
            self._synthesize_lifecycle(session)
            snapshot = session.bridge.serialize() if session.bridge is not None else ""
            if options.debug_probes and isinstance(session.metrics, Metrics):
                emit_probe_summary(session.capture, session.metrics)
        finally:
            await self._teardown(session)
        return ExecutionResult(
            snapshot=snapshot,
            console_entries=list(session.capture.entries),
            engine_errors=list(session.errors),
        )

    # phase 1

    def _bootstrap(self, session: _Session, request: ExecutionRequest, caps: RuntimeCapabilities) -> None:
        try:
            session.sandbox = Sandbox(
                deadline=session.deadline,
                memory_limit_mb=request.options.memory_limit_mb,
                on_microtasks=lambda _count: session.tracker.note_async_activity(),
            )
            session.bridge = DomBridge(
                request.html,
                document_url=request.final_url,
                on_mutation=lambda _kind: self._on_mutation(session),
            )
            session.base = BaseUrl(session.bridge.soup, document_url=request.final_url)
            session.bridge.install(session.sandbox)
            for order, tag in enumerate(session.bridge.soup.find_all("script")):
                nid = session.bridge.nid(tag)
                session.script_nids[order] = nid
                session.sandbox.call("__swoop_dom.markParserInserted", nid)
        except SwoopExecutionError as exc:
            raise SwoopEnvironmentError(f"Sandbox bootstrap failed: {exc}") from exc
        logger.debug("Bootstrapped sandbox for %s (module evaluation: %s)", request.final_url,
                     caps.supports_module_evaluation)

    @staticmethod
    def _on_mutation(session: _Session) -> None:
        session.tracker.note_async_activity()
        if session.base is not None:
            session.base.invalidate()

    # phase 2

    def _install_shims(self, session: _Session, request: ExecutionRequest) -> None:
        options = request.options
        sandbox, bridge, base = session.components()
        loop = asyncio.get_running_loop()
        session.timers = TimerShim(sandbox, session.tracker, loop=loop, metrics=session.metrics)
        session.fetch = FetchBridge(
            sandbox,
            session.tracker,
            request.host_fetch,
            deadline=session.deadline,
            base=base,
            fetch_timeout_ms=options.fetch_timeout,
            capture=session.capture,
            debug_fetch=options.debug_fetch,
        )
        session.navigation = NavigationState(
            request.final_url,
            base=base,
            metrics=session.metrics,
            on_navigate=lambda href: logger.debug("Page navigated to %s (not followed)", href),
            on_pop_state=lambda state: logger.debug("history.pushState with state %r", state),
        )
        steps: list[tuple[str, Callable[[], Any]]] = [
            ("base_url", lambda: install_base_url(sandbox, base)),
            ("console", lambda: install_console(sandbox, session.capture)),
            ("environment", lambda: install_environment(sandbox, user_agent=options.user_agent)),
            ("timers", session.timers.install),
            ("fetch", session.fetch.install),
            ("xhr", lambda: install_xhr(sandbox)),
            ("cookies", lambda: install_cookies(sandbox, CookieJar())),
            ("storage", lambda: StorageShim().install(sandbox)),
            ("navigation", lambda: session.navigation.install(sandbox)),
        ]
        if options.permissive_shims:
            steps.append(("permissive", lambda: install_permissive(sandbox)))
        steps.append(("modules", lambda: self._install_loaders(session, request)))
        if options.debug_probes and isinstance(session.metrics, Metrics):
            steps.append(
                ("probes", lambda: install_probes(sandbox, session.metrics, root_selector=options.probe_root_selector))
            )
        for name, install in steps:
            try:
                install()
            except (SwoopExecutionError, RuntimeError) as exc:
                raise SwoopEnvironmentError(f"Failed to install the {name} shim: {exc}") from exc
        logger.debug("Installed shims: %s", ", ".join(name for name, _ in steps))

    def _install_loaders(self, session: _Session, request: ExecutionRequest) -> None:
        sandbox, bridge, base = session.components()
        session.modules = ModuleLoader(
            sandbox,
            request.host_fetch,
            deadline=session.deadline,
            tracker=session.tracker,
            fetch_timeout_ms=request.options.fetch_timeout,
            capabilities=session.caps,
        )
        session.modules.install()
        session.scripts = ScriptLoader(
            sandbox,
            bridge,
            session.tracker,
            request.host_fetch,
            deadline=session.deadline,
            base=base,
            modules=session.modules,
            capture=session.capture,
            fetch_timeout_ms=request.options.fetch_timeout,
            on_error=session.errors.append,
        )
        bridge.on_script_connected = session.scripts.schedule

    # phase 3

    async def _inject_scripts(self, session: _Session, request: ExecutionRequest) -> None:
        classic = [s for s in request.scripts if s.kind != "module"]
        modules = [s for s in request.scripts if s.kind == "module"]
        ordered = (classic + modules)[: max(0, request.options.max_scripts)]
        for descriptor in ordered:
            if session.deadline.expired:
                session.errors.append(
                    ScriptError(stage="wait", message=_scripts_exceeded_message(request.total_budget_ms))
                )
                break
            if descriptor.kind == "module":
                await self._run_module(session, request, descriptor)
            else:
                await self._run_classic(session, request, descriptor)

    async def _run_classic(self, session: _Session, request: ExecutionRequest, descriptor: ScriptDescriptor) -> None:
        sandbox, _, _ = session.components()
        scripts, _ = session.loaders()
        source = descriptor.source
        if source is None and descriptor.url is not None:
            scripts.mark_loaded(descriptor.url)
            try:
                source = await fetch_text(
                    request.host_fetch,
                    descriptor.url,
                    min(float(request.options.fetch_timeout), session.deadline.remaining_ms()),
                )
            except SwoopError as exc:
                session.errors.append(
                    ScriptError(
                        stage="script",
                        script_url=descriptor.url,
                        message=f"Failed to fetch external script: {exc}",
                    )
                )
                return
        try:
            run_classic_script(sandbox, source or "", nid=session.script_nids.get(descriptor.order, 0))
        except SwoopExecutionError as exc:
            logger.debug("Script %s threw: %s", descriptor.url or f"#{descriptor.order}", exc.message)
            session.errors.append(
                ScriptError(
                    stage="script",
                    script_url=descriptor.url if descriptor.kind == "external" else None,
                    message=exc.message,
                    stack=exc.stack,
                )
            )

    async def _run_module(self, session: _Session, request: ExecutionRequest, descriptor: ScriptDescriptor) -> None:
        _, _, base = session.components()
        scripts, loader = session.loaders()
        try:
            if descriptor.url is not None:
                scripts.mark_loaded(descriptor.url)
                coro = loader.run_module(descriptor.url, base.href)
            else:
                document_url = request.final_url.split("#", 1)[0]
                coro = self._run_inline_module(loader, descriptor.source or "", base.href,
                                               key=f"{document_url}#inline-module-{descriptor.order}",
                                               meta_url=request.final_url)
            await asyncio.wait_for(coro, session.deadline.remaining_seconds())
        except asyncio.TimeoutError:
            session.errors.append(
                ScriptError(
                    stage="script",
                    script_url=descriptor.url,
                    message="Time budget exhausted during module evaluation",
                )
            )
        except SwoopExecutionError as exc:
            session.errors.append(
                ScriptError(stage="script", script_url=descriptor.url, message=exc.message, stack=exc.stack)
            )
        except SwoopError as exc:
            session.errors.append(ScriptError(stage="script", script_url=descriptor.url, message=str(exc)))

    @staticmethod
    async def _run_inline_module(
        loader: ModuleLoader,
        source: str,
        base_url: str,
        *,
        key: str,
        meta_url: str,
    ) -> None:
        record = await loader.load_inline(source, key=key, base_url=base_url, meta_url=meta_url)
        await loader.evaluate(record)

    # phases 4 and 5

    async def _settle(self, session: _Session, request: ExecutionRequest) -> None:
        options = request.options
        tracker = session.tracker
        try:
            result = await wait_for_settle(
                strategy=options.wait_strategy,
                deadline_ms=session.deadline.at_ms,
                idle_time_ms=options.idle_time,
                poll_interval_ms=options.poll_interval,
                sleep=lambda ms: asyncio.sleep(ms / 1000.0),
                now=monotonic_ms,
                get_pending_fetches=lambda: tracker.pending_fetches,
                get_pending_script_loads=lambda: tracker.pending_script_loads,
                get_last_async_activity_at=lambda: tracker.last_async_activity_at,
            )
        except Exception as exc:  # noqa: BLE001 - a failed wait still yields a snapshot
            logger.debug("Settle wait failed", exc_info=exc)
            session.errors.append(ScriptError(stage="wait", message=f"Settle wait failed: {exc}"))
            return
        if result.timed_out and options.wait_strategy == "networkidle":
            session.errors.append(ScriptError(stage="wait", message=_idle_exceeded_message(request.total_budget_ms)))

    def _synthesize_lifecycle(self, session: _Session) -> None:
        if session.sandbox is None or session.sandbox.closed:
            return
        try:
            failed = synthesize_lifecycle(session.sandbox, LIFECYCLE_TIMEOUT_MS)
        except SwoopError as exc:
            session.errors.append(ScriptError(stage="wait", message=f"Lifecycle synthesis failed: {exc}"))
            return
        if failed:
            logger.debug("Lifecycle steps interrupted: %s", ", ".join(failed))

    # phase 6

    async def _teardown(self, session: _Session) -> None:
        if session.timers is not None:
            session.timers.registry.clear_all()
        if session.fetch is not None:
            await session.fetch.cancel_all()
        if session.scripts is not None:
            await session.scripts.cancel_all()
        if session.modules is not None:
            await session.modules.cancel_all()
        if session.sandbox is not None:
            session.sandbox.close()
