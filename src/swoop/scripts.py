from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from bs4 import BeautifulSoup, Tag

from .budget import Deadline
from .console import ConsoleCapture
from .dom import DomBridge
from .errors import SwoopError, SwoopExecutionError
from .execution.config import script_kind_for_type
from .execution.types import ScriptDescriptor, ScriptError
from .fetching import HostFetch, fetch_text, resolve_url
from .modules import ModuleLoader
from .sandbox.activity import ActivityTracker
from .shims.base_url import BaseUrl, effective_base_url

logger = logging.getLogger(__name__)

SCRIPT_LOAD_FAILED = "[swoop] script load failed"


def discover_scripts(html: str, final_url: str, max_scripts: int) -> list[ScriptDescriptor]:
    """Return the executable `<script>` elements of a page, in document order.

    Only the first `max_scripts` script elements are considered. External `src`
    values resolve against the effective `<base href>`; non-JavaScript types and
    empty inline scripts are skipped.

    Example:
        ```python
        scripts = discover_scripts("<script src='/app.js'></script>", "https://example.com/a/", 64)
        assert scripts[0].url == "https://example.com/app.js"
        ```
    """
    soup = BeautifulSoup(html or "", "lxml", multi_valued_attributes=None)
    base = effective_base_url(soup, final_url)
    descriptors: list[ScriptDescriptor] = []
    for order, element in enumerate(soup.find_all("script")[: max(0, int(max_scripts))]):
        kind = script_kind_for_type(element.get("type"))
        if kind is None:
            continue
        src = element.get("src")
        if src is not None and str(src).strip():
            url = resolve_url(str(src), base)
            descriptors.append(
                ScriptDescriptor(kind="module" if kind == "module" else "external", order=order, url=url)
            )
            continue
        source = element.get_text()
        if not source.strip():
            continue
        descriptors.append(ScriptDescriptor(kind="module" if kind == "module" else "inline", order=order, source=source))
    logger.debug("Discovered %d executable script(s) on %s", len(descriptors), final_url)
    return descriptors


def run_classic_script(sandbox: Any, source: str, *, nid: int = 0) -> None:
    """Evaluate one classic script with `document.currentScript` set to its element.

    Raises `SwoopExecutionError` when the script throws; microtasks queued by the
    script are drained either way.

    Example:
        ```python
        run_classic_script(sandbox, "window.x = 1;", nid=12)
        ```
    """
    sandbox.call("__swoop_dom.setCurrentScript", nid)
    try:
        sandbox.evaluate_script(source)
    finally:
        if not sandbox.closed:
            sandbox.call("__swoop_dom.setCurrentScript", 0)
            sandbox.drain_microtasks()


class ScriptLoader:
    """Fetch and run `<script>` elements that page code connects to the document.

    A connected script starts on the next host tick, so page code can still set
    its `src`, `type` and handlers. Each load counts as a pending script load
    until its `load` or `error` event has been dispatched. A URL runs at most
    once per call; connecting it again only fires `load`.

    Example:
        ```python
        loader = ScriptLoader(sandbox, bridge, tracker, host_fetch, deadline=deadline, base=base,
                              modules=modules, capture=capture, on_error=errors.append)
        bridge.on_script_connected = loader.schedule
        ```
    """

    def __init__(
        self,
        sandbox: Any,
        bridge: DomBridge,
        tracker: ActivityTracker,
        host_fetch: HostFetch,
        *,
        deadline: Deadline,
        base: BaseUrl,
        modules: ModuleLoader,
        capture: ConsoleCapture,
        fetch_timeout_ms: float = 30_000,
        on_error: Callable[[ScriptError], None] | None = None,
    ) -> None:
        self._sandbox = sandbox
        self._bridge = bridge
        self._tracker = tracker
        self._host_fetch = host_fetch
        self._deadline = deadline
        self._base = base
        self._modules = modules
        self._capture = capture
        self._fetch_timeout_ms = fetch_timeout_ms
        self._on_error = on_error
        self._loaded: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    def mark_loaded(self, url: str) -> None:
        self._loaded.add(url)

    def schedule(self, nid: int) -> None:
        """DOM hook: a script element `nid` was connected and should run.

        Example:
            ```python
            loader.schedule(42)
            ```
        """
        if self._sandbox.closed:
            return
        self._tracker.begin_script_load()
        task = asyncio.get_running_loop().create_task(self._load(int(nid)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _load(self, nid: int) -> None:
        try:
            await self._load_element(nid)
        finally:
            self._tracker.end_script_load()

    async def _load_element(self, nid: int) -> None:
        element = self._bridge.node(nid)
        if not isinstance(element, Tag) or self._sandbox.closed:
            return
        kind = script_kind_for_type(element.get("type"))
        if kind is None:
            return
        src = element.get("src")
        if src is None:
            await self._run_inline(nid, element.get_text(), kind)
            return
        url = self._base.resolve(str(src))
        if url in self._loaded:
            self._dispatch(nid, "load")
            return
        self._loaded.add(url)
        logger.debug("Loading dynamic %s script %s", kind, url)
        try:
            if kind == "module":
                await self._modules.run_module(url, self._base.href)
                source = None
            else:
                source = await fetch_text(self._host_fetch, url, self.timeout_ms())
        except SwoopError as exc:
            self._fail(nid, url, exc)
            return
        if source is not None:
            try:
                run_classic_script(self._sandbox, source, nid=nid)
            except SwoopExecutionError as exc:
                self._record(ScriptError(stage="script", message=exc.message, script_url=url, stack=exc.stack))
        self._dispatch(nid, "load")

    async def _run_inline(self, nid: int, source: str, kind: str) -> None:
        if not source.strip():
            return
        try:
            if kind == "module":
                key = f"{self._base.document_url.split('#', 1)[0]}#dynamic-module-{nid}"
                record = await self._modules.load_inline(
                    source, key=key, base_url=self._base.href, meta_url=self._base.document_url
                )
                await self._modules.evaluate(record)
            else:
                run_classic_script(self._sandbox, source, nid=nid)
        except SwoopExecutionError as exc:
            self._record(ScriptError(stage="script", message=exc.message, stack=exc.stack))
        except SwoopError as exc:
            self._record(ScriptError(stage="script", message=str(exc)))

    def _fail(self, nid: int, url: str, exc: SwoopError) -> None:
        logger.debug("Dynamic script %s failed: %s", url, exc)
        self._capture.record("error", [SCRIPT_LOAD_FAILED, url, str(exc)])
        if isinstance(exc, SwoopExecutionError):
            self._record(ScriptError(stage="script", message=exc.message, script_url=url, stack=exc.stack))
        self._dispatch(nid, "error")

    def _record(self, error: ScriptError) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def _dispatch(self, nid: int, event_type: str) -> None:
        self._sandbox.run_callback("__swoop_dom.dispatch", nid, event_type, False)

    def timeout_ms(self) -> float:
        return min(float(self._fetch_timeout_ms), self._deadline.remaining_ms())

    async def cancel_all(self) -> int:
        """Cancel every in-flight script load during teardown; return how many were live.

        Example:
            ```python
            leaked = await loader.cancel_all()
            ```
        """
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Cancelled %d script load(s) at teardown", len(tasks))
        self._tasks.clear()
        return len(tasks)
