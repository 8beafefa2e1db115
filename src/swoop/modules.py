from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from .budget import Deadline
from .errors import SwoopEnvironmentError, SwoopError, SwoopExecutionError, SwoopTimeoutError
from .execution.capabilities import RuntimeCapabilities, capabilities_for_runtime
from .execution.config import MODULE_SETTLE_POLL_MS, js_source
from .fetching import HostFetch, fetch_text
from .module_source import resolve_specifier, transform_module
from .sandbox.activity import ActivityTracker

logger = logging.getLogger(__name__)


class ModuleState(enum.Enum):
    UNLINKED = "unlinked"
    LINKING = "linking"
    LINKED = "linked"
    EVALUATING = "evaluating"
    EVALUATED = "evaluated"
    ERRORED = "errored"


@dataclass(slots=True)
class ModuleRecord:
    """One module instance, identified by its resolved URL.

    Example:
        ```python
        record = ModuleRecord(url="https://example.com/app.js")
        assert record.state is ModuleState.UNLINKED
        ```
    """

    url: str
    base_url: str = ""
    dependencies: list[str] = field(default_factory=list)
    state: ModuleState = ModuleState.UNLINKED
    error: SwoopError | None = None
    linked: asyncio.Event = field(default_factory=asyncio.Event)
    evaluated: asyncio.Event = field(default_factory=asyncio.Event)

    def fail(self, error: SwoopError) -> None:
        self.state = ModuleState.ERRORED
        self.error = error
        self.linked.set()
        self.evaluated.set()


class ModuleLoader:
    """Resolve, fetch, cache, link and evaluate ES module graphs inside one sandbox.

    Module identity is the resolved URL: a record is cached before its
    dependencies are loaded, so circular imports terminate and one URL always
    yields one instance. Dependencies evaluate before dependents. Dynamic
    `import()` goes through the same loader and counts as a pending script load
    while in flight.

    Example:
        ```python
        loader = ModuleLoader(sandbox, host_fetch, deadline=deadline, tracker=tracker)
        loader.install()
        record = await loader.load_module("./app.js", "https://example.com/")
        await loader.evaluate(record)
        ```
    """

    def __init__(
        self,
        sandbox: Any,
        host_fetch: HostFetch,
        *,
        deadline: Deadline,
        tracker: ActivityTracker,
        fetch_timeout_ms: float = 30_000,
        capabilities: RuntimeCapabilities | None = None,
    ) -> None:
        caps = capabilities or capabilities_for_runtime("quickjs")
        if not caps.supports_module_evaluation:
            raise SwoopEnvironmentError(
                "Module scripts require a JavaScript runtime that can execute pending promise jobs"
            )
        self._sandbox = sandbox
        self._host_fetch = host_fetch
        self._deadline = deadline
        self._tracker = tracker
        self._fetch_timeout_ms = fetch_timeout_ms
        self._records: dict[str, ModuleRecord] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def install(self) -> None:
        """Define the sandbox module registry and the dynamic-import transport.

        Example:
            ```python
            loader.install()
            ```
        """
        self._sandbox.expose("module_import", self.start_dynamic_import)
        self._sandbox.evaluate(js_source("modules"))

    def record(self, url: str) -> ModuleRecord | None:
        return self._records.get(url)

    def timeout_ms(self) -> float:
        return min(float(self._fetch_timeout_ms), self._deadline.remaining_ms())

    async def load_module(
        self,
        specifier: str,
        referencing_url: str,
        *,
        chain: tuple[str, ...] = (),
    ) -> ModuleRecord:
        """Resolve `specifier`, then fetch and link the module graph behind it.

        Returns the cached record when the URL was already loaded. Fetch and link
        failures mark the record ERRORED and are raised.

        Example:
            ```python
            record = await loader.load_module("./util.js", "https://example.com/js/app.js")
            ```
        """
        if self._deadline.expired:
            raise SwoopTimeoutError("Time budget exhausted while loading modules")
        url = resolve_specifier(specifier, referencing_url)
        cached = self._records.get(url)
        if cached is not None:
            if url not in chain and not cached.linked.is_set():
                await self._wait(cached.linked, f"linking {url}")
            if cached.state is ModuleState.ERRORED and cached.error is not None:
                raise cached.error
            return cached
        record = ModuleRecord(url=url, base_url=url)
        self._records[url] = record
        try:
            source = await fetch_text(self._host_fetch, url, self.timeout_ms())
        except SwoopError as exc:
            record.fail(exc)
            raise
        await self._link(record, source, chain=chain + (url,))
        return record

    async def load_inline(self, source: str, *, key: str, base_url: str, meta_url: str | None = None) -> ModuleRecord:
        """Link an inline `<script type="module">` body under a synthetic key.

        Example:
            ```python
            record = await loader.load_inline(code, key="https://example.com/#inline-module-0", base_url=base.href)
            ```
        """
        record = ModuleRecord(url=key, base_url=base_url)
        self._records[key] = record
        await self._link(record, source, chain=(key,), meta_url=meta_url)
        return record

    async def _link(
        self,
        record: ModuleRecord,
        source: str,
        *,
        chain: tuple[str, ...],
        meta_url: str | None = None,
    ) -> None:
        record.state = ModuleState.LINKING
        try:
            module = transform_module(source, record.url, base_url=record.base_url, meta_url=meta_url)
            for dependency in module.dependencies:
                await self.load_module(dependency, record.base_url, chain=chain)
            record.dependencies = module.dependencies
            self._sandbox.evaluate_script(module.code)
        except SwoopError as exc:
            record.fail(exc)
            raise
        record.state = ModuleState.LINKED
        record.linked.set()
        logger.debug("Linked module %s (%d dependencies)", record.url, len(record.dependencies))

    async def evaluate(self, record: ModuleRecord, *, chain: tuple[str, ...] = ()) -> None:
        """Evaluate `record` after its dependencies; re-raise a stored failure.

        Example:
            ```python
            await loader.evaluate(record)
            ```
        """
        if record.state is ModuleState.ERRORED and record.error is not None:
            raise record.error
        if record.state is ModuleState.EVALUATED:
            return
        if record.state is ModuleState.EVALUATING:
            if record.url not in chain:
                await self._wait(record.evaluated, f"evaluating {record.url}")
                if record.state is ModuleState.ERRORED and record.error is not None:
                    raise record.error
            return
        if record.state is not ModuleState.LINKED:
            await self._wait(record.linked, f"linking {record.url}")
            return await self.evaluate(record, chain=chain)
        record.state = ModuleState.EVALUATING
        try:
            for url in record.dependencies:
                dependency = self._records.get(url)
                if dependency is not None:
                    await self.evaluate(dependency, chain=chain + (record.url,))
            await self._run(record)
        except SwoopError as exc:
            record.fail(exc)
            raise
        record.state = ModuleState.EVALUATED
        record.evaluated.set()

    async def _run(self, record: ModuleRecord) -> None:
        self._sandbox.call("__swoop_modules.run", record.url)
        self._sandbox.drain_microtasks()
        while True:
            status = self._sandbox.call_json("__swoop_modules.status", record.url) or {}
            state = status.get("state")
            if state == "evaluated":
                return
            if state == "errored":
                error = status.get("error") or {}
                raise SwoopExecutionError(
                    f"{error.get('name') or 'Error'}: {error.get('message') or ''}",
                    stack=error.get("stack"),
                )
            if state == "missing":
                raise SwoopExecutionError(f"Module {record.url} was never defined")
            if self._deadline.expired:
                raise SwoopTimeoutError(f"Time budget exhausted while evaluating module {record.url}")
            await asyncio.sleep(MODULE_SETTLE_POLL_MS / 1000.0)

    async def _wait(self, event: asyncio.Event, what: str) -> None:
        try:
            await asyncio.wait_for(event.wait(), self._deadline.remaining_seconds())
        except asyncio.TimeoutError as exc:
            raise SwoopTimeoutError(f"Time budget exhausted while {what}") from exc

    async def run_module(self, specifier: str, referencing_url: str) -> ModuleRecord:
        """Load, link and evaluate one module graph root.

        Example:
            ```python
            await loader.run_module("https://example.com/app.js", "https://example.com/")
            ```
        """
        record = await self.load_module(specifier, referencing_url)
        await self.evaluate(record)
        return record

    # dynamic import()

    def start_dynamic_import(self, request_id: int, specifier: str, base_url: str) -> bool:
        """Host entry point for sandbox `import()`; settles the promise later.

        Example:
            ```python
            loader.start_dynamic_import(1, "./chunk.js", "https://example.com/app.js")
            ```
        """
        if self._sandbox.closed:
            return False
        self._tracker.begin_script_load()
        task = asyncio.get_running_loop().create_task(
            self._dynamic_import(int(request_id), str(specifier), str(base_url))
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _dynamic_import(self, request_id: int, specifier: str, base_url: str) -> None:
        try:
            try:
                record = await self.run_module(specifier, base_url)
            except SwoopError as exc:
                logger.debug("Dynamic import of %s failed: %s", specifier, exc)
                self._sandbox.run_callback("__swoop_modules.settleImport", request_id, None, str(exc))
                return
            self._sandbox.run_callback("__swoop_modules.settleImport", request_id, record.url, None)
        finally:
            self._tracker.end_script_load()

    async def cancel_all(self) -> int:
        """Cancel in-flight dynamic imports during teardown; return how many were live.

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
            logger.debug("Cancelled %d dynamic import(s) at teardown", len(tasks))
        self._tasks.clear()
        return len(tasks)
