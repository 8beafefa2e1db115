from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any

from ..budget import Deadline
from ..console import ConsoleCapture
from ..errors import SwoopError, SwoopTimeoutError
from ..execution.config import js_source
from ..fetching import FetchInit, HostFetch, HostResponse, fetch_with_timeout
from ..sandbox.activity import ActivityTracker
from .base_url import BaseUrl

logger = logging.getLogger(__name__)

FETCH_GLOBALS = ("fetch", "Headers", "Request", "Response", "AbortController", "AbortSignal")


def _response_payload(response: HostResponse) -> dict[str, Any]:
    """Convert a host response into the JSON shape the sandbox `Response` expects.

    Example:
        ```python
        payload = _response_payload(HostResponse(url="https://example.com/", status=200))
        ```
    """
    return {
        "url": response.url,
        "status": response.status,
        "statusText": response.status_text,
        "headers": dict(response.headers),
        "body": response.text(),
    }


class FetchBridge:
    """Sandbox `fetch` transport: one asyncio task per request.

    `pending_fetches` is raised before the request is issued and lowered only
    after the result has been delivered into the sandbox and its microtasks have
    drained. Each request is bounded by the remaining call budget, capped by the
    per-fetch ceiling.

    Example:
        ```python
        bridge = FetchBridge(sandbox, tracker, host_fetch, deadline=deadline, base=base)
        bridge.install()
        ...
        await bridge.cancel_all()
        ```
    """

    def __init__(
        self,
        sandbox: Any,
        tracker: ActivityTracker,
        host_fetch: HostFetch,
        *,
        deadline: Deadline,
        base: BaseUrl,
        fetch_timeout_ms: float = 30_000,
        capture: ConsoleCapture | None = None,
        debug_fetch: bool = False,
    ) -> None:
        self._sandbox = sandbox
        self._tracker = tracker
        self._host_fetch = host_fetch
        self._deadline = deadline
        self._base = base
        self._fetch_timeout_ms = fetch_timeout_ms
        self._capture = capture
        self._debug_fetch = debug_fetch
        self._ids = itertools.count(1)
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._aborted: set[int] = set()
        self.requested_urls: list[str] = []

    def install(self) -> None:
        """Expose the fetch transport and define `fetch`, `Headers`, `Request` and friends.

        Example:
            ```python
            bridge.install()
            ```
        """
        self._sandbox.expose("fetch_start", self.start)
        self._sandbox.expose("fetch_abort", self.abort)
        self._sandbox.expose("fetch_resolve_url", self._base.resolve)
        self._sandbox.expose("budget_remaining", self._deadline.remaining_ms)
        self._sandbox.evaluate(js_source("fetch"))
        self._sandbox.capabilities.claim(*FETCH_GLOBALS, owner="fetch")

    def timeout_ms(self) -> float:
        return min(float(self._fetch_timeout_ms), self._deadline.remaining_ms())

    def start(self, request_json: str) -> int:
        """Host entry point for one sandbox `fetch`; returns the request id.

        Example:
            ```python
            request_id = bridge.start('{"url": "https://example.com/api", "method": "GET"}')
            ```
        """
        request = json.loads(request_json)
        url = self._base.resolve(str(request.get("url") or ""))
        init: FetchInit = {
            "method": str(request.get("method") or "GET").upper(),
            "headers": {str(k): str(v) for k, v in (request.get("headers") or {}).items()},
            "body": request.get("body"),
        }
        request_id = next(self._ids)
        self.requested_urls.append(url)
        if self._debug_fetch and self._capture is not None:
            self._capture.record("debug", ["[fetch]", url])
        self._tracker.begin_fetch()
        self._tasks[request_id] = asyncio.get_running_loop().create_task(self._run(request_id, url, init))
        return request_id

    def abort(self, request_id: int) -> bool:
        task = self._tasks.get(int(request_id))
        if task is None:
            return False
        self._aborted.add(int(request_id))
        task.cancel()
        return True

    async def cancel_all(self) -> int:
        """Abort every in-flight request during teardown; return how many were live.

        Example:
            ```python
            leaked = await bridge.cancel_all()
            ```
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Aborted %d in-flight fetch(es) at teardown", len(tasks))
        self._tasks.clear()
        return len(tasks)

    async def _run(self, request_id: int, url: str, init: FetchInit) -> None:
        try:
            try:
                response = await fetch_with_timeout(self._host_fetch, url, init, self.timeout_ms())
            except asyncio.CancelledError:
                if request_id not in self._aborted:
                    raise
                logger.debug("Fetch %s aborted by page code", url)
                return
            except SwoopTimeoutError as exc:
                logger.debug("%s", exc)
                self._sandbox.run_callback("__swoop_fetch.reject", request_id, "AbortError", str(exc))
                return
            except SwoopError as exc:
                logger.debug("Fetch %s failed: %s", url, exc)
                self._sandbox.run_callback("__swoop_fetch.reject", request_id, "TypeError", "Failed to fetch")
                return
            except Exception as exc:  # noqa: BLE001 - any transport failure surfaces as a network error
                logger.debug("Fetch %s failed", url, exc_info=exc)
                self._sandbox.run_callback("__swoop_fetch.reject", request_id, "TypeError", "Failed to fetch")
                return
            self._sandbox.run_callback("__swoop_fetch.resolve", request_id, _response_payload(response))
        finally:
            self._tasks.pop(request_id, None)
            self._aborted.discard(request_id)
            self._tracker.end_fetch()
