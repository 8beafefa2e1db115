from __future__ import annotations

import asyncio
import logging

from .budget import Deadline, epoch_ms
from .errors import HostFetchError, SwoopTimeoutError
from .execution.config import RENDER_GRACE_MS
from .execution.engine import ExecutionEngine
from .execution.quickjs_engine import QuickJSEngine
from .execution.types import ExecutionRequest
from .fetching import HostFetch, HttpxHostFetch, fetch_with_timeout
from .options import RenderOptions, RenderResult, Timing
from .scripts import discover_scripts

logger = logging.getLogger(__name__)


def _resolve_options(options: RenderOptions | None, config_path: str | None) -> RenderOptions:
    """Resolve the effective options object for a call.

    Example:
        ```python
        options = _resolve_options(None, "/tmp/swoop.toml")
        ```
    """
    if options is not None and config_path is not None:
        raise ValueError("Provide either 'options' or 'config_path', not both")
    if options is None and config_path is not None:
        return RenderOptions.from_file(config_path)
    if options is None:
        return RenderOptions()
    return options


async def _run_engine(
    engine: ExecutionEngine,
    *,
    html: str,
    final_url: str,
    options: RenderOptions,
    deadline: Deadline,
    host_fetch: HostFetch,
    started_at: int,
) -> RenderResult:
    scripts = discover_scripts(html, final_url, options.max_scripts) if options.execute_scripts else []
    request = ExecutionRequest(
        final_url=final_url,
        html=html,
        scripts=scripts,
        options=options,
        total_budget_ms=options.total_budget_ms,
        deadline=deadline.at_ms,
        host_fetch=host_fetch,
    )
    limit_seconds = (deadline.remaining_ms() + RENDER_GRACE_MS) / 1000.0
    try:
        outcome = await asyncio.wait_for(engine.execute_async(request), limit_seconds)
    except asyncio.TimeoutError as exc:
        raise SwoopTimeoutError(
            f"Render of {final_url} overran its {options.total_budget_ms}ms budget"
        ) from exc
    finished_at = epoch_ms()
    return RenderResult(
        url=final_url,
        html=outcome.snapshot,
        console=outcome.console_entries,
        errors=outcome.engine_errors,
        timing=Timing(start=started_at, end=finished_at, duration=finished_at - started_at),
    )


async def render_html_async(
    html: str,
    url: str,
    options: RenderOptions | None = None,
    host_fetch: HostFetch | None = None,
    *,
    config_path: str | None = None,
    engine: ExecutionEngine | None = None,
) -> RenderResult:
    """Render an already-fetched document as if it had been loaded from `url`.

    Example:
        ```python
        result = await render_html_async("<div id='app'></div><script src='/app.js'></script>", "https://example.com/")
        ```
    """
    resolved = _resolve_options(options, config_path)
    started_at = epoch_ms()
    deadline = Deadline.after(resolved.total_budget_ms)
    owned = host_fetch is None
    fetcher = host_fetch or HttpxHostFetch(user_agent=resolved.user_agent)
    try:
        return await _run_engine(
            engine or QuickJSEngine(runtime=resolved.engine),
            html=html,
            final_url=url,
            options=resolved,
            deadline=deadline,
            host_fetch=fetcher,
            started_at=started_at,
        )
    finally:
        if owned:
            await fetcher.aclose()


async def render_async(
    url: str,
    options: RenderOptions | None = None,
    host_fetch: HostFetch | None = None,
    *,
    config_path: str | None = None,
    engine: ExecutionEngine | None = None,
) -> RenderResult:
    """Fetch `url`, run its scripts and return the settled DOM snapshot.

    The initial document fetch shares the call budget with script execution.
    Script failures are reported in `RenderResult.errors`; a failed document
    fetch raises `HostFetchError`.

    Example:
        ```python
        result = await render_async("https://example.com/", RenderOptions(timeout=2000))
        print(result.html)
        ```
    """
    resolved = _resolve_options(options, config_path)
    started_at = epoch_ms()
    deadline = Deadline.after(resolved.total_budget_ms)
    owned = host_fetch is None
    fetcher = host_fetch or HttpxHostFetch(user_agent=resolved.user_agent)
    try:
        response = await fetch_with_timeout(
            fetcher,
            url,
            {"method": "GET", "headers": {"Accept": "text/html,application/xhtml+xml"}},
            min(float(resolved.fetch_timeout), deadline.remaining_ms()),
        )
        if not response.ok:
            status = f"{response.status} {response.status_text}".strip()
            raise HostFetchError(f"HTTP {status} for {url}")
        final_url = response.url or url
        logger.debug("Fetched document %s (%d bytes, final URL %s)", url, len(response.body), final_url)
        return await _run_engine(
            engine or QuickJSEngine(runtime=resolved.engine),
            html=response.text(),
            final_url=final_url,
            options=resolved,
            deadline=deadline,
            host_fetch=fetcher,
            started_at=started_at,
        )
    finally:
        if owned:
            await fetcher.aclose()


def render(
    url: str,
    options: RenderOptions | None = None,
    host_fetch: HostFetch | None = None,
    *,
    config_path: str | None = None,
) -> RenderResult:
    """Synchronous wrapper around `render_async`.

    Example:
        ```python
        from swoop import render
        result = render("https://example.com/")
        ```
    """
    return asyncio.run(render_async(url, options, host_fetch, config_path=config_path))


def render_html(
    html: str,
    url: str,
    options: RenderOptions | None = None,
    host_fetch: HostFetch | None = None,
    *,
    config_path: str | None = None,
) -> RenderResult:
    """Synchronous wrapper around `render_html_async`.

    Example:
        ```python
        from swoop import render_html
        result = render_html("<p id='x'></p><script>x.textContent = 'hi'</script>", "https://example.com/")
        ```
    """
    return asyncio.run(render_html_async(html, url, options, host_fetch, config_path=config_path))
