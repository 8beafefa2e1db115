from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypedDict
from urllib.parse import unquote_to_bytes, urljoin, urlsplit

import httpx

from .errors import HostFetchError, SwoopTimeoutError

logger = logging.getLogger(__name__)


class FetchInit(TypedDict, total=False):
    method: str
    headers: dict[str, str]
    body: str | None


@dataclass(slots=True)
class HostResponse:
    """Response returned by a host fetch collaborator.

    Example:
        ```python
        resp = HostResponse(url="https://example.com/", status=200, body=b"<html></html>")
        ```
    """

    url: str
    status: int
    status_text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body, replacing undecodable bytes.

        Example:
            ```python
            html = resp.text()
            ```
        """
        return self.body.decode(encoding, errors="replace")


HostFetch = Callable[[str, FetchInit], Awaitable[HostResponse]]


def resolve_url(reference: str, base: str) -> str:
    """Resolve `reference` against `base` the way a browser would.

    Example:
        ```python
        assert resolve_url("./x", "https://example.com/base/") == "https://example.com/base/x"
        ```
    """
    return urljoin(base, reference.strip())


def is_fetchable_url(url: str) -> bool:
    """Return True for URL schemes the default host fetch can load.

    Example:
        ```python
        assert is_fetchable_url("data:text/plain,hi")
        ```
    """
    return urlsplit(url).scheme in {"http", "https", "data"}


def decode_data_url(url: str) -> HostResponse:
    """Decode a `data:` URL into an in-memory response.

    Example:
        ```python
        resp = decode_data_url("data:text/javascript,window.x%3D1")
        ```
    """
    header, sep, payload = url[len("data:"):].partition(",")
    if not sep:
        raise HostFetchError(f"Malformed data URL: {url[:64]}")
    params = header.split(";")
    is_base64 = params[-1].strip().lower() == "base64"
    media_type = (params[0] if params[0] else "text/plain;charset=US-ASCII").strip()
    try:
        body = base64.b64decode(payload) if is_base64 else unquote_to_bytes(payload)
    except ValueError as exc:
        raise HostFetchError(f"Malformed data URL payload: {exc}") from exc
    return HostResponse(
        url=url,
        status=200,
        status_text="OK",
        headers={"content-type": media_type},
        body=body,
    )


class HttpxHostFetch:
    """Default host fetch collaborator built on `httpx.AsyncClient`.

    Handles `http(s):` through httpx and `data:` URLs in process. Timeouts and
    aborts are applied by the caller with `asyncio.wait_for`.

    Example:
        ```python
        host_fetch = HttpxHostFetch(user_agent="swoop/0.1")
        resp = await host_fetch("https://example.com/", {"method": "GET"})
        await host_fetch.aclose()
        ```
    """

    def __init__(
        self,
        *,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_redirects: int = 10,
    ) -> None:
        headers = {"User-Agent": user_agent} if user_agent else None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=headers,
            follow_redirects=True,
            max_redirects=max_redirects,
            timeout=httpx.Timeout(30.0, connect=10.0),
        )

    async def __call__(self, url: str, init: FetchInit | None = None) -> HostResponse:
        init = init or {}
        if url.startswith("data:"):
            return decode_data_url(url)
        if not is_fetchable_url(url):
            raise HostFetchError(f"Unsupported URL scheme: {url}")
        method = str(init.get("method") or "GET").upper()
        body = init.get("body")
        try:
            response = await self._client.request(
                method,
                url,
                headers=dict(init.get("headers") or {}),
                content=body.encode("utf-8") if isinstance(body, str) else None,
            )
        except httpx.HTTPError as exc:
            raise HostFetchError(f"{type(exc).__name__} fetching {url}: {exc}") from exc
        return HostResponse(
            url=str(response.url),
            status=response.status_code,
            status_text=response.reason_phrase,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=response.content,
        )

    async def aclose(self) -> None:
        """Close the underlying client if this instance created it.

        Example:
            ```python
            await host_fetch.aclose()
            ```
        """
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxHostFetch":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


async def fetch_with_timeout(
    host_fetch: HostFetch,
    url: str,
    init: FetchInit | None,
    timeout_ms: float,
) -> HostResponse:
    """Run one host fetch, cancelling it when `timeout_ms` elapses.

    Example:
        ```python
        resp = await fetch_with_timeout(host_fetch, url, None, deadline.remaining_ms())
        ```
    """
    if timeout_ms <= 0:
        raise SwoopTimeoutError(f"No time budget left to fetch {url}")
    try:
        return await asyncio.wait_for(host_fetch(url, init or {"method": "GET"}), timeout_ms / 1000.0)
    except asyncio.TimeoutError as exc:
        raise SwoopTimeoutError(f"Timed out fetching {url} after {int(timeout_ms)}ms") from exc


async def fetch_text(host_fetch: HostFetch, url: str, timeout_ms: float) -> str:
    """Fetch `url` and return its body text; non-2xx responses are errors.

    Example:
        ```python
        source = await fetch_text(host_fetch, "https://example.com/app.js", 2500)
        ```
    """
    response = await fetch_with_timeout(host_fetch, url, {"method": "GET"}, timeout_ms)
    if not response.ok:
        status = f"{response.status} {response.status_text}".strip()
        raise HostFetchError(f"HTTP {status} for {url}")
    logger.debug("Fetched %s (%d bytes)", url, len(response.body))
    return response.text()
