from __future__ import annotations

import base64
import binascii
import logging
import uuid
from typing import Any, Callable
from urllib.parse import urljoin, urlsplit

from ..budget import epoch_ms, monotonic_ms
from ..execution.config import js_source

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": "80", "https": "443", "ws": "80", "wss": "443", "ftp": "21"}
_SPECIAL_SCHEMES = frozenset(_DEFAULT_PORTS) | {"file"}

ENVIRONMENT_GLOBALS = (
    "navigator",
    "screen",
    "innerWidth",
    "innerHeight",
    "devicePixelRatio",
    "matchMedia",
    "getComputedStyle",
    "IntersectionObserver",
    "ResizeObserver",
    "PerformanceObserver",
    "URL",
    "URLSearchParams",
    "TextEncoder",
    "TextDecoder",
    "atob",
    "btoa",
    "performance",
    "crypto",
    "structuredClone",
    "NodeFilter",
    "WebSocket",
    "Worker",
    "SharedWorker",
    "EventSource",
    "getSelection",
    "alert",
    "confirm",
    "prompt",
    "postMessage",
)


def parse_url(href: str, base: str | None = None) -> dict[str, str] | None:
    """Split an absolute (or base-relative) URL into WHATWG-style components.

    Returns None when the result has no scheme, which the sandbox turns into a
    `TypeError: Invalid URL`.

    Example:
        ```python
        parts = parse_url("/b?q=1#top", "https://example.com/a")
        assert parts["href"] == "https://example.com/b?q=1#top"
        assert parts["origin"] == "https://example.com"
        ```
    """
    raw = str(href).strip()
    if base:
        try:
            raw = urljoin(str(base), raw)
        except ValueError:
            return None
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if not scheme:
        return None
    hostname = (parts.hostname or "").lower()
    if scheme in _SPECIAL_SCHEMES and scheme != "file" and not hostname:
        return None
    port_text = "" if port is None or str(port) == _DEFAULT_PORTS.get(scheme) else str(port)
    host = f"{hostname}:{port_text}" if port_text else hostname
    path = parts.path
    if scheme in _SPECIAL_SCHEMES and not path:
        path = "/"
    search = f"?{parts.query}" if parts.query else ""
    fragment = f"#{parts.fragment}" if parts.fragment else ""
    userinfo = ""
    if parts.username:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "") + "@"
    if scheme in _SPECIAL_SCHEMES or parts.netloc:
        href_text = f"{scheme}://{userinfo}{host}{path}{search}{fragment}"
    else:
        href_text = f"{scheme}:{path}{search}{fragment}"
    origin = f"{scheme}://{host}" if scheme in _DEFAULT_PORTS else "null"
    return {
        "href": href_text,
        "protocol": f"{scheme}:",
        "username": parts.username or "",
        "password": parts.password or "",
        "host": host,
        "hostname": hostname,
        "port": port_text,
        "pathname": path,
        "search": search,
        "hash": fragment,
        "origin": origin,
    }


def btoa(data: str) -> str | None:
    """Base64-encode a Latin-1 string; None if it holds wider characters.

    Example:
        ```python
        assert btoa("hi") == "aGk="
        ```
    """
    try:
        raw = str(data).encode("latin-1")
    except UnicodeEncodeError:
        return None
    return base64.b64encode(raw).decode("ascii")


def atob(data: str) -> str | None:
    """Decode base64 into a Latin-1 string; None if the input is malformed.

    Example:
        ```python
        assert atob("aGk=") == "hi"
        ```
    """
    cleaned = "".join(str(data).split())
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True).decode("latin-1")
    except (binascii.Error, ValueError):
        return None


def install_environment(
    sandbox: Any,
    *,
    user_agent: str,
    clock: Callable[[], float] = monotonic_ms,
) -> None:
    """Install the browser globals most page scripts probe for on startup.

    Example:
        ```python
        install_environment(sandbox, user_agent=options.user_agent)
        ```
    """
    started_at = clock()
    time_origin = epoch_ms()
    sandbox.expose("url_parse", parse_url)
    sandbox.expose("atob", atob)
    sandbox.expose("btoa", btoa)
    sandbox.expose("uuid4", lambda: str(uuid.uuid4()))
    sandbox.expose("performance_now", lambda: clock() - started_at)
    sandbox.evaluate(js_source("environment"))
    sandbox.call("__swoop_environment.init", {"userAgent": user_agent, "timeOrigin": time_origin})
    sandbox.capabilities.claim(*ENVIRONMENT_GLOBALS, owner="environment")
