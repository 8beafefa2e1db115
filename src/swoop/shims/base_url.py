from __future__ import annotations

import logging
from typing import Any

from bs4 import BeautifulSoup

from ..execution.config import js_source
from ..fetching import resolve_url

logger = logging.getLogger(__name__)


def effective_base_url(soup: BeautifulSoup, document_url: str) -> str:
    """Return the `<base href>` resolved against `document_url`, else `document_url`.

    Example:
        ```python
        soup = BeautifulSoup('<base href="/beta/">', "lxml")
        assert effective_base_url(soup, "https://example.com/") == "https://example.com/beta/"
        ```
    """
    base = soup.find("base", href=True)
    if base is None:
        return document_url
    href = str(base.get("href") or "").strip()
    if not href:
        return document_url
    return resolve_url(href, document_url)


class BaseUrl:
    """Effective base URL of the live document.

    The value is recomputed lazily after the document or its URL changes, so a
    `<base>` element inserted by page code takes effect for later resolutions.

    Example:
        ```python
        base = BaseUrl(bridge.soup, document_url="https://example.com/a/")
        assert base.resolve("x.js") == "https://example.com/a/x.js"
        ```
    """

    def __init__(self, soup: BeautifulSoup, *, document_url: str) -> None:
        self._soup = soup
        self._document_url = document_url
        self._cached: str | None = None

    @property
    def document_url(self) -> str:
        return self._document_url

    @document_url.setter
    def document_url(self, value: str) -> None:
        self._document_url = value
        self._cached = None

    def invalidate(self) -> None:
        self._cached = None

    @property
    def href(self) -> str:
        if self._cached is None:
            self._cached = effective_base_url(self._soup, self._document_url)
        return self._cached

    def resolve(self, reference: str) -> str:
        """Resolve `reference` against the effective base URL.

        Example:
            ```python
            url = base.resolve("./x")
            ```
        """
        return resolve_url(str(reference), self.href)


def install_base_url(sandbox: Any, base: BaseUrl) -> None:
    """Make `document.baseURI` and `<base>.href` report absolute URLs.

    Example:
        ```python
        install_base_url(sandbox, BaseUrl(bridge.soup, document_url=request.final_url))
        ```
    """
    sandbox.expose("base_url", lambda: base.href)
    sandbox.expose("document_url", lambda: base.document_url)
    sandbox.evaluate(js_source("base_url"))
    sandbox.capabilities.claim("baseURI", owner="base_url")
    logger.debug("Effective base URL: %s", base.href)
