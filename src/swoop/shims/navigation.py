from __future__ import annotations

import json
import logging
from typing import Any, Callable

from ..execution.config import js_source
from ..fetching import resolve_url
from ..sandbox.metrics import NullMetrics
from .base_url import BaseUrl
from .environment import parse_url

logger = logging.getLogger(__name__)


class NavigationState:
    """Current URL and history state behind the sandbox `location` and `history`.

    Nothing is ever reloaded. `on_navigate(href)` is called once for every URL
    change made through `location`; `on_pop_state(state)` is called for every
    `history.pushState`.

    Example:
        ```python
        seen = []
        nav = NavigationState("https://example.com/a", on_navigate=seen.append)
        nav.navigate("/b")
        assert nav.href == "https://example.com/b" and seen == [nav.href]
        ```
    """

    def __init__(
        self,
        url: str,
        *,
        on_navigate: Callable[[str], None] | None = None,
        on_pop_state: Callable[[Any], None] | None = None,
        base: BaseUrl | None = None,
        metrics: NullMetrics | None = None,
    ) -> None:
        self.href = url
        self.state_json = "null"
        self.length = 1
        self._on_navigate = on_navigate
        self._on_pop_state = on_pop_state
        self._base = base
        self._metrics = metrics or NullMetrics()

    @property
    def state(self) -> Any:
        return json.loads(self.state_json)

    def _set_href(self, href: str) -> bool:
        parts = parse_url(href, self.href)
        if parts is None:
            logger.debug("Ignoring navigation to invalid URL %r", href)
            return False
        self.href = parts["href"]
        if self._base is not None:
            self._base.document_url = self.href
        return True

    def navigate(self, href: str, method: str = "assign") -> str:
        """Resolve `href` against the current URL, adopt it, and report the navigation.

        Example:
            ```python
            nav.navigate("?page=2", "search")
            ```
        """
        if self._set_href(str(href)):
            self._metrics.count_navigation(method, self.href)
            logger.debug("location.%s -> %s", method, self.href)
            if self._on_navigate is not None:
                self._on_navigate(self.href)
        return self.href

    def push_state(self, state_json: str | None, url: str | None = None, *, replace: bool = False) -> str:
        """Apply `history.pushState` / `replaceState`; only a push reports pop-state.

        Example:
            ```python
            nav.push_state('{"page": 2}', "/c")
            ```
        """
        self.state_json = state_json if state_json is not None else "null"
        if url is not None:
            self._set_href(resolve_url(str(url), self.href))
        method = "replaceState" if replace else "pushState"
        self._metrics.count_navigation(method, self.href)
        if not replace:
            self.length += 1
            if self._on_pop_state is not None:
                self._on_pop_state(self.state)
        return self.href

    def install(self, sandbox: Any) -> None:
        """Define `location`, `document.location` and `history` in the sandbox.

        Example:
            ```python
            nav.install(sandbox)
            ```
        """
        sandbox.expose("nav_href", lambda: self.href)
        sandbox.expose("nav_navigate", self.navigate)
        sandbox.expose("nav_state", lambda: self.state_json)
        sandbox.expose("nav_length", lambda: self.length)
        sandbox.expose(
            "nav_push",
            lambda state_json, url, replace: self.push_state(state_json, url, replace=bool(replace)),
        )
        sandbox.evaluate(js_source("navigation"))
        sandbox.capabilities.claim("location", "history", owner="navigation")
