from __future__ import annotations

from typing import Any

from ..execution.config import js_source


class CookieJar:
    """Append-only `document.cookie` store; attributes are not interpreted.

    Example:
        ```python
        jar = CookieJar()
        jar.write("a=1")
        jar.write("b=2; path=/")
        assert jar.read() == "a=1; b=2; path=/"
        ```
    """

    def __init__(self) -> None:
        self._value = ""

    def read(self) -> str:
        return self._value

    def write(self, value: str) -> None:
        """Append one `document.cookie = ...` assignment; empty writes are ignored.

        Example:
            ```python
            jar.write("session=abc")
            ```
        """
        if not isinstance(value, str) or not value:
            return
        self._value = f"{self._value}; {value}" if self._value else value


def install_cookies(sandbox: Any, jar: CookieJar) -> None:
    """Back `document.cookie` with `jar`.

    Example:
        ```python
        install_cookies(sandbox, CookieJar())
        ```
    """
    sandbox.expose("cookie_read", jar.read)
    sandbox.expose("cookie_write", jar.write)
    sandbox.evaluate(js_source("cookies"))
    sandbox.capabilities.claim("document.cookie", owner="cookies")
