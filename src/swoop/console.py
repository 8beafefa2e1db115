from __future__ import annotations

import json
import logging
from typing import Any, Callable

from .budget import epoch_ms
from .execution.config import js_source
from .execution.types import ConsoleEntry

logger = logging.getLogger(__name__)
sandbox_console_logger = logging.getLogger("swoop.sandbox.console")

CONSOLE_LEVELS = ("debug", "info", "warn", "error", "log")
_LOGGING_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "log": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
_STANDARD_ERROR_FIELDS = frozenset({"name", "message", "stack"})


def format_error(name: str, message: str, stack: str | None = None, props: dict[str, Any] | None = None) -> str:
    """Render an Error as `"<Name>: <message>"`, its stack, and a `props:` line.

    Example:
        ```python
        text = format_error("Error", "boom", props={"code": 42})
        assert text == 'Error: boom\\nprops: {"code": 42}'
        ```
    """
    text = f"{name or 'Error'}: {message}"
    if stack:
        text = f"{text}\n{stack}"
    text = text.strip()
    extra = {k: v for k, v in (props or {}).items() if k not in _STANDARD_ERROR_FIELDS}
    if extra:
        text = f"{text}\nprops: {json.dumps(extra, default=str)}"
    return text


def format_console_arg(arg: Any) -> str:
    """Render one console argument descriptor sent from the sandbox.

    Example:
        ```python
        assert format_console_arg({"t": "s", "v": "hi"}) == "hi"
        ```
    """
    if not isinstance(arg, dict):
        return str(arg)
    if arg.get("t") == "e":
        return format_error(
            str(arg.get("name") or "Error"),
            str(arg.get("message") or ""),
            arg.get("stack") or None,
            arg.get("props") or None,
        )
    value = arg.get("v")
    return "[unstringifiable]" if value is None else str(value)


class ConsoleCapture:
    """Append-only log of sandbox console calls for one render call.

    Example:
        ```python
        capture = ConsoleCapture(forward=False)
        capture.record("log", ["hello", "world"])
        assert capture.entries[0].message == "hello world"
        ```
    """

    def __init__(self, *, forward: bool = False, clock: Callable[[], int] = epoch_ms) -> None:
        self.entries: list[ConsoleEntry] = []
        self._forward = forward
        self._clock = clock

    @property
    def forward(self) -> bool:
        return self._forward

    def record(self, level: str, args: list[str]) -> ConsoleEntry:
        """Append one entry; unknown levels are recorded as `log`.

        Example:
            ```python
            capture.record("debug", ["[fetch]", "https://example.com/api"])
            ```
        """
        normalized = level if level in CONSOLE_LEVELS else "log"
        strings = [str(a) for a in args]
        entry = ConsoleEntry(level=normalized, message=" ".join(strings), args=strings, time=self._clock())
        self.entries.append(entry)
        if self._forward:
            sandbox_console_logger.log(_LOGGING_LEVELS[normalized], "%s", entry.message)
        return entry

    def record_payload(self, level: str, payload: str) -> None:
        """Host entry point: decode JSON argument descriptors and record them.

        Example:
            ```python
            capture.record_payload("error", '[{"t": "e", "name": "Error", "message": "boom"}]')
            ```
        """
        try:
            raw_args = json.loads(payload) if payload else []
        except json.JSONDecodeError:
            raw_args = [{"t": "s", "v": payload}]
        if not isinstance(raw_args, list):
            raw_args = [raw_args]
        self.record(str(level), [format_console_arg(a) for a in raw_args])


def install_console(sandbox: Any, capture: ConsoleCapture) -> None:
    """Replace the sandbox console with one that records into `capture`.

    Example:
        ```python
        install_console(sandbox, ConsoleCapture(forward=options.forward_console))
        ```
    """
    sandbox.expose("console_record", capture.record_payload)
    sandbox.evaluate(js_source("console"))
    sandbox.capabilities.claim("console", owner="console")
    logger.debug("Console capture installed (forward=%s)", capture.forward)
