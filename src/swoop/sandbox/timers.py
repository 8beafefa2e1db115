from __future__ import annotations

import asyncio
import enum
import itertools
import logging
from dataclasses import dataclass
from typing import Callable

from .metrics import NullMetrics

logger = logging.getLogger(__name__)


class TimerKind(enum.Enum):
    TIMEOUT = "timeout"
    INTERVAL = "interval"
    IMMEDIATE = "immediate"


@dataclass(slots=True)
class TimerHandle:
    """One scheduled sandbox callback, whatever its kind.

    Example:
        ```python
        handle = TimerHandle(kind=TimerKind.TIMEOUT, id=1, delay_ms=10.0, native=None)
        ```
    """

    kind: TimerKind
    id: int
    delay_ms: float
    native: asyncio.TimerHandle | asyncio.Handle | None = None


class TimerRegistry:
    """Every timer, interval and immediate created by the sandbox during one call.

    A handle leaves the registry when it fires (unless it is an interval), when it is
    cleared, or in `clear_all` during teardown. Nothing scheduled here can fire after
    `clear_all` returns.

    Example:
        ```python
        registry = TimerRegistry(loop, on_fire=lambda handle: print(handle.id))
        timer_id = registry.schedule(TimerKind.TIMEOUT, 10)
        registry.clear_all()
        ```
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_fire: Callable[[TimerHandle], None],
        *,
        metrics: NullMetrics | None = None,
        min_interval_ms: float = 4.0,
    ) -> None:
        self._loop = loop
        self._on_fire = on_fire
        self._metrics = metrics or NullMetrics()
        self._min_interval_ms = min_interval_ms
        self._handles: dict[int, TimerHandle] = {}
        self._ids = itertools.count(1)
        self._closed = False

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, timer_id: object) -> bool:
        return timer_id in self._handles

    def schedule(self, kind: TimerKind, delay_ms: float | None = 0) -> int:
        """Register a new handle and arm it on the host loop; return its id.

        Example:
            ```python
            timer_id = registry.schedule(TimerKind.INTERVAL, 100)
            ```
        """
        if self._closed:
            return 0
        delay = _coerce_delay(delay_ms)
        if kind is TimerKind.INTERVAL:
            delay = max(delay, self._min_interval_ms)
        if kind is TimerKind.IMMEDIATE:
            delay = 0.0
        handle = TimerHandle(kind=kind, id=next(self._ids), delay_ms=delay)
        self._handles[handle.id] = handle
        self._arm(handle)
        self._metrics.count_timer(kind.value)
        return handle.id

    def cancel(self, timer_id: int | None) -> bool:
        """Cancel and drop one handle; unknown ids are ignored.

        Example:
            ```python
            registry.cancel(timer_id)
            ```
        """
        if timer_id is None:
            return False
        handle = self._handles.pop(int(timer_id), None)
        if handle is None:
            return False
        if handle.native is not None:
            handle.native.cancel()
        return True

    def clear_all(self) -> int:
        """Cancel every registered handle and refuse new ones; return how many were live.

        Example:
            ```python
            leaked = registry.clear_all()
            ```
        """
        self._closed = True
        count = len(self._handles)
        for handle in list(self._handles.values()):
            if handle.native is not None:
                handle.native.cancel()
        self._handles.clear()
        if count:
            logger.debug("Cleared %d pending timer handle(s) at teardown", count)
        return count

    def _arm(self, handle: TimerHandle) -> None:
        if handle.kind is TimerKind.IMMEDIATE or handle.delay_ms <= 0:
            handle.native = self._loop.call_soon(self._fire, handle.id)
        else:
            handle.native = self._loop.call_later(handle.delay_ms / 1000.0, self._fire, handle.id)

    def _fire(self, timer_id: int) -> None:
        handle = self._handles.get(timer_id)
        if handle is None or self._closed:
            return
        if handle.kind is TimerKind.INTERVAL:
            self._arm(handle)
        else:
            del self._handles[timer_id]
        self._on_fire(handle)


def _coerce_delay(delay_ms: float | None) -> float:
    """Normalize a JavaScript delay argument the way browsers do.

    Example:
        ```python
        assert _coerce_delay(None) == 0.0
        ```
    """
    try:
        delay = float(delay_ms or 0)
    except (TypeError, ValueError):
        return 0.0
    if delay != delay or delay < 0:
        return 0.0
    return delay
