from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..execution.config import MIN_INTERVAL_MS, js_source
from ..sandbox.activity import ActivityTracker
from ..sandbox.metrics import NullMetrics
from ..sandbox.timers import TimerHandle, TimerKind, TimerRegistry

logger = logging.getLogger(__name__)

TIMER_GLOBALS = (
    "setTimeout",
    "clearTimeout",
    "setInterval",
    "clearInterval",
    "setImmediate",
    "clearImmediate",
    "queueMicrotask",
    "requestAnimationFrame",
    "cancelAnimationFrame",
    "requestIdleCallback",
    "cancelIdleCallback",
)

_KINDS = {kind.value: kind for kind in TimerKind}


class TimerShim:
    """Timer delegates backed by one `TimerRegistry` on the host event loop.

    Callbacks stay inside the sandbox, keyed by registry id; the host only arms
    and cancels handles. Every fire counts as async activity.

    Example:
        ```python
        timers = TimerShim(sandbox, tracker, loop=asyncio.get_running_loop())
        timers.install()
        ...
        timers.registry.clear_all()
        ```
    """

    def __init__(
        self,
        sandbox: Any,
        tracker: ActivityTracker,
        *,
        loop: asyncio.AbstractEventLoop,
        metrics: NullMetrics | None = None,
    ) -> None:
        self._sandbox = sandbox
        self._tracker = tracker
        self.registry = TimerRegistry(loop, self._fire, metrics=metrics, min_interval_ms=MIN_INTERVAL_MS)

    def install(self) -> None:
        """Expose the schedule/cancel host functions and define the timer globals.

        Example:
            ```python
            timers.install()
            ```
        """
        self._sandbox.expose("timer_schedule", self.schedule)
        self._sandbox.expose("timer_cancel", self.registry.cancel)
        self._sandbox.evaluate(js_source("timers"))
        self._sandbox.capabilities.claim(*TIMER_GLOBALS, owner="timers")

    def schedule(self, kind: str, delay_ms: float | None) -> int:
        timer_kind = _KINDS.get(str(kind))
        if timer_kind is None:
            logger.debug("Unknown timer kind %r", kind)
            return 0
        return self.registry.schedule(timer_kind, delay_ms)

    def _fire(self, handle: TimerHandle) -> None:
        if self._sandbox.closed:
            return
        self._tracker.note_async_activity()
        self._sandbox.run_callback("__swoop_timers.fire", handle.id)
