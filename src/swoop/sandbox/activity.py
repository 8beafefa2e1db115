from __future__ import annotations

import logging
from typing import Callable

from ..budget import monotonic_ms

logger = logging.getLogger(__name__)


class ActivityTracker:
    """Bookkeeping of pending async work for one call.

    Counters never go below zero; `last_async_activity_at` is a monotonic millisecond
    timestamp refreshed by every observed async event.

    Example:
        ```python
        tracker = ActivityTracker()
        tracker.begin_fetch()
        tracker.end_fetch()
        assert tracker.is_idle(idle_time_ms=0)
        ```
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms) -> None:
        self._clock = clock
        self.pending_fetches = 0
        self.pending_script_loads = 0
        self.last_async_activity_at = clock()

    def note_async_activity(self) -> None:
        """Record that an async event just happened.

        Example:
            ```python
            tracker.note_async_activity()
            ```
        """
        self.last_async_activity_at = self._clock()

    def begin_fetch(self) -> None:
        """Count one fetch as in flight.

        Example:
            ```python
            tracker.begin_fetch()
            ```
        """
        self.pending_fetches += 1
        self.note_async_activity()

    def end_fetch(self) -> None:
        """Release one in-flight fetch.

        Example:
            ```python
            tracker.end_fetch()
            ```
        """
        if self.pending_fetches == 0:
            logger.debug("end_fetch called with no pending fetches")
        self.pending_fetches = max(0, self.pending_fetches - 1)
        self.note_async_activity()

    def begin_script_load(self) -> None:
        """Count one script or module load as in flight.

        Example:
            ```python
            tracker.begin_script_load()
            ```
        """
        self.pending_script_loads += 1
        self.note_async_activity()

    def end_script_load(self) -> None:
        """Release one in-flight script or module load.

        Example:
            ```python
            tracker.end_script_load()
            ```
        """
        if self.pending_script_loads == 0:
            logger.debug("end_script_load called with no pending script loads")
        self.pending_script_loads = max(0, self.pending_script_loads - 1)
        self.note_async_activity()

    def idle_for_ms(self) -> float:
        return self._clock() - self.last_async_activity_at

    def is_idle(self, idle_time_ms: float) -> bool:
        """Return True when nothing is pending and the quiet window has elapsed.

        Example:
            ```python
            settled = tracker.is_idle(idle_time_ms=250)
            ```
        """
        return (
            self.pending_fetches == 0
            and self.pending_script_loads == 0
            and self.idle_for_ms() >= idle_time_ms
        )
