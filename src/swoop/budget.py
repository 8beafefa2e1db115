from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


def monotonic_ms() -> float:
    """Return the monotonic clock in milliseconds.

    Example:
        ```python
        start = monotonic_ms()
        ```
    """
    return time.monotonic() * 1000.0


def epoch_ms() -> int:
    """Return wall-clock time as integer milliseconds since the epoch.

    Example:
        ```python
        stamp = epoch_ms()
        ```
    """
    return int(time.time() * 1000)


def effective_budget_ms(timeout_ms: int, budget_cap_ms: int) -> int:
    """Clamp a requested call timeout to the hard budget ceiling.

    Example:
        ```python
        assert effective_budget_ms(8000, 5000) == 5000
        ```
    """
    return max(0, min(int(timeout_ms), int(budget_cap_ms)))


@dataclass(frozen=True, slots=True)
class Deadline:
    """Absolute point on the monotonic millisecond clock shared by one call.

    Example:
        ```python
        deadline = Deadline.after(3000)
        if deadline.remaining_ms() < 100:
            ...
        ```
    """

    at_ms: float
    clock: Callable[[], float] = field(default=monotonic_ms, compare=False)

    @classmethod
    def after(cls, budget_ms: float, clock: Callable[[], float] = monotonic_ms) -> "Deadline":
        """Create a deadline `budget_ms` from now.

        Example:
            ```python
            deadline = Deadline.after(250)
            ```
        """
        return cls(at_ms=clock() + max(0.0, float(budget_ms)), clock=clock)

    def remaining_ms(self) -> float:
        """Return milliseconds left, never negative.

        Example:
            ```python
            left = deadline.remaining_ms()
            ```
        """
        return max(0.0, self.at_ms - self.clock())

    def remaining_seconds(self) -> float:
        """Return seconds left, never negative.

        Example:
            ```python
            await asyncio.wait_for(task, deadline.remaining_seconds())
            ```
        """
        return self.remaining_ms() / 1000.0

    @property
    def expired(self) -> bool:
        return self.remaining_ms() <= 0.0
