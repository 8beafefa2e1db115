from __future__ import annotations

import logging
from typing import Awaitable, Callable

from .execution.types import WaitResult

logger = logging.getLogger(__name__)


async def wait_for_settle(
    *,
    strategy: str,
    deadline_ms: float,
    idle_time_ms: float,
    poll_interval_ms: float,
    sleep: Callable[[float], Awaitable[None]],
    now: Callable[[], float],
    get_pending_fetches: Callable[[], int],
    get_pending_script_loads: Callable[[], int],
    get_last_async_activity_at: Callable[[], float],
) -> WaitResult:
    """Wait until the page settles or the deadline passes.

    `sleep` takes milliseconds; `now` and `deadline_ms` share one millisecond clock.
    The `timeout` strategy always sleeps out the whole deadline. The `networkidle`
    strategy polls every `poll_interval_ms` and settles once nothing is pending and
    the last async activity is at least `idle_time_ms` old. The deadline is never
    extended by activity.

    Example:
        ```python
        result = await wait_for_settle(
            strategy="networkidle",
            deadline_ms=monotonic_ms() + 3000,
            idle_time_ms=250,
            poll_interval_ms=25,
            sleep=lambda ms: asyncio.sleep(ms / 1000),
            now=monotonic_ms,
            get_pending_fetches=lambda: tracker.pending_fetches,
            get_pending_script_loads=lambda: tracker.pending_script_loads,
            get_last_async_activity_at=lambda: tracker.last_async_activity_at,
        )
        ```
    """
    if strategy == "timeout":
        await sleep(max(0.0, deadline_ms - now()))
        return WaitResult(timed_out=True)
    if strategy != "networkidle":
        raise ValueError(f"Unknown wait strategy: {strategy!r}")

    polls = 0
    while now() < deadline_ms:
        await sleep(min(poll_interval_ms, max(0.0, deadline_ms - now())))
        polls += 1
        current = now()
        if (
            get_pending_fetches() == 0
            and get_pending_script_loads() == 0
            and current - get_last_async_activity_at() >= idle_time_ms
        ):
            logger.debug("Settled after %d poll(s)", polls)
            return WaitResult(timed_out=False)
    logger.debug("Settle wait reached its deadline after %d poll(s)", polls)
    return WaitResult(timed_out=True)
