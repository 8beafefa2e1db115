from __future__ import annotations

import asyncio

import pytest

from swoop.wait import wait_for_settle


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    async def sleep(self, ms: float) -> None:
        self.sleeps.append(ms)
        self.now += ms

    def __call__(self) -> float:
        return self.now


def _wait(clock: _FakeClock, strategy: str, **overrides):
    kwargs = {
        "strategy": strategy,
        "deadline_ms": 1000.0,
        "idle_time_ms": 250.0,
        "poll_interval_ms": 25.0,
        "sleep": clock.sleep,
        "now": clock,
        "get_pending_fetches": lambda: 0,
        "get_pending_script_loads": lambda: 0,
        "get_last_async_activity_at": lambda: 0.0,
    }
    kwargs.update(overrides)
    return asyncio.run(wait_for_settle(**kwargs))


def test_timeout_strategy_sleeps_until_deadline() -> None:
    clock = _FakeClock()
    result = _wait(clock, "timeout")
    assert result.timed_out is True
    assert clock.now == 1000.0
    assert clock.sleeps == [1000.0]


def test_networkidle_settles_after_quiet_window() -> None:
    clock = _FakeClock()
    result = _wait(clock, "networkidle")
    assert result.timed_out is False
    assert clock.now == 250.0
    assert all(ms == 25.0 for ms in clock.sleeps)


def test_networkidle_times_out_with_pending_fetch() -> None:
    clock = _FakeClock()
    result = _wait(clock, "networkidle", get_pending_fetches=lambda: 1)
    assert result.timed_out is True
    assert clock.now == 1000.0


def test_networkidle_times_out_with_pending_script_load() -> None:
    clock = _FakeClock()
    result = _wait(clock, "networkidle", get_pending_script_loads=lambda: 2)
    assert result.timed_out is True
    assert clock.now <= 1000.0


def test_late_activity_restarts_quiet_window() -> None:
    clock = _FakeClock()

    def last_activity() -> float:
        return 200.0 if clock.now >= 200.0 else 0.0

    result = _wait(clock, "networkidle", get_last_async_activity_at=last_activity)
    assert result.timed_out is False
    assert clock.now == 450.0


def test_deadline_is_never_extended_by_activity() -> None:
    clock = _FakeClock()
    result = _wait(
        clock,
        "networkidle",
        deadline_ms=110.0,
        get_last_async_activity_at=lambda: clock.now,
    )
    assert result.timed_out is True
    assert clock.now == 110.0
    assert clock.sleeps[-1] == 10.0


def test_unknown_strategy_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown wait strategy"):
        _wait(_FakeClock(), "load")
