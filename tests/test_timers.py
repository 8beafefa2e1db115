from __future__ import annotations

import asyncio

from swoop.sandbox.metrics import Metrics
from swoop.sandbox.timers import TimerKind, TimerRegistry


def test_timeout_fires_once_and_leaves_registry() -> None:
    async def scenario() -> list[int]:
        fired: list[int] = []
        registry = TimerRegistry(asyncio.get_running_loop(), on_fire=lambda h: fired.append(h.id))
        timer_id = registry.schedule(TimerKind.TIMEOUT, 1)
        assert timer_id in registry
        await asyncio.sleep(0.02)
        assert timer_id not in registry
        return fired

    assert asyncio.run(scenario()) == [1]


def test_interval_repeats_until_cancelled() -> None:
    async def scenario() -> int:
        fired: list[int] = []
        registry = TimerRegistry(asyncio.get_running_loop(), on_fire=lambda h: fired.append(h.id))
        timer_id = registry.schedule(TimerKind.INTERVAL, 5)
        await asyncio.sleep(0.06)
        assert registry.cancel(timer_id) is True
        count = len(fired)
        await asyncio.sleep(0.03)
        assert len(fired) == count
        return count

    assert asyncio.run(scenario()) >= 2


def test_clear_all_prevents_pending_and_new_timers() -> None:
    async def scenario() -> tuple[int, list[int], int]:
        fired: list[int] = []
        registry = TimerRegistry(asyncio.get_running_loop(), on_fire=lambda h: fired.append(h.id))
        registry.schedule(TimerKind.TIMEOUT, 5)
        registry.schedule(TimerKind.INTERVAL, 5)
        registry.schedule(TimerKind.IMMEDIATE)
        cleared = registry.clear_all()
        await asyncio.sleep(0.03)
        return cleared, fired, registry.schedule(TimerKind.TIMEOUT, 0)

    cleared, fired, late_id = asyncio.run(scenario())
    assert cleared == 3
    assert fired == []
    assert late_id == 0


def test_invalid_delays_are_coerced_and_counted() -> None:
    async def scenario() -> Metrics:
        metrics = Metrics()
        registry = TimerRegistry(asyncio.get_running_loop(), on_fire=lambda h: None, metrics=metrics)
        registry.schedule(TimerKind.TIMEOUT, -5)
        registry.schedule(TimerKind.TIMEOUT, "abc")  # type: ignore[arg-type]
        registry.schedule(TimerKind.INTERVAL, 0)
        registry.clear_all()
        return metrics

    summary = asyncio.run(scenario()).summary()
    assert summary["timers"]["timeout"] == 2
    assert summary["timers"]["interval"] == 1
