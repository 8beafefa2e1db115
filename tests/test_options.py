from __future__ import annotations

from pathlib import Path

import pytest

from swoop import RenderOptions
from swoop.budget import Deadline, effective_budget_ms


def test_defaults_come_from_bundled_toml() -> None:
    options = RenderOptions()
    assert options.execute_scripts is True
    assert options.timeout == 3000
    assert options.wait_strategy == "networkidle"
    assert options.idle_time == 250
    assert options.poll_interval == 25
    assert options.max_scripts == 64
    assert options.engine == "quickjs"


def test_total_budget_is_clamped_to_cap() -> None:
    assert RenderOptions(timeout=9000, budget_cap=5000).total_budget_ms == 5000
    assert RenderOptions(timeout=1200).total_budget_ms == 1200
    assert effective_budget_ms(-5, 100) == 0


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"wait_strategy": "load"}, "wait_strategy"),
        ({"timeout": -1}, "timeout"),
        ({"poll_interval": 0}, "poll_interval"),
        ({"max_scripts": "10"}, "max_scripts"),
        ({"memory_limit_mb": 0}, "memory_limit_mb"),
    ],
)
def test_invalid_options_raise_value_error(overrides: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        RenderOptions(**overrides)


def test_from_file_reads_options_table_and_applies_overrides(tmp_path: Path) -> None:
    config = tmp_path / "swoop.toml"
    config.write_text(
        "[options]\ntimeout = 1500\nwait_strategy = \"timeout\"\nmax_scripts = 3\n",
        encoding="utf-8",
    )
    options = RenderOptions.from_file(str(config), max_scripts=7)
    assert options.timeout == 1500
    assert options.wait_strategy == "timeout"
    assert options.max_scripts == 7
    assert options.config_path == str(config)


def test_from_file_rejects_unknown_keys(tmp_path: Path) -> None:
    config = tmp_path / "swoop.toml"
    config.write_text("[options]\nheadless = true\n", encoding="utf-8")
    with pytest.raises(ValueError, match="headless"):
        RenderOptions.from_file(str(config))


def test_deadline_remaining_never_negative() -> None:
    now = [1000.0]
    deadline = Deadline.after(50, clock=lambda: now[0])
    assert deadline.remaining_ms() == 50
    now[0] = 2000.0
    assert deadline.remaining_ms() == 0
    assert deadline.expired
