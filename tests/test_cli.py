from __future__ import annotations

from pathlib import Path

import pytest

from swoop import RenderOptions, RenderResult, SwoopTimeoutError, Timing
from swoop.execution.types import ConsoleEntry, ScriptError
from swr import cli


class _Calls:
    def __init__(self) -> None:
        self.render: list[tuple[str, RenderOptions]] = []
        self.render_html: list[tuple[str, str, RenderOptions]] = []


def _result(url: str) -> RenderResult:
    return RenderResult(
        url=url,
        html="<html><body><p>rendered</p></body></html>",
        console=[ConsoleEntry(level="log", message="booted", args=["booted"])],
        errors=[ScriptError(stage="script", message="ReferenceError: x is not defined", script_url=url + "app.js")],
        timing=Timing(start=1, end=43, duration=42),
    )


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> _Calls:
    recorded = _Calls()

    def fake_render(url: str, options: RenderOptions | None = None) -> RenderResult:
        recorded.render.append((url, options))
        return _result(url)

    def fake_render_html(html: str, url: str, options: RenderOptions | None = None) -> RenderResult:
        recorded.render_html.append((html, url, options))
        return _result(url)

    monkeypatch.setattr(cli, "render", fake_render)
    monkeypatch.setattr(cli, "render_html", fake_render_html)
    return recorded


def test_cli_render_prints_snapshot(calls: _Calls, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["render", "https://example.com/"])
    output = capsys.readouterr().out
    assert code == 0
    assert "<p>rendered</p>" in output
    assert calls.render[0][0] == "https://example.com/"


def test_cli_render_maps_flags_to_options(calls: _Calls) -> None:
    code = cli.main(
        [
            "render",
            "https://example.com/",
            "--timeout",
            "1200",
            "--wait-strategy",
            "timeout",
            "--max-scripts",
            "4",
            "--no-scripts",
            "--no-permissive",
            "--debug-probes",
        ]
    )
    options = calls.render[0][1]
    assert code == 0
    assert options.timeout == 1200
    assert options.wait_strategy == "timeout"
    assert options.max_scripts == 4
    assert options.execute_scripts is False
    assert options.permissive_shims is False
    assert options.debug_probes is True
    assert options.debug_fetch is False


def test_cli_render_file_writes_output(calls: _Calls, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    page = tmp_path / "page.html"
    page.write_text("<div id='app'></div>", encoding="utf-8")
    target = tmp_path / "out.html"
    code = cli.main(["render", "https://example.com/app/", "--file", str(page), "--output", str(target)])
    output = capsys.readouterr().out
    assert code == 0
    assert calls.render_html[0][:2] == ("<div id='app'></div>", "https://example.com/app/")
    assert target.read_text(encoding="utf-8") == "<html><body><p>rendered</p></body></html>"
    assert "Wrote snapshot" in output


def test_cli_render_report_goes_to_stderr(calls: _Calls, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["render", "https://example.com/", "--report"])
    captured = capsys.readouterr()
    assert code == 0
    assert "ReferenceError" in captured.err
    assert "booted" in captured.err
    assert "ReferenceError" not in captured.out


def test_cli_render_reports_swoop_errors(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    def failing_render(url: str, options: RenderOptions | None = None) -> RenderResult:
        raise SwoopTimeoutError("Timed out fetching https://example.com/ after 3000ms")

    monkeypatch.setattr(cli, "render", failing_render)
    code = cli.main(["render", "https://example.com/"])
    output = capsys.readouterr().out
    assert code == 1
    assert "SwoopTimeoutError" in output


def test_cli_options_shows_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "swoop.toml"
    config.write_text("[options]\nidle_time = 500\n", encoding="utf-8")
    code = cli.main(["options", "--config", str(config)])
    output = capsys.readouterr().out
    assert code == 0
    assert "idle_time" in output
    assert "500" in output


def test_cli_invalid_config_returns_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "swoop.toml"
    config.write_text("[options]\nwait_strategy = \"load\"\n", encoding="utf-8")
    code = cli.main(["render", "https://example.com/", "--config", str(config)])
    output = capsys.readouterr().out
    assert code == 2
    assert "Invalid options" in output


def test_cli_rejects_unknown_wait_strategy(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["render", "https://example.com/", "--wait-strategy", "load"])
    assert exc.value.code == 2
