from __future__ import annotations

import pytest

from swoop.budget import Deadline
from swoop.console import ConsoleCapture, install_console
from swoop.dom import DomBridge
from swoop.errors import SwoopExecutionError
from swoop.lifecycle import synthesize_lifecycle
from swoop.sandbox.context import Sandbox

URL = "https://example.com/"


@pytest.fixture
def sandbox():
    box = Sandbox(deadline=Deadline.after(2000))
    yield box
    box.close()


def test_exposed_host_functions_are_callable(sandbox) -> None:
    sandbox.expose("double", lambda value: value * 2)
    sandbox.expose("pair", lambda: {"a": 1})

    assert sandbox.evaluate("__swoop_host.double(21)") == 42
    assert sandbox.evaluate("JSON.parse(__swoop_host.pair()).a") == 1
    assert sandbox.evaluate("typeof __swoop_host_double") == "undefined"


def test_failing_host_function_returns_null(sandbox) -> None:
    def explode() -> None:
        raise RuntimeError("host failure")

    sandbox.expose("explode", explode)

    assert sandbox.evaluate("__swoop_host.explode() === null") is True


def test_thrown_errors_become_execution_errors(sandbox) -> None:
    with pytest.raises(SwoopExecutionError, match="boom") as info:
        sandbox.evaluate("throw new Error('boom')")

    assert info.value.message.startswith("Error: boom")


def test_runaway_loop_is_cut_off_and_the_sandbox_stays_usable(sandbox) -> None:
    with pytest.raises(SwoopExecutionError, match="time budget") as info:
        sandbox.evaluate_script("while (true) {}", time_limit_ms=50)

    assert info.value.message.startswith("TimeoutError")
    assert sandbox.evaluate_script("var n = 0; for (var i = 0; i < 5000; i++) { n++; } n") == 5000


def test_caught_budget_error_does_not_resume_the_loop(sandbox) -> None:
    with pytest.raises(SwoopExecutionError, match="time budget"):
        sandbox.evaluate_script("for (;;) { try { while (true) {} } catch (e) {} }", time_limit_ms=50)


def test_guarded_loops_can_call_host_functions(sandbox) -> None:
    sandbox.expose("double", lambda value: value * 2)

    assert sandbox.evaluate_script("var t = 0; for (var i = 0; i < 3; i++) { t += __swoop_host.double(i); } t") == 6


def test_unparseable_rewrite_runs_the_original_source(sandbox) -> None:
    assert sandbox.evaluate_script("var o = { while(a) { return a * 2; } }; o.while(3)") == 6


def test_string_timer_handlers_are_guarded(sandbox) -> None:
    assert sandbox.evaluate("__swoop_guard.source('while (x) {}')") == "while (__swoop_tick() && (x)) {}"
    assert sandbox.evaluate("__swoop_guard.source('var o = { while(a) {} }')") == "var o = { while(a) {} }"


def test_microtasks_drain_explicitly() -> None:
    drained: list[int] = []
    box = Sandbox(deadline=Deadline.after(2000), on_microtasks=drained.append)
    box.evaluate("var done = false; Promise.resolve().then(function () { done = true; });")

    assert box.evaluate("done") is False
    assert box.drain_microtasks() >= 1
    assert box.evaluate("done") is True
    assert drained and drained[0] >= 1
    box.close()


def test_closed_sandbox_rejects_work(sandbox) -> None:
    sandbox.close()

    assert sandbox.closed
    assert sandbox.run_callback("anything") is False
    assert sandbox.drain_microtasks() == 0
    with pytest.raises(SwoopExecutionError, match="closed"):
        sandbox.evaluate("1")


def test_console_records_errors_with_props(sandbox) -> None:
    capture = ConsoleCapture()
    install_console(sandbox, capture)

    sandbox.evaluate("var e = new Error('bad'); e.code = 7; console.error('failed:', e); console.info(1, true)")

    error, info = capture.entries
    assert error.level == "error"
    assert error.args[0] == "failed:"
    assert error.args[1].startswith("Error: bad")
    assert error.args[1].endswith('props: {"code": 7}')
    assert info.message == "1 true"
    assert sandbox.capabilities.owner("console") == "console"


def test_lifecycle_completes_and_fires_load_once(sandbox) -> None:
    bridge = DomBridge("<body></body>", document_url=URL)
    bridge.install(sandbox)
    sandbox.evaluate(
        "var events = [];"
        "document.addEventListener('readystatechange', function () { events.push(document.readyState); });"
        "document.addEventListener('DOMContentLoaded', function () { events.push('dcl'); });"
        "window.addEventListener('load', function () { events.push('load'); throw new Error('listener'); });"
    )

    failed = synthesize_lifecycle(sandbox, timeout_ms=500)

    assert failed == []
    assert sandbox.evaluate("document.readyState") == "complete"
    assert sandbox.evaluate("events.join(',')") == "loading,interactive,dcl,complete,load"
