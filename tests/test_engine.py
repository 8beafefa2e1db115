from __future__ import annotations

import asyncio
import json
import logging

import pytest

from swoop import RenderOptions, render_html, render_html_async
from swoop.budget import Deadline
from swoop.console import ConsoleCapture
from swoop.errors import SwoopEnvironmentError
from swoop.execution.quickjs_engine import _Session
from swoop.fetching import HostResponse
from swoop.sandbox.activity import ActivityTracker
from swoop.sandbox.metrics import NullMetrics
from swoop.shims.navigation import NavigationState
from swoop.shims.probes import PROBE_MARKER

URL = "https://example.com/app/"


def _options(**overrides) -> RenderOptions:
    values = {"timeout": 2000, "idle_time": 60, "poll_interval": 5}
    values.update(overrides)
    return RenderOptions(**values)


def _site(files: dict[str, str], requested: list[str] | None = None):
    async def host_fetch(url, init):
        if requested is not None:
            requested.append(url)
        if url in files:
            return HostResponse(url=url, status=200, status_text="OK", body=files[url].encode("utf-8"))
        return HostResponse(url=url, status=404, status_text="Not Found")

    return host_fetch


def test_base_element_sets_base_uri_and_href() -> None:
    html = (
        "<head><base href='/beta/'></head><body><script>"
        "document.body.setAttribute('data-base', document.baseURI + '|' + document.querySelector('base').href);"
        "</script></body>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert 'data-base="https://example.com/beta/|https://example.com/beta/"' in result.html


def test_navigation_state_reports_each_change_once() -> None:
    navigated: list[str] = []
    popped: list[object] = []
    nav = NavigationState(URL, on_navigate=navigated.append, on_pop_state=popped.append)

    nav.navigate("/b", "pathname")
    nav.push_state(json.dumps({"page": 2}), "/c")
    nav.push_state(json.dumps({"page": 3}), None, replace=True)

    assert navigated == ["https://example.com/b"]
    assert popped == [{"page": 2}]
    assert nav.href == "https://example.com/c"
    assert nav.state == {"page": 3}
    assert nav.length == 2


def test_location_and_history_changes_reach_the_navigation_hooks(caplog) -> None:
    html = (
        "<body><script>"
        "location.pathname = '/b';"
        "history.pushState({page: 2}, '', '/c');"
        "document.body.setAttribute('data-href', location.href);"
        "</script></body>"
    )

    with caplog.at_level(logging.DEBUG, logger="swoop.execution.quickjs_engine"):
        result = render_html(html, URL, _options(), _site({}))

    navigations = [message for message in caplog.messages if message.startswith("Page navigated to")]
    assert navigations == ["Page navigated to https://example.com/b (not followed)"]
    assert "history.pushState with state {'page': 2}" in caplog.messages
    assert 'data-href="https://example.com/c"' in result.html


def test_xhr_get_delivers_response_text() -> None:
    files = {"https://example.com/api/user": json.dumps({"name": "ada"})}
    html = (
        "<body><script>"
        "var xhr = new XMLHttpRequest();"
        "xhr.open('GET', '/api/user');"
        "xhr.onload = function () {"
        "  var data = JSON.parse(xhr.responseText);"
        "  document.body.setAttribute('data-xhr', xhr.status + ':' + xhr.readyState + ':' + data.name);"
        "};"
        "xhr.send();"
        "</script></body>"
    )

    result = render_html(html, URL, _options(), _site(files))

    assert result.errors == []
    assert 'data-xhr="200:4:ada"' in result.html


def test_permissive_fallback_keeps_storage_and_zeroes_layout() -> None:
    html = (
        "<body><script>"
        "localStorage.setItem('kept', 'yes');"
        "var r = document.body.getBoundingClientRect();"
        "document.body.setAttribute('data-rect', [r.x, r.y, r.width, r.height, r.top, r.left, r.right, r.bottom].join(','));"
        "document.body.setAttribute('data-storage', localStorage.getItem('kept') + ':' + typeof scrollTo);"
        "</script></body>"
    )

    result = render_html(html, URL, _options(permissive_shims=True), _site({}))

    assert 'data-rect="0,0,0,0,0,0,0,0"' in result.html
    assert 'data-storage="yes:function"' in result.html


def test_no_timer_or_fetch_outlives_the_call() -> None:
    requested: list[str] = []
    html = "<body><script>setInterval(function () { fetch('/tick'); }, 10);</script></body>"

    async def main() -> tuple[int, int]:
        await render_html_async(html, URL, _options(timeout=200, wait_strategy="timeout"), _site({}, requested))
        after_call = len(requested)
        await asyncio.sleep(0.1)
        assert asyncio.all_tasks() == {asyncio.current_task()}
        return after_call, len(requested)

    after_call, later = asyncio.run(main())

    assert after_call >= 1
    assert later == after_call


def test_debug_probes_record_a_summary_entry() -> None:
    html = "<body><div id='app'></div><script>document.getElementById('app').appendChild(document.createElement('p'));</script></body>"

    result = render_html(html, URL, _options(debug_probes=True), _site({}))

    summaries = [entry for entry in result.console if entry.message.startswith(PROBE_MARKER)]
    assert len(summaries) == 1
    assert summaries[0].level == "debug"
    assert "appendChild" in summaries[0].message


def test_session_components_require_bootstrap() -> None:
    session = _Session(
        deadline=Deadline.after(100),
        tracker=ActivityTracker(),
        capture=ConsoleCapture(),
        metrics=NullMetrics(),
    )

    with pytest.raises(SwoopEnvironmentError, match="before bootstrap"):
        session.components()
    with pytest.raises(SwoopEnvironmentError, match="before shim installation"):
        session.loaders()
