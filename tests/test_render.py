from __future__ import annotations

import json

import pytest

from swoop import RenderOptions, render, render_html
from swoop.errors import HostFetchError, SwoopEnvironmentError
from swoop.fetching import HostResponse

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


def test_inline_script_mutates_snapshot() -> None:
    html = "<div id='app'></div><script>document.getElementById('app').textContent = 'hi';</script>"

    result = render_html(html, URL, _options(), _site({}))

    assert '<div id="app">hi</div>' in result.html
    assert result.url == URL
    assert result.errors == []
    assert result.timing is not None
    assert result.timing.duration == result.timing.end - result.timing.start


def test_script_error_is_recorded_and_later_scripts_run() -> None:
    html = (
        "<div id='app'></div>"
        "<script>throw new Error('boom');</script>"
        "<script>document.getElementById('app').textContent = 'still ran';</script>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert "still ran" in result.html
    assert len(result.errors) == 1
    assert result.errors[0].stage == "script"
    assert "boom" in result.errors[0].message
    assert result.errors[0].script_url is None


def test_external_script_resolves_against_document_url() -> None:
    requested: list[str] = []
    files = {"https://example.com/app/main.js": "document.body.setAttribute('data-main', 'yes');"}
    html = "<body><script src='main.js'></script></body>"

    result = render_html(html, URL, _options(), _site(files, requested))

    assert 'data-main="yes"' in result.html
    assert requested == ["https://example.com/app/main.js"]


def test_failed_external_script_is_reported_with_its_url() -> None:
    html = "<p id='p'></p><script src='/missing.js'></script><script>document.getElementById('p').textContent = 'after';</script>"

    result = render_html(html, URL, _options(), _site({}))

    assert "after" in result.html
    assert result.errors[0].script_url == "https://example.com/missing.js"
    assert "404" in result.errors[0].message


def test_max_scripts_limits_execution() -> None:
    html = (
        "<body>"
        "<script>document.body.setAttribute('data-one', '1');</script>"
        "<script>document.body.setAttribute('data-two', '2');</script>"
        "</body>"
    )

    result = render_html(html, URL, _options(max_scripts=1), _site({}))

    assert 'data-one="1"' in result.html
    assert "data-two" not in result.html


def test_execute_scripts_false_returns_parsed_document() -> None:
    html = "<div id='app'></div><script>document.getElementById('app').textContent = 'hi';</script>"

    result = render_html(html, URL, _options(execute_scripts=False), _site({}))

    assert '<div id="app"></div>' in result.html
    assert result.errors == []


def test_timers_fire_before_the_page_settles() -> None:
    html = (
        "<div id='app'></div>"
        "<script>setTimeout(function () { document.getElementById('app').textContent = 'later'; }, 5);</script>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert '<div id="app">later</div>' in result.html


def test_sandbox_fetch_goes_through_host_fetch() -> None:
    files = {"https://example.com/api/items": json.dumps({"items": ["a", "b"]})}
    html = (
        "<ul id='list'></ul><script>"
        "fetch('/api/items').then(function (r) { return r.json(); }).then(function (data) {"
        "  var list = document.getElementById('list');"
        "  data.items.forEach(function (item) {"
        "    var li = document.createElement('li'); li.textContent = item; list.appendChild(li);"
        "  });"
        "});"
        "</script>"
    )

    result = render_html(html, URL, _options(), _site(files))

    assert '<ul id="list"><li>a</li><li>b</li></ul>' in result.html


def test_console_calls_are_captured() -> None:
    html = "<script>console.log('hello', 42); console.warn('careful');</script>"

    result = render_html(html, URL, _options(), _site({}))

    messages = [(entry.level, entry.message) for entry in result.console]
    assert ("log", "hello 42") in messages
    assert ("warn", "careful") in messages


def test_lifecycle_events_fire_once_and_ready_state_completes() -> None:
    html = (
        "<body><script>"
        "var seen = [];"
        "document.addEventListener('DOMContentLoaded', function () { seen.push('dcl'); });"
        "addEventListener('load', function () {"
        "  seen.push('load');"
        "  document.body.setAttribute('data-seen', seen.join(',') + ':' + document.readyState);"
        "});"
        "</script></body>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert 'data-seen="dcl,load:complete"' in result.html


def test_modules_evaluate_dependencies_first() -> None:
    files = {
        "https://example.com/app/main.js": (
            "import { label } from './dep.js';\n"
            "document.body.setAttribute('data-order', window.order.concat('main').join(','));\n"
            "document.body.setAttribute('data-label', label);\n"
        ),
        "https://example.com/app/dep.js": (
            "window.order = (window.order || []).concat('dep');\n"
            "export const label = 'from dep';\n"
        ),
    }
    html = "<body><script type='module' src='main.js'></script></body>"

    result = render_html(html, URL, _options(), _site(files))

    assert result.errors == []
    assert 'data-order="dep,main"' in result.html
    assert 'data-label="from dep"' in result.html


def test_inline_module_runs_after_classic_scripts() -> None:
    html = (
        "<body>"
        "<script type='module'>document.body.setAttribute('data-seen', String(window.classic));</script>"
        "<script>window.classic = 'ran';</script>"
        "</body>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert 'data-seen="ran"' in result.html


def test_dynamic_script_loads_and_fires_load_event() -> None:
    files = {"https://example.com/app/late.js": "window.lateRan = true;"}
    html = (
        "<body><script>"
        "var s = document.createElement('script');"
        "s.src = 'late.js';"
        "s.onload = function () { document.body.setAttribute('data-late', String(window.lateRan)); };"
        "document.head.appendChild(s);"
        "</script></body>"
    )

    result = render_html(html, URL, _options(), _site(files))

    assert 'data-late="true"' in result.html


def test_inner_html_scripts_stay_inert() -> None:
    html = (
        "<div id='host'></div><script>"
        "document.getElementById('host').innerHTML = '<script>window.inert = false;<\\/script>';"
        "setTimeout(function () { document.body.setAttribute('data-inert', String(window.inert === undefined)); }, 5);"
        "</script>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert 'data-inert="true"' in result.html


def test_unknown_engine_is_an_environment_error() -> None:
    with pytest.raises(SwoopEnvironmentError, match="no isolated-context primitive"):
        render_html("<p></p>", URL, _options(engine="dukpy"), _site({}))


def test_render_fetches_document_and_uses_final_url() -> None:
    async def host_fetch(url, init):
        if url == "https://example.com/start":
            body = b"<body><script>document.body.setAttribute('data-href', location.href);</script></body>"
            return HostResponse(url="https://example.com/landing/", status=200, body=body)
        return HostResponse(url=url, status=404)

    result = render("https://example.com/start", _options(), host_fetch)

    assert result.url == "https://example.com/landing/"
    assert 'data-href="https://example.com/landing/"' in result.html


def test_render_raises_on_document_fetch_failure() -> None:
    with pytest.raises(HostFetchError, match="HTTP 404"):
        render("https://example.com/gone", _options(), _site({}))


def test_options_and_config_path_are_exclusive(tmp_path) -> None:
    config = tmp_path / "swoop.toml"
    config.write_text("[options]\ntimeout = 100\n", encoding="utf-8")

    with pytest.raises(ValueError, match="either 'options' or 'config_path'"):
        render_html("<p></p>", URL, _options(), _site({}), config_path=str(config))


def test_circular_modules_terminate_with_snapshot_bindings() -> None:
    files = {
        "https://example.com/app/main.js": (
            "import { b } from './b.js';\n"
            "export const a = 'A';\n"
            "document.body.setAttribute('data-cycle', b);\n"
        ),
        "https://example.com/app/b.js": (
            "import { a } from './main.js';\n"
            "export const b = 'B:' + typeof a;\n"
        ),
    }
    html = "<body><script type='module' src='main.js'></script></body>"

    result = render_html(html, URL, _options(), _site(files))

    assert result.errors == []
    assert 'data-cycle="B:undefined"' in result.html


def test_bare_module_specifier_is_reported() -> None:
    html = "<body><script type='module'>import React from 'react';</script></body>"

    result = render_html(html, URL, _options(), _site({}))

    assert len(result.errors) == 1
    assert result.errors[0].stage == "script"
    assert "react" in result.errors[0].message


def test_cookies_storage_and_history_shims() -> None:
    html = (
        "<body><script>"
        "document.cookie = 'a=1'; document.cookie = 'b=2';"
        "localStorage.setItem('k', 'v');"
        "history.pushState({page: 2}, '', '/app/next');"
        "document.body.setAttribute('data-state', ["
        "  document.cookie, localStorage.getItem('k'), localStorage.length,"
        "  sessionStorage.getItem('k'), location.pathname, history.state.page"
        "].join('|'));"
        "</script></body>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert result.errors == []
    assert 'data-state="a=1; b=2|v|1||/app/next|2"' in result.html


def test_snapshot_keeps_attribute_order_of_markup_and_scripts() -> None:
    html = (
        "<body><div id='app' class='shell' data-b='2' data-a='1'></div><script>"
        "var app = document.getElementById('app');"
        "app.setAttribute('role', 'main'); app.setAttribute('aria-busy', 'false');"
        "</script></body>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert '<div id="app" class="shell" data-b="2" data-a="1" role="main" aria-busy="false"></div>' in result.html


def test_runaway_script_is_cut_off_and_the_page_still_completes() -> None:
    html = (
        "<body><p id='p'></p>"
        "<script>addEventListener('load', function () { document.body.setAttribute('data-loaded', 'yes'); });</script>"
        "<script>document.getElementById('p').textContent = 'before'; while (true) {}</script>"
        "<script>document.body.setAttribute('data-late', 'ran');</script>"
        "</body>"
    )

    result = render_html(html, URL, _options(timeout=300), _site({}))

    assert '<p id="p">before</p>' in result.html
    assert 'data-loaded="yes"' in result.html
    assert "data-late" not in result.html
    assert result.errors[0].stage == "script"
    assert "time budget" in result.errors[0].message
    assert any(error.stage == "wait" and "exceeded while executing scripts" in error.message for error in result.errors)


def test_scripts_can_call_host_backed_apis_inside_loops() -> None:
    html = (
        "<ul id='list'></ul><script>"
        "var list = document.getElementById('list');"
        "for (var i = 0; i < 3; i++) { var li = document.createElement('li'); li.textContent = String(i); list.appendChild(li); }"
        "var n = 0; while (n < 2) { localStorage.setItem('k' + n, 'v'); n++; }"
        "list.setAttribute('data-stored', String(localStorage.length));"
        "</script>"
    )

    result = render_html(html, URL, _options(), _site({}))

    assert result.errors == []
    assert '<ul id="list" data-stored="2"><li>0</li><li>1</li><li>2</li></ul>' in result.html
