from __future__ import annotations

from swoop.execution.config import script_kind_for_type
from swoop.scripts import discover_scripts

PAGE = """<!doctype html>
<html><head><base href="https://cdn.example.com/assets/"></head><body>
<script>window.a = 1;</script>
<script src="app.js"></script>
<script type="application/json">{"x": 1}</script>
<script type="module" src="./main.mjs"></script>
<script>   </script>
<script type="module">import './x.js';</script>
</body></html>"""


def test_discovers_executable_scripts_in_document_order() -> None:
    scripts = discover_scripts(PAGE, "https://example.com/page", 64)
    assert [(s.kind, s.order) for s in scripts] == [
        ("inline", 0),
        ("external", 1),
        ("module", 3),
        ("module", 5),
    ]
    assert scripts[0].source == "window.a = 1;"
    assert scripts[1].url == "https://cdn.example.com/assets/app.js"
    assert scripts[2].url == "https://cdn.example.com/assets/main.mjs"
    assert scripts[3].source == "import './x.js';"


def test_max_scripts_truncates_silently() -> None:
    scripts = discover_scripts(PAGE, "https://example.com/page", 2)
    assert [s.kind for s in scripts] == ["inline", "external"]
    assert discover_scripts(PAGE, "https://example.com/page", 0) == []


def test_script_urls_resolve_against_document_without_base() -> None:
    html = "<script src='/static/app.js'></script><script src='rel.js'></script>"
    scripts = discover_scripts(html, "https://example.com/docs/page.html", 64)
    assert [s.url for s in scripts] == [
        "https://example.com/static/app.js",
        "https://example.com/docs/rel.js",
    ]


def test_script_type_mapping() -> None:
    assert script_kind_for_type(None) == "classic"
    assert script_kind_for_type("text/javascript; charset=utf-8") == "classic"
    assert script_kind_for_type(" MODULE ") == "module"
    assert script_kind_for_type("text/template") is None
