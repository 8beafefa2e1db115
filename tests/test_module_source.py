from __future__ import annotations

import pytest

from swoop.errors import SwoopExecutionError
from swoop.module_source import (
    _scan_declarators,
    binding_names,
    is_bare_specifier,
    resolve_specifier,
    transform_module,
)

URL = "https://example.com/js/b.js"


def test_static_import_and_export_are_rewritten() -> None:
    mod = transform_module("import {a} from './a.js'; export const b = a;", URL)
    assert mod.dependencies == ["https://example.com/js/a.js"]
    assert 'const {a} = __swoop_m.imp("https://example.com/js/a.js");' in mod.code
    assert '__swoop_m.export({"b": () => b});' in mod.code
    assert "export const" not in mod.code
    assert mod.code.startswith('__swoop_modules.define("https://example.com/js/b.js", ')


def test_default_namespace_and_renamed_imports() -> None:
    source = "import x, * as ns from './a.js';\nimport {a as b, default as c} from '../c.js';\n"
    mod = transform_module(source, URL)
    assert mod.dependencies == ["https://example.com/js/a.js", "https://example.com/c.js"]
    assert 'const x = __swoop_m.imp("https://example.com/js/a.js").default;' in mod.code
    assert 'const ns = __swoop_m.imp("https://example.com/js/a.js");' in mod.code
    assert 'const {"a": b, "default": c} = __swoop_m.imp("https://example.com/c.js");' in mod.code


def test_default_and_declaration_exports() -> None:
    source = "export function f() { return 1; }\nexport class K {}\nexport default 42;\n"
    mod = transform_module(source, URL)
    assert '"f": () => f' in mod.code
    assert '"K": () => K' in mod.code
    assert "function f() { return 1; }" in mod.code
    assert "__swoop_m.def = 42;" in mod.code


def test_export_lists_and_re_exports() -> None:
    source = "const a = 1, b = 2;\nexport { a, b as bee };\nexport * from './all.js';\nexport { x as y } from './x.js';\n"
    mod = transform_module(source, URL)
    assert mod.dependencies == ["https://example.com/js/all.js", "https://example.com/js/x.js"]
    assert '"a": () => a' in mod.code
    assert '"bee": () => b' in mod.code
    assert '__swoop_m.star("https://example.com/js/all.js");' in mod.code
    assert '"y": () => __swoop_m.imp("https://example.com/js/x.js")["x"]' in mod.code


def test_import_meta_and_dynamic_import_use_module_api() -> None:
    mod = transform_module("console.log(import.meta.url);\nimport('./lazy.js').then(m => m.go());\n", URL)
    assert "__swoop_m.meta.url" in mod.code
    assert "__swoop_m.dynamicImport('./lazy.js')" in mod.code
    assert mod.dependencies == []


def test_bare_import_is_a_dependency_without_bindings() -> None:
    mod = transform_module("import './polyfills.js';\nwindow.ready = true;\n", URL)
    assert mod.dependencies == ["https://example.com/js/polyfills.js"]
    assert "window.ready = true;" in mod.code


def test_destructured_export_declarations() -> None:
    mod = transform_module("export const {a, b: c} = obj, [d, ...e] = list;\n", URL)
    for name in ("a", "c", "d", "e"):
        assert f'"{name}": () => {name}' in mod.code


def test_bare_specifiers_fail_resolution() -> None:
    assert is_bare_specifier("react")
    assert not is_bare_specifier("https://cdn.example.com/react.js")
    with pytest.raises(SwoopExecutionError, match="Failed to resolve module specifier"):
        transform_module("import React from 'react';", URL)


def test_resolve_specifier_handles_relative_and_absolute() -> None:
    assert resolve_specifier("/root.js", URL) == "https://example.com/root.js"
    assert resolve_specifier("../up.js", URL) == "https://example.com/up.js"
    assert resolve_specifier("https://cdn.example.com/x.js", URL) == "https://cdn.example.com/x.js"


def test_declarator_scanner_and_binding_names() -> None:
    assert _scan_declarators("a = 1, {b, c: d} = o;", 0) == ["a", "{b, c: d}"]
    assert _scan_declarators("x = f(1, 2)\nfoo()", 0) == ["x"]
    assert binding_names("{a, b: c, ...rest}") == ["a", "c", "rest"]
    assert binding_names("[first, second]") == ["first", "second"]
