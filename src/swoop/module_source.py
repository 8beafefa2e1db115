from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlsplit

from .errors import SwoopExecutionError
from .fetching import resolve_url

_IDENT = r"[A-Za-z_$][\w$]*"
# Statement boundary; the terminator of a rewritten statement is left in place.
_STMT_START = r"(?P<lead>^|[;}\n])(?P<ws>[ \t]*)"
_SPEC = r"(?P<q>[\"'])(?P<spec>[^\"'\n]+)(?P=q)"
_DECL = (
    r"(?P<decl>(?:async\s+)?function\b\s*\*?\s*(?P<fname>" + _IDENT + r")|class\s+(?P<cname>" + _IDENT + r"))"
)

_IMPORT_FROM = re.compile(
    _STMT_START + r"import(?![\w$])(?!\s*[.(])\s*(?P<clause>[^\"';]*?)\s*from\s*" + _SPEC,
    re.MULTILINE,
)
_IMPORT_BARE = re.compile(_STMT_START + r"import\s*" + _SPEC, re.MULTILINE)
_EXPORT_FROM = re.compile(
    _STMT_START + r"export\s*(?P<clause>\*\s*as\s+" + _IDENT + r"|\*|\{[^}]*\})\s*from\s*" + _SPEC,
    re.MULTILINE,
)
_EXPORT_LIST = re.compile(_STMT_START + r"export\s*\{(?P<names>[^}]*)\}", re.MULTILINE)
_EXPORT_DEFAULT_DECL = re.compile(_STMT_START + r"export\s+default\s+" + _DECL, re.MULTILINE)
_EXPORT_DEFAULT = re.compile(_STMT_START + r"export\s+default\s+", re.MULTILINE)
_EXPORT_DECL = re.compile(_STMT_START + r"export\s+" + _DECL, re.MULTILINE)
_EXPORT_VAR = re.compile(_STMT_START + r"export\s+(?P<kind>const|let|var)\s+", re.MULTILINE)
_IMPORT_META = re.compile(r"(?<![\w$.])import\s*\.\s*meta\b")
_DYNAMIC_IMPORT = re.compile(r"(?<![\w$.])import\s*\(")
_PATTERN_NAME = re.compile(r"(?:^|[{\[,:]|\.\.\.)\s*(" + _IDENT + r")\s*(?=[,}\]=]|$)")
_OPEN = "([{"
_CLOSE = ")]}"
_CONTINUATION = ",=+-*/%&|^?:(<>!"


@dataclass(slots=True)
class ModuleSource:
    """A module rewritten into a sandbox registration call.

    `dependencies` are the resolved URLs of every static import and re-export, in
    source order and without duplicates.

    Example:
        ```python
        mod = transform_module("import {a} from './a.js'; export const b = a;", "https://example.com/b.js")
        assert mod.dependencies == ["https://example.com/a.js"]
        ```
    """

    url: str
    code: str
    dependencies: list[str] = field(default_factory=list)


def is_bare_specifier(specifier: str) -> bool:
    """Return True for specifiers like `react` that need an import map.

    Example:
        ```python
        assert is_bare_specifier("lodash") and not is_bare_specifier("./lodash.js")
        ```
    """
    if specifier.startswith(("/", "./", "../")):
        return False
    return not urlsplit(specifier).scheme


def resolve_specifier(specifier: str, referencing_url: str) -> str:
    """Resolve a module specifier the way browsers do without an import map.

    Relative (`./`, `../`, `/`) and absolute URL specifiers resolve against
    `referencing_url`; bare specifiers are a resolution error.

    Example:
        ```python
        url = resolve_specifier("./util.js", "https://example.com/js/app.js")
        assert url == "https://example.com/js/util.js"
        ```
    """
    specifier = specifier.strip()
    if is_bare_specifier(specifier):
        raise SwoopExecutionError(
            f'TypeError: Failed to resolve module specifier "{specifier}". '
            'Relative references must start with either "/", "./", or "../".'
        )
    return resolve_url(specifier, referencing_url)


def _skip_string(source: str, index: int) -> int:
    quote = source[index]
    index += 1
    while index < len(source):
        char = source[index]
        if char == "\\":
            index += 2
            continue
        if char == quote:
            return index + 1
        if quote != "`" and char == "\n":
            return index
        index += 1
    return index


def _skip_comment(source: str, index: int) -> int:
    if source[index + 1] == "/":
        end = source.find("\n", index + 2)
        return len(source) if end < 0 else end
    end = source.find("*/", index + 2)
    return len(source) if end < 0 else end + 2


def _scan_declarators(source: str, start: int) -> list[str]:
    """Return the binding texts of a `const`/`let`/`var` declaration starting at `start`.

    Example:
        ```python
        assert _scan_declarators("a = 1, {b, c: d} = o;", 0) == ["a", "{b, c: d}"]
        ```
    """
    bindings: list[str] = []
    depth = 0
    index = start
    binding_start = start
    in_binding = True
    last = ""
    while index < len(source):
        char = source[index]
        if char in "\"'`":
            index = _skip_string(source, index)
            last = char
            continue
        if source.startswith(("//", "/*"), index):
            index = _skip_comment(source, index)
            continue
        if char in _OPEN:
            depth += 1
        elif char in _CLOSE:
            depth -= 1
            if depth < 0:
                break
        elif depth == 0:
            if char == "=" and in_binding and source[index + 1:index + 2] != "=" and last not in "!<>=":
                bindings.append(source[binding_start:index].strip())
                in_binding = False
            elif char == ",":
                if in_binding:
                    bindings.append(source[binding_start:index].strip())
                in_binding = True
                binding_start = index + 1
            elif char == ";":
                break
            elif char == "\n" and last not in _CONTINUATION:
                if not in_binding or source[binding_start:index].strip():
                    break
        if not char.isspace():
            last = char
        index += 1
    if in_binding:
        tail = source[binding_start:index].strip()
        if tail:
            bindings.append(tail)
    return bindings


def binding_names(binding: str) -> list[str]:
    """Return the local names introduced by one declarator binding.

    Example:
        ```python
        assert binding_names("{a, b: c, ...rest}") == ["a", "c", "rest"]
        ```
    """
    binding = binding.strip()
    if re.fullmatch(_IDENT, binding):
        return [binding]
    if binding[:1] in ("{", "["):
        inner = binding[1:-1] if binding[-1:] in ("}", "]") else binding[1:]
        return _PATTERN_NAME.findall(inner)
    return []


def _parse_specifier_list(text: str) -> list[tuple[str, str]]:
    """Split `a, b as c` into `(imported, local)` pairs.

    Example:
        ```python
        assert _parse_specifier_list("a, b as c") == [("a", "a"), ("b", "c")]
        ```
    """
    pairs = []
    for part in text.split(","):
        part = " ".join(part.split())
        if not part:
            continue
        left, _, right = part.partition(" as ")
        left = left.strip("\"'")
        pairs.append((left, (right or left).strip("\"'")))
    return pairs


def _import_statements(clause: str, target: str) -> str:
    statements = []
    named = re.search(r"\{([^}]*)\}", clause)
    rest = re.sub(r"\{[^}]*\}", "", clause)
    for piece in (" ".join(p.split()) for p in rest.split(",")):
        if not piece:
            continue
        star = re.fullmatch(r"\*\s*as\s+(" + _IDENT + r")", piece)
        if star:
            statements.append(f"const {star.group(1)} = {target};")
        else:
            statements.append(f"const {piece} = {target}.default;")
    if named:
        pairs = _parse_specifier_list(named.group(1))
        if pairs:
            fields = ", ".join(
                name if name == local else f"{json.dumps(name)}: {local}" for name, local in pairs
            )
            statements.append(f"const {{{fields}}} = {target};")
    return " ".join(statements) or f"{target};"


def transform_module(
    source: str,
    url: str,
    *,
    base_url: str | None = None,
    meta_url: str | None = None,
    resolve: Callable[[str, str], str] = resolve_specifier,
) -> ModuleSource:
    """Rewrite ES module source into a `__swoop_modules.define` call.

    Static imports become reads from dependency namespaces, exports become getters
    on this module's namespace, `import.meta` and `import()` are routed through the
    module API. Imported bindings are read once, when the module body starts.

    Example:
        ```python
        mod = transform_module("export default 42;", "https://example.com/x.js")
        sandbox.evaluate(mod.code)
        ```
    """
    base = base_url or url
    dependencies: list[str] = []
    hoisted: list[str] = []
    exports: dict[str, str] = {}

    def dependency(specifier: str) -> str:
        resolved = resolve(specifier, base)
        if resolved not in dependencies:
            dependencies.append(resolved)
        return resolved

    def namespace(specifier: str) -> str:
        return f"__swoop_m.imp({json.dumps(dependency(specifier))})"

    def lead(match: re.Match[str]) -> str:
        return match.group("lead") + match.group("ws")

    def import_from(match: re.Match[str]) -> str:
        hoisted.append(_import_statements(match.group("clause"), namespace(match.group("spec"))))
        return lead(match)

    def import_bare(match: re.Match[str]) -> str:
        namespace(match.group("spec"))
        return lead(match)

    def export_from(match: re.Match[str]) -> str:
        resolved = dependency(match.group("spec"))
        target = f"__swoop_m.imp({json.dumps(resolved)})"
        clause = match.group("clause").strip()
        if clause == "*":
            hoisted.append(f"__swoop_m.star({json.dumps(resolved)});")
        elif clause.startswith("*"):
            exports[clause.split()[-1]] = f"() => {target}"
        else:
            for name, exported in _parse_specifier_list(clause[1:-1]):
                exports[exported] = f"() => {target}[{json.dumps(name)}]"
        return lead(match)

    def export_list(match: re.Match[str]) -> str:
        for local, exported in _parse_specifier_list(match.group("names")):
            exports[exported] = f"() => {local}"
        return lead(match)

    def export_default_decl(match: re.Match[str]) -> str:
        exports["default"] = f"() => {match.group('fname') or match.group('cname')}"
        return lead(match) + match.group("decl")

    def export_default(match: re.Match[str]) -> str:
        return lead(match) + "__swoop_m.def = "

    def export_decl(match: re.Match[str]) -> str:
        name = match.group("fname") or match.group("cname")
        exports[name] = f"() => {name}"
        return lead(match) + match.group("decl")

    code = _IMPORT_FROM.sub(import_from, source)
    code = _IMPORT_BARE.sub(import_bare, code)
    code = _EXPORT_FROM.sub(export_from, code)
    code = _EXPORT_LIST.sub(export_list, code)
    code = _EXPORT_DEFAULT_DECL.sub(export_default_decl, code)
    code = _EXPORT_DEFAULT.sub(export_default, code)
    code = _EXPORT_DECL.sub(export_decl, code)

    pieces = []
    cursor = 0
    for match in _EXPORT_VAR.finditer(code):
        pieces.append(code[cursor:match.start()])
        pieces.append(lead(match) + match.group("kind") + " ")
        for binding in _scan_declarators(code, match.end()):
            for name in binding_names(binding):
                exports[name] = f"() => {name}"
        cursor = match.end()
    pieces.append(code[cursor:])
    code = "".join(pieces)

    code = _IMPORT_META.sub("__swoop_m.meta", code)
    code = _DYNAMIC_IMPORT.sub("__swoop_m.dynamicImport(", code)

    header = "'use strict';\n"
    if exports:
        getters = ", ".join(f"{json.dumps(name)}: {getter}" for name, getter in exports.items())
        header += f"__swoop_m.export({{{getters}}});\n"
    header += "".join(line + "\n" for line in hoisted)
    wrapped = (
        f"__swoop_modules.define({json.dumps(url)}, {json.dumps(base)}, {json.dumps(meta_url or url)}, "
        f"async function (__swoop_m) {{{header}{code}\n}});"
    )
    return ModuleSource(url=url, code=wrapped, dependencies=dependencies)
