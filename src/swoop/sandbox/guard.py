from __future__ import annotations

import re
from typing import NamedTuple

TICK = "__swoop_tick()"

_TOKEN = re.compile(
    r"(?P<space>\s+)"
    r"|(?P<comment>//[^\n]*|/\*[\s\S]*?(?:\*/|\Z))"
    r"|(?P<string>'(?:[^'\\\n]|\\[\s\S])*'?|\"(?:[^\"\\\n]|\\[\s\S])*\"?)"
    r"|(?P<word>[A-Za-z_$#\u0080-\uffff][\w$\u0080-\uffff]*)"
    r"|(?P<number>\.?\d[\w.]*)"
    r"|(?P<punct>[\s\S])"
)

# A `/` after one of these words starts a regular expression, not a division.
_REGEX_AFTER_WORDS = frozenset(
    {
        "await",
        "case",
        "delete",
        "do",
        "else",
        "in",
        "instanceof",
        "new",
        "of",
        "return",
        "throw",
        "typeof",
        "void",
        "yield",
    }
)

_OPENERS = "([{"
_CLOSERS = ")]}"


class Token(NamedTuple):
    kind: str
    text: str
    start: int
    end: int


def tokenize(source: str) -> list[Token]:
    """Split JavaScript source into words, numbers, punctuation and literals.

    Whitespace and comments are dropped. Strings, template literals and regular
    expression literals come back as single `literal` tokens so keywords inside
    them are never mistaken for code.

    Example:
        ```python
        kinds = [token.kind for token in tokenize("for (;;) x = /while/g;")]
        assert "literal" in kinds
        ```
    """
    tokens: list[Token] = []
    index = 0
    length = len(source)
    while index < length:
        char = source[index]
        if char == "`":
            end = _skip_template(source, index)
            tokens.append(Token("literal", source[index:end], index, end))
            index = end
            continue
        if char == "/" and source[index + 1 : index + 2] not in ("/", "*") and _regex_allowed(tokens):
            end = _skip_regex(source, index)
            if end is not None:
                tokens.append(Token("literal", source[index:end], index, end))
                index = end
                continue
        match = _TOKEN.match(source, index)
        kind = match.lastgroup
        if kind == "string":
            kind = "literal"
        if kind not in ("space", "comment"):
            tokens.append(Token(kind, match.group(), index, match.end()))
        index = match.end()
    return tokens


def guard_loops(source: str) -> str:
    """Insert a budget check into every loop so runaway scripts can be interrupted.

    `while (c)` becomes `while (__swoop_tick() && (c))` (which also covers
    `do ... while`), the test of a `for (;;)` head gets the same treatment, and
    `for ... in/of` loops with a block body get the call as their first
    statement. Returns `source` unchanged when it has no loops.

    Example:
        ```python
        assert guard_loops("while (true) {}") == "while (__swoop_tick() && (true)) {}"
        ```
    """
    if "while" not in source and "for" not in source:
        return source
    tokens = tokenize(source)
    inserts: list[tuple[int, str]] = []
    for position, token in enumerate(tokens):
        if token.kind != "word" or token.text not in ("while", "for"):
            continue
        if position and tokens[position - 1].text in (".", "?."):
            continue
        head = position + 1
        if token.text == "for" and head < len(tokens) and tokens[head].text == "await":
            head += 1
        if head >= len(tokens) or tokens[head].text != "(":
            continue
        close, separators = _match_head(tokens, head)
        if close is None:
            continue
        if token.text == "while":
            if close == head + 1:
                continue
            inserts.append((tokens[head].end, f"{TICK} && ("))
            inserts.append((tokens[close].start, ")"))
        elif len(separators) == 2:
            first, second = separators
            if second == first + 1:
                inserts.append((tokens[first].end, f" {TICK}"))
            else:
                inserts.append((tokens[first].end, f" {TICK} && ("))
                inserts.append((tokens[second].start, ")"))
        elif close + 1 < len(tokens) and tokens[close + 1].text == "{":
            inserts.append((tokens[close + 1].end, f" {TICK};"))
    if not inserts:
        return source
    pieces: list[str] = []
    cursor = 0
    for offset, text in sorted(inserts, key=lambda item: item[0]):
        pieces.append(source[cursor:offset])
        pieces.append(text)
        cursor = offset
    pieces.append(source[cursor:])
    return "".join(pieces)


def _match_head(tokens: list[Token], open_index: int) -> tuple[int | None, list[int]]:
    depth = 0
    separators: list[int] = []
    for index in range(open_index, len(tokens)):
        token = tokens[index]
        if token.kind != "punct":
            continue
        if token.text in _OPENERS:
            depth += 1
        elif token.text in _CLOSERS:
            depth -= 1
            if depth == 0:
                return index, separators
        elif token.text == ";" and depth == 1:
            separators.append(index)
    return None, separators


def _regex_allowed(tokens: list[Token]) -> bool:
    if not tokens:
        return True
    previous = tokens[-1]
    if previous.kind == "punct":
        return previous.text not in ")]"
    if previous.kind == "word":
        return previous.text in _REGEX_AFTER_WORDS
    return False


def _skip_regex(source: str, index: int) -> int | None:
    in_class = False
    cursor = index + 1
    while cursor < len(source):
        char = source[cursor]
        if char == "\n":
            return None
        if char == "\\":
            cursor += 2
            continue
        if char == "[":
            in_class = True
        elif char == "]":
            in_class = False
        elif char == "/" and not in_class:
            cursor += 1
            while cursor < len(source) and (source[cursor].isalnum() or source[cursor] in "_$"):
                cursor += 1
            return cursor
        cursor += 1
    return None


def _skip_template(source: str, index: int) -> int:
    cursor = index + 1
    while cursor < len(source):
        char = source[cursor]
        if char == "\\":
            cursor += 2
            continue
        if char == "`":
            return cursor + 1
        if char == "$" and source.startswith("{", cursor + 1):
            cursor = _skip_substitution(source, cursor + 2)
            continue
        cursor += 1
    return len(source)


def _skip_substitution(source: str, index: int) -> int:
    depth = 1
    cursor = index
    while cursor < len(source):
        char = source[cursor]
        if char == "`":
            cursor = _skip_template(source, cursor)
            continue
        if char in "'\"":
            match = _TOKEN.match(source, cursor)
            cursor = match.end()
            continue
        if source.startswith("//", cursor) or source.startswith("/*", cursor):
            cursor = _TOKEN.match(source, cursor).end()
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return cursor + 1
        cursor += 1
    return len(source)
