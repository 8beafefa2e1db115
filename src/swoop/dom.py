from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Iterable

import soupsieve
from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag
from bs4.dammit import EntitySubstitution
from bs4.element import PageElement
from bs4.formatter import HTMLFormatter

from .execution.config import js_source
from .fetching import resolve_url

logger = logging.getLogger(__name__)

FRAGMENT_NAME = "#document-fragment"
DOCUMENT_NID = 1

ELEMENT_NODE = 1
TEXT_NODE = 3
CDATA_SECTION_NODE = 4
PROCESSING_INSTRUCTION_NODE = 7
COMMENT_NODE = 8
DOCUMENT_NODE = 9
DOCUMENT_TYPE_NODE = 10
DOCUMENT_FRAGMENT_NODE = 11

_ADJACENT_POSITIONS = frozenset({"beforebegin", "afterbegin", "beforeend", "afterend"})


class SourceOrderFormatter(HTMLFormatter):
    """The `minimal` formatter without attribute sorting.

    Attributes come out in the order the markup or `setAttribute` created them.
    """

    def __init__(self) -> None:
        super().__init__(entity_substitution=EntitySubstitution.substitute_xml)

    def attributes(self, tag: Tag) -> Iterable[tuple[str, Any]]:
        if tag.attrs is None:
            return []
        return list(tag.attrs.items())


SOURCE_ORDER = SourceOrderFormatter()


def parse_document(html: str) -> BeautifulSoup:
    """Parse a full HTML document, guaranteeing `<html>`, `<head>` and `<body>`.

    Example:
        ```python
        soup = parse_document("<p>hi</p>")
        assert soup.body is not None
        ```
    """
    soup = BeautifulSoup(html or "", "lxml", multi_valued_attributes=None)
    root = soup.find("html")
    if root is None:
        root = soup.new_tag("html")
        for child in [c for c in soup.contents if not isinstance(c, Doctype)]:
            root.append(child.extract())
        soup.append(root)
    if root.find("head", recursive=False) is None:
        root.insert(0, soup.new_tag("head"))
    if root.find("body", recursive=False) is None:
        root.append(soup.new_tag("body"))
    return soup


def parse_fragment(html: str) -> list[PageElement]:
    """Parse an HTML fragment and return its detached top-level nodes.

    Example:
        ```python
        nodes = parse_fragment("<li>a</li><li>b</li>")
        ```
    """
    fragment = BeautifulSoup(html or "", "html.parser", multi_valued_attributes=None)
    return [child.extract() for child in list(fragment.contents)]


def serialize_document(soup: BeautifulSoup) -> str:
    """Serialize a parsed document back to an HTML string.

    Example:
        ```python
        html = serialize_document(parse_document("<p>hi</p>"))
        ```
    """
    return soup.decode(formatter=SOURCE_ORDER)


class DomBridge:
    """Expose a BeautifulSoup tree to the sandbox as numbered nodes.

    The sandbox DOM runtime (`js/dom.js`) holds one wrapper object per node id and
    forwards every read and mutation here. The document is always node id 1.

    Example:
        ```python
        bridge = DomBridge("<html><body><p id='x'>hi</p></body></html>", document_url="https://example.com/")
        bridge.install(sandbox)
        snapshot = bridge.serialize()
        ```
    """

    def __init__(
        self,
        html: str,
        *,
        document_url: str,
        on_mutation: Callable[[str], None] | None = None,
        on_script_connected: Callable[[int], None] | None = None,
    ) -> None:
        self.soup = parse_document(html)
        self.document_url = document_url
        self.on_mutation = on_mutation
        self.on_script_connected = on_script_connected
        self._nodes: dict[int, PageElement] = {}
        self._ids: dict[int, int] = {}
        self._next_nid = DOCUMENT_NID
        self.nid(self.soup)
        self._started_scripts: set[int] = {self.nid(tag) for tag in self.soup.find_all("script")}

    # node identity

    def nid(self, node: PageElement | None) -> int:
        """Return the stable id of `node`, assigning one on first sight; 0 for None.

        Example:
            ```python
            body_id = bridge.nid(bridge.soup.body)
            ```
        """
        if node is None:
            return 0
        key = id(node)
        existing = self._ids.get(key)
        if existing is not None:
            return existing
        nid = self._next_nid
        self._next_nid += 1
        self._ids[key] = nid
        self._nodes[nid] = node
        return nid

    def node(self, nid: int | float | None) -> PageElement | None:
        if not nid:
            return None
        return self._nodes.get(int(nid))

    def _rebind(self, nid: int, replacement: PageElement) -> None:
        old = self._nodes.get(nid)
        if old is not None:
            self._ids.pop(id(old), None)
        self._nodes[nid] = replacement
        self._ids[id(replacement)] = nid

    def _node_type(self, node: PageElement) -> int:
        if node is self.soup or isinstance(node, BeautifulSoup):
            return DOCUMENT_NODE
        if isinstance(node, Tag):
            return DOCUMENT_FRAGMENT_NODE if node.name == FRAGMENT_NAME else ELEMENT_NODE
        if isinstance(node, Comment):
            return COMMENT_NODE
        if isinstance(node, CData):
            return CDATA_SECTION_NODE
        if isinstance(node, ProcessingInstruction):
            return PROCESSING_INSTRUCTION_NODE
        if isinstance(node, (Doctype, Declaration)):
            return DOCUMENT_TYPE_NODE
        return TEXT_NODE

    def is_connected(self, node: PageElement) -> bool:
        if node is self.soup:
            return True
        return any(parent is self.soup for parent in node.parents)

    def _mutated(self, kind: str) -> None:
        if self.on_mutation is not None:
            self.on_mutation(kind)

    # serialization

    def serialize(self) -> str:
        """Serialize the live document.

        Example:
            ```python
            html = bridge.serialize()
            ```
        """
        return serialize_document(self.soup)

    def install(self, sandbox: Any) -> None:
        """Expose the node operations and evaluate the sandbox DOM runtime.

        Example:
            ```python
            bridge.install(sandbox)
            ```
        """
        for name in _HOST_OPERATIONS:
            sandbox.expose(name, getattr(self, name))
        sandbox.expose("url_resolve", _url_resolve)
        sandbox.evaluate(js_source("dom"))
        sandbox.call("__swoop_dom.init", self.document_url)
        sandbox.capabilities.claim("document", "Node", "Element", "HTMLElement", "Event", "EventTarget",
                                   "MutationObserver", "customElements", owner="dom")

    # reads

    def dom_info(self, nid: int) -> dict[str, Any] | None:
        node = self.node(nid)
        if node is None:
            return None
        node_type = self._node_type(node)
        name = node.name if isinstance(node, Tag) else ""
        if node_type == DOCUMENT_TYPE_NODE:
            name = str(node).split(" ", 1)[0] or "html"
        return {"t": node_type, "n": name or ""}

    def dom_parent(self, nid: int) -> int:
        node = self.node(nid)
        return self.nid(node.parent) if node is not None else 0

    def dom_children(self, nid: int, elements_only: bool = False) -> list[int]:
        node = self.node(nid)
        if not isinstance(node, Tag):
            return []
        children: Iterable[PageElement] = node.contents
        if elements_only:
            children = [c for c in node.contents if isinstance(c, Tag)]
        return [self.nid(c) for c in children]

    def dom_sibling(self, nid: int, forward: bool, elements_only: bool = False) -> int:
        node = self.node(nid)
        if node is None or node.parent is None:
            return 0
        siblings = node.parent.contents
        index = _index_of(siblings, node)
        step = 1 if forward else -1
        index += step
        while 0 <= index < len(siblings):
            candidate = siblings[index]
            if not elements_only or isinstance(candidate, Tag):
                return self.nid(candidate)
            index += step
        return 0

    def dom_attr(self, nid: int, name: str) -> str | None:
        node = self.node(nid)
        if not isinstance(node, Tag):
            return None
        value = node.attrs.get(name)
        if value is None:
            return None
        return " ".join(value) if isinstance(value, list) else str(value)

    def dom_attrs(self, nid: int) -> list[list[str]]:
        node = self.node(nid)
        if not isinstance(node, Tag):
            return []
        return [[k, " ".join(v) if isinstance(v, list) else str(v)] for k, v in node.attrs.items()]

    def dom_text(self, nid: int) -> str:
        node = self.node(nid)
        if node is None:
            return ""
        if isinstance(node, Tag):
            return node.get_text()
        return str(node)

    def dom_html(self, nid: int, outer: bool) -> str:
        node = self.node(nid)
        if node is None:
            return ""
        if isinstance(node, Tag):
            if node.name == FRAGMENT_NAME or node is self.soup:
                return node.decode_contents(formatter=SOURCE_ORDER)
            if outer:
                return node.decode(formatter=SOURCE_ORDER)
            return node.decode_contents(formatter=SOURCE_ORDER)
        if outer and isinstance(node, NavigableString):
            return node.output_ready(formatter=SOURCE_ORDER)
        return ""

    def dom_connected(self, nid: int) -> bool:
        node = self.node(nid)
        return node is not None and self.is_connected(node)

    def dom_contains(self, nid: int, other_nid: int) -> bool:
        node, other = self.node(nid), self.node(other_nid)
        if node is None or other is None:
            return False
        return other is node or any(parent is node for parent in other.parents)

    def dom_compare(self, nid: int, other_nid: int) -> int:
        node, other = self.node(nid), self.node(other_nid)
        if node is None or other is None or node is other:
            return 0
        if any(parent is node for parent in other.parents):
            return 20
        if any(parent is other for parent in node.parents):
            return 10
        if not (self.is_connected(node) and self.is_connected(other)):
            return 1 | 32
        for item in self.soup.descendants:
            if item is node:
                return 4
            if item is other:
                return 2
        return 1

    def dom_part(self, name: str) -> int:
        if name == "doctype":
            return self.nid(next((c for c in self.soup.contents if isinstance(c, Doctype)), None))
        if name == "html":
            return self.nid(self.soup.find("html"))
        root = self.soup.find("html")
        if root is None:
            return 0
        return self.nid(root.find(name, recursive=False))

    def dom_by_id(self, value: str) -> int:
        if not value:
            return 0
        return self.nid(self.soup.find(attrs={"id": value}))

    def dom_find(self, nid: int, kind: str, value: str) -> list[int]:
        node = self.node(nid)
        if not isinstance(node, Tag):
            return []
        if kind == "tag":
            name = value.lower()
            found = node.find_all(True if name == "*" else name)
        elif kind == "class":
            wanted = set(value.split())
            if not wanted:
                return []
            found = node.find_all(lambda t: wanted <= set(str(t.get("class") or "").split()))
        elif kind == "name":
            found = node.find_all(attrs={"name": value})
        else:
            return []
        return [self.nid(t) for t in found]

    def dom_query(self, nid: int, selector: str, select_all: bool) -> dict[str, Any]:
        node = self.node(nid)
        if not isinstance(node, Tag):
            return {"ok": []}
        try:
            if select_all:
                matched = soupsieve.select(selector, node)
            else:
                first = soupsieve.select_one(selector, node)
                matched = [first] if first is not None else []
        except (soupsieve.SelectorSyntaxError, ValueError) as exc:
            return {"error": f"'{selector}' is not a valid selector: {exc}".splitlines()[0]}
        return {"ok": [self.nid(t) for t in matched]}

    def dom_matches(self, nid: int, selector: str) -> dict[str, Any]:
        node = self.node(nid)
        if not isinstance(node, Tag):
            return {"ok": False}
        try:
            return {"ok": bool(soupsieve.match(selector, node))}
        except (soupsieve.SelectorSyntaxError, ValueError) as exc:
            return {"error": f"'{selector}' is not a valid selector: {exc}".splitlines()[0]}

    def dom_closest(self, nid: int, selector: str) -> dict[str, Any]:
        node = self.node(nid)
        if not isinstance(node, Tag):
            return {"ok": 0}
        try:
            return {"ok": self.nid(soupsieve.closest(selector, node))}
        except (soupsieve.SelectorSyntaxError, ValueError) as exc:
            return {"error": f"'{selector}' is not a valid selector: {exc}".splitlines()[0]}

    # creation

    def dom_create(self, kind: str, value: str = "") -> int:
        if kind == "element":
            return self.nid(self.soup.new_tag(str(value)))
        if kind == "text":
            return self.nid(NavigableString(str(value)))
        if kind == "comment":
            return self.nid(Comment(str(value)))
        if kind == "fragment":
            return self.nid(self.soup.new_tag(FRAGMENT_NAME))
        return 0

    def dom_clone(self, nid: int, deep: bool) -> int:
        node = self.node(nid)
        if node is None or node is self.soup:
            return 0
        if isinstance(node, Tag):
            if deep:
                return self.nid(copy.copy(node))
            return self.nid(self.soup.new_tag(node.name, attrs=dict(node.attrs)))
        return self.nid(type(node)(str(node)))

    # mutation

    def dom_set_attr(self, nid: int, name: str, value: str) -> None:
        node = self.node(nid)
        if not isinstance(node, Tag) or not name:
            return
        node[str(name)] = str(value)
        self._mutated("attributes")
        if node.name == "script" and name == "src":
            self._maybe_start_script(node)

    def dom_remove_attr(self, nid: int, name: str) -> None:
        node = self.node(nid)
        if isinstance(node, Tag) and name in node.attrs:
            del node[name]
            self._mutated("attributes")

    def dom_set_text(self, nid: int, text: str) -> None:
        node = self.node(nid)
        if node is None or node is self.soup:
            return
        if isinstance(node, Tag):
            node.clear()
            if text:
                node.append(NavigableString(str(text)))
            self._mutated("childList")
            if node.name == "script":
                self._maybe_start_script(node)
            return
        self.dom_set_data(nid, text)

    def dom_set_data(self, nid: int, data: str) -> None:
        node = self.node(nid)
        if node is None or isinstance(node, Tag):
            return
        replacement = type(node)(str(data))
        if node.parent is not None:
            node.replace_with(replacement)
        self._rebind(int(nid), replacement)
        self._mutated("characterData")

    def dom_set_html(self, nid: int, html: str) -> list[int]:
        node = self.node(nid)
        if not isinstance(node, Tag) or node is self.soup:
            return []
        node.clear()
        added = parse_fragment(html)
        for child in added:
            node.append(child)
        self._mutated("childList")
        self._mark_inert(added)
        return [self.nid(c) for c in added]

    def dom_insert_html(self, nid: int, position: str, html: str) -> list[int]:
        node = self.node(nid)
        position = str(position).lower()
        if not isinstance(node, Tag) or position not in _ADJACENT_POSITIONS:
            return []
        added = parse_fragment(html)
        if position in ("beforebegin", "afterend"):
            parent = node.parent
            if parent is None:
                return []
            index = _index_of(parent.contents, node) + (1 if position == "afterend" else 0)
        else:
            parent = node
            index = 0 if position == "afterbegin" else len(node.contents)
        for offset, child in enumerate(added):
            parent.insert(index + offset, child)
        self._mutated("childList")
        self._mark_inert(added)
        return [self.nid(c) for c in added]

    def dom_insert(self, parent_nid: int, child_nid: int, ref_nid: int = 0) -> str | None:
        """Insert `child` into `parent` before `ref`; return a DOMException name on failure.

        Example:
            ```python
            error = bridge.dom_insert(body_id, div_id, 0)
            ```
        """
        parent, child = self.node(parent_nid), self.node(child_nid)
        ref = self.node(ref_nid)
        if not isinstance(parent, Tag) or child is None:
            return "HierarchyRequestError"
        if child is self.soup or child is parent or any(p is child for p in parent.parents):
            return "HierarchyRequestError"
        if ref is not None and ref.parent is not parent:
            return "NotFoundError"
        if ref is child:
            return None
        if isinstance(child, Tag) and child.name == FRAGMENT_NAME:
            moving = list(child.contents)
        else:
            moving = [child]
        for item in moving:
            item.extract()
        index = _index_of(parent.contents, ref) if ref is not None else len(parent.contents)
        for offset, item in enumerate(moving):
            parent.insert(index + offset, item)
        self._mutated("childList")
        if parent.name == "script":
            self._maybe_start_script(parent)
        self._scan_scripts(moving)
        return None

    def dom_remove(self, nid: int) -> None:
        node = self.node(nid)
        if node is None or node is self.soup or node.parent is None:
            return
        node.extract()
        self._mutated("childList")

    # dynamically inserted scripts

    def _mark_inert(self, nodes: Iterable[PageElement]) -> None:
        # markup parsed from innerHTML and insertAdjacentHTML never executes its scripts
        for node in nodes:
            if isinstance(node, Tag):
                scripts = [node] if node.name == "script" else []
                for script in scripts + node.find_all("script"):
                    self._started_scripts.add(self.nid(script))

    def _scan_scripts(self, nodes: Iterable[PageElement]) -> None:
        for node in nodes:
            if not isinstance(node, Tag):
                continue
            if node.name == "script":
                self._maybe_start_script(node)
            for script in node.find_all("script"):
                self._maybe_start_script(script)

    def _maybe_start_script(self, tag: Tag) -> None:
        nid = self.nid(tag)
        if nid in self._started_scripts or not self.is_connected(tag):
            return
        if tag.get("src") is None and not tag.get_text():
            return
        self._started_scripts.add(nid)
        if self.on_script_connected is not None:
            self.on_script_connected(nid)


_HOST_OPERATIONS = tuple(
    name for name in vars(DomBridge) if name.startswith("dom_") and callable(getattr(DomBridge, name))
)


def _index_of(items: list[PageElement], target: PageElement | None) -> int:
    """Identity-based index lookup; bs4 elements compare by value.

    Example:
        ```python
        index = _index_of(tag.contents, child)
        ```
    """
    for index, item in enumerate(items):
        if item is target:
            return index
    raise ValueError("node is not a child of this parent")


def _url_resolve(reference: str, base: str) -> str:
    return resolve_url(str(reference), str(base))

