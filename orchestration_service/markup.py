"""
Typed tree over generated UI markup (HTML / JSX-like).

The parser is tolerant and never raises: anything it cannot read as a tag is
kept as text, unmatched closing tags are kept as text, and unclosed elements
end at the end of their parent. Every character of the input lands in exactly
one node, so ``serialize(parse(s)) == s`` for any string.

Addressable sections are looked up in a fixed order:
comment-delimited region, ``id`` attribute, ``data-component`` attribute,
class token (``class`` or ``className``).
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
})

_TAG_NAME_RE = re.compile(r"[A-Za-z][\w.:-]*")
_ATTR_NAME_RE = re.compile(r"[^\s=/>\"'{}]+")
_WS_RE = re.compile(r"\s*")

# <!-- name --> ... <!-- /name -->   or   <!-- START:name --> ... <!-- END:name -->
_REGION_OPEN_RE = re.compile(r"^\s*(?:START:\s*)?([\w.:-]+)\s*$")
_REGION_CLOSE_RE = re.compile(r"^\s*(?:/|END:\s*)([\w.:-]+)\s*$")

COMPONENT_CLASSES: List[Tuple[str, Tuple[str, ...]]] = [
    ("chart", ("chart", "graph", "plot")),
    ("table", ("table", "datagrid", "grid")),
    ("metric", ("metric", "kpi", "stat")),
    ("timeline", ("timeline",)),
    ("list", ("list",)),
    ("card", ("card",)),
]


# ============================================================================
# NODES
# ============================================================================

@dataclass
class Text:
    raw: str


@dataclass
class Comment:
    raw: str

    @property
    def body(self) -> str:
        inner = self.raw[4:]
        return inner[:-3] if inner.endswith("-->") else inner


@dataclass
class Element:
    tag: str
    open_raw: str
    attrs: Dict[str, str] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)
    close_raw: str = ""
    self_closing: bool = False

    def attr(self, name: str) -> Optional[str]:
        return self.attrs.get(name)

    def class_tokens(self) -> List[str]:
        raw = self.attrs.get("class") or self.attrs.get("className") or ""
        return raw.split()


Node = Union[Text, Comment, Element]


@dataclass
class Document:
    children: List[Node] = field(default_factory=list)


Container = Union[Document, Element]


@dataclass
class Span:
    """A run of siblings ``container.children[start:end + 1]``."""
    container: Container
    start: int
    end: int

    def nodes(self) -> List[Node]:
        return self.container.children[self.start:self.end + 1]


# ============================================================================
# PARSER
# ============================================================================

def _read_attr_value(src: str, i: int) -> Tuple[str, int]:
    """Read a quoted, braced or bare value starting at ``i``; returns (value, next)."""
    ch = src[i] if i < len(src) else ""
    if ch in ("'", '"'):
        end = src.find(ch, i + 1)
        if end == -1:
            raise ValueError("unterminated attribute value")
        return src[i + 1:end], end + 1
    if ch == "{":
        depth = 0
        j = i
        quote = None
        while j < len(src):
            c = src[j]
            if quote:
                if c == "\\":
                    j += 2
                    continue
                if c == quote:
                    quote = None
            elif c in ("'", '"', "`"):
                quote = c
            elif c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    inner = src[i + 1:j].strip()
                    if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in "'\"`":
                        inner = inner[1:-1]
                    return inner, j + 1
            j += 1
        raise ValueError("unterminated expression attribute")
    m = re.compile(r"[^\s>]+").match(src, i)
    if not m:
        return "", i
    value = m.group(0)
    if value.endswith("/"):
        value = value[:-1]
    return value, i + len(value)


def _read_open_tag(src: str, i: int) -> Optional[Tuple[str, Dict[str, str], bool, int]]:
    """Parse ``<tag attrs... (/)>`` at ``i``; None when it is not a well formed tag."""
    m = _TAG_NAME_RE.match(src, i + 1)
    if not m:
        return None
    tag = m.group(0)
    j = m.end()
    attrs: Dict[str, str] = {}
    try:
        while True:
            j = _WS_RE.match(src, j).end()
            if j >= len(src):
                return None
            if src.startswith("/>", j):
                return tag, attrs, True, j + 2
            if src[j] == ">":
                return tag, attrs, False, j + 1
            if src[j] == "{":
                # JSX spread: {...props}
                _, j = _read_attr_value(src, j)
                continue
            am = _ATTR_NAME_RE.match(src, j)
            if not am:
                return None
            name = am.group(0)
            j = _WS_RE.match(src, am.end()).end()
            if j < len(src) and src[j] == "=":
                j = _WS_RE.match(src, j + 1).end()
                value, j = _read_attr_value(src, j)
            else:
                value = ""
            attrs[name] = value
    except ValueError:
        return None


_CLOSE_TAG_RE = re.compile(r"</\s*([A-Za-z][\w.:-]*)\s*>")


def parse(src: str) -> Document:
    doc = Document()
    stack: List[Container] = [doc]
    text_start = 0
    i = 0
    n = len(src)

    def flush(upto: int):
        if upto > text_start:
            stack[-1].children.append(Text(src[text_start:upto]))

    while i < n:
        lt = src.find("<", i)
        if lt == -1:
            break
        if src.startswith("<!--", lt):
            end = src.find("-->", lt + 4)
            stop = n if end == -1 else end + 3
            flush(lt)
            stack[-1].children.append(Comment(src[lt:stop]))
            i = text_start = stop
            continue
        cm = _CLOSE_TAG_RE.match(src, lt)
        if cm:
            name = cm.group(1)
            depth = None
            for d in range(len(stack) - 1, 0, -1):
                if stack[d].tag == name:
                    depth = d
                    break
            if depth is None:
                # stray closing tag stays as text
                i = cm.end()
                continue
            flush(lt)
            while len(stack) - 1 > depth:
                stack.pop()
            stack[-1].close_raw = cm.group(0)
            stack.pop()
            i = text_start = cm.end()
            continue
        parsed = _read_open_tag(src, lt)
        if parsed is None:
            i = lt + 1
            continue
        tag, attrs, self_closing, stop = parsed
        flush(lt)
        el = Element(tag=tag, open_raw=src[lt:stop], attrs=attrs, self_closing=self_closing)
        stack[-1].children.append(el)
        if not self_closing and tag not in VOID_ELEMENTS:
            stack.append(el)
        i = text_start = stop

    flush(n)
    return doc


def serialize(node: Union[Document, Node, List[Node]]) -> str:
    parts: List[str] = []

    def emit(nd):
        if isinstance(nd, (Text, Comment)):
            parts.append(nd.raw)
        elif isinstance(nd, Element):
            parts.append(nd.open_raw)
            for c in nd.children:
                emit(c)
            parts.append(nd.close_raw)
        else:
            for c in nd.children:
                emit(c)

    if isinstance(node, list):
        for nd in node:
            emit(nd)
    else:
        emit(node)
    return "".join(parts)


# ============================================================================
# LOOKUPS
# ============================================================================

def walk(container: Container) -> Iterator[Tuple[Container, int, Node]]:
    """Depth-first, document order."""
    for idx, node in enumerate(container.children):
        yield container, idx, node
        if isinstance(node, Element):
            yield from walk(node)


def _containers(container: Container) -> Iterator[Container]:
    yield container
    for node in container.children:
        if isinstance(node, Element):
            yield from _containers(node)


def find_region(doc: Document, name: str) -> Optional[Span]:
    """Comment-delimited region, delimiters included."""
    for container in _containers(doc):
        kids = container.children
        for i, node in enumerate(kids):
            if not isinstance(node, Comment):
                continue
            m = _REGION_OPEN_RE.match(node.body)
            if not m or m.group(1) != name:
                continue
            for j in range(i + 1, len(kids)):
                other = kids[j]
                if isinstance(other, Comment):
                    cm = _REGION_CLOSE_RE.match(other.body)
                    if cm and cm.group(1) == name:
                        return Span(container, i, j)
    return None


def _find_element(doc: Document, predicate) -> Optional[Span]:
    for container, idx, node in walk(doc):
        if isinstance(node, Element) and predicate(node):
            return Span(container, idx, idx)
    return None


def find_by_attr(doc: Document, name: str, value: str) -> Optional[Span]:
    return _find_element(doc, lambda el: el.attr(name) == value)


def find_by_class(doc: Document, token: str) -> Optional[Span]:
    return _find_element(doc, lambda el: token in el.class_tokens())


def find_addressable(doc: Document, name: str) -> Optional[Span]:
    return (
        find_region(doc, name)
        or find_by_attr(doc, "id", name)
        or find_by_attr(doc, "data-component", name)
        or find_by_class(doc, name)
    )


def find_by_title(doc: Document, title: str) -> Optional[Span]:
    return find_by_attr(doc, "title", title)


def first_titled(doc: Document) -> Optional[str]:
    for _, _, node in walk(doc):
        if isinstance(node, Element) and node.attr("title"):
            return node.attr("title")
    return None


def leading_element(doc: Document) -> Optional[Element]:
    """First top-level node that is not whitespace or a comment, if it is an element."""
    for node in doc.children:
        if isinstance(node, Text) and not node.raw.strip():
            continue
        if isinstance(node, Comment):
            continue
        return node if isinstance(node, Element) else None
    return None


def component_class(el: Element) -> Optional[str]:
    haystack = " ".join([el.tag, el.attr("data-component") or ""] + el.class_tokens()).lower()
    for name, keywords in COMPONENT_CLASSES:
        if any(k in haystack for k in keywords):
            return name
    return None


def component_classes(container: Container) -> List[str]:
    """Broad component classes present, in document order, without repeats."""
    found: List[str] = []
    for _, _, node in walk(container):
        if isinstance(node, Element):
            cls = component_class(node)
            if cls and cls not in found:
                found.append(cls)
    return found


def first_with_class(doc: Document, cls: str) -> Optional[Span]:
    """First element, in document order, whose own broad component class is ``cls``."""
    return _find_element(doc, lambda el: component_class(el) == cls)


# ============================================================================
# EDITS
# ============================================================================

def replace_span(span: Span, nodes: List[Node]) -> None:
    span.container.children[span.start:span.end + 1] = list(nodes)


def replace_region_body(span: Span, nodes: List[Node]) -> None:
    """Swap what lies between two region delimiters, keeping the delimiters."""
    span.container.children[span.start + 1:span.end] = list(nodes)


def insert_after(span: Span, nodes: List[Node]) -> None:
    pos = span.end + 1
    span.container.children[pos:pos] = list(nodes)


def append(doc: Document, nodes: List[Node], separator: str = "\n\n") -> None:
    tail = serialize(doc)
    if tail and not tail.endswith(separator):
        sep = separator[len(tail) - len(tail.rstrip("\n")):] if tail.endswith("\n") else separator
        if sep:
            doc.children.append(Text(sep))
    doc.children.extend(nodes)
