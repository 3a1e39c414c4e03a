"""
An in-memory element tree with CSS-style selector queries.

This is the default element capability of `ClientHost`. It supports the
selector subset operations need: type (`div`), universal (`*`), `#id`,
`.class`, `[attr]`, `[attr=value]`, compound selectors, the descendant
(` `) and child (`>`) combinators, and comma-separated groups.
"""
from __future__ import annotations

import re
import collections.abc
from typing import Any, Dict, Iterable, Iterator, List, Optional


class SelectorError(ValueError):
    """Raised for a selector the matcher cannot parse."""


class ClassList:
    """A live view over an element's `class` attribute."""
    def __init__(self, element: 'Element'):
        self._el = element

    def _tokens(self) -> List[str]:
        return (self._el.attributes.get("class") or "").split()

    def _store(self, tokens: List[str]):
        if tokens:
            self._el.attributes["class"] = " ".join(tokens)
        else:
            self._el.attributes.pop("class", None)

    def add(self, *names: str):
        tokens = self._tokens()
        for name in names:
            if name and name not in tokens:
                tokens.append(name)
        self._store(tokens)

    def remove(self, *names: str):
        self._store([t for t in self._tokens() if t not in names])

    def toggle(self, name: str) -> bool:
        if name in self:
            self.remove(name)
            return False
        self.add(name)
        return True

    def __contains__(self, name) -> bool:
        return name in self._tokens()

    def __iter__(self):
        return iter(self._tokens())

    def __len__(self):
        return len(self._tokens())

    def __repr__(self):
        return f"<ClassList {self._tokens()!r}>"


class Element:
    """One node of the in-memory tree."""
    def __init__(self, tag: str = "div", attributes: Optional[Dict[str, str]] = None,
                 text: str = "", value: str = ""):
        self.tag = tag.lower()
        self.attributes: Dict[str, str] = dict(attributes or {})
        self.text_content = text
        self.value = value
        self.style: Dict[str, str] = {}
        self.children: List[Element] = []
        self.parent: Optional[Element] = None
        self.class_list = ClassList(self)

    @property
    def id(self) -> Optional[str]:
        return self.attributes.get("id")

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def set_attribute(self, name: str, value: Any):
        self.attributes[name] = str(value)

    def remove_attribute(self, name: str):
        self.attributes.pop(name, None)

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def append_child(self, child: 'Element') -> 'Element':
        if child.parent is not None:
            child.parent.remove_child(child)
        child.parent = self
        self.children.append(child)
        return child

    def remove_child(self, child: 'Element'):
        self.children.remove(child)
        child.parent = None

    def remove(self):
        if self.parent is not None:
            self.parent.remove_child(self)

    def iter_descendants(self) -> Iterator['Element']:
        for child in self.children:
            yield child
            yield from child.iter_descendants()

    def __repr__(self):
        ident = f"#{self.id}" if self.id else ""
        classes = "".join(f".{c}" for c in self.class_list)
        return f"<Element {self.tag}{ident}{classes}>"


# =================================================================
# Selector parsing and matching
# =================================================================

_COMPOUND_RE = re.compile(
    r"""
    (?P<tag>\*|[a-zA-Z][\w-]*)
    | \#(?P<id>[\w-]+)
    | \.(?P<cls>[\w-]+)
    | \[\s*(?P<attr>[\w-]+)\s*(?:=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\]\s]+))\s*)?\]
    """,
    re.VERBOSE,
)


class _Compound:
    __slots__ = ("tag", "ids", "classes", "attrs")

    def __init__(self):
        self.tag: Optional[str] = None
        self.ids: List[str] = []
        self.classes: List[str] = []
        self.attrs: List[tuple] = []

    def matches(self, el: Element) -> bool:
        if self.tag not in (None, "*") and el.tag != self.tag:
            return False
        if any(el.id != i for i in self.ids):
            return False
        if any(c not in el.class_list for c in self.classes):
            return False
        for name, expected in self.attrs:
            if name not in el.attributes:
                return False
            if expected is not None and el.attributes[name] != expected:
                return False
        return True


def _parse_compound(text: str, selector: str) -> _Compound:
    comp = _Compound()
    pos = 0
    while pos < len(text):
        m = _COMPOUND_RE.match(text, pos)
        if not m or m.end() == pos:
            raise SelectorError(f"Invalid selector: {selector!r}")
        if m.group("tag"):
            if pos != 0:
                raise SelectorError(f"Invalid selector: {selector!r}")
            comp.tag = m.group("tag").lower()
        elif m.group("id"):
            comp.ids.append(m.group("id"))
        elif m.group("cls"):
            comp.classes.append(m.group("cls"))
        else:
            value = m.group("dq")
            if value is None:
                value = m.group("sq")
            if value is None:
                value = m.group("bare")
            comp.attrs.append((m.group("attr"), value))
        pos = m.end()
    return comp


def parse_selector(selector: str) -> List[List[tuple]]:
    """Parses into groups of (combinator, compound) steps, left to right."""
    if not isinstance(selector, str) or not selector.strip():
        raise SelectorError(f"Invalid selector: {selector!r}")
    groups = []
    for group in selector.split(","):
        tokens = re.sub(r"\s*>\s*", " > ", group.strip()).split()
        if not tokens or tokens[0] == ">" or tokens[-1] == ">":
            raise SelectorError(f"Invalid selector: {selector!r}")
        steps = []
        combinator = " "
        for tok in tokens:
            if tok == ">":
                combinator = ">"
                continue
            steps.append((combinator, _parse_compound(tok, selector)))
            combinator = " "
        groups.append(steps)
    return groups


def _matches_steps(el: Element, steps: List[tuple]) -> bool:
    combinator, compound = steps[-1]
    if not compound.matches(el):
        return False
    if len(steps) == 1:
        return True
    rest = steps[:-1]
    ancestor = el.parent
    if combinator == ">":
        return ancestor is not None and _matches_steps(ancestor, rest)
    while ancestor is not None:
        if _matches_steps(ancestor, rest):
            return True
        ancestor = ancestor.parent
    return False


def matches(el: Element, selector: str) -> bool:
    return any(_matches_steps(el, steps) for steps in parse_selector(selector))


# =================================================================
# Document and collections
# =================================================================

class LiveCollection(collections.abc.Sequence):
    """A selector result that re-queries the document on every access."""
    def __init__(self, document: 'MemoryDocument', selector: str):
        self._document = document
        self._selector = selector

    def _current(self) -> List[Element]:
        return self._document.query_selector_all(self._selector)

    def __getitem__(self, idx):
        return self._current()[idx]

    def __len__(self):
        return len(self._current())

    def __iter__(self):
        return iter(self._current())

    def __repr__(self):
        return f"<LiveCollection {self._selector!r} ({len(self)})>"


class MemoryDocument:
    """A document root with selector queries over its descendants."""
    def __init__(self):
        self.root = Element("html")
        self.body = self.root.append_child(Element("body"))

    @classmethod
    def from_tree(cls, nodes: Iterable[dict]) -> 'MemoryDocument':
        """Builds a document from `{tag, id, class, attrs, text, value, children}` records."""
        doc = cls()
        for node in nodes or []:
            doc.body.append_child(doc._build(node))
        return doc

    def _build(self, node: dict) -> Element:
        attrs = dict(node.get("attrs") or {})
        if node.get("id"):
            attrs["id"] = node["id"]
        if node.get("class"):
            attrs["class"] = node["class"]
        el = Element(node.get("tag", "div"), attrs, text=node.get("text", ""),
                     value=node.get("value", ""))
        for child in node.get("children") or []:
            el.append_child(self._build(child))
        return el

    def create_element(self, tag: str, **attrs) -> Element:
        return Element(tag, {k.rstrip("_"): str(v) for k, v in attrs.items()})

    def append(self, element: Element, parent: Optional[Element] = None) -> Element:
        return (parent or self.body).append_child(element)

    def query_selector_all(self, selector: str) -> List[Element]:
        groups = parse_selector(selector)
        return [el for el in self.root.iter_descendants()
                if any(_matches_steps(el, steps) for steps in groups)]

    def query_selector(self, selector: str) -> Optional[Element]:
        found = self.query_selector_all(selector)
        return found[0] if found else None

    def get_element_by_id(self, element_id: str) -> Optional[Element]:
        for el in self.root.iter_descendants():
            if el.id == element_id:
                return el
        return None

    def get_elements_by_class_name(self, name: str) -> LiveCollection:
        return LiveCollection(self, "." + name)

    def live(self, selector: str) -> LiveCollection:
        parse_selector(selector)
        return LiveCollection(self, selector)

    def select(self, selector) -> List[Element]:
        """A single selector or the union of a list of selectors."""
        if not selector:
            return []
        if isinstance(selector, list):
            out: List[Element] = []
            for s in selector:
                out.extend(self.query_selector_all(s))
            return out
        return self.query_selector_all(selector)
