"""
Markup tree building and the tree operations the resolvers rely on.

Resolvers never touch BeautifulSoup objects through anything but the
`ParserContext` operations below, so another tree implementation only has to
provide the same capability set.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from .config import ParseConfiguration
from .errors import StructuralError

logger = logging.getLogger(__name__)

HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
LIST_TAGS = {"dl", "ul", "ol"}
LIST_ITEM_TAGS = {"dd", "dt", "li"}
INLINE_TAGS = {
    "a", "abbr", "b", "bdi", "bdo", "big", "br", "cite", "code", "data", "del",
    "dfn", "em", "font", "i", "img", "ins", "kbd", "label", "mark", "q", "s",
    "samp", "small", "span", "strike", "strong", "sub", "sup", "time", "tt", "u",
    "var", "wbr",
}
# Elements that carry meaning without any text inside.
_MEDIA_TAGS = {"img", "video", "audio", "svg", "math", "iframe", "object", "picture", "canvas", "table", "hr"}
_NOISE_TAGS = ["script", "style", "noscript"]


class ParserContext(Protocol):
    """Tree operations available to the resolvers."""

    root: Any

    # navigation
    def parent(self, node: Any) -> Optional[Any]:
        ...

    def previous_sibling(self, node: Any) -> Optional[Any]:
        ...

    def next_sibling(self, node: Any) -> Optional[Any]:
        ...

    def children(self, node: Any) -> List[Any]:
        ...

    def element_children(self, node: Any) -> List[Any]:
        ...

    def ancestors(self, node: Any) -> Iterable[Any]:
        ...

    def descendants(self, node: Any) -> Iterable[Any]:
        ...

    # inspection
    def is_element(self, node: Any) -> bool:
        ...

    def is_text(self, node: Any) -> bool:
        ...

    def tag_name(self, node: Any) -> Optional[str]:
        ...

    def classes(self, node: Any) -> List[str]:
        ...

    def has_class(self, node: Any, name: str) -> bool:
        ...

    def has_any_class(self, node: Any, names: Iterable[str]) -> bool:
        ...

    def get_attribute(self, node: Any, name: str) -> Optional[str]:
        ...

    def text(self, node: Any) -> str:
        ...

    def heading_level(self, node: Any, wrapper_classes: Sequence[str] = ()) -> Optional[int]:
        ...

    def is_inline(self, node: Any) -> bool:
        ...

    def is_block(self, node: Any) -> bool:
        ...

    def has_semantic_content(self, node: Any) -> bool:
        ...

    def matches(self, node: Any, selectors: Sequence[str]) -> bool:
        ...

    def closest(self, node: Any, selectors: Sequence[str]) -> Optional[Any]:
        ...

    def find_by_class(self, node: Any, name: str) -> List[Any]:
        ...

    def find_all(self, names: Iterable[str], scope: Any = None) -> List[Any]:
        ...

    def contains(self, ancestor: Any, node: Any) -> bool:
        ...

    def all_text_nodes(self) -> List[Any]:
        ...

    # ordering
    def position(self, node: Any) -> int:
        ...

    def follows(self, node: Any, other: Any) -> bool:
        ...

    # mutation
    def add_class(self, node: Any, *names: str) -> None:
        ...

    def set_attribute(self, node: Any, name: str, value: str) -> None:
        ...

    def wrap(self, nodes: Sequence[Any], name: str, classes: Sequence[str] = ()) -> Any:
        ...

    def split_text(self, node: Any, offset: int) -> Tuple[Any, Optional[Any]]:
        ...


class MarkupTree:
    """
    BeautifulSoup-backed implementation of `ParserContext`.

    Positions are computed lazily from a single pass over the analysed root and
    recomputed after any structural mutation made through this class.
    """

    def __init__(self, soup: BeautifulSoup, root: Tag, markup: str):
        self.soup = soup
        self.root = root
        self._markup = markup
        self._positions: Optional[Dict[int, int]] = None
        self._line_starts: Optional[List[int]] = None
        self._selector_cache: Dict[Tuple[str, ...], Any] = {}

    # region navigation
    def parent(self, node: Any) -> Optional[Tag]:
        if node is self.root:
            return None
        return node.parent

    def previous_sibling(self, node: Any) -> Optional[Any]:
        if node is self.root:
            return None
        return node.previous_sibling

    def next_sibling(self, node: Any) -> Optional[Any]:
        if node is self.root:
            return None
        return node.next_sibling

    def children(self, node: Any) -> List[Any]:
        if not isinstance(node, Tag):
            return []
        return list(node.children)

    def element_children(self, node: Any) -> List[Tag]:
        return [child for child in self.children(node) if isinstance(child, Tag)]

    def ancestors(self, node: Any) -> Iterable[Tag]:
        """Ancestors below the root, nearest first."""
        current = self.parent(node)
        while current is not None and current is not self.root:
            yield current
            current = self.parent(current)

    def descendants(self, node: Any) -> Iterable[Any]:
        if not isinstance(node, Tag):
            return iter(())
        return node.descendants

    # endregion

    # region inspection
    def is_element(self, node: Any) -> bool:
        return isinstance(node, Tag)

    def is_text(self, node: Any) -> bool:
        return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)

    def tag_name(self, node: Any) -> Optional[str]:
        return node.name.lower() if isinstance(node, Tag) and node.name else None

    def classes(self, node: Any) -> List[str]:
        if not isinstance(node, Tag):
            return []
        value = node.get("class") or []
        return value.split() if isinstance(value, str) else list(value)

    def has_class(self, node: Any, name: str) -> bool:
        return name in self.classes(node)

    def has_any_class(self, node: Any, names: Iterable[str]) -> bool:
        node_classes = self.classes(node)
        return any(name in node_classes for name in names)

    def get_attribute(self, node: Any, name: str) -> Optional[str]:
        if not isinstance(node, Tag):
            return None
        value = node.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def text(self, node: Any) -> str:
        if isinstance(node, Tag):
            return node.get_text()
        if self.is_text(node):
            return str(node)
        return ""

    def heading_level(self, node: Any, wrapper_classes: Sequence[str] = ()) -> Optional[int]:
        heading = self.heading_element(node, wrapper_classes)
        return int(heading.name[1]) if heading is not None else None

    def heading_element(self, node: Any, wrapper_classes: Sequence[str] = ()) -> Optional[Tag]:
        name = self.tag_name(node)
        if name in HEADING_TAGS:
            return node
        if name and wrapper_classes and self.has_any_class(node, wrapper_classes):
            for child in self.element_children(node):
                if self.tag_name(child) in HEADING_TAGS:
                    return child
        return None

    def is_inline(self, node: Any) -> bool:
        if self.is_text(node):
            return True
        return self.tag_name(node) in INLINE_TAGS

    def is_block(self, node: Any) -> bool:
        return isinstance(node, Tag) and not self.is_inline(node)

    def has_semantic_content(self, node: Any) -> bool:
        if self.is_text(node):
            return bool(str(node).strip())
        if not isinstance(node, Tag):
            return False
        if self.tag_name(node) in _MEDIA_TAGS:
            return True
        if node.get_text().strip():
            return True
        return node.find(list(_MEDIA_TAGS)) is not None

    def matches(self, node: Any, selectors: Sequence[str]) -> bool:
        if not selectors or not isinstance(node, Tag):
            return False
        return self._compiled(selectors).match(node)

    def closest(self, node: Any, selectors: Sequence[str]) -> Optional[Tag]:
        if not selectors:
            return None
        current = node if isinstance(node, Tag) else self.parent(node)
        while current is not None and current is not self.root:
            if self.matches(current, selectors):
                return current
            current = self.parent(current)
        return None

    def find_by_class(self, node: Any, name: str) -> List[Tag]:
        if not isinstance(node, Tag):
            return []
        found = [node] if self.has_class(node, name) else []
        found.extend(node.find_all(class_=name))
        return found

    def find_all(self, names: Iterable[str], scope: Any = None) -> List[Tag]:
        """Elements named `names` below `scope` (the root by default), document order."""
        scope = self.root if scope is None else scope
        if not isinstance(scope, Tag):
            return []
        return scope.find_all(list(names))

    def contains(self, ancestor: Any, node: Any) -> bool:
        current = node
        while current is not None:
            if current is ancestor:
                return True
            current = current.parent
        return False

    def all_text_nodes(self) -> List[Any]:
        return [node for node in self.root.descendants if self.is_text(node)]

    # endregion

    # region ordering
    def position(self, node: Any) -> int:
        if self._positions is None:
            self._positions = {id(self.root): 0}
            for index, descendant in enumerate(self.root.descendants, start=1):
                self._positions[id(descendant)] = index
        try:
            return self._positions[id(node)]
        except KeyError:
            raise ValueError("Node is not part of the analysed tree") from None

    def follows(self, node: Any, other: Any) -> bool:
        return self.position(node) > self.position(other)

    def source_offset(self, node: Any) -> Optional[int]:
        """Character offset of an element's start tag in the original markup."""
        line = getattr(node, "sourceline", None)
        column = getattr(node, "sourcepos", None)
        if line is None or column is None:
            return None
        if self._line_starts is None:
            self._line_starts = [0]
            for index, char in enumerate(self._markup):
                if char == "\n":
                    self._line_starts.append(index + 1)
        if line - 1 >= len(self._line_starts):
            return None
        return self._line_starts[line - 1] + column

    # endregion

    # region mutation
    def add_class(self, node: Tag, *names: str) -> None:
        current = self.classes(node)
        for name in names:
            if name not in current:
                current.append(name)
        node["class"] = current

    def set_attribute(self, node: Tag, name: str, value: str) -> None:
        node[name] = value

    def create_element(self, name: str, classes: Sequence[str] = ()) -> Tag:
        element = self.soup.new_tag(name)
        if classes:
            element["class"] = list(classes)
        return element

    def wrap(self, nodes: Sequence[Any], name: str, classes: Sequence[str] = ()) -> Tag:
        """Move `nodes` (siblings, document order) into a new element placed where the first one was."""
        wrapper = self.create_element(name, classes)
        nodes[0].insert_before(wrapper)
        for node in nodes:
            wrapper.append(node.extract())
        self._invalidate()
        return wrapper

    def split_text(self, node: NavigableString, offset: int) -> Tuple[NavigableString, Optional[NavigableString]]:
        text = str(node)
        if offset <= 0 or offset >= len(text):
            return node, None
        left = NavigableString(text[:offset])
        right = NavigableString(text[offset:])
        node.replace_with(left)
        left.insert_after(right)
        self._invalidate()
        return left, right

    def _invalidate(self) -> None:
        self._positions = None

    # endregion

    def _compiled(self, selectors: Sequence[str]):
        key = tuple(selectors)
        compiled = self._selector_cache.get(key)
        if compiled is None:
            compiled = self.root.css.compile(", ".join(key))
            self._selector_cache[key] = compiled
        return compiled


def build_tree(markup: Union[str, bytes], config: Optional[ParseConfiguration] = None) -> MarkupTree:
    """
    Parse raw page markup into a `MarkupTree`.

    The stdlib `html.parser` backend never rejects malformed markup outright;
    anything it cannot make sense of ends up as text. Scripts and styles are
    dropped, never run.
    """
    config = config or ParseConfiguration()
    if isinstance(markup, bytes):
        markup = markup.decode("utf-8", errors="replace")
    if not isinstance(markup, str):
        raise StructuralError(f"Markup must be text, got {type(markup).__name__}")
    try:
        soup = BeautifulSoup(markup, "html.parser")
        for tag in soup.find_all(_NOISE_TAGS):
            tag.decompose()
        root = soup.select_one(config.root_selector) if config.root_selector else None
    except Exception as exc:
        raise StructuralError(f"Could not build the markup tree: {exc}") from exc
    if root is None:
        root = soup.body or soup
    logger.debug("Built markup tree from %d characters, root <%s>", len(markup), root.name)
    return MarkupTree(soup, root, markup)

