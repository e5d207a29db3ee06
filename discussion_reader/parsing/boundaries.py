from __future__ import annotations

import re
from itertools import chain
from typing import Any, Callable, List, Sequence, Set

from .config import ParseConfiguration
from .errors import InvalidComment
from .markup import HEADING_TAGS, LIST_ITEM_TAGS, LIST_TAGS, ParserContext
from .models import CommentPart, CommentRecord, Signature
from .sections import LevelResolver

PART_CLASS = "cd-commentPart"
FIRST_PART_CLASS = "cd-commentPart-first"
LAST_PART_CLASS = "cd-commentPart-last"
COMMENT_ID_ATTRIBUTE = "data-comment-id"

_FLOAT_STYLE = re.compile(r"float\s*:\s*(?:left|right)")


class CommentBoundaryResolver:
    """
    Turns a signature into the set of tree fragments making up its comment.

    Signatures are expected end-first: a comment's content precedes its
    signature, so the walk goes backward and upward from the signature and
    stops at headings, other signatures, fragments already claimed by a
    comment, and foreign components.
    """

    def __init__(
        self,
        tree: ParserContext,
        config: ParseConfiguration,
        signatures: Sequence[Signature],
        is_foreign_component: Callable[[Any], bool],
        levels: LevelResolver,
    ):
        self.tree = tree
        self.config = config
        self.is_foreign_component = is_foreign_component
        self.levels = levels
        self._signature_ids: Set[int] = {id(signature.element) for signature in signatures}
        self._claimed: Set[int] = set()

    def resolve(self, signature: Signature) -> CommentRecord:
        element = signature.element
        parts = self.collect_parts(element)
        follows_outdent = any(part.is_outdent for part in parts)
        parts = [part for part in parts if not part.is_outdent]
        parts = self.remove_nested_parts(parts)
        parts = self.enclose_inline_parts(parts)
        parts = self.filter_parts(parts)
        parts.reverse()
        parts = self.replace_lists_with_items(parts)

        highlightables = [part.node for part in parts if self.is_highlightable(part.node)]
        if not highlightables:
            raise InvalidComment(f"No highlightable elements for the comment signed {signature.timestamp_text}")

        record = CommentRecord(
            id=-1,
            date=signature.date,
            timestamp_text=signature.timestamp_text,
            author_name=signature.author_name,
            anchor=signature.anchor,
            is_unsigned=signature.is_unsigned,
            parts=parts,
            highlightables=highlightables,
            follows_outdent=follows_outdent,
        )
        self.levels.assign(record)

        if record.parts[0].is_heading:
            record.follows_heading = True
            if record.level != 0:
                del record.parts[0]
        if record.parts[0].is_heading:
            record.is_opening_section = True
            record.opening_section_level = record.parts[0].heading_level

        for part in record.parts:
            self._claimed.add(id(part.node))
        return record

    # region collection
    def collect_parts(self, signature_element: Any) -> List[CommentPart]:
        """
        Walk previous siblings, then climb to the parent while the parent holds
        nothing but this comment. Parts come out in reverse document order.
        Outdent markers are passed over and returned flagged `is_outdent`.
        """
        tree = self.tree
        wrappers = self.config.heading_wrapper_classes
        outdents = self.config.outdent_classes
        parts = [CommentPart(node=signature_element)]
        current = signature_element
        while True:
            stop = False
            previous = tree.previous_sibling(current)
            while previous is not None:
                if self._is_skippable(previous):
                    previous = tree.previous_sibling(previous)
                    continue
                if tree.has_any_class(previous, outdents):
                    parts.append(CommentPart(node=previous, is_outdent=True))
                    previous = tree.previous_sibling(previous)
                    continue
                heading_level = tree.heading_level(previous, wrappers)
                if heading_level:
                    parts.append(CommentPart(node=previous, is_heading=True, heading_level=heading_level))
                    stop = True
                    break
                if self._is_foreign(previous, signature_element) or self._contains_heading(previous):
                    stop = True
                    break
                parts.append(CommentPart(node=previous, is_text=tree.is_text(previous)))
                previous = tree.previous_sibling(previous)
            if stop:
                break

            parent = tree.parent(current)
            if parent is None or parent is tree.root or self._is_foreign(parent, signature_element):
                break
            parts.append(CommentPart(node=parent))
            current = parent
        return parts

    def remove_nested_parts(self, parts: List[CommentPart]) -> List[CommentPart]:
        kept = []
        for part in parts:
            nested = any(
                other is not part and other.node is not part.node and self.tree.contains(other.node, part.node)
                for other in parts
            )
            if not nested and not any(existing.node is part.node for existing in kept):
                kept.append(part)
        return kept

    def enclose_inline_parts(self, parts: List[CommentPart]) -> List[CommentPart]:
        """
        Wrap runs of sibling inline parts in a <div> so every part can carry
        classes and have a box of its own.
        """
        result: List[CommentPart] = []
        run: List[CommentPart] = []

        def flush():
            if not run:
                return
            if not any(self.tree.has_semantic_content(part.node) for part in run):
                result.extend(run)
            else:
                nodes_in_order = [part.node for part in reversed(run)]
                wrapper = self.tree.wrap(self._sibling_range(nodes_in_order[0], nodes_in_order[-1]), "div")
                result.append(CommentPart(node=wrapper))
            run.clear()

        for part in parts:
            is_inline = not part.is_heading and self.tree.is_inline(part.node)
            if is_inline and (not run or self.tree.parent(run[-1].node) is self.tree.parent(part.node)):
                run.append(part)
                continue
            flush()
            if is_inline:
                run.append(part)
            else:
                result.append(part)
        flush()
        return result

    def filter_parts(self, parts: List[CommentPart]) -> List[CommentPart]:
        return [
            part
            for part in parts
            if part.is_heading
            or (
                self.tree.is_element(part.node)
                and self.tree.tag_name(part.node) != "br"
                and self.tree.has_semantic_content(part.node)
            )
        ]

    def replace_lists_with_items(self, parts: List[CommentPart]) -> List[CommentPart]:
        """
        Replace lists owned by the comment with their items, descending into
        items that only hold another list, so level classes land on the
        innermost item.
        """
        result: List[CommentPart] = []
        for part in parts:
            if self.tree.tag_name(part.node) in LIST_TAGS:
                items = self._list_items(part.node)
                if items:
                    result.extend(CommentPart(node=item) for item in items)
                    continue
            result.append(part)
        return result

    def is_highlightable(self, node: Any) -> bool:
        tree = self.tree
        if not tree.is_element(node):
            return False
        if tree.heading_level(node, self.config.heading_wrapper_classes):
            return False
        if tree.has_any_class(node, self.config.unhighlightable_element_classes):
            return False
        return not _FLOAT_STYLE.search(tree.get_attribute(node, "style") or "")

    # endregion

    def _list_items(self, list_node: Any) -> List[Any]:
        tree = self.tree
        items = []
        for child in tree.children(list_node):
            if tree.is_element(child):
                if tree.tag_name(child) not in LIST_ITEM_TAGS:
                    return []
                items.append(child)
            elif tree.is_text(child) and tree.text(child).strip():
                return []
        expanded = []
        for item in items:
            inner = self._only_nested_list(item)
            nested_items = self._list_items(inner) if inner is not None else []
            expanded.extend(nested_items or [item])
        return expanded

    def _only_nested_list(self, item: Any) -> Any:
        tree = self.tree
        elements = tree.element_children(item)
        if len(elements) != 1 or tree.tag_name(elements[0]) not in LIST_TAGS:
            return None
        has_text = any(tree.is_text(child) and tree.text(child).strip() for child in tree.children(item))
        return None if has_text else elements[0]

    def _sibling_range(self, first: Any, last: Any) -> List[Any]:
        nodes = []
        node = first
        while node is not None:
            nodes.append(node)
            if node is last:
                break
            node = self.tree.next_sibling(node)
        return nodes

    def _is_skippable(self, node: Any) -> bool:
        tree = self.tree
        if not tree.is_element(node) and not tree.is_text(node):
            return True
        return tree.matches(node, self.config.floating_selectors)

    def _contains_heading(self, node: Any) -> bool:
        if not self.tree.is_element(node):
            return False
        return any(self.tree.tag_name(element) in HEADING_TAGS for element in self.tree.descendants(node))

    def _is_foreign(self, node: Any, own_signature: Any) -> bool:
        """
        Whether `node` holds something that is not ours: another signature, a
        part of an already built comment, or a foreign component.
        """
        if not self.tree.is_element(node):
            return False
        for element in chain([node], self.tree.descendants(node)):
            if not self.tree.is_element(element) or element is own_signature:
                continue
            if id(element) in self._signature_ids or id(element) in self._claimed:
                return True
            if self.is_foreign_component(element):
                return True
        return False


def mark_comment(tree: ParserContext, record: CommentRecord) -> None:
    """
    Put the boundary and id markers on the comment's elements once its final
    id is known.
    """
    elements = record.elements
    first_highlightable = record.highlightables[0]
    if record.anchor and not tree.get_attribute(first_highlightable, "id"):
        tree.set_attribute(first_highlightable, "id", record.anchor)
    tree.add_class(elements[0], FIRST_PART_CLASS)
    tree.add_class(elements[-1], LAST_PART_CLASS)
    for element in elements:
        tree.add_class(element, PART_CLASS)
        tree.set_attribute(element, COMMENT_ID_ATTRIBUTE, str(record.id))
