from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence
from urllib.parse import parse_qs, unquote, urlparse

from .config import ParseConfiguration, ParseGlobals
from .errors import InvalidSection
from .markup import HEADING_TAGS, LIST_TAGS, ParserContext
from .models import CommentRecord, SectionRecord
from .timestamps import AnchorRegistry

logger = logging.getLogger(__name__)

LEVEL_CLASS = "cd-commentLevel"
EDIT_SECTION_CLASS = "mw-editsection"
HEADLINE_CLASS = "mw-headline"


class LevelResolver:
    """
    Computes comment levels from indentation containers (dl, ul, ol) and marks
    those containers with depth classes.
    """

    def __init__(self, tree: ParserContext):
        self.tree = tree

    def levels_up_tree(self, node: Any) -> List[Any]:
        """Indentation containers above `node`, outermost first."""
        containers = [ancestor for ancestor in self.tree.ancestors(node) if self.tree.tag_name(ancestor) in LIST_TAGS]
        containers.reverse()
        return containers

    def assign(self, record: CommentRecord) -> None:
        # The top and the bottom of a comment can sit at different depths in
        # broken markup; the shallower one wins.
        top = self.levels_up_tree(record.highlightables[0])
        if len(record.parts) > 1:
            bottom = self.levels_up_tree(record.highlightables[-1])
        else:
            bottom = top
        record.level = min(len(top), len(bottom))
        for index in range(record.level):
            names = (LEVEL_CLASS, f"{LEVEL_CLASS}-{index + 1}")
            self.tree.add_class(top[index], *names)
            if bottom[index] is not top[index]:
                self.tree.add_class(bottom[index], *names)


class SectionResolver:
    """
    Builds section records from headings and attributes comments to them.

    Sections are kept as a flat list in document order; a heading of depth L
    closes every open section of depth >= L. A comment is listed in every
    section open at its position, so the innermost section is the last one
    created that lists it.
    """

    def __init__(self, tree: ParserContext, config: ParseConfiguration, globals_: ParseGlobals):
        self.tree = tree
        self.config = config
        self.globals = globals_
        self._anchors = AnchorRegistry()

    def find_headings(self) -> List[Any]:
        headings = []
        for heading in self.tree.find_all(sorted(HEADING_TAGS)):
            container = self.tree.parent(heading)
            if container is not None and self.tree.closest(container, self.config.excluded_selectors):
                continue
            headings.append(heading)
        return headings

    def create_section(self, heading: Any, section_id: int) -> SectionRecord:
        headline = self.headline(heading)
        if not headline:
            raise InvalidSection("Heading has no headline text")
        return SectionRecord(
            id=section_id,
            headline=headline,
            anchor=self._anchors.reserve(self._anchor(heading, headline)),
            level=int(self.tree.tag_name(heading)[1]),
            source_page=self.source_page(heading),
            heading=heading,
        )

    def headline(self, heading: Any) -> str:
        pieces = []
        for node in self.tree.descendants(heading):
            if not self.tree.is_text(node):
                continue
            if self._inside_edit_section(node, heading):
                continue
            pieces.append(self.tree.text(node))
        return " ".join("".join(pieces).split())

    def source_page(self, heading: Any) -> Optional[str]:
        """
        Title of the page the section is edited at. Differs from the current
        page when the section is transcluded.
        """
        current = self.globals.current_page_name
        scope = heading
        parent = self.tree.parent(heading)
        if parent is not None and self.tree.has_any_class(parent, self.config.heading_wrapper_classes):
            scope = parent
        for edit_section in self.tree.find_by_class(scope, EDIT_SECTION_CLASS):
            for link in self.tree.find_all(["a"], edit_section):
                href = self.tree.get_attribute(link, "href")
                if not href:
                    continue
                query = parse_qs(urlparse(href).query)
                if query.get("action", [""])[0] != "edit" or not query.get("title"):
                    continue
                title = unquote(query["title"][0]).replace("_", " ")
                if current is None or title != current.replace("_", " "):
                    return title
                return current
        return current

    def bind(self, sections: Sequence[SectionRecord], comments: Sequence[CommentRecord]) -> None:
        events = [(self.tree.position(section.heading), 0, section) for section in sections]
        events.extend((self.tree.position(comment.highlightables[0]), 1, comment) for comment in comments)
        events.sort(key=lambda event: (event[0], event[1]))

        open_sections: List[SectionRecord] = []
        for _, kind, item in events:
            if kind == 0:
                while open_sections and open_sections[-1].level >= item.level:
                    open_sections.pop()
                open_sections.append(item)
            else:
                for section in open_sections:
                    section.comment_ids.append(item.id)
        for comment in comments:
            section = section_for(sections, comment)
            comment.section_id = section.id if section else None

    def _anchor(self, heading: Any, headline: str) -> str:
        heading_id = self.tree.get_attribute(heading, "id")
        if heading_id:
            return heading_id
        for headline_span in self.tree.find_by_class(heading, HEADLINE_CLASS):
            span_id = self.tree.get_attribute(headline_span, "id")
            if span_id:
                return span_id
        return headline.replace(" ", "_")

    def _inside_edit_section(self, node: Any, heading: Any) -> bool:
        current = self.tree.parent(node)
        while current is not None and current is not heading:
            if self.tree.has_class(current, EDIT_SECTION_CLASS):
                return True
            current = self.tree.parent(current)
        return False


def section_for(sections: Sequence[SectionRecord], comment: CommentRecord) -> Optional[SectionRecord]:
    """Innermost section listing the comment, searching latest-created first."""
    for section in reversed(sections):
        if comment.id in section.comment_ids:
            return section
    return None
