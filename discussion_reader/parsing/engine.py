from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .boundaries import CommentBoundaryResolver, mark_comment
from .config import ForeignComponentPredicate, ParseConfiguration, ParseGlobals
from .errors import InvalidComment, InvalidSection, StructuralError
from .markup import MarkupTree, build_tree
from .models import CommentData, CommentRecord, ParseResult, SectionData, SectionRecord, Signature
from .replies import link_replies
from .sections import LevelResolver, SectionResolver
from .timestamps import AnchorRegistry, SignatureScanner

logger = logging.getLogger(__name__)


@dataclass
class ParseRequest:
    html: str
    config: ParseConfiguration = field(default_factory=ParseConfiguration)
    globals: ParseGlobals = field(default_factory=ParseGlobals)

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "ParseRequest":
        """
        Build a request from a host message. `html` is also accepted as `text`.
        Invalid configuration surfaces as `StructuralError`.
        """
        html = message.get("html")
        if html is None:
            html = message.get("text")
        if html is None:
            raise StructuralError("Parse message carries no markup")
        try:
            config = ParseConfiguration.from_dict(message.get("config"))
            globals_ = ParseGlobals.from_dict(message.get("globals") or message.get("g"))
        except (TypeError, ValueError) as exc:
            raise StructuralError(f"Invalid parse configuration: {exc}") from exc
        return cls(html=html, config=config, globals=globals_)


@dataclass
class ParseSession:
    """
    All state of one parse. Created per request and dropped when the result
    has been serialized.
    """

    request: ParseRequest
    tree: Optional[MarkupTree] = None
    signatures: List[Signature] = field(default_factory=list)
    comments: List[CommentRecord] = field(default_factory=list)
    sections: List[SectionRecord] = field(default_factory=list)
    anchors: AnchorRegistry = field(default_factory=AnchorRegistry)
    dropped_comments: int = 0
    dropped_sections: int = 0
    timings: Dict[str, float] = field(default_factory=dict)


class ParsingEngine:
    """
    Abstract parsing engine. Implementations should be stateless and reusable.
    """

    def parse(self, request: ParseRequest) -> ParseResult:
        raise NotImplementedError


class DiscussionParsingEngine(ParsingEngine):
    """
    Rebuilds comments and sections from discussion page markup.

    Tree building and timestamp/signature scanning concern the whole page, so
    any failure there aborts the parse with `StructuralError`. Failures while
    building one comment or one section are logged and only drop that record.
    """

    def __init__(
        self,
        foreign_component_checker: Optional[ForeignComponentPredicate] = None,
        engine_version: str = "discussion-reader-0.1",
    ):
        self.foreign_component_checker = foreign_component_checker
        self.engine_version = engine_version

    def parse(self, request: ParseRequest) -> ParseResult:
        session = self.run(request)
        return self.serialize(session)

    def run(self, request: ParseRequest) -> ParseSession:
        session = ParseSession(request=request)
        started = time.perf_counter()
        try:
            session.tree = build_tree(request.html, request.config)
            self._mark(session, "parse html", started)

            scanner = SignatureScanner(session.tree, request.config, session.anchors)
            timestamps = scanner.find_timestamps()
            self._mark(session, "find timestamps", started)
            session.signatures = scanner.find_signatures(timestamps)
            self._mark(session, "find signatures", started)
        except StructuralError:
            raise
        except Exception as exc:
            raise StructuralError(f"Could not scan the page: {exc}") from exc

        self._create_comments(session)
        self._mark(session, "processing comments", started)
        self._create_sections(session)
        link_replies(session.comments, request.globals.current_user_name)
        self._mark(session, "processing sections", started)

        logger.info(
            "Parsed %d comments and %d sections (%d comments, %d sections dropped) in %.1f ms",
            len(session.comments),
            len(session.sections),
            session.dropped_comments,
            session.dropped_sections,
            session.timings["processing sections"],
        )
        return session

    def serialize(self, session: ParseSession) -> ParseResult:
        """
        Build wire records from the session. The session's records are left untouched.
        """
        sections_by_id = {section.id: section for section in session.sections}
        current_page = session.request.globals.current_page_name
        comments = [
            CommentData.from_record(comment, sections_by_id.get(comment.section_id), current_page)
            for comment in session.comments
        ]
        sections = [SectionData.from_record(section) for section in session.sections]
        return ParseResult(
            comments=comments,
            sections=sections,
            metadata={
                "engine_version": self.engine_version,
                "dropped_comments": session.dropped_comments,
                "dropped_sections": session.dropped_sections,
                "timings_ms": dict(session.timings),
            },
        )

    def _create_comments(self, session: ParseSession) -> None:
        tree = session.tree
        config = session.request.config
        resolver = CommentBoundaryResolver(
            tree,
            config,
            session.signatures,
            config.foreign_component_predicate(tree, self.foreign_component_checker),
            LevelResolver(tree),
        )
        records: List[CommentRecord] = []
        for signature in session.signatures:
            try:
                records.append(resolver.resolve(signature))
            except InvalidComment as exc:
                session.dropped_comments += 1
                logger.debug("Dropped comment by %s: %s", signature.author_name, exc)
            except Exception:
                session.dropped_comments += 1
                logger.exception(
                    "Failed to build the comment by %s at %s", signature.author_name, signature.timestamp_text
                )

        records.sort(key=lambda record: tree.position(record.elements[0]))
        for index, record in enumerate(records):
            record.id = index
            mark_comment(tree, record)
        session.comments = records

    def _create_sections(self, session: ParseSession) -> None:
        tree = session.tree
        resolver = SectionResolver(tree, session.request.config, session.request.globals)
        sections: List[SectionRecord] = []
        for heading in resolver.find_headings():
            try:
                sections.append(resolver.create_section(heading, len(sections)))
            except InvalidSection as exc:
                session.dropped_sections += 1
                logger.debug("Dropped section: %s", exc)
            except Exception:
                session.dropped_sections += 1
                logger.exception("Failed to build a section from <%s>", tree.tag_name(heading))
        resolver.bind(sections, session.comments)
        session.sections = sections

    def _mark(self, session: ParseSession, name: str, started: float) -> None:
        session.timings[name] = (time.perf_counter() - started) * 1000
