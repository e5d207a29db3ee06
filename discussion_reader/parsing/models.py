from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ParseJobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ParseJobPhase(str, Enum):
    PRECHECK = "precheck"
    PARSE = "parse"
    PERSIST = "persist"


@dataclass
class Signature:
    """
    A timestamp with its resolved author. `element` is the wrapper created
    around the signature in the tree; it only lives as long as the parse.
    """

    author_name: str
    timestamp_text: str
    date: Optional[datetime]
    anchor: Optional[str]
    is_unsigned: bool
    element: Any
    author_link: Any = None


@dataclass
class CommentPart:
    node: Any
    is_text: bool = False
    is_heading: bool = False
    heading_level: Optional[int] = None
    is_outdent: bool = False


@dataclass
class CommentRecord:
    id: int
    date: Optional[datetime]
    timestamp_text: str
    author_name: str
    anchor: Optional[str]
    is_unsigned: bool
    parts: List[CommentPart]
    highlightables: List[Any]
    level: int = 0
    is_opening_section: bool = False
    follows_heading: bool = False
    follows_outdent: bool = False
    opening_section_level: Optional[int] = None
    parent_comment_id: Optional[int] = None
    target_author_name: Optional[str] = None
    own: bool = False
    to_me: bool = False
    section_id: Optional[int] = None

    @property
    def elements(self) -> List[Any]:
        return [part.node for part in self.parts]


@dataclass
class SectionRecord:
    id: int
    headline: str
    anchor: str
    level: int
    source_page: Optional[str]
    heading: Any = None
    comment_ids: List[int] = field(default_factory=list)


@dataclass
class SectionRef:
    headline: str
    anchor: str


@dataclass
class CommentData:
    """
    Wire form of a comment. Built from a `CommentRecord`; holds no tree references.
    """

    id: int
    date: Optional[str]
    timestamp: str
    author_name: str
    anchor: Optional[str]
    is_unsigned: bool
    level: int
    is_opening_section: bool
    follows_heading: bool
    opening_section_level: Optional[int]
    parent_comment_id: Optional[int]
    target_comment_author_name: Optional[str]
    own: bool
    to_me: bool
    source_page: Optional[str]
    section: Optional[SectionRef] = None

    @classmethod
    def from_record(
        cls,
        record: CommentRecord,
        section: Optional[SectionRecord],
        current_page: Optional[str],
    ) -> "CommentData":
        return cls(
            id=record.id,
            date=record.date.isoformat() if record.date else None,
            timestamp=record.timestamp_text,
            author_name=record.author_name,
            anchor=record.anchor,
            is_unsigned=record.is_unsigned,
            level=record.level,
            is_opening_section=record.is_opening_section,
            follows_heading=record.follows_heading,
            opening_section_level=record.opening_section_level,
            parent_comment_id=record.parent_comment_id,
            target_comment_author_name=record.target_author_name,
            own=record.own,
            to_me=record.to_me,
            source_page=section.source_page if section else current_page,
            section=SectionRef(headline=section.headline, anchor=section.anchor) if section else None,
        )

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "timestamp": self.timestamp,
            "authorName": self.author_name,
            "anchor": self.anchor,
            "isUnsigned": self.is_unsigned,
            "level": self.level,
            "isOpeningSection": self.is_opening_section,
            "followsHeading": self.follows_heading,
            "openingSectionOfLevel": self.opening_section_level,
            "parentCommentId": self.parent_comment_id,
            "targetCommentAuthorName": self.target_comment_author_name,
            "own": self.own,
            "toMe": self.to_me,
            "sourcePage": self.source_page,
            "section": (
                {"headline": self.section.headline, "anchor": self.section.anchor}
                if self.section
                else None
            ),
        }


@dataclass
class SectionData:
    id: int
    headline: str
    anchor: str
    level: int
    comment_ids: List[int]
    source_page: Optional[str]

    @classmethod
    def from_record(cls, record: SectionRecord) -> "SectionData":
        return cls(
            id=record.id,
            headline=record.headline,
            anchor=record.anchor,
            level=record.level,
            comment_ids=list(record.comment_ids),
            source_page=record.source_page,
        )

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "headline": self.headline,
            "anchor": self.anchor,
            "level": self.level,
            "commentIds": list(self.comment_ids),
            "sourcePage": self.source_page,
        }


@dataclass
class ParseResult:
    comments: List[CommentData]
    sections: List[SectionData]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "parse",
            "comments": [comment.to_message() for comment in self.comments],
            "sections": [section.to_message() for section in self.sections],
        }


@dataclass
class ParseJobRecord:
    id: str
    page_name: str
    state: ParseJobState
    phase: ParseJobPhase
    error_message: Optional[str] = None
    comment_count: Optional[int] = None
    section_count: Optional[int] = None
    started_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)
    config_json: Dict[str, Any] = field(default_factory=dict)
    globals_json: Dict[str, Any] = field(default_factory=dict)
