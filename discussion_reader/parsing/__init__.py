"""
Parsing subsystem exports.
"""

from .config import ParseConfiguration, ParseGlobals
from .engine import DiscussionParsingEngine, ParseRequest, ParseSession, ParsingEngine
from .errors import InvalidComment, InvalidSection, ParsingError, StructuralError, WorkerBusyError
from .job_queue import RQJobQueue, WorkerConfig, run_parse_job
from .markup import MarkupTree, build_tree
from .models import (
    CommentData,
    CommentRecord,
    ParseJobPhase,
    ParseJobRecord,
    ParseJobState,
    ParseResult,
    SectionData,
    SectionRecord,
    Signature,
)
from .repository import InMemoryParsingRepository, ParsingRepository, SqlAlchemyParsingRepository
from .storage import LocalPageStorage, StoragePaths
from .worker import ParsingWorker, WorkerThread

__all__ = [
    "CommentData",
    "CommentRecord",
    "DiscussionParsingEngine",
    "InMemoryParsingRepository",
    "InvalidComment",
    "InvalidSection",
    "LocalPageStorage",
    "MarkupTree",
    "ParseConfiguration",
    "ParseGlobals",
    "ParseJobPhase",
    "ParseJobRecord",
    "ParseJobState",
    "ParseRequest",
    "ParseResult",
    "ParseSession",
    "ParsingEngine",
    "ParsingError",
    "ParsingRepository",
    "ParsingWorker",
    "RQJobQueue",
    "SectionData",
    "SectionRecord",
    "Signature",
    "SqlAlchemyParsingRepository",
    "StoragePaths",
    "StructuralError",
    "WorkerBusyError",
    "WorkerConfig",
    "WorkerThread",
    "build_tree",
    "run_parse_job",
]
