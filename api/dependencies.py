from __future__ import annotations

import hashlib
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from discussion_reader.parsing import (
    DiscussionParsingEngine,
    LocalPageStorage,
    ParsingRepository,
    ParsingWorker,
    RQJobQueue,
    SqlAlchemyParsingRepository,
    StoragePaths,
    WorkerConfig,
    WorkerThread,
)

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///./data/discussion_reader.db"


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def get_storage_root() -> Path:
    return Path(os.getenv("PAGE_STORAGE_ROOT", "./data"))


def get_engine_version() -> str:
    return os.getenv("ENGINE_VERSION", "discussion-reader-0.1")


def get_parse_timeout() -> float:
    return float(os.getenv("PARSE_TIMEOUT_SECONDS", "30"))


@lru_cache(maxsize=1)
def get_repo() -> ParsingRepository:
    return SqlAlchemyParsingRepository(get_database_url())


@lru_cache(maxsize=1)
def get_storage() -> LocalPageStorage:
    return LocalPageStorage(StoragePaths(get_storage_root()))


@lru_cache(maxsize=1)
def get_worker_thread() -> WorkerThread:
    engine = DiscussionParsingEngine(engine_version=get_engine_version())
    return WorkerThread(engine=engine).start()


@lru_cache(maxsize=1)
def get_job_queue() -> Optional[RQJobQueue]:
    """
    Jobs go through RQ only when REDIS_URL is set; otherwise they run as
    background tasks of the API process.
    """
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None
    return RQJobQueue(redis_url)


def build_worker() -> ParsingWorker:
    return ParsingWorker(
        repository=get_repo(),
        storage=get_storage(),
        engine=DiscussionParsingEngine(engine_version=get_engine_version()),
        persist_engine_output=True,
    )


def build_worker_config() -> WorkerConfig:
    return WorkerConfig(
        database_url=get_database_url(),
        page_storage_root=str(get_storage_root()),
        engine_version=get_engine_version(),
    )


def build_job_id(page_name: str, html: str) -> str:
    normalized = page_name.strip().lower()
    slug = "".join(ch if ch.isalnum() else "-" for ch in normalized).strip("-") or "page"
    digest = hashlib.md5(html.encode("utf-8")).hexdigest()[:8]
    return f"job-{slug}-{digest}"
