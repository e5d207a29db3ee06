from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from redis import Redis
from rq import Queue, Worker

from .engine import DiscussionParsingEngine
from .models import ParseResult
from .repository import SqlAlchemyParsingRepository
from .storage import LocalPageStorage, StoragePaths
from .worker import ParsingWorker


@dataclass
class WorkerConfig:
    database_url: str
    page_storage_root: str
    engine_version: str = "discussion-reader-0.1"
    persist_engine_output: bool = True


def run_parse_job(job_id: str, config: WorkerConfig) -> ParseResult:
    """
    RQ task entrypoint. Creates all required components and executes a parse job.
    """
    repo = SqlAlchemyParsingRepository(config.database_url)
    storage = LocalPageStorage(StoragePaths(Path(config.page_storage_root)))
    engine = DiscussionParsingEngine(engine_version=config.engine_version)
    worker = ParsingWorker(
        engine=engine,
        repository=repo,
        storage=storage,
        persist_engine_output=config.persist_engine_output,
    )
    return worker.run_job(job_id)


class RQJobQueue:
    """
    Redis-backed job queue using RQ. The queue pushes jobs to Redis and workers
    can be started by calling `work()` in a dedicated process.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "parse-jobs"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    def enqueue_parse_job(self, job_id: str, config: WorkerConfig):
        """
        Enqueue a parsing job. RQ job_id is set to parse job id for idempotency.
        """
        return self.queue.enqueue(run_parse_job, job_id, config, job_id=job_id, retry=None)

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
