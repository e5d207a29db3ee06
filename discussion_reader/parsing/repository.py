from __future__ import annotations

import json
from copy import deepcopy
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, Enum, Integer, String, create_engine, select, update
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import ParseJobPhase, ParseJobRecord, ParseJobState

Base = declarative_base()


class ParseJobModel(Base):
    __tablename__ = "parse_jobs"
    id = Column(String, primary_key=True)
    page_name = Column(String, index=True)
    state = Column(Enum(ParseJobState))
    phase = Column(Enum(ParseJobPhase))
    error_message = Column(String)
    comment_count = Column(Integer)
    section_count = Column(Integer)
    started_at = Column(DateTime)
    updated_at = Column(DateTime)
    config_json = Column(String)
    globals_json = Column(String)


class ParsingRepository:
    """
    Abstract persistence boundary for parse jobs. Implementations can target
    SQLite/Postgres or any other backing store. All methods are synchronous
    to keep the interface minimal for now.
    """

    def get_job(self, job_id: str) -> Optional[ParseJobRecord]:
        raise NotImplementedError

    def save_job(self, job: ParseJobRecord) -> None:
        raise NotImplementedError

    def list_jobs(self, page_name: Optional[str] = None) -> List[ParseJobRecord]:
        raise NotImplementedError

    def update_job_state_phase(
        self,
        job_id: str,
        state: Optional[ParseJobState] = None,
        phase: Optional[ParseJobPhase] = None,
        error_message: Optional[str] = None,
        comment_count: Optional[int] = None,
        section_count: Optional[int] = None,
    ) -> None:
        raise NotImplementedError


class InMemoryParsingRepository(ParsingRepository):
    """
    Simple in-memory store for local runs and tests. It mirrors the DB shape
    and keeps copies of dataclasses to avoid cross-mutation between calls.
    """

    def __init__(self):
        self.jobs: Dict[str, ParseJobRecord] = {}

    def _clone(self, obj):
        return deepcopy(obj)

    def get_job(self, job_id: str) -> Optional[ParseJobRecord]:
        job = self.jobs.get(job_id)
        return self._clone(job) if job else None

    def save_job(self, job: ParseJobRecord) -> None:
        self.jobs[job.id] = self._clone(job)

    def list_jobs(self, page_name: Optional[str] = None) -> List[ParseJobRecord]:
        return [
            self._clone(job)
            for job in self.jobs.values()
            if page_name is None or job.page_name == page_name
        ]

    def update_job_state_phase(
        self,
        job_id: str,
        state: Optional[ParseJobState] = None,
        phase: Optional[ParseJobPhase] = None,
        error_message: Optional[str] = None,
        comment_count: Optional[int] = None,
        section_count: Optional[int] = None,
    ) -> None:
        job = self.jobs.get(job_id)
        if not job:
            return
        if state is not None:
            job.state = state
            if state == ParseJobState.RUNNING and job.started_at is None:
                job.started_at = datetime.utcnow()
        if phase is not None:
            job.phase = phase
        if error_message is not None:
            job.error_message = error_message
        if comment_count is not None:
            job.comment_count = comment_count
        if section_count is not None:
            job.section_count = section_count
        job.updated_at = datetime.utcnow()
        self.jobs[job_id] = self._clone(job)


class SqlAlchemyParsingRepository(ParsingRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    def _to_record(self, model: ParseJobModel) -> ParseJobRecord:
        return ParseJobRecord(
            id=model.id,
            page_name=model.page_name,
            state=model.state,
            phase=model.phase,
            error_message=model.error_message,
            comment_count=model.comment_count,
            section_count=model.section_count,
            started_at=model.started_at,
            updated_at=model.updated_at,
            config_json=json.loads(model.config_json or "{}"),
            globals_json=json.loads(model.globals_json or "{}"),
        )

    def get_job(self, job_id: str) -> Optional[ParseJobRecord]:
        with self._session() as session:
            model = session.get(ParseJobModel, job_id)
            if not model:
                return None
            return self._to_record(model)

    def save_job(self, job: ParseJobRecord) -> None:
        with self._session() as session:
            model = ParseJobModel(
                id=job.id,
                page_name=job.page_name,
                state=job.state,
                phase=job.phase,
                error_message=job.error_message,
                comment_count=job.comment_count,
                section_count=job.section_count,
                started_at=job.started_at,
                updated_at=job.updated_at,
                config_json=json.dumps(job.config_json or {}),
                globals_json=json.dumps(job.globals_json or {}),
            )
            session.merge(model)
            session.commit()

    def list_jobs(self, page_name: Optional[str] = None) -> List[ParseJobRecord]:
        with self._session() as session:
            stmt = select(ParseJobModel)
            if page_name is not None:
                stmt = stmt.where(ParseJobModel.page_name == page_name)
            models = session.execute(stmt).scalars().all()
            return [self._to_record(m) for m in models]

    def update_job_state_phase(
        self,
        job_id: str,
        state: Optional[ParseJobState] = None,
        phase: Optional[ParseJobPhase] = None,
        error_message: Optional[str] = None,
        comment_count: Optional[int] = None,
        section_count: Optional[int] = None,
    ) -> None:
        with self._session() as session:
            values = {}
            if state is not None:
                values["state"] = state
                if state == ParseJobState.RUNNING:
                    model = session.get(ParseJobModel, job_id)
                    if model is not None and model.started_at is None:
                        values["started_at"] = datetime.utcnow()
            if phase is not None:
                values["phase"] = phase
            if error_message is not None:
                values["error_message"] = error_message
            if comment_count is not None:
                values["comment_count"] = comment_count
            if section_count is not None:
                values["section_count"] = section_count
            if values:
                values["updated_at"] = datetime.utcnow()
                stmt = update(ParseJobModel).where(ParseJobModel.id == job_id)
                session.execute(stmt.values(**values))
                session.commit()
