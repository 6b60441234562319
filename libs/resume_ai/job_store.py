"""Durable storage for tailor jobs and their recorded step outputs.

Every write touches a single key (one job row or one step row); there are
no cross-job transactions. Status changes go through the job state machine
and invalid transitions are ignored, so a late writer can never move a job
out of a terminal state.
"""

from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis
from sqlalchemy import JSON, DateTime, Integer, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from . import state_machine
from .models import JobError, JobStatus, StepRecord, TailorJob, TailorOutput, TailorParams

JOB_KEY_PREFIX = "tailor_job:"
STEP_KEY_PREFIX = "tailor_step:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_job(params: TailorParams) -> TailorJob:
    now = _utcnow()
    return TailorJob(
        id=str(uuid.uuid4()),
        status=JobStatus.queued,
        params=params,
        created_at=now,
        updated_at=now,
    )


def _apply_status(
    job: TailorJob,
    status: JobStatus,
    output: Optional[TailorOutput],
    error: Optional[JobError],
) -> bool:
    if not state_machine.validate_job_transition(job.status, status):
        return False
    job.status = status
    job.updated_at = _utcnow()
    if output is not None:
        job.output = output
    if error is not None:
        job.error = error
    return True


class JobStore:
    def create_job(self, params: TailorParams) -> TailorJob:  # pragma: no cover - interface
        raise NotImplementedError

    def get_job(self, job_id: str) -> Optional[TailorJob]:  # pragma: no cover - interface
        raise NotImplementedError

    def set_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        output: Optional[TailorOutput] = None,
        error: Optional[JobError] = None,
    ) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def get_step(self, job_id: str, name: str) -> Optional[StepRecord]:  # pragma: no cover
        raise NotImplementedError

    def put_step(self, record: StepRecord) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def list_unfinished(self) -> List[TailorJob]:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._jobs: Dict[str, TailorJob] = {}
        self._steps: Dict[tuple[str, str], StepRecord] = {}
        self._lock = threading.Lock()

    def create_job(self, params: TailorParams) -> TailorJob:
        job = _new_job(params)
        with self._lock:
            self._jobs[job.id] = job
        return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Optional[TailorJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def set_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        output: Optional[TailorOutput] = None,
        error: Optional[JobError] = None,
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            return _apply_status(job, status, output, error)

    def get_step(self, job_id: str, name: str) -> Optional[StepRecord]:
        with self._lock:
            record = self._steps.get((job_id, name))
            return record.model_copy(deep=True) if record else None

    def put_step(self, record: StepRecord) -> None:
        with self._lock:
            self._steps[(record.job_id, record.name)] = record.model_copy(deep=True)

    def list_unfinished(self) -> List[TailorJob]:
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if not state_machine.is_terminal(job.status)
            ]


class RedisJobStore(JobStore):
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    def create_job(self, params: TailorParams) -> TailorJob:
        job = _new_job(params)
        self.client.set(f"{JOB_KEY_PREFIX}{job.id}", job.model_dump_json())
        return job

    def get_job(self, job_id: str) -> Optional[TailorJob]:
        raw = self.client.get(f"{JOB_KEY_PREFIX}{job_id}")
        if not raw:
            return None
        return TailorJob.model_validate_json(raw)

    def set_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        output: Optional[TailorOutput] = None,
        error: Optional[JobError] = None,
    ) -> bool:
        job = self.get_job(job_id)
        if job is None or not _apply_status(job, status, output, error):
            return False
        self.client.set(f"{JOB_KEY_PREFIX}{job_id}", job.model_dump_json())
        return True

    def get_step(self, job_id: str, name: str) -> Optional[StepRecord]:
        raw = self.client.get(f"{STEP_KEY_PREFIX}{job_id}:{name}")
        if not raw:
            return None
        return StepRecord.model_validate_json(raw)

    def put_step(self, record: StepRecord) -> None:
        self.client.set(f"{STEP_KEY_PREFIX}{record.job_id}:{record.name}", record.model_dump_json())

    def list_unfinished(self) -> List[TailorJob]:
        jobs: List[TailorJob] = []
        for key in self.client.scan_iter(match=f"{JOB_KEY_PREFIX}*"):
            raw = self.client.get(key)
            if not raw:
                continue
            job = TailorJob.model_validate_json(raw)
            if not state_machine.is_terminal(job.status):
                jobs.append(job)
        return jobs


class Base(DeclarativeBase):
    pass


class TailorJobRecord(Base):
    __tablename__ = "tailor_jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    status: Mapped[str] = mapped_column(String)
    params: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    output: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class TailorStepRecord(Base):
    __tablename__ = "tailor_steps"

    job_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, primary_key=True)
    output: Mapped[Any] = mapped_column(JSON, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    completed_at: Mapped[datetime] = mapped_column(DateTime)


class SqlJobStore(JobStore):
    def __init__(self, database_url: str) -> None:
        engine_kwargs: Dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in {"sqlite://", "sqlite:///:memory:"}:
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(bind=self.engine)

    def create_job(self, params: TailorParams) -> TailorJob:
        job = _new_job(params)
        with self.SessionLocal() as db:
            db.add(
                TailorJobRecord(
                    id=job.id,
                    status=job.status.value,
                    params=job.params.model_dump(mode="json"),
                    output=None,
                    error=None,
                    created_at=job.created_at,
                    updated_at=job.updated_at,
                )
            )
            db.commit()
        return job

    def get_job(self, job_id: str) -> Optional[TailorJob]:
        with self.SessionLocal() as db:
            record = db.get(TailorJobRecord, job_id)
            return _job_from_record(record) if record else None

    def set_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        output: Optional[TailorOutput] = None,
        error: Optional[JobError] = None,
    ) -> bool:
        with self.SessionLocal() as db:
            record = db.get(TailorJobRecord, job_id)
            if record is None:
                return False
            job = _job_from_record(record)
            if not _apply_status(job, status, output, error):
                return False
            record.status = job.status.value
            record.updated_at = job.updated_at
            if job.output is not None:
                record.output = job.output.model_dump(mode="json")
            if job.error is not None:
                record.error = job.error.model_dump(mode="json")
            db.commit()
        return True

    def get_step(self, job_id: str, name: str) -> Optional[StepRecord]:
        with self.SessionLocal() as db:
            record = db.get(TailorStepRecord, (job_id, name))
            if record is None:
                return None
            return StepRecord(
                job_id=record.job_id,
                name=record.name,
                output=record.output,
                attempts=record.attempts,
                completed_at=record.completed_at,
            )

    def put_step(self, record: StepRecord) -> None:
        with self.SessionLocal() as db:
            existing = db.get(TailorStepRecord, (record.job_id, record.name))
            if existing is None:
                existing = TailorStepRecord(job_id=record.job_id, name=record.name)
                db.add(existing)
            existing.output = json.loads(json.dumps(record.output, default=str))
            existing.attempts = record.attempts
            existing.completed_at = record.completed_at
            db.commit()

    def list_unfinished(self) -> List[TailorJob]:
        terminal = [status.value for status in state_machine.TERMINAL_STATUSES]
        with self.SessionLocal() as db:
            records = (
                db.query(TailorJobRecord)
                .filter(TailorJobRecord.status.notin_(terminal))
                .order_by(TailorJobRecord.created_at)
                .all()
            )
            return [_job_from_record(record) for record in records]


def _job_from_record(record: TailorJobRecord) -> TailorJob:
    return TailorJob(
        id=record.id,
        status=JobStatus(record.status),
        params=TailorParams.model_validate(record.params or {}),
        output=TailorOutput.model_validate(record.output) if record.output else None,
        error=JobError.model_validate(record.error) if record.error else None,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def create_job_store_from_env() -> JobStore:
    backend = os.getenv("JOB_STORE_BACKEND", "memory").strip().lower()
    if backend == "redis":
        client = redis.Redis.from_url(
            os.getenv("REDIS_URL", "redis://redis:6379/0"), decode_responses=True
        )
        return RedisJobStore(client)
    if backend == "sql":
        return SqlJobStore(os.getenv("DATABASE_URL", "sqlite:///./tailor_jobs.db"))
    return MemoryJobStore()
