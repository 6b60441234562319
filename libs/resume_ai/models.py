from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    queued = "queued"
    running = "running"
    paused = "paused"
    waiting = "waiting"
    complete = "complete"
    errored = "errored"
    terminated = "terminated"


class SectionName(str, Enum):
    summary = "summary"
    experience = "experience"
    skills = "skills"
    education = "education"
    projects = "projects"
    certifications = "certifications"
    awards = "awards"
    publications = "publications"


class ChangeType(str, Enum):
    changed = "changed"
    added = "added"
    removed = "removed"


CONTACT_FIELDS = ("name", "title", "email", "phone", "location", "linkedin", "github")

ENTRY_SECTIONS = (
    "experience",
    "education",
    "projects",
    "certifications",
    "awards",
    "publications",
)

DEFAULT_SECTION_ORDER = [section.value for section in SectionName]


class HighlightedField(BaseModel):
    path: str
    changeType: ChangeType


class ChangeNote(BaseModel):
    model_config = ConfigDict(extra="forbid")

    section: str
    change: str
    why: str
    coachingNote: Optional[str] = None


class JobError(BaseModel):
    name: str
    message: str


class TailorOutput(BaseModel):
    document: Dict[str, Any]
    highlights: List[HighlightedField] = Field(default_factory=list)
    changes: List[ChangeNote] = Field(default_factory=list)


class TailorParams(BaseModel):
    resume: Dict[str, Any]
    jobDescription: str
    masterProfile: Optional[Dict[str, Any]] = None


class TailorJob(BaseModel):
    id: str
    status: JobStatus
    params: TailorParams
    output: Optional[TailorOutput] = None
    error: Optional[JobError] = None
    created_at: datetime
    updated_at: datetime


class StepRecord(BaseModel):
    job_id: str
    name: str
    output: Any = None
    attempts: int = 1
    completed_at: datetime


class TailorCreate(BaseModel):
    resume: Optional[Dict[str, Any]] = None
    jobDescription: Optional[str] = None
    masterProfile: Optional[Dict[str, Any]] = None


class TailorCreated(BaseModel):
    jobId: str


class TailorStatus(BaseModel):
    status: JobStatus
    output: Optional[TailorOutput] = None
    error: Optional[JobError] = None


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)
    resume: Dict[str, Any] = Field(default_factory=dict)
    jobDescription: Optional[str] = None
    bio: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str
    updatedResume: Optional[Dict[str, Any]] = None


class ParseRequest(BaseModel):
    text: Optional[str] = None


class ParseResponse(BaseModel):
    resume: Dict[str, Any]


class EventEnvelope(BaseModel):
    type: str
    version: str
    occurred_at: datetime
    correlation_id: str
    job_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
