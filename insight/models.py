"""
Pydantic models shared across the Paper Insight core.
"""

from __future__ import annotations

import base64
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Provider-agnostic request / response ───────────────────────────────────


class FileAttachment(BaseModel):
    """A binary document (usually a PDF) sent inline with a request."""

    data: bytes
    mime_type: str = "application/pdf"
    filename: str = "paper.pdf"

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class SourceRef(BaseModel):
    """A single web source cited by a grounded response."""

    uri: str
    title: str = ""


class GenericRequest(BaseModel):
    """The unit of work handed to a provider adapter."""

    prompt: str
    system_instruction: str = ""
    json_mode: bool = False
    enable_search: bool = False
    temperature: float = 0.3
    max_tokens: int = 4096
    attachments: list[FileAttachment] = Field(default_factory=list)


class GenericResponse(BaseModel):
    """Normalised adapter output."""

    text: str
    sources: list[SourceRef] = Field(default_factory=list)


# ── Analysis outputs ───────────────────────────────────────────────────────


class AnalysisResult(BaseModel):
    """Structured-markdown analysis of one paper."""

    markdown: str
    sources: list[SourceRef] = Field(default_factory=list)


class Recommendation(BaseModel):
    """A newer paper suggested in place of an outdated one."""

    # Models often emit the year as a number.
    model_config = ConfigDict(coerce_numbers_to_str=True)

    title: str
    year: str = ""
    reason: str = ""
    link: Optional[str] = None


class TimelinessReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_outdated: bool = Field(default=False, alias="isOutdated")
    status: str = "Unknown"
    summary: str = ""
    recommendations: list[Recommendation] = Field(default_factory=list)

    @classmethod
    def unavailable(cls) -> TimelinessReport:
        return cls(
            is_outdated=False,
            status="Unknown",
            summary="Could not verify timeliness.",
            recommendations=[],
        )


class VenueReport(BaseModel):
    name: str
    type: str = "Unknown"
    quality: str = "Unknown"
    summary: str = ""

    @classmethod
    def unavailable(cls, venue_text: str) -> VenueReport:
        return cls(
            name=venue_text,
            type="Unknown",
            quality="Unknown",
            summary="Could not analyze venue.",
        )


class IntegrityReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_issues: bool = Field(default=False, alias="hasIssues")
    summary: str = ""

    @classmethod
    def unavailable(cls) -> IntegrityReport:
        return cls(has_issues=False, summary="Integrity check unavailable.")


# ── Conversation and history ───────────────────────────────────────────────


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    content: str
    timestamp: float = Field(default_factory=time.time)


class HistoryItem(BaseModel):
    """One past analysis plus everything layered on top of it."""

    id: str
    title: str
    query: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    analysis: Optional[AnalysisResult] = None
    timeliness: Optional[TimelinessReport] = None
    venue: Optional[VenueReport] = None
    integrity: Optional[IntegrityReport] = None
    chat_messages: list[ChatMessage] = Field(default_factory=list)


# ── Job queue ──────────────────────────────────────────────────────────────


class JobStatus(str, Enum):
    QUEUED = "queued"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


class AnalysisJob(BaseModel):
    """A single paper query moving through the job queue."""

    id: str
    query: str
    status: JobStatus = JobStatus.QUEUED
    result: Optional[AnalysisResult] = None
    error_message: Optional[str] = None
    attempts: int = 0
    history_id: Optional[str] = None
    enable_search: bool = True
    attachment: Optional[FileAttachment] = Field(default=None, exclude=True)


class QueueProgress(BaseModel):
    processed: int = 0
    total: int = 0
