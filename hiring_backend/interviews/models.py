"""Interview application and response records consumed by the analysis pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hiring_backend.tasks.identifiers import coerce_identifier


class TranscriptionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class Candidate(BaseModel):
    name: str = ""
    email: str = ""
    experience: str = ""
    skills: list[str] = Field(default_factory=list)
    location: str = ""


class JobProfile(BaseModel):
    title: str = ""
    description: str = ""
    requirements: list[str] = Field(default_factory=list)
    location: str = ""


class Application(BaseModel):
    """A candidate's interview application within a workspace."""

    application_id: str
    workspace_id: str
    candidate: Candidate = Field(default_factory=Candidate)
    job: JobProfile = Field(default_factory=JobProfile)
    status: str = "interview_completed"
    overall_analysis: dict[str, Any] | None = None
    updated_at: datetime | None = None

    @field_validator("application_id", "workspace_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str:
        return coerce_identifier(value)


class InterviewResponse(BaseModel):
    """One recorded answer to one interview question."""

    response_id: str
    application_id: str
    question_text: str = ""
    question_type: str = "general"
    question_category: str = "general"
    difficulty: str = "medium"
    evaluation_instructions: str = ""
    audio_url: str | None = None
    transcription_text: str | None = None
    browser_transcription: str | None = None
    transcription_status: TranscriptionStatus = TranscriptionStatus.PENDING
    transcription_error: str | None = None
    analysis: dict[str, Any] | None = None
    score: float | None = None
    position: int = 0

    @field_validator("application_id", mode="before")
    @classmethod
    def _coerce_application_id(cls, value: Any) -> str:
        return coerce_identifier(value)

    @property
    def answer_text(self) -> str:
        """Best available transcript of the answer."""
        return self.transcription_text or self.browser_transcription or ""

    @property
    def needs_transcription(self) -> bool:
        return not (self.transcription_text or "").strip()
