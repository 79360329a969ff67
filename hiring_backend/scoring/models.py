"""Structured outputs for interview scoring."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ConfidenceLevel(str, Enum):
    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HiringRecommendation(str, Enum):
    STRONG_HIRE = "strong_hire"
    HIRE = "hire"
    STRONG_CONSIDER = "strong_consider"
    CONSIDER = "consider"
    NO_HIRE = "no_hire"


def _clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, score))


class ResponseAnalysis(BaseModel):
    """Evaluation of a single answer, scores out of 100."""

    overall_score: float = Field(0.0, description="Overall answer quality (0-100)")
    technical_score: float = Field(0.0, description="Technical accuracy and depth (0-100)")
    communication_score: float = Field(0.0, description="Clarity of communication (0-100)")
    relevance_score: float = Field(0.0, description="Relevance to the job requirements (0-100)")
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    detailed_feedback: str = "Analysis completed"
    improvement_suggestions: list[str] = Field(default_factory=list)
    keywords_mentioned: list[str] = Field(default_factory=list)
    confidence_level: ConfidenceLevel = ConfidenceLevel.MEDIUM
    fallback: bool = False
    analysis_timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator(
        "overall_score", "technical_score", "communication_score", "relevance_score", mode="before"
    )
    @classmethod
    def _bound(cls, value: Any) -> float:
        return _clamp_score(value)


class InterviewAnalysis(BaseModel):
    """Evaluation of a whole interview and the hiring recommendation."""

    overall_score: float = Field(0.0, description="Overall suitability (0-100)")
    technical_competency: float = 0.0
    communication_skills: float = 0.0
    cultural_fit: float = 0.0
    job_alignment: float = 0.0
    hiring_recommendation: HiringRecommendation = HiringRecommendation.CONSIDER
    recommendation_confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    key_strengths: list[str] = Field(default_factory=list)
    areas_for_development: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list, description="Risk factors worth a follow-up")
    interview_summary: str = "Interview analysis completed"
    next_steps: list[str] = Field(default_factory=list)
    growth_potential: str = "medium"
    fallback: bool = False
    analysis_timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator(
        "overall_score",
        "technical_competency",
        "communication_skills",
        "cultural_fit",
        "job_alignment",
        mode="before",
    )
    @classmethod
    def _bound(cls, value: Any) -> float:
        return _clamp_score(value)


class ScoringContext(BaseModel):
    """Candidate and job details the scorer grounds its evaluation in."""

    application_id: str
    candidate_name: str = ""
    candidate_email: str = ""
    candidate_experience: str = ""
    candidate_skills: list[str] = Field(default_factory=list)
    candidate_location: str = ""
    job_title: str = ""
    job_description: str = ""
    job_requirements: list[str] = Field(default_factory=list)
    job_location: str = ""


class ScoringOutcome(BaseModel):
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
