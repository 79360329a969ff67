"""Heuristic scores used when the scoring model is unavailable."""

from __future__ import annotations

import re

from hiring_backend.scoring.models import (
    ConfidenceLevel,
    HiringRecommendation,
    InterviewAnalysis,
    ResponseAnalysis,
)

FALLBACK_SCORE_CAP = 80
DEFAULT_RESPONSE_SCORE = 50.0


def basic_score(text: str | None) -> int:
    """Score an answer from length, word count and sentence structure alone."""
    if not text:
        return 0

    length = len(text)
    word_count = len(text.split())
    score = 0

    if length > 500:
        score += 30
    elif length > 200:
        score += 20
    elif length > 50:
        score += 10

    if word_count > 100:
        score += 30
    elif word_count > 50:
        score += 20
    elif word_count > 20:
        score += 10

    if "." in text and "," in text:
        score += 10
    if re.search(r"[A-Z]", text):
        score += 5
    if len(text.split(".")) > 3:
        score += 10

    return min(score, FALLBACK_SCORE_CAP)


def fallback_response_analysis(answer_text: str | None) -> ResponseAnalysis:
    score = basic_score(answer_text)
    long_answer = len(answer_text or "") > 100
    return ResponseAnalysis(
        overall_score=score,
        technical_score=max(0, score - 10),
        communication_score=score if long_answer else max(0, score - 20),
        relevance_score=score,
        strengths=["Response provided"],
        weaknesses=["Unable to perform detailed analysis"],
        detailed_feedback="Fallback analysis - AI service unavailable",
        improvement_suggestions=["Please try again later"],
        confidence_level=ConfidenceLevel.LOW,
        fallback=True,
    )


def fallback_interview_analysis(individual_scores: list[float | None]) -> InterviewAnalysis:
    """Average the per-answer scores; answers without a score count as 50."""
    scores = [DEFAULT_RESPONSE_SCORE if s is None else s for s in individual_scores]
    average = sum(scores) / len(scores) if scores else DEFAULT_RESPONSE_SCORE

    return InterviewAnalysis(
        overall_score=round(average),
        technical_competency=round(average * 0.9),
        communication_skills=round(average * 1.1),
        cultural_fit=round(average),
        job_alignment=round(average * 0.95),
        hiring_recommendation=(
            HiringRecommendation.CONSIDER if average >= 70 else HiringRecommendation.STRONG_CONSIDER
        ),
        recommendation_confidence=ConfidenceLevel.LOW,
        key_strengths=["Interview completed"],
        areas_for_development=["Detailed analysis pending"],
        red_flags=["Analysis incomplete"],
        interview_summary="Fallback analysis - AI service unavailable",
        next_steps=["Retry analysis when service available"],
        fallback=True,
    )
