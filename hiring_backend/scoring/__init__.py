"""LLM scoring of interview answers, with a heuristic fallback."""

from hiring_backend.scoring.client import ScoringClient
from hiring_backend.scoring.models import InterviewAnalysis, ResponseAnalysis, ScoringContext, ScoringOutcome

__all__ = ["InterviewAnalysis", "ResponseAnalysis", "ScoringClient", "ScoringContext", "ScoringOutcome"]
