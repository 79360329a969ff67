"""Interview application and response records."""

from hiring_backend.interviews.models import (
    Application,
    Candidate,
    InterviewResponse,
    JobProfile,
    TranscriptionStatus,
)

__all__ = ["Application", "Candidate", "InterviewResponse", "JobProfile", "TranscriptionStatus"]
