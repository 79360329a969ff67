"""Speech-to-text for recorded interview answers."""

from hiring_backend.transcription.client import TranscriptionClient, TranscriptionOutcome
from hiring_backend.transcription.prepass import TranscriptionPrepass

__all__ = ["TranscriptionClient", "TranscriptionOutcome", "TranscriptionPrepass"]
