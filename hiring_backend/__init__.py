"""Interview analysis backend: background worker pool, scoring and transcription."""

__version__ = "1.0.0"
