"""Persistence for analysis tasks and interview records."""

from .base import InterviewRepository, TaskNotFoundError, TaskStore
from .memory import InMemoryInterviewRepository, InMemoryTaskStore

__all__ = [
    "InMemoryInterviewRepository",
    "InMemoryTaskStore",
    "InterviewRepository",
    "TaskNotFoundError",
    "TaskStore",
]
