"""Repository construction from settings."""

import structlog

from hiring_backend.config import Settings, StorageBackend
from hiring_backend.repositories.base import InterviewRepository, TaskStore
from hiring_backend.repositories.duckdb_repository import (
    DuckDBInterviewRepository,
    DuckDBTaskStore,
)
from hiring_backend.repositories.memory import InMemoryInterviewRepository, InMemoryTaskStore

logger = structlog.get_logger(__name__)


def create_repositories(settings: Settings) -> tuple[TaskStore, InterviewRepository]:
    """Build the task store and interview repository for the configured backend."""
    if settings.storage_backend == StorageBackend.DUCKDB:
        logger.info("Creating DuckDB repositories", db_path=settings.duckdb_path)
        return (
            DuckDBTaskStore(settings.duckdb_path),
            DuckDBInterviewRepository(settings.duckdb_path),
        )

    logger.info("Creating in-memory repositories")
    return InMemoryTaskStore(), InMemoryInterviewRepository()
