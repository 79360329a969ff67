"""
Settings and logging for the interview analysis backend.

Values come from the environment (or a `.env` file next to this package) and
are validated by pydantic. Environment variables override defaults.
"""

from enum import Enum
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent
load_dotenv(dotenv_path=PACKAGE_DIR / ".env")


class StorageBackend(str, Enum):
    """Where task and interview records are kept."""

    MEMORY = "memory"
    DUCKDB = "duckdb"


class Settings(BaseSettings):
    """
    Application settings.

    The analysis worker pool reads its limits and timings from here; the
    composition root in `hiring_backend.main` passes them in explicitly so
    tests can build pools with their own values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # API
    api_title: str = "Interview Analysis API"
    api_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Worker pool
    max_analysis_workers: int = Field(default=2, ge=1, le=32)
    max_analysis_queue: int = Field(default=100, ge=1)
    analysis_timeout_seconds: float = Field(default=300.0, gt=0)
    analysis_retry_attempts: int = Field(default=3, ge=0)
    analysis_retry_delay_seconds: float = Field(default=5.0, ge=0)
    queue_drain_delay_seconds: float = Field(default=1.0, ge=0)
    shutdown_grace_seconds: float = Field(default=1.0, ge=0)
    store_retry_attempts: int = Field(default=3, ge=1)
    store_retry_wait_seconds: float = Field(default=0.5, ge=0)

    # Maintenance
    stuck_task_minutes: int = Field(default=10, ge=1)
    failed_task_retention_hours: int = Field(default=24, ge=1)

    # Storage
    storage_backend: StorageBackend = StorageBackend.MEMORY
    duckdb_path: str = "data/hiring.duckdb"

    # Scoring model (OpenAI-compatible endpoint, e.g. Ollama)
    llm_base_url: str = "http://localhost:11434/v1"
    llm_model: str = "gemma3:latest"
    llm_api_key: str = "ollama"
    scoring_fallback_enabled: bool = True

    # Transcription service
    transcription_url: str = "http://localhost:9000/transcribe"
    transcription_timeout_seconds: float = Field(default=60.0, gt=0)
    audio_download_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()


settings = Settings()


def configure_structlog() -> None:
    """Route structlog through stdlib logging with a console or JSON renderer."""
    import logging
    import sys

    import structlog

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        stream=sys.stdout,
        force=True,
        format="%(message)s",
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer(colors=True, pad_event=20)
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.stdlib.add_log_level,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
