"""Analysis task domain models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
import traceback
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hiring_backend.tasks.identifiers import coerce_identifier


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.PENDING, TaskStatus.PROCESSING)

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


class TaskPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort weight; larger drains first."""
        return {"high": 3, "normal": 2, "low": 1}[self.value]


class ErrorCode:
    """Machine-readable failure codes stored on `TaskError.code`."""

    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NO_RESPONSES = "NO_RESPONSES"
    INVALID_APPLICATION = "INVALID_APPLICATION"
    WORKER_ERROR = "WORKER_ERROR"
    WORKER_EXITED = "WORKER_EXITED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    SHUTDOWN = "SHUTDOWN"
    CLEANUP_RESET = "CLEANUP_RESET"
    DATA_CORRUPTION_FIXED = "DATA_CORRUPTION_FIXED"
    APPLICATION_NOT_FOUND = "APPLICATION_NOT_FOUND"
    INVALID_TASK_FORMAT = "INVALID_TASK_FORMAT"

    NON_RETRYABLE = frozenset({TIMEOUT, CANCELLED, NO_RESPONSES, INVALID_APPLICATION})


class RejectReason(str, Enum):
    """Why a pool request came back with ``success: False``."""

    SHUTTING_DOWN = "shutting_down"
    INVALID_REQUEST = "invalid_request"
    DUPLICATE = "duplicate"
    QUEUE_FULL = "queue_full"
    STORE_ERROR = "store_error"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"


class AnalysisStep(str, Enum):
    FETCHING_RESPONSES = "fetching_responses"
    ANALYZING_INDIVIDUAL = "analyzing_individual"
    ANALYZING_OVERALL = "analyzing_overall"
    SAVING_RESULTS = "saving_results"


class TaskError(BaseModel):
    """Structured failure record persisted on a task."""

    message: str
    code: str = ErrorCode.ANALYSIS_FAILED
    stack: str | None = None
    step: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, *, step: str | None = None) -> TaskError:
        code = getattr(exc, "code", None)
        return cls(
            message=str(exc) or type(exc).__name__,
            code=code if isinstance(code, str) and code else ErrorCode.WORKER_ERROR,
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            step=step or getattr(exc, "step", None),
        )


class TaskProgress(BaseModel):
    current_step: AnalysisStep = AnalysisStep.FETCHING_RESPONSES
    completed_steps: int = 0
    total_steps: int = 0

    @property
    def percentage(self) -> int:
        if self.total_steps <= 0:
            return 0
        return round(self.completed_steps / self.total_steps * 100)


class AnalysisTask(BaseModel):
    """
    Persisted record of one analysis request.

    `application_id` and `workspace_id` are always plain strings; anything
    richer is coerced on the way in so a record never carries a live object
    reference into storage.
    """

    task_id: str
    application_id: str
    workspace_id: str
    priority: TaskPriority = TaskPriority.NORMAL
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    result: dict[str, Any] | None = None
    error: TaskError | None = None
    progress: TaskProgress = Field(default_factory=TaskProgress)
    worker_id: str | None = None
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @field_validator("application_id", "workspace_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str:
        return coerce_identifier(value)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["progress"]["percentage"] = self.progress.percentage
        return data


class QueueEntry(BaseModel):
    """In-memory projection of a pending task; never persisted as a list."""

    task_id: str
    application_id: str
    workspace_id: str
    priority: TaskPriority = TaskPriority.NORMAL
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("application_id", "workspace_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str:
        return coerce_identifier(value)


class AnalysisError(Exception):
    """Domain failure raised inside the worker body and reported as an `error` message."""

    def __init__(self, message: str, code: str = ErrorCode.ANALYSIS_FAILED, step: str | None = None):
        super().__init__(message)
        self.code = code
        self.step = step
