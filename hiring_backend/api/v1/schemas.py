"""Pydantic schemas for API v1 - request and response DTOs."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from hiring_backend.tasks.models import TaskError, TaskPriority, TaskStatus


class AnalysisTaskRequest(BaseModel):
    """Request to analyze one interview application."""

    application_id: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
    priority: TaskPriority = TaskPriority.NORMAL


class QueuedTaskResponse(BaseModel):
    task_id: str
    message: str
    position: int | None = None


class ActionResponse(BaseModel):
    success: bool
    message: str


class TaskStatusResponse(BaseModel):
    """Stored task state plus live queue information."""

    task_id: str
    application_id: str
    workspace_id: str
    priority: TaskPriority
    status: TaskStatus
    retry_count: int
    max_retries: int
    result: dict[str, Any] | None = None
    error: TaskError | None = None
    progress: dict[str, Any] = {}
    worker_id: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    queue_position: int | None = None
    is_active: bool = False
    live_progress: dict[str, Any] | None = None


class TaskListResponse(BaseModel):
    tasks: list[TaskStatusResponse]
    count: int


class QueueStatsResponse(BaseModel):
    queue_size: int
    active_workers: int
    max_workers: int
    max_queue_size: int
    is_processing: bool
    is_running: bool
    pending_retries: int
    queued_task_ids: list[str]
    active_task_ids: list[str]
    status_breakdown: dict[str, int] = {}


class CleanupResponse(BaseModel):
    repaired: int
    unrecoverable: int
    reset: int
    purged: int
    recovered: int = 0
    status_breakdown: dict[str, int] = {}
    finished_at: datetime


class HealthStatus(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    timestamp: datetime = Field(default_factory=datetime.now)
    uptime_seconds: float
    dependencies: dict[str, str] = {}
    worker_pool: dict[str, Any] = {}
