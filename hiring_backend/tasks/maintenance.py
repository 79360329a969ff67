"""
Housekeeping for stored analysis tasks.

- repair tasks whose application/workspace ids are unusable
- reset tasks stuck in `processing` back to `pending`
- soft-delete old permanently failed tasks

Run once from the command line with ``python -m hiring_backend.tasks.maintenance``
or through the admin endpoint.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection
from datetime import datetime, timedelta

from pydantic import BaseModel, Field
import structlog

from hiring_backend.config import Settings, settings as default_settings
from hiring_backend.repositories.base import InterviewRepository, TaskStore
from hiring_backend.tasks.identifiers import application_id_from_task_id, is_valid_object_id
from hiring_backend.tasks.models import (
    AnalysisStep,
    ErrorCode,
    TaskError,
    TaskProgress,
    TaskStatus,
)

logger = structlog.get_logger(__name__)

SCAN_LIMIT = 10_000


class CleanupSummary(BaseModel):
    repaired: int = 0
    unrecoverable: int = 0
    reset: int = 0
    purged: int = 0
    status_breakdown: dict[str, int] = Field(default_factory=dict)
    finished_at: datetime = Field(default_factory=datetime.now)


async def repair_corrupted_tasks(store: TaskStore, interviews: InterviewRepository) -> tuple[int, int]:
    """
    Restore unusable ids from the task id and the application record.

    Completed and cancelled tasks are left alone. Repaired tasks are marked
    `failed` with `DATA_CORRUPTION_FIXED` so they can be retried explicitly.
    Returns ``(repaired, unrecoverable)``.
    """
    repaired = unrecoverable = 0

    for task in await store.list(limit=SCAN_LIMIT):
        if task.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
            continue
        if is_valid_object_id(task.application_id) and is_valid_object_id(task.workspace_id):
            continue

        logger.warning(
            "Corrupted task found",
            task_id=task.task_id,
            application_id=task.application_id,
            workspace_id=task.workspace_id,
        )
        application_id = application_id_from_task_id(task.task_id)
        if application_id is None:
            await store.update(
                task.task_id,
                status=TaskStatus.FAILED,
                failed_at=datetime.now(),
                error=TaskError(
                    message="Cannot extract valid applicationId from taskId",
                    code=ErrorCode.INVALID_TASK_FORMAT,
                    step="data_restoration",
                ),
            )
            unrecoverable += 1
            continue

        application = await interviews.get_application(application_id)
        if application is None:
            await store.update(
                task.task_id,
                status=TaskStatus.FAILED,
                failed_at=datetime.now(),
                error=TaskError(
                    message="Application not found - cannot restore task data",
                    code=ErrorCode.APPLICATION_NOT_FOUND,
                    step="data_restoration",
                ),
            )
            unrecoverable += 1
            continue

        await store.update(
            task.task_id,
            application_id=application_id,
            workspace_id=application.workspace_id,
            status=TaskStatus.FAILED,
            failed_at=datetime.now(),
            error=TaskError(
                message="Task data was corrupted and has been restored",
                code=ErrorCode.DATA_CORRUPTION_FIXED,
                step="data_restoration",
            ),
        )
        logger.info("Task data restored", task_id=task.task_id, application_id=application_id)
        repaired += 1

    return repaired, unrecoverable


async def reset_stuck_tasks(
    store: TaskStore,
    older_than: timedelta,
    exclude: Collection[str] = (),
) -> int:
    """Move tasks processing for longer than `older_than` back to `pending`."""
    cutoff = datetime.now() - older_than
    reset = 0

    for task in await store.list(status=TaskStatus.PROCESSING, limit=SCAN_LIMIT):
        if task.task_id in exclude:
            continue
        started = task.started_at or task.updated_at or task.created_at
        if started >= cutoff:
            continue

        logger.info(
            "Resetting stuck task",
            task_id=task.task_id,
            started_at=started.isoformat(),
            current_step=task.progress.current_step.value,
        )
        await store.update(
            task.task_id,
            status=TaskStatus.PENDING,
            worker_id=None,
            started_at=None,
            progress=TaskProgress(current_step=AnalysisStep.FETCHING_RESPONSES),
            error=TaskError(
                message="Task was stuck and reset",
                code=ErrorCode.CLEANUP_RESET,
                step="cleanup",
            ),
        )
        reset += 1

    return reset


async def purge_failed_tasks(store: TaskStore, older_than: timedelta) -> int:
    """Soft-delete failed tasks whose failure is older than `older_than`."""
    cutoff = datetime.now() - older_than
    purged = 0

    for task in await store.list(status=TaskStatus.FAILED, limit=SCAN_LIMIT):
        failed = task.failed_at or task.updated_at or task.created_at
        if failed >= cutoff:
            continue
        await store.update(task.task_id, is_deleted=True)
        purged += 1

    if purged:
        logger.info("Old failed tasks marked as deleted", count=purged)
    return purged


async def run_cleanup(
    store: TaskStore,
    interviews: InterviewRepository,
    settings: Settings | None = None,
    exclude: Collection[str] = (),
) -> CleanupSummary:
    """Repair, reset and purge in one pass; `exclude` protects live task ids."""
    settings = settings or default_settings

    repaired, unrecoverable = await repair_corrupted_tasks(store, interviews)
    reset = await reset_stuck_tasks(
        store, timedelta(minutes=settings.stuck_task_minutes), exclude=exclude
    )
    purged = await purge_failed_tasks(
        store, timedelta(hours=settings.failed_task_retention_hours)
    )

    summary = CleanupSummary(
        repaired=repaired,
        unrecoverable=unrecoverable,
        reset=reset,
        purged=purged,
        status_breakdown=await store.count_by_status(),
    )
    logger.info("Task cleanup completed", **summary.model_dump(exclude={"finished_at"}))
    return summary


async def _main() -> None:
    from hiring_backend.repositories.factory import create_repositories

    store, interviews = create_repositories(default_settings)
    await run_cleanup(store, interviews)


if __name__ == "__main__":
    from hiring_backend.config import configure_structlog

    configure_structlog()
    asyncio.run(_main())
