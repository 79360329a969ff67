"""Tests for stored-task housekeeping."""

from datetime import datetime, timedelta

from conftest import APP_ID, WORKSPACE_ID, make_settings, object_id
import pytest

from hiring_backend.tasks.identifiers import generate_task_id
from hiring_backend.tasks.maintenance import (
    purge_failed_tasks,
    repair_corrupted_tasks,
    reset_stuck_tasks,
    run_cleanup,
)
from hiring_backend.tasks.models import AnalysisStep, AnalysisTask, ErrorCode, TaskProgress, TaskStatus

CORRUPTED = "[object Object]"


def task(task_id=None, **fields) -> AnalysisTask:
    values = {
        "task_id": task_id or generate_task_id(APP_ID),
        "application_id": APP_ID,
        "workspace_id": WORKSPACE_ID,
    }
    values.update(fields)
    return AnalysisTask(**values)


class TestRepairCorruptedTasks:
    """Unusable ids are restored or the task is failed with a reason."""

    @pytest.mark.asyncio
    async def test_restores_ids_from_task_id_and_application(self, task_store, interviews, sample_application):
        interviews.add_application(sample_application)
        corrupted = task(application_id=CORRUPTED, workspace_id=CORRUPTED, status=TaskStatus.PROCESSING)
        await task_store.create(corrupted)

        repaired, unrecoverable = await repair_corrupted_tasks(task_store, interviews)

        assert (repaired, unrecoverable) == (1, 0)
        stored = await task_store.get(corrupted.task_id)
        assert stored.application_id == APP_ID
        assert stored.workspace_id == WORKSPACE_ID
        assert stored.status == TaskStatus.FAILED
        assert stored.error.code == ErrorCode.DATA_CORRUPTION_FIXED
        assert stored.error.step == "data_restoration"

    @pytest.mark.asyncio
    async def test_unparseable_task_id(self, task_store, interviews):
        await task_store.create(task("legacy-42", application_id=CORRUPTED))

        assert await repair_corrupted_tasks(task_store, interviews) == (0, 1)
        stored = await task_store.get("legacy-42")
        assert stored.error.code == ErrorCode.INVALID_TASK_FORMAT

    @pytest.mark.asyncio
    async def test_missing_application(self, task_store, interviews):
        corrupted = task(workspace_id=CORRUPTED)
        await task_store.create(corrupted)

        assert await repair_corrupted_tasks(task_store, interviews) == (0, 1)
        stored = await task_store.get(corrupted.task_id)
        assert stored.status == TaskStatus.FAILED
        assert stored.error.code == ErrorCode.APPLICATION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_finished_and_healthy_tasks_are_left_alone(self, task_store, interviews):
        completed = task(application_id=CORRUPTED, status=TaskStatus.COMPLETED)
        cancelled = task(application_id=CORRUPTED, status=TaskStatus.CANCELLED)
        healthy = task()
        for item in (completed, cancelled, healthy):
            await task_store.create(item)

        assert await repair_corrupted_tasks(task_store, interviews) == (0, 0)
        assert (await task_store.get(completed.task_id)).application_id == CORRUPTED
        assert (await task_store.get(healthy.task_id)).status == TaskStatus.PENDING


class TestResetStuckTasks:
    @pytest.mark.asyncio
    async def test_old_processing_tasks_go_back_to_pending(self, task_store):
        stuck = task(
            status=TaskStatus.PROCESSING,
            worker_id="worker_1_dead",
            started_at=datetime.now() - timedelta(minutes=30),
            progress=TaskProgress(current_step=AnalysisStep.ANALYZING_OVERALL, completed_steps=3, total_steps=4),
        )
        await task_store.create(stuck)

        assert await reset_stuck_tasks(task_store, timedelta(minutes=10)) == 1

        stored = await task_store.get(stuck.task_id)
        assert stored.status == TaskStatus.PENDING
        assert stored.worker_id is None
        assert stored.started_at is None
        assert stored.progress.current_step == AnalysisStep.FETCHING_RESPONSES
        assert stored.progress.completed_steps == 0
        assert stored.error.code == ErrorCode.CLEANUP_RESET

    @pytest.mark.asyncio
    async def test_recent_and_excluded_tasks_are_kept(self, task_store):
        recent = task(status=TaskStatus.PROCESSING, started_at=datetime.now() - timedelta(minutes=1))
        live = task(
            generate_task_id(object_id(2)),
            application_id=object_id(2),
            status=TaskStatus.PROCESSING,
            started_at=datetime.now() - timedelta(hours=1),
        )
        await task_store.create(recent)
        await task_store.create(live)

        assert await reset_stuck_tasks(task_store, timedelta(minutes=10), exclude={live.task_id}) == 0
        assert (await task_store.get(live.task_id)).status == TaskStatus.PROCESSING


class TestPurgeFailedTasks:
    @pytest.mark.asyncio
    async def test_only_old_failures_are_soft_deleted(self, task_store):
        old = task(status=TaskStatus.FAILED, failed_at=datetime.now() - timedelta(hours=30))
        fresh = task(
            generate_task_id(object_id(2)),
            application_id=object_id(2),
            status=TaskStatus.FAILED,
            failed_at=datetime.now() - timedelta(hours=1),
        )
        await task_store.create(old)
        await task_store.create(fresh)

        assert await purge_failed_tasks(task_store, timedelta(hours=24)) == 1

        assert (await task_store.get(old.task_id)).is_deleted is True
        assert (await task_store.get(fresh.task_id)).is_deleted is False
        assert [t.task_id for t in await task_store.list(status=TaskStatus.FAILED)] == [fresh.task_id]


class TestRunCleanup:
    @pytest.mark.asyncio
    async def test_summary(self, task_store, interviews, sample_application):
        interviews.add_application(sample_application)
        await task_store.create(task(application_id=CORRUPTED, status=TaskStatus.PENDING))
        await task_store.create(
            task(
                generate_task_id(object_id(2)),
                application_id=object_id(2),
                status=TaskStatus.PROCESSING,
                started_at=datetime.now() - timedelta(hours=2),
            )
        )
        await task_store.create(
            task(
                "legacy-1",
                application_id=CORRUPTED,
                status=TaskStatus.COMPLETED,
            )
        )

        summary = await run_cleanup(
            task_store,
            interviews,
            make_settings(stuck_task_minutes=10, failed_task_retention_hours=24),
        )

        assert summary.repaired == 1
        assert summary.unrecoverable == 0
        assert summary.reset == 1
        assert summary.purged == 0
        assert summary.status_breakdown == {"failed": 1, "pending": 1, "completed": 1}
