"""
Bounded-concurrency worker pool for interview analysis.

The pool owns the in-memory priority queue and the registry of running
workers, and it is the only component that writes analysis task state.
Workers report back exclusively through messages (see `worker.py`).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import partial
import inspect
import os
import secrets
from typing import Any

import structlog
from tenacity import AsyncRetrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from hiring_backend.config import Settings, settings as default_settings
from hiring_backend.repositories.base import InterviewRepository, TaskNotFoundError, TaskStore
from hiring_backend.tasks.identifiers import (
    application_id_from_task_id,
    coerce_identifier,
    generate_task_id,
    is_valid_object_id,
)
from hiring_backend.tasks.models import (
    AnalysisError,
    AnalysisStep,
    AnalysisTask,
    ErrorCode,
    QueueEntry,
    RejectReason,
    TaskError,
    TaskPriority,
    TaskProgress,
    TaskStatus,
)
from hiring_backend.tasks.worker import WorkerBody, WorkerUnit
from hiring_backend.transcription.prepass import TranscriptionPrepass

logger = structlog.get_logger(__name__)

POOL_EVENTS = ("progress", "completed", "error", "failed", "permanentFailure")
APPLICATION_ASSESSED_STATUS = "assessment_completed"


@dataclass
class WorkerHandle:
    """
    Bookkeeping for one running worker, keyed by task id.

    Attributes:
        worker: The worker unit executing the task
        timeout: Deadline timer; firing it fails the task with `timeout`
        task_data: Sanitized task data the worker was started with
        started_at: When the worker was spawned
        last_progress: Most recent progress message, for status polling
    """

    worker: WorkerUnit
    timeout: asyncio.TimerHandle | None
    task_data: dict[str, Any]
    started_at: datetime
    last_progress: dict[str, Any] | None = None


class AnalysisWorkerPool:
    """
    Queue analysis tasks and run them on a bounded set of workers.

    Example:
        >>> pool = AnalysisWorkerPool(store, interviews, worker_factory, settings)
        >>> await pool.start()
        >>> outcome = await pool.queue_analysis_task(application_id, workspace_id)
        >>> await pool.get_task_status(outcome["task_id"])
        >>> await pool.shutdown()

    ``worker_factory`` returns a fresh worker body (an async callable taking
    ``(task_data, post_message)``) for every spawned worker.
    """

    def __init__(
        self,
        store: TaskStore,
        interviews: InterviewRepository,
        worker_factory: Callable[[], WorkerBody],
        settings: Settings | None = None,
        prepass: TranscriptionPrepass | None = None,
    ):
        settings = settings or default_settings
        self.store = store
        self.interviews = interviews
        self.worker_factory = worker_factory
        self.prepass = prepass

        self.max_workers = settings.max_analysis_workers
        self.max_queue_size = settings.max_analysis_queue
        self.worker_timeout = settings.analysis_timeout_seconds
        self.retry_attempts = settings.analysis_retry_attempts
        self.retry_delay = settings.analysis_retry_delay_seconds
        self.drain_delay = settings.queue_drain_delay_seconds
        self.shutdown_grace = settings.shutdown_grace_seconds
        self.store_retry_attempts = settings.store_retry_attempts
        self.store_retry_wait = settings.store_retry_wait_seconds

        self._queue: list[QueueEntry] = []
        self._workers: dict[str, WorkerHandle] = {}
        # Tasks between queue pop and worker spawn; value is "cancel requested".
        self._starting: dict[str, bool] = {}
        self._pending_retries: dict[str, asyncio.TimerHandle] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._background: set[asyncio.Task] = set()
        # Tasks currently inside handle_task_failure.
        self._failure_handlers: set[asyncio.Task] = set()
        self._listeners: dict[str, list[Callable[[dict[str, Any]], Any]]] = {}
        self._enqueue_lock = asyncio.Lock()
        self._is_processing = False
        self._running = False
        self._closed = False

        logger.info(
            "Analysis worker pool initialized",
            max_workers=self.max_workers,
            max_queue_size=self.max_queue_size,
            worker_timeout=self.worker_timeout,
        )

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        if self._closed:
            raise RuntimeError("A shut down pool cannot be restarted")
        self._running = True
        recovered = await self.recover_pending_tasks()
        logger.info("Analysis worker pool started", recovered_tasks=recovered)
        self._spawn(self.process_queue())

    async def shutdown(self) -> None:
        """Cancel queued work, terminate active workers and wait out the grace period."""
        if self._closed:
            return
        logger.info("Shutting down analysis worker pool", queued=len(self._queue), active=len(self._workers))
        self._running = False
        self._closed = True

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

        cancelled = [entry.task_id for entry in self._queue]
        cancelled.extend(self._pending_retries)
        self._queue.clear()
        self._pending_retries.clear()
        for task_id in self._starting:
            self._starting[task_id] = True
            cancelled.append(task_id)

        handles = [self._release_worker(task_id) for task_id in list(self._workers)]
        cancelled.extend(h.task_data["task_id"] for h in handles if h is not None)

        for task_id in cancelled:
            await self._cancel_on_shutdown(task_id)

        await asyncio.gather(*(h.worker.wait_closed() for h in handles if h is not None))
        # In-flight failure handlers see `_closed` and cancel their own task.
        handlers = [t for t in self._failure_handlers if t is not asyncio.current_task()]
        await asyncio.gather(*handlers, return_exceptions=True)
        await asyncio.sleep(self.shutdown_grace)

        pending = [t for t in self._background if t is not asyncio.current_task()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Analysis worker pool shutdown complete", cancelled_tasks=len(cancelled))

    # -- events -----------------------------------------------------------

    def on(self, event: str, listener: Callable[[dict[str, Any]], Any]) -> None:
        if event not in POOL_EVENTS:
            raise ValueError(f"Unknown pool event: {event}")
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Callable[[dict[str, Any]], Any]) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                outcome = listener(payload)
                if inspect.isawaitable(outcome):
                    self._spawn(outcome)
            except Exception:
                logger.exception("Pool event listener failed", event=event)

    # -- enqueue ----------------------------------------------------------

    async def queue_analysis_task(
        self,
        application_id: Any,
        workspace_id: Any,
        priority: TaskPriority | str = TaskPriority.NORMAL,
    ) -> dict[str, Any]:
        """
        Persist and queue a new analysis task.

        Expected rejections (missing ids, an active task for the same
        application, a full queue) come back as ``{"success": False, ...}``;
        this method does not raise for them.
        """
        if self._closed:
            return {
                "success": False,
                "reason": RejectReason.SHUTTING_DOWN,
                "message": "Analysis worker pool is shutting down",
            }

        try:
            application_id = coerce_identifier(application_id)
            workspace_id = coerce_identifier(workspace_id)
        except ValueError:
            application_id = workspace_id = ""
        if not application_id or not workspace_id:
            return {
                "success": False,
                "reason": RejectReason.INVALID_REQUEST,
                "message": "applicationId and workspaceId are required",
            }

        try:
            priority = TaskPriority(priority)
        except ValueError:
            return {
                "success": False,
                "reason": RejectReason.INVALID_REQUEST,
                "message": f"Invalid priority: {priority}",
            }

        async with self._enqueue_lock:
            try:
                existing = await self.store.find_active(application_id)
                if existing is not None:
                    logger.info(
                        "Analysis task already active",
                        application_id=application_id,
                        task_id=existing.task_id,
                    )
                    return {
                        "success": False,
                        "reason": RejectReason.DUPLICATE,
                        "message": "Analysis task already in progress for this application",
                        "task_id": existing.task_id,
                    }

                if self._occupancy() >= self.max_queue_size:
                    logger.warning("Analysis queue is full", max_queue_size=self.max_queue_size)
                    return {
                        "success": False,
                        "reason": RejectReason.QUEUE_FULL,
                        "message": "Analysis queue is full, please try again later",
                    }

                task = AnalysisTask(
                    task_id=generate_task_id(application_id),
                    application_id=application_id,
                    workspace_id=workspace_id,
                    priority=priority,
                    max_retries=self.retry_attempts,
                )
                await self.store.create(task)
            except Exception as e:
                logger.exception("Failed to queue analysis task", application_id=application_id)
                return {
                    "success": False,
                    "reason": RejectReason.STORE_ERROR,
                    "message": "Failed to queue analysis task",
                    "error": str(e),
                }

            self._queue.append(
                QueueEntry(
                    task_id=task.task_id,
                    application_id=application_id,
                    workspace_id=workspace_id,
                    priority=priority,
                    created_at=task.created_at,
                )
            )
            # list.sort is stable, so equal priorities keep arrival order.
            self._queue.sort(key=lambda entry: -entry.priority.rank)
            position = self._queue_position(task.task_id)

        logger.info(
            "Analysis task queued",
            task_id=task.task_id,
            priority=priority.value,
            queue_size=len(self._queue),
        )
        self._spawn(self.process_queue())
        return {
            "success": True,
            "task_id": task.task_id,
            "message": "Analysis task queued successfully",
            "position": position,
        }

    async def recover_pending_tasks(self) -> int:
        """
        Queue stored `pending` tasks this pool does not know about.

        Covers records left behind by a previous process and tasks reset by
        maintenance. Returns the number of entries added.
        """
        known = self._known_task_ids()
        recovered = 0
        async with self._enqueue_lock:
            pending = await self.store.list(status=TaskStatus.PENDING, limit=self.max_queue_size)
            for task in reversed(pending):
                if task.task_id in known:
                    continue
                self._queue.append(
                    QueueEntry(
                        task_id=task.task_id,
                        application_id=task.application_id,
                        workspace_id=task.workspace_id,
                        priority=task.priority,
                        created_at=task.created_at,
                    )
                )
                recovered += 1
            if recovered:
                self._queue.sort(key=lambda entry: -entry.priority.rank)
        if recovered:
            logger.info("Recovered pending tasks", count=recovered)
            self._spawn(self.process_queue())
        return recovered

    async def retry_task(self, task_id: str) -> dict[str, Any]:
        """Queue a fresh high-priority task for a permanently failed one."""
        task = await self.store.get(task_id)
        if task is None or task.is_deleted:
            return {"success": False, "reason": RejectReason.NOT_FOUND, "message": "Task not found"}
        if task.status != TaskStatus.FAILED:
            return {
                "success": False,
                "reason": RejectReason.INVALID_STATE,
                "message": f"Only failed tasks can be retried (status: {task.status.value})",
                "task_id": task_id,
            }
        logger.info("Retrying failed task", task_id=task_id, application_id=task.application_id)
        return await self.queue_analysis_task(task.application_id, task.workspace_id, TaskPriority.HIGH)

    # -- draining ---------------------------------------------------------

    async def process_queue(self) -> None:
        if self._is_processing or not self._running:
            return
        self._is_processing = True
        try:
            while self._running and self._queue and len(self._workers) < self.max_workers:
                entry = self._queue.pop(0)
                await self.start_worker(entry)
        except Exception:
            logger.exception("Error processing analysis queue")
        finally:
            self._is_processing = False

    async def start_worker(self, entry: QueueEntry) -> None:
        """Run the transcription pre-pass, then spawn a worker for the task."""
        task_id = entry.task_id
        self._starting[task_id] = False
        try:
            if self.prepass is not None:
                await self.prepass.run(entry.application_id)

            task = await self.store.get(task_id)
            if task is None or task.status != TaskStatus.PENDING or self._starting.get(task_id) or not self._running:
                logger.info(
                    "Skipping worker start",
                    task_id=task_id,
                    status=task.status.value if task else None,
                )
                return

            worker_id = f"worker_{os.getpid()}_{secrets.token_hex(4)}"
            started_at = datetime.now()
            await self.store.update(
                task_id,
                status=TaskStatus.PROCESSING,
                worker_id=worker_id,
                started_at=started_at,
                progress=TaskProgress(current_step=AnalysisStep.FETCHING_RESPONSES),
            )
            if self._starting.get(task_id):
                # Cancelled while the status write was in flight.
                await self.store.update(task_id, status=TaskStatus.CANCELLED, cancelled_at=datetime.now())
                return
        except Exception as e:
            self._starting.pop(task_id, None)
            logger.error("Failed to start worker", task_id=task_id, error=str(e))
            await self.handle_task_failure(task_id, TaskError.from_exception(e, step="worker_start"))
            return
        finally:
            self._starting.pop(task_id, None)

        task_data = {
            "task_id": task_id,
            "application_id": entry.application_id,
            "workspace_id": entry.workspace_id,
            "priority": entry.priority.value,
            "retry_count": task.retry_count,
        }
        worker = WorkerUnit(
            worker_id,
            self.worker_factory(),
            on_message=partial(self.handle_worker_message, task_id, worker_id),
            on_error=partial(self._handle_worker_error, task_id, worker_id),
            on_exit=partial(self._handle_worker_exit, task_id, worker_id),
        )
        timeout = asyncio.get_running_loop().call_later(
            self.worker_timeout, self._on_timeout, task_id, worker_id
        )
        self._workers[task_id] = WorkerHandle(
            worker=worker,
            timeout=timeout,
            task_data=task_data,
            started_at=started_at,
        )
        worker.start({"type": "start", "task_data": task_data})
        logger.info("Worker started", task_id=task_id, worker_id=worker_id, active_workers=len(self._workers))

    # -- worker signals ---------------------------------------------------

    def _owns(self, task_id: str, worker_id: str) -> bool:
        handle = self._workers.get(task_id)
        return handle is not None and handle.worker.worker_id == worker_id

    async def handle_worker_message(self, task_id: str, worker_id: str, message: dict[str, Any]) -> None:
        if not self._owns(task_id, worker_id):
            logger.debug("Ignoring message from stale worker", task_id=task_id, worker_id=worker_id)
            return

        kind = message.get("type")
        if kind == "progress":
            self._workers[task_id].last_progress = message
            logger.info("Task progress", task_id=task_id, step=message.get("step"), message=message.get("message"))
            self._emit("progress", {**message, "task_id": task_id})
        elif kind == "completed":
            await self._handle_task_completion(task_id, worker_id, message)
        elif kind == "error":
            error = self._coerce_error(message.get("error"))
            logger.error("Worker reported error", task_id=task_id, code=error.code, error=error.message)
            self._emit("error", {"task_id": task_id, "error": error.model_dump()})
            await self.handle_task_failure(task_id, error, worker_id=worker_id)
        else:
            logger.debug("Unhandled worker message", task_id=task_id, message_type=kind)

    async def _handle_worker_error(self, task_id: str, worker_id: str, exc: BaseException) -> None:
        if not self._owns(task_id, worker_id):
            return
        error = TaskError.from_exception(exc, step="worker_error")
        logger.error("Worker fault", task_id=task_id, code=error.code, error=error.message)
        self._emit("error", {"task_id": task_id, "error": error.model_dump()})
        await self.handle_task_failure(task_id, error, worker_id=worker_id)

    async def _handle_worker_exit(self, task_id: str, worker_id: str, code: int) -> None:
        if not self._owns(task_id, worker_id):
            return
        logger.warning("Worker exited without a result", task_id=task_id, exit_code=code)
        await self.handle_task_failure(
            task_id,
            TaskError(
                message=f"Worker exited with code {code} before reporting a result",
                code=ErrorCode.WORKER_EXITED,
                step="worker_exit",
            ),
            worker_id=worker_id,
        )

    def _on_timeout(self, task_id: str, worker_id: str) -> None:
        if not self._owns(task_id, worker_id):
            return
        logger.warning("Worker timed out", task_id=task_id, timeout_seconds=self.worker_timeout)
        self._spawn(
            self.handle_task_failure(
                task_id,
                TaskError(
                    message=f"Analysis timed out after {self.worker_timeout} seconds",
                    code=ErrorCode.TIMEOUT,
                    step="worker_timeout",
                ),
                worker_id=worker_id,
            )
        )

    async def _handle_task_completion(self, task_id: str, worker_id: str, message: dict[str, Any]) -> None:
        handle = self._workers[task_id]
        result = message.get("result") or {}
        total_steps = int(result.get("total_responses", 0)) + 1

        # The body has finished; the deadline no longer applies to the write-back.
        if handle.timeout is not None:
            handle.timeout.cancel()
            handle.timeout = None

        try:
            await self._save_results(task_id, handle.task_data["application_id"], result)
            if not self._owns(task_id, worker_id):
                logger.warning("Task was stopped while saving its results", task_id=task_id)
                return
            await self._store_call(
                self.store.update,
                task_id,
                status=TaskStatus.COMPLETED,
                result=result,
                error=None,
                completed_at=datetime.now(),
                progress=TaskProgress(
                    current_step=AnalysisStep.SAVING_RESULTS,
                    completed_steps=total_steps,
                    total_steps=total_steps,
                ),
            )
        except Exception as e:
            logger.error("Failed to persist analysis results", task_id=task_id, error=str(e))
            await self.handle_task_failure(
                task_id, TaskError.from_exception(e, step=AnalysisStep.SAVING_RESULTS.value), worker_id=worker_id
            )
            return

        self.terminate_worker(task_id, "completed")
        logger.info(
            "Analysis task completed",
            task_id=task_id,
            average_score=result.get("average_score"),
            completed_analyses=result.get("completed_analyses"),
        )
        self._emit("completed", {"task_id": task_id, "result": result})
        self._schedule_drain(self.drain_delay)

    async def _save_results(self, task_id: str, application_id: str, result: dict[str, Any]) -> None:
        """Write analyses back, tagged with the task that produced them."""
        for score in result.get("individual_scores", []):
            if not self._running:
                return
            if score.get("analysis_completed"):
                analysis = score.get("analysis")
                if isinstance(analysis, dict):
                    analysis = {**analysis, "analysis_task_id": task_id}
                await self.interviews.update_response(score["response_id"], analysis=analysis, score=score.get("score"))
        if result.get("overall_analysis") is not None and self._running:
            await self.interviews.record_overall_analysis(
                application_id,
                {**result["overall_analysis"], "analysis_task_id": task_id},
                APPLICATION_ASSESSED_STATUS,
            )

    # -- failure and retry ------------------------------------------------

    @staticmethod
    def _coerce_error(error: Any) -> TaskError:
        if isinstance(error, TaskError):
            return error
        if isinstance(error, BaseException):
            return TaskError.from_exception(error)
        if isinstance(error, dict):
            return TaskError(
                message=error.get("message") or "Task failed",
                code=error.get("code") or ErrorCode.ANALYSIS_FAILED,
                stack=error.get("stack"),
                step=error.get("step"),
            )
        return TaskError(message=str(error) if error else "Task failed")

    async def _store_call(self, operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a task store call, retrying transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.store_retry_attempts),
            wait=wait_exponential(multiplier=self.store_retry_wait, max=5),
            retry=retry_if_not_exception_type(TaskNotFoundError),
            reraise=True,
        ):
            with attempt:
                outcome = await operation(*args, **kwargs)
        return outcome

    async def handle_task_failure(self, task_id: str, error: Any, worker_id: str | None = None) -> None:
        """
        Decide between retry and terminal failure for a task.

        Retries re-insert the task at the front of the queue after the retry
        delay. `NO_RESPONSES` is terminal but ends as `completed` with an
        empty result. The worker handle is always torn down before draining
        resumes. When the decision cannot be persisted the task stays held
        by the pool and the failure is handled again after the retry delay.
        """
        error = self._coerce_error(error)
        if worker_id is not None and not self._owns(task_id, worker_id):
            return

        handler = asyncio.current_task()
        if handler is not None:
            self._failure_handlers.add(handler)
        try:
            await self._settle_failure(task_id, error, worker_id)
        finally:
            if handler is not None:
                self._failure_handlers.discard(handler)

    async def _settle_failure(self, task_id: str, error: TaskError, worker_id: str | None) -> None:
        try:
            task = await self._store_call(self.store.get, task_id)
        except Exception as e:
            logger.error("Failed to load task for failure handling", task_id=task_id, error=str(e))
            if worker_id is None or self._owns(task_id, worker_id):
                self._release_worker(task_id)
                await self._defer_failure(task_id, error)
            return

        if worker_id is not None and not self._owns(task_id, worker_id):
            return
        self._release_worker(task_id)

        if task is None or task.status.is_terminal:
            logger.info("Ignoring failure for inactive task", task_id=task_id)
            self._schedule_drain(self.drain_delay)
            return

        if self._closed:
            await self._cancel_on_shutdown(task_id)
            return

        should_retry = task.retry_count < task.max_retries and error.code not in ErrorCode.NON_RETRYABLE
        application_id = workspace_id = None
        if should_retry:
            try:
                application_id, workspace_id = await self._repair_identifiers(task)
            except AnalysisError as e:
                logger.error("Cannot retry task with corrupted identifiers", task_id=task_id, error=str(e))
                error = TaskError(message=str(e), code=e.code, step="retry")
                should_retry = False

        try:
            if should_retry:
                updated = await self._store_call(
                    self.store.increment_retry,
                    task_id,
                    status=TaskStatus.PENDING,
                    error=error,
                    worker_id=None,
                    application_id=application_id,
                    workspace_id=workspace_id,
                )
                if self._closed:
                    await self._cancel_on_shutdown(task_id)
                    return
                logger.info(
                    "Retrying analysis task",
                    task_id=task_id,
                    attempt=updated.retry_count,
                    max_retries=task.max_retries,
                    code=error.code,
                )
                entry = QueueEntry(
                    task_id=task_id,
                    application_id=application_id,
                    workspace_id=workspace_id,
                    priority=task.priority,
                    created_at=task.created_at,
                )
                timer = self._call_later(self.retry_delay, self._requeue_front, entry)
                if timer is not None:
                    self._pending_retries[task_id] = timer
                self._emit(
                    "failed",
                    {"task_id": task_id, "error": error.model_dump(), "retry": True, "retry_count": updated.retry_count},
                )
                return

            if error.code == ErrorCode.NO_RESPONSES:
                result = {"success": False, "no_responses": True, "message": error.message}
                await self._store_call(
                    self.store.update,
                    task_id,
                    status=TaskStatus.COMPLETED,
                    result=result,
                    error=error,
                    completed_at=datetime.now(),
                )
                logger.info("Analysis task has no responses", task_id=task_id)
                self._emit("completed", {"task_id": task_id, "result": result})
            else:
                if error.step is None:
                    error = error.model_copy(update={"step": "final_failure"})
                await self._store_call(
                    self.store.update,
                    task_id,
                    status=TaskStatus.FAILED,
                    error=error,
                    failed_at=datetime.now(),
                )
                logger.error("Analysis task failed permanently", task_id=task_id, code=error.code, error=error.message)
                self._emit("failed", {"task_id": task_id, "error": error.model_dump(), "retry": False})
                self._emit("permanentFailure", {"task_id": task_id, "error": error.model_dump()})
        except TaskNotFoundError:
            logger.warning("Task disappeared during failure handling", task_id=task_id)
        except Exception as e:
            logger.error("Failed to record task failure", task_id=task_id, error=str(e))
            await self._defer_failure(task_id, error)
            return

        self._schedule_drain(self.drain_delay)

    async def _defer_failure(self, task_id: str, error: TaskError) -> None:
        """Hold the task and handle its failure again once the store may have recovered."""
        if self._closed:
            await self._cancel_on_shutdown(task_id)
            return

        def _again() -> None:
            self._pending_retries.pop(task_id, None)
            if self._running:
                self._spawn(self.handle_task_failure(task_id, error))

        timer = self._call_later(self.retry_delay, _again)
        if timer is not None:
            self._pending_retries[task_id] = timer
            logger.warning("Failure handling deferred", task_id=task_id, delay_seconds=self.retry_delay)

    async def _cancel_on_shutdown(self, task_id: str) -> None:
        try:
            await self._store_call(
                self.store.update,
                task_id,
                status=TaskStatus.CANCELLED,
                worker_id=None,
                error=TaskError(message="Analysis worker pool shut down", code=ErrorCode.SHUTDOWN, step="shutdown"),
                cancelled_at=datetime.now(),
            )
        except Exception as e:
            logger.error("Failed to cancel task on shutdown", task_id=task_id, error=str(e))

    async def _repair_identifiers(self, task: AnalysisTask) -> tuple[str, str]:
        """Return usable ids for a retry, recovering them from the task id or the application."""
        application_id = task.application_id
        if not is_valid_object_id(application_id):
            application_id = application_id_from_task_id(task.task_id)
            if application_id is None:
                raise AnalysisError(
                    f"Cannot determine valid applicationId for task {task.task_id}",
                    code=ErrorCode.INVALID_TASK_FORMAT,
                )
            logger.warning("Using applicationId from task id", task_id=task.task_id, application_id=application_id)

        workspace_id = task.workspace_id
        if not is_valid_object_id(workspace_id):
            application = await self.interviews.get_application(application_id)
            if application is None or not is_valid_object_id(application.workspace_id):
                raise AnalysisError(
                    f"Cannot determine valid workspaceId for task {task.task_id}",
                    code=ErrorCode.APPLICATION_NOT_FOUND,
                )
            workspace_id = application.workspace_id
            logger.warning("Using workspaceId from application", task_id=task.task_id, workspace_id=workspace_id)

        return application_id, workspace_id

    def _requeue_front(self, entry: QueueEntry) -> None:
        self._pending_retries.pop(entry.task_id, None)
        if not self._running:
            return
        self._queue.insert(0, entry)
        self._spawn(self.process_queue())

    # -- termination and cancellation -------------------------------------

    def _release_worker(self, task_id: str) -> WorkerHandle | None:
        handle = self._workers.pop(task_id, None)
        if handle is None:
            return None
        if handle.timeout is not None:
            handle.timeout.cancel()
        handle.worker.terminate()
        return handle

    def terminate_worker(self, task_id: str, reason: str = "unknown") -> bool:
        """Tear down a task's worker; a no-op when none is running."""
        if self._release_worker(task_id) is None:
            return False
        logger.info("Worker terminated", task_id=task_id, reason=reason, active_workers=len(self._workers))
        if reason != "completed":
            self._schedule_drain(self.drain_delay)
        return True

    async def cancel_task(self, task_id: str) -> dict[str, Any]:
        removed = False
        for index, entry in enumerate(self._queue):
            if entry.task_id == task_id:
                del self._queue[index]
                removed = True
                logger.info("Removed task from queue", task_id=task_id)
                break

        retry_timer = self._pending_retries.pop(task_id, None)
        if retry_timer is not None:
            retry_timer.cancel()
            self._timers.discard(retry_timer)
        if task_id in self._starting:
            self._starting[task_id] = True
        terminated = self.terminate_worker(task_id, "cancelled")

        task = await self.store.get(task_id)
        if task is None:
            return {"success": False, "reason": RejectReason.NOT_FOUND, "message": "Task not found"}
        if task.status == TaskStatus.CANCELLED:
            return {"success": True, "message": "Task already cancelled"}
        if task.status.is_terminal:
            return {
                "success": False,
                "reason": RejectReason.INVALID_STATE,
                "message": f"Task already {task.status.value}",
            }

        await self.store.update(
            task_id,
            status=TaskStatus.CANCELLED,
            cancelled_at=datetime.now(),
            worker_id=None,
            error=TaskError(message="Task cancelled", code=ErrorCode.CANCELLED, step="cancel"),
        )
        logger.info("Task cancelled", task_id=task_id, was_queued=removed, was_running=terminated)
        return {"success": True, "message": "Task cancelled successfully"}

    # -- introspection ----------------------------------------------------

    def _queue_position(self, task_id: str) -> int | None:
        for index, entry in enumerate(self._queue):
            if entry.task_id == task_id:
                return index + 1
        return None

    def _known_task_ids(self) -> set[str]:
        known = {entry.task_id for entry in self._queue}
        known.update(self._starting, self._workers, self._pending_retries)
        return known

    def _occupancy(self) -> int:
        return len(self._queue) + len(self._starting) + len(self._workers) + len(self._pending_retries)

    async def get_task_status(self, task_id: str) -> dict[str, Any] | None:
        task = await self.store.get(task_id)
        if task is None or task.is_deleted:
            return None
        data = task.to_dict()
        handle = self._workers.get(task_id)
        data["queue_position"] = self._queue_position(task_id)
        data["is_active"] = handle is not None
        data["live_progress"] = handle.last_progress if handle else None
        return data

    def get_queue_stats(self) -> dict[str, Any]:
        return {
            "queue_size": len(self._queue),
            "active_workers": len(self._workers),
            "max_workers": self.max_workers,
            "max_queue_size": self.max_queue_size,
            "is_processing": self._is_processing,
            "is_running": self._running,
            "pending_retries": len(self._pending_retries),
            "queued_task_ids": [entry.task_id for entry in self._queue],
            "active_task_ids": list(self._workers),
        }

    async def list_tasks(self, status: TaskStatus | None = None, limit: int = 50) -> list[dict[str, Any]]:
        tasks = await self.store.list(status=status, limit=limit)
        return [task.to_dict() for task in tasks]

    # -- scheduling helpers -----------------------------------------------

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background pool task failed", error=str(task.exception()))

    def _call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> asyncio.TimerHandle | None:
        if not self._running:
            return None
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._timers.discard(handle)
            callback(*args)

        handle = asyncio.get_running_loop().call_later(delay, _fire)
        self._timers.add(handle)
        return handle

    def _schedule_drain(self, delay: float) -> None:
        if not self._running:
            return
        self._call_later(delay, lambda: self._spawn(self.process_queue()))
