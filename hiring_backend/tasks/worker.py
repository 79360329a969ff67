"""
Worker units and the analysis body they run.

A `WorkerUnit` owns one asyncio task executing a worker body. The body and
the pool never share objects: the start message is deep-copied into the
unit, and everything the body reports travels back as copied message dicts
through the unit's inbox. The pool hears from the unit through three
callbacks, dispatched in order from a single pump task:

- ``on_message(message)`` for each posted ``progress``/``completed``/``error``
- ``on_error(exc)`` when the body raises
- ``on_exit(code)`` when the body ends for any reason (0 clean, 1 after a fault)

`terminate()` is a hard stop: the body is cancelled without a chance to
flush anything, and no callback fires afterwards.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import copy
import inspect
from typing import Any

import structlog

from hiring_backend.interviews.models import Application, InterviewResponse
from hiring_backend.repositories.base import InterviewRepository
from hiring_backend.scoring.client import ScoringClient
from hiring_backend.scoring.models import ScoringContext
from hiring_backend.tasks.identifiers import is_valid_object_id
from hiring_backend.tasks.models import AnalysisError, AnalysisStep, ErrorCode, TaskError

logger = structlog.get_logger(__name__)

PostMessage = Callable[[dict[str, Any]], None]
WorkerBody = Callable[[dict[str, Any], PostMessage], Awaitable[None]]

_STOP = ("stop", None)


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class WorkerUnit:
    """One isolated execution of a worker body."""

    def __init__(
        self,
        worker_id: str,
        body: WorkerBody,
        on_message: Callable[[dict[str, Any]], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        on_exit: Callable[[int], Any] | None = None,
    ):
        self.worker_id = worker_id
        self._body = body
        self._on_message = on_message
        self._on_error = on_error
        self._on_exit = on_exit
        self._inbox: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._body_task: asyncio.Task | None = None
        self._pump_task: asyncio.Task | None = None
        self._terminated = False

    @property
    def is_running(self) -> bool:
        return self._body_task is not None and not self._body_task.done()

    @property
    def terminated(self) -> bool:
        return self._terminated

    def start(self, start_message: dict[str, Any]) -> None:
        if self._body_task is not None:
            raise RuntimeError(f"Worker {self.worker_id} already started")
        message = copy.deepcopy(start_message)
        self._body_task = asyncio.create_task(self._execute(message), name=self.worker_id)
        self._pump_task = asyncio.create_task(self._pump(), name=f"{self.worker_id}:pump")

    def terminate(self) -> None:
        """Cancel the body; idempotent."""
        if self._terminated:
            return
        self._terminated = True
        if self._body_task is not None and not self._body_task.done():
            self._body_task.cancel()
        self._inbox.put_nowait(_STOP)

    async def wait_closed(self) -> None:
        """Wait until the body and the pump have both finished."""
        tasks = [t for t in (self._body_task, self._pump_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _post(self, message: dict[str, Any]) -> None:
        if not self._terminated:
            self._inbox.put_nowait(("message", copy.deepcopy(message)))

    async def _execute(self, message: dict[str, Any]) -> None:
        if message.get("type") != "start":
            self._inbox.put_nowait(("exit", ValueError(f"Unexpected message type: {message.get('type')}")))
            return
        try:
            await self._body(message.get("task_data") or {}, self._post)
        except Exception as e:
            self._inbox.put_nowait(("exit", e))
            return
        self._inbox.put_nowait(("exit", None))

    async def _pump(self) -> None:
        while True:
            kind, payload = await self._inbox.get()
            if self._terminated or kind == "stop":
                return
            try:
                if kind == "message":
                    await _invoke(self._on_message, payload)
                    continue
                if payload is not None:
                    await _invoke(self._on_error, payload)
                    if self._terminated:
                        return
                await _invoke(self._on_exit, 0 if payload is None else 1)
                return
            except Exception:
                logger.exception("Worker callback failed", worker_id=self.worker_id, signal=kind)
                if kind == "exit":
                    return


class AnalysisWorker:
    """
    Analysis body for one application.

    Reads the application and its (already transcribed) responses, scores
    each answer, then the interview as a whole. Nothing is written from
    here: progress and the final result go back through ``post_message``,
    and every failure becomes a single ``error`` message.
    """

    def __init__(self, interviews: InterviewRepository, scoring: ScoringClient):
        self.interviews = interviews
        self.scoring = scoring

    async def run(self, task_data: dict[str, Any], post_message: PostMessage) -> None:
        task_id = task_data.get("task_id")
        try:
            result = await self._analyze(task_id, task_data, post_message)
        except Exception as e:
            error = TaskError.from_exception(e)
            logger.warning(
                "Analysis failed in worker",
                task_id=task_id,
                code=error.code,
                error=error.message,
            )
            post_message({"type": "error", "task_id": task_id, "error": error.model_dump()})
            return

        post_message(
            {
                "type": "completed",
                "task_id": task_id,
                "message": "Analysis completed successfully",
                "result": result,
            }
        )

    async def _analyze(
        self, task_id: str | None, task_data: dict[str, Any], post_message: PostMessage
    ) -> dict[str, Any]:
        application_id = task_data.get("application_id")
        if not is_valid_object_id(application_id):
            raise AnalysisError(
                f"Invalid applicationId format: {application_id!r}",
                code=ErrorCode.INVALID_APPLICATION,
                step=AnalysisStep.FETCHING_RESPONSES.value,
            )

        post_message(
            {
                "type": "progress",
                "task_id": task_id,
                "step": AnalysisStep.FETCHING_RESPONSES.value,
                "message": "Fetching interview responses...",
            }
        )

        responses = await self.interviews.list_responses(application_id)
        if not responses:
            raise AnalysisError(
                "No responses found for this application",
                code=ErrorCode.NO_RESPONSES,
                step=AnalysisStep.FETCHING_RESPONSES.value,
            )

        application = await self.interviews.get_application(application_id)
        if application is None:
            raise AnalysisError(
                "Application not found",
                code=ErrorCode.INVALID_APPLICATION,
                step=AnalysisStep.FETCHING_RESPONSES.value,
            )

        context = build_scoring_context(application)
        total = len(responses)
        logger.info("Analyzing responses", task_id=task_id, application_id=application_id, total=total)

        individual_scores = []
        for index, response in enumerate(responses, start=1):
            post_message(
                {
                    "type": "progress",
                    "task_id": task_id,
                    "step": AnalysisStep.ANALYZING_INDIVIDUAL.value,
                    "message": f"Analyzing response {index} of {total}...",
                    "current": index,
                    "total": total,
                    "completed_steps": index - 1,
                    "total_steps": total + 1,
                }
            )
            individual_scores.append(await self._score_one(response, context))

        post_message(
            {
                "type": "progress",
                "task_id": task_id,
                "step": AnalysisStep.ANALYZING_OVERALL.value,
                "message": "Generating overall candidate analysis...",
                "completed_steps": total,
                "total_steps": total + 1,
            }
        )

        outcome = await self.scoring.analyze(responses, context)
        if not outcome.success:
            raise AnalysisError(
                f"Overall analysis failed: {outcome.error}",
                code=ErrorCode.ANALYSIS_FAILED,
                step=AnalysisStep.ANALYZING_OVERALL.value,
            )

        post_message(
            {
                "type": "progress",
                "task_id": task_id,
                "step": AnalysisStep.SAVING_RESULTS.value,
                "message": "Saving analysis results...",
                "completed_steps": total + 1,
                "total_steps": total + 1,
            }
        )

        valid_scores = [s["score"] for s in individual_scores if s["analysis_completed"] and s["score"] > 0]
        return {
            "individual_scores": individual_scores,
            "overall_analysis": outcome.result,
            "average_score": sum(valid_scores) / len(valid_scores) if valid_scores else 0,
            "total_responses": total,
            "completed_analyses": sum(1 for s in individual_scores if s["analysis_completed"]),
        }

    async def _score_one(self, response: InterviewResponse, context: ScoringContext) -> dict[str, Any]:
        try:
            outcome = await self.scoring.score_response(response, context)
        except Exception as e:
            outcome = None
            error = str(e)
        else:
            error = outcome.error

        if outcome is None or not outcome.success:
            logger.warning("Response analysis failed", response_id=response.response_id, error=error)
            return {
                "response_id": response.response_id,
                "score": 0,
                "analysis_completed": False,
                "error": error,
            }

        # Overall scoring reads the per-answer analyses from the response objects.
        response.analysis = outcome.result
        return {
            "response_id": response.response_id,
            "score": outcome.result.get("overall_score", 0),
            "analysis_completed": True,
            "analysis": outcome.result,
        }


def build_scoring_context(application: Application) -> ScoringContext:
    return ScoringContext(
        application_id=application.application_id,
        candidate_name=application.candidate.name,
        candidate_email=application.candidate.email,
        candidate_experience=application.candidate.experience,
        candidate_skills=application.candidate.skills,
        candidate_location=application.candidate.location,
        job_title=application.job.title,
        job_description=application.job.description,
        job_requirements=application.job.requirements,
        job_location=application.job.location,
    )
