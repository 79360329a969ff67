"""Scoring client: per-answer and whole-interview evaluation through the LLM."""

from __future__ import annotations

from pydantic_ai import Agent
from pydantic_ai.models import Model
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hiring_backend.config import Settings, settings as default_settings
from hiring_backend.interviews.models import InterviewResponse
from hiring_backend.scoring.agents import (
    build_interview_agent,
    build_response_agent,
    build_scoring_model,
    format_interview_prompt,
    format_response_prompt,
)
from hiring_backend.scoring.fallback import fallback_interview_analysis, fallback_response_analysis
from hiring_backend.scoring.models import (
    InterviewAnalysis,
    ResponseAnalysis,
    ScoringContext,
    ScoringOutcome,
)

logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (ConnectionError, TimeoutError, OSError)


class ScoringClient:
    """
    Evaluate interview answers with two pydantic_ai agents.

    Network errors are retried with exponential backoff. When every attempt
    fails and fallback is enabled the heuristic scorer answers instead, and
    the result carries `fallback=True`; otherwise the outcome is unsuccessful.
    Neither method raises.
    """

    def __init__(
        self,
        model: Model | str | None = None,
        settings: Settings | None = None,
        fallback_enabled: bool | None = None,
        max_attempts: int = 3,
    ):
        self.settings = settings or default_settings
        self.model = model if model is not None else build_scoring_model(self.settings)
        self.fallback_enabled = (
            self.settings.scoring_fallback_enabled if fallback_enabled is None else fallback_enabled
        )
        self.max_attempts = max_attempts
        self.response_agent = build_response_agent(self.model)
        self.interview_agent = build_interview_agent(self.model)

    async def _run(self, agent: Agent, prompt: str):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        ):
            with attempt:
                result = await agent.run(prompt)
        return result.output

    async def score_response(self, response: InterviewResponse, context: ScoringContext) -> ScoringOutcome:
        try:
            analysis: ResponseAnalysis = await self._run(
                self.response_agent, format_response_prompt(response, context)
            )
        except Exception as e:
            logger.warning(
                "Response scoring failed",
                response_id=response.response_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            if not self.fallback_enabled:
                return ScoringOutcome(success=False, error=str(e))
            analysis = fallback_response_analysis(response.answer_text)

        logger.info(
            "Response scored",
            response_id=response.response_id,
            overall_score=analysis.overall_score,
            fallback=analysis.fallback,
        )
        return ScoringOutcome(success=True, result=analysis.model_dump(mode="json"))

    async def analyze(self, responses: list[InterviewResponse], context: ScoringContext) -> ScoringOutcome:
        """Whole-interview evaluation with a hiring recommendation."""
        try:
            analysis: InterviewAnalysis = await self._run(
                self.interview_agent, format_interview_prompt(responses, context)
            )
        except Exception as e:
            logger.warning(
                "Interview analysis failed",
                application_id=context.application_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            if not self.fallback_enabled:
                return ScoringOutcome(success=False, error=str(e))
            analysis = fallback_interview_analysis(
                [(r.analysis or {}).get("overall_score") for r in responses]
            )

        logger.info(
            "Interview analyzed",
            application_id=context.application_id,
            overall_score=analysis.overall_score,
            recommendation=analysis.hiring_recommendation.value,
            fallback=analysis.fallback,
        )
        return ScoringOutcome(success=True, result=analysis.model_dump(mode="json"))
