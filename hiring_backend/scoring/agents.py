"""Scoring agents and the prompts they run with."""

from __future__ import annotations

from pydantic_ai import Agent
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings
import structlog

from hiring_backend.config import Settings
from hiring_backend.interviews.models import InterviewResponse
from hiring_backend.scoring.models import InterviewAnalysis, ResponseAnalysis, ScoringContext

logger = structlog.get_logger(__name__)

RESPONSE_ANALYST_INSTRUCTIONS = """You are an expert interview analyst. Evaluate one candidate answer.

Assess:
1. Technical accuracy and depth of knowledge
2. Communication clarity and articulation
3. Problem-solving approach and methodology
4. Relevance to the job requirements
5. Examples and practical experience mentioned
6. Areas for improvement

Give every score out of 100 and stay objective. Quote keywords exactly as the
candidate said them. Never invent experience the answer does not mention."""

INTERVIEW_ANALYST_INSTRUCTIONS = """You are an expert hiring manager. Evaluate a candidate's complete interview.

Assess:
1. Overall suitability for the role
2. Technical competency
3. Communication and soft skills
4. Cultural fit and alignment with the job requirements
5. Strengths and areas for development
6. Red flags that deserve a follow-up

Finish with a hiring recommendation (strong_hire, hire, strong_consider,
consider, no_hire) and how confident you are in it (very_high, high, medium, low)."""

RESPONSE_PROMPT = """CONTEXT:
- Job Title: {job_title}
- Job Description: {job_description}
- Question: {question}
- Question Type: {question_type}
- Candidate Response: {answer}
- Candidate Name: {candidate_name}
- Experience Level: {experience}
- Skills: {skills}
- Evaluation Instructions: {instructions}"""

INTERVIEW_PROMPT = """CANDIDATE PROFILE:
- Name: {candidate_name}
- Email: {candidate_email}
- Experience: {experience}
- Skills: {skills}
- Location: {candidate_location}

JOB PROFILE:
- Title: {job_title}
- Description: {job_description}
- Requirements: {requirements}
- Location: {job_location}

INTERVIEW RESPONSES:
{transcript}

METADATA:
- Total Questions: {total_questions}"""

SCORING_MODEL_SETTINGS = ModelSettings(temperature=0.3, top_p=0.9, max_tokens=3000)


def build_scoring_model(settings: Settings) -> Model:
    """Chat model on an OpenAI-compatible endpoint (Ollama by default)."""
    return OpenAIChatModel(
        settings.llm_model,
        provider=OpenAIProvider(base_url=settings.llm_base_url, api_key=settings.llm_api_key),
    )


def build_response_agent(model: Model | str) -> Agent[None, ResponseAnalysis]:
    return Agent(
        model,
        output_type=ResponseAnalysis,
        instructions=RESPONSE_ANALYST_INSTRUCTIONS,
        retries=2,
        model_settings=SCORING_MODEL_SETTINGS,
    )


def build_interview_agent(model: Model | str) -> Agent[None, InterviewAnalysis]:
    return Agent(
        model,
        output_type=InterviewAnalysis,
        instructions=INTERVIEW_ANALYST_INSTRUCTIONS,
        retries=2,
        model_settings=SCORING_MODEL_SETTINGS,
    )


def _listing(items: list[str]) -> str:
    return ", ".join(items) if items else "Not specified"


def format_response_prompt(response: InterviewResponse, context: ScoringContext) -> str:
    return RESPONSE_PROMPT.format(
        job_title=context.job_title,
        job_description=context.job_description,
        question=response.question_text,
        question_type=response.question_type,
        answer=response.answer_text,
        candidate_name=context.candidate_name,
        experience=context.candidate_experience,
        skills=_listing(context.candidate_skills),
        instructions=response.evaluation_instructions or "None",
    )


def format_interview_prompt(responses: list[InterviewResponse], context: ScoringContext) -> str:
    transcript = "\n".join(
        f"Q{idx}: {r.question_text}\nA{idx}: {r.answer_text}\n"
        for idx, r in enumerate(responses, start=1)
    )
    return INTERVIEW_PROMPT.format(
        candidate_name=context.candidate_name,
        candidate_email=context.candidate_email,
        experience=context.candidate_experience,
        skills=_listing(context.candidate_skills),
        candidate_location=context.candidate_location,
        job_title=context.job_title,
        job_description=context.job_description,
        requirements=_listing(context.job_requirements),
        job_location=context.job_location,
        transcript=transcript,
        total_questions=len(responses),
    )
