"""Transcribe an application's untranscribed answers before analysis starts."""

from __future__ import annotations

from pydantic import BaseModel
import structlog

from hiring_backend.interviews.models import TranscriptionStatus
from hiring_backend.repositories.base import InterviewRepository
from hiring_backend.transcription.client import TranscriptionClient

logger = structlog.get_logger(__name__)

FAILED_PLACEHOLDER = "[Transcription failed]"


class PrepassSummary(BaseModel):
    total: int = 0
    already_transcribed: int = 0
    transcribed: int = 0
    skipped: int = 0
    failed: int = 0


class TranscriptionPrepass:
    """
    Fill in missing transcripts for one application.

    Answers without text and without a recording are marked `skipped`.
    The rest go through the transcription client one at a time; each result
    (text or failure placeholder plus error) is written back to the response
    record before the next one starts.
    """

    def __init__(self, interviews: InterviewRepository, client: TranscriptionClient):
        self.interviews = interviews
        self.client = client

    async def run(self, application_id: str) -> PrepassSummary:
        responses = await self.interviews.list_responses(application_id)
        summary = PrepassSummary(total=len(responses))

        for response in responses:
            if not response.needs_transcription:
                summary.already_transcribed += 1
                continue

            if not response.audio_url:
                await self.interviews.update_response(
                    response.response_id,
                    transcription_status=TranscriptionStatus.SKIPPED,
                )
                summary.skipped += 1
                continue

            await self.interviews.update_response(
                response.response_id,
                transcription_status=TranscriptionStatus.PROCESSING,
            )
            outcome = await self.client.transcribe(
                response.audio_url, {"translate": True, "language": "en"}
            )

            if outcome.success:
                await self.interviews.update_response(
                    response.response_id,
                    transcription_text=outcome.transcription,
                    transcription_status=TranscriptionStatus.COMPLETED,
                    transcription_error=None,
                )
                summary.transcribed += 1
            else:
                await self.interviews.update_response(
                    response.response_id,
                    transcription_text=FAILED_PLACEHOLDER,
                    transcription_status=TranscriptionStatus.FAILED,
                    transcription_error=outcome.error,
                )
                summary.failed += 1

        logger.info(
            "Transcription pre-pass finished",
            application_id=application_id,
            **summary.model_dump(),
        )
        return summary
