"""Client for the speech-to-text (whisper) service."""

from __future__ import annotations

import asyncio
from typing import Any

from pydantic import BaseModel
import requests
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hiring_backend.config import settings

logger = structlog.get_logger(__name__)

NO_SPEECH_PLACEHOLDER = "[No speech detected]"


class TranscriptionOutcome(BaseModel):
    success: bool
    transcription: str | None = None
    confidence: float | None = None
    error: str | None = None


class TranscriptionServerError(Exception):
    """5xx from the transcription service; worth another attempt."""


class TranscriptionClient:
    """
    Download an answer recording and send it to the transcription endpoint.

    `transcribe` never raises: failures come back as
    `TranscriptionOutcome(success=False, error=...)` so the caller can record
    them on the response and move on.
    """

    def __init__(
        self,
        url: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
        download_timeout: float | None = None,
    ):
        self.url = url or settings.transcription_url
        self.session = session or requests.Session()
        self.timeout = timeout or settings.transcription_timeout_seconds
        self.download_timeout = download_timeout or settings.audio_download_timeout_seconds

    async def transcribe(self, audio_url: str, options: dict[str, Any] | None = None) -> TranscriptionOutcome:
        options = options or {}
        try:
            return await asyncio.to_thread(self._transcribe_sync, audio_url, options)
        except Exception as e:
            logger.error("Transcription failed", audio_url=audio_url, error=str(e))
            return TranscriptionOutcome(success=False, error=str(e))

    def _transcribe_sync(self, audio_url: str, options: dict[str, Any]) -> TranscriptionOutcome:
        audio = self._download(audio_url)
        if not audio:
            raise ValueError("Audio buffer is empty")

        logger.info("Sending audio for transcription", audio_url=audio_url, size_bytes=len(audio))
        payload = self._post_audio(audio, options)

        text = ""
        nested = payload.get("transcription")
        if isinstance(nested, dict) and nested.get("text") is not None:
            text = str(nested["text"]).strip()
        elif payload.get("text"):
            text = str(payload["text"]).strip()

        return TranscriptionOutcome(
            success=True,
            transcription=text or NO_SPEECH_PLACEHOLDER,
            confidence=payload.get("confidence", 0.9),
        )

    def _download(self, audio_url: str) -> bytes:
        if not audio_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid audio input: {audio_url}")
        response = self.session.get(audio_url, timeout=self.download_timeout)
        response.raise_for_status()
        return response.content

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=8),
        retry=retry_if_exception_type((TranscriptionServerError, requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _post_audio(self, audio: bytes, options: dict[str, Any]) -> dict[str, Any]:
        files = {"audio": ("interview-audio.wav", audio, "audio/wav")}
        data = {
            "translate": str(options.get("translate", True)).lower(),
            "language": options.get("language", "en"),
        }
        response = self.session.post(self.url, files=files, data=data, timeout=self.timeout)
        if response.status_code >= 500:
            raise TranscriptionServerError(
                f"Transcription service returned {response.status_code}"
            )
        response.raise_for_status()
        return response.json()
