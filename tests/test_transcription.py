"""Tests for the transcription client and the pre-analysis transcription pass."""

from unittest.mock import AsyncMock, Mock

from conftest import APP_ID
import pytest
import requests
from tenacity import wait_none

from hiring_backend.interviews.models import InterviewResponse, TranscriptionStatus
from hiring_backend.transcription.client import (
    NO_SPEECH_PLACEHOLDER,
    TranscriptionClient,
    TranscriptionOutcome,
)
from hiring_backend.transcription.prepass import FAILED_PLACEHOLDER, TranscriptionPrepass

AUDIO_URL = "https://cdn.example.com/answers/resp-1.wav"


def http_response(status_code=200, content=b"", payload=None):
    response = Mock()
    response.status_code = status_code
    response.content = content
    response.json.return_value = payload or {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Skip the exponential wait between upload attempts."""
    monkeypatch.setattr(TranscriptionClient._post_audio.retry, "wait", wait_none())


@pytest.fixture
def session():
    session = Mock(spec=requests.Session)
    session.get.return_value = http_response(content=b"RIFF....WAVE")
    return session


class TestTranscriptionClient:
    """Download, upload and response parsing."""

    @pytest.mark.asyncio
    async def test_nested_transcription_payload(self, session):
        session.post.return_value = http_response(
            payload={"transcription": {"text": "  I led the migration.  "}, "confidence": 0.97}
        )
        client = TranscriptionClient(url="http://whisper/transcribe", session=session, timeout=5, download_timeout=5)

        outcome = await client.transcribe(AUDIO_URL, {"translate": True, "language": "en"})

        assert outcome == TranscriptionOutcome(success=True, transcription="I led the migration.", confidence=0.97)
        session.get.assert_called_once_with(AUDIO_URL, timeout=5)
        _, kwargs = session.post.call_args
        assert kwargs["data"] == {"translate": "true", "language": "en"}
        assert kwargs["files"]["audio"][1] == b"RIFF....WAVE"
        assert kwargs["timeout"] == 5

    @pytest.mark.asyncio
    async def test_flat_text_payload(self, session):
        session.post.return_value = http_response(payload={"text": "Plain answer"})
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe(AUDIO_URL)

        assert outcome.transcription == "Plain answer"
        assert outcome.confidence == 0.9

    @pytest.mark.asyncio
    async def test_silence_gets_placeholder(self, session):
        session.post.return_value = http_response(payload={"transcription": {"text": "   "}})
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe(AUDIO_URL)

        assert outcome.success is True
        assert outcome.transcription == NO_SPEECH_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, session):
        session.post.side_effect = [http_response(503), http_response(502), http_response(payload={"text": "ok"})]
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe(AUDIO_URL)

        assert outcome.transcription == "ok"
        assert session.post.call_count == 3

    @pytest.mark.asyncio
    async def test_persistent_server_errors_fail(self, session):
        session.post.return_value = http_response(500)
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe(AUDIO_URL)

        assert outcome.success is False
        assert "500" in outcome.error
        assert session.post.call_count == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, session):
        session.post.return_value = http_response(400)
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe(AUDIO_URL)

        assert outcome.success is False
        assert session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_non_http_audio_is_rejected(self, session):
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe("s3://bucket/answer.wav")

        assert outcome.success is False
        assert "Invalid audio input" in outcome.error
        session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_download_fails(self, session):
        session.get.return_value = http_response(content=b"")
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe(AUDIO_URL)

        assert outcome.error == "Audio buffer is empty"
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_download_failure(self, session):
        session.get.return_value = http_response(404)
        client = TranscriptionClient(session=session)

        outcome = await client.transcribe(AUDIO_URL)

        assert outcome.success is False
        session.post.assert_not_called()


class TestTranscriptionPrepass:
    """Every untranscribed answer ends with text or a recorded failure."""

    @pytest.fixture
    def responses(self):
        return [
            InterviewResponse(
                response_id="done", application_id=APP_ID, transcription_text="Already here", position=1
            ),
            InterviewResponse(response_id="no-audio", application_id=APP_ID, position=2),
            InterviewResponse(
                response_id="ok", application_id=APP_ID, audio_url="https://cdn.example.com/ok.wav", position=3
            ),
            InterviewResponse(
                response_id="broken", application_id=APP_ID, audio_url="https://cdn.example.com/broken.wav", position=4
            ),
        ]

    @pytest.fixture
    def client(self):
        async def transcribe(url, options):
            if "broken" in url:
                return TranscriptionOutcome(success=False, error="decoder error")
            return TranscriptionOutcome(success=True, transcription="Fresh transcript", confidence=0.9)

        client = Mock(spec=TranscriptionClient)
        client.transcribe = AsyncMock(side_effect=transcribe)
        return client

    @pytest.mark.asyncio
    async def test_prepass_outcomes(self, interviews, responses, client):
        for response in responses:
            interviews.add_response(response)

        summary = await TranscriptionPrepass(interviews, client).run(APP_ID)

        assert summary.model_dump() == {
            "total": 4,
            "already_transcribed": 1,
            "transcribed": 1,
            "skipped": 1,
            "failed": 1,
        }
        stored = {r.response_id: r for r in await interviews.list_responses(APP_ID)}
        assert stored["done"].transcription_text == "Already here"
        assert stored["no-audio"].transcription_status == TranscriptionStatus.SKIPPED
        assert stored["ok"].transcription_text == "Fresh transcript"
        assert stored["ok"].transcription_status == TranscriptionStatus.COMPLETED
        assert stored["broken"].transcription_text == FAILED_PLACEHOLDER
        assert stored["broken"].transcription_status == TranscriptionStatus.FAILED
        assert stored["broken"].transcription_error == "decoder error"

    @pytest.mark.asyncio
    async def test_transcribed_answers_are_not_sent_again(self, interviews, responses, client):
        for response in responses:
            interviews.add_response(response)
        prepass = TranscriptionPrepass(interviews, client)

        await prepass.run(APP_ID)
        second = await prepass.run(APP_ID)

        assert client.transcribe.await_count == 2
        assert second.already_transcribed == 3
        assert second.skipped == 1

    @pytest.mark.asyncio
    async def test_requests_english_translation(self, interviews, responses, client):
        interviews.add_response(responses[2])

        await TranscriptionPrepass(interviews, client).run(APP_ID)

        client.transcribe.assert_awaited_once_with("https://cdn.example.com/ok.wav", {"translate": True, "language": "en"})
