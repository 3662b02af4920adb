"""
Tests for the provider adapters.

SDK clients are replaced with mocks and HTTP services with
``httpx.MockTransport``, so no request leaves the process.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock
import asyncio
import json
import time

import httpx
import pytest

from voicecoach.audio.artifact import AudioArtifact
from voicecoach.config import AssessmentOptions
from voicecoach.providers import assessment, transcription
from voicecoach.providers.assessment import AssessmentRequest, SpeechAceAssessor, SpontaneousRequest
from voicecoach.providers.base import ErrorKind, ProviderResult, classify_exception, classify_status
from voicecoach.providers.generation import (
    ClaudeTextGenerator,
    OpenAITextGenerator,
    TextGenerator,
    create_text_generator,
)
from voicecoach.providers.transcription import WhisperTranscriber
from voicecoach.providers.voicing import ElevenLabsVoicer, ModelInfo, VoicingAccount, resolve_voice_id

PCM = AudioArtifact(data=b"\x00\x01" * 1600)

SPEECHACE_OK = {
    "status": "success",
    "text_score": {
        "text": "hello world",
        "quality_score": 85,
        "fluency_score": 55,
        "word_score_list": [
            {"word": "hello", "quality_score": 90},
            {"word": "world", "quality_score": 80},
        ],
    },
}

SPONTANEOUS_OK = {
    "status": "success",
    "speech_score": {
        "transcript": "I usually go hiking",
        "speechace_score": {
            "overall": 72,
            "pronunciation": 75,
            "fluency": 70,
            "grammar": 68,
            "vocab": 65,
            "coherence": 71,
        },
        "task_score": {"score": 88},
    },
}


class FakeAPIError(Exception):
    """Stands in for SDK errors carrying a status code or error code."""

    def __init__(self, message, status_code=None, code=None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestProviderResult:
    """The canonical result contract."""

    def test_success_has_payload_and_no_error(self):
        result = ProviderResult.success("text", provider="x")

        assert result.ok
        assert result.error_kind is None
        assert result.user_message == "Done"

    def test_failure_has_kind_and_default_message(self):
        result = ProviderResult.failure(ErrorKind.TIMEOUT)

        assert not result.ok
        assert result.payload is None
        assert result.user_message == "Request timeout. Please try again."
        assert result.retryable

    def test_inconsistent_results_are_rejected(self):
        with pytest.raises(ValueError):
            ProviderResult(ok=True, payload=None)
        with pytest.raises(ValueError):
            ProviderResult(ok=False, payload="x", error_kind=ErrorKind.UNKNOWN)

    def test_validation_errors_are_not_retryable(self):
        result = ProviderResult.failure(ErrorKind.INVALID_INPUT, "Empty audio file")

        assert result.is_validation_error
        assert not result.retryable


class TestErrorClassification:

    @pytest.mark.parametrize("status, kind", [
        (401, ErrorKind.UNAUTHORIZED),
        (403, ErrorKind.UNAUTHORIZED),
        (402, ErrorKind.QUOTA_EXCEEDED),
        (429, ErrorKind.QUOTA_EXCEEDED),
        (413, ErrorKind.PAYLOAD_TOO_LARGE),
        (400, ErrorKind.INVALID_INPUT),
        (503, ErrorKind.UNAVAILABLE),
        (418, ErrorKind.UNKNOWN),
    ])
    def test_status_codes(self, status, kind):
        assert classify_status(status) == kind

    def test_timeout_exceptions(self):
        assert classify_exception(asyncio.TimeoutError())[0] == ErrorKind.TIMEOUT
        assert classify_exception(httpx.ReadTimeout("slow"))[0] == ErrorKind.TIMEOUT

    def test_error_codes_win_over_status(self):
        kind, _ = classify_exception(FakeAPIError("quota", status_code=429, code="insufficient_quota"))

        assert kind == ErrorKind.QUOTA_EXCEEDED

    def test_connection_errors(self):
        kind, message = classify_exception(httpx.ConnectError("refused"))

        assert kind == ErrorKind.UNAVAILABLE
        assert "internet connection" in message

    def test_unknown_errors_keep_their_message(self):
        assert classify_exception(RuntimeError("weird")) == (ErrorKind.UNKNOWN, "weird")


@pytest.mark.asyncio
class TestWhisperTranscriber:
    """Speech-to-text through the OpenAI SDK."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.audio.transcriptions.create.return_value = SimpleNamespace(
            text=" hello world ", language="english", duration=1.0
        )
        return client

    async def test_transcribes_pcm_as_wav(self, client):
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(PCM)

        assert result.ok
        assert result.payload.text == "hello world"
        assert result.payload.language == "english"
        kwargs = client.audio.transcriptions.create.call_args.kwargs
        assert kwargs["model"] == "whisper-1"
        assert kwargs["temperature"] == 0.2
        assert kwargs["response_format"] == "json"
        assert kwargs["file"][0] == "recording.wav"
        assert kwargs["file"][1][:4] == b"RIFF"
        assert "language" not in kwargs
        assert transcriber.get_usage_stats()["successful"] == 1

    async def test_language_and_prompt_options(self, client):
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        await transcriber.invoke(PCM, {"language": "de", "prompt": "Guten Tag"})

        kwargs = client.audio.transcriptions.create.call_args.kwargs
        assert kwargs["language"] == "de"
        assert kwargs["prompt"] == "Guten Tag"

    async def test_translate_uses_translations_endpoint(self, client):
        client.audio.translations.create.return_value = SimpleNamespace(text="good day")
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(PCM, {"translate": True})

        assert result.payload.text == "good day"
        client.audio.transcriptions.create.assert_not_called()

    async def test_empty_audio_is_rejected_locally(self, client):
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(AudioArtifact(data=b""))

        assert result.error_kind == ErrorKind.INVALID_INPUT
        client.audio.transcriptions.create.assert_not_called()

    async def test_oversized_audio(self, client, monkeypatch):
        monkeypatch.setattr(transcription, "MAX_AUDIO_BYTES", 100)
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(PCM)

        assert result.error_kind == ErrorKind.PAYLOAD_TOO_LARGE
        client.audio.transcriptions.create.assert_not_called()

    async def test_unsupported_format(self, client):
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(AudioArtifact(data=b"xx", mime_type="video/avi"))

        assert result.error_kind == ErrorKind.INVALID_INPUT

    async def test_unknown_option(self, client):
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(PCM, {"beam_size": 5})

        assert result.error_kind == ErrorKind.INVALID_INPUT

    async def test_missing_key_is_unavailable(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        transcriber = WhisperTranscriber()

        result = await transcriber.invoke(PCM)

        assert result.error_kind == ErrorKind.UNAVAILABLE

    async def test_slow_call_times_out(self, client):
        client.audio.transcriptions.create.side_effect = lambda **kwargs: time.sleep(0.5)
        transcriber = WhisperTranscriber(api_key="sk-test", client=client, timeout=0.05)

        result = await transcriber.invoke(PCM)

        assert not result.ok
        assert result.error_kind == ErrorKind.TIMEOUT

    @pytest.mark.parametrize("error, kind", [
        (FakeAPIError("bad key", status_code=401), ErrorKind.UNAUTHORIZED),
        (FakeAPIError("quota", code="insufficient_quota"), ErrorKind.QUOTA_EXCEEDED),
        (FakeAPIError("Maximum content size limit exceeded", status_code=413), ErrorKind.PAYLOAD_TOO_LARGE),
    ])
    async def test_sdk_errors_are_classified(self, client, error, kind):
        client.audio.transcriptions.create.side_effect = error
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(PCM)

        assert result.error_kind == kind
        assert transcriber.get_usage_stats()["failed"] == 1

    async def test_response_without_text_is_parse_failure(self, client):
        client.audio.transcriptions.create.return_value = {"unexpected": True}
        transcriber = WhisperTranscriber(api_key="sk-test", client=client)

        result = await transcriber.invoke(PCM)

        assert result.error_kind == ErrorKind.PARSE_FAILURE


@pytest.mark.asyncio
class TestSpeechAceAssessor:
    """Pronunciation scoring over HTTP."""

    async def test_scores_recording(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=SPEECHACE_OK)

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.invoke(AssessmentRequest(PCM, "  hello world "))

        assert result.ok
        assert result.payload.overall_score == 85
        assert result.payload.feedback_summary.startswith("Excellent overall pronunciation quality!")

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/scoring/text/v9/json"
        body = request.content
        assert b'name="key"' in body and b"ace-key" in body
        assert b'name="dialect"' in body and b"en-us" in body
        assert b'name="text"\r\n\r\nhello world\r\n' in body
        assert b'name="include_intonation"\r\n\r\n0\r\n' in body
        assert b'filename="audio.wav"' in body

    async def test_dialect_override(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=SPEECHACE_OK)

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        await assessor.invoke(AssessmentRequest(PCM, "hello"), {"dialect": "en-gb"})

        assert b"en-gb" in requests[0].content

    async def test_empty_reference_makes_no_request(self):
        handler = MagicMock()
        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.invoke(AssessmentRequest(PCM, " "))

        assert result.error_kind == ErrorKind.INVALID_INPUT
        handler.assert_not_called()

    async def test_oversized_audio(self, monkeypatch):
        monkeypatch.setattr(assessment, "MAX_AUDIO_BYTES", 10)
        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(MagicMock()))

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"))

        assert result.error_kind == ErrorKind.PAYLOAD_TOO_LARGE

    @pytest.mark.parametrize("short_message, kind", [
        ("error_unknown_key", ErrorKind.UNAUTHORIZED),
        ("error_api_limit", ErrorKind.QUOTA_EXCEEDED),
        ("error_no_speech", ErrorKind.INVALID_INPUT),
        ("error_something_new", ErrorKind.UNKNOWN),
    ])
    async def test_error_status_in_body(self, short_message, kind):
        def handler(request):
            return httpx.Response(200, json={"status": "error", "short_message": short_message})

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"))

        assert result.error_kind == kind

    @pytest.mark.parametrize("status, kind", [
        (401, ErrorKind.UNAUTHORIZED),
        (429, ErrorKind.QUOTA_EXCEEDED),
        (413, ErrorKind.PAYLOAD_TOO_LARGE),
        (502, ErrorKind.UNAVAILABLE),
    ])
    async def test_http_errors(self, status, kind):
        def handler(request):
            return httpx.Response(status, json={"error": "nope"})

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"))

        assert result.error_kind == kind
        assert result.error_message == "nope"

    async def test_malformed_body_is_parse_failure(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>")

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"))

        assert result.error_kind == ErrorKind.PARSE_FAILURE

    async def test_slow_service_times_out(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json=SPEECHACE_OK)

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler), timeout=0.05)

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"))

        assert result.error_kind == ErrorKind.TIMEOUT

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"))

        assert result.error_kind == ErrorKind.UNAVAILABLE

    async def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("SPEECHACE_API_KEY", raising=False)
        assessor = SpeechAceAssessor()

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"))

        assert result.error_kind == ErrorKind.UNAVAILABLE
        assert not assessor.is_available()

    async def test_supported_dialects(self):
        codes = [d["code"] for d in SpeechAceAssessor(api_key="k").get_supported_dialects()]

        assert "en-us" in codes and "en-gb" in codes

    async def test_unknown_dialect_makes_no_request(self):
        handler = MagicMock()
        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.invoke(AssessmentRequest(PCM, "hello"), {"dialect": "de-de"})

        assert result.error_kind == ErrorKind.INVALID_INPUT
        assert "de-de" in result.error_message
        handler.assert_not_called()

    async def test_unknown_dialect_rejected_for_spontaneous(self):
        handler = MagicMock()
        assessor = SpeechAceAssessor(
            api_key="ace-key",
            options=AssessmentOptions(dialect="pt-br"),
            client=mock_client(handler)
        )

        result = await assessor.assess_spontaneous(SpontaneousRequest(PCM, "Describe your town."))

        assert result.error_kind == ErrorKind.INVALID_INPUT
        handler.assert_not_called()

    async def test_assessment_types(self):
        types = {t["type"]: t for t in SpeechAceAssessor(api_key="k").get_assessment_types()}

        assert types["pronunciation"]["requires_text"] is True
        assert types["spontaneous"]["requires_text"] is False


@pytest.mark.asyncio
class TestSpontaneousAssessment:
    """Open-answer scoring over HTTP."""

    async def test_scores_answer(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=SPONTANEOUS_OK)

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.assess_spontaneous(SpontaneousRequest(PCM, " What do you do on weekends? "))

        assert result.ok
        assert result.payload.overall_score == 72
        assert result.payload.task_achievement_score == 88
        assert result.payload.vocabulary_score == 65
        assert result.payload.transcription == "I usually go hiking"
        assert result.payload.feedback_summary == "Excellent task completion!"

        request = requests[0]
        assert request.url.path == "/api/scoring/spontaneous/v9/json"
        body = request.content
        assert b'name="question"\r\n\r\nWhat do you do on weekends?\r\n' in body
        assert b'name="include_task_achievement"\r\n\r\n1\r\n' in body
        assert b'name="text"' not in body
        assert b'filename="spontaneous.wav"' in body

    async def test_missing_question_makes_no_request(self):
        handler = MagicMock()
        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.assess_spontaneous(SpontaneousRequest(PCM, ""))

        assert result.error_kind == ErrorKind.INVALID_INPUT
        assert "question" in result.error_message
        handler.assert_not_called()

    async def test_task_achievement_can_be_switched_off(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"status": "success", "overall_score": 60})

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.assess_spontaneous(
            SpontaneousRequest(PCM, "Why?"), {"include_task_achievement": False}
        )

        assert b'name="include_task_achievement"\r\n\r\n0\r\n' in requests[0].content
        assert result.payload.task_achievement_score is None
        assert result.payload.feedback_summary == ""

    async def test_error_body_is_classified(self):
        def handler(request):
            return httpx.Response(200, json={"status": "error", "short_message": "error_no_speech"})

        assessor = SpeechAceAssessor(api_key="ace-key", client=mock_client(handler))

        result = await assessor.assess_spontaneous(SpontaneousRequest(PCM, "Why?"))

        assert result.error_kind == ErrorKind.INVALID_INPUT

    async def test_uses_its_own_timeout(self):
        async def slow(request):
            await asyncio.sleep(0.5)
            return httpx.Response(200, json=SPONTANEOUS_OK)

        assessor = SpeechAceAssessor(
            api_key="ace-key",
            timeout=5.0,
            spontaneous_timeout=0.05,
            client=mock_client(slow)
        )

        result = await assessor.assess_spontaneous(SpontaneousRequest(PCM, "Why?"))

        assert result.error_kind == ErrorKind.TIMEOUT


@pytest.mark.asyncio
class TestElevenLabsVoicer:
    """Voice synthesis over HTTP."""

    async def test_synthesizes_speech(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=b"ID3fake-mp3", headers={"content-type": "audio/mpeg"})

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.invoke("Hello there")

        assert result.ok
        assert result.payload.audio == b"ID3fake-mp3"
        assert result.payload.mime_type == "audio/mpeg"
        assert result.payload.sample_rate is None

        request = requests[0]
        assert request.url.path == "/v1/text-to-speech/pNInz6obpgDQGcFmaJgB"
        assert request.url.params["output_format"] == "mp3_44100_128"
        assert request.url.params["optimize_streaming_latency"] == "2"
        assert request.headers["xi-api-key"] == "el-key"
        body = json.loads(request.content)
        assert body["text"] == "Hello there"
        assert body["model_id"] == "eleven_flash_v2_5"
        assert body["voice_settings"] == {
            "stability": 0.5,
            "similarity_boost": 0.75,
            "style": 0.0,
            "use_speaker_boost": True,
        }

    async def test_voice_name_and_pcm_format(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=b"\x00\x00" * 8, headers={"content-type": "audio/pcm"})

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.invoke("Hi", {"voice_id": "Rachel", "output_format": "pcm_16000"})

        assert requests[0].url.path.endswith("/21m00Tcm4TlvDq8ikWAM")
        assert result.payload.sample_rate == 16000
        assert result.payload.mime_type == "audio/L16"

    @pytest.mark.parametrize("text, kind", [
        ("", ErrorKind.INVALID_INPUT),
        ("   ", ErrorKind.INVALID_INPUT),
        ("x" * 10001, ErrorKind.PAYLOAD_TOO_LARGE),
    ])
    async def test_text_is_validated_locally(self, text, kind):
        handler = MagicMock()
        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.invoke(text)

        assert result.error_kind == kind
        handler.assert_not_called()

    async def test_unsupported_output_format(self):
        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(MagicMock()))

        result = await voicer.invoke("Hi", {"output_format": "flac_48000"})

        assert result.error_kind == ErrorKind.INVALID_INPUT

    async def test_unauthorized_with_detail(self):
        def handler(request):
            return httpx.Response(401, json={"detail": {"status": "invalid_api_key", "message": "Invalid API key"}})

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.invoke("Hi")

        assert result.error_kind == ErrorKind.UNAUTHORIZED
        assert result.error_message == "Invalid API key"

    async def test_json_instead_of_audio_is_parse_failure(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.invoke("Hi")

        assert result.error_kind == ErrorKind.PARSE_FAILURE

    async def test_slow_service_times_out(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, content=b"late")

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler), timeout=0.05)

        result = await voicer.invoke("Hi")

        assert result.error_kind == ErrorKind.TIMEOUT

    async def test_resolve_voice_id(self):
        assert resolve_voice_id("adam") == "pNInz6obpgDQGcFmaJgB"
        assert resolve_voice_id("custom-voice-id") == "custom-voice-id"


@pytest.mark.asyncio
class TestVoiceListings:
    """Voice, model and account lookups."""

    async def test_list_voices(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"voices": [
                {"voice_id": "pNInz6obpgDQGcFmaJgB", "name": "Adam", "category": "premade"},
                {"voice_id": "abc123", "name": "My Clone"},
            ]})

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.list_voices()

        assert result.ok
        assert [v.name for v in result.payload] == ["Adam", "My Clone"]
        assert result.payload[0].category == "premade"
        assert result.payload[1].category is None
        assert requests[0].method == "GET"
        assert requests[0].url.path == "/v1/voices"
        assert requests[0].headers["xi-api-key"] == "el-key"

    async def test_list_models(self):
        def handler(request):
            return httpx.Response(200, json=[{
                "model_id": "eleven_flash_v2_5",
                "name": "Eleven Flash v2.5",
                "can_do_text_to_speech": True,
                "max_characters_request_free_tier": 2500,
            }])

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.list_models()

        assert result.payload == (ModelInfo(
            model_id="eleven_flash_v2_5",
            name="Eleven Flash v2.5",
            max_characters_free_tier=2500
        ),)

    async def test_account_quota(self):
        def handler(request):
            assert request.url.path == "/v1/user"
            return httpx.Response(200, json={"subscription": {
                "tier": "starter",
                "character_count": 1200,
                "character_limit": 30000,
                "next_character_count_reset_unix": 1767225600,
            }})

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.get_account()

        assert result.payload == VoicingAccount(
            tier="starter",
            character_count=1200,
            character_limit=30000,
            next_reset_unix=1767225600
        )
        assert result.payload.characters_remaining == 28800

    async def test_malformed_listing_is_parse_failure(self):
        voicer = ElevenLabsVoicer(
            api_key="el-key",
            client=mock_client(lambda request: httpx.Response(200, json={"models": []}))
        )

        result = await voicer.list_models()

        assert result.error_kind == ErrorKind.PARSE_FAILURE

    async def test_bad_key(self):
        def handler(request):
            return httpx.Response(401, json={"detail": {"message": "Invalid API key"}})

        voicer = ElevenLabsVoicer(api_key="el-key", client=mock_client(handler))

        result = await voicer.list_voices()

        assert result.error_kind == ErrorKind.UNAUTHORIZED
        assert result.error_message == "Invalid API key"

    async def test_missing_key_makes_no_request(self, monkeypatch):
        monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
        handler = MagicMock()
        voicer = ElevenLabsVoicer(client=mock_client(handler))

        result = await voicer.get_account()

        assert result.error_kind == ErrorKind.UNAVAILABLE
        handler.assert_not_called()


@pytest.mark.asyncio
class TestTextGenerators:
    """Replies through the OpenAI and Anthropic SDKs."""

    @pytest.fixture
    def openai_client(self):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=" Nice to meet you! "))],
            usage=SimpleNamespace(total_tokens=21)
        )
        return client

    @pytest.fixture
    def claude_client(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Hello from Claude")],
            usage=SimpleNamespace(input_tokens=5, output_tokens=4)
        )
        return client

    async def test_openai_reply(self, openai_client):
        generator = OpenAITextGenerator(api_key="sk-test", client=openai_client)

        result = await generator.invoke("  hello world  ")

        assert result.ok
        assert result.payload.text == "Nice to meet you!"
        assert result.payload.model == "gpt-3.5-turbo"
        assert result.payload.tokens_used == 21
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["max_tokens"] == 150
        assert kwargs["temperature"] == 0.7
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][1] == {"role": "user", "content": "hello world"}
        assert generator.get_usage_stats()["total_tokens"] == 21

    async def test_model_override(self, openai_client):
        generator = OpenAITextGenerator(api_key="sk-test", client=openai_client)

        result = await generator.invoke("hi", {"model": "gpt-4o-mini", "max_tokens": 50})

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 50
        assert result.payload.model == "gpt-4o-mini"

    async def test_empty_choices_is_parse_failure(self, openai_client):
        openai_client.chat.completions.create.return_value = SimpleNamespace(choices=[], usage=None)
        generator = OpenAITextGenerator(api_key="sk-test", client=openai_client)

        result = await generator.invoke("hi")

        assert result.error_kind == ErrorKind.PARSE_FAILURE

    @pytest.mark.parametrize("prompt, kind", [
        ("", ErrorKind.INVALID_INPUT),
        ("  ", ErrorKind.INVALID_INPUT),
        ("x" * 32001, ErrorKind.PAYLOAD_TOO_LARGE),
    ])
    async def test_prompt_is_validated_locally(self, openai_client, prompt, kind):
        generator = OpenAITextGenerator(api_key="sk-test", client=openai_client)

        result = await generator.invoke(prompt)

        assert result.error_kind == kind
        openai_client.chat.completions.create.assert_not_called()

    async def test_rate_limit(self, openai_client):
        openai_client.chat.completions.create.side_effect = FakeAPIError("slow down", status_code=429)
        generator = OpenAITextGenerator(api_key="sk-test", client=openai_client)

        result = await generator.invoke("hi")

        assert result.error_kind == ErrorKind.QUOTA_EXCEEDED

    async def test_claude_reply(self, claude_client):
        generator = ClaudeTextGenerator(api_key="sk-ant", client=claude_client)

        result = await generator.invoke("hello")

        assert result.payload.text == "Hello from Claude"
        assert result.payload.model == "claude-3-haiku-20240307"
        assert result.payload.tokens_used == 9
        kwargs = claude_client.messages.create.call_args.kwargs
        assert kwargs["system"].startswith("You are a helpful assistant")

    async def test_claude_slow_call_times_out(self, claude_client):
        claude_client.messages.create.side_effect = lambda **kwargs: time.sleep(0.5)
        generator = ClaudeTextGenerator(api_key="sk-ant", client=claude_client, timeout=0.05)

        result = await generator.invoke("hello")

        assert result.error_kind == ErrorKind.TIMEOUT

    async def test_factory(self):
        assert isinstance(create_text_generator("openai", api_key="k"), OpenAITextGenerator)
        assert isinstance(create_text_generator("claude", api_key="k"), ClaudeTextGenerator)
        with pytest.raises(ValueError):
            create_text_generator("llama")

    async def test_backend_must_implement_parse(self):
        class HalfBackend(TextGenerator):
            default_model = "half"

            def _sync_generate(self, prompt, opts, model):
                return None

        with pytest.raises(TypeError):
            HalfBackend("half", "key", None, 1.0, None)
