"""
Speech-to-text through the OpenAI Whisper API.

Uploads a finalized recording and normalizes the response into a
TranscriptPayload.
"""

from typing import Any, Optional
import logging
import time

from ..audio.artifact import PCM_MIME_TYPE, UPLOAD_EXTENSIONS, AudioArtifact
from ..config import TranscriptionOptions, get_api_key
from ..feedback import normalize_transcript
from .base import ErrorKind, ProviderAdapter, ProviderResult, resolve_options

# Import statements that may fail if dependencies aren't installed
try:
    import openai
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False

logger = logging.getLogger(__name__)

MAX_AUDIO_BYTES = 25 * 1024 * 1024  # Whisper upload limit

SUPPORTED_MIME_TYPES = (PCM_MIME_TYPE,) + tuple(UPLOAD_EXTENSIONS)


class WhisperTranscriber(ProviderAdapter):
    """
    Whisper transcription adapter.

    Runs the synchronous OpenAI client in the default executor so capture
    and UI handling keep running while the upload is in flight.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        options: Optional[TranscriptionOptions] = None,
        timeout: float = 30.0,
        client: Any = None
    ):
        super().__init__("whisper", timeout)
        self.api_key = api_key or get_api_key("OPENAI_API_KEY")
        self.options = options or TranscriptionOptions()
        self._client = client

    def get_provider_name(self) -> str:
        """Get the name of this provider."""
        return "OpenAI Whisper"

    def is_available(self) -> bool:
        """Check if Whisper is usable."""
        if self._client is not None:
            return True
        return OPENAI_AVAILABLE and bool(self.api_key)

    def validate_audio(self, artifact: Optional[AudioArtifact]) -> Optional[str]:
        """Return a validation error message, or None if the audio is acceptable."""
        if artifact is None or artifact.is_empty:
            return "Empty audio file"
        if len(artifact) > MAX_AUDIO_BYTES:
            return "Audio file too large (max 25MB)"
        base_type = artifact.mime_type.split(";")[0].strip()
        if base_type not in SUPPORTED_MIME_TYPES:
            return f"Unsupported audio format: {base_type}"
        return None

    async def invoke(self, request: AudioArtifact, options: Any = None) -> ProviderResult:
        """
        Transcribe a finalized recording.

        Args:
            request: The audio artifact to transcribe
            options: TranscriptionOptions or a dict of overrides

        Returns:
            ProviderResult with a TranscriptPayload on success.
        """
        start_time = time.time()

        try:
            opts = resolve_options(self.options, options)
        except TypeError as e:
            return self._fail(ErrorKind.INVALID_INPUT, str(e), start_time)

        problem = self.validate_audio(request)
        if problem:
            kind = ErrorKind.PAYLOAD_TOO_LARGE if "too large" in problem else ErrorKind.INVALID_INPUT
            return self._fail(kind, problem, start_time)

        if not self.is_available():
            return self._fail(
                ErrorKind.UNAVAILABLE,
                "Whisper service not initialized. Please check your OpenAI API key.",
                start_time
            )

        try:
            response = await self._run_blocking(self._sync_transcribe, request, opts)
        except Exception as e:
            return self._fail_from_exception(e, start_time)

        try:
            payload = normalize_transcript(response, declared_language=opts.language)
        except Exception as e:
            logger.error(f"Could not parse transcription response: {e}")
            return self._fail(ErrorKind.PARSE_FAILURE, "Failed to parse transcription result", start_time)

        logger.info(f"Transcription completed: {payload.word_count} words in {time.time() - start_time:.2f}s")
        return self._succeed(payload, start_time)

    def _get_client(self) -> Any:
        if not self._client:
            self._client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def _sync_transcribe(self, artifact: AudioArtifact, opts: TranscriptionOptions) -> Any:
        """Synchronous API call to be run in the executor."""
        client = self._get_client()

        # Only send optional parameters when they have values
        params = {
            "file": artifact.as_upload(),
            "model": opts.model,
            "response_format": opts.response_format,
            "temperature": opts.temperature,
        }
        if opts.prompt:
            params["prompt"] = opts.prompt

        if opts.translate:
            return client.audio.translations.create(**params)

        if opts.language:
            params["language"] = opts.language
        return client.audio.transcriptions.create(**params)
