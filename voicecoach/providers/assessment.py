"""
Speech assessment through the SpeechAce scoring API.

Scores a recording of the user reading a reference sentence, or answering an
open question, and normalizes the response into a canonical payload.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import logging
import time

import httpx

from ..audio.artifact import AudioArtifact
from ..config import AssessmentOptions, get_api_key
from ..feedback import normalize_assessment, normalize_spontaneous
from .base import ErrorKind, ProviderAdapter, ProviderResult, classify_status, resolve_options

logger = logging.getLogger(__name__)

BASE_URL = "https://api.speechace.co/api/scoring"
MAX_AUDIO_BYTES = 10 * 1024 * 1024  # Typical plan limit

SUPPORTED_DIALECTS = [
    {"code": "en-us", "name": "English (US)"},
    {"code": "en-gb", "name": "English (UK)"},
    {"code": "fr-fr", "name": "French (France)"},
    {"code": "es-es", "name": "Spanish (Spain)"},
    {"code": "es-mx", "name": "Spanish (Mexico)"},
]

ASSESSMENT_TYPES = [
    {
        "type": "pronunciation",
        "name": "Pronunciation Assessment",
        "description": "Assess pronunciation accuracy of read text",
        "requires_text": True,
    },
    {
        "type": "spontaneous",
        "name": "Spontaneous Speech Assessment",
        "description": "Assess fluency and content of spontaneous speech",
        "requires_text": False,
    },
]

# short_message values SpeechAce returns with status "error"
_ERROR_CODES = {
    "error_unknown_key": ErrorKind.UNAUTHORIZED,
    "error_key_expired": ErrorKind.UNAUTHORIZED,
    "error_api_limit": ErrorKind.QUOTA_EXCEEDED,
    "error_usage_limit": ErrorKind.QUOTA_EXCEEDED,
    "error_file_size": ErrorKind.PAYLOAD_TOO_LARGE,
    "error_no_speech": ErrorKind.INVALID_INPUT,
    "error_text_too_long": ErrorKind.INVALID_INPUT,
}


@dataclass(frozen=True)
class AssessmentRequest:
    """Audio plus the sentence the user was asked to read."""
    artifact: AudioArtifact
    reference_text: str


@dataclass(frozen=True)
class SpontaneousRequest:
    """Audio of the user answering an open question."""
    artifact: AudioArtifact
    prompt: str


def _flag(value: bool) -> str:
    return "1" if value else "0"


class SpeechAceAssessor(ProviderAdapter):
    """SpeechAce pronunciation and spontaneous speech scoring adapter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        options: Optional[AssessmentOptions] = None,
        timeout: float = 60.0,
        spontaneous_timeout: float = 45.0,
        base_url: str = BASE_URL,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__("speechace", timeout)
        self.api_key = api_key or get_api_key("SPEECHACE_API_KEY")
        self.options = options or AssessmentOptions()
        self.spontaneous_timeout = spontaneous_timeout
        self.base_url = base_url.rstrip("/")
        self._client = client

    def get_provider_name(self) -> str:
        """Get the name of this provider."""
        return "SpeechAce"

    def is_available(self) -> bool:
        """SpeechAce needs only an API key."""
        return bool(self.api_key)

    def get_supported_dialects(self) -> List[Dict[str, str]]:
        return [dict(d) for d in SUPPORTED_DIALECTS]

    def get_assessment_types(self) -> List[Dict[str, Any]]:
        return [dict(t) for t in ASSESSMENT_TYPES]

    def validate_audio(self, artifact: Optional[AudioArtifact]) -> Optional[str]:
        """Return a validation error message, or None if the audio is acceptable."""
        if artifact is None or artifact.is_empty:
            return "Empty audio file"
        if len(artifact) > MAX_AUDIO_BYTES:
            return "Audio file too large for SpeechAce (max ~10MB)"
        return None

    def validate(self, request: Optional[AssessmentRequest]) -> Optional[str]:
        """Return a validation error message, or None if the request is acceptable."""
        if request is None or not request.reference_text or not request.reference_text.strip():
            return "Reference text is required for pronunciation assessment"
        return self.validate_audio(request.artifact)

    def validate_spontaneous(self, request: Optional[SpontaneousRequest]) -> Optional[str]:
        if request is None or not request.prompt or not request.prompt.strip():
            return "A question is required for spontaneous speech assessment"
        return self.validate_audio(request.artifact)

    async def invoke(self, request: AssessmentRequest, options: Any = None) -> ProviderResult:
        """
        Score a recording against its reference text.

        Args:
            request: Artifact plus reference text
            options: AssessmentOptions or a dict of overrides

        Returns:
            ProviderResult with an AssessmentPayload on success.
        """
        start_time = time.time()

        opts, failure = self._prepare(options, self.validate(request), start_time)
        if failure is not None:
            return failure

        form = {
            "text": request.reference_text.strip(),
            "include_fluency": _flag(opts.include_fluency),
            "include_pronunciation": _flag(opts.include_pronunciation),
            "include_intonation": _flag(opts.include_intonation),
            "include_comprehensive": _flag(opts.include_comprehensive),
        }
        result = await self._score(
            "text/v9/json", opts, form, request.artifact.as_upload("audio"),
            normalize_assessment, self.timeout, start_time
        )
        if result.ok:
            logger.info(f"Assessment completed in {result.processing_time:.2f}s")
        return result

    async def assess_spontaneous(self, request: SpontaneousRequest, options: Any = None) -> ProviderResult:
        """
        Score an open answer to a question: task achievement, fluency and
        pronunciation.

        Returns:
            ProviderResult with a SpontaneousPayload on success.
        """
        start_time = time.time()

        opts, failure = self._prepare(options, self.validate_spontaneous(request), start_time)
        if failure is not None:
            return failure

        form = {
            "question": request.prompt.strip(),
            "include_task_achievement": _flag(opts.include_task_achievement),
            "include_fluency": _flag(opts.include_fluency),
            "include_pronunciation": _flag(opts.include_pronunciation),
        }
        result = await self._score(
            "spontaneous/v9/json", opts, form, request.artifact.as_upload("spontaneous"),
            normalize_spontaneous, self.spontaneous_timeout, start_time
        )
        if result.ok:
            logger.info(f"Spontaneous assessment completed in {result.processing_time:.2f}s")
        return result

    def _prepare(self, options: Any, problem: Optional[str], start_time: float):
        """Resolve options and run local checks. Returns (options, failure or None)."""
        try:
            opts = resolve_options(self.options, options)
        except TypeError as e:
            return None, self._fail(ErrorKind.INVALID_INPUT, str(e), start_time)

        if problem:
            kind = ErrorKind.PAYLOAD_TOO_LARGE if "too large" in problem else ErrorKind.INVALID_INPUT
            return None, self._fail(kind, problem, start_time)

        if opts.dialect not in {d["code"] for d in SUPPORTED_DIALECTS}:
            return None, self._fail(ErrorKind.INVALID_INPUT, f"Unsupported dialect: {opts.dialect}", start_time)

        if not self.is_available():
            return None, self._fail(
                ErrorKind.UNAVAILABLE,
                "SpeechAce service not initialized. Please check your API key.",
                start_time
            )
        return opts, None

    async def _score(
        self,
        endpoint: str,
        opts: AssessmentOptions,
        fields: Dict[str, str],
        upload: tuple,
        parse: Callable[[Any], Any],
        timeout: float,
        start_time: float
    ) -> ProviderResult:
        """POST one scoring request and map the response onto a ProviderResult."""
        form = {"key": self.api_key, "dialect": opts.dialect, "user_id": opts.user_id}
        form.update(fields)
        files = {"user_audio_file": upload}

        try:
            response = await self._with_timeout(self._post(endpoint, form, files, timeout), timeout)
        except Exception as e:
            return self._fail_from_exception(e, start_time)

        if response.status_code >= 400:
            kind = classify_status(response.status_code)
            message = self._error_detail(response) or f"SpeechAce request failed (HTTP {response.status_code})"
            logger.error(f"SpeechAce returned HTTP {response.status_code}: {message}")
            return self._fail(kind, message, start_time)

        try:
            data = response.json()
            if isinstance(data, dict) and data.get("status") == "error":
                code = str(data.get("short_message", ""))
                message = data.get("detail_message") or code or "SpeechAce reported an error"
                logger.error(f"SpeechAce error response: {code}")
                return self._fail(_ERROR_CODES.get(code, ErrorKind.UNKNOWN), message, start_time)
            payload = parse(data)
        except Exception as e:
            logger.error(f"Could not parse assessment response: {e}")
            return self._fail(ErrorKind.PARSE_FAILURE, "Failed to parse assessment results", start_time)

        return self._succeed(payload, start_time)

    async def _post(
        self,
        endpoint: str,
        form: Dict[str, str],
        files: Dict[str, Any],
        timeout: float
    ) -> httpx.Response:
        url = f"{self.base_url}/{endpoint}"
        if self._client is not None:
            return await self._client.post(url, data=form, files=files)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, data=form, files=files)

    @staticmethod
    def _error_detail(response: httpx.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            return data.get("error") or data.get("detail_message")
        return None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
