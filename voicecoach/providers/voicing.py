"""
Voice synthesis through the ElevenLabs text-to-speech API, plus the voice,
model and account lookups used to pick a voice and check the quota.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
import json
import logging
import time

import httpx

from ..config import VoicingOptions, get_api_key
from .base import ErrorKind, ProviderAdapter, ProviderResult, classify_status, resolve_options

logger = logging.getLogger(__name__)

BASE_URL = "https://api.elevenlabs.io/v1"
MAX_TEXT_CHARS = 10000  # Conservative free-tier limit
LISTING_TIMEOUT = 10.0

# Friendly names for common voices
VOICE_IDS = {
    "adam": "pNInz6obpgDQGcFmaJgB",
    "bella": "EXAVITQu4vr4xnSDxMaL",
    "rachel": "21m00Tcm4TlvDq8ikWAM",
    "domi": "AZnzlk1XvdvUeBnXmlld",
    "josh": "VR6AewLTigWG4xSOukaG",
}

SUPPORTED_FORMATS = (
    'mp3_22050_32',
    'mp3_44100_32',
    'mp3_44100_64',
    'mp3_44100_96',
    'mp3_44100_128',
    'mp3_44100_192',
    'pcm_16000',
    'pcm_22050',
    'pcm_24000',
    'pcm_44100',
    'ulaw_8000',
)


def resolve_voice_id(name: str) -> str:
    """Map a friendly voice name to its id; ids pass through unchanged."""
    return VOICE_IDS.get(name.strip().lower(), name.strip())


def mime_type_for(output_format: str) -> str:
    codec = output_format.split("_")[0]
    if codec == "pcm":
        return "audio/L16"
    if codec == "ulaw":
        return "audio/basic"
    return "audio/mpeg"


@dataclass(frozen=True)
class SpeechPayload:
    """Synthesized speech."""
    audio: bytes
    mime_type: str
    voice_id: str
    model_id: str
    output_format: str
    text_length: int

    @property
    def sample_rate(self) -> Optional[int]:
        """Sample rate for raw PCM output, None for encoded formats."""
        codec, _, rate = self.output_format.partition("_")
        if codec == "pcm" and rate.isdigit():
            return int(rate)
        return None


@dataclass(frozen=True)
class VoiceInfo:
    voice_id: str
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    preview_url: Optional[str] = None


@dataclass(frozen=True)
class ModelInfo:
    model_id: str
    name: str
    can_do_text_to_speech: bool = True
    description: Optional[str] = None
    max_characters_free_tier: Optional[int] = None
    max_characters_subscribed_tier: Optional[int] = None


@dataclass(frozen=True)
class VoicingAccount:
    """Subscription and character quota of the configured key."""
    tier: Optional[str]
    character_count: int
    character_limit: int
    can_clone_voices: bool = False
    next_reset_unix: Optional[int] = None

    @property
    def characters_remaining(self) -> int:
        return max(0, self.character_limit - self.character_count)


def parse_voices(data: Any) -> Tuple[VoiceInfo, ...]:
    return tuple(
        VoiceInfo(
            voice_id=str(voice["voice_id"]),
            name=str(voice["name"]),
            category=voice.get("category"),
            description=voice.get("description"),
            preview_url=voice.get("preview_url")
        )
        for voice in data["voices"]
    )


def parse_models(data: Any) -> Tuple[ModelInfo, ...]:
    if not isinstance(data, list):
        raise TypeError(f"Expected a list of models, got {type(data).__name__}")
    return tuple(
        ModelInfo(
            model_id=str(model["model_id"]),
            name=str(model["name"]),
            can_do_text_to_speech=bool(model.get("can_do_text_to_speech", True)),
            description=model.get("description"),
            max_characters_free_tier=model.get("max_characters_request_free_tier"),
            max_characters_subscribed_tier=model.get("max_characters_request_subscribed_tier")
        )
        for model in data
    )


def parse_account(data: Any) -> VoicingAccount:
    subscription = data.get("subscription") or {}
    # Quota fields live under subscription, with top-level copies as a fallback
    return VoicingAccount(
        tier=subscription.get("tier"),
        character_count=int(subscription.get("character_count", data.get("character_count", 0))),
        character_limit=int(subscription.get("character_limit", data.get("character_limit", 0))),
        can_clone_voices=bool(data.get("can_clone_voices", subscription.get("can_clone_voices", False))),
        next_reset_unix=subscription.get("next_character_count_reset_unix",
                                         data.get("next_character_count_reset_unix"))
    )


class ElevenLabsVoicer(ProviderAdapter):
    """ElevenLabs text-to-speech adapter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        options: Optional[VoicingOptions] = None,
        timeout: float = 30.0,
        base_url: str = BASE_URL,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__("elevenlabs", timeout)
        self.api_key = api_key or get_api_key("ELEVENLABS_API_KEY")
        self.options = options or VoicingOptions()
        self.base_url = base_url.rstrip("/")
        self._client = client

    def get_provider_name(self) -> str:
        """Get the name of this provider."""
        return "ElevenLabs"

    def is_available(self) -> bool:
        """ElevenLabs needs only an API key."""
        return bool(self.api_key)

    def validate_text(self, text: Any) -> Optional[str]:
        """Return a validation error message, or None if the text is acceptable."""
        if not isinstance(text, str) or not text.strip():
            return "Empty text provided"
        if len(text) > MAX_TEXT_CHARS:
            return f"Text too long ({len(text)} chars). Maximum: {MAX_TEXT_CHARS} characters."
        return None

    async def invoke(self, request: str, options: Any = None) -> ProviderResult:
        """
        Synthesize speech for a piece of text.

        Args:
            request: Text to voice
            options: VoicingOptions or a dict of overrides

        Returns:
            ProviderResult with a SpeechPayload on success.
        """
        start_time = time.time()

        try:
            opts = resolve_options(self.options, options)
        except TypeError as e:
            return self._fail(ErrorKind.INVALID_INPUT, str(e), start_time)

        problem = self.validate_text(request)
        if problem:
            kind = ErrorKind.PAYLOAD_TOO_LARGE if "too long" in problem else ErrorKind.INVALID_INPUT
            return self._fail(kind, problem, start_time)
        if opts.output_format not in SUPPORTED_FORMATS:
            return self._fail(ErrorKind.INVALID_INPUT, f"Unsupported output format: {opts.output_format}", start_time)

        if not self.is_available():
            return self._fail(
                ErrorKind.UNAVAILABLE,
                "ElevenLabs service not initialized. Please check your API key.",
                start_time
            )

        voice_id = resolve_voice_id(opts.voice_id)
        mime_type = mime_type_for(opts.output_format)
        body = {
            "text": request,
            "model_id": opts.model_id,
            "voice_settings": opts.voice_settings(),
        }
        params = {
            "output_format": opts.output_format,
            "optimize_streaming_latency": opts.optimize_streaming_latency,
        }
        headers = {
            "Accept": mime_type,
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }

        logger.info(f"Requesting speech for {len(request)} characters (voice={voice_id}, model={opts.model_id})")

        try:
            response = await self._with_timeout(
                self._post(f"{self.base_url}/text-to-speech/{voice_id}", body, params, headers)
            )
        except Exception as e:
            return self._fail_from_exception(e, start_time)

        if response.status_code >= 400:
            kind = classify_status(response.status_code)
            message = self._error_detail(response) or f"Speech synthesis failed (HTTP {response.status_code})"
            logger.error(f"ElevenLabs returned HTTP {response.status_code}: {message}")
            return self._fail(kind, message, start_time)

        try:
            audio = response.content
            content_type = response.headers.get("content-type", "")
            if not audio:
                raise ValueError("Empty audio response")
            if content_type.startswith("application/json"):
                raise ValueError("Expected audio, got JSON")
        except Exception as e:
            logger.error(f"Could not read speech response: {e}")
            return self._fail(ErrorKind.PARSE_FAILURE, "Failed to read synthesized audio", start_time)

        payload = SpeechPayload(
            audio=audio,
            mime_type=mime_type,
            voice_id=voice_id,
            model_id=opts.model_id,
            output_format=opts.output_format,
            text_length=len(request)
        )
        return self._succeed(payload, start_time)

    async def list_voices(self) -> ProviderResult:
        """Voices available to this key, as a tuple of VoiceInfo."""
        return await self._fetch("voices", parse_voices)

    async def list_models(self) -> ProviderResult:
        """Synthesis models, as a tuple of ModelInfo."""
        return await self._fetch("models", parse_models)

    async def get_account(self) -> ProviderResult:
        """Subscription tier and character quota, as a VoicingAccount."""
        return await self._fetch("user", parse_account)

    async def _fetch(self, path: str, parse: Callable[[Any], Any]) -> ProviderResult:
        start_time = time.time()

        if not self.is_available():
            return self._fail(
                ErrorKind.UNAVAILABLE,
                "ElevenLabs service not initialized. Please check your API key.",
                start_time
            )

        try:
            response = await self._with_timeout(self._get(f"{self.base_url}/{path}"), LISTING_TIMEOUT)
        except Exception as e:
            return self._fail_from_exception(e, start_time)

        if response.status_code >= 400:
            kind = classify_status(response.status_code)
            message = self._error_detail(response) or f"Failed to fetch {path} (HTTP {response.status_code})"
            logger.error(f"ElevenLabs returned HTTP {response.status_code} for /{path}: {message}")
            return self._fail(kind, message, start_time)

        try:
            payload = parse(response.json())
        except Exception as e:
            logger.error(f"Could not parse ElevenLabs /{path} response: {e}")
            return self._fail(ErrorKind.PARSE_FAILURE, f"Failed to read {path}", start_time)

        return self._succeed(payload, start_time)

    async def _get(self, url: str) -> httpx.Response:
        headers = {"xi-api-key": self.api_key}
        if self._client is not None:
            return await self._client.get(url, headers=headers)
        async with httpx.AsyncClient(timeout=LISTING_TIMEOUT) as client:
            return await client.get(url, headers=headers)

    async def _post(
        self,
        url: str,
        body: Dict[str, Any],
        params: Dict[str, Any],
        headers: Dict[str, str]
    ) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=body, params=params, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=body, params=params, headers=headers)

    @staticmethod
    def _error_detail(response: httpx.Response) -> Optional[str]:
        try:
            data = json.loads(response.text)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        detail = data.get("detail")
        if isinstance(detail, dict):
            return detail.get("message")
        if detail:
            return str(detail)
        return data.get("message")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
