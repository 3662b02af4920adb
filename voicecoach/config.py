"""
Configuration for Voice Coach.

API keys and behaviour switches come from the environment. Each provider
adapter has an options dataclass whose defaults are used unless a call
overrides them.
"""

from dataclasses import dataclass, field, replace
from typing import Optional
import logging
import os

logger = logging.getLogger(__name__)

# Template values shipped in example .env files
_PLACEHOLDER_SUFFIX = "_here"


def get_api_key(env_var: str) -> Optional[str]:
    """Read an API key from the environment, ignoring empty or template values."""
    value = os.getenv(env_var, "").strip()
    if not value or value.lower().endswith(_PLACEHOLDER_SUFFIX):
        return None
    return value


def _env_bool(env_var: str, default: bool) -> bool:
    value = os.getenv(env_var)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class TranscriptionOptions:
    """Request options for speech-to-text."""
    model: str = "whisper-1"
    language: Optional[str] = None  # Auto-detect when None
    prompt: Optional[str] = None
    response_format: str = "json"
    temperature: float = 0.2
    translate: bool = False  # Translate to English instead of transcribing

    def merged(self, **overrides) -> "TranscriptionOptions":
        return replace(self, **overrides)


@dataclass(frozen=True)
class AssessmentOptions:
    """Request options for pronunciation scoring."""
    dialect: str = "en-us"
    user_id: str = "demo_user"
    include_fluency: bool = True
    include_pronunciation: bool = True
    include_intonation: bool = False
    include_comprehensive: bool = True
    include_task_achievement: bool = True  # Spontaneous speech only

    def merged(self, **overrides) -> "AssessmentOptions":
        return replace(self, **overrides)


@dataclass(frozen=True)
class TextGenerationOptions:
    """Request options for text generation."""
    model: Optional[str] = None  # Provider default when None
    max_tokens: int = 150
    temperature: float = 0.7
    system_prompt: str = "You are a helpful assistant. Provide concise and relevant responses."

    def merged(self, **overrides) -> "TextGenerationOptions":
        return replace(self, **overrides)


@dataclass(frozen=True)
class VoicingOptions:
    """Request options for voice synthesis."""
    voice_id: str = "pNInz6obpgDQGcFmaJgB"  # Adam
    model_id: str = "eleven_flash_v2_5"
    output_format: str = "mp3_44100_128"
    optimize_streaming_latency: int = 2
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    use_speaker_boost: bool = True

    def merged(self, **overrides) -> "VoicingOptions":
        return replace(self, **overrides)

    def voice_settings(self) -> dict:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


@dataclass
class Settings:
    """Process-wide settings resolved once at startup."""
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    speechace_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None

    mode: str = "dictation"
    text_provider: str = "openai"
    auto_reply: bool = True
    auto_speak: bool = False

    transcription: TranscriptionOptions = field(default_factory=TranscriptionOptions)
    assessment: AssessmentOptions = field(default_factory=AssessmentOptions)
    text_generation: TextGenerationOptions = field(default_factory=TextGenerationOptions)
    voicing: VoicingOptions = field(default_factory=VoicingOptions)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        settings = cls(
            openai_api_key=get_api_key("OPENAI_API_KEY"),
            anthropic_api_key=get_api_key("ANTHROPIC_API_KEY"),
            speechace_api_key=get_api_key("SPEECHACE_API_KEY"),
            elevenlabs_api_key=get_api_key("ELEVENLABS_API_KEY"),
            mode=os.getenv("VOICECOACH_MODE", "dictation").strip().lower(),
            text_provider=os.getenv("VOICECOACH_TEXT_PROVIDER", "openai").strip().lower(),
            auto_reply=_env_bool("VOICECOACH_AUTO_REPLY", True),
            auto_speak=_env_bool("VOICECOACH_AUTO_SPEAK", False),
        )

        dialect = os.getenv("VOICECOACH_DIALECT")
        if dialect:
            settings.assessment = settings.assessment.merged(dialect=dialect.strip().lower())

        for name, key in settings.key_status().items():
            if not key:
                logger.info(f"No API key configured for {name}")

        return settings

    def key_status(self) -> dict:
        """Which provider keys are present."""
        return {
            "openai": bool(self.openai_api_key),
            "anthropic": bool(self.anthropic_api_key),
            "speechace": bool(self.speechace_api_key),
            "elevenlabs": bool(self.elevenlabs_api_key),
        }
