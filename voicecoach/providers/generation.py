"""
Text generation providers.

Produce a reply to the user's transcript through OpenAI chat completions or
Anthropic Claude. Both adapters return the same TextPayload.
"""

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Tuple
import logging
import time

from ..config import TextGenerationOptions, get_api_key
from .base import ErrorKind, ProviderAdapter, ProviderResult, resolve_options

# Import statements that may fail if dependencies aren't installed
try:
    import openai
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False

try:
    from anthropic import Anthropic
    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 32000


@dataclass(frozen=True)
class TextPayload:
    """A generated reply."""
    text: str
    model: str
    tokens_used: int = 0


class TextGenerator(ProviderAdapter):
    """Shared validation and call flow for the text generation backends."""

    default_model = ""

    def __init__(
        self,
        name: str,
        api_key: Optional[str],
        options: Optional[TextGenerationOptions],
        timeout: float,
        client: Any
    ):
        super().__init__(name, timeout)
        self.api_key = api_key
        self.options = options or TextGenerationOptions()
        self._client = client

    async def invoke(self, request: str, options: Any = None) -> ProviderResult:
        """
        Generate a reply to a prompt.

        Args:
            request: The user's text (usually the latest transcript)
            options: TextGenerationOptions or a dict of overrides

        Returns:
            ProviderResult with a TextPayload on success.
        """
        start_time = time.time()

        try:
            opts = resolve_options(self.options, options)
        except TypeError as e:
            return self._fail(ErrorKind.INVALID_INPUT, str(e), start_time)

        if not isinstance(request, str) or not request.strip():
            return self._fail(ErrorKind.INVALID_INPUT, "Please provide some text first", start_time)
        if len(request) > MAX_PROMPT_CHARS:
            return self._fail(ErrorKind.PAYLOAD_TOO_LARGE, "Prompt too long", start_time)

        if not self.is_available():
            return self._fail(
                ErrorKind.UNAVAILABLE,
                f"{self.get_provider_name()} not initialized. Please check your API key.",
                start_time
            )

        model = opts.model or self.default_model

        try:
            response = await self._run_blocking(self._sync_generate, request.strip(), opts, model)
        except Exception as e:
            return self._fail_from_exception(e, start_time)

        try:
            text, tokens = self._parse(response)
        except Exception as e:
            logger.error(f"Could not parse {self.get_provider_name()} response: {e}")
            return self._fail(ErrorKind.PARSE_FAILURE, "No response generated", start_time)

        return self._succeed(TextPayload(text=text, model=model, tokens_used=tokens), start_time, tokens=tokens)

    @abstractmethod
    def _sync_generate(self, prompt: str, opts: TextGenerationOptions, model: str) -> Any:
        """Blocking SDK call, run in the executor."""
        pass

    @abstractmethod
    def _parse(self, response: Any) -> Tuple[str, int]:
        """Extract (reply text, tokens used) from an SDK response."""
        pass


class OpenAITextGenerator(TextGenerator):
    """OpenAI chat completions backend."""

    default_model = "gpt-3.5-turbo"

    def __init__(
        self,
        api_key: Optional[str] = None,
        options: Optional[TextGenerationOptions] = None,
        timeout: float = 30.0,
        client: Any = None
    ):
        super().__init__("openai", api_key or get_api_key("OPENAI_API_KEY"), options, timeout, client)

    def get_provider_name(self) -> str:
        """Get the name of this provider."""
        return "OpenAI"

    def is_available(self) -> bool:
        """Check if OpenAI is available."""
        if self._client is not None:
            return True
        return OPENAI_AVAILABLE and bool(self.api_key)

    def _sync_generate(self, prompt: str, opts: TextGenerationOptions, model: str) -> Any:
        """Synchronous API call to be run in the executor."""
        if not self._client:
            self._client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout)

        return self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": opts.system_prompt},
                {"role": "user", "content": prompt}
            ],
            max_tokens=opts.max_tokens,
            temperature=opts.temperature,
            stream=False
        )

    def _parse(self, response: Any):
        if not response.choices:
            raise ValueError("No response generated from OpenAI")
        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise ValueError("Empty response from OpenAI")
        tokens = response.usage.total_tokens if getattr(response, "usage", None) else 0
        return text, tokens


class ClaudeTextGenerator(TextGenerator):
    """Anthropic Claude backend."""

    default_model = "claude-3-haiku-20240307"

    def __init__(
        self,
        api_key: Optional[str] = None,
        options: Optional[TextGenerationOptions] = None,
        timeout: float = 30.0,
        client: Any = None
    ):
        super().__init__("claude", api_key or get_api_key("ANTHROPIC_API_KEY"), options, timeout, client)

    def get_provider_name(self) -> str:
        """Get the name of this provider."""
        return "Claude"

    def is_available(self) -> bool:
        """Check if Claude is available."""
        if self._client is not None:
            return True
        return ANTHROPIC_AVAILABLE and bool(self.api_key)

    def _sync_generate(self, prompt: str, opts: TextGenerationOptions, model: str) -> Any:
        """Synchronous API call to be run in the executor."""
        if not self._client:
            self._client = Anthropic(api_key=self.api_key, timeout=self.timeout)

        return self._client.messages.create(
            model=model,
            max_tokens=opts.max_tokens,
            temperature=opts.temperature,
            system=opts.system_prompt,
            messages=[
                {"role": "user", "content": prompt}
            ]
        )

    def _parse(self, response: Any):
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        ).strip()
        if not text:
            raise ValueError("Empty response from Claude")
        usage = getattr(response, "usage", None)
        tokens = usage.input_tokens + usage.output_tokens if usage else 0
        return text, tokens


def create_text_generator(provider: str = "openai", **kwargs) -> TextGenerator:
    """Build the text generator for a provider name ('openai' or 'claude')."""
    if provider == "openai":
        return OpenAITextGenerator(**kwargs)
    if provider in ("claude", "anthropic"):
        return ClaudeTextGenerator(**kwargs)
    raise ValueError(f"Unknown text provider: {provider}")
