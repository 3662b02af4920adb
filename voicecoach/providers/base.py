"""
Provider adapter abstractions and the canonical result contract.

Every external service (transcription, pronunciation scoring, text
generation, voice synthesis) is wrapped by a ``ProviderAdapter`` whose single
``invoke`` method returns a ``ProviderResult``. Adapters never raise for
expected failures; each failure is mapped onto a fixed ``ErrorKind``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace, is_dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar
import asyncio
import functools
import logging
import time

import httpx

# Setup logging
logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Fixed failure taxonomy shared by every adapter."""
    UNAUTHORIZED = "unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    INVALID_INPUT = "invalid_input"
    TIMEOUT = "timeout"
    PARSE_FAILURE = "parse_failure"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


USER_MESSAGES = {
    ErrorKind.UNAUTHORIZED: "Invalid API key. Please check your configuration.",
    ErrorKind.QUOTA_EXCEEDED: "API quota or rate limit exceeded. Please try again later.",
    ErrorKind.PAYLOAD_TOO_LARGE: "Input too large for this service.",
    ErrorKind.INVALID_INPUT: "Invalid input.",
    ErrorKind.TIMEOUT: "Request timeout. Please try again.",
    ErrorKind.PARSE_FAILURE: "Unexpected response from the service.",
    ErrorKind.UNAVAILABLE: "Service not available. Please check your setup.",
    ErrorKind.UNKNOWN: "Request failed.",
}

RETRYABLE_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.UNAVAILABLE, ErrorKind.UNKNOWN})


@dataclass(frozen=True)
class ProviderResult:
    """
    Canonical outcome of a provider call.

    ``ok`` results carry a payload and no error kind; failed results carry an
    error kind and no payload. Use ``success()`` and ``failure()`` to build
    them.
    """
    ok: bool
    payload: Any = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    provider: str = ""
    processing_time: float = 0.0

    def __post_init__(self):
        if self.ok and (self.payload is None or self.error_kind is not None):
            raise ValueError("Successful result needs a payload and no error kind")
        if not self.ok and (self.error_kind is None or self.payload is not None):
            raise ValueError("Failed result needs an error kind and no payload")

    @classmethod
    def success(cls, payload: Any, provider: str = "", processing_time: float = 0.0) -> "ProviderResult":
        return cls(ok=True, payload=payload, provider=provider, processing_time=processing_time)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: Optional[str] = None,
        provider: str = "",
        processing_time: float = 0.0
    ) -> "ProviderResult":
        return cls(
            ok=False,
            error_kind=kind,
            error_message=message or USER_MESSAGES[kind],
            provider=provider,
            processing_time=processing_time
        )

    @property
    def is_validation_error(self) -> bool:
        """True when the input was rejected locally; retrying is pointless."""
        return self.error_kind == ErrorKind.INVALID_INPUT

    @property
    def retryable(self) -> bool:
        return not self.ok and self.error_kind in RETRYABLE_KINDS

    @property
    def user_message(self) -> str:
        """Short message suitable for a status strip."""
        if self.ok:
            return "Done"
        return self.error_message or USER_MESSAGES[self.error_kind]


def classify_status(status: int) -> ErrorKind:
    """Map an HTTP status code onto an ErrorKind."""
    if status in (401, 403):
        return ErrorKind.UNAUTHORIZED
    if status in (402, 429):
        return ErrorKind.QUOTA_EXCEEDED
    if status == 413:
        return ErrorKind.PAYLOAD_TOO_LARGE
    if status in (400, 415, 422):
        return ErrorKind.INVALID_INPUT
    if status >= 500:
        return ErrorKind.UNAVAILABLE
    return ErrorKind.UNKNOWN


# Error codes returned in SDK error bodies
_CODE_KINDS = {
    "insufficient_quota": ErrorKind.QUOTA_EXCEEDED,
    "rate_limit_exceeded": ErrorKind.QUOTA_EXCEEDED,
    "invalid_api_key": ErrorKind.UNAUTHORIZED,
}


def classify_exception(exc: BaseException) -> Tuple[ErrorKind, str]:
    """
    Map an SDK, transport or timeout exception onto an ErrorKind.

    Returns:
        (kind, message) where message is suitable for display.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT, USER_MESSAGES[ErrorKind.TIMEOUT]

    # SDK timeout errors (openai/anthropic) share this name
    if type(exc).__name__ == "APITimeoutError":
        return ErrorKind.TIMEOUT, USER_MESSAGES[ErrorKind.TIMEOUT]

    message = str(exc) or type(exc).__name__

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in _CODE_KINDS:
        kind = _CODE_KINDS[code]
        return kind, USER_MESSAGES[kind]

    status = getattr(exc, "status_code", None)
    if status is None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    if isinstance(status, int):
        kind = classify_status(status)
        if kind == ErrorKind.UNKNOWN:
            return kind, message
        return kind, USER_MESSAGES[kind]

    if isinstance(exc, httpx.TransportError) or type(exc).__name__ == "APIConnectionError":
        return ErrorKind.UNAVAILABLE, "Unable to connect to the service. Please check your internet connection."

    if "file size" in message.lower() or "too large" in message.lower():
        return ErrorKind.PAYLOAD_TOO_LARGE, USER_MESSAGES[ErrorKind.PAYLOAD_TOO_LARGE]

    return ErrorKind.UNKNOWN, message


def resolve_options(defaults: T, options: Any) -> T:
    """
    Combine an adapter's default options with per-call overrides.

    Args:
        defaults: The adapter's options dataclass instance
        options: None, a dict of overrides, or an options instance

    Raises:
        TypeError: If an override names an unknown option
    """
    if options is None:
        return defaults
    if isinstance(options, dict):
        overrides = {k: v for k, v in options.items() if v is not None}
        return replace(defaults, **overrides)
    if is_dataclass(options) and isinstance(options, type(defaults)):
        return options
    raise TypeError(f"Unsupported options type: {type(options).__name__}")


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        self.usage_stats = {
            'requests': 0,
            'successful': 0,
            'failed': 0,
            'total_tokens': 0
        }

    @abstractmethod
    async def invoke(self, request: Any, options: Any = None) -> ProviderResult:
        """Perform the provider call and return a canonical result."""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the display name of this provider."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is usable (API key, package installed)."""
        pass

    def update_usage_stats(self, success: bool, tokens: int = 0):
        """Update usage statistics."""
        self.usage_stats['requests'] += 1
        if success:
            self.usage_stats['successful'] += 1
        else:
            self.usage_stats['failed'] += 1
        self.usage_stats['total_tokens'] += tokens

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get current usage statistics."""
        return self.usage_stats.copy()

    def _succeed(self, payload: Any, start_time: float, tokens: int = 0) -> ProviderResult:
        self.update_usage_stats(success=True, tokens=tokens)
        return ProviderResult.success(
            payload,
            provider=self.name,
            processing_time=time.time() - start_time
        )

    def _fail(self, kind: ErrorKind, message: Optional[str], start_time: float) -> ProviderResult:
        self.update_usage_stats(success=False)
        return ProviderResult.failure(
            kind,
            message,
            provider=self.name,
            processing_time=time.time() - start_time
        )

    def _fail_from_exception(self, exc: BaseException, start_time: float) -> ProviderResult:
        kind, message = classify_exception(exc)
        logger.error(f"{self.get_provider_name()} request failed ({kind.value}): {exc}")
        return self._fail(kind, message, start_time)

    async def _with_timeout(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await a network call, bounded by this adapter's timeout unless one is given."""
        return await asyncio.wait_for(awaitable, timeout=timeout or self.timeout)

    async def _run_blocking(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking SDK call in the default executor, bounded by the timeout."""
        loop = asyncio.get_running_loop()
        call = functools.partial(func, *args, **kwargs)
        return await self._with_timeout(loop.run_in_executor(None, call))
