"""
Shared fixtures: an in-memory capture device and scripted provider adapters.
"""

from typing import Any, Awaitable, Callable, List, Optional

import pytest

from voicecoach.app import VoiceCoach
from voicecoach.audio.recorder import CaptureDevice, DeviceState
from voicecoach.config import Settings
from voicecoach.feedback import TranscriptPayload
from voicecoach.providers.base import ErrorKind, ProviderAdapter, ProviderResult
from voicecoach.providers.generation import TextPayload

# 100 ms of 16 kHz 16-bit mono silence
SEGMENT_100MS = b"\x00\x01" * 1600


class FakeCaptureDevice(CaptureDevice):
    """
    Capture device driven by the test.

    ``emit`` pushes a segment as if it had just been read. ``in_flight`` is
    delivered during ``stop()``, like a read that was already in progress.
    """

    def __init__(self, available: bool = True):
        super().__init__()
        self.available = available
        self.in_flight: Optional[bytes] = None
        self.closed = False

    async def initialize(self) -> bool:
        if not self.available:
            self.last_error = "No audio input devices found"
            self.state = DeviceState.UNAVAILABLE
            return False
        self.state = DeviceState.READY
        return True

    async def start(self) -> bool:
        if self.state != DeviceState.READY:
            self.last_error = "Device not ready"
            return False
        self.state = DeviceState.RECORDING
        return True

    async def stop(self) -> bool:
        if self.state not in (DeviceState.RECORDING, DeviceState.PAUSED):
            return False
        if self.in_flight is not None:
            self._emit(self.in_flight)
            self.in_flight = None
        self.state = DeviceState.READY
        return True

    async def pause(self) -> bool:
        if self.state != DeviceState.RECORDING:
            return False
        self.state = DeviceState.PAUSED
        return True

    async def resume(self) -> bool:
        if self.state != DeviceState.PAUSED:
            return False
        self.state = DeviceState.RECORDING
        return True

    async def close(self) -> None:
        self.closed = True
        self.state = DeviceState.UNINITIALIZED

    def emit(self, data: bytes) -> None:
        self._emit(data)


class StubAdapter(ProviderAdapter):
    """Adapter returning a fixed payload or failure and recording every call."""

    def __init__(
        self,
        payload: Any = None,
        error_kind: Optional[ErrorKind] = None,
        on_invoke: Optional[Callable[[], Awaitable[None]]] = None,
        name: str = "stub"
    ):
        super().__init__(name, timeout=1.0)
        self.payload = payload
        self.error_kind = error_kind
        self.on_invoke = on_invoke
        self.calls: List[tuple] = []

    async def invoke(self, request: Any, options: Any = None) -> ProviderResult:
        self.calls.append((request, options))
        if self.on_invoke is not None:
            await self.on_invoke()
        if self.error_kind is not None:
            return ProviderResult.failure(self.error_kind, provider=self.name)
        return ProviderResult.success(self.payload, provider=self.name)

    def get_provider_name(self) -> str:
        return "Stub"

    def is_available(self) -> bool:
        return True


@pytest.fixture
def device() -> FakeCaptureDevice:
    return FakeCaptureDevice()


@pytest.fixture
def transcriber() -> StubAdapter:
    return StubAdapter(TranscriptPayload(text="hello world", language="en"), name="whisper")


@pytest.fixture
def assessor() -> StubAdapter:
    return StubAdapter(name="speechace")


@pytest.fixture
def text_generator() -> StubAdapter:
    return StubAdapter(TextPayload(text="Hi there!", model="stub-model"), name="openai")


@pytest.fixture
def voicer() -> StubAdapter:
    return StubAdapter(name="elevenlabs")


@pytest.fixture
def coach(device, transcriber, assessor, text_generator, voicer) -> VoiceCoach:
    return VoiceCoach(
        settings=Settings(),
        device=device,
        transcriber=transcriber,
        assessor=assessor,
        text_generator=text_generator,
        voicer=voicer
    )


@pytest.fixture
def unavailable_device() -> FakeCaptureDevice:
    return FakeCaptureDevice(available=False)


@pytest.fixture
def make_adapter() -> Callable[..., StubAdapter]:
    """Factory for extra scripted adapters."""
    return StubAdapter


@pytest.fixture
def segment() -> bytes:
    return SEGMENT_100MS
