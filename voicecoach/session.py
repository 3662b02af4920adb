"""
Recording lifecycle controller.

Owns the single active recording session, drives the capture device
through start/pause/resume/stop, and finalizes captured segments into one
immutable artifact per session.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging
import time
import uuid

from .audio.artifact import AudioArtifact, AudioSegment
from .audio.recorder import CaptureDevice
from .dispatch import AssessmentMode

logger = logging.getLogger(__name__)


class RecorderState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    RECORDING = "recording"
    PAUSED = "paused"
    FINALIZING = "finalizing"
    UNAVAILABLE = "unavailable"


StateCallback = Callable[[RecorderState, RecorderState], None]


@dataclass(frozen=True)
class ControlResult:
    """Outcome of a lifecycle command; falsy when the command was declined."""
    ok: bool
    message: str = ""

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class OrchestrationContext:
    """Per-session snapshot handed to every later stage of the turn."""
    session_id: str
    mode: AssessmentMode
    reference_text: Optional[str] = None
    started_at: float = field(default_factory=time.time)


@dataclass
class RecordingSession:
    context: OrchestrationContext
    segments: List[AudioSegment] = field(default_factory=list)
    artifact: Optional[AudioArtifact] = None

    @property
    def id(self) -> str:
        return self.context.session_id


@dataclass(frozen=True)
class FinalizedRecording:
    """A finished session: the artifact plus the context it was recorded under."""
    artifact: AudioArtifact
    context: OrchestrationContext
    segment_count: int

    @property
    def session_id(self) -> str:
        return self.context.session_id


class RecordingController:
    """
    State machine around a capture device.

    IDLE -> INITIALIZING -> READY -> RECORDING <-> PAUSED -> FINALIZING -> READY.
    A failed initialization leaves the controller UNAVAILABLE until
    ``initialize()`` succeeds. At most one session is live at a time; start
    requests made while a session is live are declined, not queued.
    """

    def __init__(self, device: CaptureDevice, on_state_change: Optional[StateCallback] = None):
        self._device = device
        self._on_state_change = on_state_change
        self._state = RecorderState.IDLE
        self._session: Optional[RecordingSession] = None
        self._current_session_id: Optional[str] = None
        self._device.set_segment_handler(self._handle_segment)

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def current_session_id(self) -> Optional[str]:
        """Id of the most recently started session, kept after finalize."""
        return self._current_session_id

    @property
    def active_session(self) -> Optional[RecordingSession]:
        return self._session

    def get_state(self) -> Dict[str, Any]:
        device_state = self._device.get_state()
        return {
            "is_recording": self._state in (RecorderState.RECORDING, RecorderState.PAUSED),
            "state": self._state,
            "device_state": device_state["device_state"],
            "session_id": self._session.id if self._session else None,
        }

    async def initialize(self) -> ControlResult:
        """Acquire the capture device."""
        if self._state not in (RecorderState.IDLE, RecorderState.UNAVAILABLE):
            return ControlResult(self._state != RecorderState.INITIALIZING, f"Already {self._state.value}")

        self._transition(RecorderState.INITIALIZING)
        if await self._device.initialize():
            self._transition(RecorderState.READY)
            return ControlResult(True)

        message = self._device.last_error or "Microphone unavailable"
        self._transition(RecorderState.UNAVAILABLE)
        return ControlResult(False, message)

    async def start(
        self,
        mode: AssessmentMode = AssessmentMode.DICTATION,
        reference_text: Optional[str] = None
    ) -> ControlResult:
        """
        Start a new session, capturing the mode and reference text in effect now.

        Declined without any state change unless the controller is READY
        (an IDLE controller initializes the device first).
        """
        if self._state == RecorderState.IDLE:
            result = await self.initialize()
            if not result:
                return result

        if self._state != RecorderState.READY:
            logger.info(f"Start declined: recorder is {self._state.value}")
            return ControlResult(False, f"Cannot start while {self._state.value}")

        context = OrchestrationContext(
            session_id=uuid.uuid4().hex,
            mode=AssessmentMode(mode),
            reference_text=reference_text
        )
        # Register the session before the device starts so no segment is missed
        self._session = RecordingSession(context=context)

        if not await self._device.start():
            self._session = None
            message = self._device.last_error or "Failed to start recording"
            logger.warning(f"Start failed: {message}")
            return ControlResult(False, message)

        self._current_session_id = context.session_id
        self._transition(RecorderState.RECORDING)
        logger.info(f"Session {context.session_id} started in {context.mode.value} mode")
        return ControlResult(True)

    async def pause(self) -> ControlResult:
        if self._state != RecorderState.RECORDING:
            return ControlResult(False, "Not recording")
        if not await self._device.pause():
            return ControlResult(False, self._device.last_error or "Failed to pause")
        self._transition(RecorderState.PAUSED)
        return ControlResult(True)

    async def resume(self) -> ControlResult:
        if self._state != RecorderState.PAUSED:
            return ControlResult(False, "Not paused")
        if not await self._device.resume():
            return ControlResult(False, self._device.last_error or "Failed to resume")
        self._transition(RecorderState.RECORDING)
        return ControlResult(True)

    async def stop(self) -> Optional[FinalizedRecording]:
        """
        Stop the live session and finalize its artifact.

        Segments still in flight when the stop is requested are delivered by
        the device before its stop completes and are part of the artifact.

        Returns:
            The finalized recording, or None if nothing was recording.
        """
        if self._state not in (RecorderState.RECORDING, RecorderState.PAUSED):
            return None

        session = self._session
        self._transition(RecorderState.FINALIZING)

        if not await self._device.stop():
            logger.warning(f"Device stop reported a problem: {self._device.last_error}")

        session.artifact = AudioArtifact.from_segments(
            session.segments,
            session_id=session.id,
            **self._device.artifact_descriptor()
        )
        finalized = FinalizedRecording(
            artifact=session.artifact,
            context=session.context,
            segment_count=len(session.segments)
        )

        # The session is discarded once finalized
        self._session = None
        self._transition(RecorderState.READY)
        logger.info(
            f"Session {finalized.session_id} finalized: "
            f"{finalized.segment_count} segments, {len(finalized.artifact)} bytes"
        )
        return finalized

    async def close(self) -> None:
        """Release the device; any live session is dropped."""
        await self._device.close()
        self._session = None
        self._transition(RecorderState.IDLE)

    def _handle_segment(self, data: bytes) -> None:
        session = self._session
        if session is None or session.artifact is not None:
            logger.debug("Dropping segment delivered outside a live session")
            return
        session.segments.append(AudioSegment(data=bytes(data), index=len(session.segments)))

    def _transition(self, to_state: RecorderState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug(f"Recorder state: {from_state.value} -> {to_state.value}")
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
