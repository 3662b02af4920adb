"""
Turn orchestration for Voice Coach.

Coordinates the recording controller, the mode dispatcher and the provider
adapters. One turn is strictly sequential: finalize a recording, run one
analysis pipeline, derive feedback, then optionally generate a reply and
voice it.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from .audio.artifact import AudioArtifact
from .audio.recorder import CaptureDevice, PyAudioRecorder
from .config import Settings
from .dispatch import AssessmentMode, DispatchError, Pipeline, dispatch_context
from .feedback import AssessmentPayload, TranscriptPayload, summarize
from .providers.assessment import AssessmentRequest, SpeechAceAssessor, SpontaneousRequest
from .providers.base import ProviderAdapter, ProviderResult
from .providers.generation import TextPayload, create_text_generator
from .providers.transcription import WhisperTranscriber
from .providers.voicing import ElevenLabsVoicer, SpeechPayload
from .session import (
    ControlResult,
    FinalizedRecording,
    OrchestrationContext,
    RecorderState,
    RecordingController,
    StateCallback,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnOutcome:
    """Everything produced for one finalized recording."""
    session_id: str
    mode: AssessmentMode
    analysis: ProviderResult
    feedback: str = ""
    reply: Optional[ProviderResult] = None
    speech: Optional[ProviderResult] = None
    discarded: bool = False

    @property
    def ok(self) -> bool:
        return self.analysis.ok and not self.discarded


class VoiceCoach:
    """
    Main application object that coordinates all components.

    Holds the explicit per-process state (current mode, reference text and
    the latest results); per-recording state travels in the
    OrchestrationContext captured when each recording starts.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        device: Optional[CaptureDevice] = None,
        transcriber: Optional[ProviderAdapter] = None,
        assessor: Optional[ProviderAdapter] = None,
        text_generator: Optional[ProviderAdapter] = None,
        voicer: Optional[ProviderAdapter] = None,
        on_state_change: Optional[StateCallback] = None
    ):
        self.settings = settings or Settings.from_env()
        self.controller = RecordingController(device or PyAudioRecorder(), on_state_change)

        self.transcriber = transcriber or WhisperTranscriber(
            api_key=self.settings.openai_api_key,
            options=self.settings.transcription
        )
        self.assessor = assessor or SpeechAceAssessor(
            api_key=self.settings.speechace_api_key,
            options=self.settings.assessment
        )
        if text_generator is None:
            key = (
                self.settings.anthropic_api_key
                if self.settings.text_provider in ("claude", "anthropic")
                else self.settings.openai_api_key
            )
            text_generator = create_text_generator(
                self.settings.text_provider,
                api_key=key,
                options=self.settings.text_generation
            )
        self.text_generator = text_generator
        self.voicer = voicer or ElevenLabsVoicer(
            api_key=self.settings.elevenlabs_api_key,
            options=self.settings.voicing
        )

        self.mode = AssessmentMode(self.settings.mode)
        self.reference_text: Optional[str] = None
        self.auto_reply = self.settings.auto_reply
        self.auto_speak = self.settings.auto_speak

        # Latest results, overwritten by each successful turn
        self.latest_transcript: Optional[TranscriptPayload] = None
        self.latest_assessment: Optional[AssessmentPayload] = None
        self.latest_reply: Optional[TextPayload] = None
        self.latest_speech: Optional[SpeechPayload] = None

    def set_mode(self, mode: AssessmentMode) -> None:
        """Select the pipeline for recordings started from now on."""
        self.mode = AssessmentMode(mode)
        logger.info(f"Mode set to {self.mode.value}")

    def set_reference_text(self, text: Optional[str]) -> None:
        self.reference_text = text.strip() if text and text.strip() else None

    async def start_recording(self) -> ControlResult:
        """Start a recording and drop the previous assessment."""
        result = await self.controller.start(self.mode, self.reference_text)
        if result:
            self.latest_assessment = None
        return result

    async def stop_recording(self) -> Optional[FinalizedRecording]:
        return await self.controller.stop()

    async def pause_recording(self) -> ControlResult:
        return await self.controller.pause()

    async def resume_recording(self) -> ControlResult:
        return await self.controller.resume()

    async def process_recording(self, finalized: FinalizedRecording) -> TurnOutcome:
        """
        Run the analysis pipeline for a finalized recording, then the optional
        reply and voicing steps.

        Results that arrive after a newer recording has started are
        discarded rather than stored.
        """
        context = finalized.context

        try:
            invocation = dispatch_context(finalized)
        except DispatchError as e:
            logger.info(f"Dispatch rejected session {context.session_id}: {e}")
            analysis = ProviderResult.failure(e.kind, str(e), provider="dispatcher")
            return TurnOutcome(context.session_id, context.mode, analysis)

        if invocation.pipeline is Pipeline.TRANSCRIPTION:
            analysis = await self.transcriber.invoke(invocation.artifact)
        else:
            request = AssessmentRequest(invocation.artifact, invocation.reference_text)
            analysis = await self.assessor.invoke(request)

        if self._is_stale(context):
            return self._discarded(context, analysis)

        if not analysis.ok:
            return TurnOutcome(context.session_id, context.mode, analysis)

        feedback = summarize(analysis.payload)
        if invocation.pipeline is Pipeline.TRANSCRIPTION:
            self.latest_transcript = analysis.payload
        else:
            self.latest_assessment = analysis.payload

        reply = speech = None
        if invocation.pipeline is Pipeline.TRANSCRIPTION and self.auto_reply and analysis.payload.text:
            reply = await self.generate_text(analysis.payload.text)
            if self._is_stale(context):
                return self._discarded(context, analysis)

            if reply.ok:
                self.latest_reply = reply.payload
                if self.auto_speak:
                    speech = await self.synthesize_speech(reply.payload.text)
                    if self._is_stale(context):
                        return self._discarded(context, analysis)
                    if speech.ok:
                        self.latest_speech = speech.payload

        return TurnOutcome(context.session_id, context.mode, analysis, feedback, reply, speech)

    def _is_stale(self, context: OrchestrationContext) -> bool:
        return context.session_id != self.controller.current_session_id

    def _discarded(self, context: OrchestrationContext, analysis: ProviderResult) -> TurnOutcome:
        logger.info(f"Discarding result for superseded session {context.session_id}")
        return TurnOutcome(context.session_id, context.mode, analysis, discarded=True)

    # Host command surface

    async def transcribe(
        self,
        audio_bytes: bytes,
        options: Any = None,
        mime_type: str = "audio/wav"
    ) -> ProviderResult:
        """Transcribe raw audio bytes."""
        artifact = AudioArtifact(data=audio_bytes or b"", mime_type=mime_type)
        return await self.transcriber.invoke(artifact, options)

    async def assess_pronunciation(
        self,
        audio_bytes: bytes,
        reference_text: str,
        options: Any = None,
        mime_type: str = "audio/wav"
    ) -> ProviderResult:
        """Score raw audio bytes against a reference sentence."""
        artifact = AudioArtifact(data=audio_bytes or b"", mime_type=mime_type)
        return await self.assessor.invoke(AssessmentRequest(artifact, reference_text), options)

    async def assess_spontaneous(
        self,
        audio_bytes: bytes,
        prompt: str,
        options: Any = None,
        mime_type: str = "audio/wav"
    ) -> ProviderResult:
        """Score raw audio bytes as an open answer to ``prompt``."""
        artifact = AudioArtifact(data=audio_bytes or b"", mime_type=mime_type)
        return await self.assessor.assess_spontaneous(SpontaneousRequest(artifact, prompt), options)

    async def generate_text(self, prompt: str, options: Any = None) -> ProviderResult:
        return await self.text_generator.invoke(prompt, options)

    async def synthesize_speech(self, text: str, options: Any = None) -> ProviderResult:
        return await self.voicer.invoke(text, options)

    async def list_voices(self) -> ProviderResult:
        return await self.voicer.list_voices()

    async def list_models(self) -> ProviderResult:
        return await self.voicer.list_models()

    async def get_voicing_account(self) -> ProviderResult:
        return await self.voicer.get_account()

    def check_service_status(self) -> Dict[str, Dict[str, bool]]:
        """
        Readiness of each service and presence of each API key.

        Returns:
            {"services": {name: ready}, "api_keys": {provider: present}}
        """
        return {
            "services": {
                "transcription": self.transcriber.is_available(),
                "assessment": self.assessor.is_available(),
                "text_generation": self.text_generator.is_available(),
                "voicing": self.voicer.is_available(),
                "microphone": self.controller.state != RecorderState.UNAVAILABLE,
            },
            "api_keys": self.settings.key_status(),
        }

    async def close(self) -> None:
        """Release the microphone and any open HTTP clients."""
        await self.controller.close()
        for adapter in (self.assessor, self.voicer):
            close = getattr(adapter, "close", None)
            if close is not None:
                await close()
