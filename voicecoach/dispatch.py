"""
Mode-dependent routing of finalized recordings.

A recording is analysed by exactly one pipeline: transcription in dictation
mode, pronunciation scoring in pronunciation mode. Routing is a pure
function of the artifact, the mode captured when the recording started and
the reference text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .audio.artifact import AudioArtifact
from .providers.base import ErrorKind


class AssessmentMode(str, Enum):
    DICTATION = "dictation"
    PRONUNCIATION = "pronunciation"

    @property
    def requires_reference_text(self) -> bool:
        return self is AssessmentMode.PRONUNCIATION

    def toggled(self) -> "AssessmentMode":
        if self is AssessmentMode.DICTATION:
            return AssessmentMode.PRONUNCIATION
        return AssessmentMode.DICTATION


class Pipeline(str, Enum):
    TRANSCRIPTION = "transcription"
    ASSESSMENT = "assessment"


class DispatchError(Exception):
    """Raised when a recording cannot be routed; no provider is called."""

    kind = ErrorKind.INVALID_INPUT


class MissingReferenceText(DispatchError):
    """Pronunciation mode was selected without a sentence to score against."""
    pass


@dataclass(frozen=True)
class Invocation:
    """Which pipeline consumes an artifact, and with what auxiliary input."""
    pipeline: Pipeline
    artifact: AudioArtifact
    mode: AssessmentMode
    reference_text: Optional[str] = None


def dispatch(
    artifact: AudioArtifact,
    mode: AssessmentMode,
    reference_text: Optional[str] = None
) -> Invocation:
    """
    Decide which pipeline consumes a finalized artifact.

    Raises:
        MissingReferenceText: In pronunciation mode without a non-empty
            reference text.
    """
    mode = AssessmentMode(mode)

    if mode is AssessmentMode.DICTATION:
        return Invocation(Pipeline.TRANSCRIPTION, artifact, mode)

    text = (reference_text or "").strip()
    if not text:
        raise MissingReferenceText("Reference text is required for pronunciation assessment")
    return Invocation(Pipeline.ASSESSMENT, artifact, mode, text)


def dispatch_context(finalized) -> Invocation:
    """Dispatch a finalized recording using the mode captured when it started."""
    context = finalized.context
    return dispatch(finalized.artifact, context.mode, context.reference_text)
