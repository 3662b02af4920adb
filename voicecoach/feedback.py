"""
Result normalization and feedback generation.

Turns raw provider payloads into canonical, immutable records and derives
short human-readable feedback from pronunciation and fluency scores.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Tuple
import math


class FeedbackTier(str, Enum):
    POSITIVE = "positive"
    MODERATE = "moderate"
    NEEDS_IMPROVEMENT = "needs_improvement"


QUALITY_PHRASES = {
    FeedbackTier.POSITIVE: "Excellent overall pronunciation quality!",
    FeedbackTier.MODERATE: "Good pronunciation with room for improvement.",
    FeedbackTier.NEEDS_IMPROVEMENT: "Pronunciation needs significant improvement.",
}

FLUENCY_PHRASES = {
    FeedbackTier.POSITIVE: "Very fluent speech delivery.",
    FeedbackTier.MODERATE: "Moderately fluent with some hesitations.",
    FeedbackTier.NEEDS_IMPROVEMENT: "Work on improving speech fluency.",
}

TASK_PHRASES = {
    FeedbackTier.POSITIVE: "Excellent task completion!",
    FeedbackTier.MODERATE: "Good task completion with minor gaps.",
    FeedbackTier.NEEDS_IMPROVEMENT: "Focus on addressing the task more completely.",
}


@dataclass(frozen=True)
class TranscriptSegment:
    """A single segment of transcribed text with timing information."""
    start: float
    end: float
    text: str


@dataclass(frozen=True)
class TranscriptPayload:
    """Dictation outcome."""
    text: str
    language: Optional[str] = None
    duration: Optional[float] = None
    segments: Tuple[TranscriptSegment, ...] = ()

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass(frozen=True)
class WordScore:
    word: str
    score: Optional[float]


@dataclass(frozen=True)
class PhoneScore:
    phone: str
    score: Optional[float]
    sound_most_like: Optional[str] = None
    word: Optional[str] = None


@dataclass(frozen=True)
class AssessmentPayload:
    """Pronunciation assessment outcome. Scores are in [0, 100] or None."""
    overall_score: Optional[float] = None
    pronunciation_score: Optional[float] = None
    fluency_score: Optional[float] = None
    rhythm_score: Optional[float] = None
    intonation_score: Optional[float] = None
    word_scores: Tuple[WordScore, ...] = ()
    phone_scores: Tuple[PhoneScore, ...] = ()
    transcription: Optional[str] = None
    duration: Optional[float] = None
    feedback_summary: str = field(default="", compare=False)


@dataclass(frozen=True)
class SpontaneousPayload:
    """Open-answer assessment outcome. Scores are in [0, 100] or None."""
    overall_score: Optional[float] = None
    task_achievement_score: Optional[float] = None
    pronunciation_score: Optional[float] = None
    fluency_score: Optional[float] = None
    grammar_score: Optional[float] = None
    vocabulary_score: Optional[float] = None
    coherence_score: Optional[float] = None
    transcription: Optional[str] = None
    duration: Optional[float] = None
    feedback_summary: str = field(default="", compare=False)


def score_tier(score: float) -> FeedbackTier:
    """Classify a 0-100 score: >=80 positive, 60-79 moderate, <60 needs improvement."""
    if score >= 80:
        return FeedbackTier.POSITIVE
    if score >= 60:
        return FeedbackTier.MODERATE
    return FeedbackTier.NEEDS_IMPROVEMENT


def generate_feedback(quality_score: Optional[float], fluency_score: Optional[float]) -> str:
    """
    Build the feedback sentence for a pair of scores.

    Each present score contributes one tier phrase; absent scores contribute
    nothing. Phrases are joined with a single space.
    """
    feedback = []

    if quality_score is not None:
        feedback.append(QUALITY_PHRASES[score_tier(quality_score)])

    if fluency_score is not None:
        feedback.append(FLUENCY_PHRASES[score_tier(fluency_score)])

    return " ".join(feedback)


def feedback_for(payload: AssessmentPayload) -> str:
    """Feedback for an assessment, using the overall score or, failing that, pronunciation."""
    quality = payload.overall_score
    if quality is None:
        quality = payload.pronunciation_score
    return generate_feedback(quality, payload.fluency_score)


def generate_task_feedback(task_score: Optional[float]) -> str:
    """Task-completion phrase for an open answer; empty when the score is absent."""
    if task_score is None:
        return ""
    return TASK_PHRASES[score_tier(task_score)]


def summarize(payload: Any) -> str:
    """Short status line for any analysis payload."""
    if isinstance(payload, AssessmentPayload):
        return payload.feedback_summary or feedback_for(payload)
    if isinstance(payload, SpontaneousPayload):
        return payload.feedback_summary or generate_task_feedback(payload.task_achievement_score)
    if isinstance(payload, TranscriptPayload):
        words = payload.word_count
        noun = "word" if words == 1 else "words"
        if payload.language:
            return f"Transcribed {words} {noun} ({payload.language})."
        return f"Transcribed {words} {noun}."
    raise TypeError(f"Cannot summarize {type(payload).__name__}")


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _score(value: Any) -> Optional[float]:
    """Coerce a provider score to a float clamped to [0, 100]."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError("Score must be numeric, got bool")
    score = float(value)
    if math.isnan(score):
        raise ValueError("Score is NaN")
    return min(100.0, max(0.0, score))


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def normalize_transcript(response: Any, declared_language: Optional[str] = None) -> TranscriptPayload:
    """
    Normalize a transcription response (plain text, dict or SDK object).

    Raises:
        ValueError: If the response carries no text.
    """
    if isinstance(response, str):
        return TranscriptPayload(text=response.strip(), language=declared_language)

    text = _field(response, "text")
    if not isinstance(text, str):
        raise ValueError("Transcription response has no text")

    segments = []
    for segment in _field(response, "segments") or ():
        segments.append(TranscriptSegment(
            start=float(_field(segment, "start", 0.0)),
            end=float(_field(segment, "end", 0.0)),
            text=str(_field(segment, "text", "")).strip()
        ))

    return TranscriptPayload(
        text=text.strip(),
        language=_field(response, "language") or declared_language or "auto-detected",
        duration=_optional_float(_field(response, "duration")),
        segments=tuple(segments)
    )


def normalize_assessment(data: Any) -> AssessmentPayload:
    """
    Normalize a pronunciation-scoring response.

    Accepts the flat shape (scores at the top level) and the nested shape
    where scores live under ``text_score``.

    Raises:
        TypeError, ValueError: If the response has an unexpected shape.
    """
    if not isinstance(data, dict):
        raise TypeError(f"Assessment response must be an object, got {type(data).__name__}")

    scores = data.get("text_score") if isinstance(data.get("text_score"), dict) else data
    speechace = scores.get("speechace_score") or {}
    if not isinstance(speechace, dict):
        raise TypeError("speechace_score must be an object")

    pronunciation = scores.get("pronunciation_score", speechace.get("pronunciation"))
    fluency = scores.get("fluency_score", speechace.get("fluency"))

    word_scores = []
    phone_scores = []
    for entry in scores.get("word_score_list") or []:
        word = str(entry["word"])
        word_scores.append(WordScore(word=word, score=_score(entry.get("quality_score"))))
        for phone in entry.get("phone_score_list") or []:
            phone_scores.append(_phone(phone, word))

    # Flat responses may list phones separately
    if not phone_scores:
        for phone in scores.get("phone_score_list") or []:
            phone_scores.append(_phone(phone, None))

    payload = AssessmentPayload(
        overall_score=_score(scores.get("quality_score")),
        pronunciation_score=_score(pronunciation),
        fluency_score=_score(fluency),
        rhythm_score=_score(scores.get("rhythm_score")),
        intonation_score=_score(scores.get("intonation_score")),
        word_scores=tuple(word_scores),
        phone_scores=tuple(phone_scores),
        transcription=scores.get("text") or None,
        duration=_optional_float(scores.get("duration"))
    )
    return replace(payload, feedback_summary=feedback_for(payload))


def normalize_spontaneous(data: Any) -> SpontaneousPayload:
    """
    Normalize an open-answer scoring response.

    Accepts flat top-level scores, or the nested shape with a
    ``speech_score`` object holding ``speechace_score`` and ``task_score``.

    Raises:
        TypeError, ValueError: If the response has an unexpected shape.
    """
    if not isinstance(data, dict):
        raise TypeError(f"Assessment response must be an object, got {type(data).__name__}")

    scores = data.get("speech_score") if isinstance(data.get("speech_score"), dict) else data
    speechace = scores.get("speechace_score") or {}
    task = scores.get("task_score") or {}
    if not isinstance(speechace, dict) or not isinstance(task, dict):
        raise TypeError("speechace_score and task_score must be objects")

    payload = SpontaneousPayload(
        overall_score=_score(scores.get("overall_score", speechace.get("overall"))),
        task_achievement_score=_score(scores.get("task_achievement_score", task.get("score"))),
        pronunciation_score=_score(scores.get("pronunciation_score", speechace.get("pronunciation"))),
        fluency_score=_score(scores.get("fluency_score", speechace.get("fluency"))),
        grammar_score=_score(scores.get("grammar_score", speechace.get("grammar"))),
        vocabulary_score=_score(scores.get("vocabulary_score", speechace.get("vocab"))),
        coherence_score=_score(scores.get("coherence_score", speechace.get("coherence"))),
        transcription=scores.get("transcription") or scores.get("transcript") or None,
        duration=_optional_float(scores.get("duration"))
    )
    return replace(payload, feedback_summary=generate_task_feedback(payload.task_achievement_score))


def _phone(entry: dict, word: Optional[str]) -> PhoneScore:
    return PhoneScore(
        phone=str(entry["phone"]),
        score=_score(entry.get("quality_score")),
        sound_most_like=entry.get("sound_most_like"),
        word=word
    )
