"""
Audio segment and finalized artifact value types.

A recording is captured as a sequence of raw segments and finalized into a
single immutable artifact that the provider adapters upload.
"""

import io
import time
import wave
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

PCM_MIME_TYPE = "audio/L16"

# Extensions the transcription and scoring services recognise
UPLOAD_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/m4a": "m4a",
    "audio/ogg": "ogg",
}


def mime_type_for_suffix(suffix: str) -> Optional[str]:
    """MIME type for a file extension such as ``.wav``; None if unrecognised."""
    extension = suffix.lower().lstrip(".")
    for mime_type, known in UPLOAD_EXTENSIONS.items():
        if known == extension:
            return mime_type
    return None


@dataclass(frozen=True)
class AudioSegment:
    """A single chunk of raw audio delivered by the capture device."""
    data: bytes
    index: int
    captured_at: float = field(default_factory=time.time)

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class AudioArtifact:
    """
    The finished recording: one immutable blob plus its MIME descriptor.

    ``data`` is the in-order concatenation of every segment captured for the
    session. Raw PCM (``audio/L16``) is wrapped into a WAV container only when
    it is prepared for upload, so ``len(artifact)`` always equals the number
    of captured bytes.
    """
    data: bytes
    mime_type: str = PCM_MIME_TYPE
    sample_rate: int = 16000
    channels: int = 1
    sample_width: int = 2
    session_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self.data)

    @classmethod
    def from_segments(
        cls,
        segments: Iterable[AudioSegment],
        session_id: Optional[str] = None,
        **descriptor
    ) -> "AudioArtifact":
        """Join segments in capture order into a single artifact."""
        ordered = sorted(segments, key=lambda s: s.index)
        return cls(
            data=b"".join(s.data for s in ordered),
            session_id=session_id,
            **descriptor
        )

    @property
    def is_empty(self) -> bool:
        return not self.data

    @property
    def is_pcm(self) -> bool:
        return self.mime_type.split(";")[0].strip().lower() == PCM_MIME_TYPE.lower()

    @property
    def size_mb(self) -> float:
        return len(self.data) / (1024 * 1024)

    @property
    def duration(self) -> Optional[float]:
        """Duration in seconds, known only for raw PCM."""
        if not self.is_pcm:
            return None
        bytes_per_second = self.sample_rate * self.channels * self.sample_width
        if bytes_per_second <= 0:
            return None
        return len(self.data) / bytes_per_second

    def as_upload(self, basename: str = "recording") -> Tuple[str, bytes, str]:
        """
        Prepare the artifact for a multipart upload.

        Returns:
            (filename, file bytes, content type)
        """
        if self.is_pcm:
            return f"{basename}.wav", self.to_wav(), "audio/wav"

        base_type = self.mime_type.split(";")[0].strip().lower()
        extension = UPLOAD_EXTENSIONS.get(base_type, "webm")
        return f"{basename}.{extension}", self.data, base_type

    def to_wav(self) -> bytes:
        """Wrap raw PCM data in a WAV container."""
        wav_buffer = io.BytesIO()

        with wave.open(wav_buffer, 'wb') as wav_file:
            wav_file.setnchannels(self.channels)
            wav_file.setsampwidth(self.sample_width)
            wav_file.setframerate(self.sample_rate)
            wav_file.writeframes(self.data)

        return wav_buffer.getvalue()
