"""
Playback of synthesized speech.

Raw PCM speech is played through a PyAudio output stream. Encoded formats
such as MP3 are not decoded here; they can be written to a file instead.
"""

from pathlib import Path
from typing import Optional, Union
import asyncio
import logging

try:
    import pyaudio
    PYAUDIO_AVAILABLE = True
except ImportError:
    pyaudio = None
    PYAUDIO_AVAILABLE = False

from .artifact import AudioArtifact

logger = logging.getLogger(__name__)


class SpeechPlayer:
    """
    Plays 16-bit mono PCM speech through the default output device.

    Args:
        chunk_size: Frames written per call
        output_device_index: PyAudio device index, None for the default output
    """

    def __init__(self, chunk_size: int = 1024, output_device_index: Optional[int] = None):
        self.chunk_size = chunk_size
        self.output_device_index = output_device_index
        self.last_error: Optional[str] = None

    @staticmethod
    def can_play(speech) -> bool:
        """True when the speech is raw PCM with a known sample rate."""
        return speech.sample_rate is not None

    async def play(self, speech) -> bool:
        """
        Play a SpeechPayload.

        Returns:
            True if the audio was played, False otherwise (see ``last_error``).
        """
        if not PYAUDIO_AVAILABLE:
            self.last_error = "PyAudio not available. Install with: pip install pyaudio"
            return False
        if not self.can_play(speech):
            self.last_error = f"Cannot play {speech.output_format} directly; use a pcm_* output format"
            return False

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._play_blocking, speech.audio, speech.sample_rate)
        except Exception as e:
            self.last_error = f"Playback failed: {e}"
            logger.error(self.last_error)
            return False

        self.last_error = None
        return True

    def _play_blocking(self, audio: bytes, sample_rate: int) -> None:
        pa = pyaudio.PyAudio()
        stream = None
        try:
            stream = pa.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=sample_rate,
                output=True,
                frames_per_buffer=self.chunk_size,
                output_device_index=self.output_device_index
            )
            step = self.chunk_size * 2  # 2 bytes per 16-bit frame
            for offset in range(0, len(audio), step):
                stream.write(audio[offset:offset + step])
        finally:
            if stream is not None:
                stream.stop_stream()
                stream.close()
            pa.terminate()


def save_speech(speech, path: Union[str, Path]) -> Path:
    """
    Write synthesized speech to disk.

    PCM output is wrapped in a WAV container; encoded formats are written
    as received.
    """
    path = Path(path)
    if speech.sample_rate is not None:
        artifact = AudioArtifact(data=speech.audio, sample_rate=speech.sample_rate)
        path.write_bytes(artifact.to_wav())
    else:
        path.write_bytes(speech.audio)
    logger.info(f"Saved {len(speech.audio)} bytes of speech to {path}")
    return path
