"""
Microphone capture using PyAudio.

The capture device owns the microphone handle, delivers raw PCM segments to
a registered handler while recording, and reports failures as booleans with
a readable ``last_error`` instead of raising.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional
import asyncio
import functools
import logging

# Import statements that may fail if dependencies aren't installed
try:
    import pyaudio
    PYAUDIO_AVAILABLE = True
except ImportError:
    pyaudio = None
    PYAUDIO_AVAILABLE = False

from .artifact import PCM_MIME_TYPE

logger = logging.getLogger(__name__)

SegmentHandler = Callable[[bytes], None]


class AudioRecorderError(Exception):
    """Base exception for audio recorder errors."""
    pass


class MicrophonePermissionError(AudioRecorderError):
    """Raised when microphone permissions are not granted."""
    pass


class DeviceError(AudioRecorderError):
    """Raised when no audio input devices are available."""
    pass


class DeviceState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    RECORDING = "recording"
    PAUSED = "paused"
    UNAVAILABLE = "unavailable"


class CaptureDevice(ABC):
    """
    Boundary of a microphone capture device.

    Segments are pushed to the handler registered with
    ``set_segment_handler``. ``stop()`` returns only after every segment
    that was being read when the stop was requested has been delivered.
    """

    mime_type = PCM_MIME_TYPE
    sample_rate = 16000
    channels = 1
    sample_width = 2

    def __init__(self):
        self._segment_handler: Optional[SegmentHandler] = None
        self.state = DeviceState.UNINITIALIZED
        self.last_error: Optional[str] = None

    def set_segment_handler(self, handler: Optional[SegmentHandler]) -> None:
        self._segment_handler = handler

    def _emit(self, data: bytes) -> None:
        if self._segment_handler is not None:
            self._segment_handler(data)

    def artifact_descriptor(self) -> Dict[str, Any]:
        """MIME descriptor used for artifacts built from this device's segments."""
        return {
            "mime_type": self.mime_type,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "sample_width": self.sample_width,
        }

    def get_state(self) -> Dict[str, Any]:
        return {
            "is_recording": self.state in (DeviceState.RECORDING, DeviceState.PAUSED),
            "device_state": self.state,
        }

    @abstractmethod
    async def initialize(self) -> bool:
        """Acquire the microphone. False moves the device to UNAVAILABLE."""
        pass

    @abstractmethod
    async def start(self) -> bool:
        pass

    @abstractmethod
    async def stop(self) -> bool:
        pass

    @abstractmethod
    async def pause(self) -> bool:
        pass

    @abstractmethod
    async def resume(self) -> bool:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the microphone handle."""
        pass

    async def __aenter__(self) -> "CaptureDevice":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit; always releases the microphone."""
        await self.close()


class PyAudioRecorder(CaptureDevice):
    """
    PyAudio capture device producing 16-bit mono PCM.

    Optimized for speech services with a 16kHz sample rate and 100ms
    segments. Blocking stream reads run in the default executor so the event
    loop stays responsive while recording.

    Args:
        sample_rate: Audio sample rate in Hz
        chunk_size: Frames per segment (1600 frames = 100ms at 16kHz)
        channels: Number of audio channels (1 for mono)
        input_device_index: PyAudio device index, None for the default input

    Example:
        >>> recorder = PyAudioRecorder()
        >>> recorder.set_segment_handler(segments.append)
        >>> await recorder.initialize()
        True
        >>> await recorder.start()
        True
        >>> # ... user speaks ...
        >>> await recorder.stop()
        True
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        chunk_size: int = 1600,
        channels: int = 1,
        input_device_index: Optional[int] = None
    ):
        super().__init__()
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.input_device_index = input_device_index

        # Internal state
        self._audio = None
        self._stream = None
        self._is_recording = False
        self._paused = False
        self._resume_event: Optional[asyncio.Event] = None
        self._recording_task: Optional[asyncio.Task] = None

        # Validate configuration
        self._validate_config()

    def _validate_config(self) -> None:
        """Validate audio configuration parameters."""
        if self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.channels not in (1, 2):
            raise ValueError(f"Channels must be 1 or 2, got {self.channels}")

    async def initialize(self) -> bool:
        """
        Open the microphone stream without starting capture.

        Returns:
            True if the device is ready, False if it is unavailable.
        """
        if self.state in (DeviceState.READY, DeviceState.RECORDING, DeviceState.PAUSED):
            return True

        try:
            self._open_stream()
        except AudioRecorderError as e:
            await self._cleanup_resources()
            self.last_error = str(e)
            self.state = DeviceState.UNAVAILABLE
            logger.error(f"Microphone unavailable: {e}")
            return False

        self.last_error = None
        self.state = DeviceState.READY
        logger.info(f"Microphone ready: {self.sample_rate}Hz, {self.channels} channel(s)")
        return True

    def _open_stream(self) -> None:
        if not PYAUDIO_AVAILABLE:
            raise DeviceError("PyAudio not available. Install with: pip install pyaudio")

        try:
            self._audio = pyaudio.PyAudio()
        except Exception as e:
            raise DeviceError(f"Failed to initialize audio system: {e}") from e

        if not self._has_input_devices():
            raise DeviceError("No audio input devices found")

        try:
            self._stream = self._audio.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.chunk_size,
                input_device_index=self.input_device_index,
                start=False
            )
        except OSError as e:
            if "device" in str(e).lower() or "input" in str(e).lower():
                raise MicrophonePermissionError(self._format_permission_error()) from e
            raise AudioRecorderError(f"Failed to open audio stream: {e}") from e

    async def start(self) -> bool:
        """Begin delivering segments. Fails unless the device is READY."""
        if self.state != DeviceState.READY:
            self.last_error = f"Cannot start recording while device is {self.state.value}"
            return False

        try:
            self._stream.start_stream()
        except Exception as e:
            self.last_error = f"Failed to start recording: {e}"
            logger.error(self.last_error)
            return False

        self._is_recording = True
        self._paused = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._recording_task = asyncio.create_task(self._record_audio_loop())
        self.state = DeviceState.RECORDING

        logger.info("Recording started")
        return True

    async def stop(self) -> bool:
        """
        Stop capture after the in-flight read has been delivered.

        Returns:
            True if a recording was stopped.
        """
        if self.state not in (DeviceState.RECORDING, DeviceState.PAUSED):
            self.last_error = "Not currently recording"
            return False

        # Stop recording flag first, then wake a paused loop so it can exit
        self._is_recording = False
        if self._resume_event is not None:
            self._resume_event.set()

        ok = True
        try:
            if self._recording_task:
                await self._recording_task
            if self._stream is not None and self._stream.is_active():
                self._stream.stop_stream()
        except Exception as e:
            self.last_error = f"Failed to stop recording: {e}"
            logger.error(self.last_error)
            ok = False
        finally:
            self._recording_task = None
            self._paused = False
            self.state = DeviceState.READY

        logger.info("Recording stopped")
        return ok

    async def pause(self) -> bool:
        if self.state != DeviceState.RECORDING:
            return False
        self._paused = True
        self._resume_event.clear()
        self.state = DeviceState.PAUSED
        return True

    async def resume(self) -> bool:
        if self.state != DeviceState.PAUSED:
            return False
        self._paused = False
        self._resume_event.set()
        self.state = DeviceState.RECORDING
        return True

    async def _record_audio_loop(self) -> None:
        """
        Background loop that reads segments while recording is active.

        A read already in progress when stop is requested completes and is
        delivered before the loop exits.
        """
        loop = asyncio.get_running_loop()
        read = functools.partial(self._stream.read, self.chunk_size, exception_on_overflow=False)

        try:
            while self._is_recording:
                if self._paused:
                    await loop.run_in_executor(None, self._stream.stop_stream)
                    await self._resume_event.wait()
                    if not self._is_recording:
                        break
                    await loop.run_in_executor(None, self._stream.start_stream)
                    continue

                data = await loop.run_in_executor(None, read)
                if data:
                    self._emit(data)

        except Exception as e:
            self.last_error = f"Audio read error: {e}"
            logger.error(f"Recording loop error: {e}")
        finally:
            logger.debug("Recording loop ended")

    def _has_input_devices(self) -> bool:
        """Check if any audio input devices are available."""
        if not self._audio:
            return False

        try:
            for i in range(self._audio.get_device_count()):
                device_info = self._audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) > 0:
                    return True
        except Exception as e:
            logger.warning(f"Error checking input devices: {e}")

        return False

    def _format_permission_error(self) -> str:
        """Format a helpful permission error message for macOS."""
        return (
            "Microphone access denied. On macOS:\n"
            "1. Open System Settings → Privacy & Security → Microphone\n"
            "2. Enable microphone access for Terminal or your application\n"
            "3. Restart the application and try again"
        )

    async def close(self) -> None:
        """Stop any recording and release the microphone."""
        if self.state in (DeviceState.RECORDING, DeviceState.PAUSED):
            await self.stop()
        await self._cleanup_resources()
        self.state = DeviceState.UNINITIALIZED

    async def _cleanup_resources(self) -> None:
        """Clean up PyAudio resources safely."""
        try:
            # Stop and close stream
            if self._stream:
                if self._stream.is_active():
                    self._stream.stop_stream()
                self._stream.close()
                self._stream = None

            # Terminate PyAudio
            if self._audio:
                self._audio.terminate()
                self._audio = None

        except Exception as e:
            logger.warning(f"Error during cleanup: {e}")


def get_available_devices() -> list[dict]:
    """
    Get a list of available audio input devices.

    Returns:
        List of dictionaries with device information (name, index, channels, etc.)

    Raises:
        DeviceError: If PyAudio is missing or devices cannot be enumerated.
    """
    if not PYAUDIO_AVAILABLE:
        raise DeviceError("PyAudio not available. Install with: pip install pyaudio")

    devices = []
    audio = None

    try:
        audio = pyaudio.PyAudio()
        try:
            default_index = audio.get_default_input_device_info().get('index', -1)
        except (IOError, OSError):
            default_index = -1

        for i in range(audio.get_device_count()):
            try:
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) > 0:  # Only input devices
                    devices.append({
                        'index': i,
                        'name': device_info.get('name', 'Unknown'),
                        'channels': device_info.get('maxInputChannels', 0),
                        'sample_rate': int(device_info.get('defaultSampleRate', 0)),
                        'is_default': i == default_index
                    })
            except Exception as e:
                logger.warning(f"Error getting device {i} info: {e}")
                continue

    except Exception as e:
        logger.error(f"Error enumerating audio devices: {e}")
        raise DeviceError(f"Failed to enumerate audio devices: {e}") from e
    finally:
        if audio:
            audio.terminate()

    return devices
