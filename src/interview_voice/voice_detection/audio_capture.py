"""Microphone capture session backed by PyAudio."""

import io
import threading
import time
import wave
from typing import Any

import pyaudio

from .config import DEFAULT_CHANNELS, DEFAULT_CHUNK_SIZE, DEFAULT_SAMPLE_RATE, DEFAULT_SAMPLE_WIDTH, SILENT_POWER_DB
from .exceptions import AudioCaptureError, MicrophoneNotFoundError
from .interfaces import AudioRecorder
from .level_sampler import pcm_power_db
from .logging_utils import get_logger

logger = get_logger(__name__)


class AudioCapture(AudioRecorder):
    """
    Records the default microphone into memory and meters its power.

    PyAudio delivers chunks on its own thread through the stream callback;
    the chunk list and the latest power reading are guarded by a lock so the
    detector can meter and stop from other threads.
    """

    def __init__(self, sample_rate: int = None, chunk_size: int = None) -> None:
        """
        Initialize audio capture with specified parameters.

        Args:
            sample_rate: Audio sample rate in Hz
            chunk_size: Number of samples per chunk
        """
        self.sample_rate = sample_rate if sample_rate is not None else DEFAULT_SAMPLE_RATE
        self.chunk_size = chunk_size if chunk_size is not None else DEFAULT_CHUNK_SIZE

        if self.sample_rate <= 0:
            raise ValueError("Sample rate must be positive")
        if self.chunk_size <= 0:
            raise ValueError("Chunk size must be positive")

        self._lock = threading.Lock()
        self._capturing = False
        self._pyaudio = None
        self._stream = None
        self._chunks: list[bytes] = []
        self._last_power_db = SILENT_POWER_DB

        # Debug tracking
        self._audio_chunks_received = 0
        self._sessions_started = 0
        self._capture_started_at = 0.0

    def start_recording(self) -> None:
        """
        Open the default microphone and start accumulating audio.

        Raises:
            MicrophoneNotFoundError: If there is no default input device
            AudioCaptureError: If already recording or the stream cannot be opened
        """
        if self._capturing:
            raise AudioCaptureError("Already capturing")

        with self._lock:
            self._chunks = []
            self._last_power_db = SILENT_POWER_DB
            self._audio_chunks_received = 0

        try:
            self._pyaudio = pyaudio.PyAudio()
            logger.debug("PyAudio initialized successfully")

            self._log_audio_devices()

            try:
                device_info = self._pyaudio.get_default_input_device_info()
                try:
                    device_name = (
                        device_info.get("name", "Unknown")
                        if hasattr(device_info, "get")
                        else str(device_info)
                    )
                    logger.debug(f"🎤 Default input device found: {device_name}")
                except (TypeError, AttributeError):
                    logger.debug("🎤 Default input device found (details unavailable)")
            except OSError as e:
                logger.error("❌ No default input device found")
                raise MicrophoneNotFoundError("No microphone found") from e

            try:
                self._stream = self._pyaudio.open(
                    format=pyaudio.paInt16,
                    channels=DEFAULT_CHANNELS,
                    rate=self.sample_rate,
                    input=True,
                    frames_per_buffer=self.chunk_size,
                    stream_callback=self._on_audio,
                )
                self._stream.start_stream()
            except OSError as e:
                if "Permission denied" in str(e):
                    logger.error("❌ Microphone permission denied")
                    raise AudioCaptureError("Permission denied") from e
                logger.error(f"❌ Failed to open audio stream: {e}")
                raise AudioCaptureError(f"Failed to open audio stream: {e}") from e

            self._capturing = True
            self._sessions_started += 1
            self._capture_started_at = time.monotonic()
            logger.debug(
                f"✅ Audio stream started "
                f"(sample_rate: {self.sample_rate}, chunk_size: {self.chunk_size})"
            )

        except Exception:
            self._release()
            raise

    def stop_recording(self) -> bytes:
        """
        Close the stream and return the recording as a WAV file.

        Returns:
            WAV bytes, or b"" if not recording or nothing was captured
        """
        with self._lock:
            if not self._capturing:
                return b""
            self._capturing = False
        self._release()

        with self._lock:
            chunks = self._chunks
            self._chunks = []
            self._last_power_db = SILENT_POWER_DB

        if not chunks:
            logger.debug("🎤 Capture stopped with no audio")
            return b""

        audio = self._to_wav(b"".join(chunks))
        logger.debug(
            f"🎤 Capture stopped after {time.monotonic() - self._capture_started_at:.2f}s "
            f"({len(chunks)} chunks, {len(audio)} bytes)"
        )
        return audio

    def is_recording(self) -> bool:
        return self._capturing

    def next_level_sample(self) -> float:
        """
        Power of the most recent chunk.

        Returns:
            dBFS, SILENT_POWER_DB before the first chunk arrives
        """
        with self._lock:
            return self._last_power_db

    def _on_audio(self, in_data: bytes | None, frame_count: int, time_info: Any, status: int) -> tuple[None, int]:
        if in_data:
            power = pcm_power_db(in_data)
            with self._lock:
                self._chunks.append(in_data)
                self._last_power_db = power
                self._audio_chunks_received += 1
        return None, pyaudio.paContinue

    def _to_wav(self, pcm: bytes) -> bytes:
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav_file:
            wav_file.setnchannels(DEFAULT_CHANNELS)
            wav_file.setsampwidth(DEFAULT_SAMPLE_WIDTH)
            wav_file.setframerate(self.sample_rate)
            wav_file.writeframes(pcm)
        return buffer.getvalue()

    def _release(self) -> None:
        if self._stream:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.error(f"Error closing audio stream: {e}")
            self._stream = None
        if self._pyaudio:
            self._pyaudio.terminate()
            self._pyaudio = None

    def _log_audio_devices(self) -> None:
        """Log available audio input devices for debugging."""
        try:
            device_count = self._pyaudio.get_device_count()
            logger.trace(f"🎤 Found {device_count} audio devices:")

            input_devices = 0
            for i in range(device_count):
                try:
                    device_info = self._pyaudio.get_device_info_by_index(i)
                    if hasattr(device_info, "get"):
                        max_input_channels = device_info.get("maxInputChannels", 0)
                        device_name = device_info.get("name", f"Device {i}")
                    else:
                        max_input_channels = getattr(device_info, "maxInputChannels", 0)
                        device_name = getattr(device_info, "name", f"Device {i}")

                    if max_input_channels > 0:
                        input_devices += 1
                        logger.trace(f"  [{i}] {device_name} (in: {max_input_channels})")
                except Exception as e:
                    logger.trace(f"  [{i}] Error getting device info: {e}")

            if input_devices:
                logger.debug(f"✅ Found {input_devices} input devices available")
            else:
                logger.warning("⚠️ No input devices found")

        except Exception as e:
            logger.error(f"❌ Error listing audio devices: {e}")

    def get_debug_stats(self) -> dict[str, Any]:
        """
        Get debug statistics about audio capture.

        Returns:
            Dictionary with debug information
        """
        with self._lock:
            buffered = sum(len(chunk) for chunk in self._chunks)
            last_power = self._last_power_db
        return {
            "capturing": self._capturing,
            "sample_rate": self.sample_rate,
            "chunk_size": self.chunk_size,
            "chunks_received": self._audio_chunks_received,
            "buffered_bytes": buffered,
            "last_power_db": last_power,
            "sessions_started": self._sessions_started,
            "stream_active": self._stream.is_active() if self._stream else False,
            "pyaudio_initialized": self._pyaudio is not None,
        }
