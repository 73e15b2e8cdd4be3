"""Cutting a single utterance out of a captured WAV recording."""

import io
import wave

from .exceptions import TrimError
from .logging_utils import get_logger

logger = get_logger(__name__)


def wav_duration(buffer: bytes) -> float:
    """
    Duration of a WAV buffer in seconds.

    Raises:
        TrimError: If the buffer is not a readable WAV container
    """
    try:
        with wave.open(io.BytesIO(buffer), "rb") as wav_file:
            return wav_file.getnframes() / wav_file.getframerate()
    except (wave.Error, EOFError) as e:
        raise TrimError(f"Not a valid WAV buffer: {e}") from e


def trim(buffer: bytes, start_offset: float, duration: float) -> bytes:
    """
    Return a standalone WAV file holding only the requested window.

    Offsets are converted to frames from the header's sample rate, so the
    PCM payload is sliced without decoding. The RIFF and data chunk lengths
    of the output are rewritten for the shorter payload.

    Args:
        buffer: WAV container bytes (PCM)
        start_offset: Seconds from the start of the recording
        duration: Length of the window in seconds

    Returns:
        WAV container bytes for the window

    Raises:
        TrimError: If the buffer is unreadable or the window does not lie
            inside it
    """
    if start_offset < 0:
        raise TrimError(f"Start offset must not be negative: {start_offset:.3f}s")
    if duration <= 0:
        raise TrimError(f"Duration must be positive: {duration:.3f}s")

    try:
        with wave.open(io.BytesIO(buffer), "rb") as source:
            params = source.getparams()
            start_frame = round(start_offset * params.framerate)
            frame_count = round(duration * params.framerate)

            if frame_count <= 0:
                raise TrimError(f"Window of {duration:.3f}s is shorter than one frame")
            if start_frame + frame_count > params.nframes:
                raise TrimError(
                    f"Window {start_offset:.3f}s+{duration:.3f}s exceeds recording of "
                    f"{params.nframes / params.framerate:.3f}s"
                )

            source.setpos(start_frame)
            frames = source.readframes(frame_count)
    except (wave.Error, EOFError) as e:
        raise TrimError(f"Failed to read WAV buffer: {e}") from e

    output = io.BytesIO()
    with wave.open(output, "wb") as target:
        target.setnchannels(params.nchannels)
        target.setsampwidth(params.sampwidth)
        target.setframerate(params.framerate)
        target.writeframes(frames)

    logger.debug(
        f"✂️ Trimmed recording to {start_offset:.2f}s+{duration:.2f}s "
        f"({len(buffer)} -> {len(output.getvalue())} bytes)"
    )
    return output.getvalue()
