"""Abstract interfaces for the platform collaborators of the voice detector."""

from abc import ABC, abstractmethod
from typing import Any, Protocol


class LevelSource(ABC):
    """Anything that can report the instantaneous input power."""

    @abstractmethod
    def next_level_sample(self) -> float:
        """
        Return the current input power.

        Returns:
            Power in dBFS (typically -60..0, lower for digital silence)
        """
        pass


class AudioRecorder(LevelSource):
    """
    Capture session owned exclusively by one detector or calibration run.

    Implementations may block in ``start_recording`` and ``stop_recording``;
    callers run them off the event loop.
    """

    @abstractmethod
    def start_recording(self) -> None:
        """
        Open the device and begin accumulating audio.

        Raises:
            AudioCaptureError: If the device could not be opened
        """
        pass

    @abstractmethod
    def stop_recording(self) -> bytes:
        """
        Stop capturing and hand back everything recorded since the start.

        Must be safe to call when not recording (returns empty bytes).

        Returns:
            WAV container bytes (mono, 16 kHz, 16-bit PCM), or b"" if nothing
            was recorded
        """
        pass

    @abstractmethod
    def is_recording(self) -> bool:
        """Check whether a capture session is open."""
        pass


class TimerHandle(Protocol):
    """Cancellable handle returned by a scheduler."""

    def cancel(self) -> None: ...


class Scheduler(ABC):
    """Schedules one-shot callbacks for the voice state machine."""

    @abstractmethod
    def call_later(self, delay: float, message: Any) -> TimerHandle:
        """
        Arrange for ``message`` to be delivered back to the owner after ``delay`` seconds.

        Returns:
            Handle whose ``cancel()`` prevents delivery if it has not happened
        """
        pass
