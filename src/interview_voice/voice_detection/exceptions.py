"""Custom exceptions for voice detection functionality."""


class VoiceDetectionError(Exception):
    """Base exception for voice detection errors."""

    pass


class AudioCaptureError(VoiceDetectionError):
    """Exception raised when the capture device cannot be opened or read."""

    pass


class MicrophoneNotFoundError(AudioCaptureError):
    """Exception raised when no microphone is found."""

    pass


class CalibrationError(VoiceDetectionError):
    """Base exception for noise calibration failures."""

    pass


class InsufficientSamplesError(CalibrationError):
    """Calibration ended before enough level samples were collected."""

    def __init__(self, samples_collected: int, required: int) -> None:
        self.samples_collected = samples_collected
        self.required = required
        super().__init__(
            f"Insufficient calibration samples: {samples_collected} < {required}"
        )


class CalibrationCancelledError(CalibrationError):
    """Calibration was stopped before it finished."""

    pass


class TrimError(VoiceDetectionError):
    """Exception raised when an utterance cannot be cut out of a recording."""

    pass
