"""Data models for voice detection functionality."""

from dataclasses import dataclass, field

from .exceptions import VoiceDetectionError


@dataclass(frozen=True)
class CalibrationResult:
    """Outcome of a successful noise calibration run."""

    noise_level: float
    recommended_threshold: float
    samples_collected: int
    duration: float

    @property
    def description(self) -> str:
        return (
            f"Noise: {self.noise_level:.3f}, Threshold: {self.recommended_threshold:.3f}, "
            f"Samples: {self.samples_collected}, Duration: {self.duration:.1f}s"
        )


@dataclass(frozen=True)
class CalibrationStatus:
    """Base class for the calibration lifecycle states."""

    @property
    def is_completed(self) -> bool:
        return False

    @property
    def is_failed(self) -> bool:
        return False


@dataclass(frozen=True)
class CalibrationNotStarted(CalibrationStatus):
    """No calibration has been run yet."""


@dataclass(frozen=True)
class CalibrationInProgress(CalibrationStatus):
    """Calibration is collecting samples."""

    progress: float = 0.0


@dataclass(frozen=True)
class CalibrationCompleted(CalibrationStatus):
    """Calibration finished with enough samples."""

    noise_level: float
    result: CalibrationResult | None = None

    @property
    def is_completed(self) -> bool:
        return True


@dataclass(frozen=True)
class CalibrationFailed(CalibrationStatus):
    """Calibration ended without a usable estimate."""

    error: VoiceDetectionError
    samples_collected: int = 0

    @property
    def is_failed(self) -> bool:
        return True

    @property
    def reason(self) -> str:
        return str(self.error)


@dataclass(frozen=True)
class NoiseAnalyzerConfig:
    """
    Tuning for the adaptive noise analyzer.

    Use the named constructors rather than spelling out the values so the
    presets stay in step when fields are added.
    """

    calibration_duration: float
    min_calibration_samples: int
    snr_threshold_db: float
    min_signal_above_noise: float
    noise_smoothing_factor: float
    statistical_window_size: int
    max_acceptable_noise_level: float
    min_absolute_audio_level: float

    def __post_init__(self) -> None:
        if self.calibration_duration <= 0:
            raise ValueError("Calibration duration must be positive")
        if self.min_calibration_samples <= 0:
            raise ValueError("Minimum calibration samples must be positive")
        if not 0.0 <= self.noise_smoothing_factor <= 1.0:
            raise ValueError("Noise smoothing factor must be between 0.0 and 1.0")
        if self.statistical_window_size <= 0:
            raise ValueError("Statistical window size must be positive")
        if not 0.0 < self.min_absolute_audio_level < 1.0:
            raise ValueError("Minimum absolute audio level must be between 0.0 and 1.0")

    @classmethod
    def default(cls) -> "NoiseAnalyzerConfig":
        return cls(
            calibration_duration=2.0,
            min_calibration_samples=20,
            snr_threshold_db=6.0,
            min_signal_above_noise=0.05,
            noise_smoothing_factor=0.1,
            statistical_window_size=10,
            max_acceptable_noise_level=0.3,
            min_absolute_audio_level=0.02,
        )

    @classmethod
    def sensitive(cls) -> "NoiseAnalyzerConfig":
        """Picks up quieter speech at the cost of more false positives."""
        return cls(
            calibration_duration=2.0,
            min_calibration_samples=20,
            snr_threshold_db=3.0,
            min_signal_above_noise=0.03,
            noise_smoothing_factor=0.15,
            statistical_window_size=10,
            max_acceptable_noise_level=0.4,
            min_absolute_audio_level=0.015,
        )

    @classmethod
    def strict(cls) -> "NoiseAnalyzerConfig":
        """Fewer false positives, longer calibration."""
        return cls(
            calibration_duration=3.0,
            min_calibration_samples=30,
            snr_threshold_db=10.0,
            min_signal_above_noise=0.08,
            noise_smoothing_factor=0.05,
            statistical_window_size=15,
            max_acceptable_noise_level=0.2,
            min_absolute_audio_level=0.03,
        )

    @classmethod
    def preset(cls, name: str) -> "NoiseAnalyzerConfig":
        """
        Look up a preset by name.

        Raises:
            ValueError: If the name is not one of default, sensitive, strict
        """
        presets = {
            "default": cls.default,
            "sensitive": cls.sensitive,
            "strict": cls.strict,
        }
        if name not in presets:
            raise ValueError(
                f"Unknown noise analyzer preset: {name}. "
                f"Available presets: {', '.join(presets)}"
            )
        return presets[name]()


@dataclass(frozen=True)
class NoiseAnalysisResult:
    """Per-sample classification produced by the adaptive noise analyzer."""

    audio_level: float
    noise_level: float
    snr_db: float
    is_voice_detected: bool
    confidence: float
    adaptive_threshold: float
    calibration_status: CalibrationStatus

    @property
    def description(self) -> str:
        return (
            f"Level: {self.audio_level:.3f}, Noise: {self.noise_level:.3f}, "
            f"SNR: {self.snr_db:.1f} dB, Voice: {'YES' if self.is_voice_detected else 'NO'}, "
            f"Confidence: {self.confidence:.2f}, Threshold: {self.adaptive_threshold:.3f}"
        )


@dataclass
class Utterance:
    """
    One continuous speech segment.

    Times are clock readings. ``silence_confirmed_time`` is the moment the
    silence that later got confirmed began, so the span between the two
    times covers speech only.
    """

    capture_start_time: float
    start_time: float
    silence_confirmed_time: float
    raw_audio: bytes = field(default=b"", repr=False)

    @property
    def start_offset(self) -> float:
        """Seconds from the start of the capture to the start of speech."""
        return max(0.0, self.start_time - self.capture_start_time)

    @property
    def duration(self) -> float:
        return max(0.0, self.silence_confirmed_time - self.start_time)


@dataclass(frozen=True)
class VoiceEvent:
    """Base class for events emitted by the voice activity detector."""


@dataclass(frozen=True)
class SpeechStarted(VoiceEvent):
    """The level crossed the speech threshold."""

    timestamp: float


@dataclass(frozen=True)
class SpeechEnded(VoiceEvent):
    """Silence was confirmed after speech; carries the utterance audio."""

    audio: bytes = field(repr=False)
    duration: float
    trimmed: bool = True


@dataclass(frozen=True)
class VoiceError(VoiceEvent):
    """The capture session failed and the detector went back to idle."""

    error: Exception
