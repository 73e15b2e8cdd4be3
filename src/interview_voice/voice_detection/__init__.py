"""Voice activity detection and noise calibration for interview practice."""

from .audio_trimmer import trim
from .calibration import AudioCalibrationManager, NoiseCalibrator, noise_floor
from .exceptions import (
    AudioCaptureError,
    CalibrationCancelledError,
    CalibrationError,
    InsufficientSamplesError,
    MicrophoneNotFoundError,
    TrimError,
    VoiceDetectionError,
)
from .interfaces import AudioRecorder, LevelSource, Scheduler
from .level_sampler import sample
from .models import (
    CalibrationCompleted,
    CalibrationFailed,
    CalibrationInProgress,
    CalibrationNotStarted,
    CalibrationResult,
    CalibrationStatus,
    NoiseAnalysisResult,
    NoiseAnalyzerConfig,
    SpeechEnded,
    SpeechStarted,
    Utterance,
    VoiceError,
    VoiceEvent,
)
from .noise_analyzer import AdaptiveNoiseAnalyzer
from .voice_detector import VoiceActivityDetector
from .voice_state import VoiceStateMachine

__all__ = [
    "AdaptiveNoiseAnalyzer",
    "AudioCalibrationManager",
    "AudioRecorder",
    "LevelSource",
    "NoiseCalibrator",
    "Scheduler",
    "VoiceActivityDetector",
    "VoiceStateMachine",
    "noise_floor",
    "sample",
    "trim",
    "CalibrationCompleted",
    "CalibrationFailed",
    "CalibrationInProgress",
    "CalibrationNotStarted",
    "CalibrationResult",
    "CalibrationStatus",
    "NoiseAnalysisResult",
    "NoiseAnalyzerConfig",
    "SpeechEnded",
    "SpeechStarted",
    "Utterance",
    "VoiceError",
    "VoiceEvent",
    "AudioCaptureError",
    "CalibrationCancelledError",
    "CalibrationError",
    "InsufficientSamplesError",
    "MicrophoneNotFoundError",
    "TrimError",
    "VoiceDetectionError",
]
