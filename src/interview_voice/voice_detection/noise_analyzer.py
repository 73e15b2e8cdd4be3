"""Adaptive noise-floor tracking and SNR-based voice classification."""

import math
import time
from collections import deque
from collections.abc import Callable

import numpy as np

from .calibration import NoiseCalibrator
from .config import (
    ADAPTIVE_STDDEV_MARGIN,
    ADAPTIVE_THRESHOLD_CEILING,
    CONFIDENCE_LEVEL_MARGIN_RATIO,
    CONFIDENCE_LEVEL_WEIGHT,
    CONFIDENCE_REJECT_MARGIN_RATIO,
    CONFIDENCE_SNR_MARGIN_DB,
    CONFIDENCE_SNR_WEIGHT,
    NOISE_ESTIMATE_HEADROOM,
    NOISE_LIKELIHOOD_STDDEVS,
    SNR_MIN_NOISE_LEVEL,
    SNR_SILENT_ROOM_DB,
)
from .logging_utils import get_logger
from .models import (
    CalibrationCompleted,
    CalibrationInProgress,
    CalibrationNotStarted,
    CalibrationStatus,
    NoiseAnalysisResult,
    NoiseAnalyzerConfig,
)

logger = get_logger(__name__)


class AdaptiveNoiseAnalyzer:
    """
    Tracks the ambient noise floor and classifies levels as voice or noise.

    Nothing is classified as voice until calibration has completed. After
    that the noise estimate follows the room through exponential smoothing,
    but only with samples that look like noise, so speech cannot drag the
    floor upwards.

    Not thread-safe: feed it from a single owner.
    """

    def __init__(
        self,
        config: NoiseAnalyzerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the analyzer.

        Args:
            config: Analyzer tuning, NoiseAnalyzerConfig.default() if omitted
            clock: Monotonic time source used for calibration timing
        """
        self.config = config or NoiseAnalyzerConfig.default()
        self._clock = clock
        self._calibrator = self._new_calibrator()

        self._audio_history: deque[float] = deque(maxlen=self.config.statistical_window_size * 2)
        self._noise_history: deque[float] = deque(maxlen=self.config.statistical_window_size)

        self._estimated_noise_level = 0.0
        self._adaptive_threshold = 0.0
        self._mean_level = 0.0
        self._std_dev_level = 0.0
        self._peak_level = 0.0
        self._status: CalibrationStatus = CalibrationNotStarted()

    def _new_calibrator(self) -> NoiseCalibrator:
        return NoiseCalibrator(
            duration=self.config.calibration_duration,
            min_samples=self.config.min_calibration_samples,
            clock=self._clock,
        )

    @property
    def calibration_status(self) -> CalibrationStatus:
        return self._status

    @property
    def is_calibrated(self) -> bool:
        return isinstance(self._status, CalibrationCompleted)

    @property
    def current_threshold(self) -> float:
        return self._adaptive_threshold

    @property
    def current_noise_level(self) -> float:
        return self._estimated_noise_level

    @property
    def mean_level(self) -> float:
        return self._mean_level

    @property
    def std_dev_level(self) -> float:
        return self._std_dev_level

    @property
    def peak_level(self) -> float:
        return self._peak_level

    def start_calibration(self) -> None:
        """Begin collecting calibration samples from subsequent analyze() calls."""
        self._audio_history.clear()
        self._noise_history.clear()
        self._estimated_noise_level = 0.0
        self._calibrator = self._new_calibrator()
        self._calibrator.start()
        self._status = self._calibrator.status
        logger.debug(f"🎚️ Noise analyzer calibrating for {self.config.calibration_duration:.1f}s")

    def stop_calibration(self) -> None:
        """Abandon a running calibration."""
        if isinstance(self._status, CalibrationInProgress):
            self._status = self._calibrator.cancel()
            logger.debug("🛑 Noise analyzer calibration stopped")

    def reset(self) -> None:
        """Forget calibration and statistics."""
        self._calibrator = self._new_calibrator()
        self._audio_history.clear()
        self._noise_history.clear()
        self._estimated_noise_level = 0.0
        self._adaptive_threshold = 0.0
        self._mean_level = 0.0
        self._std_dev_level = 0.0
        self._peak_level = 0.0
        self._status = CalibrationNotStarted()

    def analyze(self, level: float) -> NoiseAnalysisResult:
        """
        Analyze one audio level sample.

        Args:
            level: Normalized audio level (0.0-1.0)

        Returns:
            Classification of the sample against the current noise estimate
        """
        self._audio_history.append(level)

        if isinstance(self._status, CalibrationInProgress):
            self._status = self._calibrator.add_sample(level)
            if self._calibrator.should_finish():
                self._complete_calibration()

        self._update_noise_estimate(level)
        self._calculate_statistics()
        self._adaptive_threshold = self._calculate_adaptive_threshold()

        # Noise never sits above the threshold built on top of it
        if self._estimated_noise_level > self._adaptive_threshold:
            self._estimated_noise_level = self._adaptive_threshold

        snr = self.signal_to_noise(level)
        is_voice, confidence = self._detect_voice(level, snr)

        return NoiseAnalysisResult(
            audio_level=level,
            noise_level=self._estimated_noise_level,
            snr_db=snr,
            is_voice_detected=is_voice,
            confidence=confidence,
            adaptive_threshold=self._adaptive_threshold,
            calibration_status=self._status,
        )

    def is_environment_too_noisy(self) -> bool:
        """Check whether the noise estimate exceeds the acceptable level."""
        return self._estimated_noise_level > self.config.max_acceptable_noise_level

    def signal_to_noise(self, level: float) -> float:
        """
        SNR of ``level`` against the current noise estimate, in dB.

        A near-zero noise estimate reports SNR_SILENT_ROOM_DB; levels at or
        below the noise estimate report 0 dB.
        """
        if self._estimated_noise_level <= SNR_MIN_NOISE_LEVEL:
            return SNR_SILENT_ROOM_DB
        if level <= self._estimated_noise_level:
            return 0.0
        return 20.0 * math.log10(level / self._estimated_noise_level)

    def _complete_calibration(self) -> None:
        status = self._calibrator.finish()
        if not isinstance(status, CalibrationCompleted):
            self._status = status
            logger.warning(f"⚠️ Noise analyzer calibration failed: {status.reason}")
            return

        floor = status.result.noise_level
        self._estimated_noise_level = min(
            floor * NOISE_ESTIMATE_HEADROOM, self.config.max_acceptable_noise_level
        )
        self._status = CalibrationCompleted(
            noise_level=self._estimated_noise_level, result=status.result
        )
        logger.debug(f"✅ Noise analyzer calibrated: noise={self._estimated_noise_level:.3f}")

        if self.is_environment_too_noisy():
            logger.warning(
                f"⚠️ Environment is noisy (noise level {self._estimated_noise_level:.3f})"
            )

    def _update_noise_estimate(self, level: float) -> None:
        if not self.is_calibrated:
            return

        recent_min = min(self._audio_history) if self._audio_history else 0.0
        is_likely_noise = abs(level - recent_min) < self._std_dev_level * NOISE_LIKELIHOOD_STDDEVS

        if is_likely_noise or level < self._estimated_noise_level:
            alpha = self.config.noise_smoothing_factor
            self._estimated_noise_level = alpha * level + (1.0 - alpha) * self._estimated_noise_level

        self._noise_history.append(self._estimated_noise_level)

    def _calculate_statistics(self) -> None:
        samples = list(self._audio_history) if self.is_calibrated else self._calibrator.samples
        if not samples:
            return

        values = np.asarray(samples, dtype=np.float64)
        self._mean_level = float(values.mean())
        if len(values) > 1:
            self._std_dev_level = float(values.std(ddof=1))
        self._peak_level = max(self._peak_level, float(values.max()))

    def _calculate_adaptive_threshold(self) -> float:
        base = self._estimated_noise_level + self.config.min_signal_above_noise
        if self.is_calibrated:
            threshold = (
                max(base, self.config.min_absolute_audio_level)
                + self._std_dev_level * ADAPTIVE_STDDEV_MARGIN
            )
        else:
            threshold = base
        return min(max(threshold, self.config.min_absolute_audio_level), ADAPTIVE_THRESHOLD_CEILING)

    def _detect_voice(self, level: float, snr: float) -> tuple[bool, float]:
        if not self.is_calibrated:
            return False, 0.0
        if level < self.config.min_absolute_audio_level:
            return False, 0.0

        threshold = self._adaptive_threshold
        is_voice = level > threshold and snr >= self.config.snr_threshold_db

        if is_voice:
            level_confidence = min(1.0, (level - threshold) / (threshold * CONFIDENCE_LEVEL_MARGIN_RATIO))
            snr_confidence = min(1.0, (snr - self.config.snr_threshold_db) / CONFIDENCE_SNR_MARGIN_DB)
            confidence = (
                level_confidence * CONFIDENCE_LEVEL_WEIGHT + snr_confidence * CONFIDENCE_SNR_WEIGHT
            )
        elif level < threshold:
            confidence = min(1.0, (threshold - level) / (threshold * CONFIDENCE_REJECT_MARGIN_RATIO))
        else:
            confidence = 0.0

        return is_voice, max(0.0, min(1.0, confidence))
