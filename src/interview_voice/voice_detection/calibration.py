"""Ambient noise calibration for the voice detector."""

import asyncio
import time
from collections.abc import Callable

import numpy as np

from .config import (
    CALIBRATION_DURATION,
    CALIBRATION_EARLY_EXIT_FACTOR,
    CALIBRATION_MAX_THRESHOLD,
    CALIBRATION_MIN_THRESHOLD,
    CALIBRATION_PROGRESS_INTERVAL,
    CALIBRATION_SAMPLE_INTERVAL,
    CALIBRATION_THRESHOLD_MARGIN,
    MIN_CALIBRATION_SAMPLES,
    NOISE_FLOOR_PERCENTILE,
)
from .exceptions import AudioCaptureError, CalibrationCancelledError, InsufficientSamplesError
from .interfaces import AudioRecorder
from .level_sampler import sample
from .logging_utils import get_logger
from .models import (
    CalibrationCompleted,
    CalibrationFailed,
    CalibrationInProgress,
    CalibrationNotStarted,
    CalibrationResult,
    CalibrationStatus,
)
from .recorder_utils import start_recording

logger = get_logger(__name__)


def noise_floor(samples: list[float]) -> float:
    """
    Return the 90th percentile of the samples.

    The upper percentile keeps short dips from hiding a steady background
    hum while a handful of spikes still cannot dominate it.
    """
    ordered = np.sort(np.asarray(samples, dtype=np.float64))
    index = min(int(len(ordered) * NOISE_FLOOR_PERCENTILE), len(ordered) - 1)
    return float(ordered[index])


class NoiseCalibrator:
    """
    Collects level samples for a fixed duration and derives a threshold.

    The calibrator does not sample on its own; levels are pushed in at the
    sampler's cadence. It finishes when the duration elapses, or early once
    ``CALIBRATION_EARLY_EXIT_FACTOR`` times the minimum sample count has been
    collected. Early exit trades a little statistical robustness for a
    faster start; at the default cadence both limits coincide.
    """

    def __init__(
        self,
        duration: float = None,
        min_samples: int = None,
        threshold_margin: float = None,
        min_threshold: float = None,
        max_threshold: float = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the calibrator.

        Args:
            duration: Sampling phase length in seconds
            min_samples: Samples required for a usable result
            threshold_margin: Level added on top of the noise floor
            min_threshold: Lowest threshold that may be recommended
            max_threshold: Highest threshold that may be recommended
            clock: Monotonic time source

        Raises:
            ValueError: If any of the values is out of range
        """
        self.duration = duration if duration is not None else CALIBRATION_DURATION
        self.min_samples = min_samples if min_samples is not None else MIN_CALIBRATION_SAMPLES
        self.threshold_margin = (
            threshold_margin if threshold_margin is not None else CALIBRATION_THRESHOLD_MARGIN
        )
        self.min_threshold = min_threshold if min_threshold is not None else CALIBRATION_MIN_THRESHOLD
        self.max_threshold = max_threshold if max_threshold is not None else CALIBRATION_MAX_THRESHOLD

        if self.duration <= 0:
            raise ValueError("Calibration duration must be positive")
        if self.min_samples <= 0:
            raise ValueError("Minimum sample count must be positive")
        if not 0.0 <= self.min_threshold <= self.max_threshold <= 1.0:
            raise ValueError("Threshold bounds must satisfy 0 <= min <= max <= 1")

        self._clock = clock
        self._samples: list[float] = []
        self._started_at: float | None = None
        self._status: CalibrationStatus = CalibrationNotStarted()

    @property
    def status(self) -> CalibrationStatus:
        return self._status

    @property
    def samples(self) -> list[float]:
        return list(self._samples)

    @property
    def samples_collected(self) -> int:
        return len(self._samples)

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    @property
    def progress(self) -> float:
        """Fraction of the sampling phase that has elapsed, capped at 1.0."""
        if self._started_at is None:
            return 0.0
        return min(1.0, self.elapsed / self.duration)

    def start(self) -> None:
        """Discard previous samples and begin a new sampling phase."""
        self._samples.clear()
        self._started_at = self._clock()
        self._status = CalibrationInProgress(progress=0.0)
        logger.debug(f"🎚️ Calibration started ({self.duration:.1f}s, min {self.min_samples} samples)")

    def add_sample(self, level: float) -> CalibrationStatus:
        """
        Record one level sample.

        Samples pushed outside of a running phase are ignored.

        Returns:
            The current status
        """
        if not isinstance(self._status, CalibrationInProgress):
            return self._status

        self._samples.append(level)
        self._status = CalibrationInProgress(progress=self.progress)
        return self._status

    def should_finish(self) -> bool:
        """Check whether the phase has run long enough or has plenty of data."""
        if not isinstance(self._status, CalibrationInProgress):
            return False
        if self.elapsed >= self.duration:
            return True
        return len(self._samples) >= self.min_samples * CALIBRATION_EARLY_EXIT_FACTOR

    def finish(self) -> CalibrationStatus:
        """
        Close the sampling phase and compute the result.

        Returns:
            CalibrationCompleted carrying the result, or CalibrationFailed
            with an InsufficientSamplesError when too few samples arrived
        """
        duration = self.elapsed
        collected = len(self._samples)

        if collected < self.min_samples:
            error = InsufficientSamplesError(collected, self.min_samples)
            logger.warning(f"⚠️ Calibration failed: {error}")
            self._status = CalibrationFailed(error=error, samples_collected=collected)
            return self._status

        floor = noise_floor(self._samples)
        recommended = max(self.min_threshold, min(self.max_threshold, floor + self.threshold_margin))
        if floor > recommended:
            logger.warning(
                f"⚠️ Noise floor {floor:.3f} is above the highest usable threshold "
                f"{recommended:.3f}; environment is too noisy for reliable detection"
            )
        result = CalibrationResult(
            noise_level=min(floor, recommended),
            recommended_threshold=recommended,
            samples_collected=collected,
            duration=duration,
        )
        self._status = CalibrationCompleted(noise_level=result.noise_level, result=result)
        logger.debug(f"✅ Calibration complete: {result.description}")
        return self._status

    def cancel(self) -> CalibrationStatus:
        """Abort a running phase."""
        collected = len(self._samples)
        self._status = CalibrationFailed(
            error=CalibrationCancelledError("Calibration was cancelled"),
            samples_collected=collected,
        )
        return self._status


class AudioCalibrationManager:
    """Runs a calibration with its own capture session."""

    def __init__(
        self,
        recorder: AudioRecorder,
        sample_interval: float = None,
        progress_interval: float = None,
        min_samples: int = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the calibration manager.

        Args:
            recorder: Capture session used while calibrating
            sample_interval: Seconds between level samples
            progress_interval: Seconds between progress callbacks
            min_samples: Samples required for a usable result
            clock: Monotonic time source
        """
        self._recorder = recorder
        self.sample_interval = (
            sample_interval if sample_interval is not None else CALIBRATION_SAMPLE_INTERVAL
        )
        self.progress_interval = (
            progress_interval if progress_interval is not None else CALIBRATION_PROGRESS_INTERVAL
        )
        self.min_samples = min_samples if min_samples is not None else MIN_CALIBRATION_SAMPLES
        if self.sample_interval <= 0:
            raise ValueError("Sample interval must be positive")
        if self.progress_interval <= 0:
            raise ValueError("Progress interval must be positive")

        self._clock = clock
        self._cancel_requested = asyncio.Event()

        self.is_calibrating = False
        self.calibration_progress = 0.0
        self.current_noise_level = 0.0
        self.last_calibration_result: CalibrationResult | None = None
        self.last_status: CalibrationStatus = CalibrationNotStarted()

        self._progress_callback: Callable[[float], None] | None = None
        self._complete_callback: Callable[[CalibrationStatus], None] | None = None

    def set_progress_callback(self, callback: Callable[[float], None]) -> None:
        """Receive progress (0.0-1.0) at the progress interval."""
        self._progress_callback = callback

    def set_calibration_complete_callback(
        self, callback: Callable[[CalibrationStatus], None]
    ) -> None:
        """Receive the final status of every run."""
        self._complete_callback = callback

    async def calibrate_noise_level(self, duration: float = None) -> CalibrationStatus:
        """
        Listen to the room and recommend a speech threshold.

        The capture session is stopped and its recording discarded on every
        exit path.

        Args:
            duration: Sampling phase length in seconds

        Returns:
            CalibrationCompleted with the result, or CalibrationFailed
        """
        if self.is_calibrating:
            raise RuntimeError("Calibration already in progress")

        calibrator = NoiseCalibrator(duration=duration, min_samples=self.min_samples, clock=self._clock)
        logger.info(f"🎚️ Starting noise calibration for {calibrator.duration:.1f}s")

        self._cancel_requested.clear()
        self.is_calibrating = True
        self.calibration_progress = 0.0
        self.current_noise_level = 0.0

        try:
            try:
                await start_recording(self._recorder)
            except AudioCaptureError as e:
                logger.error(f"❌ Could not open microphone for calibration: {e}")
                status: CalibrationStatus = CalibrationFailed(error=e)
                return self._finish(status)

            try:
                status = await self._collect(calibrator)
            finally:
                await asyncio.to_thread(self._recorder.stop_recording)
            return self._finish(status)
        finally:
            self.is_calibrating = False

    def stop_calibration(self) -> None:
        """Ask a running calibration to stop; it ends as cancelled."""
        if self.is_calibrating:
            logger.debug("🛑 Calibration stop requested")
            self._cancel_requested.set()

    async def _collect(self, calibrator: NoiseCalibrator) -> CalibrationStatus:
        calibrator.start()
        last_progress_report = self._clock()

        while not calibrator.should_finish():
            if self._cancel_requested.is_set():
                return calibrator.cancel()

            await asyncio.sleep(self.sample_interval)
            if self._cancel_requested.is_set():
                return calibrator.cancel()

            level = sample(self._recorder.next_level_sample())
            calibrator.add_sample(level)
            self.current_noise_level = level

            now = self._clock()
            if now - last_progress_report >= self.progress_interval:
                last_progress_report = now
                self._report_progress(calibrator.progress)

        return calibrator.finish()

    def _report_progress(self, progress: float) -> None:
        self.calibration_progress = progress
        logger.trace(f"🎚️ Calibration progress: {progress:.0%}")
        if self._progress_callback:
            try:
                self._progress_callback(progress)
            except Exception as e:
                logger.error(f"Error in calibration progress callback: {e}")

    def _finish(self, status: CalibrationStatus) -> CalibrationStatus:
        self.last_status = status
        self.calibration_progress = 1.0
        if isinstance(status, CalibrationCompleted):
            self.last_calibration_result = status.result
            logger.info(f"✅ Calibration complete: {status.result.description}")
        else:
            logger.warning(f"⚠️ Calibration did not complete: {status.reason}")

        if self._complete_callback:
            try:
                self._complete_callback(status)
            except Exception as e:
                logger.error(f"Error in calibration complete callback: {e}")
        return status
