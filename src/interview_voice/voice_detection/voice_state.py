"""Voice activity state machine driven by level samples and timer messages."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count

from .config import (
    CALIBRATION_DELAY,
    DEFAULT_MIN_SPEECH_LEVEL,
    DEFAULT_SILENCE_TIMEOUT,
    DEFAULT_SPEECH_START_THRESHOLD,
    LEVEL_LOG_INTERVAL,
    MAX_RECORDING_DURATION,
    MIN_SPEECH_DURATION,
    SILENCE_FALLBACK_GRACE,
)
from .interfaces import Scheduler, TimerHandle
from .logging_utils import get_logger
from .models import CalibrationInProgress, NoiseAnalysisResult, Utterance
from .noise_analyzer import AdaptiveNoiseAnalyzer

logger = get_logger(__name__)


# Timer messages


@dataclass(frozen=True)
class CalibrationGateElapsed:
    """The settling delay after opening the capture is over."""

    token: int


@dataclass(frozen=True)
class SilenceTimerElapsed:
    """A silence timer (primary or fallback) fired."""

    token: int


@dataclass(eq=False)
class SilenceTimer:
    """
    One armed silence timer.

    The primary and fallback handles share the token, so whichever fires
    first confirms the silence and the other is cancelled or ignored.
    """

    token: int
    started_at: float
    timeout: float
    handles: tuple[TimerHandle, ...] = ()

    def cancel(self) -> None:
        for handle in self.handles:
            handle.cancel()


@dataclass(eq=False)
class GateTimer:
    token: int
    handle: TimerHandle

    def cancel(self) -> None:
        self.handle.cancel()


# States


@dataclass(frozen=True)
class VadState:
    """Base class for detector states."""

    @property
    def is_recording(self) -> bool:
        return False

    @property
    def calibrating(self) -> bool:
        return False

    @property
    def speech_active(self) -> bool:
        return False


@dataclass(frozen=True)
class Idle(VadState):
    """No capture session is open."""


@dataclass(frozen=True)
class Recording(VadState):
    capture_start_time: float

    @property
    def is_recording(self) -> bool:
        return True


@dataclass(frozen=True)
class Calibrating(Recording):
    """Capture is open but the microphone is still settling; levels are ignored."""

    gate: GateTimer | None = None

    @property
    def calibrating(self) -> bool:
        return True


@dataclass(frozen=True)
class AwaitingSpeech(Recording):
    """Listening for the level to cross the speech threshold."""


@dataclass(frozen=True)
class SpeechActive(Recording):
    """Speech is in progress."""

    speech_start_time: float = 0.0

    @property
    def speech_active(self) -> bool:
        return True


@dataclass(frozen=True)
class SilencePending(SpeechActive):
    """Speech went quiet; the silence timer decides whether it ended."""

    timer: SilenceTimer | None = None


# Decisions


@dataclass(frozen=True)
class Decision:
    """Base class for what the driver has to act on."""


@dataclass(frozen=True)
class SpeechOnset(Decision):
    timestamp: float


@dataclass(frozen=True)
class UtteranceReady(Decision):
    """Silence was confirmed after long enough speech; the capture must be stopped."""

    utterance: Utterance


@dataclass(frozen=True)
class UtteranceDiscarded(Decision):
    """Silence was confirmed after too short a burst; capture continues."""

    duration: float


@dataclass(frozen=True)
class RecordingExpired(Decision):
    """
    The capture hit the maximum recording duration.

    ``utterance`` holds the speech so far when it was long enough to keep.
    """

    utterance: Utterance | None = None


class VoiceStateMachine:
    """
    Decides speech start and end from a stream of normalized levels.

    The machine is synchronous and owns no threads or tasks. Timers are
    armed through the injected scheduler, which delivers the timer messages
    back to the owner; the owner passes them to ``handle_timer``. Every
    timer carries a token and messages whose token no longer matches the
    current state are dropped, so a stale timer can never end an utterance.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        clock: Callable[[], float] = time.monotonic,
        speech_start_threshold: float = None,
        silence_timeout: float = None,
        min_speech_level: float = None,
        min_speech_duration: float = None,
        max_recording_duration: float = None,
        calibration_delay: float = None,
        fallback_grace: float = None,
        noise_analyzer: AdaptiveNoiseAnalyzer | None = None,
    ) -> None:
        """
        Initialize the state machine.

        Args:
            scheduler: Arms the calibration gate and silence timers
            clock: Monotonic time source
            speech_start_threshold: Level that starts an utterance (0.0-1.0)
            silence_timeout: Seconds of silence that end an utterance
            min_speech_level: Floor applied to whichever threshold is in force
            min_speech_duration: Shorter utterances are discarded
            max_recording_duration: Capture length that forces a restart
            calibration_delay: Settling time after a capture opens
            fallback_grace: Extra delay of the fallback silence timer
            noise_analyzer: Optional analyzer whose adaptive threshold takes
                over once it is calibrated

        Raises:
            ValueError: If any of the values is out of range
        """
        self._scheduler = scheduler
        self._clock = clock
        self._noise_analyzer = noise_analyzer

        self.speech_start_threshold = _validate_level(
            "Speech start threshold",
            speech_start_threshold
            if speech_start_threshold is not None
            else DEFAULT_SPEECH_START_THRESHOLD,
        )
        self.silence_timeout = _validate_positive(
            "Silence timeout",
            silence_timeout if silence_timeout is not None else DEFAULT_SILENCE_TIMEOUT,
        )
        self.min_speech_level = _validate_level(
            "Minimum speech level",
            min_speech_level if min_speech_level is not None else DEFAULT_MIN_SPEECH_LEVEL,
        )
        self.min_speech_duration = (
            min_speech_duration if min_speech_duration is not None else MIN_SPEECH_DURATION
        )
        self.max_recording_duration = _validate_positive(
            "Maximum recording duration",
            max_recording_duration
            if max_recording_duration is not None
            else MAX_RECORDING_DURATION,
        )
        self.calibration_delay = (
            calibration_delay if calibration_delay is not None else CALIBRATION_DELAY
        )
        self.fallback_grace = fallback_grace if fallback_grace is not None else SILENCE_FALLBACK_GRACE
        if self.min_speech_duration < 0 or self.calibration_delay < 0 or self.fallback_grace < 0:
            raise ValueError("Durations must not be negative")

        self._state: VadState = Idle()
        self._tokens = count(1)
        self._audio_level = 0.0
        self._last_analysis: NoiseAnalysisResult | None = None
        self._last_level_log = 0.0

    # Observables

    @property
    def state(self) -> VadState:
        return self._state

    @property
    def audio_level(self) -> float:
        return self._audio_level

    @property
    def speech_detected(self) -> bool:
        return self._state.speech_active

    @property
    def last_analysis(self) -> NoiseAnalysisResult | None:
        return self._last_analysis

    @property
    def noise_analyzer(self) -> AdaptiveNoiseAnalyzer | None:
        return self._noise_analyzer

    @property
    def effective_threshold(self) -> float:
        """
        The single threshold that speech start and end are judged against.

        The analyzer's adaptive threshold is used once it is calibrated,
        the configured threshold otherwise. Either way it never drops below
        the minimum speech level.
        """
        threshold = self.speech_start_threshold
        if self._noise_analyzer is not None and self._noise_analyzer.is_calibrated:
            threshold = self._noise_analyzer.current_threshold
        return max(threshold, self.min_speech_level)

    @property
    def silence_timer_active(self) -> bool:
        return isinstance(self._state, SilencePending)

    @property
    def silence_timer_elapsed(self) -> float:
        if not isinstance(self._state, SilencePending):
            return 0.0
        return max(0.0, self._clock() - self._state.timer.started_at)

    @property
    def silence_timer_progress(self) -> float:
        """Fraction of the silence timeout that has passed (0.0 when no timer runs)."""
        if not isinstance(self._state, SilencePending):
            return 0.0
        return min(1.0, self.silence_timer_elapsed / self._state.timer.timeout)

    # Configuration

    def update_threshold(self, threshold: float) -> None:
        """
        Replace the configured speech start threshold.

        Takes effect from the next level sample.

        Raises:
            ValueError: If threshold is outside 0.0-1.0
        """
        self.speech_start_threshold = _validate_level("Speech start threshold", threshold)
        logger.debug(f"🎚️ Speech threshold set to {threshold:.3f}")

    def update_silence_timeout(self, timeout: float) -> None:
        """
        Replace the silence timeout.

        A timer that is already running keeps its original timeout.

        Raises:
            ValueError: If timeout is not positive
        """
        self.silence_timeout = _validate_positive("Silence timeout", timeout)
        logger.debug(f"⏱️ Silence timeout set to {timeout:.2f}s")

    def update_min_speech_level(self, level: float) -> None:
        """
        Replace the minimum speech level.

        Raises:
            ValueError: If level is outside 0.0-1.0
        """
        self.min_speech_level = _validate_level("Minimum speech level", level)
        logger.debug(f"🎚️ Minimum speech level set to {level:.3f}")

    # Transitions

    def begin_recording(self) -> None:
        """
        Enter the calibration gate for a freshly opened capture.

        Also starts the analyzer's calibration when it has none yet.
        """
        self._cancel_timers()
        now = self._clock()

        if self._noise_analyzer is not None and not (
            self._noise_analyzer.is_calibrated
            or isinstance(self._noise_analyzer.calibration_status, CalibrationInProgress)
        ):
            self._noise_analyzer.start_calibration()

        if self.calibration_delay <= 0:
            self._state = AwaitingSpeech(capture_start_time=now)
            logger.debug("👂 Listening for speech")
            return

        token = next(self._tokens)
        handle = self._scheduler.call_later(self.calibration_delay, CalibrationGateElapsed(token))
        self._state = Calibrating(capture_start_time=now, gate=GateTimer(token, handle))
        logger.debug(f"🎚️ Waiting {self.calibration_delay:.1f}s for the microphone to settle")

    def reset(self) -> None:
        """Cancel all timers and go back to Idle."""
        self._cancel_timers()
        self._state = Idle()
        self._audio_level = 0.0

    def process_level(self, level: float) -> Decision | None:
        """
        Feed one normalized level sample.

        Args:
            level: Audio level (0.0-1.0)

        Returns:
            What the owner has to act on, or None
        """
        now = self._clock()
        self._audio_level = level
        if self._noise_analyzer is not None:
            self._last_analysis = self._noise_analyzer.analyze(level)

        state = self._state
        if not isinstance(state, Recording):
            return None

        expired = self._check_max_duration(state, now)
        if expired is not None:
            return expired

        if isinstance(state, Calibrating):
            logger.trace(f"Level {level:.3f} ignored while calibrating")
            return None

        threshold = self.effective_threshold
        above = level > threshold
        self._log_level(now, level, threshold, above)

        if isinstance(state, SilencePending):
            if above:
                state.timer.cancel()
                self._state = SpeechActive(
                    capture_start_time=state.capture_start_time,
                    speech_start_time=state.speech_start_time,
                )
                logger.trace(f"🗣️ Speech resumed after {now - state.timer.started_at:.2f}s")
            return None

        if isinstance(state, SpeechActive):
            if not above:
                self._arm_silence_timer(state, now)
            return None

        if above:
            self._state = SpeechActive(capture_start_time=state.capture_start_time, speech_start_time=now)
            logger.debug(f"🗣️ Speech started (level {level:.3f} > {threshold:.3f})")
            return SpeechOnset(timestamp=now)
        return None

    def handle_timer(self, message: object) -> Decision | None:
        """
        Act on a timer message delivered by the scheduler.

        Messages for timers that have been cancelled or replaced are ignored.

        Returns:
            What the owner has to act on, or None
        """
        state = self._state

        if isinstance(message, CalibrationGateElapsed):
            if isinstance(state, Calibrating) and state.gate is not None and state.gate.token == message.token:
                self._state = AwaitingSpeech(capture_start_time=state.capture_start_time)
                logger.debug("👂 Microphone settled, listening for speech")
            else:
                logger.trace(f"Ignoring stale calibration gate {message.token}")
            return None

        if isinstance(message, SilenceTimerElapsed):
            if isinstance(state, SilencePending) and state.timer.token == message.token:
                state.timer.cancel()
                return self._confirm_silence(state)
            logger.trace(f"Ignoring stale silence timer {message.token}")
            return None

        logger.warning(f"Unknown timer message: {message!r}")
        return None

    # Internals

    def _arm_silence_timer(self, state: SpeechActive, now: float) -> None:
        token = next(self._tokens)
        message = SilenceTimerElapsed(token)
        timeout = self.silence_timeout
        handles = (
            self._scheduler.call_later(timeout, message),
            self._scheduler.call_later(timeout + self.fallback_grace, message),
        )
        self._state = SilencePending(
            capture_start_time=state.capture_start_time,
            speech_start_time=state.speech_start_time,
            timer=SilenceTimer(token=token, started_at=now, timeout=timeout, handles=handles),
        )
        logger.trace(f"🤫 Silence timer armed ({timeout:.2f}s)")

    def _confirm_silence(self, state: SilencePending) -> Decision:
        utterance = Utterance(
            capture_start_time=state.capture_start_time,
            start_time=state.speech_start_time,
            silence_confirmed_time=state.timer.started_at,
        )

        if utterance.duration < self.min_speech_duration:
            self._state = AwaitingSpeech(capture_start_time=state.capture_start_time)
            logger.debug(
                f"🔇 Discarding {utterance.duration:.2f}s burst "
                f"(shorter than {self.min_speech_duration:.2f}s)"
            )
            return UtteranceDiscarded(duration=utterance.duration)

        self._state = Idle()
        logger.debug(f"🔚 Speech ended after {utterance.duration:.2f}s")
        return UtteranceReady(utterance=utterance)

    def _check_max_duration(self, state: Recording, now: float) -> RecordingExpired | None:
        if now - state.capture_start_time < self.max_recording_duration:
            return None

        utterance = None
        if isinstance(state, SpeechActive):
            silence_at = state.timer.started_at if isinstance(state, SilencePending) else now
            candidate = Utterance(
                capture_start_time=state.capture_start_time,
                start_time=state.speech_start_time,
                silence_confirmed_time=silence_at,
            )
            if candidate.duration >= self.min_speech_duration:
                utterance = candidate

        self._cancel_timers()
        self._state = Idle()
        logger.warning(
            f"⚠️ Recording reached {self.max_recording_duration:.0f}s limit"
            + (f", delivering {utterance.duration:.2f}s of speech" if utterance else ", restarting")
        )
        return RecordingExpired(utterance=utterance)

    def _cancel_timers(self) -> None:
        state = self._state
        if isinstance(state, Calibrating) and state.gate is not None:
            state.gate.cancel()
        elif isinstance(state, SilencePending) and state.timer is not None:
            state.timer.cancel()

    def _log_level(self, now: float, level: float, threshold: float, above: bool) -> None:
        logger.trace(f"Level {level:.3f} (threshold {threshold:.3f})")
        if now - self._last_level_log >= LEVEL_LOG_INTERVAL:
            self._last_level_log = now
            logger.debug(
                f"🎤 Audio level {level:.3f}, threshold {threshold:.3f}, "
                f"{'above' if above else 'below'}, state {type(self._state).__name__}"
            )


def _validate_level(name: str, value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")
    return value


def _validate_positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value
