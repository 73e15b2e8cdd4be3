"""Asyncio voice activity detector built on the voice state machine."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .audio_trimmer import trim
from .config import LEVEL_SAMPLE_INTERVAL
from .exceptions import AudioCaptureError, TrimError
from .interfaces import AudioRecorder, Scheduler, TimerHandle
from .level_sampler import sample
from .logging_utils import get_logger
from .models import (
    CalibrationResult,
    NoiseAnalysisResult,
    SpeechEnded,
    SpeechStarted,
    Utterance,
    VoiceError,
    VoiceEvent,
)
from .noise_analyzer import AdaptiveNoiseAnalyzer
from .recorder_utils import start_recording
from .voice_state import (
    Decision,
    RecordingExpired,
    SpeechOnset,
    UtteranceDiscarded,
    UtteranceReady,
    VadState,
    VoiceStateMachine,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class _LevelTick:
    level: float


class _InboxScheduler(Scheduler):
    """Delivers timer messages into the detector's inbox on the running loop."""

    def __init__(self, detector: "VoiceActivityDetector") -> None:
        self._detector = detector

    def call_later(self, delay: float, message: Any) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self._detector._post, message)


class VoiceActivityDetector:
    """
    Listens to a capture session and emits speech start and end events.

    All level ticks and timer firings go through one inbox consumed by a
    single owner task, so the state machine is only ever touched from one
    place. The sampler task only reads the meter and posts levels.
    """

    def __init__(
        self,
        recorder: AudioRecorder,
        speech_start_threshold: float = None,
        silence_timeout: float = None,
        min_speech_level: float = None,
        min_speech_duration: float = None,
        max_recording_duration: float = None,
        calibration_delay: float = None,
        sample_interval: float = None,
        noise_analyzer: AdaptiveNoiseAnalyzer | None = None,
        audio_debugger: Any | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the voice activity detector.

        Args:
            recorder: Capture session owned by this detector
            speech_start_threshold: Level that starts an utterance (0.0-1.0)
            silence_timeout: Seconds of silence that end an utterance
            min_speech_level: Floor applied to the speech threshold
            min_speech_duration: Shorter utterances are discarded
            max_recording_duration: Capture length that forces a restart
            calibration_delay: Settling time after each capture start
            sample_interval: Seconds between level samples
            noise_analyzer: Optional adaptive analyzer fed with every sample
            audio_debugger: Optional AudioDebugger that saves delivered utterances
            clock: Monotonic time source

        Raises:
            ValueError: If any of the values is out of range
        """
        self._recorder = recorder
        self._audio_debugger = audio_debugger
        self.sample_interval = sample_interval if sample_interval is not None else LEVEL_SAMPLE_INTERVAL
        if self.sample_interval <= 0:
            raise ValueError("Sample interval must be positive")

        self._machine = VoiceStateMachine(
            scheduler=_InboxScheduler(self),
            clock=clock,
            speech_start_threshold=speech_start_threshold,
            silence_timeout=silence_timeout,
            min_speech_level=min_speech_level,
            min_speech_duration=min_speech_duration,
            max_recording_duration=max_recording_duration,
            calibration_delay=calibration_delay,
            noise_analyzer=noise_analyzer,
        )

        self._listening = False
        self._paused = False
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._owner_task: asyncio.Task | None = None
        self._sampler_task: asyncio.Task | None = None
        self._event_callback: Callable[[VoiceEvent], None] | None = None

        # Debug tracking
        self._speech_starts = 0
        self._utterances_delivered = 0
        self._utterances_discarded = 0
        self._capture_restarts = 0
        self._errors = 0

    # Observables

    @property
    def recorder(self) -> AudioRecorder:
        return self._recorder

    @property
    def state(self) -> VadState:
        return self._machine.state

    @property
    def audio_level(self) -> float:
        return self._machine.audio_level

    @property
    def speech_detected(self) -> bool:
        return self._machine.speech_detected

    @property
    def effective_threshold(self) -> float:
        return self._machine.effective_threshold

    @property
    def silence_timer_active(self) -> bool:
        return self._machine.silence_timer_active

    @property
    def silence_timer_elapsed(self) -> float:
        return self._machine.silence_timer_elapsed

    @property
    def silence_timer_progress(self) -> float:
        return self._machine.silence_timer_progress

    @property
    def last_analysis(self) -> NoiseAnalysisResult | None:
        return self._machine.last_analysis

    @property
    def noise_analyzer(self) -> AdaptiveNoiseAnalyzer | None:
        return self._machine.noise_analyzer

    def is_listening(self) -> bool:
        return self._listening

    def is_paused(self) -> bool:
        return self._paused

    def set_voice_event_callback(self, callback: Callable[[VoiceEvent], None]) -> None:
        """
        Set the consumer of SpeechStarted, SpeechEnded and VoiceError events.

        Args:
            callback: Called on the event loop for every event
        """
        self._event_callback = callback

    # Hot reload

    def update_threshold(self, threshold: float) -> None:
        self._machine.update_threshold(threshold)

    def update_silence_timeout(self, timeout: float) -> None:
        self._machine.update_silence_timeout(timeout)

    def update_min_speech_level(self, level: float) -> None:
        self._machine.update_min_speech_level(level)

    def apply_calibration(self, result: CalibrationResult) -> None:
        """Use a calibration's recommended threshold as the speech threshold."""
        self._machine.update_threshold(result.recommended_threshold)
        logger.info(f"🎚️ Applied calibration: {result.description}")

    # Lifecycle

    async def start_listening(self) -> None:
        """
        Open the capture and start detecting speech.

        A capture failure is reported as a VoiceError event and leaves the
        detector idle.
        """
        if self._listening:
            logger.warning("Voice detector is already listening")
            return

        self._listening = True
        self._paused = False
        if not await self._open_capture():
            self._listening = False
            return
        if not self._listening:
            # stop_listening() ran while the capture was opening
            self._machine.reset()
            await asyncio.to_thread(self._recorder.stop_recording)
            return

        self._owner_task = asyncio.create_task(self._run())
        self._sampler_task = asyncio.create_task(self._sample_levels())
        logger.info("👂 Voice detector listening")

    async def stop_listening(self) -> None:
        """Stop detecting and discard whatever is being recorded. Safe to call repeatedly."""
        if not self._listening and self._owner_task is None and self._sampler_task is None:
            return

        self._listening = False
        self._paused = False

        for task in (self._sampler_task, self._owner_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sampler_task = None
        self._owner_task = None

        self._machine.reset()
        self._drain_inbox()

        try:
            await asyncio.to_thread(self._recorder.stop_recording)
        except Exception as e:
            logger.error(f"Error stopping audio capture: {e}")

        logger.info("🛑 Voice detector stopped")

    def pause_listening(self) -> None:
        """Stop sampling levels without closing the capture."""
        if self._listening and not self._paused:
            self._paused = True
            logger.debug("⏸️ Level sampling paused")

    def resume_listening(self) -> None:
        """Resume sampling levels after pause_listening()."""
        if self._listening and self._paused:
            self._paused = False
            logger.debug("▶️ Level sampling resumed")

    def get_debug_stats(self) -> dict[str, Any]:
        """
        Get debug statistics for troubleshooting.

        Returns:
            Dictionary with detector state and counters
        """
        stats = {
            "listening": self._listening,
            "paused": self._paused,
            "state": type(self._machine.state).__name__,
            "audio_level": self._machine.audio_level,
            "effective_threshold": self._machine.effective_threshold,
            "silence_timeout": self._machine.silence_timeout,
            "silence_timer_progress": self._machine.silence_timer_progress,
            "speech_starts": self._speech_starts,
            "utterances_delivered": self._utterances_delivered,
            "utterances_discarded": self._utterances_discarded,
            "capture_restarts": self._capture_restarts,
            "errors": self._errors,
        }
        analyzer = self._machine.noise_analyzer
        if analyzer is not None:
            stats["noise_level"] = analyzer.current_noise_level
            stats["analyzer_calibrated"] = analyzer.is_calibrated
        if hasattr(self._recorder, "get_debug_stats"):
            stats["recorder"] = self._recorder.get_debug_stats()
        return stats

    # Owner task

    def _post(self, message: Any) -> None:
        self._inbox.put_nowait(message)

    def _drain_inbox(self) -> None:
        while not self._inbox.empty():
            self._inbox.get_nowait()

    async def _sample_levels(self) -> None:
        failing = False
        while True:
            await asyncio.sleep(self.sample_interval)
            if self._paused:
                continue
            try:
                raw_power_db = self._recorder.next_level_sample()
            except Exception as e:
                self._errors += 1
                # One log line per run of failures
                if not failing:
                    logger.error(f"❌ Error reading audio level: {e}")
                failing = True
                continue
            if failing:
                logger.info("✅ Audio level readings recovered")
                failing = False
            self._post(_LevelTick(sample(raw_power_db)))

    async def _run(self) -> None:
        while self._listening:
            message = await self._inbox.get()
            try:
                if isinstance(message, _LevelTick):
                    decision = self._machine.process_level(message.level)
                else:
                    decision = self._machine.handle_timer(message)
                if decision is not None:
                    await self._apply(decision)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._errors += 1
                logger.error(f"❌ Error in voice detection loop: {e}", exc_info=True)

    async def _apply(self, decision: Decision) -> None:
        if isinstance(decision, SpeechOnset):
            self._speech_starts += 1
            self._emit(SpeechStarted(timestamp=decision.timestamp))
        elif isinstance(decision, UtteranceDiscarded):
            self._utterances_discarded += 1
        elif isinstance(decision, UtteranceReady):
            await self._deliver(decision.utterance)
            await self._restart_capture()
        elif isinstance(decision, RecordingExpired):
            if decision.utterance is not None:
                await self._deliver(decision.utterance)
            else:
                await asyncio.to_thread(self._recorder.stop_recording)
            await self._restart_capture()

    async def _deliver(self, utterance: Utterance) -> None:
        audio = await asyncio.to_thread(self._recorder.stop_recording)
        utterance.raw_audio = audio
        if not audio:
            self._utterances_discarded += 1
            logger.warning("⚠️ Recording was empty, discarding utterance")
            return

        try:
            clip = trim(audio, utterance.start_offset, utterance.duration)
            trimmed = True
        except TrimError as e:
            logger.warning(f"⚠️ Could not trim utterance, delivering full recording: {e}")
            clip = audio
            trimmed = False

        if self._audio_debugger:
            self._audio_debugger.save_utterance(clip)

        self._utterances_delivered += 1
        logger.info(f"🗣️ Utterance captured: {utterance.duration:.2f}s ({len(clip)} bytes)")
        self._emit(SpeechEnded(audio=clip, duration=utterance.duration, trimmed=trimmed))

    async def _restart_capture(self) -> None:
        if not self._listening:
            return
        self._capture_restarts += 1
        if not await self._open_capture():
            self._listening = False
            if self._sampler_task and not self._sampler_task.done():
                self._sampler_task.cancel()

    async def _open_capture(self) -> bool:
        try:
            await start_recording(self._recorder)
        except AudioCaptureError as e:
            self._capture_failed(e)
            return False
        except Exception as e:
            logger.error(f"❌ Unexpected error opening audio capture: {e}", exc_info=True)
            self._capture_failed(AudioCaptureError(f"Failed to start recording: {e}"))
            return False

        self._drain_inbox()
        self._machine.begin_recording()
        return True

    def _capture_failed(self, error: AudioCaptureError) -> None:
        self._errors += 1
        logger.error(f"❌ Audio capture error: {error}")
        self._machine.reset()
        self._emit(VoiceError(error=error))

    def _emit(self, event: VoiceEvent) -> None:
        if self._event_callback:
            try:
                self._event_callback(event)
            except Exception as e:
                logger.error(f"Error in voice event callback: {e}")
