"""Tests for the voice activity state machine."""

import random

import pytest

from interview_voice.voice_detection.models import NoiseAnalyzerConfig
from interview_voice.voice_detection.noise_analyzer import AdaptiveNoiseAnalyzer
from interview_voice.voice_detection.voice_state import (
    AwaitingSpeech,
    Calibrating,
    CalibrationGateElapsed,
    Idle,
    RecordingExpired,
    SilencePending,
    SilenceTimerElapsed,
    SpeechActive,
    SpeechOnset,
    UtteranceDiscarded,
    UtteranceReady,
    VoiceStateMachine,
)

QUIET = 0.02
LOUD = 0.4


def speech_between(*spans: tuple[float, float], loud: float = LOUD, quiet: float = QUIET):
    """Level script that is loud inside the given (start, end) spans, inclusive."""

    def level_at(t: float) -> float:
        for start, end in spans:
            if start - 1e-6 <= t <= end + 1e-6:
                return loud
        return quiet

    return level_at


def kinds(decisions) -> list[type]:
    return [type(decision) for _, decision in decisions]


@pytest.fixture
def machine(scheduler, clock) -> VoiceStateMachine:
    """State machine with a 1.0s gate, 1.5s silence timeout and 0.2s minimum speech."""
    return VoiceStateMachine(
        scheduler=scheduler,
        clock=clock,
        speech_start_threshold=0.15,
        silence_timeout=1.5,
        min_speech_duration=0.2,
        calibration_delay=1.0,
        max_recording_duration=30.0,
    )


@pytest.mark.unit
class TestVoiceStateMachineConfiguration:
    """Test cases for construction and hot reload."""

    def test_defaults(self, scheduler, clock) -> None:
        """Test the machine starts idle with the documented defaults."""
        machine = VoiceStateMachine(scheduler=scheduler, clock=clock)

        assert isinstance(machine.state, Idle)
        assert machine.speech_start_threshold == 0.15
        assert machine.silence_timeout == 1.5
        assert machine.min_speech_level == 0.04
        assert machine.effective_threshold == 0.15

    def test_invalid_values_rejected(self, scheduler, clock) -> None:
        """Test out-of-range construction values raise ValueError."""
        with pytest.raises(ValueError, match="Speech start threshold"):
            VoiceStateMachine(scheduler, clock, speech_start_threshold=1.5)
        with pytest.raises(ValueError, match="Silence timeout"):
            VoiceStateMachine(scheduler, clock, silence_timeout=0)
        with pytest.raises(ValueError, match="Minimum speech level"):
            VoiceStateMachine(scheduler, clock, min_speech_level=-0.1)

    def test_update_methods_validate(self, machine: VoiceStateMachine) -> None:
        """Test hot reload rejects invalid values and keeps the old ones."""
        with pytest.raises(ValueError):
            machine.update_threshold(2.0)
        with pytest.raises(ValueError):
            machine.update_silence_timeout(-1.0)
        with pytest.raises(ValueError):
            machine.update_min_speech_level(1.1)

        assert machine.speech_start_threshold == 0.15
        assert machine.silence_timeout == 1.5

    def test_min_speech_level_floors_threshold(self, machine: VoiceStateMachine) -> None:
        """Test the minimum speech level acts as a floor, not a second gate."""
        machine.update_min_speech_level(0.3)
        assert machine.effective_threshold == 0.3

        machine.update_min_speech_level(0.01)
        assert machine.effective_threshold == 0.15


@pytest.mark.unit
class TestCalibrationGate:
    """Test cases for the settling delay after a capture opens."""

    def test_begin_recording_enters_calibrating(self, machine, scheduler) -> None:
        """Test a fresh capture starts in the calibrating sub-state."""
        machine.begin_recording()

        assert isinstance(machine.state, Calibrating)
        assert machine.state.is_recording
        assert machine.state.calibrating
        assert not machine.state.speech_active
        assert len(scheduler.pending) == 1

    def test_loud_levels_ignored_while_calibrating(self, machine, runner) -> None:
        """Test nothing is decided from levels during the gate."""
        machine.begin_recording()

        decisions = runner.run(machine, lambda t: 0.9, until=0.95)

        assert decisions == []
        assert isinstance(machine.state, Calibrating)

    def test_gate_expiry_starts_listening(self, machine, runner) -> None:
        """Test the gate timer moves the machine to awaiting speech."""
        machine.begin_recording()
        runner.run(machine, lambda t: QUIET, until=1.0)

        assert isinstance(machine.state, AwaitingSpeech)
        assert not machine.state.calibrating

    def test_stale_gate_message_ignored(self, machine) -> None:
        """Test a gate message with an old token does not end calibration."""
        machine.begin_recording()

        assert machine.handle_timer(CalibrationGateElapsed(token=12345)) is None
        assert isinstance(machine.state, Calibrating)

    def test_zero_delay_skips_gate(self, scheduler, clock) -> None:
        """Test a zero calibration delay listens immediately."""
        machine = VoiceStateMachine(scheduler, clock, calibration_delay=0.0)
        machine.begin_recording()

        assert isinstance(machine.state, AwaitingSpeech)
        assert scheduler.pending == []


@pytest.mark.unit
class TestUtteranceDetection:
    """Test cases for speech start and confirmed end."""

    def test_single_utterance(self, machine, runner) -> None:
        """Test speech from 1.0s to 1.75s ends 1.5s after the silence began."""
        machine.begin_recording()

        decisions = runner.run(machine, speech_between((1.0, 1.75)), until=4.0)

        assert kinds(decisions) == [SpeechOnset, UtteranceReady]
        onset_time, onset = decisions[0]
        ready_time, ready = decisions[1]
        assert onset_time == pytest.approx(1.0)
        assert onset.timestamp == pytest.approx(1.0)
        assert ready_time == pytest.approx(3.3)
        assert ready.utterance.start_offset == pytest.approx(1.0)
        assert ready.utterance.duration == pytest.approx(0.8)
        assert isinstance(machine.state, Idle)

    def test_speech_detected_follows_state(self, machine, runner) -> None:
        """Test speech_detected stays true while silence is pending."""
        machine.begin_recording()

        runner.run(machine, speech_between((1.0, 1.75)), until=1.5)
        assert isinstance(machine.state, SpeechActive)
        assert machine.speech_detected

        runner.run(machine, speech_between((1.0, 1.75)), until=2.0)
        assert isinstance(machine.state, SilencePending)
        assert machine.speech_detected

    def test_short_burst_discarded(self, machine, runner) -> None:
        """Test speech shorter than the minimum never produces an utterance."""
        machine.begin_recording()

        decisions = runner.run(machine, speech_between((1.0, 1.1)), until=4.0)

        assert kinds(decisions) == [SpeechOnset, UtteranceDiscarded]
        assert decisions[1][1].duration == pytest.approx(0.15)
        assert isinstance(machine.state, AwaitingSpeech)

    def test_listening_continues_after_discard(self, machine, runner) -> None:
        """Test a discarded burst is followed by normal detection."""
        machine.begin_recording()

        decisions = runner.run(machine, speech_between((1.0, 1.1), (3.0, 4.0)), until=6.0)

        assert kinds(decisions) == [SpeechOnset, UtteranceDiscarded, SpeechOnset, UtteranceReady]
        utterance = decisions[3][1].utterance
        assert utterance.start_offset == pytest.approx(3.0)
        assert utterance.duration == pytest.approx(1.05)

    def test_resumed_speech_cancels_silence_timer(self, machine, runner) -> None:
        """Test a pause shorter than the timeout keeps one utterance."""
        machine.begin_recording()
        script = speech_between((1.0, 1.5), (2.05, 2.5))

        decisions = runner.run(machine, script, until=6.0)

        assert kinds(decisions) == [SpeechOnset, UtteranceReady]
        assert decisions[1][0] == pytest.approx(4.05)
        assert decisions[1][1].utterance.duration == pytest.approx(1.55)

    def test_cancelled_timer_message_is_stale(self, machine, runner) -> None:
        """Test a timer whose silence was interrupted cannot end the utterance."""
        machine.begin_recording()
        script = speech_between((1.0, 1.5), (2.05, 3.0))

        runner.run(machine, script, until=1.6)
        token = machine.state.timer.token
        runner.run(machine, script, until=2.1)

        assert machine.handle_timer(SilenceTimerElapsed(token)) is None
        assert isinstance(machine.state, SpeechActive)

    def test_fallback_timer_confirms_silence(self, machine, runner) -> None:
        """Test the fallback timer ends the utterance when the primary never fires."""
        machine.begin_recording()
        script = speech_between((1.0, 1.75))

        runner.run(machine, script, until=1.8)
        primary, fallback = machine.state.timer.handles
        primary.cancel()

        decisions = runner.run(machine, script, until=4.0)

        assert kinds(decisions) == [SpeechOnset, UtteranceReady]
        assert decisions[1][0] == pytest.approx(3.55)
        assert decisions[1][1].utterance.duration == pytest.approx(0.8)

    def test_second_timer_of_pair_is_ignored(self, machine, runner, scheduler) -> None:
        """Test only one of the primary and fallback timers takes effect."""
        machine.begin_recording()
        script = speech_between((1.0, 1.75))

        runner.run(machine, script, until=1.8)
        token = machine.state.timer.token
        runner.run(machine, script, until=3.3)

        assert scheduler.pending == []
        assert machine.handle_timer(SilenceTimerElapsed(token)) is None

    def test_unknown_timer_message_ignored(self, machine) -> None:
        """Test unexpected messages do not change the state."""
        machine.begin_recording()

        assert machine.handle_timer("tick") is None
        assert isinstance(machine.state, Calibrating)

    def test_threshold_update_applies_on_next_tick(self, machine, runner) -> None:
        """Test a raised threshold keeps a moderate level from starting speech."""
        machine.begin_recording()
        machine.update_threshold(0.5)

        decisions = runner.run(machine, lambda t: LOUD, until=2.0)

        assert decisions == []
        assert isinstance(machine.state, AwaitingSpeech)

    def test_silence_timer_progress(self, machine, runner, clock) -> None:
        """Test progress and elapsed time of a pending silence timer."""
        machine.begin_recording()
        runner.run(machine, speech_between((1.0, 1.75)), until=1.8)

        assert machine.silence_timer_active
        assert machine.silence_timer_progress == pytest.approx(0.0)

        clock.now = 2.55
        assert machine.silence_timer_elapsed == pytest.approx(0.75)
        assert machine.silence_timer_progress == pytest.approx(0.5)

    def test_silence_timer_inactive_without_pending_silence(self, machine) -> None:
        """Test the timer observables read zero when nothing is pending."""
        assert not machine.silence_timer_active
        assert machine.silence_timer_progress == 0.0
        assert machine.silence_timer_elapsed == 0.0

    def test_running_timer_keeps_its_timeout(self, machine, runner) -> None:
        """Test a timeout change does not affect the timer already armed."""
        machine.begin_recording()
        script = speech_between((1.0, 1.75))

        runner.run(machine, script, until=1.8)
        machine.update_silence_timeout(0.5)
        decisions = runner.run(machine, script, until=4.0)

        assert decisions[-1][0] == pytest.approx(3.3)

    def test_reset_cancels_timers(self, machine, runner, scheduler) -> None:
        """Test reset goes idle and leaves no live timers."""
        machine.begin_recording()
        runner.run(machine, speech_between((1.0, 1.75)), until=1.8)

        machine.reset()

        assert isinstance(machine.state, Idle)
        assert scheduler.pending == []
        assert machine.process_level(LOUD) is None


@pytest.mark.unit
class TestMaximumRecordingDuration:
    """Test cases for the capture length limit."""

    def test_expiry_delivers_speech_in_progress(self, scheduler, clock, runner) -> None:
        """Test speech still going at the limit is handed over."""
        machine = VoiceStateMachine(
            scheduler, clock, calibration_delay=1.0, max_recording_duration=5.0
        )
        machine.begin_recording()

        decisions = runner.run(machine, speech_between((1.0, 10.0)), until=5.0)

        assert kinds(decisions) == [SpeechOnset, RecordingExpired]
        utterance = decisions[1][1].utterance
        assert utterance is not None
        assert utterance.duration == pytest.approx(4.0)
        assert isinstance(machine.state, Idle)

    def test_expiry_without_speech(self, scheduler, clock, runner) -> None:
        """Test a silent capture expires without an utterance."""
        machine = VoiceStateMachine(
            scheduler, clock, calibration_delay=1.0, max_recording_duration=5.0
        )
        machine.begin_recording()

        decisions = runner.run(machine, lambda t: QUIET, until=5.0)

        assert kinds(decisions) == [RecordingExpired]
        assert decisions[0][1].utterance is None
        assert scheduler.pending == []

    def test_expiry_during_pending_silence_uses_silence_onset(
        self, scheduler, clock, runner
    ) -> None:
        """Test the utterance ends where the pending silence began."""
        machine = VoiceStateMachine(
            scheduler, clock, calibration_delay=1.0, max_recording_duration=5.0
        )
        machine.begin_recording()

        decisions = runner.run(machine, speech_between((1.0, 4.0)), until=5.0)

        assert kinds(decisions) == [SpeechOnset, RecordingExpired]
        assert decisions[1][1].utterance.duration == pytest.approx(3.05)


@pytest.mark.unit
class TestAdaptiveThreshold:
    """Test cases for the optional noise analyzer."""

    @pytest.fixture
    def analyzer(self, clock) -> AdaptiveNoiseAnalyzer:
        config = NoiseAnalyzerConfig(
            calibration_duration=0.5,
            min_calibration_samples=5,
            snr_threshold_db=6.0,
            min_signal_above_noise=0.05,
            noise_smoothing_factor=0.1,
            statistical_window_size=10,
            max_acceptable_noise_level=0.3,
            min_absolute_audio_level=0.02,
        )
        return AdaptiveNoiseAnalyzer(config, clock=clock)

    def test_configured_threshold_until_calibrated(self, scheduler, clock, analyzer) -> None:
        """Test the configured threshold is used while the analyzer calibrates."""
        machine = VoiceStateMachine(scheduler, clock, noise_analyzer=analyzer)
        machine.begin_recording()

        assert not analyzer.is_calibrated
        assert machine.effective_threshold == 0.15

    def test_analyzer_threshold_after_calibration(
        self, scheduler, clock, runner, analyzer
    ) -> None:
        """Test the adaptive threshold takes over once calibration completes."""
        machine = VoiceStateMachine(
            scheduler, clock, noise_analyzer=analyzer, min_speech_level=0.01
        )
        machine.begin_recording()

        runner.run(machine, lambda t: QUIET, until=1.0)

        assert analyzer.is_calibrated
        assert machine.last_analysis is not None
        assert machine.effective_threshold == pytest.approx(analyzer.current_threshold)
        assert machine.effective_threshold < 0.15

    def test_calibrated_analyzer_not_restarted(self, scheduler, clock, runner, analyzer) -> None:
        """Test a new capture keeps an existing calibration."""
        machine = VoiceStateMachine(scheduler, clock, noise_analyzer=analyzer)
        machine.begin_recording()
        runner.run(machine, lambda t: QUIET, until=1.0)
        status = analyzer.calibration_status

        machine.begin_recording()

        assert analyzer.calibration_status is status


def random_levels(seed: int, ticks: int) -> list[float]:
    """Bursty level sequence: loud and quiet runs of random length with jitter."""
    rng = random.Random(seed)
    levels = []
    loud = False
    for _ in range(ticks):
        if rng.random() < 0.15:
            loud = not loud
        levels.append(rng.uniform(0.2, 0.9) if loud else rng.uniform(0.0, 0.12))
    return levels


@pytest.mark.unit
class TestRandomLevelSequences:
    """Test cases feeding seeded random level sequences through a restarting machine."""

    TICK = 0.05
    TICKS = 1200

    @pytest.mark.parametrize("seed", [1, 7, 42, 2024, 31337])
    def test_speech_onsets_are_always_closed(self, seed, scheduler, clock, runner) -> None:
        """Test every onset is closed by exactly one end decision before the next onset."""
        levels = random_levels(seed, self.TICKS)
        machine = VoiceStateMachine(
            scheduler,
            clock,
            speech_start_threshold=0.15,
            silence_timeout=0.3,
            min_speech_duration=0.2,
            calibration_delay=0.1,
            max_recording_duration=3.0,
        )
        machine.begin_recording()

        seen = 0
        for i in range(self.TICKS):
            runner.run(machine, lambda t: levels[int(round(t / self.TICK))], until=i * self.TICK)
            for _, decision in runner.decisions[seen:]:
                if isinstance(decision, (UtteranceReady, RecordingExpired)):
                    machine.begin_recording()
            seen = len(runner.decisions)
            # At most one gate or one primary/fallback silence pair is armed
            assert len(scheduler.pending) <= 2

        speech_open = False
        onsets = 0
        for _, decision in runner.decisions:
            if isinstance(decision, SpeechOnset):
                assert not speech_open
                speech_open = True
                onsets += 1
            elif isinstance(decision, (UtteranceReady, UtteranceDiscarded)):
                assert speech_open
                speech_open = False
            elif isinstance(decision, RecordingExpired):
                speech_open = False

        assert onsets > 0
