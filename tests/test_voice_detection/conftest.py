"""Shared fixtures for voice detection tests."""

import io
import math
import threading
import time
import wave
from collections.abc import Callable
from typing import Any

import numpy as np
import pytest

from interview_voice.voice_detection.exceptions import AudioCaptureError
from interview_voice.voice_detection.interfaces import AudioRecorder, Scheduler

EPSILON = 1e-9


def make_wav(duration: float, sample_rate: int = 16000, amplitude: float = 0.0) -> bytes:
    """Build a mono 16-bit WAV file holding a 440 Hz tone (silence at amplitude 0)."""
    frames = int(round(duration * sample_rate))
    t = np.arange(frames) / sample_rate
    samples = (amplitude * 32767 * np.sin(2 * math.pi * 440 * t)).astype("<i2")
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(samples.tobytes())
    return buffer.getvalue()


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _ManualTimer:
    def __init__(self, deadline: float, sequence: int, message: Any) -> None:
        self.deadline = deadline
        self.sequence = sequence
        self.message = message
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Collects timers and hands back the due ones on request."""

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._timers: list[_ManualTimer] = []
        self._sequence = 0

    def call_later(self, delay: float, message: Any) -> _ManualTimer:
        self._sequence += 1
        timer = _ManualTimer(self._clock() + delay, self._sequence, message)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[_ManualTimer]:
        return [timer for timer in self._timers if not timer.cancelled]

    def pop_due(self, until: float) -> list[_ManualTimer]:
        due = sorted(
            (t for t in self._timers if not t.cancelled and t.deadline <= until + EPSILON),
            key=lambda t: (t.deadline, t.sequence),
        )
        self._timers = [t for t in self._timers if t not in due]
        return due


class ScenarioRunner:
    """
    Feeds a level script to a state machine tick by tick.

    ``level_at`` receives the absolute clock time of each tick.
    Timers due at or before a tick are delivered before that tick's level,
    with the clock set to their deadline.
    """

    def __init__(self, clock: ManualClock, scheduler: ManualScheduler) -> None:
        self.clock = clock
        self.scheduler = scheduler
        self.decisions: list[tuple[float, Any]] = []
        self._last_tick: float | None = None

    def run(
        self,
        machine: Any,
        level_at: Callable[[float], float],
        until: float,
        tick: float = 0.05,
    ) -> list[tuple[float, Any]]:
        start = self._last_tick if self._last_tick is not None else self.clock()
        first = 0 if self._last_tick is None else 1
        steps = int(round((until - start) / tick))
        for i in range(first, steps + 1):
            t = start + i * tick
            self._last_tick = t
            self.deliver_timers(machine, t)
            self.clock.now = t
            decision = machine.process_level(level_at(t))
            if decision is not None:
                self.decisions.append((t, decision))
        return self.decisions

    def deliver_timers(self, machine: Any, until: float) -> None:
        for timer in self.scheduler.pop_due(until):
            self.clock.now = max(self.clock.now, timer.deadline)
            decision = machine.handle_timer(timer.message)
            if decision is not None:
                self.decisions.append((self.clock.now, decision))


class FakeRecorder(AudioRecorder):
    """
    Scripted capture session.

    ``levels(session, elapsed)`` returns the dBFS reading for the given
    capture session (0-based) at ``elapsed`` seconds after it was opened.
    ``start_delays`` maps a start attempt (0-based) to seconds the opening
    thread blocks, and the first ``level_errors`` meter reads raise.
    Failed starts raise ``start_exception`` when given.
    """

    def __init__(
        self,
        levels: Callable[[int, float], float] | None = None,
        start_failures: set[int] | None = None,
        audio_override: bytes | None = None,
        start_delays: dict[int, float] | None = None,
        level_errors: int = 0,
        start_exception: Exception | None = None,
    ) -> None:
        self._levels = levels or (lambda session, elapsed: -55.0)
        self._start_failures = start_failures or set()
        self._audio_override = audio_override
        self._start_delays = start_delays or {}
        self._level_errors = level_errors
        self._start_exception = start_exception
        self._lock = threading.Lock()
        self._recording = False
        self._started_at = 0.0
        self.session = -1
        self.start_calls = 0
        self.stop_calls = 0
        self.samples_read = 0

    def start_recording(self) -> None:
        with self._lock:
            attempt = self.start_calls
            self.start_calls += 1
        time.sleep(self._start_delays.get(attempt, 0.0))
        with self._lock:
            if attempt in self._start_failures:
                raise self._start_exception or AudioCaptureError("Failed to open audio stream: device busy")
            self.session += 1
            self._recording = True
            self._started_at = time.monotonic()

    def stop_recording(self) -> bytes:
        with self._lock:
            self.stop_calls += 1
            if not self._recording:
                return b""
            self._recording = False
            elapsed = time.monotonic() - self._started_at
        if self._audio_override is not None:
            return self._audio_override
        return make_wav(elapsed, amplitude=0.1)

    def is_recording(self) -> bool:
        return self._recording

    def next_level_sample(self) -> float:
        with self._lock:
            if self._level_errors > 0:
                self._level_errors -= 1
                raise OSError("Input overflowed")
            if not self._recording:
                return -160.0
            self.samples_read += 1
            return self._levels(self.session, time.monotonic() - self._started_at)


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at zero."""
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    """Manual scheduler bound to the manual clock."""
    return ManualScheduler(clock)


@pytest.fixture
def runner(clock: ManualClock, scheduler: ManualScheduler) -> ScenarioRunner:
    """Tick-by-tick scenario runner."""
    return ScenarioRunner(clock, scheduler)


@pytest.fixture
def fake_recorder_factory() -> Callable[..., FakeRecorder]:
    """Factory for scripted recorders."""
    return FakeRecorder


@pytest.fixture
def wav_factory() -> Callable[..., bytes]:
    """Factory for synthetic WAV buffers."""
    return make_wav
