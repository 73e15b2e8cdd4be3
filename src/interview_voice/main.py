"""Command-line interface for voice activity detection."""

import argparse
import asyncio
import sys
from pathlib import Path

from .voice_detection.audio_capture import AudioCapture
from .voice_detection.audio_debugger import AudioDebugger
from .voice_detection.calibration import AudioCalibrationManager
from .voice_detection.config import CALIBRATION_DURATION
from .voice_detection.logging_utils import configure_logging, get_logger
from .voice_detection.models import (
    CalibrationCompleted,
    CalibrationStatus,
    NoiseAnalyzerConfig,
    SpeechEnded,
    SpeechStarted,
    VoiceError,
    VoiceEvent,
)
from .voice_detection.noise_analyzer import AdaptiveNoiseAnalyzer
from .voice_detection.voice_detector import VoiceActivityDetector

logger = get_logger(__name__)


class VoiceDetectionCLI:
    """Command-line interface for the voice activity detector."""

    def __init__(
        self,
        detector: VoiceActivityDetector | None = None,
        calibration_manager: AudioCalibrationManager | None = None,
        calibrate_first: bool = False,
        calibration_duration: float | None = None,
    ) -> None:
        """
        Initialize the CLI.

        Args:
            detector: Optional VoiceActivityDetector. If None, one is built on AudioCapture.
            calibration_manager: Optional calibration manager used with calibrate_first
            calibrate_first: Whether to calibrate and apply the result before listening
            calibration_duration: Calibration length in seconds
        """
        self._detector = detector or VoiceActivityDetector(AudioCapture())
        self._calibration_manager = calibration_manager or AudioCalibrationManager(
            self._detector.recorder
        )
        self._calibrate_first = calibrate_first
        self._calibration_duration = calibration_duration
        self._running = False
        self._utterance_count = 0

    @property
    def utterance_count(self) -> int:
        return self._utterance_count

    async def calibrate(self) -> CalibrationStatus:
        """Run one calibration and print the outcome."""
        print("🎚️ Calibrating, please stay quiet...")
        self._calibration_manager.set_progress_callback(self._on_calibration_progress)
        status = await self._calibration_manager.calibrate_noise_level(self._calibration_duration)
        print()
        if isinstance(status, CalibrationCompleted):
            print(f"✅ Calibration complete: {status.result.description}")
        else:
            print(f"❌ Calibration failed: {status.reason}")
        return status

    async def start_listening(self) -> None:
        """Start the voice activity detector."""
        if self._calibrate_first:
            status = await self.calibrate()
            if isinstance(status, CalibrationCompleted):
                self._detector.apply_calibration(status.result)

        print("🎤 Starting voice detection...")
        self._detector.set_voice_event_callback(self._on_voice_event)
        await self._detector.start_listening()

        self._running = self._detector.is_listening()
        if self._running:
            print("✅ Listening for speech. Speak into your microphone!")
            print("   Press Ctrl+C to stop.")

    async def stop_listening(self) -> None:
        """Stop the voice activity detector."""
        if not self._running:
            return

        print("🛑 Stopping voice detection...")
        await self._detector.stop_listening()
        self._running = False

    def _on_calibration_progress(self, progress: float) -> None:
        print(f"\r   {progress:.0%}", end="", flush=True)

    def _on_voice_event(self, event: VoiceEvent) -> None:
        if isinstance(event, SpeechStarted):
            print("🗣️ Speech started")
        elif isinstance(event, SpeechEnded):
            self._utterance_count += 1
            suffix = "" if event.trimmed else " (untrimmed)"
            print(
                f"[{self._utterance_count}] Utterance: {event.duration:.2f}s, "
                f"{len(event.audio)} bytes{suffix}"
            )
        elif isinstance(event, VoiceError):
            print(f"❌ Voice detection error: {event.error}")
            self._running = False

    async def run(self) -> None:
        """
        Main CLI run loop.

        Handles startup, main loop, and graceful shutdown.
        """
        try:
            await self.start_listening()

            while self._running and self._detector.is_listening():
                await asyncio.sleep(0.1)

        except (KeyboardInterrupt, asyncio.CancelledError):
            print("\n👋 Goodbye!")
        except Exception as e:
            print(f"❌ Unexpected error: {e}")
        finally:
            if self._running:
                await self.stop_listening()
            else:
                await self._detector.stop_listening()


def build_detector(args: argparse.Namespace) -> VoiceActivityDetector:
    """
    Build a detector on the default microphone from parsed arguments.

    Args:
        args: Parsed arguments from argparse

    Returns:
        Configured VoiceActivityDetector
    """
    noise_analyzer = None
    if args.adaptive:
        noise_analyzer = AdaptiveNoiseAnalyzer(NoiseAnalyzerConfig.preset(args.preset))

    audio_debugger = None
    if args.debug_audio:
        debug_dir = Path(args.debug_audio_dir) if args.debug_audio_dir else None
        audio_debugger = AudioDebugger(enabled=True, output_dir=debug_dir)

    return VoiceActivityDetector(
        AudioCapture(),
        speech_start_threshold=args.threshold,
        silence_timeout=args.silence_timeout,
        min_speech_level=args.min_speech_level,
        noise_analyzer=noise_analyzer,
        audio_debugger=audio_debugger,
    )


async def main(args: argparse.Namespace) -> None:
    """Main entry point for the CLI application."""
    if args.calibrate:
        cli = VoiceDetectionCLI(calibration_duration=args.calibration_duration)
        await cli.calibrate()
        return

    cli = VoiceDetectionCLI(
        detector=build_detector(args),
        calibrate_first=args.calibrate_first,
        calibration_duration=args.calibration_duration,
    )
    try:
        await cli.run()
    except KeyboardInterrupt:
        pass  # Graceful shutdown already handled in cli.run()


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Interview Voice - detect spoken answers from the microphone",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m interview_voice.main                          # Start with defaults
  python -m interview_voice.main --calibrate              # Measure room noise and exit
  python -m interview_voice.main --calibrate-first        # Calibrate, then listen
  python -m interview_voice.main --adaptive --preset strict  # Adaptive noise tracking
  python -m interview_voice.main --threshold 0.2 --silence-timeout 2.0
  python -m interview_voice.main --verbose                # Enable verbose logging
  python -m interview_voice.main --trace                  # Log every level sample
  python -m interview_voice.main --debug-audio            # Save utterances to WAV files

Controls:
  Ctrl+C    - Stop and exit gracefully

Make sure your microphone is connected and permissions are granted.
        """,
    )

    parser.add_argument(
        "--calibrate",
        action="store_true",
        help="Run a noise calibration, print the recommended threshold and exit",
    )

    parser.add_argument(
        "--calibrate-first",
        action="store_true",
        help="Calibrate before listening and use the recommended threshold",
    )

    parser.add_argument(
        "--calibration-duration",
        type=float,
        default=None,
        metavar="SECONDS",
        help=f"Calibration length (default: {CALIBRATION_DURATION:.1f})",
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Speech start threshold between 0.0 and 1.0 (default: 0.15)",
    )

    parser.add_argument(
        "--silence-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Silence that ends an utterance (default: 1.5)",
    )

    parser.add_argument(
        "--min-speech-level",
        type=float,
        default=None,
        help="Lowest threshold ever used, between 0.0 and 1.0 (default: 0.04)",
    )

    parser.add_argument(
        "--adaptive",
        action="store_true",
        help="Track the noise floor continuously and adapt the threshold",
    )

    parser.add_argument(
        "--preset",
        choices=["default", "sensitive", "strict"],
        default="default",
        help="Noise analyzer tuning used with --adaptive (default: default)",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging and debug information",
    )

    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable trace logging (most verbose, includes every level sample)",
    )

    parser.add_argument(
        "--debug-audio",
        action="store_true",
        help="Enable audio debugging (save delivered utterances to WAV files)",
    )

    parser.add_argument(
        "--debug-audio-dir",
        type=str,
        default=None,
        metavar="PATH",
        help="Custom output directory for audio debug files (default: ~/.cache/interview_voice/utterances)",
    )

    return parser


def handle_arguments(args: argparse.Namespace) -> bool:
    """
    Handle parsed command-line arguments.

    Args:
        args: Parsed arguments from argparse

    Returns:
        True if the arguments are usable, False if execution should stop
    """
    configure_logging(verbose=args.verbose, trace=args.trace)

    for name, value in (("threshold", args.threshold), ("min-speech-level", args.min_speech_level)):
        if value is not None and not 0.0 <= value <= 1.0:
            print(f"❌ --{name} must be between 0.0 and 1.0, got {value}")
            return False

    if args.silence_timeout is not None and args.silence_timeout <= 0:
        print(f"❌ --silence-timeout must be positive, got {args.silence_timeout}")
        return False

    if args.calibration_duration is not None and args.calibration_duration <= 0:
        print(f"❌ --calibration-duration must be positive, got {args.calibration_duration}")
        return False

    return True


def cli_entry_with_args() -> None:
    """CLI entry point with argument parsing."""
    parser = create_argument_parser()

    try:
        args = parser.parse_args()

        if not handle_arguments(args):
            sys.exit(1)

        asyncio.run(main(args))

    except KeyboardInterrupt:
        pass  # Graceful shutdown
    except SystemExit:
        # Re-raise SystemExit (from argparse help, etc.)
        raise
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_entry_with_args()
