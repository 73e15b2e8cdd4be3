"""Audio debugging functionality for saving delivered utterances to WAV files."""

from datetime import datetime
from pathlib import Path

from .audio_trimmer import wav_duration
from .config import AUDIO_DEBUG_DEFAULT_DIR, AUDIO_DEBUG_ENABLED
from .exceptions import TrimError
from .logging_utils import get_logger

logger = get_logger(__name__)


class AudioDebugger:
    """
    Saves every delivered utterance to a WAV file for debugging purposes.

    Listening to what the detector actually cut out of the recording is the
    quickest way to tune thresholds and the silence timeout.

    Attributes:
        output_dir: Directory where audio files will be saved
    """

    def __init__(
        self,
        enabled: bool = AUDIO_DEBUG_ENABLED,
        output_dir: Path | None = None,
    ) -> None:
        """
        Initialize the AudioDebugger.

        Args:
            enabled: Whether to enable audio debugging (default: False)
            output_dir: Directory to save audio files
                (default: ~/.cache/interview_voice/utterances)
        """
        self._enabled = enabled
        self.output_dir = Path(output_dir) if output_dir is not None else AUDIO_DEBUG_DEFAULT_DIR
        self._files_saved = 0

        if self._enabled:
            self._create_output_directory()

    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def files_saved(self) -> int:
        return self._files_saved

    def _create_output_directory(self) -> None:
        """Create the output directory, logging instead of raising on failure."""
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Audio debug directory created: {self.output_dir}")
        except OSError as e:
            logger.error(f"Failed to create audio debug directory {self.output_dir}: {e}")

    def save_utterance(self, wav_audio: bytes) -> Path | None:
        """
        Write an utterance to a timestamped WAV file.

        The filename carries the date, time and duration of the clip.

        Args:
            wav_audio: WAV container bytes as delivered in SpeechEnded

        Returns:
            Path to the saved file, or None if debugging is disabled or the
            save failed
        """
        if not self._enabled:
            return None

        try:
            duration_ms = wav_duration(wav_audio) * 1000
        except TrimError as e:
            logger.error(f"Not saving audio debug file: {e}")
            return None

        timestamp = datetime.now()
        filename = (
            f"utterance_{timestamp:%Y%m%d_%H%M%S}_{timestamp.microsecond // 1000:03d}"
            f"_{duration_ms:.1f}ms.wav"
        )
        output_path = self.output_dir / filename

        try:
            output_path.write_bytes(wav_audio)
        except OSError as e:
            logger.error(f"Failed to save audio debug file: {e}")
            return None

        self._files_saved += 1
        logger.debug(f"Saved audio debug file: {output_path}")
        return output_path
