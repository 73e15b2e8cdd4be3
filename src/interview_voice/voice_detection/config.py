"""Configuration constants for voice activity detection."""

from pathlib import Path

# Audio Format
DEFAULT_SAMPLE_RATE = 16000  # Hz, optimal for speech recognition
DEFAULT_CHANNELS = 1  # mono capture
DEFAULT_SAMPLE_WIDTH = 2  # bytes per sample (16-bit PCM)
DEFAULT_CHUNK_SIZE = 800  # samples per chunk (50ms at 16kHz)
AUDIO_SAMPLE_NORMALIZATION = 32768.0  # Normalization factor for 16-bit audio

# Level Sampling
LEVEL_FLOOR_DB = -60.0  # dBFS mapped to level 0.0
LEVEL_RANGE_DB = 60.0  # dB span mapped onto 0.0..1.0
SILENT_POWER_DB = -160.0  # metering value reported for digital silence
LEVEL_SAMPLE_INTERVAL = 0.05  # seconds - sampler cadence (~20 Hz)
LEVEL_LOG_INTERVAL = 1.0  # seconds - log audio level once per second

# Voice Activity Detection
DEFAULT_SPEECH_START_THRESHOLD = 0.15  # level that starts an utterance
DEFAULT_SILENCE_TIMEOUT = 1.5  # seconds of silence that end an utterance
DEFAULT_MIN_SPEECH_LEVEL = 0.04  # floor applied to the speech threshold
MIN_SPEECH_DURATION = 0.5  # seconds - shorter bursts are treated as noise
MAX_RECORDING_DURATION = 30.0  # seconds - capture is restarted past this
CALIBRATION_DELAY = 1.0  # seconds - mic settling time after capture opens
SILENCE_FALLBACK_GRACE = 0.25  # seconds - fallback timer fires this long after the primary

# Noise Calibration
CALIBRATION_DURATION = 3.0  # seconds
CALIBRATION_SAMPLE_INTERVAL = 0.05  # seconds between level samples
CALIBRATION_PROGRESS_INTERVAL = 0.1  # seconds between progress reports
MIN_CALIBRATION_SAMPLES = 20  # samples needed for a usable noise estimate
CALIBRATION_EARLY_EXIT_FACTOR = 3  # finish early after this many times the minimum
NOISE_FLOOR_PERCENTILE = 0.9  # fraction of sorted samples used as noise floor
CALIBRATION_THRESHOLD_MARGIN = 0.05  # added on top of the noise floor
CALIBRATION_MIN_THRESHOLD = 0.05  # lowest recommended threshold
CALIBRATION_MAX_THRESHOLD = 0.5  # highest recommended threshold

# Adaptive Noise Analysis
NOISE_ESTIMATE_HEADROOM = 1.2  # calibrated noise estimate = floor * headroom
ADAPTIVE_THRESHOLD_CEILING = 0.8  # adaptive threshold upper bound
ADAPTIVE_STDDEV_MARGIN = 1.5  # standard deviations added to the base threshold
NOISE_LIKELIHOOD_STDDEVS = 2.0  # distance from recent minimum still treated as noise
SNR_MIN_NOISE_LEVEL = 0.001  # below this the room is considered silent
SNR_SILENT_ROOM_DB = 60.0  # SNR reported for a silent room
CONFIDENCE_LEVEL_WEIGHT = 0.6  # weight of threshold margin in confidence
CONFIDENCE_SNR_WEIGHT = 0.4  # weight of SNR margin in confidence
CONFIDENCE_SNR_MARGIN_DB = 5.0  # SNR margin that yields full confidence
CONFIDENCE_LEVEL_MARGIN_RATIO = 0.5  # threshold fraction that yields full confidence
CONFIDENCE_REJECT_MARGIN_RATIO = 0.3  # same for negative classifications

# Audio Debugging
AUDIO_DEBUG_ENABLED = False  # Default disabled
AUDIO_DEBUG_DEFAULT_DIR = (
    Path.home() / ".cache" / "interview_voice" / "utterances"
)  # Default output directory
