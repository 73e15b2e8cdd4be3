"""Conversion of metering readings into normalized audio levels."""

import math

import numpy as np

from .config import AUDIO_SAMPLE_NORMALIZATION, LEVEL_FLOOR_DB, LEVEL_RANGE_DB, SILENT_POWER_DB


def sample(raw_power_db: float) -> float:
    """
    Map a power reading in dBFS onto the 0.0-1.0 level scale.

    -60 dBFS and below map to 0.0, 0 dBFS and above to 1.0, linearly in
    between. NaN readings count as silence.

    Args:
        raw_power_db: Power reported by the capture device

    Returns:
        Normalized audio level
    """
    if math.isnan(raw_power_db):
        return 0.0
    level = (raw_power_db - LEVEL_FLOOR_DB) / LEVEL_RANGE_DB
    return max(0.0, min(1.0, level))


def pcm_power_db(audio_data: bytes) -> float:
    """
    Compute the RMS power of a 16-bit little-endian PCM chunk in dBFS.

    Args:
        audio_data: Raw PCM bytes

    Returns:
        Power in dBFS, or SILENT_POWER_DB for empty or all-zero chunks
    """
    usable = len(audio_data) - len(audio_data) % 2
    if usable <= 0:
        return SILENT_POWER_DB

    samples = np.frombuffer(audio_data[:usable], dtype="<i2").astype(np.float64)
    rms = float(np.sqrt(np.mean(np.square(samples / AUDIO_SAMPLE_NORMALIZATION))))
    if rms <= 0.0:
        return SILENT_POWER_DB
    return max(SILENT_POWER_DB, 20.0 * math.log10(rms))
