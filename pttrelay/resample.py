"""
Sample rate conversion for received voice messages using pysoxr.

Senders record at whatever rate their config says; playback happens at the
local output rate.
"""

import numpy as np
import soxr
import logging

logger = logging.getLogger(__name__)

MAX_RATIO = 8.0


def validate_resample_ratio(source_rate: int, target_rate: int) -> bool:
    """
    Check that a conversion between two rates is sensible.

    Args:
        source_rate: Source sample rate in Hz
        target_rate: Target sample rate in Hz

    Returns:
        True if both rates are positive and the ratio is at most 8x
    """
    if source_rate <= 0 or target_rate <= 0:
        return False

    ratio = max(source_rate, target_rate) / min(source_rate, target_rate)
    return ratio <= MAX_RATIO


def resample_int16(audio: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """
    Resample mono int16 PCM.

    Args:
        audio: Mono int16 PCM at source_rate
        source_rate: Source sample rate in Hz
        target_rate: Target sample rate in Hz

    Returns:
        Mono int16 PCM at target_rate (the input itself if rates match)

    Raises:
        ValueError: If the rate pair fails validate_resample_ratio
    """
    if source_rate == target_rate:
        return audio

    if not validate_resample_ratio(source_rate, target_rate):
        raise ValueError(f"Unsupported resample {source_rate} Hz -> {target_rate} Hz")

    if len(audio) == 0:
        return np.array([], dtype=np.int16)

    logger.debug(f"Resampling from {source_rate} Hz to {target_rate} Hz")

    audio_float = audio.astype(np.float32) / 32768.0
    resampled = soxr.resample(audio_float, in_rate=source_rate, out_rate=target_rate, quality='HQ')

    # Clip before the cast so filter overshoot cannot wrap around
    return (np.clip(resampled, -1.0, 1.0) * 32767.0).astype(np.int16)
