"""
Unit tests for resampling functions.
"""

import numpy as np
import pytest

from pttrelay.resample import resample_int16, validate_resample_ratio


def test_upsample_16k_to_48k_length():
    """Test that upsampling produces correct output length."""
    audio = np.random.randint(-1000, 1000, size=16000, dtype=np.int16)

    out = resample_int16(audio, 16000, 48000)

    assert out.dtype == np.int16
    assert abs(len(out) - 48000) < 10, f"Expected ~48000, got {len(out)}"


def test_downsample_48k_to_16k_length():
    audio = np.random.randint(-1000, 1000, size=48000, dtype=np.int16)

    out = resample_int16(audio, 48000, 16000)

    assert abs(len(out) - 16000) < 10


def test_same_rate_is_passthrough():
    audio = np.arange(100, dtype=np.int16)
    assert resample_int16(audio, 16000, 16000) is audio


def test_empty_input():
    out = resample_int16(np.array([], dtype=np.int16), 16000, 48000)
    assert len(out) == 0
    assert out.dtype == np.int16


def test_full_scale_does_not_wrap():
    """Test clipping keeps a full-scale square wave from overflowing int16."""
    audio = np.tile(np.array([32767] * 8 + [-32768] * 8, dtype=np.int16), 1000)

    out = resample_int16(audio, 16000, 44100)

    assert out.dtype == np.int16
    assert out.max() > 20000
    assert out.min() < -20000


def test_validate_resample_ratio():
    """Test resample ratio validation."""
    assert validate_resample_ratio(48000, 16000) is True
    assert validate_resample_ratio(16000, 48000) is True
    assert validate_resample_ratio(8000, 64000) is True
    assert validate_resample_ratio(8000, 96000) is False
    assert validate_resample_ratio(0, 16000) is False
    assert validate_resample_ratio(16000, -1) is False


def test_invalid_ratio_raises():
    with pytest.raises(ValueError, match="Unsupported resample"):
        resample_int16(np.zeros(10, dtype=np.int16), 8000, 96000)
