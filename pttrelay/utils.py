"""
Utility functions for logging, timing, and the WAV blob format.
"""

import io
import logging
import time
import wave
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, List, Tuple
from collections import deque
import numpy as np

logger = logging.getLogger(__name__)

SPECTRUM_BINS = 128


def setup_logger(
    name: str = "pttrelay",
    level: str = "INFO",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Attach console and rotating-file handlers to the package logger.

    Module loggers (``pttrelay.session``, ``pttrelay.server``...) propagate to
    it, so this is called once from the CLI. Calling it again replaces the
    handlers instead of stacking them.

    Args:
        name: Logger to configure
        level: DEBUG, INFO, WARNING or ERROR
        log_file: Rotating log file path; parent directories are created
    """
    package_logger = logging.getLogger(name)
    package_logger.setLevel(getattr(logging, level.upper()))
    package_logger.handlers.clear()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    package_logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
        ))
        package_logger.addHandler(file_handler)

    return package_logger


class TimingStats:
    """Latency samples (ms) for one operation, summarised on shutdown."""

    def __init__(self, name: str, max_samples: int = 1000):
        self.name = name
        self.samples: deque[float] = deque(maxlen=max_samples)

    def add_sample(self, duration_ms: float):
        self.samples.append(duration_ms)

    def get_stats(self) -> dict:
        """count, mean, p95 and max of the retained samples ({} if none)."""
        if not self.samples:
            return {}
        ordered = sorted(self.samples)
        n = len(ordered)
        return {
            "count": n,
            "mean": sum(ordered) / n,
            "p95": ordered[min(int(n * 0.95), n - 1)],
            "max": ordered[-1],
        }

    def log_stats(self):
        stats = self.get_stats()
        if stats:
            logger.info(
                f"{self.name}: n={stats['count']}, mean={stats['mean']:.1f}ms, "
                f"p95={stats['p95']:.1f}ms, max={stats['max']:.1f}ms"
            )


class Timer:
    """Times a block and feeds the duration into a TimingStats."""

    def __init__(self, name: str, stats: Optional[TimingStats] = None):
        self.name = name
        self.stats = stats
        self.duration_ms = 0.0
        self._start = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._start) * 1000
        if self.stats is not None:
            self.stats.add_sample(self.duration_ms)
        logger.debug(f"{self.name}: {self.duration_ms:.2f} ms")


def encode_wav(pcm: np.ndarray, sample_rate: int) -> bytes:
    """Wrap mono int16 PCM in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, 'wb') as wf:
        wf.setnchannels(1)  # Mono
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.astype(np.int16).tobytes())
    return buf.getvalue()


def decode_wav(blob: bytes) -> Tuple[np.ndarray, int]:
    """
    Unpack a WAV blob into mono int16 PCM.

    Returns:
        (samples, sample_rate)

    Raises:
        ValueError: If the blob is not 16-bit PCM WAV
    """
    try:
        with wave.open(io.BytesIO(blob), 'rb') as wf:
            if wf.getsampwidth() != 2:
                raise ValueError(f"Unsupported sample width: {wf.getsampwidth()} bytes")
            channels = wf.getnchannels()
            rate = wf.getframerate()
            frames = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise ValueError(f"Not a WAV blob: {e}") from e

    pcm = np.frombuffer(frames, dtype=np.int16)
    if channels > 1:
        # Average in int32 to avoid overflow
        pcm = pcm.reshape(-1, channels).astype(np.int32).mean(axis=1).astype(np.int16)
    return pcm, rate


def spectrum_bytes(frame: np.ndarray, bins: int = SPECTRUM_BINS) -> bytes:
    """
    Byte-scaled magnitude spectrum of one frame, for level meters.

    Args:
        frame: Mono int16 samples
        bins: Number of output values

    Returns:
        ``bins`` bytes, 0 = silence, 255 = full scale (b'' for an empty frame)
    """
    if len(frame) == 0:
        return b""
    n = bins * 2
    samples = frame[:n].astype(np.float32) / 32768.0
    magnitude = np.abs(np.fft.rfft(samples, n=n))[:bins]
    scaled = np.clip(magnitude / max(len(samples) / 4, 1.0) * 255.0, 0, 255)
    return scaled.astype(np.uint8).tobytes()


def format_device_list(devices: List[dict]) -> str:
    """
    Format device list for display.

    Args:
        devices: List of device dicts from list_audio_devices()

    Returns:
        Formatted string
    """
    lines = ["\nAvailable Audio Devices:", "-" * 80]

    for dev in devices:
        lines.append(
            f"  [{dev['index']}] {dev['name']}\n"
            f"      In: {dev['max_input_channels']} ch, Out: {dev['max_output_channels']} ch, "
            f"SR: {dev['default_samplerate']} Hz, API: {dev['hostapi']}"
        )

    lines.append("-" * 80)
    return "\n".join(lines)
