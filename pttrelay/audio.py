"""
Audio capture and playback using sounddevice.

Voice messages are carried as WAV blobs (16-bit mono PCM), so a receiver can
learn the sender's sample rate from the blob itself.
"""

import time
import logging
import threading
from typing import Optional, List, Tuple

import numpy as np
import sounddevice as sd

from .capabilities import AudioCapability
from .config import AudioConfig
from .resample import resample_int16
from .utils import decode_wav, encode_wav, spectrum_bytes

logger = logging.getLogger(__name__)


def list_audio_devices() -> List[dict]:
    """
    Enumerate all available audio devices.

    Returns:
        List of device dictionaries with name, index, channels, sample rate
    """
    devices = []
    for idx, dev in enumerate(sd.query_devices()):
        devices.append({
            "index": idx,
            "name": dev['name'],
            "max_input_channels": dev['max_input_channels'],
            "max_output_channels": dev['max_output_channels'],
            "default_samplerate": dev['default_samplerate'],
            "hostapi": sd.query_hostapis(dev['hostapi'])['name']
        })
    return devices


def find_device_by_name(name: str, input_device: bool = True) -> Optional[int]:
    """
    Find device index by case-insensitive substring match.

    Args:
        name: Device name or substring
        input_device: True for input, False for output

    Returns:
        Device index or None if not found
    """
    name_lower = name.lower()
    channels_key = 'max_input_channels' if input_device else 'max_output_channels'

    for dev in list_audio_devices():
        if name_lower in dev['name'].lower() and dev[channels_key] > 0:
            return dev['index']
    return None


class SoundDeviceAudio(AudioCapability):
    """
    Microphone capture and speaker playback.

    Capture runs on the sounddevice callback thread; begin_capture() returns
    as soon as the stream is started.
    """

    def __init__(self, config: Optional[AudioConfig] = None):
        self.config = config or AudioConfig()
        self.blocksize = int(self.config.sample_rate * self.config.frame_ms / 1000)
        self.stream: Optional[sd.InputStream] = None

        self._frames: list[np.ndarray] = []
        self._last_frame: Optional[np.ndarray] = None
        self._playback: Optional[Tuple[np.ndarray, int, float]] = None
        self._lock = threading.Lock()

        self.input_device = self._resolve(self.config.mic_device, input_device=True)
        self.output_device = self._resolve(self.config.output_device, input_device=False)

        logger.info(
            f"SoundDeviceAudio: in={self.input_device}, out={self.output_device}, "
            f"sr={self.config.sample_rate}, blocksize={self.blocksize}"
        )

    @staticmethod
    def _resolve(name: Optional[str], input_device: bool) -> Optional[int]:
        if not name:
            return None
        idx = find_device_by_name(name, input_device=input_device)
        if idx is None:
            logger.warning(f"Device not found: {name}, using default")
        return idx

    def request_permission(self) -> bool:
        try:
            info = sd.query_devices(self.input_device, kind='input')
        except (sd.PortAudioError, ValueError) as e:
            logger.error(f"Microphone unavailable: {e}")
            return False
        return info['max_input_channels'] > 0

    def _stream_callback(self, indata, frames, time_info, status):
        if status:
            logger.warning(f"Stream status: {status}")
        mono = indata[:, 0].copy()
        with self._lock:
            self._frames.append(mono)
            self._last_frame = mono

    def begin_capture(self):
        if self.stream is not None:
            logger.warning("Capture already started")
            return

        with self._lock:
            self._frames = []
            self._last_frame = None

        stream = sd.InputStream(
            device=self.input_device,
            channels=1,
            samplerate=self.config.sample_rate,
            blocksize=self.blocksize,
            dtype='int16',
            callback=self._stream_callback
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        self.stream = stream
        logger.debug("Capture started")

    def end_capture(self) -> Optional[bytes]:
        if self.stream is None:
            return None

        stream, self.stream = self.stream, None
        try:
            stream.stop()
        finally:
            stream.close()

        with self._lock:
            frames, self._frames = self._frames, []
            self._last_frame = None

        if not frames:
            logger.warning("Capture stopped with no audio")
            return None

        pcm = np.concatenate(frames)
        logger.debug(f"Captured {len(pcm)} samples")
        return encode_wav(pcm, self.config.sample_rate)

    def play(self, blob: bytes):
        pcm, rate = decode_wav(blob)
        target_rate = self.config.output_sample_rate or rate
        pcm = resample_int16(pcm, rate, target_rate)

        with self._lock:
            self._playback = (pcm, target_rate, time.monotonic())
        try:
            sd.play(pcm, samplerate=target_rate, device=self.output_device, blocking=True)
        finally:
            with self._lock:
                self._playback = None
        logger.debug(f"Played {len(pcm)} samples @ {target_rate} Hz")

    def live_sample(self) -> bytes:
        with self._lock:
            frame = self._last_frame
            playback = self._playback

        if frame is None and playback is not None:
            pcm, rate, started = playback
            pos = int((time.monotonic() - started) * rate)
            frame = pcm[pos:pos + self.blocksize]

        if frame is None:
            return b""
        return spectrum_bytes(frame)
