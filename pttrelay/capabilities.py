"""
Interfaces of the audio and transcription collaborators used by PttSession.
"""

from abc import ABC, abstractmethod
from typing import Optional

# Placeholder transcriptions. Transcribers return these instead of raising.
UNAVAILABLE = "[AI Disabled: No API Key]"
FAILED = "[Transcription Failed]"
UNINTELLIGIBLE = "[Unintelligible]"
NOISE = "[Noise]"
TIMED_OUT = "[Transcription Timed Out]"


class AudioCapability(ABC):
    """Microphone capture and speaker playback of opaque audio blobs."""

    @abstractmethod
    def request_permission(self) -> bool:
        """Return True if a capture device can be opened."""

    @abstractmethod
    def begin_capture(self):
        """Start recording. Must return immediately."""

    @abstractmethod
    def end_capture(self) -> Optional[bytes]:
        """Stop recording and return the encoded blob, or None if nothing was captured."""

    @abstractmethod
    def play(self, blob: bytes):
        """Play a blob to completion. Raises on failure."""

    def live_sample(self) -> bytes:
        """Byte-scaled amplitude bins of the most recent audio, or b'' if none."""
        return b""


class TranscriptionCapability(ABC):
    """Speech-to-text over a whole blob."""

    @abstractmethod
    def transcribe(self, blob: bytes) -> str:
        """Return the text, or one of the placeholder strings. Never raises."""


class NullTranscriber(TranscriptionCapability):
    """Used when no speech service is configured."""

    def transcribe(self, blob: bytes) -> str:
        return UNAVAILABLE
