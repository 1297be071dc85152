"""
Azure Speech SDK transcription of recorded voice messages.

A missing SDK or API key is not an error: transcribe() then returns the
"unavailable" placeholder.
"""

import logging

from .capabilities import (
    FAILED,
    NOISE,
    UNAVAILABLE,
    UNINTELLIGIBLE,
    TranscriptionCapability,
)
from .config import TranscriptionConfig
from .utils import Timer, TimingStats, decode_wav

logger = logging.getLogger(__name__)

try:
    import azure.cognitiveservices.speech as speechsdk
    AZURE_SPEECH_AVAILABLE = True
except ImportError:
    AZURE_SPEECH_AVAILABLE = False
    logger.warning("Azure Speech SDK not available - transcription disabled")


class AzureTranscriber(TranscriptionCapability):
    """
    One-shot recognition of a WAV blob.

    Each call pushes the blob's PCM into a fresh push stream and runs
    recognize_once(); voice messages are short enough for a single utterance.
    """

    def __init__(self, config: TranscriptionConfig):
        """
        Initialize transcriber.

        Args:
            config: Key, region and language; an empty key disables it
        """
        self.config = config
        self.timing = TimingStats("Transcription")
        self.speech_config = None

        if not AZURE_SPEECH_AVAILABLE:
            logger.error("Azure Speech SDK not installed - using placeholder transcriptions")
        elif not config.enabled:
            logger.info("No SPEECH_KEY configured - using placeholder transcriptions")
        else:
            self.speech_config = speechsdk.SpeechConfig(
                subscription=config.speech_key,
                region=config.speech_region
            )
            self.speech_config.speech_recognition_language = config.language
            logger.info(f"AzureTranscriber initialized: {config.speech_region}, {config.language}")

    @property
    def available(self) -> bool:
        return self.speech_config is not None

    def transcribe(self, blob: bytes) -> str:
        if not self.available:
            return UNAVAILABLE

        try:
            pcm, rate = decode_wav(blob)
        except ValueError as e:
            logger.error(f"Cannot transcribe blob: {e}")
            return FAILED

        try:
            with Timer("Transcription", self.timing):
                text = self._recognize(pcm.tobytes(), rate)
        except Exception as e:
            logger.error(f"Transcription error: {e}")
            return FAILED

        return text

    def _recognize(self, pcm_bytes: bytes, sample_rate: int) -> str:
        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=sample_rate,
            bits_per_sample=16,
            channels=1
        )
        push_stream = speechsdk.audio.PushAudioInputStream(stream_format)
        audio_config = speechsdk.audio.AudioConfig(stream=push_stream)
        recognizer = speechsdk.SpeechRecognizer(
            speech_config=self.speech_config,
            audio_config=audio_config
        )

        push_stream.write(pcm_bytes)
        push_stream.close()

        result = recognizer.recognize_once()

        if result.reason == speechsdk.ResultReason.RecognizedSpeech:
            logger.info(f"Recognized: {result.text}")
            return result.text.strip() or UNINTELLIGIBLE
        if result.reason == speechsdk.ResultReason.NoMatch:
            logger.debug("No speech recognized")
            return NOISE
        if result.reason == speechsdk.ResultReason.Canceled:
            details = result.cancellation_details
            logger.error(f"Recognition canceled: {details.reason} - {details.error_details}")
            return FAILED

        logger.error(f"Recognition failed with reason: {result.reason}")
        return FAILED

