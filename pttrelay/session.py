"""
Push-to-talk session state machine.

Outbound: IDLE -> RECORDING -> SENDING -> TRANSCRIBING -> IDLE
Inbound:  IDLE -> (AWAITING_ECHO) -> RECEIVING -> IDLE

The two paths run on separate single-worker executors and do not block each
other. At most one outbound pipeline is in flight: start() is only accepted
from IDLE. Every outbound run carries the generation it started in; results
that arrive after close()/disconnect() bumped the generation are discarded.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional, Protocol

from .activity import ActivityLog
from .capabilities import FAILED, TIMED_OUT, AudioCapability, TranscriptionCapability
from .config import ClientConfig
from .devices import DeviceRoster
from .models import AppState, ConnectionStatus, RxState, TxState, VoiceMessage, new_id
from .utils import Timer, TimingStats

logger = logging.getLogger(__name__)

ECHO_SENDER = "Echo"

STATUS_TEXT = {
    TxState.RECORDING: "RECORDING...",
    TxState.SENDING: "SENDING...",
    TxState.TRANSCRIBING: "ANALYZING...",
}


class VoiceSender(Protocol):
    def send_voice_message(self, blob: bytes, transcription: Optional[str], duration_ms: int) -> None: ...


class PttSession:
    """
    Client side of a push-to-talk conversation.

    Drives AudioCapability and TranscriptionCapability, checks the
    DeviceRoster mute gate, records activity in an ActivityLog and hands
    finished messages to the relay sender.
    """

    def __init__(
        self,
        audio: AudioCapability,
        transcriber: TranscriptionCapability,
        roster: DeviceRoster,
        activity: Optional[ActivityLog] = None,
        relay: Optional[VoiceSender] = None,
        config: Optional[ClientConfig] = None,
        transcription_timeout_s: float = 15.0,
    ):
        """
        Args:
            audio: Capture/playback capability
            transcriber: Speech-to-text capability
            roster: Device roster providing the mute gate
            activity: Log to append to (default: the roster's, else a new one)
            relay: Where finished voice messages are sent (optional)
            config: Client settings (loopback echo delay)
            transcription_timeout_s: Upper bound on one transcription
        """
        self.audio = audio
        self.transcriber = transcriber
        self.roster = roster
        if activity is None:
            activity = roster.activity if roster.activity is not None else ActivityLog()
        self.activity = activity
        self.relay = relay
        self.config = config or ClientConfig()
        self.transcription_timeout_s = transcription_timeout_s

        self.session_id = new_id()
        self.name = ""
        self.channel: Optional[str] = None
        self.app_state = AppState.LOGIN
        self.connection_status = ConnectionStatus.DISCONNECTED

        self._tx = TxState.IDLE
        self._rx = RxState.IDLE
        self._generation = 0
        self._record_started = 0.0
        self._capture_open = False
        self._pending_echoes: dict[str, threading.Timer] = {}
        self._lock = threading.RLock()
        self._listeners: list[Callable[[TxState, RxState], None]] = []

        self._outbound = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ptt-tx")
        self._inbound = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ptt-rx")
        self._stt = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ptt-stt")

        self.playback_timing = TimingStats("Playback")

    # -- state ---------------------------------------------------------------

    @property
    def tx_state(self) -> TxState:
        return self._tx

    @property
    def rx_state(self) -> RxState:
        return self._rx

    @property
    def status_text(self) -> str:
        with self._lock:
            if self._tx in STATUS_TEXT:
                return STATUS_TEXT[self._tx]
            if self._rx == RxState.RECEIVING:
                return "RECEIVING..."
            return "READY"

    def on_state_change(self, listener: Callable[[TxState, RxState], None]):
        """Register a listener. Called with the session lock held; must not block."""
        self._listeners.append(listener)

    def _notify(self):
        for listener in self._listeners:
            try:
                listener(self._tx, self._rx)
            except Exception as e:
                logger.error(f"Error in state listener: {e}")

    def _set_tx(self, state: TxState):
        with self._lock:
            if self._tx == state:
                return
            logger.debug(f"tx {self._tx.value} -> {state.value}")
            self._tx = state
            self._notify()

    def _set_rx(self, state: RxState):
        with self._lock:
            if self._rx == state:
                return
            logger.debug(f"rx {self._rx.value} -> {state.value}")
            self._rx = state
            self._notify()

    def _advance(self, generation: int, state: TxState) -> bool:
        """Move the outbound path on, unless the run was superseded."""
        with self._lock:
            if generation != self._generation:
                logger.debug(f"Discarding stale transition to {state.value}")
                return False
            self._set_tx(state)
            return True

    # -- mode ----------------------------------------------------------------

    def login(self, name: str):
        """
        Claim a callsign and obtain microphone access.

        Raises:
            ValueError: Empty name
            PermissionError: Microphone access denied
        """
        name = name.strip()
        if not name:
            raise ValueError("Callsign must not be empty")
        if not self.audio.request_permission():
            raise PermissionError("Microphone access is required to use this app")

        with self._lock:
            self.name = name
            self.app_state = AppState.LOBBY
        logger.info(f"Logged in as {name}")

    def connecting(self):
        with self._lock:
            self.connection_status = ConnectionStatus.CONNECTING

    def connect(self, channel: str):
        """Enter active communication on a channel."""
        with self._lock:
            if self.app_state == AppState.LOGIN:
                raise RuntimeError("login() must be called before connect()")
            self.channel = channel
            self.connection_status = ConnectionStatus.CONNECTED
            self.app_state = AppState.COMMUNICATING
        self.activity.system(f"Connected to secure channel: {channel}")

    def disconnect(self, error: Optional[str] = None):
        """
        Leave active communication. Any in-flight outbound run is abandoned.

        Args:
            error: Reason, if the link was lost rather than closed
        """
        with self._lock:
            self._generation += 1
            release, self._capture_open = self._capture_open, False
            self.app_state = AppState.LOBBY
            self.connection_status = ConnectionStatus.ERROR if error else ConnectionStatus.DISCONNECTED
            self._set_tx(TxState.IDLE)

        if release:
            self._discard_capture()
        if error:
            self.activity.error(f"Connection lost: {error}")
        else:
            self.activity.system("Disconnected")

    def _discard_capture(self):
        try:
            self.audio.end_capture()
        except Exception as e:
            logger.error(f"Error stopping capture: {e}")

    # -- outbound ------------------------------------------------------------

    def start(self) -> bool:
        """
        Begin recording (PTT pressed).

        Returns:
            True if recording started
        """
        with self._lock:
            if self._tx != TxState.IDLE:
                return False

            if self.app_state != AppState.COMMUNICATING:
                self.activity.error("Cannot record: not connected to a channel")
                return False

            if not self.roster.capture_allowed():
                self.activity.error("Cannot record: Device is muted locally")
                return False

            try:
                self.audio.begin_capture()
            except Exception as e:
                logger.error(f"begin_capture failed: {e}")
                self.activity.error(f"Capture failed: {e}")
                return False

            self._capture_open = True
            self._record_started = time.monotonic()
            self._set_tx(TxState.RECORDING)
            return True

    def stop(self) -> Optional["Future[Optional[VoiceMessage]]"]:
        """
        Finish recording (PTT released) and send in the background.

        Returns:
            Future resolving to the sent VoiceMessage (None if nothing was
            sent), or None if the session was not recording
        """
        with self._lock:
            if self._tx != TxState.RECORDING:
                return None
            generation = self._generation
            duration_ms = int((time.monotonic() - self._record_started) * 1000)
            self._set_tx(TxState.SENDING)

        return self._outbound.submit(self._transmit, generation, duration_ms)

    def _transmit(self, generation: int, duration_ms: int) -> Optional[VoiceMessage]:
        # The capture belongs to this run only if nothing released it since stop()
        with self._lock:
            if generation != self._generation or not self._capture_open:
                logger.debug("Outbound run superseded before capture ended")
                return None
            self._capture_open = False

        try:
            blob = self.audio.end_capture()
        except Exception as e:
            logger.error(f"end_capture failed: {e}")
            blob = None

        if not blob:
            if self._advance(generation, TxState.IDLE):
                self.activity.error("Transmission failed: no audio captured")
            return None

        if not self._advance(generation, TxState.TRANSCRIBING):
            return None

        transcription = self._transcribe(blob)

        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding transcription of abandoned message")
                return None

        message = VoiceMessage(
            sender_id=self.session_id,
            sender_name=self.name,
            audio_blob=blob,
            transcription=transcription,
            duration_ms=duration_ms,
        )
        self.activity.voice("Voice Message Sent", sender="You", transcription=transcription)
        self._send(message)
        self._advance(generation, TxState.IDLE)

        if self.config.loopback_echo_ms > 0:
            self._schedule_echo(message)
        return message

    def _transcribe(self, blob: bytes) -> str:
        future = self._stt.submit(self.transcriber.transcribe, blob)
        try:
            return future.result(timeout=self.transcription_timeout_s)
        except FutureTimeout:
            logger.warning(f"Transcription exceeded {self.transcription_timeout_s}s")
            return TIMED_OUT
        except Exception as e:
            logger.error(f"Transcriber raised: {e}")
            return FAILED

    def _send(self, message: VoiceMessage):
        if self.relay is None:
            return
        try:
            self.relay.send_voice_message(message.audio_blob, message.transcription, message.duration_ms)
        except Exception as e:
            logger.error(f"Failed to send voice message: {e}")
            self.activity.error(f"Send failed: {e}")

    # -- inbound -------------------------------------------------------------

    def receive(self, message: VoiceMessage) -> "Future[bool]":
        """
        Handle an inbound voice message in the background.

        Returns:
            Future resolving to True if the message was played
        """
        return self._inbound.submit(self._receive, message)

    def _receive(self, message: VoiceMessage) -> bool:
        try:
            return self._play_inbound(message)
        finally:
            with self._lock:
                self._set_rx(RxState.AWAITING_ECHO if self._pending_echoes else RxState.IDLE)

    def _play_inbound(self, message: VoiceMessage) -> bool:
        if not self.roster.playback_allowed():
            self.activity.system("Incoming message suppressed (Muted)")
            return False

        self._set_rx(RxState.RECEIVING)
        self.activity.system("Incoming transmission...")
        try:
            with Timer("Playback", self.playback_timing):
                self.audio.play(message.audio_blob)
        except Exception as e:
            logger.error(f"Playback failed: {e}")
            self.activity.error(f"Playback failed: {e}")
            return False

        self.activity.voice(
            "Voice Message Received",
            sender=message.sender_name,
            transcription=message.transcription,
        )
        return True

    def _schedule_echo(self, message: VoiceMessage):
        echo = message.model_copy(update={"id": new_id(), "sender_name": ECHO_SENDER})
        timer = threading.Timer(self.config.loopback_echo_ms / 1000.0, self._fire_echo, args=(echo,))
        timer.daemon = True
        with self._lock:
            self._pending_echoes[echo.id] = timer
            if self._rx == RxState.IDLE:
                self._set_rx(RxState.AWAITING_ECHO)
        timer.start()

    def _fire_echo(self, echo: VoiceMessage):
        with self._lock:
            if self._pending_echoes.pop(echo.id, None) is None:
                return
        try:
            self.receive(echo)
        except RuntimeError:
            # Executor already shut down
            logger.debug("Echo arrived after close")

    # -- misc ----------------------------------------------------------------

    def live_sample(self) -> bytes:
        """Level data for a meter while audio is flowing, else b''."""
        if self._tx == TxState.RECORDING or self._rx == RxState.RECEIVING:
            return self.audio.live_sample()
        return b""

    def close(self):
        """Abandon in-flight work and release worker threads."""
        with self._lock:
            self._generation += 1
            release, self._capture_open = self._capture_open, False
            timers, self._pending_echoes = self._pending_echoes, {}
            self._set_tx(TxState.IDLE)
            self._set_rx(RxState.IDLE)

        for timer in timers.values():
            timer.cancel()
        if release:
            self._discard_capture()

        self._outbound.shutdown(wait=False, cancel_futures=True)
        self._inbound.shutdown(wait=False, cancel_futures=True)
        self._stt.shutdown(wait=False, cancel_futures=True)
        self.playback_timing.log_stats()
        logger.info("Session closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
