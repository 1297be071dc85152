"""
Relay client: the websocket link between a PttSession and the relay server.

Uses the synchronous websockets client with a receiver thread, matching the
threaded PTT session.
"""

import logging
import threading
from typing import Callable, Optional

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import ClientConnection, connect

from .models import Member, VoiceMessage
from .protocol import (
    ACTIVE_USERS,
    ERROR,
    SERVER_EVENTS,
    USER_JOINED,
    VOICE_MESSAGE,
    ProtocolError,
    decode_event,
    join_event,
    to_voice_message,
    voice_event,
)

logger = logging.getLogger(__name__)


class RelayClient:
    """
    Connection to the relay server.

    Inbound events are dispatched from the receiver thread to the
    registered callbacks.
    """

    def __init__(self, url: str, max_message_bytes: Optional[int] = 100_000_000):
        """
        Args:
            url: Server URL, e.g. ws://localhost:3001
            max_message_bytes: Largest frame accepted from the server
        """
        self.url = url
        self.max_message_bytes = max_message_bytes
        self.ws: Optional[ClientConnection] = None
        self.active_users: list[Member] = []

        self.on_voice_message: Optional[Callable[[VoiceMessage], None]] = None
        self.on_active_users: Optional[Callable[[list[Member]], None]] = None
        self.on_user_joined: Optional[Callable[[str, str], None]] = None
        self.on_closed: Optional[Callable[[Optional[str]], None]] = None

        self._receiver: Optional[threading.Thread] = None
        self._send_lock = threading.Lock()
        self._closing = False

    @property
    def connected(self) -> bool:
        return self.ws is not None and not self._closing

    def connect(self, open_timeout: float = 10.0):
        """
        Open the websocket and start the receiver thread.

        Raises:
            OSError / websockets.exceptions.InvalidHandshake: Server unreachable
        """
        if self.ws is not None:
            logger.warning("Relay client already connected")
            return

        self.ws = connect(self.url, open_timeout=open_timeout, max_size=self.max_message_bytes)
        self._closing = False
        self._receiver = threading.Thread(target=self._receive_loop, name="relay-rx", daemon=True)
        self._receiver.start()
        logger.info(f"Connected to relay {self.url}")

    def _send(self, frame: str):
        if self.ws is None:
            raise ConnectionError("Not connected to relay")
        with self._send_lock:
            self.ws.send(frame)

    def join(self, name: str, channel: str):
        self._send(join_event(name, channel))
        logger.info(f"Joining {channel} as {name}")

    def send_voice_message(self, blob: bytes, transcription: Optional[str], duration_ms: int):
        self._send(voice_event(blob, transcription, duration_ms))
        logger.debug(f"Sent voice message ({len(blob)} bytes, {duration_ms} ms)")

    def _receive_loop(self):
        reason = None
        try:
            for raw in self.ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            if not self._closing:
                reason = str(e)
        except Exception as e:
            logger.error(f"Relay receive loop failed: {e}", exc_info=True)
            reason = str(e)

        logger.info("Relay connection closed")
        if self.on_closed:
            try:
                self.on_closed(reason)
            except Exception as e:
                logger.error(f"Error in on_closed callback: {e}")

    def _dispatch(self, raw):
        try:
            event, payload = decode_event(raw, SERVER_EVENTS)
            if event == VOICE_MESSAGE:
                message = to_voice_message(payload)
                logger.info(f"Voice message from {message.sender_name}")
                if self.on_voice_message:
                    self.on_voice_message(message)
            elif event == ACTIVE_USERS:
                self.active_users = payload
                if self.on_active_users:
                    self.on_active_users(payload)
            elif event == USER_JOINED:
                if self.on_user_joined:
                    self.on_user_joined(payload.id, payload.name)
            elif event == ERROR:
                logger.warning(f"Relay reported error: {payload.message}")
        except ProtocolError as e:
            logger.warning(f"Ignoring bad frame from relay: {e}")
        except Exception as e:
            logger.error(f"Error handling relay event: {e}")

    def close(self):
        if self.ws is None:
            return
        self._closing = True
        self.ws.close()
        if self._receiver is not None and self._receiver is not threading.current_thread():
            self._receiver.join(timeout=5.0)
        self.ws = None
        self._receiver = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
