"""
Relay server: channel membership and voice message broadcast over websockets.

Each connection gets a ClientConnection with its own outbox queue drained by a
writer task, so frames reach a recipient in the order they were enqueued.
Registry mutations and the resulting fan-out happen together under the
registry lock, without awaiting, so every recipient sees membership snapshots
in mutation order.
"""

import asyncio
import logging
from typing import Optional

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .config import ServerConfig
from .models import Member, VoiceMessage, new_id
from .protocol import (
    JOIN,
    VOICE_MESSAGE,
    ProtocolError,
    VoicePayload,
    active_users_event,
    decode_blob,
    decode_event,
    error_event,
    relay_event,
    user_joined_event,
)
from .registry import ChannelRegistry

logger = logging.getLogger(__name__)


class ClientConnection:
    """One connected client: identity plus an ordered outbound queue."""

    def __init__(self, websocket: Optional[ServerConnection] = None, connection_id: Optional[str] = None):
        self.id = connection_id or new_id()
        self.websocket = websocket
        self.outbox: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._closed = False

    def send(self, frame: str):
        """Queue a frame for delivery. Never blocks."""
        if not self._closed:
            self.outbox.put_nowait(frame)

    def close(self):
        if not self._closed:
            self._closed = True
            self.outbox.put_nowait(None)

    def pending(self) -> list[str]:
        """Drain and return queued frames (used when no writer task runs)."""
        frames = []
        while not self.outbox.empty():
            frame = self.outbox.get_nowait()
            if frame is not None:
                frames.append(frame)
        return frames

    async def run_writer(self):
        """Send queued frames until close() or the socket goes away."""
        while True:
            frame = await self.outbox.get()
            if frame is None:
                return
            try:
                await self.websocket.send(frame)
            except ConnectionClosed:
                logger.debug(f"Connection {self.id} closed while sending")
                return


class RelayServer:
    """
    Push-to-talk relay.

    Handles join / voice_message / disconnect per connection and broadcasts
    to channel members via the ChannelRegistry.
    """

    def __init__(self, config: Optional[ServerConfig] = None, registry: Optional[ChannelRegistry] = None):
        self.config = config or ServerConfig()
        self.registry = registry or ChannelRegistry()
        self._connections: dict[str, ClientConnection] = {}

        self.connection_count = 0
        self.relayed_count = 0

    def register(self, conn: ClientConnection):
        self._connections[conn.id] = conn
        self.connection_count += 1

    def _broadcast(self, members: list[Member], frame: str, exclude: Optional[str] = None):
        for member in members:
            if member.id == exclude:
                continue
            conn = self._connections.get(member.id)
            if conn is not None:
                conn.send(frame)

    def _send_snapshot(self, channel: str):
        members = self.registry.members_of(channel)
        self._broadcast(members, active_users_event(members))

    def handle_join(self, conn: ClientConnection, name: str, channel: str):
        """Register the connection on a channel and announce it."""
        member = Member(id=conn.id, name=name, channel=channel)
        with self.registry.locked() as registry:
            current = registry.member(conn.id)
            if current is not None and current.channel == channel:
                logger.debug(f"{name} re-joined {channel}, ignoring")
                return

            left = registry.join(channel, member)
            if left is not None:
                self._send_snapshot(left)

            members = registry.members_of(channel)
            self._broadcast(members, user_joined_event(member))
            self._broadcast(members, active_users_event(members))

        logger.info(f"{name} joined {channel}")

    def handle_voice_message(self, conn: ClientConnection, payload: VoicePayload) -> Optional[VoiceMessage]:
        """
        Relay a voice message to every other member of the sender's channel.

        Messages from connections that have not joined are dropped silently.

        Returns:
            The relayed message, or None if dropped

        Raises:
            ProtocolError: If the audio blob is not valid base64
        """
        with self.registry.locked() as registry:
            sender = registry.member(conn.id)
            if sender is None:
                logger.debug(f"Dropping voice_message from unregistered connection {conn.id}")
                return None

            message = VoiceMessage(
                sender_id=sender.id,
                sender_name=sender.name,
                audio_blob=decode_blob(payload.audio_blob),
                transcription=payload.transcription,
                duration_ms=payload.duration,
            )
            self._broadcast(registry.members_of(sender.channel), relay_event(message), exclude=sender.id)

        self.relayed_count += 1
        logger.info(f"Relayed voice from {sender.name} ({len(message.audio_blob)} bytes)")
        return message

    def handle_disconnect(self, conn: ClientConnection):
        """Remove the connection's membership and refresh the channel snapshot."""
        with self.registry.locked() as registry:
            member = registry.leave(conn.id)
            if member is not None:
                self._send_snapshot(member.channel)
        self._connections.pop(conn.id, None)

        if member is not None:
            logger.info(f"{member.name} disconnected")

    def dispatch(self, conn: ClientConnection, raw):
        """Decode one frame and route it. Malformed frames are reported and dropped."""
        try:
            event, payload = decode_event(raw)
            if event == JOIN:
                self.handle_join(conn, payload.name, payload.channel)
            elif event == VOICE_MESSAGE:
                self.handle_voice_message(conn, payload)
        except ProtocolError as e:
            logger.warning(f"Bad frame from {conn.id}: {e}")
            conn.send(error_event(str(e)))

    async def handler(self, websocket: ServerConnection):
        """Connection lifecycle: register, read frames, leave on disconnect."""
        conn = ClientConnection(websocket)
        self.register(conn)
        client_addr = getattr(websocket, "remote_address", None) or ("unknown", 0)
        logger.info(f"User connected: {conn.id} from {client_addr[0]}")

        writer = asyncio.create_task(conn.run_writer())
        try:
            async for raw in websocket:
                self.dispatch(conn, raw)
        except ConnectionClosed as e:
            logger.debug(f"Connection {conn.id} closed: {e}")
        finally:
            self.handle_disconnect(conn)
            conn.close()
            await writer

    def listen(self, host: Optional[str] = None, port: Optional[int] = None):
        """Create the websocket server; use with ``async with``."""
        return serve(
            self.handler,
            host if host is not None else self.config.host,
            port if port is not None else self.config.port,
            max_size=self.config.max_message_bytes,
        )

    async def serve_forever(self):
        logger.info(f"Server running on {self.config.host}:{self.config.port}")
        try:
            async with self.listen():
                await asyncio.Future()  # run forever
        finally:
            logger.info(
                f"Server stats: {self.connection_count} total connections, "
                f"{self.relayed_count} messages relayed"
            )
