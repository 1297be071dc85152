"""Relay wire protocol.

Every websocket text frame carries one event encoded as JSON::

    {"event": "<name>", "data": <payload>}

Payloads are validated with Pydantic models. Audio blobs travel as base64
strings; field names on the wire use the camelCase spelling the browser
client expects (``audioBlob``, ``senderId``...).
"""

import base64
import binascii
import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .models import Member, VoiceMessage

# Client -> server
JOIN = "join"
VOICE_MESSAGE = "voice_message"

# Server -> client
USER_JOINED = "user_joined"
ACTIVE_USERS = "active_users"
ERROR = "error"


class ProtocolError(ValueError):
    """Raised for frames that cannot be decoded into a known event."""


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinPayload(_WireModel):
    """Client → Server: register on a channel."""
    name: str = Field(..., min_length=1)
    channel: str = Field(..., min_length=1)


class VoicePayload(_WireModel):
    """Client → Server: a recorded message to relay."""
    audio_blob: str = Field(..., alias="audioBlob", description="Base64 audio")
    transcription: Optional[str] = None
    duration: int = Field(0, ge=0, description="Duration in milliseconds")


class UserJoinedPayload(_WireModel):
    """Server → Client: presence notification."""
    id: str
    name: str


class RelayedVoicePayload(_WireModel):
    """Server → Client: a relayed voice message."""
    id: str
    sender_id: str = Field(..., alias="senderId")
    sender_name: str = Field(..., alias="senderName")
    audio_blob: str = Field(..., alias="audioBlob")
    transcription: Optional[str] = None
    duration: int = 0
    timestamp: int


class ErrorPayload(_WireModel):
    """Server → Client: malformed frame notification."""
    message: str


_active_users = TypeAdapter(list[Member])

CLIENT_EVENTS: dict[str, Any] = {
    JOIN: JoinPayload,
    VOICE_MESSAGE: VoicePayload,
}

SERVER_EVENTS: dict[str, Any] = {
    USER_JOINED: UserJoinedPayload,
    ACTIVE_USERS: _active_users,
    VOICE_MESSAGE: RelayedVoicePayload,
    ERROR: ErrorPayload,
}


def encode_blob(blob: bytes) -> str:
    return base64.b64encode(blob).decode("ascii")


def decode_blob(data: str) -> bytes:
    """Decode a base64 audio blob, raising ProtocolError on garbage."""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Invalid audio blob: {e}") from e


def _frame(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data})


def join_event(name: str, channel: str) -> str:
    return _frame(JOIN, JoinPayload(name=name, channel=channel).model_dump())


def voice_event(blob: bytes, transcription: Optional[str], duration_ms: int) -> str:
    payload = VoicePayload(
        audio_blob=encode_blob(blob),
        transcription=transcription,
        duration=duration_ms,
    )
    return _frame(VOICE_MESSAGE, payload.model_dump(by_alias=True))


def user_joined_event(member: Member) -> str:
    return _frame(USER_JOINED, {"id": member.id, "name": member.name})


def active_users_event(members: list[Member]) -> str:
    return _frame(ACTIVE_USERS, [m.model_dump() for m in members])


def relay_event(message: VoiceMessage) -> str:
    payload = RelayedVoicePayload(
        id=message.id,
        sender_id=message.sender_id,
        sender_name=message.sender_name,
        audio_blob=encode_blob(message.audio_blob),
        transcription=message.transcription,
        duration=message.duration_ms,
        timestamp=message.timestamp_ms,
    )
    return _frame(VOICE_MESSAGE, payload.model_dump(by_alias=True))


def error_event(message: str) -> str:
    return _frame(ERROR, {"message": message})


def decode_event(raw: Any, events: dict[str, Any] = CLIENT_EVENTS) -> tuple[str, Any]:
    """
    Decode one frame into ``(event_name, payload)``.

    Args:
        raw: Text frame received from the websocket
        events: Table of accepted event names to payload validators

    Returns:
        Event name and validated payload (model instance or list of Member)

    Raises:
        ProtocolError: Binary/non-JSON frame, unknown event or invalid payload
    """
    if not isinstance(raw, str):
        raise ProtocolError("Binary frames are not supported")

    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(frame, dict) or "event" not in frame:
        raise ProtocolError("Frame must be an object with an 'event' field")

    event = frame["event"]
    validator = events.get(event)
    if validator is None:
        raise ProtocolError(f"Unknown event: {event!r}")

    try:
        if isinstance(validator, TypeAdapter):
            payload = validator.validate_python(frame.get("data"))
        else:
            payload = validator.model_validate(frame.get("data"))
    except ValidationError as e:
        raise ProtocolError(f"Invalid {event} payload: {e.error_count()} error(s)") from e

    return event, payload


def to_voice_message(payload: RelayedVoicePayload) -> VoiceMessage:
    """Turn a relayed payload back into a VoiceMessage."""
    return VoiceMessage(
        id=payload.id,
        sender_id=payload.sender_id,
        sender_name=payload.sender_name,
        audio_blob=decode_blob(payload.audio_blob),
        transcription=payload.transcription,
        duration_ms=payload.duration,
        timestamp_ms=payload.timestamp,
    )
