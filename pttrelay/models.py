"""
Core data types shared by the relay server and the PTT client.
"""

import time
import uuid
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class AppState(Enum):
    """Client screen/mode."""
    LOGIN = "LOGIN"
    LOBBY = "LOBBY"
    COMMUNICATING = "COMMUNICATING"


class ConnectionStatus(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class TxState(Enum):
    """Outbound (capture → send) states of a PTT session."""
    IDLE = "idle"
    RECORDING = "recording"
    SENDING = "sending"
    TRANSCRIBING = "transcribing"


class RxState(Enum):
    """Inbound (receive → play) states of a PTT session."""
    IDLE = "idle"
    AWAITING_ECHO = "awaiting_echo"
    RECEIVING = "receiving"


class DeviceKind(str, Enum):
    MOBILE = "mobile"
    DESKTOP = "desktop"
    WEB = "web"


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class LogKind(str, Enum):
    SYSTEM = "system"
    VOICE = "voice"
    ERROR = "error"


class Member(BaseModel):
    """A connection's registration within one channel."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    channel: str


class VoiceMessage(BaseModel):
    """A relayed voice message. Never persisted."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    sender_id: str
    sender_name: str
    audio_blob: bytes = Field(repr=False)
    transcription: Optional[str] = None
    duration_ms: int = 0
    timestamp_ms: int = Field(default_factory=now_ms)


class Device(BaseModel):
    """One logical endpoint under the user's identity."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: DeviceKind
    is_current: bool = False
    is_muted: bool = False
    status: DeviceStatus = DeviceStatus.ONLINE


class LogEntry(BaseModel):
    """One line of the client's activity trail."""
    model_config = ConfigDict(frozen=True)

    id: int
    timestamp_ms: int = Field(default_factory=now_ms)
    kind: LogKind
    message: str
    sender: Optional[str] = None
    transcription: Optional[str] = None
