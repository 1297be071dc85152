"""
Pytest configuration and fixtures.
"""

import asyncio
import threading
import time
from typing import Optional

import pytest

from pttrelay.activity import ActivityLog
from pttrelay.capabilities import AudioCapability, TranscriptionCapability
from pttrelay.devices import DeviceRoster
from pttrelay.models import Device, DeviceKind
from pttrelay.server import RelayServer
from pttrelay.session import PttSession


ENV_VARS = [
    "PTT_SERVER_HOST", "PTT_SERVER_PORT", "PORT", "PTT_SERVER_URL", "PTT_CALLSIGN",
    "PTT_CHANNEL", "SPEECH_KEY", "SPEECH_REGION", "STT_LANGUAGE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of config tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeAudio(AudioCapability):
    """Records calls; returns a fixed blob from end_capture()."""

    def __init__(self, blob: Optional[bytes] = b"RIFF-fake-audio"):
        self.blob = blob
        self.permission = True
        self.begin_calls = 0
        self.end_calls = 0
        self.played: list[bytes] = []
        self.play_error: Optional[Exception] = None
        self.capture_error: Optional[Exception] = None
        self.play_gate: Optional[threading.Event] = None

    def request_permission(self) -> bool:
        return self.permission

    def begin_capture(self):
        if self.capture_error:
            raise self.capture_error
        self.begin_calls += 1

    def end_capture(self):
        self.end_calls += 1
        return self.blob

    def play(self, blob: bytes):
        if self.play_gate is not None:
            self.play_gate.wait(5)
        if self.play_error:
            raise self.play_error
        self.played.append(blob)

    def live_sample(self) -> bytes:
        return b"\x10\x20\x30"


class FakeTranscriber(TranscriptionCapability):
    def __init__(self, text: str = "Copy that. Moving to position."):
        self.text = text
        self.calls = 0
        self.gate: Optional[threading.Event] = None
        self.error: Optional[Exception] = None

    def transcribe(self, blob: bytes) -> str:
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.error:
            raise self.error
        return self.text


class FakeRelay:
    def __init__(self):
        self.sent: list[tuple] = []
        self.error: Optional[Exception] = None

    def send_voice_message(self, blob, transcription, duration_ms):
        if self.error:
            raise self.error
        self.sent.append((blob, transcription, duration_ms))


@pytest.fixture
def activity():
    return ActivityLog()


@pytest.fixture
def roster(activity):
    return DeviceRoster(
        [
            Device(id="dev-1", name="Web Client (Chrome)", kind=DeviceKind.WEB, is_current=True),
            Device(id="dev-2", name="Mobile App (iPhone 13)", kind=DeviceKind.MOBILE),
        ],
        activity=activity,
    )


@pytest.fixture
def fake_audio():
    return FakeAudio()


@pytest.fixture
def fake_transcriber():
    transcriber = FakeTranscriber()
    yield transcriber
    if transcriber.gate is not None:
        transcriber.gate.set()


@pytest.fixture
def fake_relay():
    return FakeRelay()


@pytest.fixture
def make_session(fake_audio, fake_transcriber, fake_relay, roster, activity):
    """Factory for a logged-in session on Squad-Alpha."""
    sessions = []

    def _make(connect: bool = True, **kwargs) -> PttSession:
        kwargs.setdefault("relay", fake_relay)
        kwargs.setdefault("audio", fake_audio)
        kwargs.setdefault("transcriber", fake_transcriber)
        session = PttSession(
            roster=roster,
            activity=activity,
            **kwargs,
        )
        session.login("Alpha")
        if connect:
            session.connect("Squad-Alpha")
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        session.close()


@pytest.fixture
def live_server():
    """Relay server on an ephemeral port, running in a background event loop."""
    server = RelayServer()
    started = threading.Event()
    state = {}

    def run():
        async def main():
            state["loop"] = asyncio.get_running_loop()
            state["stop"] = asyncio.Event()
            async with server.listen("127.0.0.1", 0) as ws_server:
                state["port"] = next(iter(ws_server.sockets)).getsockname()[1]
                started.set()
                await state["stop"].wait()

        asyncio.run(main())

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert started.wait(5), "relay server did not start"

    yield server, f"ws://127.0.0.1:{state['port']}"

    state["loop"].call_soon_threadsafe(state["stop"].set)
    thread.join(5)
