"""
Tests for the relay server's join / voice / disconnect handling.

Connections are driven directly without sockets; frames are read back from
each connection's outbox.
"""

import json

import pytest

from pttrelay.protocol import (
    ACTIVE_USERS,
    ERROR,
    USER_JOINED,
    VOICE_MESSAGE,
    ProtocolError,
    VoicePayload,
    encode_blob,
    join_event,
    voice_event,
)
from pttrelay.server import ClientConnection, RelayServer


def frames(conn):
    return [json.loads(f) for f in conn.pending()]


def events(conn):
    return [f["event"] for f in frames(conn)]


@pytest.fixture
def server():
    return RelayServer()


@pytest.fixture
def connect(server):
    def _connect(name):
        conn = ClientConnection(connection_id=f"conn-{name.lower()}")
        server.register(conn)
        return conn
    return _connect


def test_first_join_gets_presence_and_snapshot(server, connect):
    """Test the joiner receives user_joined then active_users with itself."""
    alpha = connect("Alpha")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")

    received = frames(alpha)
    assert [f["event"] for f in received] == [USER_JOINED, ACTIVE_USERS]
    assert received[0]["data"] == {"id": "conn-alpha", "name": "Alpha"}
    assert received[1]["data"] == [{"id": "conn-alpha", "name": "Alpha", "channel": "Squad-Alpha"}]


def test_second_join_announced_to_everyone(server, connect):
    """Test existing members see the newcomer, presence before snapshot."""
    alpha, bravo = connect("Alpha"), connect("Bravo")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")
    alpha.pending()

    server.handle_join(bravo, "Bravo", "Squad-Alpha")

    for conn in (alpha, bravo):
        received = frames(conn)
        assert [f["event"] for f in received] == [USER_JOINED, ACTIVE_USERS]
        assert received[0]["data"]["name"] == "Bravo"
        assert [m["name"] for m in received[1]["data"]] == ["Alpha", "Bravo"]


def test_voice_reaches_others_not_sender(server, connect):
    """Test a message is relayed to other members only."""
    alpha, bravo, charlie = connect("Alpha"), connect("Bravo"), connect("Charlie")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")
    server.handle_join(bravo, "Bravo", "Squad-Alpha")
    server.handle_join(charlie, "Charlie", "Squad-Bravo")
    for conn in (alpha, bravo, charlie):
        conn.pending()

    server.dispatch(alpha, voice_event(b"RIFF-alpha", "Contact north", 900))

    assert frames(alpha) == []
    assert frames(charlie) == []
    received = frames(bravo)
    assert len(received) == 1
    data = received[0]["data"]
    assert received[0]["event"] == VOICE_MESSAGE
    assert data["senderId"] == "conn-alpha"
    assert data["senderName"] == "Alpha"
    assert data["audioBlob"] == encode_blob(b"RIFF-alpha")
    assert data["transcription"] == "Contact north"
    assert data["duration"] == 900
    assert server.relayed_count == 1


def test_voice_from_unregistered_connection_dropped(server, connect):
    """Test messages before join are ignored without an error reply."""
    alpha, bravo = connect("Alpha"), connect("Bravo")
    server.handle_join(bravo, "Bravo", "Squad-Alpha")
    bravo.pending()

    result = server.handle_voice_message(alpha, VoicePayload(audio_blob=encode_blob(b"x")))

    assert result is None
    assert frames(alpha) == []
    assert frames(bravo) == []


def test_invalid_blob_raises(server, connect):
    alpha = connect("Alpha")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")

    with pytest.raises(ProtocolError):
        server.handle_voice_message(alpha, VoicePayload(audio_blob="not base64!!"))


def test_disconnect_updates_snapshot(server, connect):
    """Test remaining members receive a fresh active_users list."""
    alpha, bravo = connect("Alpha"), connect("Bravo")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")
    server.handle_join(bravo, "Bravo", "Squad-Alpha")
    alpha.pending()

    server.handle_disconnect(bravo)

    received = frames(alpha)
    assert [f["event"] for f in received] == [ACTIVE_USERS]
    assert [m["name"] for m in received[0]["data"]] == ["Alpha"]
    assert "conn-bravo" not in server.registry


def test_disconnect_before_join(server, connect):
    alpha, bravo = connect("Alpha"), connect("Bravo")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")
    alpha.pending()

    server.handle_disconnect(bravo)

    assert frames(alpha) == []


def test_rejoin_same_channel_is_noop(server, connect):
    alpha = connect("Alpha")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")
    alpha.pending()

    server.handle_join(alpha, "Alpha", "Squad-Alpha")

    assert frames(alpha) == []
    assert len(server.registry.members_of("Squad-Alpha")) == 1


def test_join_other_channel_moves_member(server, connect):
    """Test the old channel is told its member left."""
    alpha, bravo = connect("Alpha"), connect("Bravo")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")
    server.handle_join(bravo, "Bravo", "Squad-Alpha")
    alpha.pending()
    bravo.pending()

    server.handle_join(alpha, "Alpha", "Squad-Bravo")

    received = frames(bravo)
    assert [f["event"] for f in received] == [ACTIVE_USERS]
    assert [m["name"] for m in received[0]["data"]] == ["Bravo"]
    assert events(alpha) == [USER_JOINED, ACTIVE_USERS]
    assert server.registry.channel_of("conn-alpha") == "Squad-Bravo"


@pytest.mark.parametrize("raw", [
    "not json",
    json.dumps(["join"]),
    json.dumps({"event": "teleport", "data": {}}),
    json.dumps({"event": "join", "data": {"name": ""}}),
    b"\x00\x01",
])
def test_malformed_frame_answered_to_sender_only(server, connect, raw):
    """Test bad frames produce an error event for the offending client only."""
    alpha, bravo = connect("Alpha"), connect("Bravo")
    server.handle_join(alpha, "Alpha", "Squad-Alpha")
    server.handle_join(bravo, "Bravo", "Squad-Alpha")
    alpha.pending()
    bravo.pending()

    server.dispatch(alpha, raw)

    received = frames(alpha)
    assert [f["event"] for f in received] == [ERROR]
    assert received[0]["data"]["message"]
    assert frames(bravo) == []


def test_dispatch_join_frame(server, connect):
    alpha = connect("Alpha")
    server.dispatch(alpha, join_event("Alpha", "Squad-Alpha"))

    assert server.registry.channel_of("conn-alpha") == "Squad-Alpha"
    assert events(alpha) == [USER_JOINED, ACTIVE_USERS]


def test_closed_connection_drops_frames():
    conn = ClientConnection(connection_id="c1")
    conn.close()
    conn.send("late")

    assert conn.pending() == []
