"""
Tests for wire frame encoding and validation.
"""

import json

import pytest

from pttrelay.models import Member, VoiceMessage
from pttrelay.protocol import (
    ACTIVE_USERS,
    JOIN,
    SERVER_EVENTS,
    VOICE_MESSAGE,
    ProtocolError,
    RelayedVoicePayload,
    active_users_event,
    decode_blob,
    decode_event,
    join_event,
    relay_event,
    to_voice_message,
    voice_event,
)


def test_voice_event_uses_camel_case():
    """Test outbound voice frames carry the browser-compatible field names."""
    frame = json.loads(voice_event(b"\x00\x01audio", "Copy", 1500))

    assert frame["event"] == VOICE_MESSAGE
    assert set(frame["data"]) == {"audioBlob", "transcription", "duration"}
    assert frame["data"]["audioBlob"] == "AAFhdWRpbw=="
    assert frame["data"]["duration"] == 1500


def test_decode_join():
    event, payload = decode_event(join_event("Alpha", "Squad-Alpha"))

    assert event == JOIN
    assert payload.name == "Alpha"
    assert payload.channel == "Squad-Alpha"


def test_decode_voice_without_transcription():
    raw = json.dumps({"event": "voice_message", "data": {"audioBlob": "AAA="}})
    event, payload = decode_event(raw)

    assert event == VOICE_MESSAGE
    assert payload.transcription is None
    assert payload.duration == 0


def test_relayed_message_keeps_sender_and_payload():
    """Test the relayed frame reproduces the message on the client side."""
    message = VoiceMessage(
        sender_id="conn-alpha",
        sender_name="Alpha",
        audio_blob=b"RIFF-data",
        transcription="Moving",
        duration_ms=800,
    )

    event, payload = decode_event(relay_event(message), SERVER_EVENTS)
    assert isinstance(payload, RelayedVoicePayload)

    restored = to_voice_message(payload)
    assert restored == message


def test_active_users_decodes_members():
    members = [Member(id="c1", name="Alpha", channel="Squad-Alpha")]
    event, payload = decode_event(active_users_event(members), SERVER_EVENTS)

    assert event == ACTIVE_USERS
    assert payload == members


def test_server_events_not_accepted_from_clients():
    members = [Member(id="c1", name="Alpha", channel="Squad-Alpha")]

    with pytest.raises(ProtocolError, match="Unknown event"):
        decode_event(active_users_event(members))


@pytest.mark.parametrize("raw, match", [
    (b"binary", "Binary"),
    ("{broken", "Invalid JSON"),
    ("[1, 2]", "'event'"),
    ('{"data": {}}', "'event'"),
    ('{"event": "voice_message", "data": {"duration": -5}}', "Invalid voice_message payload"),
    ('{"event": "join"}', "Invalid join payload"),
])
def test_decode_rejects(raw, match):
    with pytest.raises(ProtocolError, match=match):
        decode_event(raw)


def test_decode_blob_rejects_garbage():
    with pytest.raises(ProtocolError):
        decode_blob("%%%")
