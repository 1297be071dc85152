"""
End-to-end tests: RelayClient instances talking through a live RelayServer.
"""

from conftest import FakeAudio, FakeTranscriber, wait_for
from pttrelay.activity import ActivityLog
from pttrelay.client import RelayClient
from pttrelay.devices import default_roster
from pttrelay.models import LogKind
from pttrelay.session import PttSession


def names(client):
    return [m.name for m in client.active_users]


def test_join_and_presence(live_server):
    """Test both clients see the shared member list in join order."""
    server, url = live_server
    joined = []

    with RelayClient(url) as alpha, RelayClient(url) as bravo:
        alpha.on_user_joined = lambda _id, name: joined.append(name)

        alpha.join("Alpha", "Squad-Alpha")
        assert wait_for(lambda: names(alpha) == ["Alpha"])

        bravo.join("Bravo", "Squad-Alpha")
        assert wait_for(lambda: names(alpha) == ["Alpha", "Bravo"])
        assert wait_for(lambda: names(bravo) == ["Alpha", "Bravo"])
        assert joined == ["Alpha", "Bravo"]


def test_voice_relayed_to_peer(live_server):
    """Test a voice message arrives at the other member only."""
    server, url = live_server
    inbox_alpha, inbox_bravo = [], []

    with RelayClient(url) as alpha, RelayClient(url) as bravo:
        alpha.on_voice_message = inbox_alpha.append
        bravo.on_voice_message = inbox_bravo.append
        alpha.join("Alpha", "Squad-Alpha")
        bravo.join("Bravo", "Squad-Alpha")
        assert wait_for(lambda: len(alpha.active_users) == 2)

        alpha.send_voice_message(b"RIFF-alpha-audio", "Contact north", 1100)

        assert wait_for(lambda: len(inbox_bravo) == 1)
        message = inbox_bravo[0]
        assert message.sender_name == "Alpha"
        assert message.audio_blob == b"RIFF-alpha-audio"
        assert message.transcription == "Contact north"
        assert message.duration_ms == 1100
        assert inbox_alpha == []


def test_disconnect_refreshes_member_list(live_server):
    server, url = live_server

    with RelayClient(url) as alpha:
        alpha.join("Alpha", "Squad-Alpha")
        bravo = RelayClient(url)
        bravo.connect()
        bravo.join("Bravo", "Squad-Alpha")
        assert wait_for(lambda: names(alpha) == ["Alpha", "Bravo"])

        bravo.close()

        assert wait_for(lambda: names(alpha) == ["Alpha"])


def test_on_closed_after_local_close(live_server):
    """Test a locally initiated close reports no error reason."""
    server, url = live_server
    reasons = []

    client = RelayClient(url)
    client.on_closed = reasons.append
    client.connect()
    client.join("Alpha", "Squad-Alpha")
    assert wait_for(lambda: len(server.registry) == 1)

    client.close()

    assert reasons == [None]
    assert wait_for(lambda: len(server.registry) == 0)


def test_two_sessions_talk(live_server):
    """Test a full push-to-talk exchange between two sessions."""
    server, url = live_server
    sessions, clients = [], []

    def build(name):
        activity = ActivityLog()
        relay = RelayClient(url)
        session = PttSession(
            audio=FakeAudio(blob=f"RIFF-{name}".encode()),
            transcriber=FakeTranscriber(f"{name} here"),
            roster=default_roster(activity),
            relay=relay,
        )
        relay.on_voice_message = session.receive
        session.login(name)
        relay.connect()
        relay.join(name, "Squad-Alpha")
        session.connect("Squad-Alpha")
        sessions.append(session)
        clients.append(relay)
        return session, relay

    try:
        alpha, alpha_relay = build("Alpha")
        bravo, bravo_relay = build("Bravo")
        assert wait_for(lambda: len(alpha_relay.active_users) == 2)

        alpha.start()
        alpha.stop().result(timeout=2)

        assert wait_for(lambda: len(bravo.activity.entries(LogKind.VOICE)) == 1)
        entry = bravo.activity.entries(LogKind.VOICE)[0]
        assert entry.sender == "Alpha"
        assert entry.transcription == "Alpha here"
        assert bravo.audio.played == [b"RIFF-Alpha"]
        assert alpha.audio.played == []
    finally:
        for relay in clients:
            relay.close()
        for session in sessions:
            session.close()
