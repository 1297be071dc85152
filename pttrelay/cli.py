"""
Command-line interface for the PTT relay.

Provides commands for running the relay server, the push-to-talk client,
listing audio devices, and self-test.
"""

import argparse
import asyncio
import sys
import logging
from datetime import datetime

from .activity import ActivityLog
from .config import load_config, validate_environment, Config
from .devices import DeviceRoster, default_roster
from .models import LogEntry, LogKind, Member
from .utils import setup_logger, format_device_list

logger = logging.getLogger(__name__)

LOG_PREFIX = {
    LogKind.SYSTEM: "--",
    LogKind.VOICE: "🎙",
    LogKind.ERROR: "❌",
}


def _load(args) -> Config:
    config = load_config(yaml_file=getattr(args, "config", None))
    if getattr(args, "log_level", None):
        config.logging.log_level = args.log_level
    setup_logger(level=config.logging.log_level, log_file=config.logging.log_file)
    return config


def print_entry(entry: LogEntry):
    stamp = datetime.fromtimestamp(entry.timestamp_ms / 1000).strftime("%H:%M:%S")
    line = f"[{stamp}] {LOG_PREFIX[entry.kind]} "
    if entry.kind == LogKind.VOICE:
        line += f"{entry.sender}: {entry.message}"
        if entry.transcription:
            line += f' "{entry.transcription}"'
    else:
        line += entry.message
    print(line)


def print_devices(roster: DeviceRoster):
    for d in roster.devices():
        flags = []
        if d.is_current:
            flags.append("THIS DEVICE")
        if d.is_muted:
            flags.append("muted")
        print(f"  {d.id}  {d.name} [{d.kind.value}] {d.status.value} {' '.join(flags)}")


def print_users(members: list[Member]):
    print(f"Active users ({len(members)}): " + ", ".join(m.name for m in members))


def cmd_list_devices(args):
    """List all available audio devices."""
    from .audio import list_audio_devices

    print("\n🎤 Enumerating Audio Devices...")
    print(format_device_list(list_audio_devices()))
    return 0


def cmd_self_test(args):
    """Run self-test to verify components."""
    print("\n🔧 Running Self-Test...\n")

    errors = validate_environment()
    for err in errors:
        print(f"❌ {err}")
    if not errors:
        print("✅ Environment variables OK")

    try:
        config = _load(args)
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    print("\n🎵 Checking microphone...")
    try:
        from .audio import SoundDeviceAudio
        if SoundDeviceAudio(config.audio).request_permission():
            print("✅ Microphone available")
        else:
            print("❌ No usable input device")
            errors.append("No input device")
    except OSError as e:
        print(f"❌ Audio backend unavailable: {e}")
        errors.append("Audio backend unavailable")

    print("\n🧠 Checking transcription...")
    from .transcription import AzureTranscriber
    if AzureTranscriber(config.transcription).available:
        print("✅ Azure Speech configured")
    else:
        print("⚠️  Transcription disabled (placeholder text will be sent)")

    print("\n📡 Checking relay server...")
    from .client import RelayClient
    relay = RelayClient(config.client.server_url)
    try:
        relay.connect(open_timeout=3.0)
        print(f"✅ Relay reachable at {config.client.server_url}")
    except Exception as e:
        print(f"❌ Relay not reachable at {config.client.server_url}: {e}")
        errors.append("Relay unreachable")
    finally:
        relay.close()

    print("\n" + "=" * 60)
    if errors:
        print(f"❌ Self-test FAILED with {len(errors)} error(s)")
        return 1
    print("✅ Self-test PASSED - all systems operational")
    return 0


def cmd_serve(args):
    """Run the relay server."""
    from .server import RelayServer

    try:
        config = _load(args)
    except ValueError as e:
        print(f"\n❌ Configuration error: {e}")
        return 1

    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    server = RelayServer(config.server)
    print(f"\n📡 Relay listening on ws://{config.server.host}:{config.server.port}\n")
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        print("\n\n👋 Shutting down...")
    return 0


def cmd_talk(args):
    """Run the push-to-talk client."""
    from .audio import SoundDeviceAudio
    from .client import RelayClient
    from .ptt import PushToTalkKey
    from .session import PttSession
    from .transcription import AzureTranscriber

    try:
        config = _load(args)
    except ValueError as e:
        print(f"\n❌ Configuration error: {e}")
        return 1

    if args.server_url:
        config.client.server_url = args.server_url
    if args.name:
        config.client.callsign = args.name
    if args.channel:
        config.client.channel = args.channel
    if args.echo_ms is not None:
        config.client.loopback_echo_ms = args.echo_ms
    if args.ptt_key:
        config.ptt.ptt_key = args.ptt_key
    if args.mic_device:
        config.audio.mic_device = args.mic_device
    if args.output_device:
        config.audio.output_device = args.output_device

    if not config.client.callsign:
        print("❌ A callsign is required (--name or PTT_CALLSIGN)")
        return 1

    activity = ActivityLog()
    activity.subscribe(print_entry)
    roster = default_roster(activity)
    relay = RelayClient(config.client.server_url, config.server.max_message_bytes)
    transcriber = AzureTranscriber(config.transcription)
    session = PttSession(
        audio=SoundDeviceAudio(config.audio),
        transcriber=transcriber,
        roster=roster,
        activity=activity,
        relay=relay,
        config=config.client,
        transcription_timeout_s=config.transcription.timeout_s,
    )

    try:
        session.login(config.client.callsign)
    except PermissionError as e:
        print(f"❌ {e}")
        return 1

    relay.on_voice_message = session.receive
    relay.on_active_users = print_users
    relay.on_user_joined = lambda _id, name: activity.system(f"{name} joined the channel")
    relay.on_closed = lambda reason: session.disconnect(error=reason or "server closed the connection")

    session.connecting()
    try:
        relay.connect()
    except Exception as e:
        print(f"❌ Cannot reach relay at {config.client.server_url}: {e}")
        return 1

    relay.join(config.client.callsign, config.client.channel)
    session.connect(config.client.channel)

    hotkey = PushToTalkKey(session, config.ptt.ptt_key, config.ptt.debounce_ms)
    print(f"\n🎤 Hold {config.ptt.ptt_key} to talk on {config.client.channel}")
    print("   Commands: /devices, /mute <id>, /offline <id>, /users, /quit\n")

    try:
        with hotkey:
            while True:
                line = input().strip()
                if not line:
                    continue
                cmd, _, arg = line.partition(" ")
                try:
                    if cmd in ("/q", "/quit"):
                        break
                    elif cmd == "/devices":
                        print_devices(roster)
                    elif cmd == "/mute":
                        roster.toggle_mute(arg or roster.current_device().id)
                    elif cmd == "/offline":
                        roster.mark_offline(arg)
                    elif cmd == "/users":
                        print_users(relay.active_users)
                    else:
                        print(f"Unknown command: {cmd}")
                except KeyError:
                    print(f"Unknown device: {arg}")
    except (KeyboardInterrupt, EOFError):
        print("\n\n👋 Shutting down...")
    finally:
        relay.on_closed = None
        relay.close()
        session.close()
        transcriber.timing.log_stats()

    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="PTT Relay - push-to-talk voice messaging over a channel relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the relay server
  python -m pttrelay.cli serve --port 3001

  # Join a channel and talk (hold F8)
  python -m pttrelay.cli talk --name Alpha --channel Squad-Alpha

  # Offline test: hear your own messages back after 2 s
  python -m pttrelay.cli talk --name Alpha --echo-ms 2000

  # List available audio devices
  python -m pttrelay.cli list-devices
        """
    )
    parser.add_argument('--config', type=str, help='Path to config.yaml')
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    parser_list = subparsers.add_parser('list-devices', help='List all available audio devices')
    parser_list.set_defaults(func=cmd_list_devices)

    parser_test = subparsers.add_parser('self-test', help='Run self-test to verify components')
    parser_test.set_defaults(func=cmd_self_test)

    parser_serve = subparsers.add_parser('serve', help='Run the relay server')
    parser_serve.add_argument('--host', type=str, help='Bind address (default: 0.0.0.0)')
    parser_serve.add_argument('--port', type=int, help='Listen port (default: 3001)')
    parser_serve.set_defaults(func=cmd_serve)

    parser_talk = subparsers.add_parser('talk', help='Join a channel and talk')
    parser_talk.add_argument('--name', type=str, help='Callsign shown to other members')
    parser_talk.add_argument('--channel', type=str, help='Channel to join (default: Squad-Alpha)')
    parser_talk.add_argument('--server-url', type=str, help='Relay URL (default: ws://localhost:3001)')
    parser_talk.add_argument('--ptt-key', type=str, help='PTT hotkey (default: F8)')
    parser_talk.add_argument('--mic-device', type=str, help='Microphone device name (substring match)')
    parser_talk.add_argument('--output-device', type=str, help='Playback device name (substring match)')
    parser_talk.add_argument('--echo-ms', type=int, help='Echo own messages back after N ms (0 = off)')
    parser_talk.set_defaults(func=cmd_talk)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
