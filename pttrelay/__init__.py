"""
PTT Relay Package.

Push-to-talk voice messaging: a websocket relay that broadcasts recorded
messages to the other members of a named channel, and a client whose
session state machine governs capture, transcription and playback.
"""

__version__ = "0.1.0"
__all__ = [
    "Config",
    "ChannelRegistry",
    "RelayServer",
    "RelayClient",
    "DeviceRoster",
    "ActivityLog",
    "PttSession",
    "PushToTalkKey",
    "SoundDeviceAudio",
    "AzureTranscriber",
]
