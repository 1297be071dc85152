"""
Configuration module for the PTT relay server and client.

Loads configuration from .env and optional config.yaml using Pydantic models.
"""

import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv
import yaml


class ServerConfig(BaseModel):
    """Relay server parameters."""
    host: str = Field("0.0.0.0", description="Bind address")
    port: int = Field(3001, description="Listen port")
    max_message_bytes: int = Field(100_000_000, description="Largest accepted frame (bytes)")

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 0 <= v <= 65535:
            raise ValueError(f"port must be within 0-65535, got {v}")
        return v


class ClientConfig(BaseModel):
    """Relay client / PTT session parameters."""
    server_url: str = Field("ws://localhost:3001", description="Relay server URL")
    callsign: str = Field("", description="Display name announced on join")
    channel: str = Field("Squad-Alpha", description="Channel to join")
    loopback_echo_ms: int = Field(0, description="Echo own messages back after this delay (0 = off)")


class AudioConfig(BaseModel):
    """Audio capture/playback parameters."""
    sample_rate: int = Field(16000, description="Capture sample rate (Hz)")
    output_sample_rate: Optional[int] = Field(None, description="Playback rate (Hz), default: blob rate")
    frame_ms: int = Field(20, description="Capture block duration (ms)")
    mic_device: Optional[str] = Field(None, description="Microphone device name")
    output_device: Optional[str] = Field(None, description="Playback device name")


class TranscriptionConfig(BaseModel):
    """Azure Speech transcription parameters."""
    speech_key: str = Field("", description="Azure Speech API key (empty disables transcription)")
    speech_region: str = Field("westeurope", description="Azure Speech region")
    language: str = Field("en-US", description="Recognition language")
    timeout_s: float = Field(15.0, description="Upper bound on a single transcription (s)")

    @field_validator('speech_key')
    @classmethod
    def validate_key(cls, v):
        if v == "your_key_here":
            raise ValueError("SPEECH_KEY is still set to the placeholder value")
        return v

    @field_validator('timeout_s')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("transcription timeout must be positive")
        return v

    @property
    def enabled(self) -> bool:
        return bool(self.speech_key)


class PTTConfig(BaseModel):
    """Push-to-Talk configuration."""
    ptt_key: str = Field("F8", description="PTT hotkey")
    debounce_ms: int = Field(50, description="Debounce duration (ms)")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    log_level: str = Field("INFO", description="Logging level")
    log_file: Optional[str] = Field("logs/run.log", description="Log file path")


class Config(BaseModel):
    """Main configuration model."""
    server: ServerConfig = ServerConfig()
    client: ClientConfig = ClientConfig()
    audio: AudioConfig = AudioConfig()
    transcription: TranscriptionConfig = TranscriptionConfig()
    ptt: PTTConfig = PTTConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(env_file: Optional[str] = None, yaml_file: Optional[str] = None) -> Config:
    """
    Load configuration from environment and optional YAML file.

    Args:
        env_file: Path to .env file (default: .env in working directory)
        yaml_file: Path to config.yaml (optional)

    Returns:
        Config: Validated configuration object

    Raises:
        ValueError: If configuration is invalid
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    config_dict = {
        "server": {
            "host": os.getenv("PTT_SERVER_HOST", "0.0.0.0"),
            "port": os.getenv("PTT_SERVER_PORT", os.getenv("PORT", "3001")),
        },
        "client": {
            "server_url": os.getenv("PTT_SERVER_URL", "ws://localhost:3001"),
            "callsign": os.getenv("PTT_CALLSIGN", ""),
            "channel": os.getenv("PTT_CHANNEL", "Squad-Alpha"),
        },
        "transcription": {
            "speech_key": os.getenv("SPEECH_KEY", ""),
            "speech_region": os.getenv("SPEECH_REGION", "westeurope"),
            "language": os.getenv("STT_LANGUAGE", "en-US"),
        },
    }

    # Override with YAML if provided
    if yaml_file and Path(yaml_file).exists():
        with open(yaml_file, 'r') as f:
            yaml_config = yaml.safe_load(f) or {}
            for key, value in yaml_config.items():
                if key in config_dict and isinstance(value, dict):
                    config_dict[key].update(value)
                else:
                    config_dict[key] = value

    try:
        return Config(**config_dict)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")


def validate_environment() -> list[str]:
    """
    Validate environment prerequisites.

    Returns:
        List of problems found (empty if all OK)
    """
    errors = []

    if os.getenv("SPEECH_KEY") and not os.getenv("SPEECH_REGION"):
        errors.append("SPEECH_REGION must be set when SPEECH_KEY is provided")

    port = os.getenv("PTT_SERVER_PORT")
    if port is not None and not port.isdigit():
        errors.append(f"PTT_SERVER_PORT must be numeric, got {port!r}")

    url = os.getenv("PTT_SERVER_URL")
    if url and not url.startswith(("ws://", "wss://")):
        errors.append("PTT_SERVER_URL must start with ws:// or wss://")

    return errors
