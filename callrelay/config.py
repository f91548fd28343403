"""Configuration system for callrelay.

Supports loading from YAML files, dicts, or the process environment via
Pydantic models. Credentials are normally supplied through the environment
(or a ``.env`` file) and override whatever a YAML file holds.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    """HTTP / WebSocket server settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    media_path: str = "/outbound-media-stream"


class TwilioConfig(BaseModel):
    """Telephony side: credentials and the number calls are placed from."""

    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""


class AgentConfig(BaseModel):
    """Conversational agent side."""

    api_key: str = ""
    agent_id: str = ""
    api_base: str = "https://api.elevenlabs.io"
    reconnect_delay_ms: int = 3000
    hangup_grace_ms: int = 2000
    # 0 means retry for as long as the call is live
    max_reconnect_attempts: int = 5
    signed_url_timeout_s: float = 10.0

    @property
    def reconnect_delay(self) -> float:
        return self.reconnect_delay_ms / 1000.0

    @property
    def hangup_grace(self) -> float:
        return self.hangup_grace_ms / 1000.0

    @property
    def reconnect_limit(self) -> int | None:
        return self.max_reconnect_attempts or None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class EnvSettings(BaseSettings):
    """Environment variables (and ``.env``) the relay understands."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    elevenlabs_api_key: str = ""
    elevenlabs_agent_id: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    port: int | None = None
    log_level: str = ""


# Environment variable -> (section, key)
ENV_MAPPINGS: dict[str, tuple[str, str]] = {
    "elevenlabs_api_key": ("agent", "api_key"),
    "elevenlabs_agent_id": ("agent", "agent_id"),
    "twilio_account_sid": ("twilio", "account_sid"),
    "twilio_auth_token": ("twilio", "auth_token"),
    "twilio_phone_number": ("twilio", "phone_number"),
    "port": ("server", "port"),
    "log_level": ("logging", "level"),
}

# Required settings, reported by their environment variable names.
REQUIRED_CREDENTIALS: tuple[str, ...] = (
    "elevenlabs_api_key",
    "elevenlabs_agent_id",
    "twilio_account_sid",
    "twilio_auth_token",
    "twilio_phone_number",
)


class RelayConfig(BaseModel):
    """Top-level callrelay configuration.

    Examples:
        # Programmatic
        config = RelayConfig(agent=AgentConfig(api_key="...", agent_id="..."))

        # From YAML
        config = RelayConfig.from_yaml("relay.yaml")

        # Shorthand
        config = RelayConfig.from_dict({
            "port": 8000,
            "elevenlabs_agent_id": "agent_123",
        })

        # Environment / .env
        config = RelayConfig.from_env()
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    twilio: TwilioConfig = Field(default_factory=TwilioConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> RelayConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls._from_raw(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelayConfig:
        """Load configuration from a dictionary.

        Accepts the nested format as well as flat keys named after the
        environment variables (``elevenlabs_api_key``, ``port``, ...) and
        ``host`` / ``media_path``.
        """
        return cls._from_raw(dict(data))

    @classmethod
    def from_env(cls, env_file: str | Path | None = ".env") -> RelayConfig:
        """Build a configuration from the environment only."""
        return cls().merge_env(env_file)

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> RelayConfig:
        """Normalize and construct config from a raw dict."""
        flat_mappings = dict(ENV_MAPPINGS)
        flat_mappings["host"] = ("server", "host")
        flat_mappings["media_path"] = ("server", "media_path")

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                data.setdefault(section, {})
                data[section][nested_key] = data.pop(flat_key)

        return cls(**data)

    def merge_env(self, env_file: str | Path | None = ".env") -> RelayConfig:
        """Return a copy where non-empty environment values take precedence."""
        env = EnvSettings(_env_file=env_file)
        data = self.model_dump()
        for env_key, (section, key) in ENV_MAPPINGS.items():
            value = getattr(env, env_key)
            if value not in (None, ""):
                data[section][key] = value
        return RelayConfig(**data)

    def missing_credentials(self) -> list[str]:
        """Names (as environment variables) of required settings left empty."""
        missing = []
        for env_key in REQUIRED_CREDENTIALS:
            section, key = ENV_MAPPINGS[env_key]
            if not getattr(getattr(self, section), key):
                missing.append(env_key.upper())
        return missing


def load_config(source: str | Path | dict[str, Any] | RelayConfig | None = None) -> RelayConfig:
    """Load a RelayConfig from any supported source.

    Args:
        source: A YAML file path, a dict, an existing RelayConfig, or None
            for the environment.

    Returns:
        A RelayConfig instance.
    """
    if source is None:
        return RelayConfig.from_env()
    if isinstance(source, RelayConfig):
        return source
    if isinstance(source, dict):
        return RelayConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return RelayConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


# Default YAML template for `callrelay init`
DEFAULT_CONFIG_YAML = """\
# callrelay configuration
# Credentials may also come from the environment or a .env file:
#   ELEVENLABS_API_KEY, ELEVENLABS_AGENT_ID,
#   TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER, PORT

server:
  host: 0.0.0.0
  port: 8000
  media_path: /outbound-media-stream

twilio:
  account_sid: ""
  auth_token: ""
  phone_number: ""

agent:
  api_key: ""
  agent_id: ""
  reconnect_delay_ms: 3000
  hangup_grace_ms: 2000
  max_reconnect_attempts: 5   # 0 = unlimited while the call is live

logging:
  level: INFO
"""
