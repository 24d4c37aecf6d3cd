"""
Configuration loader for the Nexus Discord relay.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

_ENV_PATTERN = re.compile(r'\$\{(\w+)\}')


class ConfigError(ValueError):
    """Raised when required configuration is missing or invalid."""


@dataclass
class DiscordConfig:
    token: str = ""
    client_id: str = ""
    guild_id: str = ""


@dataclass
class BackendConfig:
    type: str = "rest"                  # "rest" | "mock"
    base_url: str = ""
    api_key: str = ""
    timeout_s: float = 10.0
    max_retries: int = 3                # per-request attempts inside the REST client
    user_agent: str = "Nexus-AMS-DiscordBot/0.1"


@dataclass
class WorkerConfig:
    poll_interval_s: float = 30.0
    max_backoff_s: float = 300.0
    status_backoff_base_s: float = 10.0
    queue_fetch_limit: int = 20
    status_retry_max_attempts: Optional[int] = None   # None = retry until accepted


@dataclass
class DeliveryConfig:
    chunk_limit: int = 1900
    max_attempts: int = 3


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json_output: bool = False


@dataclass
class Settings:
    app_name: str = "NexusDiscordRelay"
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    def replacer(match):
        return os.environ.get(match.group(1), match.group(0))
    return _ENV_PATTERN.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _section(cls, raw: Any):
    """Build a dataclass section from a mapping, ignoring unknown keys."""
    if not isinstance(raw, dict):
        return cls()
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__ and v is not None}
    return cls(**known)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "NEXUS_RELAY_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.discord = _section(DiscordConfig, raw.get("discord"))
        # snowflakes may be written unquoted in YAML
        settings.discord.client_id = str(settings.discord.client_id)
        settings.discord.guild_id = str(settings.discord.guild_id)
        settings.backend = _section(BackendConfig, raw.get("backend"))
        settings.worker = _section(WorkerConfig, raw.get("worker"))
        settings.delivery = _section(DeliveryConfig, raw.get("delivery"))
        settings.logging = _section(LoggingConfig, raw.get("logging"))

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    text = str(value).strip()
    return not text or bool(_ENV_PATTERN.fullmatch(text))


def validate_settings(settings: Settings) -> None:
    """Raise ConfigError listing every required value that is absent."""
    required = {
        "DISCORD_BOT_TOKEN": settings.discord.token,
        "DISCORD_CLIENT_ID": settings.discord.client_id,
        "DISCORD_GUILD_ID": settings.discord.guild_id,
    }
    if settings.backend.type == "rest":
        required["NEXUS_API_URL"] = settings.backend.base_url
        required["NEXUS_API_KEY"] = settings.backend.api_key

    missing = [name for name, value in required.items() if _is_missing(value)]

    worker = settings.worker
    if worker.poll_interval_s <= 0 or worker.max_backoff_s <= 0 or worker.status_backoff_base_s <= 0:
        missing.append("worker intervals must be positive")
    if worker.queue_fetch_limit < 1:
        missing.append("worker.queue_fetch_limit must be >= 1")
    if settings.delivery.max_attempts < 1 or settings.delivery.chunk_limit < 1:
        missing.append("delivery.max_attempts and delivery.chunk_limit must be >= 1")

    if missing:
        raise ConfigError(
            "Missing or invalid configuration: " + ", ".join(missing)
            + ". Populate .env or the settings file before starting the bot."
        )
