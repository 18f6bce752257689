"""Configuration management for ccpa."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, PydanticBaseSettingsSource, SettingsConfigDict

from ccpa.errors import ConfigurationError
from ccpa.logging_utils import LogProfile

CONFIG_FILENAME = "ccpa.config.json"

CONFIG_TEMPLATE: dict[str, Any] = {
    "telegram_token": "YOUR_BOT_TOKEN_HERE",
    "allowed_user_ids": [],
    "agent_command": "claude",
    "log_level": "INFO",
}


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CCPA_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Telegram
    telegram_token: str = Field(default="", description="Telegram bot token")
    allowed_user_ids: Annotated[list[int], NoDecode] = Field(
        default_factory=list, description="User ids allowed to talk to the bot; empty allows everyone"
    )

    # Agent
    agent_command: str = Field(default="claude", description="Agent CLI executable")
    workspace: Path = Field(default_factory=Path.cwd, description="Working directory of the agent")
    data_dir: Path | None = Field(default=None, description="Root directory for per-user data")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_profile: LogProfile = Field(default="default", description="stderr line format or a Rich console")

    # Request limiting
    rate_limit_max: int = Field(default=10, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # Delivery
    message_limit: int = Field(default=4096, ge=200)
    stream_interval_ms: int = Field(default=500, ge=0)
    progress_interval_ms: int = Field(default=1000, ge=0)
    chunk_delay_ms: int = Field(default=100, ge=0)

    # Voice
    transcription_command: str = Field(default="whisper")
    transcription_model: str = Field(default="base")
    show_transcription: bool = Field(default=True)

    @field_validator("allowed_user_ids", mode="before")
    @classmethod
    def _split_user_ids(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [int(part) for part in value.replace(";", ",").split(",") if part.strip()]
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Values passed to the constructor come from the JSON config file and lose to the environment.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def resolved_data_dir(self) -> Path:
        if self.data_dir is not None:
            return self.data_dir
        return self.workspace / ".ccpa" / "data"


def read_config_file(workspace: Path) -> dict[str, Any]:
    """Read ``ccpa.config.json`` from the workspace, or an empty mapping if absent."""
    path = workspace / CONFIG_FILENAME
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return data


def load_settings(workspace: Path | None = None) -> Settings:
    """Load settings for one workspace.

    Args:
        workspace: Directory holding the optional config file; defaults to the current directory.

    Returns:
        Settings instance
    """
    workspace = (workspace or Path.cwd()).resolve()
    values = read_config_file(workspace)
    values.setdefault("workspace", workspace)
    try:
        return Settings(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc


def write_config_template(workspace: Path) -> Path:
    path = workspace / CONFIG_FILENAME
    if path.exists():
        raise ConfigurationError(f"{CONFIG_FILENAME} already exists in {workspace}")
    workspace.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(CONFIG_TEMPLATE, indent=2) + "\n", encoding="utf-8")
    return path
