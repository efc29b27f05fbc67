"""tuicord configuration, loaded from tuicord.yaml + environment / .env."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load tuicord.yaml from TUICORD_CONFIG_PATH or default locations."""
    config_path = os.getenv("TUICORD_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("~/.config/tuicord/tuicord.yaml").expanduser(),
            Path("tuicord.yaml"),
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            return data if isinstance(data, dict) else {}
    return {}


class TuicordConfig(BaseSettings):
    """Root tuicord configuration."""

    # Credential
    token: str = Field(
        default="",
        validation_alias=AliasChoices("TUICORD_TOKEN", "DISCORD_USER_TOKEN"),
        description="Discord user token used for REST and gateway auth",
    )

    # Provider endpoints
    api_base: str = Field(default="https://discord.com/api/v10")
    gateway_url: str = Field(default="wss://gateway.discord.gg/?v=10&encoding=json")
    request_timeout_s: float = Field(default=15.0, gt=0)

    # Behaviour
    history_limit: int = Field(default=50, ge=1, le=100, description="Messages fetched per history load")
    command_prefix: str = Field(default="/", min_length=1, max_length=3)

    # Logging
    log_level: str = Field(default="WARNING")
    log_format: Literal["console", "json"] = Field(default="console")
    log_file: str | None = Field(default=None, description="Write logs here instead of stderr")

    model_config = SettingsConfigDict(
        env_prefix="TUICORD_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("token", mode="before")
    @classmethod
    def _strip_token(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    @classmethod
    def load(cls, **overrides: Any) -> TuicordConfig:
        """Load config from YAML + env vars; explicit overrides win."""
        yaml_cfg = _load_yaml_config()
        kwargs: dict[str, Any] = {**yaml_cfg}
        kwargs.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**kwargs)


# Singleton
_config: TuicordConfig | None = None


def get_config() -> TuicordConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = TuicordConfig.load()
    return _config
