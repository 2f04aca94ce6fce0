"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _app_dir(override_env: str, xdg_env: str, xdg_default: Path) -> Path:
    """``$FINNOTIFY_*_DIR`` if set, else the XDG base directory plus ``finnotify``."""
    override = os.environ.get(override_env)
    if override:
        return Path(override)
    return Path(os.environ.get(xdg_env) or xdg_default) / "finnotify"


def default_config_dir() -> Path:
    return _app_dir("FINNOTIFY_CONFIG_DIR", "XDG_CONFIG_HOME", Path.home() / ".config")


def default_data_dir() -> Path:
    return _app_dir("FINNOTIFY_DATA_DIR", "XDG_DATA_HOME", Path.home() / ".local" / "share")


class DatabaseConfig(BaseModel):
    path: str = ""


class SchedulerConfig(BaseModel):
    enabled: bool = True
    # Local wall-clock boundaries, cron syntax.
    daily_cron: str = "1 0 * * *"
    monthly_cron: str = "10 0 1 * *"
    monthly_check_cron: str = "10 0 * * *"
    run_daily_on_start: bool = True


class WebhooksConfig(BaseModel):
    timeout: float = 10.0
    test_timeout: float = 5.0
    failure_threshold: int = 10
    match_strategy: Literal["query", "memory"] = "query"
    user_agent: str = "finnotify-webhooks/0.1"


class RealtimeConfig(BaseModel):
    enabled: bool = True
    bind: str = "127.0.0.1"
    port: int = 8430
    token_secret: str = ""
    token_ttl: int = 86400
    admin_token: str = ""


class EmailConfig(BaseModel):
    enabled: bool = True
    sender: str = "no-reply@finnotify.local"
    client_url: str = "http://localhost:3000"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FINNOTIFY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    webhooks: WebhooksConfig = Field(default_factory=WebhooksConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    data_dir: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    def get_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return default_data_dir()

    def get_db_path(self) -> Path:
        if self.database.path:
            return Path(self.database.path)
        return self.get_data_dir() / "finnotify.db"


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(config_path: str | Path | None = None, **overrides: Any) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config."""
    yaml_data: dict[str, Any] = {}

    # Determine config file path
    if config_path is None:
        config_path = os.environ.get("FINNOTIFY_CONFIG")
    if config_path is None:
        default = default_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    # Load YAML if found
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    # Build settings: YAML values as defaults, explicit overrides win
    return Settings(**_deep_merge(yaml_data, overrides))
