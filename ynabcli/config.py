from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_DIR_NAME = ".ynab"
CONFIG_FILE_NAME = "config.yaml"
TOKEN_ENV_VAR = "YNAB_ACCESS_TOKEN"
BUDGET_ENV_VAR = "YNAB_DEFAULT_BUDGET_ID"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or validated."""


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(default="https://api.ynab.com/v1")
    timeout_s: float = Field(default=30, gt=0)
    max_retries: int = Field(default=3, ge=0)
    backoff_base_s: float = Field(default=1.0, ge=0)
    rate_limit_default_wait_s: float = Field(default=60.0, ge=0)
    max_total_wait_s: float | None = Field(default=None, ge=0)

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return value.rstrip("/")


class AuthConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    access_token: str | None = Field(default=None)
    default_budget_id: str | None = Field(default=None)


class ObsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_jsonl: bool = Field(default=True)
    log_level: str = Field(default="WARNING")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    obs: ObsConfig = Field(default_factory=ObsConfig)


@dataclass(frozen=True)
class LoadedConfig:
    config: AppConfig
    raw: dict[str, Any]
    path: Path | None = None


def default_config_path() -> Path:
    return Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def load_config(path: Path) -> LoadedConfig:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")

    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a mapping")

    try:
        config = AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    return LoadedConfig(config=config, raw=payload, path=path)


def load_or_default(path: Path | None = None) -> LoadedConfig:
    """Load ``path`` (default ``~/.ynab/config.yaml``); a missing file yields defaults."""
    path = path or default_config_path()
    if not path.exists():
        return LoadedConfig(config=AppConfig(), raw={}, path=None)
    return load_config(path)


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    path = path or default_config_path()
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    except PermissionError as exc:
        raise ConfigError(f"Cannot create config directory: {path.parent}") from exc

    payload = config.model_dump(mode="json", exclude_none=True)
    text = "# YNAB CLI configuration\n" + yaml.safe_dump(payload, sort_keys=False)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(text)
    os.chmod(path, 0o600)
    return path


def resolve_token(config: AppConfig) -> str | None:
    """Config file first, then ``YNAB_ACCESS_TOKEN``."""
    if config.auth.access_token:
        return config.auth.access_token
    return os.environ.get(TOKEN_ENV_VAR) or None


def resolve_budget_id(config: AppConfig) -> str | None:
    if config.auth.default_budget_id:
        return config.auth.default_budget_id
    return os.environ.get(BUDGET_ENV_VAR) or None
