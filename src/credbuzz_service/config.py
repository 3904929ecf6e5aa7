"""
Configuration management for the CredBuzz service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from collections.abc import Callable

REDACTION_MARKER = "***REDACTED***"
_SENSITIVE_KEY_PARTS: tuple[str, ...] = ("password", "secret", "token", "api_key", "private_key")


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_path: str
    timeout_seconds: int


class MailerConfig(BaseModel):
    """Outbound mail relay configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    send_path: str
    sender: str
    timeout_seconds: int


class OracleConfig(BaseModel):
    """Submission review oracle configuration."""

    model_config = ConfigDict(extra="forbid")
    provider: Literal["litellm", "static"]
    model: str
    temperature: float
    timeout_seconds: float


class LedgerConfig(BaseModel):
    """Account ledger configuration."""

    model_config = ConfigDict(extra="forbid")
    starting_balance: int


class BlobsConfig(BaseModel):
    """Submission file storage configuration."""

    model_config = ConfigDict(extra="forbid")
    storage_path: str
    max_file_size: int
    max_files_per_submission: int


class OtpConfig(BaseModel):
    """One-time code configuration."""

    model_config = ConfigDict(extra="forbid")
    ttl_seconds: int
    code_length: int


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    mailer: MailerConfig
    oracle: OracleConfig
    ledger: LedgerConfig
    blobs: BlobsConfig
    otp: OtpConfig
    request: RequestConfig


def resolve_config_path(env_var_name: str, default_filename: str) -> Path:
    """Resolve the config file from an environment variable or the working directory."""
    configured = os.environ.get(env_var_name)
    if configured:
        return Path(configured)
    return Path.cwd() / default_filename


def get_config_path() -> Path:
    """Determine configuration file path."""
    return resolve_config_path(
        env_var_name="CONFIG_PATH",
        default_filename="config.yaml",
    )


def load_settings(config_path: Path) -> Settings:
    """Parse and validate a YAML config file."""
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)

    if not isinstance(raw, dict):
        msg = f"Configuration file must contain a mapping: {config_path}"
        raise ValueError(msg)

    return Settings.model_validate(raw)


def create_settings_loader(
    path_resolver: Callable[[], Path],
) -> tuple[Callable[[], Settings], Callable[[], None]]:
    """Build a cached settings getter and its cache-clearing companion."""

    @lru_cache(maxsize=1)
    def _get_settings() -> Settings:
        return load_settings(path_resolver())

    def _clear_settings_cache() -> None:
        _get_settings.cache_clear()

    return _get_settings, _clear_settings_cache


get_settings, clear_settings_cache = create_settings_loader(get_config_path)  # nosemgrep


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: (
                REDACTION_MARKER
                if any(part in key.lower() for part in _SENSITIVE_KEY_PARTS)
                else _redact(item)
            )
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted
