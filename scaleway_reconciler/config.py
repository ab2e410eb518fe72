"""Frozen dataclasses for configuration and YAML loader with env-var interpolation."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

DEFAULT_SERVER_TYPES = (
    "START1-XS", "START1-S", "START1-M", "START1-L",
    "VC1S", "VC1M", "VC1L",
    "C1", "C2S", "C2M", "C2L",
    "X64-15GB", "X64-30GB", "X64-60GB", "X64-120GB",
    "ARM64-2GB", "ARM64-4GB", "ARM64-8GB",
)
DEFAULT_VOLUME_TYPES = ("l_ssd",)


def _interpolate_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders with environment variable values."""

    def _replace(match: re.Match) -> str:
        env_key = match.group(1)
        env_val = os.environ.get(env_key)
        if env_val is None:
            raise ConfigError(f"Environment variable '{env_key}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively interpolate env vars in strings throughout a nested structure."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(v) for v in obj]
    return obj


@dataclass(frozen=True)
class APIConfig:
    base_url: str = "https://cp-par1.scaleway.com"
    token: str = ""
    organization: str = ""
    timeout: int = 10
    verify_ssl: bool = True


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    backoff_factor: float = 2.0
    max_delay_seconds: float = 30.0


@dataclass(frozen=True)
class StateWaitConfig:
    max_attempts: int = 60
    base_delay_seconds: float = 5.0
    backoff_factor: float = 1.0
    max_delay_seconds: float = 5.0


@dataclass(frozen=True)
class ProviderConfig:
    server_types: tuple[str, ...] = DEFAULT_SERVER_TYPES
    volume_types: tuple[str, ...] = DEFAULT_VOLUME_TYPES
    max_volume_size_gb: int = 150


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    api: APIConfig = field(default_factory=APIConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    state_wait: StateWaitConfig = field(default_factory=StateWaitConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build_nested(cls: type, data: dict[str, Any]) -> Any:
    """Construct a frozen dataclass, recursively building nested dataclass fields."""
    if not isinstance(data, dict):
        return data
    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in field_types:
            continue
        ft = field_types[key]
        # Resolve string annotations to actual types in the module scope
        if isinstance(ft, str) and ft in globals():
            ft = globals()[ft]
        if isinstance(ft, type) and hasattr(ft, "__dataclass_fields__") and isinstance(value, dict):
            kwargs[key] = _build_nested(ft, value)
        elif isinstance(value, list):
            # Allow-lists are stored as tuples so the config stays hashable
            kwargs[key] = tuple(value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _walk_and_interpolate(raw)
    config = _build_nested(AppConfig, raw)
    _validate(config)
    return config


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    if not config.api.token:
        raise ConfigError("api.token is required")

    if not config.api.organization:
        raise ConfigError("api.organization is required")

    for section in ("retry", "state_wait"):
        policy = getattr(config, section)
        if policy.max_attempts < 1:
            raise ConfigError(f"{section}.max_attempts must be >= 1")
        if policy.base_delay_seconds < 0 or policy.max_delay_seconds < 0:
            raise ConfigError(f"{section} delays must not be negative")
        if policy.backoff_factor < 1:
            raise ConfigError(f"{section}.backoff_factor must be >= 1")

    if not config.provider.server_types:
        raise ConfigError("provider.server_types must not be empty")

    if config.provider.max_volume_size_gb < 1:
        raise ConfigError("provider.max_volume_size_gb must be >= 1")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")
