"""Configuration management for the users service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

DEFAULT_DATABASE_URL = "postgresql+psycopg2://postgres@localhost/test?sslmode=disable"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(ValueError):
    """Raised when a configuration source holds an invalid value."""


def _as_int(value: object, key: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ConfigError(f"Invalid integer value {value!r} for {key}") from exc


def _as_float(value: object, key: str) -> float:
    try:
        return float(str(value).strip())
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric value {value!r} for {key}") from exc


@dataclass(frozen=True)
class PoolSettings:
    """Limits for the shared database connection pool.

    ``max_idle`` above ``max_open`` is clamped to ``max_open``.
    """

    max_open: int = 25
    max_idle: int = 25
    max_lifetime: int = 300
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.max_open < 1:
            raise ConfigError("pool.max_open must be at least 1")
        # QueuePool reads pool_size=0 as "no limit", so at least one idle
        # connection is always retained.
        if self.max_idle < 1:
            raise ConfigError("pool.max_idle must be at least 1")
        if self.max_lifetime < 1:
            raise ConfigError("pool.max_lifetime must be at least 1 second")
        if self.timeout <= 0:
            raise ConfigError("pool.timeout must be positive")

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "PoolSettings":
        defaults = PoolSettings()
        return PoolSettings(
            max_open=_as_int(data.get("max_open", defaults.max_open), "pool.max_open"),
            max_idle=_as_int(data.get("max_idle", defaults.max_idle), "pool.max_idle"),
            max_lifetime=_as_int(
                data.get("max_lifetime", defaults.max_lifetime), "pool.max_lifetime"
            ),
            timeout=_as_float(data.get("timeout", defaults.timeout), "pool.timeout"),
        )


@dataclass(frozen=True)
class ServiceConfig:
    """Settings needed to run the HTTP service."""

    database_url: str = DEFAULT_DATABASE_URL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    pool: PoolSettings = field(default_factory=PoolSettings)
    shutdown_grace_period: float = 5.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.database_url.strip():
            raise ConfigError("database_url must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigError(f"Port {self.port} is outside the range 1-65535")
        if self.shutdown_grace_period < 0:
            raise ConfigError("shutdown_grace_period must not be negative")
        if self.log_level not in _LOG_LEVELS:
            raise ConfigError(f"Unknown log level {self.log_level!r}")

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "ServiceConfig":
        """Create a :class:`ServiceConfig` from raw dictionary data."""

        defaults = ServiceConfig()
        pool_raw = data.get("pool") or {}
        if not isinstance(pool_raw, Mapping):
            raise ConfigError("The 'pool' section must be a mapping")

        return ServiceConfig(
            database_url=str(data.get("database_url", defaults.database_url)),
            host=str(data.get("host", defaults.host)),
            port=_as_int(data.get("port", defaults.port), "port"),
            pool=PoolSettings.from_dict(pool_raw),
            shutdown_grace_period=_as_float(
                data.get("shutdown_grace_period", defaults.shutdown_grace_period),
                "shutdown_grace_period",
            ),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
        )


_ENV_KEYS: Dict[str, str] = {
    "USERAPI_DATABASE_URL": "database_url",
    "USERAPI_HOST": "host",
    "USERAPI_PORT": "port",
    "USERAPI_SHUTDOWN_GRACE_PERIOD": "shutdown_grace_period",
    "USERAPI_LOG_LEVEL": "log_level",
}

_POOL_ENV_KEYS: Dict[str, str] = {
    "USERAPI_POOL_MAX_OPEN": "max_open",
    "USERAPI_POOL_MAX_IDLE": "max_idle",
    "USERAPI_POOL_MAX_LIFETIME": "max_lifetime",
    "USERAPI_POOL_TIMEOUT": "timeout",
}


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the YAML configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "service.yaml").resolve(strict=False)


def load_config(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> ServiceConfig:
    """Load settings from YAML, then apply ``USERAPI_*`` environment overrides.

    A missing file is not an error; the built-in defaults apply instead.
    """

    if environ is None:
        environ = os.environ
    if config_path is None:
        config_path = resolve_config_path(environ.get("USERAPI_CONFIG"))

    raw: Dict[str, object] = {}
    if config_path.is_file():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration file {config_path} must contain a mapping")
        raw.update(loaded)

    pool_section = raw.get("pool") or {}
    if not isinstance(pool_section, dict):
        raise ConfigError("The 'pool' section must be a mapping")
    pool_raw: Dict[str, object] = dict(pool_section)
    for env_key, name in _ENV_KEYS.items():
        value = environ.get(env_key)
        if value is not None and value.strip():
            raw[name] = value.strip()
    for env_key, name in _POOL_ENV_KEYS.items():
        value = environ.get(env_key)
        if value is not None and value.strip():
            pool_raw[name] = value.strip()
    raw["pool"] = pool_raw

    return ServiceConfig.from_dict(raw)


def with_overrides(config: ServiceConfig, **overrides: object) -> ServiceConfig:
    """Return a copy of ``config`` with the non-``None`` overrides applied."""

    changes = {key: value for key, value in overrides.items() if value is not None}
    if not changes:
        return config
    return replace(config, **changes)


__all__ = [
    "ConfigError",
    "DEFAULT_DATABASE_URL",
    "PoolSettings",
    "ServiceConfig",
    "load_config",
    "resolve_config_path",
    "with_overrides",
]
