"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from panel_harga.core.exceptions import ConfigError

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class SourceConfig(BaseModel):
    """External price source: structured endpoints and the rendered page."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://panelharga.badanpangan.go.id"
    api_endpoints: tuple[str, ...] = (
        "/api/data-harga",
        "/api/v1/prices",
        "/data/harga.json",
    )
    page_path: str = "/"
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
    )
    request_timeout: float = 30.0
    requests_per_minute: int = 10
    content_selector: str = 'table, .price-table, [class*="harga"]'
    navigation_timeout: float = 30.0
    content_timeout: float = 10.0
    total_timeout: float = 90.0
    headless: bool = True

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("api_endpoints")
    @classmethod
    def at_least_one_endpoint(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("api_endpoints must list at least one endpoint")
        return v

    @field_validator("requests_per_minute")
    @classmethod
    def rate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("requests_per_minute must be >= 1")
        return v

    @model_validator(mode="after")
    def total_covers_steps(self) -> SourceConfig:
        if self.total_timeout < self.navigation_timeout:
            raise ValueError("total_timeout must be >= navigation_timeout")
        return self

    @property
    def page_url(self) -> str:
        return f"{self.base_url}{self.page_path}"


class RetryConfig(BaseModel):
    """Bounded exponential backoff applied to each source adapter."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def attempts_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @model_validator(mode="after")
    def cap_not_below_base(self) -> RetryConfig:
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")
        return self


class StorageConfig(BaseModel):
    """SQLite storage configuration."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/panel_harga.db"


class NormalizationConfig(BaseModel):
    """Optional YAML file overriding the built-in synonym tables."""

    model_config = ConfigDict(frozen=True)

    synonyms_path: str | None = None


class SchedulerConfig(BaseModel):
    """Cadences, timezone, and retention windows for the periodic jobs."""

    model_config = ConfigDict(frozen=True)

    timezone: str = "Asia/Jakarta"
    daily_ingestion_time: str = "06:00"
    expiry_check_minute: str = ":00"
    cleanup_day: str = "sunday"
    cleanup_time: str = "02:00"
    poll_interval: float = 1.0
    price_retention_days: int = 30
    history_retention_days: int = 365
    run_log_retention_days: int = 90

    @field_validator("daily_ingestion_time", "cleanup_time")
    @classmethod
    def hh_mm(cls, v: str) -> str:
        if not _TIME_OF_DAY.match(v):
            raise ValueError(f"expected HH:MM, got {v!r}")
        return v

    @field_validator("expiry_check_minute")
    @classmethod
    def colon_minute(cls, v: str) -> str:
        if not re.match(r"^:[0-5]\d$", v):
            raise ValueError(f"expected :MM, got {v!r}")
        return v

    @field_validator("cleanup_day")
    @classmethod
    def weekday(cls, v: str) -> str:
        if v.lower() not in _WEEKDAYS:
            raise ValueError(f"cleanup_day must be one of {', '.join(_WEEKDAYS)}")
        return v.lower()

    @field_validator(
        "price_retention_days", "history_retention_days", "run_log_retention_days"
    )
    @classmethod
    def retention_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retention windows must be >= 1 day")
        return v


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str | None = None
    run_scheduler: bool = False


class PanelHargaConfig(BaseModel):
    """Root configuration for the entire panel-harga system."""

    model_config = ConfigDict(frozen=True)

    source: SourceConfig = SourceConfig()
    retry: RetryConfig = RetryConfig()
    storage: StorageConfig = StorageConfig()
    normalization: NormalizationConfig = NormalizationConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PANEL_HARGA_",
) -> PanelHargaConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (PANEL_HARGA_RETRY__MAX_ATTEMPTS, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        PANEL_HARGA_SOURCE__REQUEST_TIMEOUT=10  ->  source.request_timeout = 10
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return PanelHargaConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("PANEL_HARGA_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from PANEL_HARGA_CONFIG not found: {env_path}",
                context={"field": "PANEL_HARGA_CONFIG", "value": env_path},
            )
        return p

    default = Path("panel-harga.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # PANEL_HARGA_CONFIG names the file, not a setting
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
