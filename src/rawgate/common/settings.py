"""Application configuration for the rawgate proxy."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ProxySettings(BaseSettings):
    """Runtime settings for the raw file proxy service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    access_token: Optional[SecretStr] = env_field(None, "RAWGATE_ACCESS_TOKEN")
    origin_token: Optional[SecretStr] = env_field(None, "RAWGATE_ORIGIN_TOKEN")
    origin_base_url: str = env_field("https://raw.githubusercontent.com", "RAWGATE_ORIGIN_BASE_URL")
    origin_timeout_seconds: float = env_field(10.0, "RAWGATE_ORIGIN_TIMEOUT")
    redirect_url: str = env_field("https://www.baidu.com", "RAWGATE_REDIRECT_URL")
    token_param: str = env_field("nine-token", "RAWGATE_TOKEN_PARAM")
    max_path_length: int = env_field(1000, "RAWGATE_MAX_PATH_LENGTH")
    cache_ttl_seconds: int = env_field(300, "RAWGATE_CACHE_TTL")  # 5 minutes
    cache_max_entries: int = env_field(100, "RAWGATE_CACHE_MAX_ENTRIES")
    cache_sweep_interval_seconds: float = env_field(60.0, "RAWGATE_CACHE_SWEEP_INTERVAL")
    rate_limit_requests: int = env_field(10, "RAWGATE_RATE_LIMIT")
    rate_limit_window_seconds: float = env_field(1.0, "RAWGATE_RATE_WINDOW")
    metrics_token: Optional[SecretStr] = env_field(None, "RAWGATE_METRICS_TOKEN")
    log_level: str = env_field("INFO", "RAWGATE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "RAWGATE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "RAWGATE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "RAWGATE_OTEL_SAMPLER_RATIO")

    @field_validator(
        "max_path_length",
        "cache_ttl_seconds",
        "cache_max_entries",
        "rate_limit_requests",
    )
    @classmethod
    def _require_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("origin_timeout_seconds", "rate_limit_window_seconds")
    @classmethod
    def _require_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("cache_sweep_interval_seconds")
    @classmethod
    def _non_negative_interval(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("origin_base_url", "redirect_url", mode="before")
    @classmethod
    def _strip_url(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("token_param")
    @classmethod
    def _require_token_param(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("token parameter name must not be empty")
        return value
