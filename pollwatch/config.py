"""Watcher configuration management."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pollwatch.errors import ConfigError

MIN_POLL_INTERVAL_MS = 1_000


class WatchSettings(BaseSettings):
    """Runtime configuration loaded from keyword overrides, environment or `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="WATCH_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    poll_interval_ms: int = Field(default=15_000, ge=MIN_POLL_INTERVAL_MS)
    timeout_ms: int = Field(default=10_000, ge=1)
    retries: int = Field(default=2, ge=0, le=10)
    backoff_ms: int = Field(default=300, ge=0)
    max_backoff_ms: int = Field(default=10_000, ge=0)
    jitter: bool = Field(default=True)
    jitter_ms: int = Field(default=100, ge=0)
    concurrency: int = Field(default=5, ge=1)
    max_seen_ids: int = Field(default=5_000, ge=1)

    immediate_first_tick: bool = Field(default=True)
    skip_backfill_on_first_run: bool = Field(default=True)
    use_since_query: bool = Field(default=True)
    skip_invalid_items: bool = Field(default=False)
    timestamp_unit: Literal["ms", "s"] = Field(default="ms")

    headers: Dict[str, str] = Field(default_factory=dict)

    log_level: str = Field(default="INFO")

    @field_validator("headers", mode="before")
    @classmethod
    def _parse_headers(cls, value: Any) -> Dict[str, str]:
        # WATCH_HEADERS is decoded from JSON before this runs
        if value in (None, "", {}):
            return {}
        if not isinstance(value, dict):
            raise ValueError("headers must be a mapping of header name to value")
        return {str(k): str(v) for k, v in value.items()}


def build_settings(**overrides: Any) -> WatchSettings:
    """Return a validated WatchSettings, raising ConfigError on bad input."""
    try:
        return WatchSettings(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


@lru_cache(maxsize=1)
def load_settings() -> WatchSettings:
    """Return cached settings built from the environment."""
    return build_settings()


__all__ = ["MIN_POLL_INTERVAL_MS", "WatchSettings", "build_settings", "load_settings"]
