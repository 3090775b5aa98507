"""
Environment-driven configuration using pydantic-settings.

Each service reads its options from a settings class with its own
environment prefix. Keyword arguments passed to the constructor win over
the environment:

    GROK_CACHE_TTL_SECONDS=600
    GROK_COST_LIMIT_USD=25
    GROK_RATE_LIMIT_TIER=enterprise
    XAI_API_KEY=xai-...
"""

import logging
import sys
from typing import Annotated, Literal, Optional

from pydantic import Field, NonNegativeInt, PositiveInt, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DEFAULT_TIMEOUT_MS

DEFAULT_BASE_URL = "https://api.x.ai/v1"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class CacheOptions(BaseSettings):
    """Response cache configuration."""

    model_config = SettingsConfigDict(env_prefix="GROK_CACHE_", extra="ignore")

    enabled: bool = True
    ttl_seconds: PositiveInt = Field(default=300, description="Seconds an entry stays fresh")
    max_entries: PositiveInt = Field(default=1000, description="Entries kept before LRU eviction")


class CostTrackerOptions(BaseSettings):
    """Session budget configuration."""

    model_config = SettingsConfigDict(env_prefix="GROK_COST_", extra="ignore")

    limit_usd: Annotated[float, Field(ge=0.0)] = 10.0
    enforce_limit: bool = True
    max_records: NonNegativeInt = Field(default=10_000, description="Cost records kept for the timeline")


class RateLimiterOptions(BaseSettings):
    """Admission control and backoff configuration."""

    model_config = SettingsConfigDict(env_prefix="GROK_RATE_LIMIT_", extra="ignore")

    tier: Literal["standard", "enterprise"] = "standard"
    initial_retry_delay_ms: PositiveInt = 1000
    max_retry_delay_ms: PositiveInt = 60_000
    max_retries: Annotated[int, Field(ge=0, le=20)] = 5
    max_pending_requests: PositiveInt = Field(default=100, description="Requests admitted at once")
    pending_timeout_ms: PositiveInt = Field(default=30_000, description="Longest wait for admission")


class ClientSettings(BaseSettings):
    """xAI API connection settings. The key is validated by the client."""

    model_config = SettingsConfigDict(env_prefix="XAI_", extra="ignore")

    api_key: SecretStr = SecretStr("")
    base_url: str = DEFAULT_BASE_URL
    timeout_ms: PositiveInt = Field(default=DEFAULT_TIMEOUT_MS, description="Default request timeout")


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GROK_LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.strip().upper() if isinstance(v, str) else v


def configure_logging(level: Optional[str] = None) -> None:
    """
    Send log records to stderr.

    stdout carries the MCP protocol stream, so nothing may be printed there.
    """
    settings = LoggingSettings(level=level) if level else LoggingSettings()
    logging.basicConfig(
        level=getattr(logging, settings.level),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
