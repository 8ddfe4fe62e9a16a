"""
Shared Configuration - Ingestion Settings and Environment Management
Centralized configuration management for the feed ingestion pipeline.

This module provides:
- Environment-based configuration (FEED_INGEST_* variables, .env file)
- Type-safe settings with validation
- CORS proxy chain configuration
- Fetch timeout and retry configuration
- Logging configuration
"""
from typing import Annotated, Optional, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


DEFAULT_PRIMARY_PROXY = "https://api.allorigins.win/get?url="
DEFAULT_FALLBACK_PROXIES = [
    "/api/proxy-feed?url=",
    "https://api.codetabs.com/v1/proxy?quest=",
]


class IngestionSettings(BaseSettings):
    """Feed ingestion configuration settings."""

    # Proxy chain, tried in this order
    primary_proxy_url: str = Field(DEFAULT_PRIMARY_PROXY, description="Primary CORS proxy base")
    primary_proxy_envelope: bool = Field(True, description="Primary proxy wraps content in a JSON envelope")
    fallback_proxy_urls: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_PROXIES),
        description="Fallback proxy bases, tried in order after the primary"
    )
    proxy_origin: Optional[str] = Field(None, description="Origin used to resolve same-origin proxy paths")

    # Fetch behaviour
    fetch_timeout: float = Field(10.0, description="Per-attempt timeout in seconds")
    attempts_per_proxy: int = Field(1, description="Attempts against each proxy before moving on")
    retry_backoff: float = Field(0.3, description="Linear backoff between attempts on one proxy")
    user_agent: str = Field("FeedIngest/1.0 (+https://github.com/feed-ingest)")

    # Detection and normalization
    guard_code_tokens: bool = Field(True, description="Reject script-like payloads during JSON detection")
    default_feed_list_id: str = Field("1", description="Feed list id used when the caller supplies none")

    # Logging
    log_level: LogLevel = Field(LogLevel.INFO)
    json_logs: bool = Field(False)

    @field_validator("fallback_proxy_urls", mode="before")
    @classmethod
    def parse_fallback_proxy_urls(cls, v):
        if isinstance(v, str):
            return [proxy.strip() for proxy in v.split(",") if proxy.strip()]
        return v

    @field_validator("fetch_timeout")
    @classmethod
    def validate_fetch_timeout(cls, v):
        if v <= 0:
            raise ValueError("Fetch timeout must be positive")
        return v

    @field_validator("attempts_per_proxy")
    @classmethod
    def validate_attempts_per_proxy(cls, v):
        if v < 1:
            raise ValueError("At least one attempt per proxy is required")
        return v

    @field_validator("retry_backoff")
    @classmethod
    def validate_retry_backoff(cls, v):
        if v < 0:
            raise ValueError("Retry backoff cannot be negative")
        return v

    class Config:
        env_prefix = "FEED_INGEST_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = IngestionSettings()


def get_settings() -> IngestionSettings:
    """Get ingestion settings."""
    return settings


# Configuration summary for debugging
def get_config_summary(config: Optional[IngestionSettings] = None) -> dict:
    """
    Get a summary of the current configuration.

    Args:
        config: Settings to summarize, defaults to the global instance

    Returns:
        Dictionary with configuration summary
    """
    config = config or settings
    return {
        "proxies": {
            "primary": config.primary_proxy_url,
            "primary_envelope": config.primary_proxy_envelope,
            "fallbacks": config.fallback_proxy_urls,
            "origin": config.proxy_origin,
        },
        "fetch": {
            "timeout": config.fetch_timeout,
            "attempts_per_proxy": config.attempts_per_proxy,
            "retry_backoff": config.retry_backoff,
        },
        "detection": {
            "guard_code_tokens": config.guard_code_tokens,
        },
        "logging": {
            "log_level": config.log_level,
            "json_logs": config.json_logs,
        },
    }
