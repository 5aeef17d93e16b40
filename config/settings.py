"""Configuration management using pydantic-settings."""
from typing import Any, Dict

from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_ttl_by_type() -> Dict[str, int]:
    """TTL (seconds) per content type for the synchronous cache path."""
    return {
        "search": 300,      # 5 min
        "detail": 3600,     # 1 hour
        "price": 600,       # 10 min, volatile
        "static": 86400,    # 24 hours
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cache store
    cache_enabled: bool = True
    database_url: str = "sqlite:///./discovery_cache.db"
    database_echo: bool = False
    database_pool_size: int = 5
    database_connect_timeout_seconds: int = 5

    # TTLs
    cache_default_ttl_seconds: int = 300
    cache_ttl_by_type: Dict[str, int] = _default_ttl_by_type()
    refresh_ttl_volatile_seconds: int = 6 * 60 * 60
    refresh_ttl_stable_seconds: int = 24 * 60 * 60

    # Refresh sweeps
    refresh_delay_seconds: float = 0.5
    refresh_provider_pause_seconds: float = 2.0
    refresh_provider_limit: int = 20
    refresh_expired_batch_size: int = 20
    purge_days_threshold: int = 90
    scheduler_timezone: str = "UTC"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    http_retries: int = 2
    http_retry_delay_seconds: float = 1.0
    http_user_agent: str = "discovery-cache/1.0"

    # Generic JSON upstreams, keyed by provider name:
    # {"tmdb": {"base_url": "...", "headers": {...},
    #           "endpoints": {"trending": {"path": "trending/{category}/{period}",
    #                                      "volatility": "stable"}}}}
    upstreams: Dict[str, Dict[str, Any]] = {}

    log_level: str = "INFO"


settings = Settings()
