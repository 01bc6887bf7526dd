"""
Engine settings using Pydantic.

Provides environment-based configuration loading with OPENAPI_PROVIDER_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings."""

    # Specification location: file path, URL or inline document
    spec_source: str | None = None

    # Provider configuration file (credentials, headers, resource overrides)
    config_path: str | None = None

    # Overrides the base URL declared in the specification
    base_url: str | None = None

    # HTTP client settings
    http_timeout: float = 30.0
    http_max_retries: int = 3
    http_retry_backoff_factor: float = 0.5
    http_max_backoff: float = 30.0
    user_agent: str = "openapi-provider/0.1.0"

    # Asynchronous operation polling
    poll_interval: float = 5.0
    poll_timeout: float = 600.0

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "OPENAPI_PROVIDER_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
