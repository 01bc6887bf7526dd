"""
Provider configuration system.

Provides:
- Pydantic-based settings (environment variables, .env files)
- YAML provider configuration (credentials, headers, resource overrides)
"""

from openapi_provider.config.loader import (
    ConfigLoader,
    get_config_path,
    load_config,
)
from openapi_provider.config.provider_config import ProviderConfig, ResourceOverride
from openapi_provider.config.settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Provider config
    "ProviderConfig",
    "ResourceOverride",
    # Loader
    "ConfigLoader",
    "load_config",
    "get_config_path",
]
