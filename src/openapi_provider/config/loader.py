"""
Configuration file loading.

Search order:
1. Explicit path (settings or caller)
2. .openapi-provider/config.yaml (project root)
3. ~/.openapi-provider/config.yaml (user home)
4. Default configuration
"""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import urlparse

import structlog
import yaml

from openapi_provider.config.provider_config import ProviderConfig
from openapi_provider.core.errors import ConfigurationError

logger = structlog.get_logger()

CONFIG_DIR = ".openapi-provider"
REGION_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def validate_url(url: str, field_name: str = "url") -> str:
    """Validate that a configured URL is absolute http(s)."""
    if not url:
        raise ConfigurationError(f"{field_name} must not be empty")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(
            f"{field_name} is not a valid http(s) URL", {"value": url}
        )
    return url.rstrip("/")


def validate_region(region: str) -> str:
    """Validate a region name used in ``${region}`` host substitution."""
    if not REGION_PATTERN.match(region):
        raise ConfigurationError("Invalid region name", {"region": region})
    return region


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the configuration file to use.

    Returns:
        Path to config file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        return None

    cwd_config = Path.cwd() / CONFIG_DIR / "config.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / CONFIG_DIR / "config.yaml"
    if home_config.exists():
        return home_config

    return None


class ConfigLoader:
    """
    Loads provider configuration from a YAML file.
    """

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path or get_config_path()

    def load(self) -> ProviderConfig:
        """Load configuration from file or return defaults."""
        if self.config_path and self.config_path.exists():
            return self._load_from_file(self.config_path)
        return ProviderConfig.default()

    def _load_from_file(self, path: Path) -> ProviderConfig:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected YAML object in {path}")

        config = ProviderConfig.from_dict(data)
        self._validate(config)
        logger.debug("loaded_config", path=str(path), resources=len(config.resources))
        return config

    def _validate(self, config: ProviderConfig) -> None:
        if config.base_url:
            config.base_url = validate_url(config.base_url, "base_url")
        for name, override in config.resources.items():
            if override.base_url:
                override.base_url = validate_url(override.base_url, f"resources.{name}.base_url")
            if override.region:
                validate_region(override.region)

    def save(self, config: ProviderConfig, path: Path | None = None) -> Path:
        """Save configuration to file."""
        target_path = path or self.config_path or (Path.home() / CONFIG_DIR / "config.yaml")
        target_path.parent.mkdir(parents=True, exist_ok=True)

        with open(target_path, "w") as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

        logger.info("saved_config", path=str(target_path))
        return target_path


def load_config(path: str | Path | None = None) -> ProviderConfig:
    """
    Convenience function to load configuration.

    Args:
        path: Optional explicit config file path

    Returns:
        ProviderConfig instance
    """
    config_path = Path(path) if path else get_config_path()
    loader = ConfigLoader(config_path)
    return loader.load()
