"""
Named API services.

A service binding ties a provider name to the specification it is derived
from and, optionally, to its YAML provider configuration. Bindings are
registered in code or loaded from a services file::

    services:
      widgets:
        spec: https://api.example.com/openapi.yaml
        config: ~/.openapi-provider/widgets.yaml
        description: Widget inventory
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import structlog
import yaml

from openapi_provider.config import Settings, load_config
from openapi_provider.core.errors import ConfigurationError
from openapi_provider.providers.openapi import OpenAPIProvider

logger = structlog.get_logger()

SpecSource = str | Path | Mapping[str, Any]


@dataclass(frozen=True)
class ServiceBinding:
    """Where a named provider gets its specification and configuration."""

    name: str
    spec_source: SpecSource
    config_path: str | None = None
    description: str | None = None


class ServiceRegistry:
    def __init__(self) -> None:
        self._bindings: dict[str, ServiceBinding] = {}

    def register(self, binding: ServiceBinding) -> None:
        if not binding.name:
            raise ConfigurationError("Service name is required")
        if binding.name in self._bindings:
            logger.info("service_binding_replaced", service=binding.name)
        self._bindings[binding.name] = binding

    def get(self, name: str) -> ServiceBinding:
        binding = self._bindings.get(name)
        if binding is None:
            raise ConfigurationError(
                f"Service '{name}' is not registered",
                {"available": ", ".join(sorted(self._bindings)) or "none"},
            )
        return binding

    def list(self) -> list[ServiceBinding]:
        return [self._bindings[name] for name in sorted(self._bindings)]

    def load(self, path: str | Path) -> list[ServiceBinding]:
        """Register every binding declared in a YAML services file."""
        path = Path(path).expanduser()
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read services file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        services = data.get("services") if isinstance(data, dict) else None
        if not isinstance(services, dict):
            raise ConfigurationError(f"Expected a 'services' mapping in {path}")

        loaded = []
        for name, entry in services.items():
            if not isinstance(entry, dict) or not entry.get("spec"):
                raise ConfigurationError(f"Service '{name}' has no spec", {"path": str(path)})
            binding = ServiceBinding(
                name=str(name),
                spec_source=str(entry["spec"]),
                config_path=entry.get("config"),
                description=entry.get("description"),
            )
            self.register(binding)
            loaded.append(binding)

        logger.debug("loaded_services", path=str(path), services=len(loaded))
        return loaded

    def open(
        self,
        name: str,
        *,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
    ) -> OpenAPIProvider:
        """Build a provider for a registered service.

        Load-time errors from the specification propagate unchanged.
        """
        binding = self.get(name)
        config = load_config(Path(binding.config_path).expanduser()) if binding.config_path else None
        return OpenAPIProvider.from_spec(
            binding.spec_source, config, name=binding.name, settings=settings, client=client
        )


service_registry = ServiceRegistry()


def register_service(
    name: str,
    spec_source: SpecSource,
    *,
    config_path: str | None = None,
    description: str | None = None,
) -> None:
    service_registry.register(
        ServiceBinding(name=name, spec_source=spec_source, config_path=config_path, description=description)
    )


def open_provider(name: str, **kwargs: Any) -> OpenAPIProvider:
    return service_registry.open(name, **kwargs)


def list_services() -> list[ServiceBinding]:
    return service_registry.list()
