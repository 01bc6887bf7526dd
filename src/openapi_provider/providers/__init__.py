"""Host-facing provider adapter and named service bindings."""

from openapi_provider.providers.base import (
    AttributeDescription,
    ChangePlan,
    ProviderHealth,
    ResourceChange,
    ResourceDescription,
)
from openapi_provider.providers.openapi import OpenAPIProvider, OpenAPIResource
from openapi_provider.providers.registry import (
    ServiceBinding,
    list_services,
    open_provider,
    register_service,
    service_registry,
)

__all__ = [
    # Contracts
    "AttributeDescription",
    "ChangePlan",
    "ProviderHealth",
    "ResourceChange",
    "ResourceDescription",
    # Adapter
    "OpenAPIProvider",
    "OpenAPIResource",
    # Services
    "ServiceBinding",
    "list_services",
    "open_provider",
    "register_service",
    "service_registry",
]
