"""
Operation planner.

Turns {resource, operation, field values} into a fully resolved
``OperationPlan``: URL, method, headers, query parameters and body. Planning
performs no I/O.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import quote

import structlog

from openapi_provider.catalog import (
    CatalogEntry,
    EndpointTemplate,
    OperationKind,
    ResourceCatalog,
)
from openapi_provider.config.provider_config import ProviderConfig
from openapi_provider.core.errors import ConfigurationError, MissingIdentifierError
from openapi_provider.schema import codec
from openapi_provider.schema.mapper import PLACEHOLDER_PATTERN
from openapi_provider.schema.models import FieldSchema

logger = structlog.get_logger()

REDACTED = "***"


@dataclass(frozen=True)
class OperationPlan:
    """Call-scoped description of one HTTP exchange. Never persisted."""

    resource: str
    operation: OperationKind
    method: str
    url: str
    base_url: str
    template: EndpointTemplate
    instance_path: str = ""
    path_values: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    placeholder_fields: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    params: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    body: Mapping[str, Any] | None = None
    sensitive_fields: frozenset[str] = frozenset()
    secret_headers: frozenset[str] = frozenset()
    secret_params: frozenset[str] = frozenset()

    @property
    def timeout(self) -> float | None:
        return self.template.timeout

    def url_for(self, path_template: str, values: Mapping[str, Any] | None = None) -> str:
        """Resolve another path of the same API, e.g. a poll endpoint.

        Absolute URLs are returned unchanged. Placeholders are filled from the
        wire payload ``values`` first (a placeholder maps to the field it stands
        for), then from this plan's own path values.
        """
        if path_template.startswith(("http://", "https://")):
            return path_template
        values = values or {}

        def _fill(name: str) -> str:
            value = values.get(self.placeholder_fields.get(name, name))
            if value is None:
                value = values.get(name)
            if value is None:
                value = self.path_values.get(name)
            if value is None:
                raise MissingIdentifierError(
                    f"No value for path placeholder '{name}'",
                    resource=self.resource,
                    operation=self.operation.value,
                    details={"placeholder": name, "path": path_template},
                )
            return quote(str(value), safe="")

        path = PLACEHOLDER_PATTERN.sub(lambda m: _fill(m.group(1)), path_template)
        return f"{self.base_url}{path}"

    def redacted(self) -> dict[str, Any]:
        """Loggable view with sensitive values masked."""
        headers = {k: (REDACTED if k in self.secret_headers else v) for k, v in self.headers.items()}
        params = {k: (REDACTED if k in self.secret_params else v) for k, v in self.params.items()}
        body = None
        if self.body is not None:
            body = {k: (REDACTED if k in self.sensitive_fields else v) for k, v in self.body.items()}
        return {
            "resource": self.resource,
            "operation": self.operation.value,
            "method": self.method,
            "url": self.url,
            "headers": headers,
            "params": params,
            "body": body,
        }


class OperationPlanner:
    """Resolves operation plans against a catalog and provider configuration."""

    def __init__(
        self,
        catalog: ResourceCatalog,
        config: ProviderConfig | None = None,
        *,
        base_url: str | None = None,
        user_agent: str = "openapi-provider/0.1.0",
    ) -> None:
        self._catalog = catalog
        self._config = config or ProviderConfig.default()
        self._base_url = (base_url or self._config.base_url or "").rstrip("/") or None
        self._user_agent = user_agent

    def plan(
        self,
        resource: str,
        operation: OperationKind | str,
        values: Mapping[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> OperationPlan:
        kind = OperationKind(operation)
        entry = self._catalog.entry(resource)
        template = entry.endpoint(kind)
        values = values or {}

        path_values = self._path_values(entry, template, kind, values)
        path = self._versioned_path(entry, template.path)
        path = PLACEHOLDER_PATTERN.sub(lambda m: quote(path_values[m.group(1)], safe=""), path)
        base_url = self._resolve_base_url(entry)

        headers: dict[str, str] = {"Accept": "application/json", "User-Agent": self._user_agent}
        params: dict[str, str] = {}
        secret_headers, secret_params = self._apply_security(template, headers, params)
        self._apply_headers(entry, template, headers)
        if idempotency_key and kind in (OperationKind.CREATE, OperationKind.UPDATE):
            headers["Idempotency-Key"] = idempotency_key

        body = self._body(entry, kind, values)
        if body is not None:
            headers["Content-Type"] = "application/json"

        plan = OperationPlan(
            resource=entry.name,
            operation=kind,
            method=template.method,
            url=f"{base_url}{path}",
            base_url=base_url,
            template=template,
            instance_path=self._versioned_path(entry, entry.paths.instance_path),
            path_values=MappingProxyType(path_values),
            placeholder_fields=MappingProxyType(self._placeholder_fields(entry)),
            headers=MappingProxyType(headers),
            params=MappingProxyType(params),
            body=body,
            sensitive_fields=frozenset(f.wire_name for f in entry.schema.fields if f.sensitive),
            secret_headers=frozenset(secret_headers),
            secret_params=frozenset(secret_params),
        )
        logger.debug("operation_planned", **plan.redacted())
        return plan

    def _path_values(
        self,
        entry: CatalogEntry,
        template: EndpointTemplate,
        kind: OperationKind,
        values: Mapping[str, Any],
    ) -> dict[str, str]:
        resolved: dict[str, str] = {}
        for placeholder in template.placeholders:
            if placeholder == entry.paths.id_param:
                field_name = entry.schema.identifier
            else:
                f = entry.schema.by_wire_name(placeholder)
                field_name = f.name if f is not None else placeholder
            value = values.get(field_name)
            if value is None or value == "":
                raise MissingIdentifierError(
                    f"No value for path placeholder '{placeholder}'",
                    resource=entry.name,
                    operation=kind.value,
                    details={"placeholder": placeholder, "field": field_name},
                )
            resolved[placeholder] = str(value)
        return resolved

    def _placeholder_fields(self, entry: CatalogEntry) -> dict[str, str]:
        """Wire name of the field each path placeholder stands for."""
        mapping = {entry.paths.id_param: entry.schema.identifier_field.wire_name}
        for param in entry.paths.parent_params:
            mapping[param] = param
        return mapping

    def _body(self, entry: CatalogEntry, kind: OperationKind, values: Mapping[str, Any]) -> dict[str, Any] | None:
        if kind not in (OperationKind.CREATE, OperationKind.UPDATE):
            return None
        parents = set(entry.paths.parent_params)

        def exclude(f: FieldSchema) -> bool:
            if f.computed or f.wire_name in parents:
                return True
            return kind is OperationKind.UPDATE and f.immutable

        return codec.encode(entry.schema.fields, values, exclude=exclude, resource=entry.name)

    def _versioned_path(self, entry: CatalogEntry, path: str) -> str:
        override = self._config.override_for(entry.name)
        if not override or not override.api_version or not entry.version:
            return path
        segments = path.split("/")
        return "/".join(override.api_version if s == entry.version else s for s in segments)

    def _resolve_base_url(self, entry: CatalogEntry) -> str:
        """Resource override, then resource host, then provider override, then the document."""
        base_path = self._catalog.base_path
        override = self._config.override_for(entry.name)
        if override and override.base_url:
            return f"{override.base_url.rstrip('/')}{base_path}"

        if entry.host:
            host = entry.host
            if "${region}" in host:
                region = (override.region if override else None) or entry.regions[0]
                if region not in entry.regions:
                    raise ConfigurationError(
                        f"Region '{region}' is not declared for resource '{entry.name}'",
                        {"resource": entry.name, "regions": ",".join(entry.regions)},
                    )
                host = host.replace("${region}", region)
            if host.startswith(("http://", "https://")):
                return f"{host.rstrip('/')}{base_path}"
            scheme = "https"
            reference = self._base_url or self._catalog.base_url
            if reference and reference.startswith("http://"):
                scheme = "http"
            return f"{scheme}://{host.rstrip('/')}{base_path}"

        if self._base_url:
            return f"{self._base_url}{base_path}"
        if self._catalog.base_url:
            return self._catalog.base_url.rstrip("/")
        raise ConfigurationError(
            "No base URL: the specification declares no host and none is configured",
            {"resource": entry.name},
        )

    def _apply_security(
        self, template: EndpointTemplate, headers: dict[str, str], params: dict[str, str]
    ) -> tuple[set[str], set[str]]:
        """Apply the first security requirement whose credentials are all configured.

        An empty requirement (anonymous access) only applies when no
        credentialed alternative is satisfied.
        """
        secret_headers: set[str] = set()
        secret_params: set[str] = set()
        for requirement in template.security:
            if not requirement:
                continue
            credentials = {name: self._config.credential(name) for name in requirement}
            if not all(credentials.values()):
                continue
            for name, value in credentials.items():
                scheme = self._catalog.security_schemes.get(name) or {}
                location, key, rendered = _render_credential(scheme, str(value))
                if location == "query":
                    params[key] = rendered
                    secret_params.add(key)
                else:
                    headers[key] = rendered
                    secret_headers.add(key)
            return secret_headers, secret_params

        if template.security and not any(len(r) == 0 for r in template.security):
            logger.warning("no_credentials_for_operation", path=template.path, method=template.method)
        return secret_headers, secret_params

    def _apply_headers(self, entry: CatalogEntry, template: EndpointTemplate, headers: dict[str, str]) -> None:
        for header in template.headers:
            if header.name in headers:
                continue
            value = self._config.header(header.config_key)
            if value:
                headers[header.name] = value
            elif header.required:
                raise ConfigurationError(
                    f"Required header '{header.name}' has no configured value",
                    {"resource": entry.name, "config_key": header.config_key},
                )


def _render_credential(scheme: Mapping[str, Any], value: str) -> tuple[str, str, str]:
    """Location ("header"/"query"), key and rendered value for one credential."""
    scheme_type = str(scheme.get("type", "apiKey"))
    if scheme_type == "apiKey":
        return str(scheme.get("in", "header")), str(scheme.get("name", "Authorization")), value
    if scheme_type == "basic" or (scheme_type == "http" and str(scheme.get("scheme", "")).lower() == "basic"):
        token = base64.b64encode(value.encode()).decode()
        return "header", "Authorization", f"Basic {token}"
    return "header", "Authorization", f"Bearer {value}"
