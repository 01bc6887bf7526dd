"""
Resource catalog: resource name -> schema and endpoint templates.

The catalog is built once from a specification document and is read-only
afterwards. ``CatalogHolder`` swaps a rebuilt catalog in with a single
reference assignment, so concurrent readers see either the old or the new
catalog, never a partially built one.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Callable

import structlog

from openapi_provider.core.errors import (
    IncompleteResourceSchemaError,
    MalformedSpecError,
    UnknownResourceError,
)
from openapi_provider.schema.mapper import PLACEHOLDER_PATTERN, ResourcePaths, SchemaMapper
from openapi_provider.schema.models import MappingWarning, ResourceSchema
from openapi_provider.specs import extensions as ext
from openapi_provider.specs.models import SpecDocument

logger = structlog.get_logger()

DURATION_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class OperationKind(StrEnum):
    """CRUD operation kinds exposed per resource."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"


@dataclass(frozen=True)
class PollPolicy:
    """How an asynchronous operation signals completion."""

    status_field: str = "status"
    target_statuses: tuple[str, ...] = ext.DEFAULT_TARGET_STATUSES
    pending_statuses: tuple[str, ...] = ext.DEFAULT_PENDING_STATUSES
    failed_statuses: tuple[str, ...] = ext.DEFAULT_FAILED_STATUSES
    endpoint: str | None = None


@dataclass(frozen=True)
class HeaderParam:
    """A header whose value comes from provider configuration."""

    name: str
    config_key: str
    required: bool = False


@dataclass(frozen=True)
class EndpointTemplate:
    """One resource operation: method, path pattern and completion behavior."""

    kind: OperationKind
    method: str
    path: str
    asynchronous: bool = False
    poll: PollPolicy | None = None
    timeout: float | None = None
    headers: tuple[HeaderParam, ...] = ()
    security: tuple[tuple[str, ...], ...] = ()

    @property
    def placeholders(self) -> list[str]:
        return PLACEHOLDER_PATTERN.findall(self.path)


@dataclass(frozen=True)
class CatalogEntry:
    """Schema plus operations of one resource."""

    schema: ResourceSchema
    operations: Mapping[OperationKind, EndpointTemplate]
    paths: ResourcePaths
    host: str | None = None
    regions: tuple[str, ...] = ()
    version: str | None = None

    @property
    def name(self) -> str:
        return self.schema.name

    def supports(self, kind: OperationKind | str) -> bool:
        return OperationKind(kind) in self.operations

    def endpoint(self, kind: OperationKind | str) -> EndpointTemplate:
        template = self.operations.get(OperationKind(kind))
        if template is None:
            raise UnknownResourceError(
                f"Resource '{self.name}' does not support '{kind}'",
                resource=self.name,
                operation=str(kind),
            )
        return template


@dataclass(frozen=True)
class ResourceCatalog:
    """Read-only registry of mapped resources."""

    entries: Mapping[str, CatalogEntry] = field(default_factory=lambda: MappingProxyType({}))
    warnings: tuple[MappingWarning, ...] = ()
    base_url: str | None = None
    base_path: str = ""
    security_schemes: Mapping[str, Mapping[str, Any]] = field(default_factory=lambda: MappingProxyType({}))

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def get(self, name: str) -> CatalogEntry | None:
        return self.entries.get(name)

    def entry(self, name: str) -> CatalogEntry:
        entry = self.entries.get(name)
        if entry is None:
            raise UnknownResourceError(f"Unknown resource '{name}'", resource=name)
        return entry

    def supports(self, name: str, kind: OperationKind | str) -> bool:
        entry = self.entries.get(name)
        return entry is not None and entry.supports(kind)

    def names(self) -> list[str]:
        return sorted(self.entries)

    def schemas(self) -> list[ResourceSchema]:
        return [self.entries[name].schema for name in self.names()]


def parse_duration(value: Any) -> float | None:
    """Parse "30s", "5m", "1h30m" or a plain number of seconds."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    if not text:
        return None
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)
    matches = DURATION_PATTERN.findall(text)
    if not matches or "".join(n + u for n, u in matches) != text.replace(" ", ""):
        raise MalformedSpecError(f"Invalid duration '{value}'", {"extension": ext.RESOURCE_TIMEOUT})
    return sum(float(number) * _DURATION_UNITS[unit] for number, unit in matches)


class CatalogBuilder:
    """Builds a ``ResourceCatalog`` from a specification document."""

    def __init__(self, document: SpecDocument) -> None:
        self._doc = document
        self._mapper = SchemaMapper(document)

    def build(self) -> ResourceCatalog:
        entries: dict[str, CatalogEntry] = {}
        for paths in self._mapper.discover():
            if paths.name in entries:
                raise MalformedSpecError(
                    f"Duplicate resource name '{paths.name}'; set {ext.RESOURCE_NAME} to disambiguate",
                    {"path": paths.collection_path},
                )
            entries[paths.name] = self._entry(paths)

        catalog = ResourceCatalog(
            entries=MappingProxyType(entries),
            warnings=tuple(self._mapper.warnings),
            base_url=self._doc.base_url,
            base_path=self._doc.base_path,
            security_schemes=self._doc.security_schemes,
        )
        logger.info(
            "catalog_built",
            resources=len(catalog),
            warnings=len(catalog.warnings),
        )
        return catalog

    def _entry(self, paths: ResourcePaths) -> CatalogEntry:
        operations = self._operations(paths)
        if not operations:
            raise IncompleteResourceSchemaError(
                "Resource declares no operations",
                {"resource": paths.name, "path": paths.collection_path},
            )
        if OperationKind.CREATE not in operations and OperationKind.READ not in operations:
            raise IncompleteResourceSchemaError(
                "Resource has neither a create nor a read operation",
                {"resource": paths.name, "path": paths.collection_path},
            )

        schema = self._mapper.map_resource(paths)
        status_field = schema.status_field or "status"
        operations = {
            kind: _with_status_field(template, status_field) for kind, template in operations.items()
        }

        host = self._host(paths)
        regions: tuple[str, ...] = ()
        if host and "${region}" in host:
            regions = self._doc.regions(paths.name)
            if not regions:
                raise MalformedSpecError(
                    f"Host '{host}' uses ${{region}} but no {ext.RESOURCE_REGIONS_PREFIX}{paths.name} is declared",
                    {"resource": paths.name},
                )

        return CatalogEntry(
            schema=schema,
            operations=MappingProxyType(operations),
            paths=paths,
            host=host,
            regions=regions,
            version=paths.version,
        )

    def _operations(self, paths: ResourcePaths) -> dict[OperationKind, EndpointTemplate]:
        candidates = [
            (OperationKind.CREATE, paths.collection_path, "post"),
            (OperationKind.LIST, paths.collection_path, "get"),
            (OperationKind.READ, paths.instance_path, "get"),
            (OperationKind.UPDATE, paths.instance_path, self._mapper.update_method(paths)),
            (OperationKind.DELETE, paths.instance_path, "delete"),
        ]
        operations: dict[OperationKind, EndpointTemplate] = {}
        for kind, path, method in candidates:
            if method is None:
                continue
            op = self._doc.operation(path, method)
            if op is None:
                continue
            operations[kind] = self._template(kind, path, method, op)
        return operations

    def _template(self, kind: OperationKind, path: str, method: str, op: Mapping[str, Any]) -> EndpointTemplate:
        asynchronous = bool(ext.flag(op, ext.POLL_ENABLED))
        poll = None
        if asynchronous:
            poll = PollPolicy(
                target_statuses=ext.status_list(op.get(ext.POLL_TARGET_STATUSES), ext.DEFAULT_TARGET_STATUSES),
                pending_statuses=ext.status_list(op.get(ext.POLL_PENDING_STATUSES), ext.DEFAULT_PENDING_STATUSES),
                failed_statuses=ext.status_list(op.get(ext.POLL_FAILED_STATUSES), ext.DEFAULT_FAILED_STATUSES),
                endpoint=op.get(ext.POLL_ENDPOINT),
            )

        headers = tuple(
            HeaderParam(
                name=str(param["name"]),
                config_key=str(param.get(ext.HEADER) or param["name"]),
                required=bool(param.get("required")),
            )
            for param in self._doc.parameters(path, method)
            if param.get("in") == "header"
        )
        security = tuple(
            tuple(requirement.keys()) for requirement in self._doc.security_for(path, method)
        )
        return EndpointTemplate(
            kind=kind,
            method=method.upper(),
            path=path,
            asynchronous=asynchronous,
            poll=poll,
            timeout=parse_duration(op.get(ext.RESOURCE_TIMEOUT)),
            headers=headers,
            security=security,
        )

    def _host(self, paths: ResourcePaths) -> str | None:
        host = paths.path_extension(self._doc, ext.RESOURCE_HOST)
        if host:
            return str(host)
        for path, method in self._mapper.operation_methods(paths):
            op = self._doc.operation(path, method) or {}
            if op.get(ext.RESOURCE_HOST):
                return str(op[ext.RESOURCE_HOST])
        return None


def _with_status_field(template: EndpointTemplate, status_field: str) -> EndpointTemplate:
    if template.poll is None:
        return template
    return replace(template, poll=replace(template.poll, status_field=status_field))


def build_catalog(document: SpecDocument) -> ResourceCatalog:
    """Map every resource of a document into a new catalog."""
    return CatalogBuilder(document).build()


class CatalogHolder:
    """Holds the current catalog and replaces it atomically on rebuild."""

    def __init__(self, catalog: ResourceCatalog | None = None) -> None:
        self._catalog = catalog or ResourceCatalog()
        self._rebuild_lock = threading.Lock()

    @property
    def current(self) -> ResourceCatalog:
        return self._catalog

    def swap(self, catalog: ResourceCatalog) -> ResourceCatalog:
        """Install a fully built catalog; returns the one it replaced."""
        with self._rebuild_lock:
            previous, self._catalog = self._catalog, catalog
        return previous

    def rebuild(self, builder: Callable[[], ResourceCatalog]) -> ResourceCatalog:
        """Build a catalog and install it. A failing build leaves the current one in place."""
        with self._rebuild_lock:
            catalog = builder()
            self._catalog = catalog
        logger.info("catalog_swapped", resources=len(catalog))
        return catalog
