"""
Resource engine: one generic CRUD algorithm driven by the resource catalog.

Each call plans against a single catalog snapshot, executes exactly one
HTTP exchange (plus polling for asynchronous operations) and reconciles the
response into new instance state. The engine keeps no per-instance state;
the host must not issue concurrent operations for the same instance.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import httpx
import structlog

from openapi_provider.catalog import CatalogHolder, OperationKind, ResourceCatalog, build_catalog
from openapi_provider.config import ProviderConfig, Settings, get_settings, load_config
from openapi_provider.core.errors import CallError, ConfigurationError, RemoteServiceError
from openapi_provider.executor import ExchangeResult, OperationExecutor
from openapi_provider.logging import bind_context
from openapi_provider.planner import OperationPlanner
from openapi_provider.reconciler import ReconcileResult, StateReconciler
from openapi_provider.schema.models import MappingWarning, ResourceSchema
from openapi_provider.specs import load_spec

logger = structlog.get_logger()

SpecSource = str | bytes | Path | Mapping[str, Any]


class ResourceEngine:
    """Exposes create/read/update/delete/list for every catalogued resource."""

    def __init__(
        self,
        catalog: ResourceCatalog,
        config: ProviderConfig | None = None,
        *,
        executor: OperationExecutor | None = None,
        base_url: str | None = None,
        user_agent: str = "openapi-provider/0.1.0",
        spec_timeout: float = 30.0,
    ) -> None:
        self._holder = CatalogHolder(catalog)
        self._config = config or ProviderConfig.default()
        self._executor = executor or OperationExecutor()
        self._reconciler = StateReconciler()
        self._base_url = base_url
        self._user_agent = user_agent
        self._spec_timeout = spec_timeout

    @classmethod
    def from_spec(
        cls,
        source: SpecSource,
        config: ProviderConfig | None = None,
        *,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
    ) -> ResourceEngine:
        """Load a specification and build an engine around its catalog.

        Any load-time error propagates; no engine is built from a partially
        valid specification.
        """
        settings = settings or get_settings()
        catalog = build_catalog(load_spec(source, timeout=settings.http_timeout))
        executor = OperationExecutor(
            client=client,
            timeout=settings.http_timeout,
            max_retries=settings.http_max_retries,
            backoff_factor=settings.http_retry_backoff_factor,
            max_backoff=settings.http_max_backoff,
            poll_interval=settings.poll_interval,
            poll_timeout=settings.poll_timeout,
        )
        return cls(
            catalog,
            config,
            executor=executor,
            base_url=settings.base_url,
            user_agent=settings.user_agent,
            spec_timeout=settings.http_timeout,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        config: ProviderConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> ResourceEngine:
        """Build an engine from environment settings and the YAML provider config."""
        settings = settings or get_settings()
        if not settings.spec_source:
            raise ConfigurationError(
                "No specification source configured",
                {"setting": "OPENAPI_PROVIDER_SPEC_SOURCE"},
            )
        if config is None:
            config = load_config(settings.config_path)
        return cls.from_spec(settings.spec_source, config, settings=settings, client=client)

    # Catalog introspection

    @property
    def catalog(self) -> ResourceCatalog:
        return self._holder.current

    @property
    def warnings(self) -> list[MappingWarning]:
        return list(self._holder.current.warnings)

    def schemas(self) -> list[ResourceSchema]:
        """Every discovered resource schema, sorted by name."""
        return self._holder.current.schemas()

    def reload(self, source: SpecSource) -> ResourceCatalog:
        """Rebuild the catalog from ``source`` and swap it in atomically.

        In-flight calls finish against the catalog they started with. A
        failing load leaves the current catalog in place.
        """
        return self._holder.rebuild(lambda: build_catalog(load_spec(source, timeout=self._spec_timeout)))

    # CRUD

    def create(
        self,
        resource: str,
        values: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ReconcileResult:
        catalog = self.catalog
        entry = catalog.entry(resource)
        result = self._execute(catalog, resource, OperationKind.CREATE, values, idempotency_key, deadline, cancel)
        outcome = self._reconciler.reconcile(entry, OperationKind.CREATE, result, values)
        if outcome.state is None or outcome.state.get(entry.schema.identifier) in (None, ""):
            raise RemoteServiceError(
                "Create response carries no identifier",
                resource=resource,
                operation=OperationKind.CREATE.value,
                details={"identifier": entry.schema.identifier},
            )
        return outcome

    def read(
        self,
        resource: str,
        values: Mapping[str, Any],
        *,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ReconcileResult:
        return self._call(resource, OperationKind.READ, values, deadline=deadline, cancel=cancel)

    def update(
        self,
        resource: str,
        values: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ReconcileResult:
        return self._call(
            resource,
            OperationKind.UPDATE,
            values,
            idempotency_key=idempotency_key,
            deadline=deadline,
            cancel=cancel,
        )

    def delete(
        self,
        resource: str,
        values: Mapping[str, Any],
        *,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ReconcileResult:
        return self._call(resource, OperationKind.DELETE, values, deadline=deadline, cancel=cancel)

    def list(
        self,
        resource: str,
        values: Mapping[str, Any] | None = None,
        *,
        filters: Mapping[str, Any] | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Fetch the collection once; ``values`` supplies parent path placeholders."""
        catalog = self.catalog
        entry = catalog.entry(resource)
        result = self._execute(catalog, resource, OperationKind.LIST, values or {}, None, deadline, cancel)
        return self._reconciler.reconcile_list(entry, result, filters)

    def close(self) -> None:
        self._executor.close()

    def __enter__(self) -> ResourceEngine:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _call(
        self,
        resource: str,
        kind: OperationKind,
        values: Mapping[str, Any],
        *,
        idempotency_key: str | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ReconcileResult:
        catalog = self.catalog
        entry = catalog.entry(resource)
        result = self._execute(catalog, resource, kind, values, idempotency_key, deadline, cancel)
        return self._reconciler.reconcile(entry, kind, result, values)

    def _execute(
        self,
        catalog: ResourceCatalog,
        resource: str,
        kind: OperationKind,
        values: Mapping[str, Any],
        idempotency_key: str | None,
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> ExchangeResult:
        log = bind_context(resource=resource, operation=kind.value)
        planner = OperationPlanner(catalog, self._config, base_url=self._base_url, user_agent=self._user_agent)
        try:
            plan = planner.plan(resource, kind, values, idempotency_key=idempotency_key)
            result = self._executor.execute(plan, deadline=deadline, cancel=cancel)
        except CallError as exc:
            log.warning("resource_operation_failed", error=exc.message, error_type=type(exc).__name__)
            raise
        log.info("resource_operation_completed", status=result.status, polled=result.polled)
        return result
