"""
Async provider adapter over the resource engine.

Engine calls block on network I/O, so each one runs in a worker thread and
the event loop stays free while a remote operation is polled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx
import structlog

from openapi_provider.config import ProviderConfig, Settings
from openapi_provider.engine import ResourceEngine
from openapi_provider.providers.base import (
    AttributeDescription,
    ChangeAction,
    ChangePlan,
    ManagedResource,
    Provider,
    ProviderHealth,
    ResourceChange,
    ResourceDescription,
)
from openapi_provider.reconciler import FieldDrift, diff
from openapi_provider.schema.models import ResourceSchema

logger = structlog.get_logger()

MASKED = "***"


class OpenAPIProvider(Provider):
    """Exposes every resource discovered in an OpenAPI document."""

    def __init__(self, engine: ResourceEngine, *, name: str = "openapi") -> None:
        self.name = name
        self._engine = engine

    @classmethod
    def from_spec(
        cls,
        source: str | Path | Mapping[str, Any],
        config: ProviderConfig | None = None,
        *,
        name: str = "openapi",
        settings: Settings | None = None,
        client: httpx.Client | None = None,
    ) -> OpenAPIProvider:
        return cls(ResourceEngine.from_spec(source, config, settings=settings, client=client), name=name)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, name: str = "openapi") -> OpenAPIProvider:
        return cls(ResourceEngine.from_settings(settings), name=name)

    @property
    def engine(self) -> ResourceEngine:
        return self._engine

    async def aclose(self) -> None:
        await asyncio.to_thread(self._engine.close)

    async def health_check(self) -> ProviderHealth:
        catalog = self._engine.catalog
        if not len(catalog):
            return ProviderHealth(status="degraded", details="catalog has no resources")
        dropped = tuple(f"{w.resource}.{w.field}" for w in catalog.warnings)
        if dropped:
            return ProviderHealth(status="degraded", details=f"{len(dropped)} field(s) dropped", warnings=dropped)
        return ProviderHealth(status="healthy", details=f"{len(catalog)} resource(s)")

    async def resources(self) -> list[ResourceDescription]:
        return [describe(schema) for schema in self._engine.schemas()]

    def resource(self, name: str, state: Mapping[str, Any] | None = None) -> OpenAPIResource:
        # Unknown names fail here rather than on the first remote call
        self._engine.catalog.entry(name)
        return OpenAPIResource(self._engine, name, state)


class OpenAPIResource(ManagedResource):
    """One resource instance; ``state`` holds its last reconciled field values."""

    def __init__(self, engine: ResourceEngine, resource: str, state: Mapping[str, Any] | None = None) -> None:
        self._engine = engine
        self._resource = resource
        self._state: dict[str, Any] | None = dict(state) if state else None

    @property
    def state(self) -> dict[str, Any] | None:
        return dict(self._state) if self._state is not None else None

    def describe(self) -> ResourceDescription:
        return describe(self._schema())

    async def plan(self, desired: dict[str, Any]) -> ChangePlan:
        actual = await self._refresh()
        if actual is None:
            return ChangePlan(self._resource, (ResourceChange("create", self._resource),))
        return self._compare(desired, actual)

    async def drift(self, desired: dict[str, Any]) -> ChangePlan:
        """Compare desired values with the remote instance.

        An instance deleted outside the host plans a fresh create and is
        flagged ``removed_upstream``.
        """
        if self._state is None:
            return ChangePlan(self._resource)
        actual = await self._refresh()
        if actual is None:
            return ChangePlan(
                self._resource,
                (ResourceChange("create", self._resource, reason="removed_upstream"),),
                removed_upstream=True,
            )
        return self._compare(desired, actual)

    async def apply(self, desired: dict[str, Any], *, idempotency_key: str | None = None) -> ChangePlan:
        plan = await self.plan(desired)
        if not plan.has_changes:
            return plan

        if plan.requires_replacement and self._state is not None:
            await asyncio.to_thread(self._engine.delete, self._resource, self._state)
            self._state = None

        if self._state is None:
            result = await asyncio.to_thread(
                self._engine.create, self._resource, desired, idempotency_key=idempotency_key
            )
        else:
            result = await asyncio.to_thread(
                self._engine.update,
                self._resource,
                {**self._state, **desired},
                idempotency_key=idempotency_key,
            )
        self._state = result.state
        logger.info("resource_applied", resource=self._resource, changes=len(plan.changes))
        return plan

    async def destroy(self) -> None:
        if self._state is None:
            return
        await asyncio.to_thread(self._engine.delete, self._resource, self._state)
        self._state = None

    async def _refresh(self) -> dict[str, Any] | None:
        if self._state is None:
            return None
        if self._state.get(self._schema().identifier) in (None, ""):
            return None
        result = await asyncio.to_thread(self._engine.read, self._resource, self._state)
        self._state = result.state
        return result.state

    def _compare(self, desired: Mapping[str, Any], actual: Mapping[str, Any]) -> ChangePlan:
        drifts = diff(self._schema(), desired, actual)
        if any(d.requires_replacement for d in drifts):
            changes = [ResourceChange("delete", self._resource, reason="immutable_field_changed")]
            changes += [_change("create", self._resource, d) for d in drifts]
            return ChangePlan(self._resource, tuple(changes))
        return ChangePlan(self._resource, tuple(_change("update", self._resource, d) for d in drifts))

    def _schema(self) -> ResourceSchema:
        return self._engine.catalog.entry(self._resource).schema


def describe(schema: ResourceSchema) -> ResourceDescription:
    """Host-facing description of a mapped resource schema."""
    return ResourceDescription(
        name=schema.name,
        description=schema.description,
        identifier=schema.identifier,
        attributes=tuple(
            AttributeDescription(
                name=f.name,
                kind=f.kind.value,
                description=f.description,
                required=f.required,
                computed=f.computed,
                immutable=f.immutable,
                sensitive=f.sensitive,
            )
            for f in schema.fields
        ),
    )


def _change(action: ChangeAction, resource: str, drift: FieldDrift) -> ResourceChange:
    if drift.sensitive:
        return ResourceChange(action, resource, drift.field, MASKED, MASKED)
    return ResourceChange(action, resource, drift.field, drift.actual, drift.desired)
