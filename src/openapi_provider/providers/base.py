"""Host-facing contracts: resource descriptions, change plans and health."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

ChangeAction = Literal["create", "update", "delete"]


@dataclass(frozen=True)
class AttributeDescription:
    """One configurable or computed attribute of a resource."""

    name: str
    kind: str
    description: str = ""
    required: bool = False
    computed: bool = False
    immutable: bool = False
    sensitive: bool = False


@dataclass(frozen=True)
class ResourceDescription:
    """What a host needs to build its configuration surface for a resource."""

    name: str
    description: str
    identifier: str
    attributes: tuple[AttributeDescription, ...] = ()

    def attribute(self, name: str) -> AttributeDescription:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        raise KeyError(name)

    @property
    def required(self) -> tuple[str, ...]:
        return tuple(a.name for a in self.attributes if a.required)

    @property
    def computed(self) -> tuple[str, ...]:
        return tuple(a.name for a in self.attributes if a.computed)

    @property
    def immutable(self) -> tuple[str, ...]:
        return tuple(a.name for a in self.attributes if a.immutable)

    @property
    def sensitive(self) -> tuple[str, ...]:
        return tuple(a.name for a in self.attributes if a.sensitive)


@dataclass(frozen=True)
class ResourceChange:
    """A single pending change; ``field`` is None for whole-instance actions."""

    action: ChangeAction
    resource: str
    field: str | None = None
    before: Any = None
    after: Any = None
    reason: str | None = None


@dataclass(frozen=True)
class ChangePlan:
    resource: str
    changes: tuple[ResourceChange, ...] = ()
    removed_upstream: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def requires_replacement(self) -> bool:
        actions = {change.action for change in self.changes}
        return {"delete", "create"} <= actions

    @property
    def fields(self) -> list[str]:
        return [change.field for change in self.changes if change.field]


@dataclass(frozen=True)
class ProviderHealth:
    status: Literal["healthy", "degraded", "unreachable"]
    details: str | None = None
    warnings: tuple[str, ...] = ()


class ManagedResource(Protocol):
    """One resource instance driven by desired attribute values."""

    def describe(self) -> ResourceDescription:
        ...

    async def plan(self, desired: dict[str, Any]) -> ChangePlan:
        ...

    async def apply(self, desired: dict[str, Any], *, idempotency_key: str | None = None) -> ChangePlan:
        ...

    async def drift(self, desired: dict[str, Any]) -> ChangePlan:
        ...

    async def destroy(self) -> None:
        ...


class Provider(Protocol):
    """Minimal provider interface exposed to the host."""

    name: str

    async def health_check(self) -> ProviderHealth:
        ...

    async def resources(self) -> list[ResourceDescription]:
        ...

    def resource(self, name: str, state: dict[str, Any] | None = None) -> ManagedResource:
        ...
