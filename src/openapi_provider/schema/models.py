"""
Typed resource schemas derived from a specification.

A ``ResourceSchema`` is a closed description of one resource: every field the
engine will send or read, with its value kind and lifecycle flags. Polymorphic
properties are represented as a ``VariantSet``: a discriminator plus a closed
mapping of variant name to that variant's own fields.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType


class FieldKind(StrEnum):
    """Value kinds a field may carry."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOL = "bool"
    LIST = "list"
    OBJECT = "object"
    VARIANT = "variant"


@dataclass(frozen=True)
class Variant:
    """One shape of a polymorphic field, selected by its discriminator value."""

    name: str
    fields: tuple[FieldSchema, ...] = ()


@dataclass(frozen=True)
class VariantSet:
    """Closed set of variants keyed by discriminator value."""

    discriminator: str
    variants: Mapping[str, Variant] = field(default_factory=lambda: MappingProxyType({}))

    def select(self, value: object) -> Variant | None:
        if value is None:
            return None
        return self.variants.get(str(value))

    @property
    def names(self) -> list[str]:
        return sorted(self.variants)


@dataclass(frozen=True)
class FieldSchema:
    """A single resource field.

    ``name`` is the field as the host sees it; ``wire_name`` is the property
    name used in request and response bodies.
    """

    name: str
    wire_name: str
    kind: FieldKind
    required: bool = False
    computed: bool = False
    immutable: bool = False
    sensitive: bool = False
    description: str = ""
    fields: tuple[FieldSchema, ...] = ()
    element: FieldKind | None = None
    variants: VariantSet | None = None

    @property
    def is_nested(self) -> bool:
        return bool(self.fields) or self.variants is not None


@dataclass(frozen=True)
class MappingWarning:
    """A property that was dropped while mapping a resource."""

    resource: str
    field: str
    reason: str


@dataclass(frozen=True)
class ResourceSchema:
    """Field set of one resource."""

    name: str
    fields: tuple[FieldSchema, ...]
    identifier: str = "id"
    status_field: str | None = None
    description: str = ""

    def field(self, name: str) -> FieldSchema | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def by_wire_name(self, wire_name: str) -> FieldSchema | None:
        for f in self.fields:
            if f.wire_name == wire_name:
                return f
        return None

    @property
    def identifier_field(self) -> FieldSchema:
        f = self.field(self.identifier)
        if f is None:  # pragma: no cover - mapper always provides one
            raise KeyError(self.identifier)
        return f

    @property
    def required_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.required]

    @property
    def computed_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.computed]

    @property
    def immutable_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.immutable]

    @property
    def sensitive_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.sensitive]
