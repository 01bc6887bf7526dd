"""Encode field values into request bodies and decode response payloads.

Both directions walk the mapped ``FieldSchema`` tree: state names on one side,
wire names on the other. Polymorphic values are decoded explicitly through
their ``VariantSet``; an unknown discriminator value is an error, never a
silent fallback to some other variant.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Callable

from openapi_provider.core.errors import UnknownVariantError
from openapi_provider.schema.models import FieldKind, FieldSchema, Variant, VariantSet

FieldFilter = Callable[[FieldSchema], bool]


def encode(
    fields: Iterable[FieldSchema],
    values: Mapping[str, Any],
    *,
    exclude: FieldFilter | None = None,
    resource: str | None = None,
) -> dict[str, Any]:
    """Build a wire payload from state values, skipping excluded and unset fields."""
    body: dict[str, Any] = {}
    for f in fields:
        if exclude is not None and exclude(f):
            continue
        value = values.get(f.name)
        if value is None:
            continue
        body[f.wire_name] = _encode_value(f, value, values, resource)
    return body


def _encode_value(f: FieldSchema, value: Any, siblings: Mapping[str, Any], resource: str | None) -> Any:
    if f.kind is FieldKind.VARIANT and f.variants is not None:
        variant = _select_variant(f, f.variants, value, siblings, resource, by_state_name=True)
        return encode(variant.fields, value, exclude=_is_computed, resource=resource)
    if f.kind is FieldKind.LIST and isinstance(value, (list, tuple)):
        element = FieldSchema(
            name=f.name,
            wire_name=f.wire_name,
            kind=f.element or FieldKind.STRING,
            fields=f.fields,
            variants=f.variants,
        )
        return [_encode_value(element, item, siblings, resource) for item in value]
    if f.kind is FieldKind.OBJECT and f.fields and isinstance(value, Mapping):
        return encode(f.fields, value, exclude=_is_computed, resource=resource)
    if f.kind is FieldKind.OBJECT and isinstance(value, Mapping):
        return dict(value)
    return value


def decode(
    fields: Iterable[FieldSchema],
    payload: Mapping[str, Any],
    *,
    resource: str | None = None,
) -> dict[str, Any]:
    """Map a wire payload onto state names; properties not in the schema are ignored."""
    state: dict[str, Any] = {}
    for f in fields:
        if f.wire_name not in payload:
            continue
        state[f.name] = _decode_value(f, payload[f.wire_name], payload, resource)
    return state


def _decode_value(f: FieldSchema, value: Any, siblings: Mapping[str, Any], resource: str | None) -> Any:
    if value is None:
        return None
    if f.kind is FieldKind.VARIANT and f.variants is not None:
        variant = _select_variant(f, f.variants, value, siblings, resource, by_state_name=False)
        return decode(variant.fields, value, resource=resource)
    if f.kind is FieldKind.LIST:
        if not isinstance(value, (list, tuple)):
            return [value]
        element = FieldSchema(
            name=f.name,
            wire_name=f.wire_name,
            kind=f.element or FieldKind.STRING,
            fields=f.fields,
            variants=f.variants,
        )
        return [_decode_value(element, item, siblings, resource) for item in value]
    if f.kind is FieldKind.OBJECT:
        if f.fields and isinstance(value, Mapping):
            return decode(f.fields, value, resource=resource)
        return dict(value) if isinstance(value, Mapping) else value
    return _coerce(f.kind, value)


def _coerce(kind: FieldKind, value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if kind is FieldKind.STRING and isinstance(value, (int, float)):
        return str(value)
    if kind is FieldKind.INTEGER and isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _select_variant(
    f: FieldSchema,
    variants: VariantSet,
    value: Any,
    siblings: Mapping[str, Any],
    resource: str | None,
    *,
    by_state_name: bool,
) -> Variant:
    """Pick the variant named by the discriminator, looked up in the value first, then beside it."""
    key = variants.discriminator
    if not isinstance(value, Mapping):
        raise UnknownVariantError(
            f"Field '{f.name}' is not an object; cannot select a variant",
            resource=resource,
            details={"field": f.name, "discriminator": key, "type": type(value).__name__},
        )
    candidates = [key]
    if by_state_name:
        # State values use field names; the discriminator field is named like any other.
        candidates.extend(
            v.name for variant in variants.variants.values() for v in variant.fields if v.wire_name == key
        )
    discriminator_value = None
    for source in (value, siblings):
        if not isinstance(source, Mapping):
            continue
        for candidate in candidates:
            if source.get(candidate) is not None:
                discriminator_value = source[candidate]
                break
        if discriminator_value is not None:
            break

    variant = variants.select(discriminator_value)
    if variant is None:
        raise UnknownVariantError(
            f"Field '{f.name}' has unknown variant {discriminator_value!r}",
            resource=resource,
            details={
                "field": f.name,
                "discriminator": key,
                "value": discriminator_value,
                "variants": variants.names,
            },
        )
    return variant


def _is_computed(f: FieldSchema) -> bool:
    return f.computed
