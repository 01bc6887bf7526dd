"""
Schema mapper: specification paths and schema objects to resource schemas.

A resource is a collection path ``P`` paired with an instance path
``P/{param}``. Its fields come from the create request body, the update
request body and the read (or create) response body.

Field classification, in precedence order:
1. An explicit extension marker (``x-terraform-computed``, ``x-terraform-immutable``,
   ``x-terraform-sensitive``) wins, then the format-native ``readOnly``.
2. A field present only in the response is computed.
3. A field required in the create request is required. A field present in the
   create request but absent from a declared update request is immutable.
4. ``oneOf``/``anyOf`` becomes a variant set keyed by the declared discriminator.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import structlog

from openapi_provider.core.errors import (
    IncompleteResourceSchemaError,
    UnsupportedSchemaError,
)
from openapi_provider.schema.models import (
    FieldKind,
    FieldSchema,
    MappingWarning,
    ResourceSchema,
    Variant,
    VariantSet,
)
from openapi_provider.specs import extensions as ext
from openapi_provider.specs.models import HTTP_METHODS, SpecDocument

logger = structlog.get_logger()

INSTANCE_PATH_PATTERN = re.compile(r"^(?P<collection>.*)/\{(?P<param>[^}/]+)\}/?$")
PLACEHOLDER_PATTERN = re.compile(r"\{([^}/]+)\}")
VERSION_SEGMENT_PATTERN = re.compile(r"^v\d+[a-z0-9]*$")

_PRIMITIVES = {
    "string": FieldKind.STRING,
    "integer": FieldKind.INTEGER,
    "number": FieldKind.NUMBER,
    "boolean": FieldKind.BOOL,
}


def snake_case(name: str) -> str:
    """Convert a wire property name (camelCase, kebab-case) to snake_case."""
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"[^a-zA-Z0-9]+", "_", name).strip("_").lower()


def singularize(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("sses", "xes", "ches", "shes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss") and len(word) > 1:
        return word[:-1]
    return word


@dataclass(frozen=True)
class ResourcePaths:
    """A discovered collection/instance path pair."""

    name: str
    collection_path: str
    instance_path: str
    id_param: str
    parent_params: tuple[str, ...] = ()
    version: str | None = None

    def path_extension(self, document: SpecDocument, key: str) -> Any:
        """Extension value from the create operation, then either path item."""
        create = document.operation(self.collection_path, "post") or {}
        for node in (
            create,
            document.path_item(self.collection_path),
            document.path_item(self.instance_path),
        ):
            if key in node:
                return node[key]
        return None


@dataclass
class _ObjectShape:
    properties: dict[str, Mapping[str, Any]]
    required: set[str]
    present: bool


class SchemaMapper:
    """Derives resource schemas from a specification document.

    Dropped optional properties are recorded in ``warnings``.
    """

    def __init__(self, document: SpecDocument) -> None:
        self._doc = document
        self.warnings: list[MappingWarning] = []

    # Discovery

    def discover(self) -> list[ResourcePaths]:
        """Find every collection/instance pair following the CRUD convention."""
        found: list[ResourcePaths] = []
        for instance_path in sorted(self._doc.paths):
            match = INSTANCE_PATH_PATTERN.match(instance_path)
            if not match:
                continue
            collection_path = match.group("collection")
            if not collection_path or collection_path not in self._doc.paths:
                continue

            parent_params = tuple(PLACEHOLDER_PATTERN.findall(collection_path))
            name, version = self._derive_name(collection_path)
            paths = ResourcePaths(
                name=name,
                collection_path=collection_path,
                instance_path=instance_path,
                id_param=match.group("param"),
                parent_params=parent_params,
                version=version,
            )

            if ext.truthy(paths.path_extension(self._doc, ext.EXCLUDE_RESOURCE)):
                logger.debug("resource_excluded", path=collection_path)
                continue

            explicit_name = paths.path_extension(self._doc, ext.RESOURCE_NAME)
            explicit_version = paths.path_extension(self._doc, ext.RESOURCE_VERSION)
            if explicit_name or explicit_version:
                paths = ResourcePaths(
                    name=snake_case(str(explicit_name)) if explicit_name else name,
                    collection_path=collection_path,
                    instance_path=instance_path,
                    id_param=paths.id_param,
                    parent_params=parent_params,
                    version=str(explicit_version) if explicit_version else version,
                )
            found.append(paths)
        return found

    def _derive_name(self, collection_path: str) -> tuple[str, str | None]:
        segments = [s for s in collection_path.split("/") if s]
        parts: list[str] = []
        pending_version: str | None = None
        version: str | None = None
        for segment in segments:
            if segment.startswith("{"):
                continue
            if VERSION_SEGMENT_PATTERN.match(segment):
                pending_version = segment
                continue
            part = snake_case(singularize(segment))
            if pending_version:
                part = f"{part}_{pending_version}"
            version = pending_version
            pending_version = None
            parts.append(part)
        return "_".join(parts) or "resource", version

    # Mapping

    def map_resource(self, paths: ResourcePaths) -> ResourceSchema:
        """Build the resource schema of one discovered pair."""
        doc = self._doc
        update_method = self.update_method(paths)

        create = self._object_shape(doc.request_schema(paths.collection_path, "post"))
        update = self._object_shape(
            doc.request_schema(paths.instance_path, update_method) if update_method else None
        )
        read = self._object_shape(
            doc.response_schema(paths.instance_path, "get")
            or doc.response_schema(paths.collection_path, "post")
        )
        if not (create.present or update.present or read.present):
            raise IncompleteResourceSchemaError(
                "Resource declares no request or response body schema",
                {"resource": paths.name, "path": paths.collection_path},
            )

        names: list[str] = []
        for shape in (create, update, read):
            names.extend(n for n in shape.properties if n not in names)

        fields: list[FieldSchema] = [self._parent_field(p) for p in paths.parent_params]
        identifier: str | None = None
        status_field: str | None = None

        for wire_name in names:
            if wire_name in paths.parent_params:
                continue
            sources = [
                shape.properties[wire_name]
                for shape in (read, create, update)
                if wire_name in shape.properties
            ]
            required_on_create = wire_name in create.required
            try:
                f = self._top_level_field(wire_name, sources, create, update, read)
            except UnsupportedSchemaError as exc:
                if required_on_create:
                    raise IncompleteResourceSchemaError(
                        f"Required field '{wire_name}' cannot be represented: {exc.message}",
                        {"resource": paths.name, "field": wire_name},
                    ) from exc
                self._warn(paths.name, wire_name, exc.message)
                continue

            if any(ext.flag(s, ext.ID) for s in sources) and identifier is None:
                identifier = f.name
            if any(ext.flag(s, ext.FIELD_STATUS) for s in sources):
                status_field = f.wire_name
            fields.append(f)

        if identifier is None:
            identifier = "id" if any(f.name == "id" for f in fields) else None
        if identifier is None:
            fields.insert(0, FieldSchema(name="id", wire_name="id", kind=FieldKind.STRING, computed=True))
            identifier = "id"
        if status_field is None and any(f.wire_name == "status" for f in fields):
            status_field = "status"

        create_op = doc.operation(paths.collection_path, "post") or doc.operation(paths.instance_path, "get") or {}
        description = str(create_op.get("summary") or create_op.get("description") or "")
        return ResourceSchema(
            name=paths.name,
            fields=tuple(fields),
            identifier=identifier,
            status_field=status_field,
            description=description,
        )

    def update_method(self, paths: ResourcePaths) -> str | None:
        for method in ("put", "patch"):
            if self._doc.operation(paths.instance_path, method) is not None:
                return method
        return None

    def operation_methods(self, paths: ResourcePaths) -> list[tuple[str, str]]:
        """Declared (path, method) pairs of a resource."""
        return [
            (path, method)
            for path in (paths.collection_path, paths.instance_path)
            for method in HTTP_METHODS
            if self._doc.operation(path, method) is not None
        ]

    def _parent_field(self, param: str) -> FieldSchema:
        return FieldSchema(
            name=snake_case(param),
            wire_name=param,
            kind=FieldKind.STRING,
            required=True,
            immutable=True,
            description=f"Identifier of the parent resource ({param})",
        )

    def _top_level_field(
        self,
        wire_name: str,
        sources: list[Mapping[str, Any]],
        create: _ObjectShape,
        update: _ObjectShape,
        read: _ObjectShape,
    ) -> FieldSchema:
        schema = sources[0]
        in_request = wire_name in create.properties or wire_name in update.properties

        computed = _first_flag(sources, ext.COMPUTED)
        if computed is None:
            computed = _first_flag(sources, "readOnly")
        if computed is None:
            computed = read.present and wire_name in read.properties and not in_request

        immutable = _first_flag(sources, ext.IMMUTABLE)
        if immutable is None:
            immutable = _first_flag(sources, ext.FORCE_NEW)
        if immutable is None:
            immutable = (
                update.present
                and wire_name in create.properties
                and wire_name not in update.properties
            )

        sensitive = _first_flag(sources, ext.SENSITIVE)
        if sensitive is None:
            sensitive = any(s.get("format") == "password" for s in sources)

        base = self._field(wire_name, schema, required=False)
        explicit_name = next((s[ext.FIELD_NAME] for s in sources if s.get(ext.FIELD_NAME)), None)
        return FieldSchema(
            name=str(explicit_name) if explicit_name else base.name,
            wire_name=wire_name,
            kind=base.kind,
            required=(wire_name in create.required) and not computed,
            computed=bool(computed),
            immutable=bool(immutable) and not computed,
            sensitive=bool(sensitive),
            description=next((str(s["description"]) for s in sources if s.get("description")), ""),
            fields=base.fields,
            element=base.element,
            variants=base.variants,
        )

    def _field(self, wire_name: str, schema: Mapping[str, Any], *, required: bool) -> FieldSchema:
        """Map one property schema. Raises UnsupportedSchemaError when it cannot be represented."""
        name = str(schema.get(ext.FIELD_NAME) or snake_case(wire_name))
        kind, children, element, variants = self._shape(schema)
        computed = _first_flag([schema], ext.COMPUTED)
        if computed is None:
            computed = bool(schema.get("readOnly"))
        return FieldSchema(
            name=name,
            wire_name=wire_name,
            kind=kind,
            required=required and not computed,
            computed=bool(computed),
            immutable=bool(ext.flag(schema, ext.IMMUTABLE) or ext.flag(schema, ext.FORCE_NEW)),
            sensitive=bool(ext.flag(schema, ext.SENSITIVE) or schema.get("format") == "password"),
            description=str(schema.get("description") or ""),
            fields=children,
            element=element,
            variants=variants,
        )

    def _shape(
        self, schema: Mapping[str, Any]
    ) -> tuple[FieldKind, tuple[FieldSchema, ...], FieldKind | None, VariantSet | None]:
        if ext.CIRCULAR_REF in schema:
            raise UnsupportedSchemaError(f"circular reference {schema[ext.CIRCULAR_REF]}")
        if schema.get("oneOf") or schema.get("anyOf"):
            return FieldKind.VARIANT, (), None, self._variants(schema)
        if schema.get("allOf"):
            shape = self._object_shape(schema)
            return FieldKind.OBJECT, self._children(shape), None, None

        schema_type = _schema_type(schema)
        if schema_type in _PRIMITIVES:
            return _PRIMITIVES[schema_type], (), None, None
        if schema_type == "array":
            items = schema.get("items")
            if not isinstance(items, Mapping) or not items:
                raise UnsupportedSchemaError("array without items schema")
            item_kind, item_children, _, item_variants = self._shape(items)
            if item_kind is FieldKind.LIST:
                raise UnsupportedSchemaError("nested arrays are not supported")
            return FieldKind.LIST, item_children, item_kind, item_variants
        if schema_type == "object" or schema.get("properties") or schema.get("additionalProperties"):
            shape = self._object_shape(schema)
            return FieldKind.OBJECT, self._children(shape), None, None
        if schema.get("enum") and all(isinstance(v, str) for v in schema["enum"]):
            return FieldKind.STRING, (), None, None
        raise UnsupportedSchemaError("property has no representable type")

    def _children(self, shape: _ObjectShape) -> tuple[FieldSchema, ...]:
        children: list[FieldSchema] = []
        for wire_name, prop in shape.properties.items():
            children.append(self._field(wire_name, prop, required=wire_name in shape.required))
        return tuple(children)

    def _variants(self, schema: Mapping[str, Any]) -> VariantSet:
        options = list(schema.get("oneOf") or schema.get("anyOf") or ())
        discriminator = schema.get("discriminator")
        mapping: Mapping[str, Any] = {}
        if isinstance(discriminator, Mapping):
            mapping = discriminator.get("mapping") or {}
            discriminator = discriminator.get("propertyName")
        discriminator = discriminator or schema.get(ext.DISCRIMINATOR)
        if not discriminator:
            raise UnsupportedSchemaError(
                f"combinator without a discriminator; declare discriminator.propertyName or {ext.DISCRIMINATOR}"
            )

        names_by_ref = {str(ref): value for value, ref in mapping.items()}
        variants: dict[str, Variant] = {}
        for option in options:
            shape = self._object_shape(option)
            if not shape.present:
                raise UnsupportedSchemaError("variant is not an object schema")
            name = self._variant_name(option, shape, str(discriminator), names_by_ref)
            if name in variants:
                raise UnsupportedSchemaError(f"duplicate variant '{name}'")
            variants[name] = Variant(name=name, fields=self._children(shape))
        return VariantSet(discriminator=str(discriminator), variants=MappingProxyType(variants))

    def _variant_name(
        self,
        option: Mapping[str, Any],
        shape: _ObjectShape,
        discriminator: str,
        names_by_ref: dict[str, str],
    ) -> str:
        ref = option.get(ext.RESOLVED_REF)
        if ref and ref in names_by_ref:
            return str(names_by_ref[ref])
        enum = (shape.properties.get(discriminator) or {}).get("enum") or ()
        if len(enum) == 1:
            return str(enum[0])
        if ref:
            return str(ref).rsplit("/", 1)[-1]
        if option.get("title"):
            return str(option["title"])
        raise UnsupportedSchemaError("variant cannot be named from its discriminator")

    def _object_shape(self, schema: Mapping[str, Any] | None) -> _ObjectShape:
        """Properties and required names of an object schema, with allOf merged."""
        if not schema:
            return _ObjectShape({}, set(), present=False)
        if ext.CIRCULAR_REF in schema:
            raise UnsupportedSchemaError(f"circular reference {schema[ext.CIRCULAR_REF]}")
        properties: dict[str, Mapping[str, Any]] = {}
        required: set[str] = set()
        for part in schema.get("allOf") or ():
            inner = self._object_shape(part)
            properties.update(inner.properties)
            required |= inner.required
        properties.update(schema.get("properties") or {})
        required |= set(schema.get("required") or ())
        return _ObjectShape(properties, required, present=True)

    def _warn(self, resource: str, field_name: str, reason: str) -> None:
        self.warnings.append(MappingWarning(resource=resource, field=field_name, reason=reason))
        logger.warning("schema_field_dropped", resource=resource, field=field_name, reason=reason)


def _schema_type(schema: Mapping[str, Any]) -> str | None:
    schema_type = schema.get("type")
    if isinstance(schema_type, (list, tuple)):
        non_null = [t for t in schema_type if t != "null"]
        return non_null[0] if non_null else None
    return schema_type


def _first_flag(sources: list[Mapping[str, Any]], key: str) -> bool | None:
    for source in sources:
        value = ext.flag(source, key)
        if value is not None:
            return value
    return None
