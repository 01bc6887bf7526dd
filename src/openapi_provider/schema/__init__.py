"""Resource schema types, the schema mapper and the value codec."""

from openapi_provider.schema.mapper import ResourcePaths, SchemaMapper
from openapi_provider.schema.models import (
    FieldKind,
    FieldSchema,
    MappingWarning,
    ResourceSchema,
    Variant,
    VariantSet,
)

__all__ = [
    "FieldKind",
    "FieldSchema",
    "MappingWarning",
    "ResourcePaths",
    "ResourceSchema",
    "SchemaMapper",
    "Variant",
    "VariantSet",
]
