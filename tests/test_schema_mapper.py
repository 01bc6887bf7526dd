"""Tests for schema/mapper.py."""

import pytest
from openapi_provider.core.errors import IncompleteResourceSchemaError
from openapi_provider.schema import FieldKind, SchemaMapper
from openapi_provider.schema.mapper import singularize, snake_case
from openapi_provider.specs import load_spec


def _map(spec, name=None):
    mapper = SchemaMapper(load_spec(spec))
    found = mapper.discover()
    paths = found[0] if name is None else next(p for p in found if p.name == name)
    return mapper, mapper.map_resource(paths)


def _pets_spec(widget_spec, discriminator):
    widget_spec["components"]["schemas"].update(
        {
            "Dog": {"type": "object", "properties": {"kind": {"type": "string"}, "bark": {"type": "boolean"}}},
            "Cat": {"type": "object", "properties": {"kind": {"type": "string"}, "lives": {"type": "integer"}}},
        }
    )
    pet = {"oneOf": [{"$ref": "#/components/schemas/Dog"}, {"$ref": "#/components/schemas/Cat"}]}
    pet.update(discriminator)
    widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["pet"] = pet
    return widget_spec


class TestNames:
    """Tests for name helpers."""

    @pytest.mark.parametrize(
        "wire,expected",
        [("name", "name"), ("displayName", "display_name"), ("HTTPPort", "http_port"), ("cpu-limit", "cpu_limit")],
    )
    def test_snake_case(self, wire, expected):
        assert snake_case(wire) == expected

    @pytest.mark.parametrize(
        "word,expected",
        [("widgets", "widget"), ("policies", "policy"), ("boxes", "box"), ("address", "address"), ("data", "data")],
    )
    def test_singularize(self, word, expected):
        assert singularize(word) == expected


class TestDiscovery:
    """Tests for collection/instance pair discovery."""

    def test_widget_pair(self, widget_spec):
        found = SchemaMapper(load_spec(widget_spec)).discover()
        assert len(found) == 1
        paths = found[0]
        assert paths.name == "widget"
        assert paths.collection_path == "/widgets"
        assert paths.instance_path == "/widgets/{id}"
        assert paths.id_param == "id"
        assert paths.parent_params == ()

    def test_paths_without_pair_ignored(self, widget_spec):
        widget_spec["paths"]["/health"] = {"get": {"responses": {"200": {"description": "ok"}}}}
        widget_spec["paths"]["/orphans/{id}"] = {"get": {"responses": {"200": {"description": "ok"}}}}
        widget_spec["paths"]["/widgets/{id}/restart"] = {"post": {"responses": {"204": {"description": "ok"}}}}

        names = [p.name for p in SchemaMapper(load_spec(widget_spec)).discover()]
        assert names == ["widget"]

    def test_versioned_path(self, widget_spec):
        widget_spec["paths"] = {
            "/v1/widgets": widget_spec["paths"]["/widgets"],
            "/v1/widgets/{id}": widget_spec["paths"]["/widgets/{id}"],
        }
        paths = SchemaMapper(load_spec(widget_spec)).discover()[0]
        assert paths.name == "widget_v1"
        assert paths.version == "v1"

    def test_nested_resource(self, widget_spec):
        widget_spec["paths"] = {
            "/projects/{project_id}/widgets": widget_spec["paths"]["/widgets"],
            "/projects/{project_id}/widgets/{widget_id}": widget_spec["paths"]["/widgets/{id}"],
        }
        widget_spec["paths"]["/projects/{project_id}/widgets/{widget_id}"]["parameters"] = []
        paths = SchemaMapper(load_spec(widget_spec)).discover()[0]
        assert paths.name == "project_widget"
        assert paths.parent_params == ("project_id",)
        assert paths.id_param == "widget_id"

    def test_explicit_name_and_version(self, widget_spec):
        widget_spec["paths"]["/widgets"]["post"]["x-terraform-resource-name"] = "gadget"
        widget_spec["paths"]["/widgets"]["x-terraform-resource-version"] = "v3"
        paths = SchemaMapper(load_spec(widget_spec)).discover()[0]
        assert paths.name == "gadget"
        assert paths.version == "v3"

    def test_excluded(self, widget_spec):
        widget_spec["paths"]["/widgets"]["post"]["x-terraform-exclude-resource"] = "true"
        assert SchemaMapper(load_spec(widget_spec)).discover() == []


class TestClassification:
    """Tests for field flag inference and extension overrides."""

    def test_widget_fields(self, widget_spec):
        _, schema = _map(widget_spec)
        assert [f.name for f in schema.fields] == ["name", "size", "color", "secret", "id", "status"]
        assert schema.identifier == "id"
        assert schema.status_field == "status"
        assert schema.description == "A widget"
        assert schema.required_fields == ["name"]
        assert sorted(schema.computed_fields) == ["id", "status"]
        assert schema.immutable_fields == ["color"]
        assert schema.sensitive_fields == ["secret"]
        assert schema.field("size").kind is FieldKind.INTEGER
        assert schema.field("name").description == "Display name"

    def test_response_only_field_is_computed(self, widget_spec):
        _, schema = _map(widget_spec)
        status = schema.field("status")
        assert status.computed
        assert not status.required

    def test_extension_wins_over_inference(self, widget_spec):
        widget_spec["components"]["schemas"]["Widget"]["properties"]["status"]["x-terraform-computed"] = False
        _, schema = _map(widget_spec)
        assert not schema.field("status").computed

    def test_missing_from_update_is_immutable(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetUpdate"] = {
            "type": "object",
            "properties": {"name": {"type": "string"}, "color": {"type": "string"}},
        }
        widget_spec["paths"]["/widgets/{id}"]["put"]["requestBody"] = {
            "content": {"application/json": {"schema": {"$ref": "#/components/schemas/WidgetUpdate"}}}
        }
        _, schema = _map(widget_spec)
        assert schema.field("size").immutable
        assert schema.field("secret").immutable
        assert not schema.field("name").immutable

    def test_force_new_alias(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["size"]["x-terraform-force-new"] = True
        _, schema = _map(widget_spec)
        assert schema.field("size").immutable

    def test_password_format_is_sensitive(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["token"] = {
            "type": "string",
            "format": "password",
        }
        _, schema = _map(widget_spec)
        assert schema.field("token").sensitive

    def test_field_name_override(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["displayName"] = {
            "type": "string",
            "x-terraform-field-name": "label",
        }
        _, schema = _map(widget_spec)
        assert schema.field("label").wire_name == "displayName"

    def test_camel_case_wire_name(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["maxItems"] = {"type": "integer"}
        _, schema = _map(widget_spec)
        assert schema.field("max_items").wire_name == "maxItems"

    def test_explicit_identifier(self, widget_spec):
        props = widget_spec["components"]["schemas"]["Widget"]["properties"]
        del props["id"]
        props["widgetId"] = {"type": "string", "x-terraform-id": True}
        _, schema = _map(widget_spec)
        assert schema.identifier == "widget_id"
        assert schema.field("id") is None

    def test_synthetic_identifier(self, widget_spec):
        del widget_spec["components"]["schemas"]["Widget"]["properties"]["id"]
        _, schema = _map(widget_spec)
        identifier = schema.identifier_field
        assert identifier.name == "id"
        assert identifier.computed

    def test_status_field_extension(self, widget_spec):
        widget_spec["components"]["schemas"]["Widget"]["properties"]["phase"] = {
            "type": "string",
            "x-terraform-field-status": True,
        }
        _, schema = _map(widget_spec)
        assert schema.status_field == "phase"

    def test_parent_params_become_fields(self, widget_spec):
        widget_spec["paths"] = {
            "/projects/{project_id}/widgets": widget_spec["paths"]["/widgets"],
            "/projects/{project_id}/widgets/{id}": widget_spec["paths"]["/widgets/{id}"],
        }
        _, schema = _map(widget_spec)
        parent = schema.field("project_id")
        assert parent.required
        assert parent.immutable
        assert parent.kind is FieldKind.STRING

    def test_nested_object_and_list(self, widget_spec):
        props = widget_spec["components"]["schemas"]["WidgetInput"]["properties"]
        props["labels"] = {"type": "array", "items": {"type": "string"}}
        props["limits"] = {
            "type": "object",
            "required": ["cpu"],
            "properties": {"cpu": {"type": "number"}, "memoryMb": {"type": "integer"}},
        }
        _, schema = _map(widget_spec)

        labels = schema.field("labels")
        assert labels.kind is FieldKind.LIST
        assert labels.element is FieldKind.STRING

        limits = schema.field("limits")
        assert limits.kind is FieldKind.OBJECT
        assert [(f.name, f.required) for f in limits.fields] == [("cpu", True), ("memory_mb", False)]

    def test_all_of_merged(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"] = {
            "allOf": [
                {"type": "object", "required": ["name"], "properties": {"name": {"type": "string"}}},
                {"type": "object", "properties": {"size": {"type": "integer"}}},
            ]
        }
        _, schema = _map(widget_spec)
        assert schema.field("name").required
        assert schema.field("size") is not None


class TestUnsupported:
    """Tests for properties the mapper cannot represent."""

    def test_optional_untyped_property_dropped(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["blob"] = {"description": "anything"}
        mapper, schema = _map(widget_spec)

        assert schema.field("blob") is None
        assert [(w.resource, w.field) for w in mapper.warnings] == [("widget", "blob")]

    def test_required_untyped_property_rejects_resource(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["blob"] = {}
        widget_spec["components"]["schemas"]["WidgetInput"]["required"].append("blob")
        with pytest.raises(IncompleteResourceSchemaError) as exc_info:
            _map(widget_spec)
        assert exc_info.value.details["field"] == "blob"

    def test_array_without_items_dropped(self, widget_spec):
        widget_spec["components"]["schemas"]["WidgetInput"]["properties"]["tags"] = {"type": "array"}
        mapper, schema = _map(widget_spec)
        assert schema.field("tags") is None
        assert mapper.warnings[0].reason == "array without items schema"

    def test_circular_property_dropped(self, widget_spec):
        widget_spec["components"]["schemas"]["Widget"]["properties"]["parent"] = {
            "$ref": "#/components/schemas/Widget"
        }
        mapper, schema = _map(widget_spec)
        assert schema.field("parent") is None
        assert mapper.warnings[0].field == "parent"

    def test_no_schemas_at_all(self, widget_spec):
        widget_spec["paths"] = {
            "/things": {"post": {"responses": {"204": {"description": "ok"}}}},
            "/things/{id}": {"get": {"responses": {"204": {"description": "ok"}}}},
        }
        with pytest.raises(IncompleteResourceSchemaError):
            _map(widget_spec)


class TestVariants:
    """Tests for oneOf/anyOf mapping."""

    def test_discriminator_with_mapping(self, widget_spec):
        spec = _pets_spec(
            widget_spec,
            {
                "discriminator": {
                    "propertyName": "kind",
                    "mapping": {"dog": "#/components/schemas/Dog", "cat": "#/components/schemas/Cat"},
                }
            },
        )
        _, schema = _map(spec)
        pet = schema.field("pet")
        assert pet.kind is FieldKind.VARIANT
        assert pet.variants.discriminator == "kind"
        assert pet.variants.names == ["cat", "dog"]
        assert [f.name for f in pet.variants.select("cat").fields] == ["kind", "lives"]

    def test_variant_named_by_schema_name(self, widget_spec):
        spec = _pets_spec(widget_spec, {"discriminator": {"propertyName": "kind"}})
        _, schema = _map(spec)
        assert schema.field("pet").variants.names == ["Cat", "Dog"]

    def test_variant_named_by_single_enum(self, widget_spec):
        schemas = widget_spec["components"]["schemas"]
        spec = _pets_spec(widget_spec, {"x-terraform-discriminator": "kind"})
        schemas["Dog"]["properties"]["kind"]["enum"] = ["canine"]
        _, schema = _map(spec)
        assert "canine" in schema.field("pet").variants.names

    def test_missing_discriminator_drops_optional_field(self, widget_spec):
        spec = _pets_spec(widget_spec, {})
        mapper, schema = _map(spec)
        assert schema.field("pet") is None
        assert "discriminator" in mapper.warnings[0].reason

    def test_missing_discriminator_rejects_required_field(self, widget_spec):
        spec = _pets_spec(widget_spec, {})
        spec["components"]["schemas"]["WidgetInput"]["required"].append("pet")
        with pytest.raises(IncompleteResourceSchemaError):
            _map(spec)
