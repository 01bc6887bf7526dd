"""Root test configuration."""

import copy
import logging

import pytest
import structlog
from openapi_provider.catalog import build_catalog
from openapi_provider.config import ProviderConfig
from openapi_provider.engine import ResourceEngine
from openapi_provider.executor import OperationExecutor
from openapi_provider.specs import load_spec

BASE_URL = "https://api.example.com"


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _json(schema):
    return {"content": {"application/json": {"schema": schema}}}


WIDGET_SPEC = {
    "openapi": "3.0.3",
    "info": {"title": "Widget API", "version": "1.0.0"},
    "servers": [{"url": BASE_URL}],
    "security": [{"apiKey": []}],
    "components": {
        "securitySchemes": {
            "apiKey": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
        },
        "schemas": {
            "WidgetInput": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string", "description": "Display name"},
                    "size": {"type": "integer"},
                    "color": {"type": "string", "x-terraform-immutable": True},
                    "secret": {"type": "string", "x-terraform-sensitive": True},
                },
            },
            "Widget": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "readOnly": True},
                    "name": {"type": "string"},
                    "size": {"type": "integer"},
                    "color": {"type": "string"},
                    "status": {"type": "string"},
                },
            },
        },
    },
    "paths": {
        "/widgets": {
            "post": {
                "summary": "A widget",
                "requestBody": _json({"$ref": "#/components/schemas/WidgetInput"}),
                "responses": {"201": _json({"$ref": "#/components/schemas/Widget"})},
            },
            "get": {
                "responses": {
                    "200": _json({"type": "array", "items": {"$ref": "#/components/schemas/Widget"}}),
                },
            },
        },
        "/widgets/{id}": {
            "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}],
            "get": {"responses": {"200": _json({"$ref": "#/components/schemas/Widget"})}},
            "put": {
                "requestBody": _json({"$ref": "#/components/schemas/WidgetInput"}),
                "responses": {"200": _json({"$ref": "#/components/schemas/Widget"})},
            },
            "delete": {"responses": {"204": {"description": "Deleted"}}},
        },
    },
}


@pytest.fixture
def widget_spec():
    """A fresh, mutable copy of the widget API document."""
    return copy.deepcopy(WIDGET_SPEC)


@pytest.fixture
def async_widget_spec(widget_spec):
    """Widget API whose create and delete complete asynchronously."""
    post = widget_spec["paths"]["/widgets"]["post"]
    post["x-terraform-resource-poll-enabled"] = True
    post["responses"] = {"202": post["responses"]["201"]}
    widget_spec["paths"]["/widgets/{id}"]["delete"]["x-terraform-resource-poll-enabled"] = True
    return widget_spec


@pytest.fixture
def make_catalog():
    def _make(spec):
        return build_catalog(load_spec(spec))

    return _make


@pytest.fixture
def make_executor():
    def _make(**kwargs):
        kwargs.setdefault("backoff_factor", 0)
        kwargs.setdefault("poll_interval", 0)
        return OperationExecutor(**kwargs)

    return _make


@pytest.fixture
def make_engine(make_catalog, make_executor):
    engines = []

    def _make(spec, config=None, **executor_kwargs):
        engine = ResourceEngine(
            make_catalog(spec),
            config or ProviderConfig(credentials={"apiKey": "test-key"}),
            executor=make_executor(**executor_kwargs),
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()
