"""Manage resources of any HTTP service described by an OpenAPI document."""

from openapi_provider.engine import ResourceEngine
from openapi_provider.reconciler import ReconcileResult

__version__ = "0.1.0"

__all__ = ["ReconcileResult", "ResourceEngine", "__version__"]
