"""Specification loading: parse, resolve references, normalize."""

from openapi_provider.specs.loader import load_spec
from openapi_provider.specs.models import SpecDocument, SpecFamily

__all__ = ["SpecDocument", "SpecFamily", "load_spec"]
