"""
Specification loader.

Turns a Swagger 2.0 or OpenAPI 3.x document (JSON or YAML; file path, URL,
inline text or an already parsed mapping) into a reference-resolved,
deep-frozen :class:`SpecDocument`.

Usage:
    from openapi_provider.specs.loader import load_spec

    document = load_spec("petstore.yaml")
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any
from urllib.parse import unquote

import httpx
import structlog
import yaml

from openapi_provider.core.errors import MalformedSpecError, UnresolvedReferenceError
from openapi_provider.specs import extensions as ext
from openapi_provider.specs.models import SpecDocument, SpecFamily

logger = structlog.get_logger()

SERVER_VARIABLE_PATTERN = re.compile(r"\{([^}]+)\}")


def load_spec(source: str | bytes | Path | Mapping[str, Any], *, timeout: float = 30.0) -> SpecDocument:
    """
    Load and normalize a specification.

    Args:
        source: File path, http(s) URL, inline JSON/YAML text or parsed mapping
        timeout: Timeout used when the source is a URL

    Returns:
        SpecDocument instance

    Raises:
        MalformedSpecError: If the source cannot be parsed or is not a supported format
        UnresolvedReferenceError: If a ``$ref`` target is missing or external
    """
    raw = _read_source(source, timeout=timeout)
    family, version = _detect_family(raw)

    if not isinstance(raw.get("paths"), Mapping):
        raise MalformedSpecError("Specification has no 'paths' object")

    resolved = ReferenceResolver(raw).resolve()
    frozen = freeze(resolved)

    base_url, base_path = _base_location(frozen, family)
    security_schemes = (
        frozen.get("securityDefinitions")
        if family is SpecFamily.SWAGGER_2
        else (frozen.get("components") or {}).get("securitySchemes")
    )

    document = SpecDocument(
        family=family,
        version=version,
        title=str((frozen.get("info") or {}).get("title", "")),
        base_url=base_url,
        base_path=base_path,
        paths=frozen["paths"],
        security_schemes=security_schemes or MappingProxyType({}),
        security=frozen.get("security") or (),
        extensions=MappingProxyType({k: v for k, v in frozen.items() if k.startswith("x-")}),
    )
    logger.debug(
        "spec_loaded",
        family=family.value,
        version=version,
        paths=len(document.paths),
        base_url=base_url,
    )
    return document


def _read_source(source: str | bytes | Path | Mapping[str, Any], *, timeout: float) -> dict[str, Any]:
    if isinstance(source, Mapping):
        return dict(source)

    if isinstance(source, Path):
        text = _read_file(source)
    elif isinstance(source, bytes):
        text = source.decode("utf-8", errors="replace")
    elif source.startswith(("http://", "https://")) and "\n" not in source:
        text = _fetch(source, timeout=timeout)
    elif "\n" not in source and len(source) < 4096 and Path(source).is_file():
        text = _read_file(Path(source))
    else:
        text = source

    return _parse(text)


def _read_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise MalformedSpecError(f"Cannot read specification {path}: {e}") from e


def _fetch(url: str, *, timeout: float) -> str:
    try:
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            response = client.get(url)
            response.raise_for_status()
            return response.text
    except httpx.HTTPError as e:
        raise MalformedSpecError(f"Cannot fetch specification from {url}: {e}") from e


def _parse(text: str) -> dict[str, Any]:
    stripped = text.lstrip()
    if not stripped:
        raise MalformedSpecError("Specification is empty")
    try:
        if stripped.startswith("{"):
            data = json.loads(stripped)
        else:
            data = yaml.safe_load(stripped)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise MalformedSpecError(f"Specification is not valid JSON or YAML: {e}") from e

    if not isinstance(data, dict):
        raise MalformedSpecError("Specification root must be an object")
    return data


def _detect_family(raw: Mapping[str, Any]) -> tuple[SpecFamily, str]:
    if str(raw.get("swagger", "")) == "2.0":
        return SpecFamily.SWAGGER_2, "2.0"
    version = str(raw.get("openapi", ""))
    if version.startswith("3."):
        return SpecFamily.OPENAPI_3, version
    raise MalformedSpecError(
        "Unsupported specification version",
        {"swagger": raw.get("swagger"), "openapi": raw.get("openapi")},
    )


def _base_location(doc: Mapping[str, Any], family: SpecFamily) -> tuple[str | None, str]:
    """Absolute base URL (when declared) and the path prefix it ends with."""
    if family is SpecFamily.SWAGGER_2:
        base_path = str(doc.get("basePath") or "").rstrip("/")
        host = doc.get("host")
        if not host:
            return None, base_path
        schemes = list(doc.get("schemes") or ["https"])
        scheme = "https" if "https" in schemes else schemes[0]
        return f"{scheme}://{host}{base_path}", base_path

    servers = doc.get("servers") or ()
    if not servers:
        return None, ""
    server = servers[0]
    variables = server.get("variables") or {}

    def _substitute(match: re.Match[str]) -> str:
        variable = variables.get(match.group(1)) or {}
        return str(variable.get("default", ""))

    url = SERVER_VARIABLE_PATTERN.sub(_substitute, str(server.get("url", ""))).rstrip("/")
    if url.startswith(("http://", "https://")):
        return url, httpx.URL(url).path.rstrip("/")
    return None, url


class ReferenceResolver:
    """Inline every local ``$ref`` of a raw document.

    Each inlined object keeps its origin under ``x-resolved-ref``. A reference
    that points back at an object currently being resolved is replaced by an
    ``x-circular-ref`` marker instead of recursing forever.
    """

    def __init__(self, root: Mapping[str, Any]) -> None:
        self._root = root

    def resolve(self) -> Any:
        return self._resolve(self._root, ())

    def _resolve(self, node: Any, stack: tuple[str, ...]) -> Any:
        if isinstance(node, Mapping):
            if "$ref" in node:
                return self._resolve_ref(node, stack)
            return {str(k): self._resolve(v, stack) for k, v in node.items()}
        if isinstance(node, list):
            return [self._resolve(item, stack) for item in node]
        return node

    def _resolve_ref(self, node: Mapping[str, Any], stack: tuple[str, ...]) -> Any:
        ref = node["$ref"]
        if not isinstance(ref, str) or not ref.startswith("#"):
            raise UnresolvedReferenceError("External references are not supported", {"ref": ref})
        if ref in stack:
            return {ext.CIRCULAR_REF: ref}

        target = self._lookup(ref)
        resolved = self._resolve(target, stack + (ref,))
        if isinstance(resolved, dict):
            siblings = {str(k): self._resolve(v, stack) for k, v in node.items() if k != "$ref"}
            resolved = {**resolved, **siblings, ext.RESOLVED_REF: ref}
        return resolved

    def _lookup(self, ref: str) -> Any:
        node: Any = self._root
        pointer = ref[1:]
        if not pointer:
            return node
        for token in pointer.lstrip("/").split("/"):
            token = unquote(token).replace("~1", "/").replace("~0", "~")
            if isinstance(node, Mapping) and token in node:
                node = node[token]
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                raise UnresolvedReferenceError("Reference target not found", {"ref": ref})
        return node


def freeze(node: Any) -> Any:
    """Deep-freeze a parsed tree into read-only mappings and tuples."""
    if isinstance(node, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in node.items()})
    if isinstance(node, (list, tuple)):
        return tuple(freeze(item) for item in node)
    return node
