"""
Provider configuration: credentials, headers and per-resource bindings.

Credential and header values may reference the environment with
``${env:VAR_NAME}``. References are resolved when the value is read, never
when the file is loaded, so the raw file can be saved back unchanged.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any

SECRET_REF_PATTERN = re.compile(r"\$\{(\w+):([^}]+)\}")


def resolve_value(value: str | None) -> str | None:
    """Expand ``${env:NAME}`` references in a configured value."""
    if value is None:
        return None

    def _replace(match: re.Match[str]) -> str:
        backend, key = match.group(1), match.group(2)
        if backend != "env":
            return match.group(0)
        return os.environ.get(key, "")

    return SECRET_REF_PATTERN.sub(_replace, value)


@dataclass
class ResourceOverride:
    """Binds one resource to a base URL, region or API version."""

    name: str
    base_url: str | None = None
    region: str | None = None
    api_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.base_url:
            data["base_url"] = self.base_url
        if self.region:
            data["region"] = self.region
        if self.api_version:
            data["api_version"] = self.api_version
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> ResourceOverride:
        return cls(
            name=name,
            base_url=data.get("base_url"),
            region=data.get("region"),
            api_version=data.get("api_version"),
        )


@dataclass
class ProviderConfig:
    """Complete provider configuration."""

    base_url: str | None = None
    credentials: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    resources: dict[str, ResourceOverride] = field(default_factory=dict)

    def credential(self, scheme: str) -> str | None:
        """Resolved credential for a security scheme name."""
        return resolve_value(self.credentials.get(scheme))

    def header(self, key: str) -> str | None:
        """Resolved value for an ``x-terraform-header`` key."""
        return resolve_value(self.headers.get(key))

    def override_for(self, resource: str) -> ResourceOverride | None:
        return self.resources.get(resource)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.base_url:
            data["base_url"] = self.base_url
        if self.credentials:
            data["credentials"] = dict(self.credentials)
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.resources:
            data["resources"] = {name: o.to_dict() for name, o in self.resources.items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        resources = {}
        for name, override in (data.get("resources") or {}).items():
            resources[name] = ResourceOverride.from_dict(name, override or {})

        return cls(
            base_url=data.get("base_url"),
            credentials={k: str(v) for k, v in (data.get("credentials") or {}).items()},
            headers={k: str(v) for k, v in (data.get("headers") or {}).items()},
            resources=resources,
        )

    @classmethod
    def default(cls) -> ProviderConfig:
        return cls()
