"""
Unified error taxonomy for the OpenAPI provider engine.

Errors fall in two families:

- Load-time errors (``LoadError``) are fatal to initialization. The engine
  refuses to come up with a partially valid catalog.
- Call-time errors (``CallError``) are raised per host request and never
  leave the engine in a broken state. They carry structured context
  (resource, operation, HTTP status) so the host can render a precise
  message or decide to retry at a higher level.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    """Exit codes a host process may use to classify errors."""

    SUCCESS = 0
    WARNING = 1
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class ProviderError(Exception):
    """Base exception for provider engine errors with structured details."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ProviderError):
    """Raised for invalid provider settings or configuration files."""

    exit_code = ExitCode.CONFIG_ERROR


# Load-time


class LoadError(ProviderError):
    """Errors raised while building the resource catalog."""

    exit_code = ExitCode.VALIDATION_ERROR


class MalformedSpecError(LoadError):
    """The specification could not be parsed or is structurally invalid."""


class UnresolvedReferenceError(LoadError):
    """A ``$ref`` points at a target that does not exist."""


class UnsupportedSchemaError(LoadError):
    """A schema property cannot be represented by the engine."""


class IncompleteResourceSchemaError(LoadError):
    """A resource cannot be mapped without losing required information."""


# Call-time


class CallError(ProviderError):
    """Errors raised while serving a single host request."""

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        operation: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        context = {
            key: value
            for key, value in (("resource", resource), ("operation", operation), ("status", status))
            if value is not None
        }
        context.update(details or {})
        super().__init__(message, context)
        self.resource = resource
        self.operation = operation
        self.status = status


class UnknownResourceError(CallError):
    """The requested resource or operation is not in the catalog."""


class MissingIdentifierError(CallError):
    """A path placeholder has no corresponding field value."""


class RemoteRejectedError(CallError):
    """The remote service answered with a 4xx status."""


class RemoteServiceError(CallError):
    """The remote service answered with a non-retryable 5xx status."""


class TransportError(CallError):
    """Network failures persisted after every retry attempt."""


class OperationTimeoutError(CallError):
    """An asynchronous operation did not reach a terminal state in time.

    The remote operation may still complete; the host should re-check the
    instance later rather than assume it never started.
    """


class OperationFailedError(CallError):
    """An asynchronous operation reached a failed or unknown status."""


class UnknownVariantError(CallError):
    """A discriminator value matches none of the declared variants."""


def format_error_message(error: ProviderError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg


__all__ = [
    "CallError",
    "ConfigurationError",
    "ExitCode",
    "IncompleteResourceSchemaError",
    "LoadError",
    "MalformedSpecError",
    "MissingIdentifierError",
    "OperationFailedError",
    "OperationTimeoutError",
    "ProviderError",
    "RemoteRejectedError",
    "RemoteServiceError",
    "TransportError",
    "UnknownResourceError",
    "UnknownVariantError",
    "UnresolvedReferenceError",
    "UnsupportedSchemaError",
    "format_error_message",
]
