"""Core modules - centralized error definitions."""

from openapi_provider.core.errors import (
    CallError,
    ConfigurationError,
    ExitCode,
    IncompleteResourceSchemaError,
    LoadError,
    MalformedSpecError,
    MissingIdentifierError,
    OperationFailedError,
    OperationTimeoutError,
    ProviderError,
    RemoteRejectedError,
    RemoteServiceError,
    TransportError,
    UnknownResourceError,
    UnknownVariantError,
    UnresolvedReferenceError,
    UnsupportedSchemaError,
    format_error_message,
)

__all__ = [
    # Base
    "ProviderError",
    "ConfigurationError",
    "ExitCode",
    "format_error_message",
    # Load-time
    "LoadError",
    "MalformedSpecError",
    "UnresolvedReferenceError",
    "UnsupportedSchemaError",
    "IncompleteResourceSchemaError",
    # Call-time
    "CallError",
    "UnknownResourceError",
    "MissingIdentifierError",
    "RemoteRejectedError",
    "RemoteServiceError",
    "TransportError",
    "OperationTimeoutError",
    "OperationFailedError",
    "UnknownVariantError",
]
