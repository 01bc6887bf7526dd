import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

REDACTED = "[redacted]"

# Event keys whose values are never written to logs
SECRET_KEYS = frozenset({"authorization", "x-api-key", "api_key", "token", "password", "credentials", "secret"})


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace credential-bearing event values before rendering."""
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(level: int | str = logging.INFO, *, json_output: bool = True) -> None:
    """Configure structlog/standard logging bridge.

    ``json_output=False`` renders human-readable lines for interactive use.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")


def bind_context(**kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Logger carrying resource/operation fields for one engine call."""

    return structlog.get_logger().bind(**kwargs)
