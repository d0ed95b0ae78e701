"""Structured logging setup using structlog.

Connector calls bind `connector=<id>` through contextvars, so every event
emitted while a connector runs (limiter, token cache, HTTP errors) carries
the id without each call site passing it.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

# Event keys whose values must never reach a log line
_REDACTED_KEYS = frozenset({
    "access_token", "refresh_token", "token", "password", "client_secret",
    "authorization", "secret", "bearer",
})


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Mask credential-bearing values in an event."""
    for key in event_dict:
        if key.lower() in _REDACTED_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _renderer(fmt: str):
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    if fmt == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    raise ValueError(f"unknown log format: {fmt!r}")


def setup_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog for console or JSON output with ISO timestamps."""
    renderer = _renderer(fmt)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def connector_context(connector_id: str) -> Iterator[None]:
    """Bind the connector id to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(connector=connector_id):
        yield


def get_logger(name: str) -> Any:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)
