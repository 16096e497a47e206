"""Structured logging for curlspec.

structlog renders every event (as JSON or for the console) and hands the
rendered line to a single stdlib handler: stderr by default, or a
size-rotated file when ``LoggingConfig.file`` is set. Events emitted during
an extraction run carry that run's ``extraction_id``.

Example usage:
    >>> from curlspec.config import LoggingConfig
    >>> from curlspec.logging import setup_logging, get_logger, bind_extraction_context
    >>>
    >>> setup_logging(LoggingConfig(format="json"))
    >>> logger = get_logger("curlspec.cli")
    >>> bind_extraction_context(extraction_id="3f2a...", document="api.md")
    >>> logger.info("extraction_started", characters=1204)
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
import uuid
from typing import Any

import structlog

from curlspec.config import LoggingConfig

_extraction_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "extraction_id", default=None
)


def add_extraction_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor stamping events with the current extraction ID."""
    extraction_id = _extraction_id.get()
    if extraction_id is not None:
        event_dict["extraction_id"] = extraction_id
    return event_dict


def new_extraction_id() -> str:
    """Create a fresh extraction ID and make it current.

    Returns:
        The new extraction ID
    """
    extraction_id = uuid.uuid4().hex
    _extraction_id.set(extraction_id)
    return extraction_id


def set_extraction_id(extraction_id: str | None) -> None:
    """Set extraction ID for current context.

    Args:
        extraction_id: Extraction ID string or None to clear
    """
    _extraction_id.set(extraction_id)


def get_extraction_id() -> str | None:
    """Get current extraction ID from context."""
    return _extraction_id.get()


def bind_extraction_context(extraction_id: str, document: str | None = None) -> None:
    """Bind extraction context to all subsequent logs in this context.

    Args:
        extraction_id: Extraction identifier to bind
        document: Optional document name (e.g. source file path)
    """
    values: dict[str, Any] = {"extraction_id": extraction_id}
    if document is not None:
        values["document"] = document
    structlog.contextvars.bind_contextvars(**values)


def clear_extraction_context() -> None:
    """Remove the extraction context bound by :func:`bind_extraction_context`."""
    structlog.contextvars.unbind_contextvars("extraction_id", "document")
    _extraction_id.set(None)


def _build_handler(config: LoggingConfig) -> logging.Handler:
    """Create the single stdlib handler that receives rendered events."""
    if config.file is None:
        # stdout is reserved for JSON command output
        return logging.StreamHandler(sys.stderr)

    config.file.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        filename=config.file,
        maxBytes=config.rotation_size_mb * 1024 * 1024,
        backupCount=config.retention_count,
        encoding="utf-8",
    )


def setup_logging(config: LoggingConfig) -> None:
    """Install the curlspec logging pipeline, replacing any previous one.

    Args:
        config: Logging section of CurlspecConfig
    """
    level = logging.getLevelName(config.level)
    handler = _build_handler(config)
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if config.format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_extraction_id,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
