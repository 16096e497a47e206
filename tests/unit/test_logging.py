"""Unit tests for logging configuration."""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from io import StringIO
from pathlib import Path
from typing import Any

import pytest
import structlog

from curlspec.config import LoggingConfig
from curlspec.logging import (
    add_extraction_id,
    bind_extraction_context,
    clear_extraction_context,
    get_extraction_id,
    get_logger,
    new_extraction_id,
    set_extraction_id,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_logging() -> None:
    """Reset logging configuration before each test."""
    root = logging.getLogger()
    root.handlers.clear()

    structlog.reset_defaults()

    structlog.contextvars.clear_contextvars()
    set_extraction_id(None)


@pytest.fixture
def capture_stream() -> StringIO:
    """Create a StringIO stream for capturing log output."""
    return StringIO()


@pytest.fixture
def json_config() -> LoggingConfig:
    """Create a LoggingConfig for JSON output."""
    return LoggingConfig(level="INFO", format="json", file=None)


def _capture(config: LoggingConfig, stream: StringIO) -> None:
    setup_logging(config)
    logging.getLogger().handlers[0].stream = stream


def test_json_output_format(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that JSON format produces valid JSON output."""
    _capture(json_config, capture_stream)

    logger = get_logger("curlspec.test")
    logger.info("test_event", key1="value1", key2=42)

    log_entry = json.loads(capture_stream.getvalue().strip())
    assert log_entry["event"] == "test_event"
    assert log_entry["key1"] == "value1"
    assert log_entry["key2"] == 42
    assert log_entry["level"] == "info"
    assert log_entry["logger"] == "curlspec.test"
    assert "timestamp" in log_entry


def test_console_output_format(capture_stream: StringIO) -> None:
    """Test that console format produces human-readable output."""
    _capture(LoggingConfig(level="DEBUG", format="console"), capture_stream)

    get_logger("curlspec.test").debug("test_event", status="active")

    output = capture_stream.getvalue()
    assert "test_event" in output
    assert "active" in output
    with pytest.raises(json.JSONDecodeError):
        json.loads(output.strip())


def test_default_handler_writes_to_stderr(json_config: LoggingConfig) -> None:
    """Test that console logging leaves stdout free for command output."""
    setup_logging(json_config)

    handler = logging.getLogger().handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert handler.stream is sys.stderr


def test_log_level_filtering(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that DEBUG is filtered at INFO level."""
    _capture(json_config, capture_stream)
    logger = get_logger("curlspec.test")

    logger.debug("debug_message")
    assert capture_stream.getvalue() == ""

    logger.warning("warning_message")
    assert "warning_message" in capture_stream.getvalue()


def test_extraction_id_processor() -> None:
    """Test the extraction ID processor directly."""
    event_dict: dict[str, Any] = {"event": "test"}

    assert "extraction_id" not in add_extraction_id(None, "", event_dict.copy())

    set_extraction_id("ex-1")
    assert add_extraction_id(None, "", event_dict.copy())["extraction_id"] == "ex-1"


def test_new_extraction_id_is_current() -> None:
    """Test that a new extraction ID becomes the current one."""
    first = new_extraction_id()
    assert get_extraction_id() == first

    second = new_extraction_id()
    assert second != first
    assert get_extraction_id() == second


def test_extraction_context_binding(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that bound extraction context appears in every event until cleared."""
    _capture(json_config, capture_stream)
    logger = get_logger("curlspec.test")

    bind_extraction_context("ex-42", document="api.md")
    logger.info("inside")
    entry = json.loads(capture_stream.getvalue().strip())
    assert entry["extraction_id"] == "ex-42"
    assert entry["document"] == "api.md"

    clear_extraction_context()
    capture_stream.truncate(0)
    capture_stream.seek(0)
    logger.info("outside")
    entry = json.loads(capture_stream.getvalue().strip())
    assert "extraction_id" not in entry
    assert "document" not in entry
    assert get_extraction_id() is None


def test_file_rotation_handler_configuration(tmp_path: Path) -> None:
    """Test that the rotating file handler is configured and written to."""
    log_file = tmp_path / "logs" / "curlspec.log"
    config = LoggingConfig(
        level="INFO", format="json", file=log_file, rotation_size_mb=5, retention_count=2
    )

    setup_logging(config)

    handler = logging.getLogger().handlers[0]
    assert isinstance(handler, logging.handlers.RotatingFileHandler)
    assert handler.maxBytes == 5 * 1024 * 1024
    assert handler.backupCount == 2

    get_logger("curlspec.test").info("file_event", data="x")
    handler.flush()

    entry = json.loads(log_file.read_text().strip())
    assert entry["event"] == "file_event"
