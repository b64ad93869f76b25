"""Property-based tests for logging configuration.

Every log entry emitted during a synchronization run must carry a
timestamp, a severity level, the event name and any bound context, so
that scheduled runs can be monitored from their JSON output.
"""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from feedsync.models.config import LoggingConfig
from feedsync.utils.logging_config import configure_logging, configure_logging_from_config


@contextmanager
def captured_logs(**kwargs) -> Iterator[StringIO]:
    """Configure logging into a buffer, restoring defaults afterwards."""
    buffer = StringIO()
    with patch("sys.stdout", buffer):
        configure_logging(**kwargs)
    try:
        yield buffer
    finally:
        logging.basicConfig(stream=sys.stderr, force=True)
        structlog.reset_defaults()
        structlog.contextvars.clear_contextvars()


def entries(buffer: StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line.strip()]


@given(
    log_level=st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    error_message=st.text(min_size=1, max_size=200),
)
@settings(max_examples=50)
def test_error_log_format_contains_required_fields(log_level: str, error_message: str) -> None:
    """
    For any logged event, the entry contains timestamp, level, event name and message.

    Args:
        log_level: The log level to test (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        error_message: The error message to log
    """
    with captured_logs(log_level="DEBUG", json_logs=True) as buffer:
        log = structlog.stdlib.get_logger("test_logger")
        getattr(log, log_level.lower())("sync_failed", error=error_message)

        [log_entry] = entries(buffer)

    # Timestamps are ISO-8601 in UTC
    datetime.fromisoformat(log_entry["timestamp"].replace("Z", "+00:00"))
    assert log_entry["level"].upper() == log_level
    assert log_entry["event"] == "sync_failed"
    assert log_entry["error"] == error_message


@given(
    model=st.text(min_size=1, max_size=30),
    records_read=st.integers(min_value=0, max_value=10**9),
)
@settings(max_examples=50)
def test_bound_context_is_preserved(model: str, records_read: int) -> None:
    """Context bound through contextvars and passed as keywords both reach the entry."""
    with captured_logs(log_level="INFO", json_logs=True) as buffer:
        structlog.contextvars.bind_contextvars(run_id="nightly")
        log = structlog.stdlib.get_logger("test_logger")
        log.info("sync_completed", model_type=model, records_read=records_read)

        [log_entry] = entries(buffer)

    assert log_entry["run_id"] == "nightly"
    assert log_entry["model_type"] == model
    assert log_entry["records_read"] == records_read


def test_entries_carry_call_site() -> None:
    with captured_logs(log_level="INFO", json_logs=True) as buffer:
        structlog.stdlib.get_logger("test_logger").info("page_processed")

        [log_entry] = entries(buffer)

    assert log_entry["filename"] == "test_logging_properties.py"
    assert log_entry["func_name"] == "test_entries_carry_call_site"
    assert isinstance(log_entry["lineno"], int)


def test_events_below_the_level_are_dropped() -> None:
    with captured_logs(log_level="WARNING", json_logs=True) as buffer:
        log = structlog.stdlib.get_logger("test_logger")
        log.info("watermark_resolved")
        log.warning("sync_cancelled")

        logged = [entry["event"] for entry in entries(buffer)]

    assert logged == ["sync_cancelled"]


def test_console_renderer_for_development() -> None:
    with captured_logs(log_level="INFO", json_logs=False) as buffer:
        structlog.stdlib.get_logger("test_logger").info("sync_started", model="GLAccount")

        output = buffer.getvalue()

    assert "sync_started" in output
    assert "GLAccount" in output


def test_log_file_receives_entries(tmp_path: Path) -> None:
    log_file = tmp_path / "feedsync.log"

    with captured_logs(log_level="INFO", json_logs=True, log_file=str(log_file)):
        structlog.stdlib.get_logger("test_logger").info("sync_completed", records_read=3)

    [line] = log_file.read_text().splitlines()
    assert json.loads(line)["records_read"] == 3


def test_configure_from_logging_section() -> None:
    buffer = StringIO()
    with patch("sys.stdout", buffer):
        configure_logging_from_config(LoggingConfig(log_level="ERROR", json_logs=True))
    try:
        log = structlog.stdlib.get_logger("test_logger")
        log.warning("retrying_after_error")
        log.error("max_retries_reached")

        logged = [entry["event"] for entry in entries(buffer)]
    finally:
        logging.basicConfig(stream=sys.stderr, force=True)
        structlog.reset_defaults()

    assert logged == ["max_retries_reached"]
