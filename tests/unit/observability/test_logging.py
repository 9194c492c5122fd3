"""
scaffold-planner unit tests for observability logging.

Covers JSON line shape, correlation fields, redaction, config-driven setup,
multi-threaded emission, and shutdown behavior.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from scaffold_planner.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    logging.getLogger("scaffold_planner").setLevel(logging.NOTSET)


def _logger_name() -> str:
    return f"scaffold_planner.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


@pytest.mark.unit
def test_records_are_json_lines_with_correlation_and_redaction(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-1", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    with correlation_scope(task_id="task-2", phase="plan"):
        handle.logger.info(
            "connecting with password=hunter2",
            extra={"api_key": "abc123", "note": "token=xyz", "order": ("task-1", "task-2")},
        )
    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "session-1" / "planner.jsonl"
    (event,) = _read_json_lines(handle.log_path)
    assert event["level"] == "INFO"
    assert event["logger"] == handle.logger.name
    assert event["message"] == "connecting with password=***REDACTED***"
    assert event["session_id"] == "session-1"
    assert event["task_id"] == "task-2"
    assert event["phase"] == "plan"
    assert event["fields"] == {
        "api_key": "***REDACTED***",
        "note": "token=***REDACTED***",
        "order": ["task-1", "task-2"],
    }
    assert str(event["timestamp"]).endswith("Z")


@pytest.mark.unit
def test_explicit_extra_wins_and_none_unbinds(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-2", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    with correlation_scope(task_id="task-1", phase="research"):
        handle.logger.warning("override", extra={"task_id": "task-9"})
        with correlation_scope(task_id=None):
            assert get_correlation_context() == {"phase": "research"}
            handle.logger.warning("unbound")
    assert get_correlation_context() == {}
    shutdown_logging(handle)

    first, second = _read_json_lines(handle.log_path)
    assert first["task_id"] == "task-9"
    assert "fields" not in first
    assert "task_id" not in second
    assert second["phase"] == "research"


@pytest.mark.unit
def test_exceptions_are_rendered_and_redacted(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-3", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    try:
        raise RuntimeError("secret=leaked")
    except RuntimeError:
        handle.logger.exception("research failed")
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["level"] == "ERROR"
    assert "RuntimeError: secret=***REDACTED***" in str(event["exception"])
    assert "leaked" not in str(event["exception"])


@pytest.mark.unit
def test_setup_logging_reads_observability_config(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "WARNING", "log_dir": str(tmp_path), "redact_secrets": False},
        session_id="session-4",
    )
    child = logging.getLogger("scaffold_planner.research.runner")

    child.info("filtered out")
    child.warning("kept", extra={"token": "visible"})
    assert get_active_logging_handle() is handle
    shutdown_logging()

    assert get_active_logging_handle() is None
    assert handle.is_shutdown
    assert logging.getLogger("scaffold_planner").propagate is True
    (event,) = _read_json_lines(tmp_path / "session-4" / "planner.jsonl")
    assert event["message"] == "kept"
    assert event["fields"] == {"token": "visible"}


@pytest.mark.unit
def test_concurrent_threads_produce_complete_lines(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-5", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    def worker(index: int) -> None:
        with correlation_scope(task_id=f"task-{index}"):
            for sequence in range(50):
                handle.logger.info("tick", extra={"sequence": sequence})

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(1, 5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    shutdown_logging(handle)

    events = _read_json_lines(handle.log_path)
    assert len(events) == 200
    assert handle.dropped_records == 0
    for index in range(1, 5):
        assert sum(1 for event in events if event["task_id"] == f"task-{index}") == 50


@pytest.mark.unit
def test_setup_rejects_bad_settings(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="path separators"):
        setup_structured_logging(
            LoggingConfig(session_id="s", base_log_dir=tmp_path, log_filename="a/b.jsonl")
        )
    with pytest.raises(ValueError, match="queue_size"):
        setup_structured_logging(LoggingConfig(session_id="s", base_log_dir=tmp_path, queue_size=0))
    with pytest.raises(ValueError, match="session_id must not be empty"):
        setup_structured_logging(LoggingConfig(session_id="  ", base_log_dir=tmp_path))
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(
            LoggingConfig(
                session_id="s",
                base_log_dir=tmp_path,
                logger_name=_logger_name(),
                level="LOUD",
            )
        )


@pytest.mark.unit
def test_default_redactor_masks_nested_keys_and_bearer_tokens() -> None:
    payload = {
        "auth": {"client_secret": "x", "user": "ada"},
        "headers": ["Bearer abc.def-123", "plain"],
    }

    assert default_log_redactor(payload) == {
        "auth": {"client_secret": "***REDACTED***", "user": "ada"},
        "headers": ["Bearer ***REDACTED***", "plain"],
    }
