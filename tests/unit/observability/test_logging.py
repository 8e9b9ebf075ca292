"""
specsync: unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction, correlation metadata and
  queue-backed delivery.

What this test file should cover
- JSON line validity under ``<log_dir>/<run_id>/specsync.jsonl``.
- Correlation field propagation.
- Redaction guarantees and the opt-out.
- ``structlog`` events routed into the same sink.
- Queue drain/shutdown behavior.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from specsync.observability.logging import (
    correlation_scope,
    get_correlation_context,
    redact,
    setup_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"specsync.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    run_log = setup_logging(
        {"log_dir": str(tmp_path)}, run_id="run-logging-redaction", logger_name=_logger_name()
    )

    with correlation_scope(domain="environment", attempt="2"):
        run_log.logger.info(
            "payload token=tok-FAKE and api_key=sk-FAKE123456789012345",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )

    shutdown_logging()

    assert run_log.path == tmp_path / "run-logging-redaction" / "specsync.jsonl"
    (first,) = _read_json_lines(run_log.path)
    assert first["run_id"] == "run-logging-redaction"
    assert first["domain"] == "environment"
    assert first["attempt"] == "2"
    assert first["level"] == "INFO"
    assert first["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}

    line = run_log.path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "sk-FAKE" not in line
    assert "hunter2" not in line


def test_correlation_scope_nests_and_resets() -> None:
    assert get_correlation_context() == {}

    with correlation_scope(run_id="run-1", domain="issues"):
        with correlation_scope(domain="lessons", extraction_run="scan-9"):
            assert get_correlation_context() == {
                "run_id": "run-1",
                "domain": "lessons",
                "extraction_run": "scan-9",
            }
        with correlation_scope(domain=None):
            assert get_correlation_context() == {"run_id": "run-1"}
        assert get_correlation_context() == {"run_id": "run-1", "domain": "issues"}

    assert get_correlation_context() == {}


def test_blank_correlation_value_is_rejected() -> None:
    with pytest.raises(ValueError, match="domain"):
        with correlation_scope(domain="  "):
            pass


def test_log_level_comes_from_observability_config(tmp_path: Path) -> None:
    run_log = setup_logging(
        {"log_level": "WARNING", "log_dir": str(tmp_path), "redact_secrets": True},
        run_id="run-level",
        logger_name=_logger_name(),
    )

    run_log.logger.info("dropped below level")
    run_log.logger.warning("kept", extra={"token": "t-123"})
    shutdown_logging()

    (entry,) = _read_json_lines(tmp_path / "run-level" / "specsync.jsonl")
    assert entry["message"] == "kept"
    assert entry["fields"] == {"token": "***REDACTED***"}


def test_unknown_log_level_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="unsupported log level"):
        setup_logging({"log_level": "CHATTY", "log_dir": str(tmp_path)}, run_id="run-x")


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    run_log = setup_logging(
        {"log_dir": str(tmp_path), "redact_secrets": False},
        run_id="run-plain",
        logger_name=_logger_name(),
    )

    run_log.logger.info("visible", extra={"token": "t-123"})
    shutdown_logging()

    (entry,) = _read_json_lines(tmp_path / "run-plain" / "specsync.jsonl")
    assert entry["fields"] == {"token": "t-123"}


def test_explicit_log_dir_overrides_config(tmp_path: Path) -> None:
    run_log = setup_logging(
        {"log_dir": str(tmp_path / "ignored")},
        run_id="run-dir",
        log_dir=tmp_path / "chosen",
        logger_name=_logger_name(),
    )

    run_log.logger.info("hello")
    shutdown_logging()

    assert (tmp_path / "chosen" / "run-dir" / "specsync.jsonl").exists()
    assert not (tmp_path / "ignored").exists()


def test_structlog_events_land_in_the_run_log(tmp_path: Path) -> None:
    logger_name = _logger_name()
    setup_logging({"log_dir": str(tmp_path)}, run_id="run-structlog", logger_name=logger_name)
    events = structlog.get_logger(f"{logger_name}.sync.pipeline")

    with correlation_scope(extraction_run="scan-1"):
        events.info("domain_synced", domain="issues", written=True, api_key="sk-live")
    events.debug("not_emitted")
    shutdown_logging()

    (entry,) = _read_json_lines(tmp_path / "run-structlog" / "specsync.jsonl")
    assert entry["message"] == "domain_synced"
    assert entry["logger"] == f"{logger_name}.sync.pipeline"
    assert entry["run_id"] == "run-structlog"
    assert entry["domain"] == "issues"
    assert entry["extraction_run"] == "scan-1"
    assert entry["fields"] == {"written": True, "api_key": "***REDACTED***"}


def test_redact_handles_nested_values() -> None:
    redacted = redact(
        {
            "headers": {"Authorization": "Bearer abc.def"},
            "notes": ["password=hunter2", "plain", "Bearer abc.def"],
            "count": 3,
        }
    )

    assert redacted == {
        "headers": {"Authorization": "***REDACTED***"},
        "notes": ["password=***REDACTED***", "plain", "Bearer ***REDACTED***"],
        "count": 3,
    }


def test_invalid_run_id_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="run_id"):
        setup_logging({"log_dir": str(tmp_path)}, run_id="  ")


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    run_log = setup_logging(
        {"log_dir": str(tmp_path)}, run_id="run-threaded", logger_name=_logger_name()
    )

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        with correlation_scope(domain=f"domain-{thread_idx}"):
            for i in range(per_thread):
                run_log.logger.info(
                    f"thread={thread_idx} index={i} token=tok-secret-{thread_idx}-{i}",
                    extra={"thread_idx": thread_idx},
                )

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging()

    parsed = _read_json_lines(run_log.path)
    assert len(parsed) == total_threads * per_thread
    for entry in parsed:
        fields = entry["fields"]
        assert isinstance(fields, dict)
        assert entry["domain"] == f"domain-{fields['thread_idx']}"
        assert "tok-secret" not in str(entry["message"])


def test_queue_backed_handler_and_shutdown_flushes(tmp_path: Path) -> None:
    run_log = setup_logging(
        {"log_dir": str(tmp_path)}, run_id="run-flush", logger_name=_logger_name()
    )

    queue_handlers = [
        h for h in run_log.logger.handlers if isinstance(h, logging.handlers.QueueHandler)
    ]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        run_log.logger.info("message %s", i)

    shutdown_logging()
    shutdown_logging()

    lines = run_log.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == expected
    assert not run_log.logger.handlers


def test_setting_up_a_new_run_closes_the_previous_one(tmp_path: Path) -> None:
    logger_name = _logger_name()
    first = setup_logging({"log_dir": str(tmp_path)}, run_id="run-a", logger_name=logger_name)
    first.logger.info("to a")
    second = setup_logging({"log_dir": str(tmp_path)}, run_id="run-b", logger_name=logger_name)
    second.logger.info("to b")
    shutdown_logging()

    assert [e["message"] for e in _read_json_lines(first.path)] == ["to a"]
    assert [e["message"] for e in _read_json_lines(second.path)] == ["to b"]
    assert len(second.logger.handlers) == 0
