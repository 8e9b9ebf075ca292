"""
specsync: run-scoped structured logging

File: src/specsync/observability/logging.py

Purpose
- Write one JSON object per line to ``<log_dir>/<run_id>/specsync.jsonl`` for
  every sync run, fed through a queue so pipeline threads never wait on disk.
- Route ``structlog`` decision events into the same sink.

Notes
- ``run_id``, ``domain``, ``attempt`` and ``extraction_run`` are bound with
  :func:`correlation_scope` and written as top-level keys; other event keyword
  arguments land under ``fields``.
- Secret-looking keys and token-shaped strings are masked unless
  ``observability.redact_secrets`` is false.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import queue
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

from specsync.domain.models import JSONValue, to_json_value

LOG_FILENAME: Final[str] = "specsync.jsonl"
LOGGER_NAME: Final[str] = "specsync"
REDACTED: Final[str] = "***REDACTED***"

CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "domain", "attempt", "extraction_run")

_SECRET_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)
_SECRET_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_TOKEN_SHAPES: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bsk-[A-Za-z0-9_-]{12,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{30,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bxox[abprs]-[A-Za-z0-9-]{10,}\b"),
)

# Attributes every LogRecord carries; anything else arrived as an event field.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "correlation"}

_CORRELATION: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "specsync_correlation", default={}
)
_ACTIVE: RunLog | None = None


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for every log record emitted in scope.

    ``None`` unbinds a key; nested scopes restore the outer binding on exit.
    """

    bound = dict(_CORRELATION.get())
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation field {key!r} must not be blank")
        else:
            bound[key] = value.strip()
    token = _CORRELATION.set(bound)
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


def redact(value: JSONValue, *, key: str | None = None) -> JSONValue:
    """Mask secret-looking keys and token-shaped substrings, recursively."""

    if key is not None and any(term in key.lower() for term in _SECRET_KEY_TERMS):
        return REDACTED
    if isinstance(value, str):
        text = _SECRET_ASSIGNMENT.sub(lambda match: f"{match[1]}{match[2]}{REDACTED}", value)
        text = _BEARER.sub(f"Bearer {REDACTED}", text)
        for pattern in _TOKEN_SHAPES:
            text = pattern.sub(REDACTED, text)
        return text
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, dict):
        return {name: redact(item, key=name) for name, item in value.items()}
    return value


class _CorrelationFilter(logging.Filter):
    """Stamp the emitting context's correlation onto the record before it is queued."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation = get_correlation_context()
        return True


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redact_secrets: bool) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": self._run_id,
        }
        correlation = getattr(record, "correlation", None)
        if isinstance(correlation, Mapping):
            event.update(correlation)

        fields: dict[str, JSONValue] = {}
        for name, value in vars(record).items():
            if name in _RECORD_ATTRIBUTES or name.startswith("_"):
                continue
            if name in CORRELATION_KEYS:
                if isinstance(value, str) and value.strip():
                    event[name] = value.strip()
                continue
            fields[name] = to_json_value(value)
        if fields:
            event["fields"] = fields

        if self._redact_secrets:
            event = {name: redact(value, key=name) for name, value in event.items()}
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(slots=True)
class RunLog:
    """The live sink of one run; :func:`shutdown_logging` drains and closes it."""

    run_id: str
    path: Path
    logger: logging.Logger
    _queue_handler: logging.Handler = field(repr=False)
    _listener: logging.handlers.QueueListener = field(repr=False)
    _sinks: tuple[logging.Handler, ...] = field(repr=False)

    def close(self) -> None:
        self._listener.stop()
        self.logger.removeHandler(self._queue_handler)
        self._queue_handler.close()
        for sink in self._sinks:
            sink.close()


def configure_structlog() -> None:
    """Send ``structlog`` events through stdlib logging; keyword args become record extras."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = LOGGER_NAME,
) -> RunLog:
    """Open the JSON-lines log of ``run_id`` and make it the active sink.

    ``observability_config`` is the ``[observability]`` section; ``log_dir``
    overrides its ``log_dir``. A previously active run log is closed first.
    """

    if not run_id.strip():
        raise ValueError("run_id must not be blank")
    cfg = dict(observability_config or {})
    level = logging.getLevelName(str(cfg.get("log_level", "INFO")).upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported log level {cfg.get('log_level')!r}")

    run_dir = Path(log_dir if log_dir is not None else str(cfg.get("log_dir", "logs"))) / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / LOG_FILENAME
    formatter = _JsonLinesFormatter(
        run_id=run_id, redact_secrets=bool(cfg.get("redact_secrets", True))
    )

    sinks: list[logging.Handler] = [logging.FileHandler(path, encoding="utf-8")]
    if cfg.get("log_to_stdout", False):
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    shutdown_logging()
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    records: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    queue_handler = logging.handlers.QueueHandler(records)
    queue_handler.addFilter(_CorrelationFilter())
    logger.addHandler(queue_handler)
    listener = logging.handlers.QueueListener(records, *sinks)
    listener.start()

    global _ACTIVE
    _ACTIVE = RunLog(
        run_id=run_id,
        path=path,
        logger=logger,
        _queue_handler=queue_handler,
        _listener=listener,
        _sinks=tuple(sinks),
    )
    configure_structlog()
    return _ACTIVE


def shutdown_logging() -> None:
    """Flush and close the active run log, if any."""

    global _ACTIVE
    active, _ACTIVE = _ACTIVE, None
    if active is not None:
        active.close()


__all__ = [
    "CORRELATION_KEYS",
    "LOG_FILENAME",
    "REDACTED",
    "RunLog",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact",
    "setup_logging",
    "shutdown_logging",
]
