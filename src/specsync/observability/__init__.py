"""Run-scoped structured logging."""

from specsync.observability.logging import (
    RunLog,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    redact,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "RunLog",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact",
    "setup_logging",
    "shutdown_logging",
]
