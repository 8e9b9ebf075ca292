"""Stable constants shared across the synchronization pipeline."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
DOCUMENT_SCHEMA_VERSION: Final[int] = 1

# Domain names, in default synchronization order.
DOMAIN_DEPENDENCIES: Final[str] = "dependencies"
DOMAIN_DATABASE_SCHEMA: Final[str] = "database_schema"
DOMAIN_API_SURFACE: Final[str] = "api_surface"
DOMAIN_ENVIRONMENT: Final[str] = "environment"
DOMAIN_FEATURES: Final[str] = "features"
DOMAIN_CRITICAL_PATHS: Final[str] = "critical_paths"
DOMAIN_ISSUES: Final[str] = "issues"
DOMAIN_LESSONS: Final[str] = "lessons"
DOMAIN_DESIGN_TOKENS: Final[str] = "design_tokens"

ALL_DOMAINS: Final[tuple[str, ...]] = (
    DOMAIN_DEPENDENCIES,
    DOMAIN_DATABASE_SCHEMA,
    DOMAIN_API_SURFACE,
    DOMAIN_ENVIRONMENT,
    DOMAIN_FEATURES,
    DOMAIN_CRITICAL_PATHS,
    DOMAIN_ISSUES,
    DOMAIN_LESSONS,
    DOMAIN_DESIGN_TOKENS,
)

# Default runtime paths (relative to the project root unless overridden by config).
DOCUMENTS_DIR: Final[PurePosixPath] = PurePosixPath(".specsync/documents")
FACTS_DIR: Final[PurePosixPath] = PurePosixPath(".specsync/facts")
LOG_DIR: Final[PurePosixPath] = PurePosixPath(".specsync/logs")

DEFAULT_CONFLICT_RETRY_LIMIT: Final[int] = 3
DEFAULT_EXTRACTOR_TIMEOUT_SECONDS: Final[float] = 120.0

__all__ = [
    "ALL_DOMAINS",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFLICT_RETRY_LIMIT",
    "DEFAULT_EXTRACTOR_TIMEOUT_SECONDS",
    "DOCUMENTS_DIR",
    "DOCUMENT_SCHEMA_VERSION",
    "DOMAIN_API_SURFACE",
    "DOMAIN_CRITICAL_PATHS",
    "DOMAIN_DATABASE_SCHEMA",
    "DOMAIN_DEPENDENCIES",
    "DOMAIN_DESIGN_TOKENS",
    "DOMAIN_ENVIRONMENT",
    "DOMAIN_FEATURES",
    "DOMAIN_ISSUES",
    "DOMAIN_LESSONS",
    "FACTS_DIR",
    "LOG_DIR",
]
