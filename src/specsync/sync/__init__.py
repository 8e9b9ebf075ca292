"""Extractor contract, per-domain pipelines and the multi-domain runner."""

from specsync.sync.extractors import (
    ExtractionError,
    Extractor,
    FactFileExtractor,
    StaticExtractor,
)
from specsync.sync.pipeline import (
    DomainPipeline,
    DomainRunReport,
    DomainRunStatus,
    SyncReport,
    SyncRunner,
    run_sync,
)

__all__ = [
    "DomainPipeline",
    "DomainRunReport",
    "DomainRunStatus",
    "ExtractionError",
    "Extractor",
    "FactFileExtractor",
    "StaticExtractor",
    "SyncReport",
    "SyncRunner",
    "run_sync",
]
