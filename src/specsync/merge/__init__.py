"""Incremental merge of accepted records into persisted documents."""

from specsync.merge.engine import (
    MergeEngine,
    MergeResult,
    curator_set,
    curator_touched,
    status_for,
)

__all__ = ["MergeEngine", "MergeResult", "curator_set", "curator_touched", "status_for"]
