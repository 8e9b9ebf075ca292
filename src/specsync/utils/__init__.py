"""Utility exports for filesystem, hashing, and concurrency helpers."""

from specsync.utils.concurrency import (
    CancellationToken,
    WorkerPool,
    call_maybe_async,
    run_with_timeout,
)
from specsync.utils.fs import LockTimeoutError, atomic_write, exclusive_lock, is_within
from specsync.utils.hashing import (
    canonical_json,
    sha256_bytes,
    sha256_json,
    sha256_text,
    short_digest,
)

__all__ = [
    "CancellationToken",
    "LockTimeoutError",
    "WorkerPool",
    "atomic_write",
    "call_maybe_async",
    "canonical_json",
    "exclusive_lock",
    "is_within",
    "run_with_timeout",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
    "short_digest",
]
