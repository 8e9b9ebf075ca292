"""
specsync: hashing utilities

File: src/specsync/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes, text and JSON-like payloads.
- Derive stable short digests used for record identities and extraction run ids.

Functional requirements
- Canonical JSON uses sorted keys and compact separators so equal payloads hash equally.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json

__all__ = [
    "canonical_json",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
    "short_digest",
]

_DEFAULT_SHORT_DIGEST_LENGTH = 12


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def canonical_json(value: object) -> str:
    """Return compact, key-sorted JSON; non-JSON leaves are rendered with ``str``."""

    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def sha256_json(value: object) -> str:
    """Return SHA-256 hex digest of the canonical JSON form of ``value``."""

    return sha256_text(canonical_json(value))


def short_digest(*parts: object, length: int = _DEFAULT_SHORT_DIGEST_LENGTH) -> str:
    """Return a lowercase hex prefix of the digest over ``parts``."""

    if length <= 0 or length > 64:
        raise ValueError("length must be within 1..64")
    return sha256_json(list(parts))[:length]
