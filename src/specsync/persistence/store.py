"""
specsync: file-backed document store

File: src/specsync/persistence/store.py

Purpose
- Keep one canonical JSON document per domain under a documents directory.
- Offer compare-and-swap writes keyed on ``document_version``.

Functional requirements
- Reading a domain that was never written yields an empty document at version 0.
- A write only lands if the stored version still equals the expected version;
  the check and the atomic rename happen under the same per-domain lock.
- A failed write leaves the previous document byte-for-byte intact.

Non-functional requirements
- No partial documents: temp file, fsync, ``os.replace``.
- Lock files are short-lived and broken once older than a stale threshold.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

import structlog

from specsync.constants import DOCUMENT_SCHEMA_VERSION
from specsync.domain.models import DocumentFormatError, SpecificationDocument
from specsync.utils.fs import LockTimeoutError, atomic_write, exclusive_lock

_DOCUMENT_SUFFIX: Final[str] = ".json"
_LOCK_SUFFIX: Final[str] = ".lock"


class ConflictError(RuntimeError):
    """Another writer moved the stored document past the expected version."""

    def __init__(self, domain: str, expected_version: int, actual_version: int | None) -> None:
        self.domain = domain
        self.expected_version = expected_version
        self.actual_version = actual_version
        if actual_version is None:
            detail = "document is locked by another writer"
        else:
            detail = f"stored version is {actual_version}"
        super().__init__(f"{domain}: expected version {expected_version}, {detail}")


class DocumentWriteError(RuntimeError):
    """The store could not persist a document; the previous version is intact."""

    def __init__(self, domain: str, message: str) -> None:
        self.domain = domain
        super().__init__(f"{domain}: {message}")


class FileDocumentStore:
    """One ``<domain>.json`` file per domain under ``root``."""

    def __init__(
        self,
        root: Path | str,
        *,
        lock_timeout_seconds: float = 10.0,
        stale_lock_seconds: float = 60.0,
        logger: Any | None = None,
    ) -> None:
        self._root = Path(root)
        self._lock_timeout_seconds = lock_timeout_seconds
        self._stale_lock_seconds = stale_lock_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, domain: str) -> Path:
        if not domain or "/" in domain or "\\" in domain or domain.startswith("."):
            raise ValueError(f"invalid domain name: {domain!r}")
        return self._root / f"{domain}{_DOCUMENT_SUFFIX}"

    def domains(self) -> tuple[str, ...]:
        if not self._root.is_dir():
            return ()
        return tuple(
            sorted(
                path.name[: -len(_DOCUMENT_SUFFIX)]
                for path in self._root.iterdir()
                if path.is_file()
                and path.name.endswith(_DOCUMENT_SUFFIX)
                and not path.name.startswith(".")
            )
        )

    def read(self, domain: str) -> SpecificationDocument:
        path = self.path_for(domain)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SpecificationDocument.empty(domain)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DocumentFormatError(f"{path}: invalid JSON: {exc}") from exc
        document = SpecificationDocument.from_dict(data)
        if document.domain != domain:
            raise DocumentFormatError(
                f"{path}: holds domain {document.domain!r}, expected {domain!r}"
            )
        if document.schema_version > DOCUMENT_SCHEMA_VERSION:
            raise DocumentFormatError(
                f"{path}: unsupported document schema version {document.schema_version}; "
                f"expected at most {DOCUMENT_SCHEMA_VERSION}"
            )
        if isinstance(data, Mapping) and legacy_shape(data):
            self._logger.warning(
                "legacy_record_mapping_converted",
                domain=domain,
                path=str(path),
                records=len(document.records),
            )
        return document

    def current_version(self, domain: str) -> int:
        return self.read(domain).document_version

    def compare_and_swap(self, document: SpecificationDocument, expected_version: int) -> None:
        """Persist ``document`` if the stored version still equals ``expected_version``."""

        domain = document.domain
        if document.document_version != expected_version + 1:
            raise ValueError(
                f"{domain}: new version {document.document_version} must follow "
                f"expected version {expected_version}"
            )

        path = self.path_for(domain)
        payload = document.to_json()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            with exclusive_lock(
                path.with_name(path.name + _LOCK_SUFFIX),
                timeout_seconds=self._lock_timeout_seconds,
                stale_after_seconds=self._stale_lock_seconds,
            ):
                actual = self.current_version(domain)
                if actual != expected_version:
                    raise ConflictError(domain, expected_version, actual)
                atomic_write(path, payload)
        except LockTimeoutError as exc:
            raise ConflictError(domain, expected_version, None) from exc
        except OSError as exc:
            raise DocumentWriteError(domain, f"write failed: {exc}") from exc

        self._logger.info(
            "document_stored",
            domain=domain,
            path=str(path),
            document_version=document.document_version,
            records=len(document.records),
        )


def legacy_shape(data: Mapping[str, object]) -> bool:
    """Whether a parsed document keeps its records in the old identity-keyed mapping."""

    return isinstance(data.get("records"), Mapping)


__all__ = ["ConflictError", "DocumentWriteError", "FileDocumentStore", "legacy_shape"]
