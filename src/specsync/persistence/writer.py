"""Versioned, validated writes of merged documents."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from specsync.domain.models import (
    QuarantinedRecord,
    SpecificationDocument,
    ValidationWarning,
)
from specsync.domain.schemas import schema_for
from specsync.persistence.store import ConflictError, FileDocumentStore
from specsync.validation.validator import ReferenceIndex, validate_document


class DocumentValidationError(ValueError):
    """The merged document broke an invariant; nothing was written."""

    def __init__(self, domain: str, errors: tuple[QuarantinedRecord, ...]) -> None:
        self.domain = domain
        self.errors = errors
        preview = "; ".join(
            f"{entry.identity}: {entry.issues[0].message}" for entry in errors[:3]
        )
        suffix = "..." if len(errors) > 3 else ""
        super().__init__(f"{domain}: document failed validation ({preview}{suffix})")


@dataclass(frozen=True, slots=True)
class WriteOutcome:
    document: SpecificationDocument
    written: bool
    warnings: tuple[ValidationWarning, ...] = ()

    @property
    def domain(self) -> str:
        return self.document.domain

    @property
    def document_version(self) -> int:
        return self.document.document_version


class Writer:
    """Bump the version, re-validate and compare-and-swap one document."""

    def __init__(
        self,
        store: FileDocumentStore,
        *,
        project_root: Path | str | None = None,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._project_root = project_root
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> FileDocumentStore:
        return self._store

    def write(
        self,
        document: SpecificationDocument,
        prior_version: int,
        *,
        reference_index: ReferenceIndex | None = None,
    ) -> WriteOutcome:
        """Persist ``document`` on top of ``prior_version``.

        Raises :class:`ConflictError` when the store moved on,
        :class:`DocumentValidationError` when the document is invalid and
        :class:`~specsync.persistence.store.DocumentWriteError` on I/O failure.
        """

        domain = document.domain
        stored = self._store.read(domain)
        if stored.document_version != prior_version:
            raise ConflictError(domain, prior_version, stored.document_version)
        if stored.same_content(document):
            self._logger.info(
                "document_unchanged", domain=domain, document_version=stored.document_version
            )
            return WriteOutcome(document=stored, written=False)

        candidate = document.with_version(prior_version + 1)
        check = validate_document(
            candidate,
            schema_for(domain),
            reference_index,
            project_root=self._project_root,
        )
        if not check.ok:
            self._logger.error(
                "document_rejected",
                domain=domain,
                errors=[entry.to_dict() for entry in check.errors],
            )
            raise DocumentValidationError(domain, check.errors)

        self._store.compare_and_swap(candidate, prior_version)
        return WriteOutcome(document=candidate, written=True, warnings=check.warnings)


__all__ = ["DocumentValidationError", "WriteOutcome", "Writer"]
