"""
specsync: curator actions on stored documents

File: src/specsync/curation.py

Purpose
- Apply explicit curator edits to one domain document and persist them
  through the same validated, versioned write path as a sync run.

Functional requirements
- A curator-set field is recorded in ``curator_fields`` so later merges keep it.
- Setting a domain's archive flag archives the record; clearing it reactivates it.
- Curated records carry ``curator`` provenance and are never retired by extraction.
- Removal is the only way an archived record leaves its document.

Non-functional requirements
- Every edit reads the stored version and writes on top of it; a concurrent
  writer surfaces as :class:`~specsync.persistence.store.ConflictError`.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from specsync.constants import DOMAIN_ISSUES, DOMAIN_LESSONS
from specsync.domain.models import (
    FactSet,
    JSONValue,
    Provenance,
    ProvenanceSource,
    Record,
    RecordStatus,
    SpecificationDocument,
)
from specsync.domain.schemas import DomainSchema, schema_for
from specsync.normalization.normalizer import Normalizer, coerce_value
from specsync.persistence.store import FileDocumentStore
from specsync.persistence.writer import WriteOutcome, Writer
from specsync.validation.validator import ReferenceIndex

_CURATOR_RUN_ID = "curator"


class CurationError(ValueError):
    """A curator edit was rejected before anything was written."""


def _utc_timestamp() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class Curator:
    """Explicit, validated edits to stored specification documents."""

    def __init__(
        self,
        store: FileDocumentStore,
        *,
        project_root: Path | str | None = None,
        clock: Callable[[], str] = _utc_timestamp,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._writer = Writer(store, project_root=project_root, logger=logger)
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def set_curator_field(
        self, domain: str, identity: str, field: str, value: object
    ) -> WriteOutcome:
        """Set a curator-owned ``field`` on one record and mark it curator-set."""

        schema = schema_for(domain)
        document = self._store.read(domain)
        record = _require_record(document, identity)
        updated = _with_curator_values(schema, record, {field: value})
        return self._commit(document, _replace_record(document, updated), action="set_field")

    def resolve_issue(self, identity: str, *, resolved_at: str | None = None) -> WriteOutcome:
        schema = schema_for(DOMAIN_ISSUES)
        document = self._store.read(DOMAIN_ISSUES)
        record = _require_record(document, identity)
        updated = _with_curator_values(
            schema,
            record,
            {"resolved": True, "resolved_at": resolved_at or self._clock()},
        )
        return self._commit(document, _replace_record(document, updated), action="resolve_issue")

    def address_lesson(self, identity: str, *, addressed_at: str | None = None) -> WriteOutcome:
        schema = schema_for(DOMAIN_LESSONS)
        document = self._store.read(DOMAIN_LESSONS)
        record = _require_record(document, identity)
        updated = _with_curator_values(
            schema,
            record,
            {"is_addressed": True, "addressed_at": addressed_at or self._clock()},
        )
        return self._commit(document, _replace_record(document, updated), action="address_lesson")

    def add_curated_record(self, domain: str, payload: Mapping[str, object]) -> WriteOutcome:
        """Append a hand-written record; its identity follows the domain's identity rule."""

        schema = schema_for(domain)
        document = self._store.read(domain)
        record = _curated_record(schema, payload)
        if document.get(record.identity) is not None:
            raise CurationError(f"{domain}: record {record.identity!r} already exists")
        added = document.with_records([*document.records, record])
        return self._commit(document, added, action="add_record", identity=record.identity)

    def remove_record(self, domain: str, identity: str) -> WriteOutcome:
        document = self._store.read(domain)
        _require_record(document, identity)
        remaining = document.with_records(
            [record for record in document.records if record.identity != identity]
        )
        return self._commit(document, remaining, action="remove_record", identity=identity)

    def _commit(
        self,
        previous: SpecificationDocument,
        document: SpecificationDocument,
        *,
        action: str,
        identity: str | None = None,
    ) -> WriteOutcome:
        index = ReferenceIndex.from_documents(
            self._store.read(domain)
            for domain in self._store.domains()
            if domain != document.domain
        )
        outcome = self._writer.write(document, previous.document_version, reference_index=index)
        self._logger.info(
            "curator_edit_applied",
            domain=document.domain,
            action=action,
            identity=identity,
            written=outcome.written,
            document_version=outcome.document_version,
        )
        return outcome


def _require_record(document: SpecificationDocument, identity: str) -> Record:
    record = document.get(identity)
    if record is None:
        raise CurationError(f"{document.domain}: no record with identity {identity!r}")
    return record


def _replace_record(document: SpecificationDocument, updated: Record) -> SpecificationDocument:
    return document.with_records(
        [updated if record.identity == updated.identity else record for record in document.records]
    )


def _coerce_curator_value(schema: DomainSchema, field: str, value: object) -> JSONValue:
    spec = schema.field(field)
    if spec is None or not spec.curator:
        raise CurationError(f"{schema.domain}: {field!r} is not a curator-owned field")
    try:
        coerced = coerce_value(spec, value)
    except ValueError as exc:
        raise CurationError(f"{schema.domain}: {exc}") from exc
    if spec.choices is not None and coerced is not None and coerced not in spec.choices:
        raise CurationError(f"{schema.domain}: {coerced!r} is not a valid {field}")
    return coerced


def _with_curator_values(
    schema: DomainSchema, record: Record, values: Mapping[str, object]
) -> Record:
    payload = dict(record.payload)
    for field, value in values.items():
        payload[field] = _coerce_curator_value(schema, field, value)

    status = record.status
    if schema.archive_flag is not None and schema.archive_flag in values:
        if payload.get(schema.archive_flag) is True:
            status = RecordStatus.ARCHIVED
        elif status is RecordStatus.ARCHIVED:
            status = RecordStatus.ACTIVE

    return replace(
        record,
        payload=payload,
        curator_fields=(*record.curator_fields, *values),
        status=status,
    )


def _curated_record(schema: DomainSchema, raw: Mapping[str, object]) -> Record:
    normalized = Normalizer(schema).normalize(
        FactSet(domain=schema.domain, records=[raw], extraction_run=_CURATOR_RUN_ID)
    )
    candidate = normalized.candidates[0] if normalized.candidates else None
    if candidate is None or candidate.identity is None:
        raise CurationError(f"{schema.domain}: cannot derive an identity for the curated record")

    aliases = schema.alias_map()
    curator_values: dict[str, JSONValue] = {}
    for key, value in raw.items():
        name = aliases.get(str(key))
        spec = schema.field(name) if name is not None else None
        if spec is not None and spec.curator and value is not None:
            curator_values[spec.name] = _coerce_curator_value(schema, spec.name, value)

    payload: dict[str, JSONValue] = {
        spec.name: candidate.payload.get(spec.name, spec.default_value()) for spec in schema.fields
    }
    payload.update(curator_values)
    status = RecordStatus.ACTIVE
    if schema.archive_flag is not None and payload.get(schema.archive_flag) is True:
        status = RecordStatus.ARCHIVED
    return Record(
        identity=candidate.identity,
        payload=payload,
        curator_fields=tuple(curator_values),
        provenance=Provenance(source=ProvenanceSource.CURATOR),
        status=status,
    )


__all__ = ["CurationError", "Curator"]
