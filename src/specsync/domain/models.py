"""Dataclass domain models with strict parsing and canonical serialization."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import NoReturn

from specsync.constants import DOCUMENT_SCHEMA_VERSION
from specsync.utils.hashing import sha256_json

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

RawFact = Mapping[str, object]
RawCollection = Sequence[RawFact] | Mapping[str, object]

_RUN_ID_DIGEST_LENGTH = 16


class ProvenanceSource(StrEnum):
    EXTRACTOR = "extractor"
    CURATOR = "curator"


class RecordStatus(StrEnum):
    ACTIVE = "active"
    STALE = "stale"
    ARCHIVED = "archived"


class ExtractionStatus(StrEnum):
    """Outcome of one extractor run.

    Only ``complete`` runs may retire records: a ``partial`` or ``failed`` run
    cannot distinguish "entity removed" from "entity not scanned".
    """

    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


class QuarantineReason(StrEnum):
    INVALID_ENUM = "InvalidEnum"
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    DUPLICATE_IDENTITY = "DuplicateIdentity"
    DANGLING_HARD_REFERENCE = "DanglingHardReference"
    CYCLE_DETECTED = "CycleDetected"


class DocumentFormatError(ValueError):
    """Raised when a persisted document cannot be parsed into the canonical model."""


def _fail(path: str, message: str) -> NoReturn:
    raise DocumentFormatError(f"{path}: {message}")


@dataclass(frozen=True, slots=True)
class Provenance:
    source: ProvenanceSource = ProvenanceSource.EXTRACTOR
    last_seen_extraction_run: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "source": self.source.value,
            "last_seen_extraction_run": self.last_seen_extraction_run,
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "provenance") -> Provenance:
        if not isinstance(data, Mapping):
            _fail(path, f"expected object, got {type(data).__name__}")
        raw_source = data.get("source", ProvenanceSource.EXTRACTOR.value)
        try:
            source = ProvenanceSource(raw_source)
        except ValueError:
            _fail(f"{path}.source", f"unknown provenance source {raw_source!r}")
        run = data.get("last_seen_extraction_run")
        if run is not None and not isinstance(run, str):
            _fail(f"{path}.last_seen_extraction_run", "expected string or null")
        return cls(source=source, last_seen_extraction_run=run)


@dataclass(frozen=True, slots=True)
class Record:
    """One entity of a domain document: identity, typed payload and curator markers."""

    identity: str
    payload: dict[str, JSONValue]
    curator_fields: tuple[str, ...] = ()
    provenance: Provenance = field(default_factory=Provenance)
    status: RecordStatus = RecordStatus.ACTIVE

    def __post_init__(self) -> None:
        if not isinstance(self.identity, str) or not self.identity.strip():
            raise ValueError("Record.identity must be a non-empty string")
        object.__setattr__(self, "curator_fields", tuple(sorted(set(self.curator_fields))))

    @property
    def is_stale(self) -> bool:
        return self.status is RecordStatus.STALE

    @property
    def is_archived(self) -> bool:
        return self.status is RecordStatus.ARCHIVED

    def with_status(self, status: RecordStatus) -> Record:
        return replace(self, status=status)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "identity": self.identity,
            "status": self.status.value,
            "stale": self.is_stale,
            "payload": dict(self.payload),
            "curator_fields": list(self.curator_fields),
            "provenance": self.provenance.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: object,
        path: str = "record",
        *,
        identity_hint: str | None = None,
    ) -> Record:
        if not isinstance(data, Mapping):
            _fail(path, f"expected object, got {type(data).__name__}")

        identity = data.get("identity", identity_hint)
        if not isinstance(identity, str) or not identity.strip():
            _fail(f"{path}.identity", "expected non-empty string")

        payload = data.get("payload", {})
        if not isinstance(payload, Mapping):
            _fail(f"{path}.payload", "expected object")

        raw_curator = data.get("curator_fields", [])
        if not isinstance(raw_curator, Sequence) or isinstance(raw_curator, (str, bytes)):
            _fail(f"{path}.curator_fields", "expected array of strings")
        curator_fields: list[str] = []
        for index, item in enumerate(raw_curator):
            if not isinstance(item, str):
                _fail(f"{path}.curator_fields[{index}]", "expected string")
            curator_fields.append(item)

        raw_status = data.get("status")
        if raw_status is None:
            raw_status = (
                RecordStatus.STALE.value if data.get("stale") is True else RecordStatus.ACTIVE.value
            )
        try:
            status = RecordStatus(raw_status)
        except ValueError:
            _fail(f"{path}.status", f"unknown record status {raw_status!r}")

        return cls(
            identity=identity,
            payload={str(key): to_json_value(value) for key, value in payload.items()},
            curator_fields=tuple(curator_fields),
            provenance=Provenance.from_dict(data.get("provenance", {}), f"{path}.provenance"),
            status=status,
        )


@dataclass(frozen=True, slots=True)
class SpecificationDocument:
    """Versioned envelope holding one domain's records in insertion order."""

    domain: str
    records: tuple[Record, ...] = ()
    document_version: int = 0
    schema_version: int = DOCUMENT_SCHEMA_VERSION

    @classmethod
    def empty(cls, domain: str) -> SpecificationDocument:
        return cls(domain=domain)

    @property
    def identities(self) -> tuple[str, ...]:
        return tuple(record.identity for record in self.records)

    def get(self, identity: str) -> Record | None:
        for record in self.records:
            if record.identity == identity:
                return record
        return None

    def active_records(self) -> tuple[Record, ...]:
        """Records counted as live: not stale and not archived."""

        return tuple(record for record in self.records if record.status is RecordStatus.ACTIVE)

    def same_content(self, other: SpecificationDocument) -> bool:
        """Compare everything except ``document_version``."""

        return (
            self.domain == other.domain
            and self.schema_version == other.schema_version
            and [record.to_dict() for record in self.records]
            == [record.to_dict() for record in other.records]
        )

    def with_records(self, records: Sequence[Record]) -> SpecificationDocument:
        return replace(self, records=tuple(records))

    def with_version(self, document_version: int) -> SpecificationDocument:
        return replace(self, document_version=document_version)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "domain": self.domain,
            "schema_version": self.schema_version,
            "document_version": self.document_version,
            "records": [record.to_dict() for record in self.records],
        }

    def to_json(self) -> str:
        """Canonical, human-diffable JSON; equal documents serialize byte-identically."""

        return json.dumps(self.to_dict(), sort_keys=True, indent=2, ensure_ascii=False) + "\n"

    @classmethod
    def from_json(cls, raw: str) -> SpecificationDocument:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail("document", f"invalid JSON: {exc}")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls, data: object) -> SpecificationDocument:
        if not isinstance(data, Mapping):
            _fail("document", f"expected object, got {type(data).__name__}")

        domain = data.get("domain")
        if not isinstance(domain, str) or not domain:
            _fail("document.domain", "expected non-empty string")

        schema_version = data.get("schema_version", DOCUMENT_SCHEMA_VERSION)
        document_version = data.get("document_version", 0)
        for name, value in (
            ("schema_version", schema_version),
            ("document_version", document_version),
        ):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                _fail(f"document.{name}", "expected non-negative integer")

        raw_records = data.get("records", [])
        records: list[Record] = []
        if isinstance(raw_records, Mapping):
            # Legacy shape keyed by identity; the key stands in for a missing identity.
            for key in raw_records:
                records.append(
                    Record.from_dict(raw_records[key], f"records.{key}", identity_hint=str(key))
                )
        elif isinstance(raw_records, Sequence) and not isinstance(raw_records, (str, bytes)):
            for index, item in enumerate(raw_records):
                records.append(Record.from_dict(item, f"records[{index}]"))
        else:
            _fail("document.records", "expected array of records")

        return cls(
            domain=domain,
            records=tuple(records),
            document_version=document_version,  # type: ignore[arg-type]
            schema_version=schema_version,  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class FactSet:
    """Raw findings from one extractor run for one domain, before normalization."""

    domain: str
    records: RawCollection = ()
    extraction_run: str | None = None
    status: ExtractionStatus = ExtractionStatus.COMPLETE
    notes: tuple[str, ...] = ()

    @classmethod
    def failed(cls, domain: str, reason: str) -> FactSet:
        return cls(domain=domain, records=(), status=ExtractionStatus.FAILED, notes=(reason,))

    @property
    def allows_retirement(self) -> bool:
        return self.status is ExtractionStatus.COMPLETE

    @property
    def run_id(self) -> str:
        """Explicit run id, else a digest of the facts so unchanged input maps to one id."""

        if self.extraction_run:
            return self.extraction_run
        digest = sha256_json({"domain": self.domain, "records": to_json_value(self.records)})
        return f"run-{digest[:_RUN_ID_DIGEST_LENGTH]}"


@dataclass(frozen=True, slots=True)
class CoercionNote:
    index: int
    field: str | None
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"index": self.index, "field": self.field, "message": self.message}


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    code: QuarantineReason
    field: str | None
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"code": self.code.value, "field": self.field, "message": self.message}


@dataclass(frozen=True, slots=True)
class ValidationWarning:
    identity: str
    field: str
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"identity": self.identity, "field": self.field, "message": self.message}


@dataclass(frozen=True, slots=True)
class QuarantinedRecord:
    """A rejected candidate with every issue found on it; ``reason`` is the first."""

    identity: str
    index: int
    issues: tuple[ValidationIssue, ...]

    def __post_init__(self) -> None:
        if not self.issues:
            raise ValueError("QuarantinedRecord requires at least one issue")

    @property
    def reason(self) -> QuarantineReason:
        return self.issues[0].code

    @property
    def reasons(self) -> tuple[QuarantineReason, ...]:
        seen: dict[QuarantineReason, None] = {}
        for issue in self.issues:
            seen.setdefault(issue.code, None)
        return tuple(seen)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "identity": self.identity,
            "reason": self.reason.value,
            "reasons": [reason.value for reason in self.reasons],
            "issues": [issue.to_dict() for issue in self.issues],
        }


@dataclass(frozen=True, slots=True)
class CrossReference:
    from_domain: str
    from_id: str
    field: str
    to_domain: str
    to_id: str
    hard: bool = True


@dataclass(frozen=True, slots=True)
class DiffReport:
    """Per-run merge outcome. Returned for observability, never persisted."""

    domain: str
    added: tuple[str, ...] = ()
    refreshed: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    stale: tuple[str, ...] = ()
    archived: tuple[str, ...] = ()
    retired: tuple[str, ...] = ()
    conflicted: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.refreshed or self.retired or self.stale or self.archived)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "domain": self.domain,
            "added": list(self.added),
            "refreshed": list(self.refreshed),
            "unchanged": list(self.unchanged),
            "stale": list(self.stale),
            "archived": list(self.archived),
            "retired": list(self.retired),
            "conflicted": list(self.conflicted),
        }


def to_json_value(value: object) -> JSONValue:
    """Plain JSON rendition of ``value``; anything unrecognized becomes its ``str``."""

    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [to_json_value(item) for item in value]
    return str(value)


__all__ = [
    "CoercionNote",
    "CrossReference",
    "DiffReport",
    "DocumentFormatError",
    "ExtractionStatus",
    "FactSet",
    "JSONScalar",
    "JSONValue",
    "Provenance",
    "ProvenanceSource",
    "QuarantineReason",
    "QuarantinedRecord",
    "RawCollection",
    "RawFact",
    "Record",
    "RecordStatus",
    "SpecificationDocument",
    "ValidationIssue",
    "ValidationWarning",
    "to_json_value",
]
