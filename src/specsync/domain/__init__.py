"""Domain models and per-domain record schemas."""

from specsync.domain.models import (
    CoercionNote,
    CrossReference,
    DiffReport,
    DocumentFormatError,
    ExtractionStatus,
    FactSet,
    Provenance,
    ProvenanceSource,
    QuarantinedRecord,
    QuarantineReason,
    Record,
    RecordStatus,
    SpecificationDocument,
    ValidationIssue,
    ValidationWarning,
)
from specsync.domain.schemas import SCHEMAS, DomainSchema, FieldKind, FieldSpec, schema_for

__all__ = [
    "SCHEMAS",
    "CoercionNote",
    "CrossReference",
    "DiffReport",
    "DocumentFormatError",
    "DomainSchema",
    "ExtractionStatus",
    "FactSet",
    "FieldKind",
    "FieldSpec",
    "Provenance",
    "ProvenanceSource",
    "QuarantineReason",
    "QuarantinedRecord",
    "Record",
    "RecordStatus",
    "SpecificationDocument",
    "ValidationIssue",
    "ValidationWarning",
    "schema_for",
]
