"""Unit tests for domain models: strict parsing and canonical serialization."""

from __future__ import annotations

import json

import pytest

from specsync.domain.models import (
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
)


def _document() -> SpecificationDocument:
    return SpecificationDocument(
        domain="environment",
        records=(
            Record(
                identity="PORT",
                payload={"name": "PORT", "used_in": ["app.py"]},
                curator_fields=("description", "description"),
                provenance=Provenance(last_seen_extraction_run="run-1"),
            ),
            Record(
                identity="SECRET_KEY",
                payload={"name": "SECRET_KEY", "secret": True},
                status=RecordStatus.STALE,
            ),
        ),
        document_version=3,
    )


def test_document_json_is_canonical_and_round_trips() -> None:
    document = _document()

    raw = document.to_json()

    assert raw == _document().to_json()
    assert raw.endswith("\n")
    parsed = json.loads(raw)
    assert list(parsed) == sorted(parsed)
    assert parsed["records"][1]["stale"] is True
    assert parsed["records"][0]["curator_fields"] == ["description"]
    assert SpecificationDocument.from_json(raw) == document


def test_record_rejects_blank_identity() -> None:
    with pytest.raises(ValueError, match="identity"):
        Record(identity="  ", payload={})


def test_status_falls_back_to_legacy_stale_flag() -> None:
    stale = Record.from_dict({"identity": "A", "payload": {}, "stale": True})
    active = Record.from_dict({"identity": "B", "payload": {}})
    explicit = Record.from_dict({"identity": "C", "status": "archived", "stale": True})

    assert stale.is_stale
    assert active.status is RecordStatus.ACTIVE
    assert explicit.is_archived


@pytest.mark.parametrize(
    ("data", "path"),
    [
        ([], "document"),
        ({"records": []}, "document.domain"),
        ({"domain": "issues", "document_version": -1}, "document.document_version"),
        ({"domain": "issues", "schema_version": True}, "document.schema_version"),
        ({"domain": "issues", "records": "nope"}, "document.records"),
        ({"domain": "issues", "records": [{"payload": {}}]}, "records[0].identity"),
        (
            {"domain": "issues", "records": [{"identity": "x", "status": "gone"}]},
            "records[0].status",
        ),
        (
            {"domain": "issues", "records": [{"identity": "x", "curator_fields": "resolved"}]},
            "records[0].curator_fields",
        ),
        (
            {"domain": "issues", "records": [{"identity": "x", "provenance": {"source": "bot"}}]},
            "records[0].provenance.source",
        ),
    ],
)
def test_malformed_documents_name_the_offending_path(data: object, path: str) -> None:
    with pytest.raises(DocumentFormatError) as error:
        SpecificationDocument.from_dict(data)

    assert str(error.value).startswith(f"{path}:")


def test_same_content_ignores_version_only() -> None:
    document = _document()

    assert document.same_content(document.with_version(9))
    assert not document.same_content(document.with_records(document.records[:1]))
    assert document.active_records() == document.records[:1]
    assert document.get("SECRET_KEY") is document.records[1]
    assert document.get("MISSING") is None


def test_fact_set_run_id_is_a_stable_digest() -> None:
    facts = [{"name": "PORT"}]

    first = FactSet(domain="environment", records=facts)
    second = FactSet(domain="environment", records=[{"name": "PORT"}])
    other = FactSet(domain="environment", records=[{"name": "HOST"}])

    assert first.run_id == second.run_id
    assert first.run_id != other.run_id
    assert first.run_id.startswith("run-")
    assert FactSet(domain="environment", extraction_run="scan-1").run_id == "scan-1"


def test_only_complete_extractions_allow_retirement() -> None:
    assert FactSet(domain="issues").allows_retirement
    assert not FactSet(domain="issues", status=ExtractionStatus.PARTIAL).allows_retirement
    failed = FactSet.failed("issues", "timeout")
    assert not failed.allows_retirement
    assert failed.notes == ("timeout",)


def test_quarantined_record_reasons_are_ordered_and_unique() -> None:
    entry = QuarantinedRecord(
        identity="orders",
        index=2,
        issues=(
            ValidationIssue(QuarantineReason.DANGLING_HARD_REFERENCE, "columns", "a"),
            ValidationIssue(QuarantineReason.INVALID_ENUM, "kind", "b"),
            ValidationIssue(QuarantineReason.DANGLING_HARD_REFERENCE, "columns", "c"),
        ),
    )

    assert entry.reason is QuarantineReason.DANGLING_HARD_REFERENCE
    assert entry.reasons == (
        QuarantineReason.DANGLING_HARD_REFERENCE,
        QuarantineReason.INVALID_ENUM,
    )
    assert entry.to_dict()["reason"] == "DanglingHardReference"
    with pytest.raises(ValueError):
        QuarantinedRecord(identity="x", index=0, issues=())


def test_diff_report_changes() -> None:
    assert not DiffReport(domain="issues", unchanged=("a",), conflicted=("a",)).has_changes
    assert DiffReport(domain="issues", stale=("a",)).has_changes
    assert DiffReport(domain="issues", retired=("b",)).to_dict()["retired"] == ["b"]


def test_provenance_defaults_to_extractor() -> None:
    provenance = Provenance.from_dict({})

    assert provenance.source is ProvenanceSource.EXTRACTOR
    assert provenance.last_seen_extraction_run is None
    assert Provenance.from_dict({"source": "curator"}).to_dict() == {
        "source": "curator",
        "last_seen_extraction_run": None,
    }
