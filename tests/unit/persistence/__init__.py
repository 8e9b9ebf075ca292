"""Shared deterministic builders for persistence tests."""

from __future__ import annotations

from specsync.domain.models import (
    JSONValue,
    Provenance,
    Record,
    RecordStatus,
    SpecificationDocument,
)


def environment_payload(name: str, **overrides: JSONValue) -> dict[str, JSONValue]:
    payload: dict[str, JSONValue] = {
        "name": name,
        "required": False,
        "default": None,
        "secret": False,
        "description": "",
        "used_in": [],
    }
    payload.update(overrides)
    return payload


def make_record(
    identity: str,
    payload: dict[str, JSONValue] | None = None,
    *,
    status: RecordStatus = RecordStatus.ACTIVE,
    curator_fields: tuple[str, ...] = (),
    run: str | None = "run-1",
) -> Record:
    return Record(
        identity=identity,
        payload=payload if payload is not None else environment_payload(identity),
        curator_fields=curator_fields,
        provenance=Provenance(last_seen_extraction_run=run),
        status=status,
    )


def environment_document(*names: str, version: int = 0) -> SpecificationDocument:
    return SpecificationDocument(
        domain="environment",
        records=tuple(make_record(name) for name in names),
        document_version=version,
    )


__all__ = ["environment_document", "environment_payload", "make_record"]
