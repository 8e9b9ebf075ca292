"""
specsync: incremental merge

File: src/specsync/merge/engine.py

Purpose
- Reconcile one domain's accepted records with its previously persisted
  document and describe the outcome as a diff report.

Functional requirements
- Curator-set values always survive a merge; extractor-owned fields follow the
  latest extraction.
- Absent records are retired only after a complete extraction and only when
  nothing curator-related or still-referenced depends on them.
- Resolved issues and addressed lessons are archived, never retired.

Non-functional requirements
- Pure: no I/O, output depends only on inputs.
- Record order follows the previous document; new records append in input order.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

import structlog

from specsync.domain.models import (
    DiffReport,
    JSONValue,
    Provenance,
    ProvenanceSource,
    Record,
    RecordStatus,
    SpecificationDocument,
)
from specsync.domain.schemas import DomainSchema, FieldSpec
from specsync.validation.validator import ReferenceIndex, reference_keys


@dataclass(frozen=True, slots=True)
class MergeResult:
    document: SpecificationDocument
    diff: DiffReport


def curator_set(record: Record, spec: FieldSpec) -> bool:
    """Whether the curator owns ``spec``'s value on ``record``.

    Explicitly marked fields always count. Non-derivable fields also count once
    they hold anything other than the schema default, since extraction never
    writes them.
    """

    if spec.name in record.curator_fields:
        return True
    if spec.derivable:
        return False
    value = record.payload.get(spec.name)
    return value is not None and value != spec.default_value()


def curator_touched(schema: DomainSchema, record: Record) -> bool:
    if record.provenance.source is ProvenanceSource.CURATOR:
        return True
    return any(curator_set(record, spec) for spec in schema.curator_specs)


def status_for(schema: DomainSchema, payload: Mapping[str, JSONValue]) -> RecordStatus | None:
    """``ARCHIVED`` when the schema's archive flag is set, else ``None``."""

    if schema.archive_flag is not None and payload.get(schema.archive_flag) is True:
        return RecordStatus.ARCHIVED
    return None


class MergeEngine:
    """Curator-precedence reconciliation for one domain."""

    def __init__(
        self,
        schema: DomainSchema,
        *,
        retire_missing: bool = True,
        logger: Any | None = None,
    ) -> None:
        self._schema = schema
        self._retire_missing = retire_missing
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def schema(self) -> DomainSchema:
        return self._schema

    def retained_if_absent(
        self, previous: SpecificationDocument, allow_retire: bool
    ) -> tuple[Record, ...]:
        """Stored records that stay in the document even if this run omits them."""

        if not (allow_retire and self._retire_missing):
            return previous.records
        return tuple(record for record in previous.records if self._survives_absence(record))

    def merge(
        self,
        accepted: Sequence[Record],
        previous: SpecificationDocument,
        allow_retire: bool,
        *,
        held: Collection[str] = (),
        reference_index: ReferenceIndex | None = None,
    ) -> MergeResult:
        """Merge ``accepted`` into ``previous``.

        ``held`` names identities reported this run but quarantined; their
        stored versions are carried over. With ``reference_index``, a carried
        record whose hard reference into another domain no longer resolves
        turns stale instead of staying active.
        """

        schema = self._schema
        if previous.domain != schema.domain:
            raise ValueError(
                f"previous document for {previous.domain!r} merged with {schema.domain!r} schema"
            )
        retire = allow_retire and self._retire_missing
        incoming: dict[str, Record] = {}
        for record in accepted:
            incoming.setdefault(record.identity, record)

        decided: dict[str, Record | None] = {}
        added: list[str] = []
        refreshed: list[str] = []
        unchanged: list[str] = []
        stale: list[str] = []
        archived: list[str] = []
        conflicted: list[str] = []

        for prior in previous.records:
            identity = prior.identity
            new = incoming.get(identity)
            if new is not None:
                merged, conflict = self._reconcile(prior, new)
                decided[identity] = merged
                if conflict:
                    conflicted.append(identity)
                if merged.to_dict() == prior.to_dict():
                    unchanged.append(identity)
                elif merged.is_archived and not prior.is_archived:
                    archived.append(identity)
                else:
                    refreshed.append(identity)
                continue

            if identity in held:
                kept = self._check_orphaned(prior, reference_index)
                decided[identity] = kept
                (unchanged if kept.status is prior.status else stale).append(identity)
                continue

            outcome = self._absent(prior, retire)
            if outcome is not None:
                outcome = self._check_orphaned(outcome, reference_index)
            decided[identity] = outcome
            if outcome is None:
                continue
            if outcome.status is prior.status:
                unchanged.append(identity)
            elif outcome.is_archived:
                archived.append(identity)
            elif outcome.is_stale:
                stale.append(identity)
            else:
                refreshed.append(identity)

        for identity, pinned in self._pin_referenced(previous, decided).items():
            decided[identity] = pinned
            prior = previous.get(identity)
            if prior is not None and prior.is_stale:
                unchanged.append(identity)
            else:
                stale.append(identity)

        records = [record for record in decided.values() if record is not None]
        retired = [identity for identity, record in decided.items() if record is None]
        for identity, new in incoming.items():
            if identity in decided:
                continue
            records.append(self._fresh(new))
            added.append(identity)

        document = previous.with_records(records)
        diff = DiffReport(
            domain=schema.domain,
            added=tuple(added),
            refreshed=tuple(refreshed),
            unchanged=tuple(unchanged),
            stale=tuple(stale),
            archived=tuple(archived),
            retired=tuple(retired),
            conflicted=tuple(conflicted),
        )
        for identity in conflicted:
            self._logger.info("curator_value_kept", domain=schema.domain, identity=identity)
        self._logger.info(
            "document_merged",
            domain=schema.domain,
            previous_version=previous.document_version,
            allow_retire=retire,
            added=len(added),
            refreshed=len(refreshed),
            stale=len(stale),
            archived=len(archived),
            retired=len(retired),
            conflicted=len(conflicted),
        )
        return MergeResult(document=document, diff=diff)

    def _reconcile(self, prior: Record, new: Record) -> tuple[Record, bool]:
        payload: dict[str, JSONValue] = {}
        conflict = False
        for spec in self._schema.fields:
            name = spec.name
            if not spec.curator:
                payload[name] = new.payload.get(name, spec.default_value())
            elif curator_set(prior, spec):
                payload[name] = prior.payload.get(name, spec.default_value())
                if name in new.payload and new.payload[name] != payload[name]:
                    conflict = True
            elif spec.derivable and name in new.payload:
                payload[name] = new.payload[name]
            else:
                payload[name] = prior.payload.get(name, spec.default_value())

        source = prior.provenance.source
        merged = Record(
            identity=prior.identity,
            payload=payload,
            curator_fields=prior.curator_fields,
            provenance=Provenance(
                source=source,
                last_seen_extraction_run=new.provenance.last_seen_extraction_run,
            ),
            status=status_for(self._schema, payload) or RecordStatus.ACTIVE,
        )
        return merged, conflict

    def _fresh(self, new: Record) -> Record:
        payload: dict[str, JSONValue] = {}
        for spec in self._schema.fields:
            payload[spec.name] = new.payload.get(spec.name, spec.default_value())
        return replace(
            new,
            payload=payload,
            curator_fields=(),
            status=status_for(self._schema, payload) or RecordStatus.ACTIVE,
        )

    def _absent(self, prior: Record, retire: bool) -> Record | None:
        if prior.provenance.source is ProvenanceSource.CURATOR:
            return prior
        archived = status_for(self._schema, prior.payload)
        if archived is not None:
            return prior.with_status(archived)
        if curator_touched(self._schema, prior) or not retire:
            return prior.with_status(RecordStatus.STALE)
        return None

    def _check_orphaned(
        self, record: Record, reference_index: ReferenceIndex | None
    ) -> Record:
        """Stale a carried-over active record whose cross-domain target is gone.

        Curator records have no extraction to confirm them, so they return to
        active once their references resolve again.
        """

        if reference_index is None or record.is_archived:
            return record
        domain = self._schema.domain
        unresolved = [
            ref
            for ref in self._schema.iter_references(record.identity, record.payload)
            if ref.hard
            and ref.to_domain != domain
            and not reference_index.knows(ref.to_domain, ref.to_id)
        ]
        if unresolved:
            if record.is_stale:
                return record
            self._logger.warning(
                "carried_record_orphaned",
                domain=domain,
                identity=record.identity,
                references=[f"{ref.to_domain}:{ref.to_id}" for ref in unresolved],
            )
            return record.with_status(RecordStatus.STALE)
        if record.is_stale and record.provenance.source is ProvenanceSource.CURATOR:
            return record.with_status(RecordStatus.ACTIVE)
        return record

    def _survives_absence(self, record: Record) -> bool:
        return (
            status_for(self._schema, record.payload) is not None
            or curator_touched(self._schema, record)
        )

    def _pin_referenced(
        self,
        previous: SpecificationDocument,
        decided: Mapping[str, Record | None],
    ) -> dict[str, Record]:
        """Keep retire candidates that retained records still hard-reference, as stale."""

        domain = self._schema.domain
        candidates: dict[str, Record] = {
            prior.identity: prior
            for prior in previous.records
            if decided.get(prior.identity) is None
        }
        pinned: dict[str, Record] = {}
        frontier: Iterable[Record] = [record for record in decided.values() if record is not None]
        while candidates:
            wanted: set[str] = set()
            for record in frontier:
                for ref in self._schema.iter_references(record.identity, record.payload):
                    if ref.hard and ref.to_domain == domain:
                        wanted.add(ref.to_id)
            newly = [
                record
                for identity, record in candidates.items()
                if wanted.intersection(reference_keys(identity, record.payload))
            ]
            if not newly:
                break
            for record in newly:
                del candidates[record.identity]
                pinned[record.identity] = record.with_status(RecordStatus.STALE)
            frontier = newly
        return pinned


__all__ = ["MergeEngine", "MergeResult", "curator_set", "curator_touched", "status_for"]
