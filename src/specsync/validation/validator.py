"""
specsync: record validation

File: src/specsync/validation/validator.py

Purpose
- Partition normalized candidates into accepted records and quarantined
  entries with reason codes.
- Re-check a whole merged document before it is written.

Functional requirements
- Closed enums are enforced exactly; required fields must be present and non-empty.
- Duplicate identities: the first occurrence wins, later ones are quarantined.
- Hard references resolve to a fixed point: removing one record may orphan
  another, which is then quarantined too.
- ``depends_on``/``blocks`` cycles quarantine exactly the records on the cycle.
- Soft references only produce warnings.

Non-functional requirements
- Never fails the whole batch; deterministic output order (input order).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from specsync.domain.models import (
    JSONValue,
    QuarantinedRecord,
    QuarantineReason,
    Record,
    RecordStatus,
    SpecificationDocument,
    ValidationIssue,
    ValidationWarning,
)
from specsync.domain.schemas import DomainSchema, FieldKind
from specsync.normalization.normalizer import Candidate
from specsync.utils.fs import is_within
from specsync.validation.graph import IdentityGraph


def reference_keys(identity: str, payload: Mapping[str, JSONValue]) -> Iterator[str]:
    """Keys other records may reference: the identity and any ``table.column`` pairs."""

    yield identity
    columns = payload.get("columns")
    if not isinstance(columns, list):
        return
    for column in columns:
        if isinstance(column, Mapping):
            name = column.get("name")
            if isinstance(name, str) and name:
                yield f"{identity}.{name}"


class ReferenceIndex:
    """Resolvable keys per domain, shared across the domains of one sync run."""

    __slots__ = ("_keys",)

    def __init__(self, keys: Mapping[str, Iterable[str]] | None = None) -> None:
        self._keys: dict[str, set[str]] = {}
        if keys is not None:
            for domain, domain_keys in keys.items():
                self.register_keys(domain, domain_keys)

    @classmethod
    def from_documents(cls, documents: Iterable[SpecificationDocument]) -> ReferenceIndex:
        index = cls()
        for document in documents:
            index.register(document.domain, document.records)
        return index

    @property
    def domains(self) -> tuple[str, ...]:
        return tuple(sorted(self._keys))

    def register(self, domain: str, records: Iterable[Record]) -> None:
        """Replace ``domain``'s keys with those of ``records``."""

        keys: set[str] = set()
        for record in records:
            keys.update(reference_keys(record.identity, record.payload))
        self._keys[domain] = keys

    def register_keys(self, domain: str, keys: Iterable[str]) -> None:
        self._keys.setdefault(domain, set()).update(keys)

    def has_domain(self, domain: str) -> bool:
        return domain in self._keys

    def keys(self, domain: str) -> frozenset[str]:
        return frozenset(self._keys.get(domain, ()))

    def knows(self, domain: str, key: str) -> bool:
        return key in self._keys.get(domain, ())


@dataclass(frozen=True, slots=True)
class ValidationResult:
    domain: str
    accepted: tuple[Record, ...]
    quarantined: tuple[QuarantinedRecord, ...]
    cycles: tuple[tuple[str, ...], ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()

    @property
    def quarantined_identities(self) -> tuple[str, ...]:
        return tuple(entry.identity for entry in self.quarantined)


@dataclass(frozen=True, slots=True)
class DocumentCheck:
    """Outcome of :func:`validate_document`; ``errors`` block a write."""

    domain: str
    errors: tuple[QuarantinedRecord, ...]
    warnings: tuple[ValidationWarning, ...]

    @property
    def ok(self) -> bool:
        return not self.errors


class Validator:
    """Validate one domain's candidates against its closed schema."""

    def __init__(
        self,
        schema: DomainSchema,
        *,
        check_file_references: bool = True,
        logger: Any | None = None,
    ) -> None:
        self._schema = schema
        self._check_files = check_file_references
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def schema(self) -> DomainSchema:
        return self._schema

    def validate(
        self,
        candidates: Sequence[Candidate],
        reference_index: ReferenceIndex | None = None,
        *,
        persisted: Iterable[Record] = (),
        project_root: Path | str | None = None,
    ) -> ValidationResult:
        """Partition ``candidates``.

        ``persisted`` holds this domain's stored records that survive the
        merge whatever this run reports; they satisfy same-domain references.
        ``reference_index`` resolves references into other domains only.
        """

        schema = self._schema
        rejected: dict[int, tuple[str, list[ValidationIssue]]] = {}
        survivors: dict[str, Candidate] = {}
        first_seen: dict[str, int] = {}

        for candidate in candidates:
            found = field_issues(schema, candidate.payload)
            identity = candidate.identity
            if identity is None:
                missing = QuarantineReason.MISSING_REQUIRED_FIELD
                if not any(issue.code is missing for issue in found):
                    found.append(
                        ValidationIssue(
                            missing,
                            schema.name_field,
                            "identity could not be derived",
                        )
                    )
                rejected[candidate.index] = (f"#{candidate.index}", found)
                continue
            if identity in first_seen:
                found.insert(
                    0,
                    ValidationIssue(
                        QuarantineReason.DUPLICATE_IDENTITY,
                        None,
                        f"identity {identity!r} already taken by fact #{first_seen[identity]}",
                    ),
                )
            else:
                first_seen[identity] = candidate.index
            if found:
                rejected[candidate.index] = (identity, found)
            else:
                survivors[identity] = candidate

        persisted_only = tuple(record for record in persisted if record.identity not in survivors)
        persisted_keys: set[str] = set()
        for record in persisted_only:
            persisted_keys.update(reference_keys(record.identity, record.payload))

        dropped = self._resolve_references(survivors, persisted_keys, reference_index)

        cycles = self._detect_cycles(survivors, persisted_only)
        for cycle in cycles:
            path = " -> ".join(cycle)
            for identity in dict.fromkeys(cycle[:-1]):
                candidate = survivors.get(identity)
                if candidate is None:
                    continue
                field = self._cycle_field(identity, candidate.payload, cycle)
                dropped.setdefault(identity, []).append(
                    ValidationIssue(QuarantineReason.CYCLE_DETECTED, field, f"cycle {path}")
                )
        for identity in dropped:
            survivors.pop(identity, None)

        for identity, found in self._resolve_references(
            survivors, persisted_keys, reference_index
        ).items():
            dropped.setdefault(identity, []).extend(found)

        local_keys = set(persisted_keys)
        for identity, candidate in survivors.items():
            local_keys.update(reference_keys(identity, candidate.payload))

        by_index: dict[int, tuple[str, list[ValidationIssue]]] = dict(rejected)
        for candidate in candidates:
            identity = candidate.identity
            if identity is None:
                continue
            if identity in dropped and first_seen.get(identity) == candidate.index:
                by_index[candidate.index] = (identity, dropped[identity])
            elif candidate.index in rejected:
                label, found = rejected[candidate.index]
                found.extend(
                    self._dangling(identity, candidate.payload, local_keys, reference_index)
                )

        quarantined = tuple(
            QuarantinedRecord(identity=label, index=index, issues=tuple(found))
            for index, (label, found) in sorted(by_index.items())
        )
        accepted = tuple(
            Record(
                identity=identity,
                payload=dict(candidate.payload),
                provenance=candidate.provenance,
            )
            for identity, candidate in sorted(survivors.items(), key=lambda item: item[1].index)
        )
        warnings = tuple(
            warning
            for record in accepted
            for warning in self._soft_warnings(
                record.identity, record.payload, local_keys, reference_index, project_root
            )
        )

        for entry in quarantined:
            self._logger.warning(
                "record_quarantined",
                domain=schema.domain,
                identity=entry.identity,
                reason=entry.reason.value,
                issues=[issue.message for issue in entry.issues],
            )
        self._logger.info(
            "records_validated",
            domain=schema.domain,
            accepted=len(accepted),
            quarantined=len(quarantined),
            cycles=len(cycles),
            warnings=len(warnings),
        )
        return ValidationResult(
            domain=schema.domain,
            accepted=accepted,
            quarantined=quarantined,
            cycles=cycles,
            warnings=warnings,
        )

    def _resolve_references(
        self,
        survivors: dict[str, Candidate],
        persisted_keys: set[str],
        reference_index: ReferenceIndex | None,
    ) -> dict[str, list[ValidationIssue]]:
        dropped: dict[str, list[ValidationIssue]] = {}
        while True:
            local_keys = set(persisted_keys)
            for identity, candidate in survivors.items():
                local_keys.update(reference_keys(identity, candidate.payload))

            newly: dict[str, list[ValidationIssue]] = {}
            for identity, candidate in survivors.items():
                found = self._dangling(identity, candidate.payload, local_keys, reference_index)
                if found:
                    newly[identity] = found
            if not newly:
                return dropped
            for identity, found in newly.items():
                dropped[identity] = found
                del survivors[identity]

    def _dangling(
        self,
        identity: str,
        payload: Mapping[str, JSONValue],
        local_keys: set[str],
        reference_index: ReferenceIndex | None,
    ) -> list[ValidationIssue]:
        return [
            ValidationIssue(
                QuarantineReason.DANGLING_HARD_REFERENCE,
                ref.field,
                f"{ref.to_domain} reference {ref.to_id!r} does not resolve",
            )
            for ref in self._schema.iter_references(identity, payload)
            if ref.hard
            and not _resolves(self._schema, ref.to_domain, ref.to_id, local_keys, reference_index)
        ]

    def _detect_cycles(
        self, survivors: Mapping[str, Candidate], persisted: Sequence[Record]
    ) -> tuple[tuple[str, ...], ...]:
        if not self._schema.dependency_fields and not self._schema.reverse_dependency_fields:
            return ()
        graph = _dependency_graph(
            self._schema,
            [(identity, candidate.payload) for identity, candidate in survivors.items()]
            + [(record.identity, record.payload) for record in persisted],
        )
        return tuple(
            cycle for cycle in graph.detect_cycles() if any(node in survivors for node in cycle)
        )

    def _cycle_field(
        self, identity: str, payload: Mapping[str, JSONValue], cycle: Sequence[str]
    ) -> str:
        members = set(cycle)
        for field_name in self._schema.dependency_fields:
            targets = payload.get(field_name)
            if isinstance(targets, list) and members.intersection(
                target for target in targets if isinstance(target, str)
            ):
                return field_name
        if self._schema.reverse_dependency_fields:
            return self._schema.reverse_dependency_fields[0]
        return self._schema.name_field

    def _soft_warnings(
        self,
        identity: str,
        payload: Mapping[str, JSONValue],
        local_keys: set[str],
        reference_index: ReferenceIndex | None,
        project_root: Path | str | None,
    ) -> Iterator[ValidationWarning]:
        return _soft_warnings(
            self._schema,
            identity,
            payload,
            local_keys,
            reference_index,
            project_root if self._check_files else None,
        )


def validate_document(
    document: SpecificationDocument,
    schema: DomainSchema,
    reference_index: ReferenceIndex | None = None,
    *,
    project_root: Path | str | None = None,
) -> DocumentCheck:
    """Check a merged document; problems on stale or archived records are warnings."""

    if document.domain != schema.domain:
        raise ValueError(
            f"document for domain {document.domain!r} checked against {schema.domain!r} schema"
        )

    problems: dict[int, tuple[str, list[ValidationIssue]]] = {}
    warnings: list[ValidationWarning] = []
    positions: dict[str, int] = {}
    local_keys: set[str] = set()

    for index, record in enumerate(document.records):
        found = field_issues(schema, record.payload)
        if record.identity in positions:
            found.insert(
                0,
                ValidationIssue(
                    QuarantineReason.DUPLICATE_IDENTITY,
                    None,
                    f"identity {record.identity!r} appears more than once",
                ),
            )
        else:
            positions[record.identity] = index
        if found:
            problems[index] = (record.identity, found)
        local_keys.update(reference_keys(record.identity, record.payload))

    for index, record in enumerate(document.records):
        for ref in schema.iter_references(record.identity, record.payload):
            if not ref.hard:
                continue
            if _resolves(schema, ref.to_domain, ref.to_id, local_keys, reference_index):
                continue
            message = f"{ref.to_domain} reference {ref.to_id!r} does not resolve"
            if record.status is RecordStatus.ACTIVE:
                problems.setdefault(index, (record.identity, []))[1].append(
                    ValidationIssue(QuarantineReason.DANGLING_HARD_REFERENCE, ref.field, message)
                )
            else:
                warnings.append(ValidationWarning(record.identity, ref.field, message))
        if record.status is RecordStatus.ACTIVE:
            warnings.extend(
                _soft_warnings(
                    schema,
                    record.identity,
                    record.payload,
                    local_keys,
                    reference_index,
                    project_root,
                )
            )

    if schema.dependency_fields or schema.reverse_dependency_fields:
        graph = _dependency_graph(
            schema, [(record.identity, record.payload) for record in document.records]
        )
        for cycle in graph.detect_cycles():
            message = f"cycle {' -> '.join(cycle)}"
            for identity in dict.fromkeys(cycle[:-1]):
                index = positions[identity]
                record = document.records[index]
                if record.status is RecordStatus.ACTIVE:
                    problems.setdefault(index, (identity, []))[1].append(
                        ValidationIssue(QuarantineReason.CYCLE_DETECTED, None, message)
                    )
                else:
                    warnings.append(ValidationWarning(identity, "depends_on", message))

    errors = tuple(
        QuarantinedRecord(identity=identity, index=index, issues=tuple(found))
        for index, (identity, found) in sorted(problems.items())
    )
    return DocumentCheck(domain=document.domain, errors=errors, warnings=tuple(warnings))


def field_issues(schema: DomainSchema, payload: Mapping[str, JSONValue]) -> list[ValidationIssue]:
    """Required-field and closed-enum checks for one payload."""

    issues: list[ValidationIssue] = []
    for spec in schema.fields:
        value = payload.get(spec.name)
        if spec.required and _is_blank(value):
            issues.append(
                ValidationIssue(
                    QuarantineReason.MISSING_REQUIRED_FIELD,
                    spec.name,
                    f"required field {spec.name!r} is missing",
                )
            )
            continue
        if spec.choices is not None and value is not None and (
            not isinstance(value, str) or value not in spec.choices
        ):
            issues.append(
                ValidationIssue(
                    QuarantineReason.INVALID_ENUM,
                    spec.name,
                    f"{value!r} is not one of {', '.join(sorted(spec.choices))}",
                )
            )
        if spec.kind is FieldKind.COLUMNS and isinstance(value, list):
            issues.extend(_column_issues(spec.name, value))
    return issues


def _column_issues(field: str, columns: list[JSONValue]) -> Iterator[ValidationIssue]:
    for position, column in enumerate(columns):
        if not isinstance(column, Mapping):
            continue
        path = f"{field}[{position}]"
        for key in ("name", "type"):
            if _is_blank(column.get(key)):
                yield ValidationIssue(
                    QuarantineReason.MISSING_REQUIRED_FIELD,
                    f"{path}.{key}",
                    f"column {key} is missing",
                )
        target = column.get("foreign_key")
        if isinstance(target, Mapping):
            for key in ("table", "column"):
                if _is_blank(target.get(key)):
                    yield ValidationIssue(
                        QuarantineReason.MISSING_REQUIRED_FIELD,
                        f"{path}.foreign_key.{key}",
                        f"foreign key {key} is missing",
                    )


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return not value
    return False


def _resolves(
    schema: DomainSchema,
    to_domain: str,
    to_id: str,
    local_keys: set[str],
    reference_index: ReferenceIndex | None,
) -> bool:
    # Own-domain references only see this batch: an index entry for the
    # domain itself may describe records this run is about to retire.
    if to_domain == schema.domain:
        return to_id in local_keys
    return reference_index is not None and reference_index.knows(to_domain, to_id)


def _dependency_graph(
    schema: DomainSchema, entries: Sequence[tuple[str, Mapping[str, JSONValue]]]
) -> IdentityGraph:
    graph = IdentityGraph(nodes=[identity for identity, _ in entries])
    known = set(graph.nodes)
    for identity, payload in entries:
        for dependent, dependency in schema.dependency_edges(identity, payload):
            if dependent in known and dependency in known:
                graph.add_edge(dependent, dependency)
    return graph


def _soft_warnings(
    schema: DomainSchema,
    identity: str,
    payload: Mapping[str, JSONValue],
    local_keys: set[str],
    reference_index: ReferenceIndex | None,
    project_root: Path | str | None,
) -> Iterator[ValidationWarning]:
    for ref in schema.iter_references(identity, payload):
        if ref.hard:
            continue
        if ref.to_domain:
            if not _resolves(schema, ref.to_domain, ref.to_id, local_keys, reference_index):
                yield ValidationWarning(
                    identity, ref.field, f"{ref.to_domain} reference {ref.to_id!r} does not resolve"
                )
            continue
        if project_root is None:
            continue
        root = Path(project_root)
        target = root / ref.to_id
        if is_within(target, root):
            continue
        if target.exists():
            message = f"file {ref.to_id!r} is outside the project root"
        else:
            message = f"file {ref.to_id!r} does not exist"
        yield ValidationWarning(identity, ref.field, message)


__all__ = [
    "DocumentCheck",
    "ReferenceIndex",
    "ValidationResult",
    "Validator",
    "field_issues",
    "reference_keys",
    "validate_document",
]
