"""Coerce loosely structured extractor facts into canonical candidate records.

The normalizer is a pure transform. It renames aliased keys, coerces scalar
types where the intent is unambiguous, applies schema defaults and derives
identities. It never chooses an enum value on the extractor's behalf: an
unknown value is passed through unchanged so the validator can reject it.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

import structlog

from specsync.domain.models import (
    CoercionNote,
    FactSet,
    JSONValue,
    Provenance,
    ProvenanceSource,
    to_json_value,
)
from specsync.domain.schemas import DomainSchema, FieldKind, FieldSpec, slugify

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_FOREIGN_KEY_TEXT = re.compile(r"^\s*([A-Za-z_][\w$]*)\s*(?:\.|\(\s*)([A-Za-z_][\w$]*)\s*\)?\s*$")

_COLUMN_ALIASES: Final[Mapping[str, str]] = {
    "name": "name",
    "column": "name",
    "type": "type",
    "data_type": "type",
    "dataType": "type",
    "nullable": "nullable",
    "isNullable": "nullable",
    "null": "nullable",
    "primary_key": "primary_key",
    "primaryKey": "primary_key",
    "pk": "primary_key",
    "foreign_key": "foreign_key",
    "foreignKey": "foreign_key",
    "references": "foreign_key",
}

_MISSING: Final[object] = object()


@dataclass(frozen=True, slots=True)
class Candidate:
    """A normalized fact awaiting validation. ``identity`` is ``None`` when underivable."""

    index: int
    identity: str | None
    payload: dict[str, JSONValue]
    provenance: Provenance


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    domain: str
    run_id: str
    candidates: tuple[Candidate, ...]
    notes: tuple[CoercionNote, ...]


class _Notes:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[CoercionNote] = []

    def add(self, index: int, field: str | None, message: str) -> None:
        self._items.append(CoercionNote(index=index, field=field, message=message))

    def items(self) -> tuple[CoercionNote, ...]:
        return tuple(self._items)


class Normalizer:
    """Turn one domain's :class:`FactSet` into candidates for the validator."""

    def __init__(self, schema: DomainSchema, *, logger: Any | None = None) -> None:
        self._schema = schema
        self._aliases = schema.alias_map()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def schema(self) -> DomainSchema:
        return self._schema

    def normalize(self, fact_set: FactSet) -> NormalizationResult:
        if fact_set.domain != self._schema.domain:
            raise ValueError(
                f"fact set for domain {fact_set.domain!r} given to "
                f"{self._schema.domain!r} normalizer"
            )

        notes = _Notes()
        provenance = Provenance(
            source=ProvenanceSource.EXTRACTOR,
            last_seen_extraction_run=fact_set.run_id,
        )
        candidates = tuple(
            self._normalize_fact(index, raw, provenance, notes)
            for index, raw in enumerate(self._facts(fact_set.records, notes))
        )

        result = NormalizationResult(
            domain=self._schema.domain,
            run_id=fact_set.run_id,
            candidates=candidates,
            notes=notes.items(),
        )
        self._logger.info(
            "facts_normalized",
            domain=self._schema.domain,
            run_id=fact_set.run_id,
            candidates=len(candidates),
            coercion_notes=len(result.notes),
        )
        return result

    def _facts(self, records: object, notes: _Notes) -> list[Mapping[str, object]]:
        facts: list[Mapping[str, object]] = []
        if isinstance(records, Mapping):
            name_field = self._schema.name_field
            for position, key in enumerate(records):
                value = records[key]
                if not isinstance(value, Mapping):
                    notes.add(position, None, f"skipped non-object entry {key!r}")
                    continue
                fact = dict(value)
                fact.setdefault(name_field, str(key))
                notes.add(position, name_field, "collection keyed by name converted to array")
                facts.append(fact)
            return facts

        if isinstance(records, Sequence) and not isinstance(records, (str, bytes)):
            for position, value in enumerate(records):
                if not isinstance(value, Mapping):
                    notes.add(
                        position, None, f"skipped non-object entry of type {type(value).__name__}"
                    )
                    continue
                facts.append(value)
            return facts

        if records is not None:
            notes.add(0, None, f"ignored facts of type {type(records).__name__}")
        return facts

    def _normalize_fact(
        self,
        index: int,
        raw: Mapping[str, object],
        provenance: Provenance,
        notes: _Notes,
    ) -> Candidate:
        fields = self._canonical_keys(index, raw, notes)
        payload: dict[str, JSONValue] = {}

        for spec in self._schema.fields:
            value = fields.get(spec.name, _MISSING)
            if spec.curator and not spec.derivable:
                if value is not _MISSING:
                    notes.add(index, spec.name, "dropped curator-owned field from extractor facts")
                continue
            if value is _MISSING or value is None:
                if spec.curator or spec.required:
                    continue
                payload[spec.name] = spec.default_value()
                continue

            coerced, ok = self._coerce(index, spec, value, notes)
            if ok:
                payload[spec.name] = coerced
            elif spec.choices is not None:
                notes.add(index, spec.name, "kept uncoercible enum value for validation")
                payload[spec.name] = to_json_value(value)
            elif not spec.required:
                notes.add(index, spec.name, "uncoercible value replaced by default")
                payload[spec.name] = spec.default_value()

        self._canonicalize_references(index, payload, notes)
        self._fill_derived_keys(index, payload, notes)

        return Candidate(
            index=index,
            identity=self._schema.identity_for(payload),
            payload=payload,
            provenance=provenance,
        )

    def _canonical_keys(
        self, index: int, raw: Mapping[str, object], notes: _Notes
    ) -> dict[str, object]:
        fields: dict[str, object] = {}
        aliased: dict[str, object] = {}
        for key in raw:
            name = self._aliases.get(str(key))
            if name is None:
                notes.add(index, str(key), "dropped unknown field")
                continue
            if name == key:
                fields[name] = raw[key]
            elif name not in aliased:
                aliased[name] = raw[key]
        for name, value in aliased.items():
            if name in fields:
                notes.add(index, name, "alias ignored in favour of canonical field")
                continue
            fields[name] = value
        return fields

    def _coerce(
        self, index: int, spec: FieldSpec, value: object, notes: _Notes
    ) -> tuple[JSONValue, bool]:
        kind = spec.kind
        if kind is FieldKind.STR:
            text, ok = _coerce_str(value)
            if ok and not isinstance(value, str):
                notes.add(index, spec.name, f"coerced {type(value).__name__} to string")
            if ok and text is not None and spec.choices is not None:
                text = self._canonical_case(index, spec, text, notes)
            return text, ok
        if kind is FieldKind.INT:
            number, ok = _coerce_int(value)
            if ok and not isinstance(value, int):
                notes.add(index, spec.name, f"coerced {value!r} to integer")
            return number, ok
        if kind is FieldKind.FLOAT:
            ratio, ok = _coerce_float(value)
            if ok and not isinstance(value, (int, float)):
                notes.add(index, spec.name, f"coerced {value!r} to number")
            return ratio, ok
        if kind is FieldKind.BOOL:
            flag, ok = _coerce_bool(value)
            if ok and not isinstance(value, bool):
                notes.add(index, spec.name, f"coerced {value!r} to boolean")
            return flag, ok
        if kind is FieldKind.STR_LIST:
            return self._coerce_str_list(index, spec.name, value, notes)
        return self._coerce_columns(index, value, notes)

    def _canonical_case(self, index: int, spec: FieldSpec, text: str, notes: _Notes) -> str:
        if spec.case == "upper":
            cased = text.upper()
        elif spec.case == "lower":
            cased = text.lower()
        else:
            cased = text
        if cased != text:
            notes.add(index, spec.name, f"canonicalized case {text!r} -> {cased!r}")
        return cased

    def _coerce_str_list(
        self, index: int, field: str, value: object, notes: _Notes
    ) -> tuple[JSONValue, bool]:
        if isinstance(value, str):
            notes.add(index, field, "split comma-separated string into list")
            items: list[object] = [part for part in value.split(",")]
        elif isinstance(value, Sequence) and not isinstance(value, bytes):
            items = list(value)
        else:
            return None, False

        output: list[JSONValue] = []
        for item in items:
            if isinstance(item, bool) or not isinstance(item, (str, int, float)):
                notes.add(
                    index, field, f"dropped non-scalar list item of type {type(item).__name__}"
                )
                continue
            text = str(item).strip()
            if not text:
                continue
            if text in output:
                notes.add(index, field, f"dropped duplicate list item {text!r}")
                continue
            output.append(text)
        return output, True

    def _coerce_columns(self, index: int, value: object, notes: _Notes) -> tuple[JSONValue, bool]:
        if isinstance(value, Mapping):
            notes.add(index, "columns", "columns keyed by name converted to array")
            raw_columns: list[object] = []
            for key in value:
                column = value[key]
                if isinstance(column, Mapping):
                    column = {"name": str(key), **dict(column)}
                elif isinstance(column, str):
                    column = {"name": str(key), "type": column}
                raw_columns.append(column)
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            raw_columns = list(value)
        else:
            return None, False

        columns: list[JSONValue] = []
        for position, raw_column in enumerate(raw_columns):
            path = f"columns[{position}]"
            if not isinstance(raw_column, Mapping):
                notes.add(index, path, "dropped non-object column")
                continue
            columns.append(self._normalize_column(index, path, raw_column, notes))
        return columns, True

    def _normalize_column(
        self, index: int, path: str, raw: Mapping[str, object], notes: _Notes
    ) -> dict[str, JSONValue]:
        fields: dict[str, object] = {}
        for key in raw:
            name = _COLUMN_ALIASES.get(str(key))
            if name is None:
                notes.add(index, f"{path}.{key}", "dropped unknown column field")
                continue
            fields.setdefault(name, raw[key])

        column: dict[str, JSONValue] = {}
        for name in ("name", "type"):
            text, ok = _coerce_str(fields.get(name))
            if ok and text:
                column[name] = text

        nullable, ok = _coerce_bool(fields.get("nullable", True))
        column["nullable"] = nullable if ok else True
        primary, ok = _coerce_bool(fields.get("primary_key", False))
        column["primary_key"] = primary if ok else False
        if column["primary_key"] and "nullable" not in fields:
            column["nullable"] = False

        column["foreign_key"] = self._normalize_foreign_key(
            index, f"{path}.foreign_key", fields.get("foreign_key"), notes
        )
        return column

    def _normalize_foreign_key(
        self, index: int, path: str, value: object, notes: _Notes
    ) -> JSONValue:
        if value is None:
            return None
        if isinstance(value, str):
            match = _FOREIGN_KEY_TEXT.match(value)
            if match is None:
                notes.add(index, path, f"kept unparseable foreign key {value!r} for validation")
                return {"table": value.strip()}
            notes.add(index, path, f"parsed foreign key {value!r}")
            return {"table": match.group(1), "column": match.group(2)}
        if isinstance(value, Mapping):
            target: dict[str, JSONValue] = {}
            for name in ("table", "column"):
                text, ok = _coerce_str(value.get(name))
                if ok and text:
                    target[name] = text
            return target
        notes.add(index, path, f"dropped foreign key of type {type(value).__name__}")
        return None

    def _canonicalize_references(
        self, index: int, payload: dict[str, JSONValue], notes: _Notes
    ) -> None:
        for ref in self._schema.references:
            if ref.canonical is None:
                continue
            targets = payload.get(ref.field)
            if not isinstance(targets, list):
                continue
            canonical: list[JSONValue] = []
            for target in targets:
                if not isinstance(target, str):
                    continue
                converted = ref.canonical(target) or target
                if converted != target:
                    notes.add(
                        index, ref.field, f"canonicalized reference {target!r} -> {converted!r}"
                    )
                if converted not in canonical:
                    canonical.append(converted)
            payload[ref.field] = canonical

    def _fill_derived_keys(self, index: int, payload: dict[str, JSONValue], notes: _Notes) -> None:
        if self._schema.field("slug") is not None:
            slug = payload.get("slug")
            source = slug if isinstance(slug, str) and slug.strip() else payload.get("name")
            if isinstance(source, str) and source.strip():
                derived = slugify(source)
                if derived and derived != slug:
                    if slug:
                        notes.add(index, "slug", f"canonicalized slug {slug!r} -> {derived!r}")
                    payload["slug"] = derived
        if self._schema.field("id") is not None and not payload.get("id"):
            identity = self._schema.identity_for(payload)
            if identity is not None:
                payload["id"] = identity


def coerce_value(spec: FieldSpec, value: object) -> JSONValue:
    """Coerce a single scalar or list value for ``spec``; raise ``ValueError`` if impossible."""

    if value is None:
        return None
    if spec.kind is FieldKind.STR:
        coerced, ok = _coerce_str(value)
    elif spec.kind is FieldKind.INT:
        coerced, ok = _coerce_int(value)
    elif spec.kind is FieldKind.FLOAT:
        coerced, ok = _coerce_float(value)
    elif spec.kind is FieldKind.BOOL:
        coerced, ok = _coerce_bool(value)
    elif spec.kind is FieldKind.STR_LIST and isinstance(value, (list, tuple)):
        items = [_coerce_str(item) for item in value]
        ok = all(item_ok for _, item_ok in items)
        coerced = [text for text, _ in items if text]
    else:
        ok = False
        coerced = None
    if not ok:
        raise ValueError(f"cannot coerce {value!r} to {spec.kind.value} for field {spec.name!r}")
    if isinstance(coerced, str) and spec.choices is not None:
        if spec.case == "upper":
            coerced = coerced.upper()
        elif spec.case == "lower":
            coerced = coerced.lower()
    return coerced


def _coerce_str(value: object) -> tuple[str | None, bool]:
    if value is None:
        return None, True
    if isinstance(value, str):
        return value.strip(), True
    if isinstance(value, bool):
        return ("true" if value else "false"), True
    if isinstance(value, int):
        return str(value), True
    if isinstance(value, float) and math.isfinite(value):
        return str(value), True
    return None, False


def _coerce_int(value: object) -> tuple[int | None, bool]:
    if isinstance(value, bool):
        return None, False
    if isinstance(value, int):
        return value, True
    if isinstance(value, float) and value.is_integer():
        return int(value), True
    if isinstance(value, str):
        try:
            return int(value.strip()), True
        except ValueError:
            return None, False
    return None, False


def _coerce_float(value: object) -> tuple[float | None, bool]:
    if isinstance(value, bool):
        return None, False
    if isinstance(value, (int, float)):
        number = float(value)
        return (number, True) if math.isfinite(number) else (None, False)
    if isinstance(value, str):
        text = value.strip().removesuffix("%").strip()
        try:
            number = float(text)
        except ValueError:
            return None, False
        return (number, True) if math.isfinite(number) else (None, False)
    return None, False


def _coerce_bool(value: object) -> tuple[bool | None, bool]:
    if isinstance(value, bool):
        return value, True
    if isinstance(value, int) and value in (0, 1):
        return bool(value), True
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _BOOLEAN_TRUE:
            return True, True
        if lowered in _BOOLEAN_FALSE:
            return False, True
    return None, False


__all__ = ["Candidate", "NormalizationResult", "Normalizer", "coerce_value"]
