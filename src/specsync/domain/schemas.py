"""
specsync: closed per-domain record schemas.

File: src/specsync/domain/schemas.py

Purpose
- Declare, for every specification domain, its fields, closed enumerations,
  defaults, curator-owned fields, identity rule and cross-references.

Functional requirements
- Enum sets are closed: a value outside the set is invalid, never remapped.
- Identities are derived only from stable fields (name, slug, method+path, ...).
- Curator-owned fields are flagged ``curator``; those an extractor may still
  populate until a curator sets them are also flagged ``derivable``.

Non-functional requirements
- Pure data plus small pure helpers; no I/O.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Final, Literal

from specsync.constants import (
    DOMAIN_API_SURFACE,
    DOMAIN_CRITICAL_PATHS,
    DOMAIN_DATABASE_SCHEMA,
    DOMAIN_DEPENDENCIES,
    DOMAIN_DESIGN_TOKENS,
    DOMAIN_ENVIRONMENT,
    DOMAIN_FEATURES,
    DOMAIN_ISSUES,
    DOMAIN_LESSONS,
)
from specsync.domain.models import CrossReference, JSONValue
from specsync.utils.hashing import short_digest

_NON_SLUG = re.compile(r"[^a-z0-9]+")

PRIORITIES: Final[frozenset[str]] = frozenset({"critical", "high", "medium", "low"})
SEVERITIES: Final[frozenset[str]] = frozenset({"critical", "high", "medium", "low", "info"})
ECOSYSTEMS: Final[frozenset[str]] = frozenset(
    {"npm", "pypi", "cargo", "go", "maven", "rubygems", "composer", "nuget", "other"}
)
DEPENDENCY_KINDS: Final[frozenset[str]] = frozenset(
    {"runtime", "development", "peer", "optional", "build"}
)
HTTP_METHODS: Final[frozenset[str]] = frozenset(
    {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}
)
FEATURE_CATEGORIES: Final[frozenset[str]] = frozenset(
    {"core", "auth", "data", "ui", "integration", "infrastructure", "analytics", "admin", "other"}
)
FEATURE_STATUSES: Final[frozenset[str]] = frozenset(
    {"planned", "in_progress", "implemented", "deprecated"}
)
ISSUE_TYPES: Final[frozenset[str]] = frozenset(
    {
        "bug",
        "security",
        "performance",
        "accessibility",
        "style",
        "maintainability",
        "documentation",
        "testing",
    }
)
LESSON_CATEGORIES: Final[frozenset[str]] = frozenset(
    {"architecture", "testing", "performance", "security", "process", "tooling", "data", "ui"}
)
TOKEN_CATEGORIES: Final[frozenset[str]] = frozenset(
    {"color", "typography", "spacing", "radius", "shadow", "breakpoint", "motion", "z_index"}
)
TOKEN_SOURCES: Final[frozenset[str]] = frozenset(
    {"css_variable", "theme_config", "computed_style", "tailwind"}
)


class FieldKind(StrEnum):
    STR = "str"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    STR_LIST = "str_list"
    COLUMNS = "columns"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    kind: FieldKind
    required: bool = False
    default: JSONValue = None
    choices: frozenset[str] | None = None
    case: Literal["upper", "lower"] | None = None
    curator: bool = False
    derivable: bool = False
    aliases: tuple[str, ...] = ()

    def default_value(self) -> JSONValue:
        if self.default is None and self.kind in (FieldKind.STR_LIST, FieldKind.COLUMNS):
            return []
        return copy.deepcopy(self.default)


@dataclass(frozen=True, slots=True)
class ReferenceSpec:
    """A reference held by ``field``.

    ``identity`` references name target identities; ``foreign_key`` references
    live inside table columns; ``path`` references point at files of the
    scanned project and are always soft.
    """

    field: str
    target_domain: str | None
    kind: Literal["identity", "foreign_key", "path"] = "identity"
    hard: bool = True
    canonical: Callable[[str], str] | None = None


@dataclass(frozen=True, slots=True)
class DomainSchema:
    domain: str
    fields: tuple[FieldSpec, ...]
    identity_rule: Callable[[Mapping[str, JSONValue]], str | None]
    references: tuple[ReferenceSpec, ...] = ()
    dependency_fields: tuple[str, ...] = ()
    reverse_dependency_fields: tuple[str, ...] = ()
    archive_flag: str | None = None
    name_field: str = "name"

    def field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    @property
    def curator_specs(self) -> tuple[FieldSpec, ...]:
        return tuple(spec for spec in self.fields if spec.curator)

    @property
    def is_archivable(self) -> bool:
        return self.archive_flag is not None

    def alias_map(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for spec in self.fields:
            mapping[spec.name] = spec.name
            for alias in spec.aliases:
                mapping[alias] = spec.name
        return mapping

    def identity_for(self, payload: Mapping[str, JSONValue]) -> str | None:
        identity = self.identity_rule(payload)
        if identity is None:
            return None
        identity = identity.strip()
        return identity or None

    def hard_domains(self) -> frozenset[str]:
        """Other domains this schema holds hard references into."""

        return frozenset(
            ref.target_domain
            for ref in self.references
            if ref.hard and ref.target_domain is not None and ref.target_domain != self.domain
        )

    def iter_references(
        self, identity: str, payload: Mapping[str, JSONValue]
    ) -> Iterator[CrossReference]:
        for ref in self.references:
            if ref.kind == "foreign_key":
                for column in _as_list(payload.get(ref.field)):
                    if not isinstance(column, Mapping):
                        continue
                    target = column.get("foreign_key")
                    if not isinstance(target, Mapping):
                        continue
                    table = target.get("table")
                    column_name = target.get("column")
                    if isinstance(table, str) and isinstance(column_name, str):
                        yield CrossReference(
                            from_domain=self.domain,
                            from_id=identity,
                            field=f"{ref.field}.{column.get('name')}.foreign_key",
                            to_domain=ref.target_domain or self.domain,
                            to_id=f"{table}.{column_name}",
                            hard=ref.hard,
                        )
                continue

            for target in _as_list(payload.get(ref.field)):
                if not isinstance(target, str) or not target:
                    continue
                yield CrossReference(
                    from_domain=self.domain,
                    from_id=identity,
                    field=ref.field,
                    to_domain=ref.target_domain or "",
                    to_id=target,
                    hard=ref.hard,
                )

    def dependency_edges(
        self, identity: str, payload: Mapping[str, JSONValue]
    ) -> Iterator[tuple[str, str]]:
        """Yield ``(dependent, dependency)`` edges; ``blocks`` edges are reversed."""

        for field_name in self.dependency_fields:
            for target in _as_list(payload.get(field_name)):
                if isinstance(target, str) and target:
                    yield (identity, target)
        for field_name in self.reverse_dependency_fields:
            for target in _as_list(payload.get(field_name)):
                if isinstance(target, str) and target:
                    yield (target, identity)


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumerics to ``-`` and trim separators."""

    return _NON_SLUG.sub("-", value.strip().lower()).strip("-")


def _as_list(value: object) -> list[object]:
    if isinstance(value, list):
        return value
    return []


def _text(payload: Mapping[str, JSONValue], key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _slug_identity(payload: Mapping[str, JSONValue]) -> str | None:
    slug = _text(payload, "slug")
    if slug is not None:
        return slugify(slug) or None
    name = _text(payload, "name")
    return (slugify(name) or None) if name is not None else None


def _joined(*keys: str, sep: str) -> Callable[[Mapping[str, JSONValue]], str | None]:
    def rule(payload: Mapping[str, JSONValue]) -> str | None:
        parts = [_text(payload, key) for key in keys]
        if any(part is None for part in parts):
            return None
        return sep.join(part for part in parts if part is not None)

    return rule


def _digest_identity(
    prefix: str, *keys: str
) -> Callable[[Mapping[str, JSONValue]], str | None]:
    def rule(payload: Mapping[str, JSONValue]) -> str | None:
        explicit = _text(payload, "id")
        if explicit is not None:
            return explicit
        title = _text(payload, "title")
        if title is None:
            return None
        return f"{prefix}-{short_digest(*(payload.get(key) for key in keys), length=10)}"

    return rule


_COVERAGE = FieldSpec("coverage", FieldKind.FLOAT, curator=True, derivable=True)

DEPENDENCIES_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_DEPENDENCIES,
    fields=(
        FieldSpec("name", FieldKind.STR, required=True, aliases=("package",)),
        FieldSpec(
            "ecosystem",
            FieldKind.STR,
            required=True,
            choices=ECOSYSTEMS,
            case="lower",
            aliases=("manager", "registry"),
        ),
        FieldSpec("version", FieldKind.STR, required=True),
        FieldSpec(
            "kind",
            FieldKind.STR,
            default="runtime",
            choices=DEPENDENCY_KINDS,
            case="lower",
            aliases=("scope", "type"),
        ),
        FieldSpec("license", FieldKind.STR),
        FieldSpec(
            "vulnerability_count",
            FieldKind.INT,
            default=0,
            aliases=("vulnerabilities", "vulnerabilityCount"),
        ),
        FieldSpec("notes", FieldKind.STR, curator=True),
    ),
    identity_rule=_joined("ecosystem", "name", sep=":"),
)

DATABASE_SCHEMA_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_DATABASE_SCHEMA,
    fields=(
        FieldSpec("name", FieldKind.STR, required=True, aliases=("table", "tableName")),
        FieldSpec("columns", FieldKind.COLUMNS, required=True),
        FieldSpec("indexes", FieldKind.STR_LIST),
        FieldSpec("migration", FieldKind.STR, aliases=("migrationFile",)),
    ),
    identity_rule=lambda payload: _text(payload, "name"),
    references=(ReferenceSpec("columns", DOMAIN_DATABASE_SCHEMA, kind="foreign_key"),),
)

API_SURFACE_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_API_SURFACE,
    fields=(
        FieldSpec("method", FieldKind.STR, required=True, choices=HTTP_METHODS, case="upper"),
        FieldSpec("path", FieldKind.STR, required=True, aliases=("route", "url")),
        FieldSpec("handler", FieldKind.STR),
        FieldSpec("auth_required", FieldKind.BOOL, default=False, aliases=("authRequired", "auth")),
        FieldSpec("tags", FieldKind.STR_LIST),
    ),
    identity_rule=_joined("method", "path", sep=" "),
)

ENVIRONMENT_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_ENVIRONMENT,
    fields=(
        FieldSpec("name", FieldKind.STR, required=True, aliases=("key", "variable")),
        FieldSpec("required", FieldKind.BOOL, default=False),
        FieldSpec("default", FieldKind.STR, aliases=("defaultValue",)),
        FieldSpec("secret", FieldKind.BOOL, default=False, aliases=("sensitive",)),
        FieldSpec("description", FieldKind.STR, default=""),
        FieldSpec("used_in", FieldKind.STR_LIST, aliases=("usedIn", "files")),
    ),
    identity_rule=lambda payload: _text(payload, "name"),
)

FEATURES_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_FEATURES,
    fields=(
        FieldSpec("name", FieldKind.STR, required=True, aliases=("title",)),
        FieldSpec("slug", FieldKind.STR),
        FieldSpec(
            "category", FieldKind.STR, default="other", choices=FEATURE_CATEGORIES, case="lower"
        ),
        FieldSpec(
            "status", FieldKind.STR, default="implemented", choices=FEATURE_STATUSES, case="lower"
        ),
        FieldSpec("priority", FieldKind.STR, default="medium", choices=PRIORITIES, case="lower"),
        FieldSpec("depends_on", FieldKind.STR_LIST, aliases=("dependsOn", "dependencies")),
        FieldSpec("blocks", FieldKind.STR_LIST),
        FieldSpec("files", FieldKind.STR_LIST),
        _COVERAGE,
    ),
    identity_rule=_slug_identity,
    references=(
        ReferenceSpec("depends_on", DOMAIN_FEATURES, canonical=slugify),
        ReferenceSpec("blocks", DOMAIN_FEATURES, canonical=slugify),
    ),
    dependency_fields=("depends_on",),
    reverse_dependency_fields=("blocks",),
)

CRITICAL_PATHS_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_CRITICAL_PATHS,
    fields=(
        FieldSpec("name", FieldKind.STR, required=True, aliases=("title",)),
        FieldSpec("slug", FieldKind.STR),
        FieldSpec("priority", FieldKind.STR, default="medium", choices=PRIORITIES, case="lower"),
        FieldSpec("steps", FieldKind.STR_LIST),
        FieldSpec("files", FieldKind.STR_LIST),
        FieldSpec("features", FieldKind.STR_LIST),
        _COVERAGE,
    ),
    identity_rule=_slug_identity,
    references=(
        ReferenceSpec("files", None, kind="path", hard=False),
        ReferenceSpec("features", DOMAIN_FEATURES, canonical=slugify),
    ),
)

ISSUES_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_ISSUES,
    fields=(
        FieldSpec("id", FieldKind.STR),
        FieldSpec("title", FieldKind.STR, required=True),
        FieldSpec(
            "issue_type",
            FieldKind.STR,
            required=True,
            choices=ISSUE_TYPES,
            case="lower",
            aliases=("issueType", "type"),
        ),
        FieldSpec("severity", FieldKind.STR, default="medium", choices=SEVERITIES, case="lower"),
        FieldSpec("file", FieldKind.STR, aliases=("path",)),
        FieldSpec("line", FieldKind.INT),
        FieldSpec("description", FieldKind.STR, default=""),
        FieldSpec("resolved", FieldKind.BOOL, default=False, curator=True),
        FieldSpec("resolved_at", FieldKind.STR, curator=True, aliases=("resolvedAt",)),
    ),
    identity_rule=_digest_identity("ISS", "issue_type", "file", "title"),
    archive_flag="resolved",
    name_field="id",
)

LESSONS_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_LESSONS,
    fields=(
        FieldSpec("id", FieldKind.STR),
        FieldSpec("title", FieldKind.STR, required=True),
        FieldSpec(
            "category", FieldKind.STR, required=True, choices=LESSON_CATEGORIES, case="lower"
        ),
        FieldSpec("severity", FieldKind.STR, default="info", choices=SEVERITIES, case="lower"),
        FieldSpec("description", FieldKind.STR, default=""),
        FieldSpec(
            "is_addressed", FieldKind.BOOL, default=False, curator=True, aliases=("isAddressed",)
        ),
        FieldSpec("addressed_at", FieldKind.STR, curator=True, aliases=("addressedAt",)),
    ),
    identity_rule=_digest_identity("LSN", "category", "title"),
    archive_flag="is_addressed",
    name_field="id",
)

DESIGN_TOKENS_SCHEMA: Final[DomainSchema] = DomainSchema(
    domain=DOMAIN_DESIGN_TOKENS,
    fields=(
        FieldSpec("name", FieldKind.STR, required=True, aliases=("token",)),
        FieldSpec("category", FieldKind.STR, required=True, choices=TOKEN_CATEGORIES, case="lower"),
        FieldSpec("value", FieldKind.STR, required=True),
        FieldSpec(
            "source", FieldKind.STR, default="css_variable", choices=TOKEN_SOURCES, case="lower"
        ),
    ),
    identity_rule=_joined("category", "name", sep="."),
)

SCHEMAS: Final[Mapping[str, DomainSchema]] = {
    schema.domain: schema
    for schema in (
        DEPENDENCIES_SCHEMA,
        DATABASE_SCHEMA_SCHEMA,
        API_SURFACE_SCHEMA,
        ENVIRONMENT_SCHEMA,
        FEATURES_SCHEMA,
        CRITICAL_PATHS_SCHEMA,
        ISSUES_SCHEMA,
        LESSONS_SCHEMA,
        DESIGN_TOKENS_SCHEMA,
    )
}


def schema_for(domain: str) -> DomainSchema:
    try:
        return SCHEMAS[domain]
    except KeyError:
        raise KeyError(f"unknown specification domain: {domain!r}") from None


__all__ = [
    "API_SURFACE_SCHEMA",
    "CRITICAL_PATHS_SCHEMA",
    "DATABASE_SCHEMA_SCHEMA",
    "DEPENDENCIES_SCHEMA",
    "DESIGN_TOKENS_SCHEMA",
    "ENVIRONMENT_SCHEMA",
    "FEATURES_SCHEMA",
    "ISSUES_SCHEMA",
    "LESSONS_SCHEMA",
    "SCHEMAS",
    "DomainSchema",
    "FieldKind",
    "FieldSpec",
    "ReferenceSpec",
    "schema_for",
    "slugify",
]
