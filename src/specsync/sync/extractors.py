"""Extractor contract and the built-in extractors.

An extractor scans a project for one domain and returns a :class:`FactSet`.
It may be a plain or an ``async`` callable; the pipeline runs synchronous
extractors in a worker thread and bounds every scan with a timeout.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Mapping, Sequence
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

import yaml

from specsync.constants import FACTS_DIR
from specsync.domain.models import ExtractionStatus, FactSet, RawCollection

FACT_FILE_SUFFIXES: Final[tuple[str, ...]] = (".yaml", ".yml", ".json")


class ExtractionError(RuntimeError):
    """An extractor could not produce facts for its domain."""

    def __init__(self, domain: str, message: str) -> None:
        self.domain = domain
        super().__init__(f"{domain}: {message}")


@runtime_checkable
class Extractor(Protocol):
    """Produce one domain's facts for ``project_root``."""

    def scan(
        self, project_root: Path, domain_config: Mapping[str, object]
    ) -> FactSet | Awaitable[FactSet]: ...


class StaticExtractor:
    """Return a fixed :class:`FactSet`; used for pre-computed or hand-fed facts."""

    def __init__(self, fact_set: FactSet) -> None:
        self._fact_set = fact_set

    @property
    def domain(self) -> str:
        return self._fact_set.domain

    def scan(self, project_root: Path, domain_config: Mapping[str, object]) -> FactSet:
        return self._fact_set


class FactFileExtractor:
    """Read pre-computed facts from ``<facts_dir>/<domain>.{yaml,yml,json}``.

    The file holds either a bare list (or name-keyed mapping) of facts, or an
    object with ``records`` plus optional ``extraction_run`` and ``status``.
    """

    def __init__(self, domain: str, *, facts_dir: Path | str | None = None) -> None:
        self._domain = domain
        self._facts_dir = Path(facts_dir) if facts_dir is not None else None

    @property
    def domain(self) -> str:
        return self._domain

    def locate(self, project_root: Path, domain_config: Mapping[str, object]) -> Path:
        base = self._facts_dir
        if base is None:
            configured = domain_config.get("facts_dir")
            base = Path(configured) if isinstance(configured, str) else Path(FACTS_DIR)
        if not base.is_absolute():
            base = project_root / base
        for suffix in FACT_FILE_SUFFIXES:
            candidate = base / f"{self._domain}{suffix}"
            if candidate.is_file():
                return candidate
        raise ExtractionError(self._domain, f"no fact file under {base.as_posix()}")

    def scan(self, project_root: Path, domain_config: Mapping[str, object]) -> FactSet:
        path = self.locate(Path(project_root), domain_config)
        try:
            with path.open("r", encoding="utf-8") as handle:
                if path.suffix == ".json":
                    payload = json.load(handle)
                else:
                    payload = yaml.safe_load(handle)
        except OSError as exc:
            raise ExtractionError(self._domain, f"failed to read {path.as_posix()}: {exc}") from exc
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            message = f"invalid facts in {path.as_posix()}: {exc}"
            raise ExtractionError(self._domain, message) from exc

        return self._fact_set(path, payload)

    def _fact_set(self, path: Path, payload: object) -> FactSet:
        if payload is None:
            return FactSet(domain=self._domain, records=())
        if isinstance(payload, Mapping) and "records" in payload:
            records = payload.get("records")
            run = payload.get("extraction_run")
            raw_status = payload.get("status", ExtractionStatus.COMPLETE.value)
            try:
                status = ExtractionStatus(raw_status)
            except ValueError:
                raise ExtractionError(
                    self._domain, f"{path.as_posix()}: unknown extraction status {raw_status!r}"
                ) from None
            if status is ExtractionStatus.FAILED:
                return FactSet.failed(self._domain, f"fact file marked failed: {path.as_posix()}")
            return FactSet(
                domain=self._domain,
                records=_collection(self._domain, path, records),
                extraction_run=str(run) if run is not None else None,
                status=status,
            )
        return FactSet(domain=self._domain, records=_collection(self._domain, path, payload))


def _collection(domain: str, path: Path, value: object) -> RawCollection:
    if value is None:
        return ()
    if isinstance(value, Mapping):
        return {str(key): item for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return list(value)  # type: ignore[arg-type]
    raise ExtractionError(domain, f"{path.as_posix()}: facts must be a list or mapping")


__all__ = [
    "FACT_FILE_SUFFIXES",
    "ExtractionError",
    "Extractor",
    "FactFileExtractor",
    "StaticExtractor",
]
