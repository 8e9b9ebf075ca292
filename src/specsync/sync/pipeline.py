"""
specsync: domain pipelines and the multi-domain sync runner

File: src/specsync/sync/pipeline.py

Purpose
- Drive one domain through extract, normalize, validate, merge and write.
- Run all enabled domains of a project, staged so referenced domains finish first.

Functional requirements
- A timed-out, failing or crashing extractor degrades to a failed, empty fact set: the
  domain's records turn stale and nothing is retired.
- A version conflict re-reads the stored document, re-merges and retries up to
  the configured limit.
- Every enabled domain gets a report; one domain's failure never blocks another.
- Cancellation is honoured between stages; the stored document stays
  authoritative unless the write itself completed.

Non-functional requirements
- Bounded concurrency within a stage via :class:`~specsync.utils.concurrency.WorkerPool`.
- Store reads, merging and lock-guarded writes run in worker threads so a
  domain waiting on a lock never stalls its siblings.
- Decision events are logged with ``run_id``/``domain``/``attempt`` correlation.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

from specsync.config.loader import load_config
from specsync.config.schema import default_config
from specsync.constants import DEFAULT_CONFLICT_RETRY_LIMIT, DEFAULT_EXTRACTOR_TIMEOUT_SECONDS
from specsync.domain.models import (
    CoercionNote,
    DiffReport,
    ExtractionStatus,
    FactSet,
    JSONValue,
    QuarantinedRecord,
    SpecificationDocument,
    ValidationWarning,
)
from specsync.domain.schemas import schema_for
from specsync.merge.engine import MergeEngine, MergeResult
from specsync.normalization.normalizer import Candidate, Normalizer
from specsync.observability.logging import correlation_scope, setup_logging, shutdown_logging
from specsync.persistence.store import ConflictError, FileDocumentStore
from specsync.persistence.writer import Writer
from specsync.sync.extractors import ExtractionError, Extractor, FactFileExtractor
from specsync.utils.concurrency import (
    CancellationToken,
    WorkerPool,
    call_maybe_async,
    run_with_timeout,
)
from specsync.validation.graph import IdentityGraph
from specsync.validation.validator import ReferenceIndex, ValidationResult, Validator


class DomainRunStatus(StrEnum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class DomainRunReport:
    """Observable outcome of one domain's pipeline run."""

    domain: str
    status: DomainRunStatus
    extraction_status: ExtractionStatus | None = None
    diff: DiffReport | None = None
    quarantined: tuple[QuarantinedRecord, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()
    notes: tuple[CoercionNote, ...] = ()
    document_version: int | None = None
    attempts: int = 0
    error: str | None = None
    document: SpecificationDocument | None = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status in (DomainRunStatus.WRITTEN, DomainRunStatus.UNCHANGED)

    def to_dict(self) -> dict[str, JSONValue]:
        diff = self.diff or DiffReport(domain=self.domain)
        return {
            "domain": self.domain,
            "status": self.status.value,
            "extraction_status": (
                self.extraction_status.value if self.extraction_status is not None else None
            ),
            "added": list(diff.added),
            "refreshed": list(diff.refreshed),
            "stale": list(diff.stale),
            "archived": list(diff.archived),
            "retired": list(diff.retired),
            "conflicted": list(diff.conflicted),
            "quarantined": [
                {"identity": entry.identity, "reason": entry.reason.value}
                for entry in self.quarantined
            ],
            "warnings": [warning.to_dict() for warning in self.warnings],
            "document_version": self.document_version,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class SyncReport:
    run_id: str
    domains: tuple[DomainRunReport, ...]
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.cancelled and all(report.ok for report in self.domains)

    def report_for(self, domain: str) -> DomainRunReport:
        for report in self.domains:
            if report.domain == domain:
                return report
        raise KeyError(domain)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "cancelled": self.cancelled,
            "domains": [report.to_dict() for report in self.domains],
        }


class DomainPipeline:
    """Extractor -> Normalizer -> Validator -> MergeEngine -> Writer for one domain."""

    def __init__(
        self,
        domain: str,
        extractor: Extractor,
        store: FileDocumentStore,
        *,
        project_root: Path | str,
        domain_config: Mapping[str, object] | None = None,
        extractor_timeout_seconds: float = DEFAULT_EXTRACTOR_TIMEOUT_SECONDS,
        conflict_retry_limit: int = DEFAULT_CONFLICT_RETRY_LIMIT,
        retire_missing: bool = True,
        check_file_references: bool = True,
        logger: Any | None = None,
    ) -> None:
        if conflict_retry_limit <= 0:
            raise ValueError("conflict_retry_limit must be > 0")
        if extractor_timeout_seconds <= 0:
            raise ValueError("extractor_timeout_seconds must be > 0")
        schema = schema_for(domain)
        self._domain = domain
        self._extractor = extractor
        self._store = store
        self._project_root = Path(project_root)
        self._domain_config = dict(domain_config or {})
        self._timeout = extractor_timeout_seconds
        self._retry_limit = conflict_retry_limit
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._normalizer = Normalizer(schema, logger=logger)
        self._validator = Validator(
            schema, check_file_references=check_file_references, logger=logger
        )
        self._merge = MergeEngine(schema, retire_missing=retire_missing, logger=logger)
        self._writer = Writer(store, project_root=self._project_root, logger=logger)

    @property
    def domain(self) -> str:
        return self._domain

    async def run(
        self,
        reference_index: ReferenceIndex | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> DomainRunReport:
        """Synchronize the domain; raises on fatal errors and on cancellation."""

        token = cancel_token or CancellationToken()
        if reference_index is None:
            reference_index = await asyncio.to_thread(self._stored_index)

        with correlation_scope(domain=self._domain):
            token.raise_if_cancelled()
            fact_set = await self._extract(token)

            with correlation_scope(extraction_run=fact_set.run_id):
                token.raise_if_cancelled()
                normalized = self._normalizer.normalize(fact_set)
                allow_retire = fact_set.allows_retirement

                attempt = 0
                while True:
                    attempt += 1
                    with correlation_scope(attempt=str(attempt)):
                        token.raise_if_cancelled()
                        previous = await asyncio.to_thread(self._store.read, self._domain)
                        validation, merged = await asyncio.to_thread(
                            self._reconcile,
                            normalized.candidates,
                            previous,
                            allow_retire,
                            reference_index,
                        )
                        token.raise_if_cancelled()
                        try:
                            outcome = await asyncio.to_thread(
                                self._writer.write,
                                merged.document,
                                previous.document_version,
                                reference_index=reference_index,
                            )
                        except ConflictError as exc:
                            if attempt >= self._retry_limit:
                                self._logger.error(
                                    "conflict_retries_exhausted",
                                    domain=self._domain,
                                    attempts=attempt,
                                    error=str(exc),
                                )
                                raise
                            self._logger.warning(
                                "document_conflict_retry",
                                domain=self._domain,
                                attempt=attempt,
                                error=str(exc),
                            )
                            continue

                    report = DomainRunReport(
                        domain=self._domain,
                        status=(
                            DomainRunStatus.WRITTEN
                            if outcome.written
                            else DomainRunStatus.UNCHANGED
                        ),
                        extraction_status=fact_set.status,
                        diff=merged.diff,
                        quarantined=validation.quarantined,
                        warnings=(*validation.warnings, *outcome.warnings),
                        notes=normalized.notes,
                        document_version=outcome.document_version,
                        attempts=attempt,
                        document=outcome.document,
                    )
                    self._logger.info(
                        "domain_synced",
                        domain=self._domain,
                        status=report.status.value,
                        document_version=report.document_version,
                        attempts=attempt,
                    )
                    return report

    def _stored_index(self) -> ReferenceIndex:
        return ReferenceIndex.from_documents(
            self._store.read(domain) for domain in self._store.domains() if domain != self._domain
        )

    def _reconcile(
        self,
        candidates: Sequence[Candidate],
        previous: SpecificationDocument,
        allow_retire: bool,
        reference_index: ReferenceIndex,
    ) -> tuple[ValidationResult, MergeResult]:
        validation = self._validator.validate(
            candidates,
            reference_index,
            persisted=self._merge.retained_if_absent(previous, allow_retire),
            project_root=self._project_root,
        )
        merged = self._merge.merge(
            validation.accepted,
            previous,
            allow_retire,
            held=validation.quarantined_identities,
            reference_index=reference_index,
        )
        return validation, merged

    async def _extract(self, token: CancellationToken) -> FactSet:
        try:
            fact_set = await run_with_timeout(
                call_maybe_async(self._extractor.scan, self._project_root, self._domain_config),
                self._timeout,
                token,
            )
        except TimeoutError:
            reason = f"extractor timed out after {self._timeout}s"
            self._logger.warning("extraction_failed", domain=self._domain, error=reason)
            return FactSet.failed(self._domain, reason)
        except ExtractionError as exc:
            self._logger.warning("extraction_failed", domain=self._domain, error=str(exc))
            return FactSet.failed(self._domain, str(exc))
        except Exception as exc:  # noqa: BLE001
            reason = f"{type(exc).__name__}: {exc}"
            self._logger.warning(
                "extraction_failed",
                domain=self._domain,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return FactSet.failed(self._domain, reason)

        if not isinstance(fact_set, FactSet) or fact_set.domain != self._domain:
            reason = f"extractor returned facts for {getattr(fact_set, 'domain', None)!r}"
            self._logger.warning("extraction_failed", domain=self._domain, error=reason)
            return FactSet.failed(self._domain, reason)
        self._logger.info(
            "facts_extracted",
            domain=self._domain,
            status=fact_set.status.value,
            run_id=fact_set.run_id,
        )
        return fact_set


class SyncRunner:
    """Run every enabled domain of one project, staged by cross-domain references."""

    def __init__(
        self,
        project_root: Path | str,
        *,
        config: Mapping[str, Any] | None = None,
        extractors: Mapping[str, Extractor] | None = None,
        store: FileDocumentStore | None = None,
        logger: Any | None = None,
    ) -> None:
        self._project_root = Path(project_root)
        self._config: Mapping[str, Any] = config if config is not None else default_config()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        store_cfg = self._config["store"]
        sync_cfg = self._config["sync"]
        self._store = store or FileDocumentStore(
            self._resolve(store_cfg["documents_dir"]),
            lock_timeout_seconds=float(store_cfg["lock_timeout_seconds"]),
            stale_lock_seconds=float(store_cfg["stale_lock_seconds"]),
            logger=logger,
        )
        self._facts_dir = self._resolve(sync_cfg["facts_dir"])
        self._domains: tuple[str, ...] = tuple(dict.fromkeys(sync_cfg["domains"]))
        supplied = dict(extractors or {})
        self._extractors: dict[str, Extractor] = {
            domain: supplied.get(domain) or FactFileExtractor(domain, facts_dir=self._facts_dir)
            for domain in self._domains
        }

    @property
    def store(self) -> FileDocumentStore:
        return self._store

    @property
    def domains(self) -> tuple[str, ...]:
        return self._domains

    def stages(self) -> tuple[tuple[str, ...], ...]:
        """Domains grouped so every domain comes after the domains it hard-references."""

        graph = IdentityGraph(nodes=self._domains)
        enabled = set(self._domains)
        for domain in self._domains:
            for target in sorted(schema_for(domain).hard_domains()):
                if target in enabled:
                    graph.add_edge(domain, target)
        return graph.topological_layers()

    def pipeline(self, domain: str) -> DomainPipeline:
        sync_cfg = self._config["sync"]
        return DomainPipeline(
            domain,
            self._extractors[domain],
            self._store,
            project_root=self._project_root,
            domain_config={"facts_dir": self._facts_dir.as_posix()},
            extractor_timeout_seconds=float(sync_cfg["extractor_timeout_seconds"]),
            conflict_retry_limit=int(sync_cfg["conflict_retry_limit"]),
            retire_missing=bool(self._config["merge"]["retire_missing"]),
            check_file_references=bool(self._config["validation"]["check_file_references"]),
            logger=self._logger,
        )

    async def run(
        self,
        *,
        run_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> SyncReport:
        token = cancel_token or CancellationToken()
        resolved_run_id = run_id or uuid.uuid4().hex
        max_concurrency = int(self._config["sync"]["max_concurrent_domains"])
        reports: dict[str, DomainRunReport] = {}
        cancelled = False

        with correlation_scope(run_id=resolved_run_id):
            reference_index = ReferenceIndex.from_documents(
                await asyncio.to_thread(self._stored_documents)
            )
            self._logger.info(
                "sync_started", run_id=resolved_run_id, domains=list(self._domains)
            )

            for stage in self.stages():
                if token.is_cancelled:
                    cancelled = True
                    break
                try:
                    stage_reports = await self._run_stage(
                        stage, reference_index, token, max_concurrency
                    )
                except asyncio.CancelledError:
                    if not token.is_cancelled:
                        raise
                    cancelled = True
                    break
                for report in stage_reports:
                    reports[report.domain] = report
                    if report.document is not None:
                        reference_index.register(report.domain, report.document.records)

            if token.is_cancelled:
                cancelled = True
            ordered = tuple(
                reports.get(domain)
                or DomainRunReport(domain=domain, status=DomainRunStatus.CANCELLED)
                for domain in self._domains
            )
            self._logger.info(
                "sync_finished",
                run_id=resolved_run_id,
                cancelled=cancelled,
                failed=[
                    report.domain
                    for report in ordered
                    if report.status is DomainRunStatus.FAILED
                ],
            )
        return SyncReport(run_id=resolved_run_id, domains=ordered, cancelled=cancelled)

    async def _run_stage(
        self,
        stage: Sequence[str],
        reference_index: ReferenceIndex,
        token: CancellationToken,
        max_concurrency: int,
    ) -> tuple[DomainRunReport, ...]:
        pool: WorkerPool[DomainRunReport] = WorkerPool(
            max_concurrency=min(max_concurrency, len(stage)),
            cancel_token=token,
        )
        outcomes: list[DomainRunReport] = []
        async for outcome in pool.run(
            self._run_domain(domain, reference_index, token) for domain in stage
        ):
            outcomes.append(outcome)
        order = {domain: index for index, domain in enumerate(stage)}
        outcomes.sort(key=lambda report: order[report.domain])
        return tuple(outcomes)

    async def _run_domain(
        self, domain: str, reference_index: ReferenceIndex, token: CancellationToken
    ) -> DomainRunReport:
        try:
            return await self.pipeline(domain).run(reference_index, cancel_token=token)
        except asyncio.CancelledError:
            if not token.is_cancelled:
                raise
            return DomainRunReport(domain=domain, status=DomainRunStatus.CANCELLED)
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                "domain_sync_failed",
                domain=domain,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return DomainRunReport(
                domain=domain,
                status=DomainRunStatus.FAILED,
                error=f"{type(exc).__name__}: {exc}",
            )

    def _stored_documents(self) -> list[SpecificationDocument]:
        documents: list[SpecificationDocument] = []
        for domain in self._store.domains():
            try:
                documents.append(self._store.read(domain))
            except ValueError as exc:
                self._logger.warning("stored_document_unreadable", domain=domain, error=str(exc))
        return documents

    def _resolve(self, raw: str) -> Path:
        path = Path(raw)
        return path if path.is_absolute() else self._project_root / path


async def run_sync(
    project_root: Path | str,
    config: Mapping[str, Any] | None = None,
    extractors: Mapping[str, Extractor] | None = None,
    *,
    config_path: Path | str | None = None,
    profile: str | None = None,
    run_id: str | None = None,
    cancel_token: CancellationToken | None = None,
    configure_logging: bool = False,
) -> SyncReport:
    """Synchronize every enabled domain of ``project_root`` once.

    Without an explicit ``config`` the effective config is loaded from
    ``config_path`` or ``<project_root>/specsync.toml``, with ``profile``
    applied. With ``configure_logging`` the run writes its JSON-lines log under
    ``<observability.log_dir>/<run_id>/``.
    """

    if config is not None and (config_path is not None or profile is not None):
        raise ValueError("pass either config or config_path/profile, not both")
    effective = (
        config
        if config is not None
        else load_config(config_path, profile=profile, search_dir=project_root)
    )

    resolved_run_id = run_id or uuid.uuid4().hex
    run_logger = None
    if configure_logging:
        observability = dict(effective["observability"])
        log_dir = Path(str(observability["log_dir"]))
        if not log_dir.is_absolute():
            log_dir = Path(project_root) / log_dir
        run_logger = setup_logging(observability, run_id=resolved_run_id, log_dir=log_dir)
    try:
        runner = SyncRunner(project_root, config=effective, extractors=extractors)
        return await runner.run(run_id=resolved_run_id, cancel_token=cancel_token)
    finally:
        if run_logger is not None:
            shutdown_logging()


__all__ = [
    "DomainPipeline",
    "DomainRunReport",
    "DomainRunStatus",
    "SyncReport",
    "SyncRunner",
    "run_sync",
]
