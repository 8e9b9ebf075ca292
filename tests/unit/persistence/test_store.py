"""
specsync: unit tests for the file-backed document store

File: tests/unit/persistence/test_store.py

Purpose
- Validate compare-and-swap semantics, canonical serialization and crash safety.

What this test file should cover
- Missing documents read as empty version 0.
- Version mismatches and held locks surface as ``ConflictError``.
- A failure between temp write and rename leaves version and content unchanged.
- Unreadable and legacy-shaped documents.
"""

from __future__ import annotations

import json
import os
import time
from pathlib import Path

import pytest

from specsync.domain.models import DocumentFormatError, SpecificationDocument
from specsync.persistence.store import (
    ConflictError,
    DocumentWriteError,
    FileDocumentStore,
    legacy_shape,
)

from . import environment_document


def _store(tmp_path: Path, **kwargs: float) -> FileDocumentStore:
    return FileDocumentStore(tmp_path / "documents", **kwargs)


def test_missing_document_reads_as_empty(tmp_path: Path) -> None:
    store = _store(tmp_path)

    document = store.read("environment")

    assert document == SpecificationDocument.empty("environment")
    assert store.current_version("environment") == 0
    assert store.domains() == ()


def test_compare_and_swap_persists_canonical_json(tmp_path: Path) -> None:
    store = _store(tmp_path)
    document = environment_document("PORT", "DEBUG", version=1)

    store.compare_and_swap(document, 0)

    path = store.path_for("environment")
    raw = path.read_text(encoding="utf-8")
    assert raw == document.to_json()
    assert raw.endswith("\n")
    assert json.loads(raw)["records"][0]["identity"] == "PORT"
    assert store.read("environment") == document
    assert store.domains() == ("environment",)
    assert not path.with_name(path.name + ".lock").exists()


def test_version_mismatch_raises_conflict(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.compare_and_swap(environment_document("PORT", version=1), 0)

    with pytest.raises(ConflictError) as error:
        store.compare_and_swap(environment_document("PORT", "HOST", version=1), 0)

    assert error.value.expected_version == 0
    assert error.value.actual_version == 1
    assert store.read("environment").identities == ("PORT",)


def test_new_version_must_follow_expected_version(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with pytest.raises(ValueError, match="must follow"):
        store.compare_and_swap(environment_document("PORT", version=3), 0)


def test_held_lock_surfaces_as_conflict(tmp_path: Path) -> None:
    store = _store(tmp_path, lock_timeout_seconds=0.05, stale_lock_seconds=3600.0)
    store.root.mkdir(parents=True)
    lock = store.path_for("environment").with_name("environment.json.lock")
    lock.write_text("4242", encoding="utf-8")

    with pytest.raises(ConflictError) as error:
        store.compare_and_swap(environment_document("PORT", version=1), 0)

    assert error.value.actual_version is None
    assert store.current_version("environment") == 0


def test_stale_lock_is_broken(tmp_path: Path) -> None:
    store = _store(tmp_path, lock_timeout_seconds=0.05, stale_lock_seconds=1.0)
    store.root.mkdir(parents=True)
    lock = store.path_for("environment").with_name("environment.json.lock")
    lock.write_text("4242", encoding="utf-8")
    old = time.time() - 120
    os.utime(lock, (old, old))

    store.compare_and_swap(environment_document("PORT", version=1), 0)

    assert store.current_version("environment") == 1


def test_failed_rename_leaves_previous_document_intact(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = _store(tmp_path)
    store.compare_and_swap(environment_document("PORT", version=1), 0)
    path = store.path_for("environment")
    before = path.read_bytes()

    def _crash(src: object, dst: object) -> None:
        raise OSError("simulated crash before rename")

    monkeypatch.setattr("specsync.utils.fs.os.replace", _crash)

    with pytest.raises(DocumentWriteError, match="simulated crash"):
        store.compare_and_swap(environment_document("PORT", "HOST", version=2), 1)

    monkeypatch.undo()
    assert path.read_bytes() == before
    assert store.current_version("environment") == 1
    assert sorted(entry.name for entry in store.root.iterdir()) == ["environment.json"]


def test_invalid_json_is_a_format_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.root.mkdir(parents=True)
    store.path_for("environment").write_text("{not json", encoding="utf-8")

    with pytest.raises(DocumentFormatError, match="invalid JSON"):
        store.read("environment")


def test_document_for_another_domain_is_a_format_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.root.mkdir(parents=True)
    store.path_for("environment").write_text(
        SpecificationDocument.empty("features").to_json(), encoding="utf-8"
    )

    with pytest.raises(DocumentFormatError, match="expected 'environment'"):
        store.read("environment")


def test_newer_document_schema_is_refused(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.root.mkdir(parents=True)
    newer = SpecificationDocument(domain="environment", schema_version=99)
    store.path_for("environment").write_text(newer.to_json(), encoding="utf-8")

    with pytest.raises(DocumentFormatError, match="unsupported document schema version 99"):
        store.read("environment")


def test_legacy_mapping_shape_reads_as_array(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.root.mkdir(parents=True)
    legacy = {
        "domain": "environment",
        "document_version": 4,
        "records": {
            "PORT": {"payload": {"name": "PORT"}, "stale": True},
            "HOST": {"payload": {"name": "HOST"}},
        },
    }
    store.path_for("environment").write_text(json.dumps(legacy), encoding="utf-8")

    document = store.read("environment")

    assert legacy_shape(legacy)
    assert document.document_version == 4
    assert document.identities == ("PORT", "HOST")
    assert document.records[0].is_stale
    assert json.loads(document.to_json())["records"][0]["identity"] == "PORT"


@pytest.mark.parametrize("domain", ["", "../escape", "nested/domain", ".hidden"])
def test_path_for_rejects_unsafe_domain_names(tmp_path: Path, domain: str) -> None:
    with pytest.raises(ValueError, match="invalid domain name"):
        _store(tmp_path).path_for(domain)
