"""Tests for filesystem helpers."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from specsync.utils.fs import LockTimeoutError, atomic_write, exclusive_lock, is_within
from specsync.utils.hashing import canonical_json, sha256_json, short_digest


def test_atomic_write_replaces_content_without_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "doc.json"
    atomic_write(target, "first")
    atomic_write(target, b"second")

    assert target.read_text(encoding="utf-8") == "second"
    assert [entry.name for entry in tmp_path.iterdir()] == ["doc.json"]


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        atomic_write(tmp_path / "missing" / "doc.json", "data")


def test_is_within(tmp_path: Path) -> None:
    inside = tmp_path / "src" / "app.py"
    inside.parent.mkdir()
    inside.write_text("", encoding="utf-8")
    outside = tmp_path.parent / f"{tmp_path.name}-sibling.txt"

    assert is_within(inside, tmp_path)
    assert is_within(tmp_path / "src" / ".." / "src" / "app.py", tmp_path)
    assert not is_within(tmp_path / "src" / "gone.py", tmp_path)
    assert not is_within(outside, tmp_path)
    assert not is_within(inside, tmp_path / "nope")


def test_exclusive_lock_is_released_after_block(tmp_path: Path) -> None:
    lock_path = tmp_path / "doc.json.lock"

    with exclusive_lock(lock_path, timeout_seconds=0.1) as held:
        assert held == lock_path
        assert lock_path.read_text(encoding="utf-8") == str(os.getpid())
        with pytest.raises(LockTimeoutError):
            with exclusive_lock(lock_path, timeout_seconds=0.02):
                pass

    assert not lock_path.exists()


def test_exclusive_lock_breaks_stale_lock(tmp_path: Path) -> None:
    lock_path = tmp_path / "doc.json.lock"
    lock_path.write_text("999999", encoding="utf-8")
    old = time.time() - 300
    os.utime(lock_path, (old, old))

    with exclusive_lock(lock_path, timeout_seconds=0.02, stale_after_seconds=60):
        assert lock_path.read_text(encoding="utf-8") == str(os.getpid())


def test_exclusive_lock_rejects_negative_timeout(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        with exclusive_lock(tmp_path / "x.lock", timeout_seconds=-1):
            pass


def test_canonical_hashing_ignores_key_order() -> None:
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert sha256_json({"b": 1, "a": 2}) == sha256_json({"a": 2, "b": 1})
    assert short_digest("bug", "a.py", "Leak", length=10) == short_digest(
        "bug", "a.py", "Leak", length=10
    )
    assert len(short_digest("x")) == 12
    with pytest.raises(ValueError, match="length"):
        short_digest("x", length=0)
