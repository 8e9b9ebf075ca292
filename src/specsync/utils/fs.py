"""
specsync: filesystem utilities

File: src/specsync/utils/fs.py

Purpose
- Provide safe, minimal filesystem helpers for atomic writes, containment
  checks and short-lived exclusive lock files.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- A failed write never leaves a partially written target or a stray temp file.
- Lock files are created with ``O_EXCL`` and may be broken once older than a stale threshold.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

__all__ = [
    "LockTimeoutError",
    "atomic_write",
    "exclusive_lock",
    "is_within",
]

_LOCK_POLL_SECONDS = 0.01


class LockTimeoutError(TimeoutError):
    """Raised when an exclusive lock file cannot be acquired in time."""


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` exists and is within resolved ``parent``."""

    try:
        resolved_parent = Path(parent).resolve(strict=True)
    except FileNotFoundError:
        return False
    if not resolved_parent.is_dir():
        return False

    try:
        resolved_child = Path(child).resolve(strict=True)
    except (FileNotFoundError, OSError):
        return False

    return _is_relative_to(resolved_child, resolved_parent)


@contextmanager
def exclusive_lock(
    path: PathLike,
    *,
    timeout_seconds: float,
    stale_after_seconds: float | None = None,
) -> Iterator[Path]:
    """
    Hold an exclusive lock file at ``path`` for the duration of the block.

    A lock file older than ``stale_after_seconds`` is assumed to belong to a
    crashed writer and is removed before retrying.
    """

    if timeout_seconds < 0:
        raise ValueError("timeout_seconds must be >= 0")

    lock_path = Path(path)
    deadline = time.monotonic() + timeout_seconds
    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if stale_after_seconds is not None and _is_stale(lock_path, stale_after_seconds):
                with contextlib.suppress(FileNotFoundError):
                    lock_path.unlink()
                continue
            if time.monotonic() >= deadline:
                raise LockTimeoutError(
                    f"timed out after {timeout_seconds}s waiting for lock {lock_path!s}"
                ) from None
            time.sleep(_LOCK_POLL_SECONDS)
            continue
        break

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(str(os.getpid()))
        yield lock_path
    finally:
        with contextlib.suppress(FileNotFoundError):
            lock_path.unlink()


def _is_stale(lock_path: Path, stale_after_seconds: float) -> bool:
    try:
        modified = lock_path.stat().st_mtime
    except FileNotFoundError:
        return False
    return (time.time() - modified) > stale_after_seconds


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
