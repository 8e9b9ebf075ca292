"""
specsync: unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and explicit overrides.

What this test file should cover
- Precedence: overrides > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Profile selection by argument, override and env.
- Path normalization relative to the config file.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from specsync.config import ConfigValidationError, default_config
from specsync.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_loader_precedence_default_file_env_override(tmp_path: Path) -> None:
    default_path = _write_config(tmp_path / "default.toml", "")
    config_path = _write_config(
        tmp_path / "specsync.toml",
        """
[sync]
conflict_retry_limit = 5
""".strip(),
    )
    env = {"SPECSYNC_SYNC_CONFLICT_RETRY_LIMIT": "6"}

    default_loaded = load_config(default_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ=env)
    override_loaded = load_config(
        config_path, environ=env, overrides={"sync.conflict_retry_limit": 7}
    )

    assert default_loaded["sync"]["conflict_retry_limit"] == 3
    assert file_loaded["sync"]["conflict_retry_limit"] == 5
    assert env_loaded["sync"]["conflict_retry_limit"] == 6
    assert override_loaded["sync"]["conflict_retry_limit"] == 7


def test_env_values_are_coerced_by_default_type(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "specsync.toml", "")

    loaded = load_config(
        config_path,
        environ={
            "SPECSYNC_MERGE_RETIRE_MISSING": "off",
            "SPECSYNC_SYNC_EXTRACTOR_TIMEOUT_SECONDS": "2.5",
            "SPECSYNC_SYNC_DOMAINS": "issues, lessons",
            "SPECSYNC_OBSERVABILITY_LOG_LEVEL": "DEBUG",
        },
    )

    assert loaded["merge"]["retire_missing"] is False
    assert loaded["sync"]["extractor_timeout_seconds"] == 2.5
    assert loaded["sync"]["domains"] == ["issues", "lessons"]
    assert loaded["observability"]["log_level"] == "DEBUG"


@pytest.mark.parametrize(
    ("name", "raw"),
    [
        ("SPECSYNC_SYNC_CONFLICT_RETRY_LIMIT", "not-an-int"),
        ("SPECSYNC_STORE_LOCK_TIMEOUT_SECONDS", "soon"),
        ("SPECSYNC_MERGE_RETIRE_MISSING", "maybe"),
    ],
)
def test_invalid_env_coercion_raises_actionable_error(
    tmp_path: Path, name: str, raw: str
) -> None:
    config_path = _write_config(tmp_path / "specsync.toml", "")

    with pytest.raises(ConfigLoadError, match=name):
        load_config(config_path, environ={name: raw})


def test_profile_selection_order(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "specsync.toml", "")

    by_env = load_config(config_path, environ={"SPECSYNC_PROFILE": "conservative"})
    by_override = load_config(
        config_path,
        environ={"SPECSYNC_PROFILE": "conservative"},
        overrides={"profile": "ci"},
    )
    by_argument = load_config(
        config_path,
        profile="conservative",
        overrides={"profile": "ci"},
    )

    assert by_env["merge"]["retire_missing"] is False
    assert by_env["sync"]["max_concurrent_domains"] == 1
    assert by_override["observability"]["log_level"] == "WARNING"
    assert by_override["observability"]["log_to_stdout"] is True
    assert by_override["merge"]["retire_missing"] is True
    assert by_argument["merge"]["retire_missing"] is False


def test_env_overrides_apply_on_top_of_profile(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "specsync.toml", "")

    loaded = load_config(
        config_path,
        profile="ci",
        environ={"SPECSYNC_OBSERVABILITY_LOG_LEVEL": "ERROR"},
    )

    assert loaded["observability"]["log_level"] == "ERROR"
    assert loaded["sync"]["extractor_timeout_seconds"] == 600.0


def test_unknown_profile_is_rejected(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "specsync.toml", "")

    with pytest.raises(ConfigValidationError, match="profile 'nightly' is not defined"):
        load_config(config_path, profile="nightly", environ={})


def test_file_defined_profile_overlays_defaults(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "specsync.toml",
        """
[profiles.nightly.sync]
domains = ["issues"]
max_concurrent_domains = 2
""".strip(),
    )

    loaded = load_config(config_path, profile="nightly", environ={})

    assert loaded["sync"]["domains"] == ["issues"]
    assert loaded["sync"]["max_concurrent_domains"] == 2
    assert set(loaded["profiles"]) == {"ci", "conservative", "nightly"}


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "nested" / "specsync.toml",
        """
[store]
documents_dir = "docs/spec"
""".strip(),
    )
    base = config_path.resolve().parent

    loaded = load_config(config_path, environ={})

    assert loaded["store"]["documents_dir"] == (base / "docs/spec").as_posix()
    assert loaded["sync"]["facts_dir"] == (base / ".specsync/facts").as_posix()
    assert loaded["observability"]["log_dir"] == (base / ".specsync/logs").as_posix()


def test_absolute_paths_are_kept(tmp_path: Path) -> None:
    target = (tmp_path / "elsewhere").resolve()
    config_path = _write_config(tmp_path / "specsync.toml", "")

    loaded = load_config(
        config_path, environ={}, overrides={"store": {"documents_dir": str(target)}}
    )

    assert loaded["store"]["documents_dir"] == target.as_posix()


def test_missing_explicit_file_and_invalid_toml(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = _write_config(tmp_path / "broken.toml", "[sync\nconflict_retry_limit = ")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})


def test_search_dir_without_a_file_yields_defaults_rooted_there(tmp_path: Path) -> None:
    loaded = load_config(search_dir=tmp_path, environ={})

    base = tmp_path.resolve()
    assert loaded["sync"]["domains"] == default_config()["sync"]["domains"]
    assert loaded["store"]["documents_dir"] == (base / ".specsync/documents").as_posix()


def test_search_dir_picks_up_its_specsync_toml(tmp_path: Path) -> None:
    _write_config(tmp_path / "specsync.toml", "[merge]\nretire_missing = false")

    loaded = load_config(search_dir=tmp_path, environ={})

    assert loaded["merge"]["retire_missing"] is False


def test_invalid_file_values_fail_validation(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "specsync.toml",
        """
[sync]
domains = ["issues", "changelog"]
""".strip(),
    )

    with pytest.raises(ConfigValidationError) as error:
        load_config(config_path, environ={})

    assert [issue.path for issue in error.value.issues] == ["sync.domains[1]"]


def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "specsync.toml", "")
    env = {"SPECSYNC_SYNC_MAX_CONCURRENT_DOMAINS": "2"}

    first = dump_effective_config(load_config(config_path, environ=env))
    second = dump_effective_config(load_config(config_path, environ=env))

    assert first == second
    parsed = json.loads(first)
    assert parsed["sync"]["max_concurrent_domains"] == 2
    assert set(parsed) == set(default_config())
