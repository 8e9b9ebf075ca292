"""
specsync: unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate strict config schema behavior, structured errors and profile overlays.

What this test file should cover
- Built-in defaults validate and round-trip unchanged.
- Unknown keys, wrong types and range violations report dotted paths.
- Schema version mismatches carry migration guidance.
- Profile overlays are partial, validated and deep-merged.
"""

from __future__ import annotations

import pytest

from specsync.config.schema import (
    BUILTIN_PROFILE_NAMES,
    ConfigSchemaVersion,
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)
from specsync.constants import ALL_DOMAINS


def _issue_paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_default_config_validates_successfully() -> None:
    config = default_config()

    result = validate_config(config)

    assert result.is_valid
    assert result.config == config
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion
    assert result.config["sync"]["domains"] == list(ALL_DOMAINS)
    assert set(BUILTIN_PROFILE_NAMES) <= set(result.config["profiles"])


def test_default_config_is_a_fresh_copy() -> None:
    first = default_config()
    first["sync"]["domains"].clear()

    assert default_config()["sync"]["domains"] == list(ALL_DOMAINS)


def test_unknown_key_rejection_is_explicit() -> None:
    config = default_config()
    config["sync"]["parallelism"] = 8  # type: ignore[typeddict-unknown-key]

    assert _issue_paths(config) == ["sync.parallelism"]


def test_missing_sections_and_fields_are_reported() -> None:
    config = default_config()
    del config["merge"]  # type: ignore[misc]
    del config["store"]["stale_lock_seconds"]  # type: ignore[misc]

    assert _issue_paths(config) == ["merge", "store.stale_lock_seconds"]


@pytest.mark.parametrize(
    ("section", "key", "value", "message"),
    [
        ("sync", "max_concurrent_domains", 0, "must be >= 1"),
        ("sync", "conflict_retry_limit", "3", "expected integer"),
        ("sync", "extractor_timeout_seconds", 0, "must be > 0"),
        ("sync", "domains", "issues", "expected array of domain names"),
        ("store", "lock_timeout_seconds", -1.0, "must be >= 0.0"),
        ("store", "documents_dir", "   ", "must not be empty"),
        ("merge", "retire_missing", "yes", "expected boolean"),
        ("observability", "log_level", "TRACE", "invalid value 'TRACE'"),
    ],
)
def test_type_validation_reports_structured_paths(
    section: str, key: str, value: object, message: str
) -> None:
    config = default_config()
    config[section][key] = value  # type: ignore[literal-required]

    result = validate_config(config)

    assert not result.is_valid
    assert result.config is None
    (issue,) = result.issues
    assert issue.path == f"{section}.{key}"
    assert message in issue.message


def test_duplicate_domains_are_rejected() -> None:
    config = default_config()
    config["sync"]["domains"] = ["issues", "issues"]

    assert _issue_paths(config) == ["sync.domains[1]"]


@pytest.mark.parametrize("found", [0, 2])
def test_schema_version_mismatch_carries_migration_guidance(found: int) -> None:
    config = default_config()
    config["meta"]["schema_version"] = found

    result = validate_config(config)

    if found < 1:
        assert [issue.message for issue in result.issues] == ["must be >= 1"]
    else:
        assert [issue.message for issue in result.issues] == [migration_guidance(found)]
        assert "newer than supported" in result.issues[0].message


def test_non_object_root_is_rejected() -> None:
    result = validate_config(["not", "a", "mapping"])

    assert [issue.path for issue in result.issues] == ["<root>"]


def test_profile_overlays_are_partial_but_still_strict() -> None:
    config = default_config()
    config["profiles"]["fast"] = {"sync": {"max_concurrent_domains": 8}}
    config["profiles"]["Broken"] = {}
    config["profiles"]["typo"] = {"sync": {"max_workers": 2}}

    assert _issue_paths(config) == ["profiles.Broken", "profiles.typo.sync.max_workers"]


def test_apply_profile_overlay_deep_merges() -> None:
    merged = apply_profile_overlay(default_config(), "ci")

    assert merged["observability"]["log_level"] == "WARNING"
    assert merged["observability"]["redact_secrets"] is True
    assert merged["sync"]["extractor_timeout_seconds"] == 600.0
    defaults = default_config()
    assert merged["sync"]["conflict_retry_limit"] == defaults["sync"]["conflict_retry_limit"]
    assert apply_profile_overlay(default_config(), None) == default_config()


def test_apply_unknown_profile_raises() -> None:
    with pytest.raises(ConfigValidationError) as error:
        apply_profile_overlay(default_config(), "nightly")

    assert error.value.issues[0].path == "profiles"


def test_merge_config_does_not_mutate_inputs() -> None:
    base = {"sync": {"domains": ["issues"], "max_concurrent_domains": 2}}
    overlay = {"sync": {"max_concurrent_domains": 4}}

    merged = merge_config(base, overlay)
    merged["sync"]["domains"].append("lessons")

    assert merged["sync"] == {"domains": ["issues", "lessons"], "max_concurrent_domains": 4}
    assert base == {"sync": {"domains": ["issues"], "max_concurrent_domains": 2}}


def test_assert_valid_config_lists_every_issue() -> None:
    config = default_config()
    config["merge"]["retire_missing"] = 1  # type: ignore[typeddict-item]
    config["validation"]["check_file_references"] = None  # type: ignore[typeddict-item]

    with pytest.raises(ConfigValidationError) as error:
        assert_valid_config(config)

    rendered = str(error.value)
    assert "- merge.retire_missing: expected boolean, got int" in rendered
    assert "- validation.check_file_references: expected boolean, got NoneType" in rendered
