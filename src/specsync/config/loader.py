"""
specsync: runtime config loader.

File: src/specsync/config/loader.py

Purpose
- Resolve the effective runtime config. Precedence is overrides, then
  ``SPECSYNC_*`` environment variables, then ``specsync.toml``, then defaults.

Notes
- Environment values are coerced using the type of the default they replace.
- Path fields are made absolute relative to the config file directory.
- Every intermediate result is validated, so a bad layer fails early.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from specsync.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "specsync.toml"
ENV_PREFIX: Final[str] = "SPECSYNC_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    search_dir: str | Path | None = None,
) -> dict[str, Any]:
    """Load the effective config.

    Without ``config_path``, ``specsync.toml`` is looked up in ``search_dir``
    (the working directory by default) and may be absent. An explicit path
    must exist.
    """

    path = _config_file(config_path, search_dir)
    env = os.environ if environ is None else environ
    requested = dict(overrides or {})
    selected = _select_profile(profile, requested, env)

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    if selected is not None:
        config = apply_profile_overlay(config, selected)
    config = merge_config(config, _environment_layer(config, env))
    config = merge_config(config, _override_layer(requested))
    assert_valid_config(config, active_profile=selected)

    return assert_valid_config(
        normalize_paths(config, base_dir=path.parent), active_profile=selected
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make every configured path absolute against ``base_dir``, profiles included."""

    normalized = merge_config({}, config)
    targets: list[ConfigPath] = list(PATH_FIELDS)
    profiles = normalized.get("profiles")
    if isinstance(profiles, Mapping):
        for name in sorted(profiles):
            overlay = profiles[name]
            if isinstance(overlay, Mapping):
                targets.extend(
                    ("profiles", name, *field) for field in PATH_FIELDS if field[0] in overlay
                )

    for field in targets:
        raw = _lookup(normalized, field)
        if isinstance(raw, str):
            _assign(normalized, field, _absolute(raw, base_dir))
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _config_file(config_path: str | Path | None, search_dir: str | Path | None) -> Path:
    if config_path is not None:
        return Path(config_path).expanduser().resolve()
    directory = Path(search_dir) if search_dir is not None else Path.cwd()
    return (directory / DEFAULT_CONFIG_FILE).resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from exc
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _select_profile(
    profile: str | None, overrides: Mapping[str, object], environ: Mapping[str, str]
) -> str | None:
    if profile is not None:
        chosen: object = profile
    elif "profile" in overrides:
        chosen = overrides["profile"]
        if chosen is not None and not isinstance(chosen, str):
            raise ConfigLoadError("override 'profile' must be a string")
    else:
        chosen = environ.get(f"{ENV_PREFIX}PROFILE")
    if not isinstance(chosen, str):
        return None
    return chosen.strip() or None


def _environment_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for field, current in _leaves(config):
        name = ENV_PREFIX + "_".join(field).upper()
        raw = environ.get(name)
        if raw is not None:
            _assign(layer, field, _from_env(name, field, raw, current))
    return layer


def _leaves(
    node: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key in sorted(node):
        if not prefix and key == "profiles":
            continue
        value = node[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        elif value is not None:
            yield (*prefix, key), value


def _from_env(name: str, field: ConfigPath, raw: str, current: object) -> object:
    text = raw.strip()
    target = f"{name} -> {'.'.join(field)}"
    if isinstance(current, bool):
        lowered = text.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigLoadError(f"{target} must be a boolean (true/false/1/0/yes/no/on/off)")
    if isinstance(current, int):
        try:
            return int(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{target} must be an integer") from exc
    if isinstance(current, float):
        try:
            return float(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{target} must be a number") from exc
    if isinstance(current, list):
        return [item.strip() for item in text.split(",") if item.strip()]
    return text


def _override_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    """Explicit overrides; dotted keys such as ``"sync.domains"`` address nested fields."""

    layer: dict[str, Any] = {}
    for key in sorted(overrides):
        if key == "profile":
            continue
        field = tuple(part for part in key.split(".") if part)
        if not field:
            raise ConfigLoadError(f"invalid override key {key!r}")
        value = overrides[key]
        _assign(layer, field, merge_config({}, value) if isinstance(value, Mapping) else value)
    return layer


def _lookup(config: Mapping[str, object], field: ConfigPath) -> object | None:
    node: object = config
    for part in field:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _assign(config: dict[str, Any], field: ConfigPath, value: object) -> None:
    node = config
    for part in field[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[field[-1]] = value


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
