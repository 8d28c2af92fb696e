"""Data-directory-aware configuration loading for travelog."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
DEFAULT_DATA_DIR = "~/.travelog"
DATA_DIR_ENV = "TRAVELOG_HOME"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]


SchemaSpec = Dict[str, Any]

REMOTE_KINDS = ("local", "http")
CONFLICT_STRATEGIES = ("newest_wins", "keep_local", "keep_server", "manual")


CONFIG_SCHEMA: SchemaSpec = {
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "INFO"},
            "structured": {"type": bool, "default": True},
        },
        "default": {},
    },
    "ui": {
        "type": dict,
        "schema": {
            "verbose": {"type": bool, "default": True},
        },
        "default": {},
    },
    "account": {
        "type": dict,
        "schema": {
            "user_id": {"type": str, "default": "local"},
            "display_name": {"type": str, "default": "Voyageur"},
        },
        "default": {},
    },
    "storage": {
        "type": dict,
        "schema": {
            "directory": {"type": str, "default": "state/users"},
            "media_dir": {"type": str, "default": "media"},
        },
        "default": {},
    },
    "sync": {
        "type": dict,
        "schema": {
            "auto_sync": {"type": bool, "default": True},
            "interval_minutes": {"type": (int, float), "default": 15},
            "conflict_strategy": {
                "type": str,
                "default": "newest_wins",
                "choices": CONFLICT_STRATEGIES,
            },
            "max_concurrency": {"type": int, "default": 4},
        },
        "default": {},
    },
    "remote": {
        "type": dict,
        "schema": {
            "kind": {"type": str, "default": "local", "choices": REMOTE_KINDS},
            "base_url": {"type": str, "default": "http://127.0.0.1:8750"},
            "api_key": {"type": str, "default": ""},
            "timeout": {"type": (int, float), "default": 30},
            "store_dir": {"type": str, "default": "remote"},
        },
        "default": {},
    },
    "api": {
        "type": dict,
        "schema": {
            "host": {"type": str, "default": "127.0.0.1"},
            "port": {"type": int, "default": 8750},
            "store_dir": {"type": str, "default": "remote"},
            "cors_origins": {"type": list, "item_type": str, "default_factory": list},
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data travelog needs at runtime."""

    data_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    def section(self, name: str) -> Dict[str, Any]:
        """Return a merged section, or an empty mapping when absent."""
        if not self.merged:
            return {}
        return self.merged.get(name) or {}

    def resolve_path(self, raw: str) -> Path:
        """Resolve a configured path relative to the data directory."""
        path = Path(raw).expanduser()
        return path if path.is_absolute() else self.data_dir / path


@dataclass
class _ConfigLayer:
    """Values merged from one configuration directory and the files they came from."""

    values: Dict[str, Any] = field(default_factory=dict)
    files: List[Path] = field(default_factory=list)


def resolve_data_dir(
    env: Optional[Mapping[str, str]] = None,
    default: str = DEFAULT_DATA_DIR,
) -> Path:
    """Data directory from ``TRAVELOG_HOME``, falling back to ``~/.travelog``."""

    source = os.environ if env is None else env
    return Path(source.get(DATA_DIR_ENV) or default).expanduser()


def load_runtime_configuration(
    data_dir: Optional[Path] = None,
    *,
    create: bool = False,
) -> ConfigurationBundle:
    """Merge repository defaults with ``<data_dir>/config/*.yml`` and validate.

    Problems never raise; they are reported as diagnostics and reflected in
    the bundle status.
    """

    data_dir = data_dir or resolve_data_dir()
    diagnostics: List[Diagnostic] = []

    defaults = _read_layer(DEFAULT_CONFIG_DIR, "repo defaults", diagnostics)
    if create:
        _ensure_data_dir(data_dir, diagnostics)

    status = _data_dir_status(data_dir, diagnostics)
    if status == "ready":
        overrides = _read_layer(data_dir / "config", "data overrides", diagnostics)
    else:
        overrides = _ConfigLayer()

    merged = deepcopy(defaults.values)
    _deep_merge_dicts(merged, overrides.values)
    _validate_section(merged, CONFIG_SCHEMA, "config", diagnostics)

    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        data_dir=data_dir,
        status=status,
        merged=merged,
        repo_defaults=defaults.values,
        overrides=overrides.values,
        files_loaded=defaults.files + overrides.files,
        diagnostics=diagnostics,
    )


def _ensure_data_dir(data_dir: Path, diagnostics: List[Diagnostic]) -> None:
    if data_dir.exists():
        return
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        diagnostics.append(
            Diagnostic("error", f"Unable to create data directory '{data_dir}': {exc}")
        )


def _data_dir_status(data_dir: Path, diagnostics: List[Diagnostic]) -> ConfigurationStatus:
    if not data_dir.exists():
        diagnostics.append(Diagnostic("error", f"Data directory '{data_dir}' does not exist."))
        return "missing"
    if not data_dir.is_dir():
        diagnostics.append(Diagnostic("error", f"Data path '{data_dir}' is not a directory."))
        return "invalid"
    return "ready"


def _read_layer(directory: Path, label: str, diagnostics: List[Diagnostic]) -> _ConfigLayer:
    """Merge every ``*.yml``/``*.yaml`` file of ``directory`` in name order."""

    layer = _ConfigLayer()
    if not directory.is_dir():
        if directory.exists():
            message = f"Configuration path '{directory}' ({label}) is not a directory."
            diagnostics.append(Diagnostic("error", message, directory))
        else:
            message = f"No configuration directory found at '{directory}' ({label})."
            diagnostics.append(Diagnostic("warning", message, directory))
        return layer

    for path in sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml")):
        try:
            content = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            diagnostics.append(Diagnostic("error", f"Failed to parse '{path}': {exc}", path))
            continue
        if content is not None and not isinstance(content, Mapping):
            diagnostics.append(
                Diagnostic("warning", f"Ignoring '{path}': top level is not a mapping.", path)
            )
            continue
        _deep_merge_dicts(layer.values, dict(content or {}))
        layer.files.append(path)

    if not layer.files:
        diagnostics.append(
            Diagnostic("info", f"No YAML files found under '{directory}' ({label}).", directory)
        )
    return layer


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    """Recursively merge ``source`` into ``dest``; later values win."""

    for key, value in source.items():
        current = dest.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _deep_merge_dicts(current, value)
        else:
            dest[key] = deepcopy(value)


def _default_from_spec(spec: SchemaSpec) -> Any:
    factory = spec.get("default_factory")
    if callable(factory):
        return factory()
    return deepcopy(spec.get("default"))


def _type_name(expected: Any) -> str:
    if isinstance(expected, tuple):
        return ", ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    """Fill defaults and replace invalid values in place, recording diagnostics."""

    for key in target:
        if key not in schema:
            diagnostics.append(Diagnostic("warning", f"Unknown configuration key '{path}.{key}'."))

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        if key in target:
            target[key] = _checked_value(target[key], spec, child_path, diagnostics)
        elif "default" in spec or "default_factory" in spec:
            target[key] = _default_from_spec(spec)
        else:
            continue
        if spec.get("type") is dict and isinstance(target[key], dict):
            _validate_section(target[key], spec.get("schema", {}), child_path, diagnostics)


def _checked_value(value: Any, spec: SchemaSpec, path: str, diagnostics: List[Diagnostic]) -> Any:
    expected = spec.get("type")

    if expected is dict:
        if isinstance(value, dict):
            return value
        diagnostics.append(Diagnostic("error", f"'{path}' must be a mapping."))
        return _default_from_spec(spec) or {}

    if expected is list:
        if not isinstance(value, list):
            diagnostics.append(Diagnostic("error", f"'{path}' must be a list."))
            return _default_from_spec(spec) or []
        item_type = spec.get("item_type")
        if item_type is None:
            return value
        kept: List[Any] = []
        for idx, item in enumerate(value):
            if isinstance(item, item_type):
                kept.append(item)
            else:
                diagnostics.append(
                    Diagnostic("error", f"'{path}[{idx}]' must be of type {item_type.__name__}.")
                )
        return kept

    if expected is not None and not isinstance(value, expected):
        diagnostics.append(Diagnostic("error", f"'{path}' must be of type {_type_name(expected)}."))
        return _default_from_spec(spec)

    choices = spec.get("choices")
    if choices and value not in choices:
        diagnostics.append(
            Diagnostic("error", f"'{path}' must be one of {', '.join(choices)}; got '{value}'.")
        )
        return _default_from_spec(spec)
    return value


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "load_runtime_configuration",
    "resolve_data_dir",
]
