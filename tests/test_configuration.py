"""Tests for the data-directory-aware configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from travelog import configuration


def _prepare_repo_defaults(tmp_path: Path, content: str = "sync:\n  interval_minutes: 15\n") -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "10-defaults.yml").write_text(content, encoding="utf-8")
    return config_dir


def _write_override(data_dir: Path, name: str, content: str) -> None:
    overrides_dir = data_dir / "config"
    overrides_dir.mkdir(parents=True, exist_ok=True)
    (overrides_dir / name).write_text(content, encoding="utf-8")


def test_resolve_data_dir_uses_env_expansion(tmp_path: Path):
    env = {"TRAVELOG_HOME": str(tmp_path / "journal")}
    path = configuration.resolve_data_dir(env=env)
    assert path == tmp_path / "journal"


def test_resolve_data_dir_defaults_to_home():
    path = configuration.resolve_data_dir(env={"UNRELATED": "1"})
    assert path == Path("~/.travelog").expanduser()


def test_load_runtime_configuration_merges_repo_and_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(
        tmp_path,
        content="sync:\n  interval_minutes: 15\n  auto_sync: true\n",
    )
    data_dir = tmp_path / "journal"
    _write_override(data_dir, "20-overrides.yml", "sync:\n  auto_sync: false\n")

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "ready"
    assert bundle.merged["sync"]["interval_minutes"] == 15
    assert bundle.merged["sync"]["auto_sync"] is False
    assert len(bundle.files_loaded) == 2


def test_schema_fills_missing_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path, content="")
    data_dir = tmp_path / "journal"
    data_dir.mkdir()
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.section("sync")["conflict_strategy"] == "newest_wins"
    assert bundle.section("remote")["kind"] == "local"
    assert bundle.section("api")["cors_origins"] == []
    assert bundle.section("missing") == {}


def test_invalid_choice_is_reported_and_reset(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    data_dir = tmp_path / "journal"
    _write_override(data_dir, "20-sync.yml", "sync:\n  conflict_strategy: coin_flip\n")
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "invalid"
    assert bundle.merged["sync"]["conflict_strategy"] == "newest_wins"
    assert any("conflict_strategy" in diag.message for diag in bundle.diagnostics)


def test_wrong_type_and_unknown_key_diagnostics(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    data_dir = tmp_path / "journal"
    _write_override(data_dir, "20-api.yml", "api:\n  port: eighty\nsurprise: 1\n")
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.merged["api"]["port"] == 8750
    levels = {diag.message: diag.level for diag in bundle.diagnostics}
    assert any(level == "warning" and "surprise" in msg for msg, level in levels.items())
    assert any(level == "error" and "api.port" in msg for msg, level in levels.items())


def test_load_runtime_configuration_reports_missing_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    missing = tmp_path / "missing"
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(missing)

    assert bundle.status == "missing"
    assert any(diag.level == "error" for diag in bundle.diagnostics)


def test_create_flag_makes_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    data_dir = tmp_path / "fresh"
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(data_dir, create=True)

    assert data_dir.is_dir()
    assert bundle.status == "ready"


def test_load_runtime_configuration_handles_bad_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    data_dir = tmp_path / "journal"
    _write_override(data_dir, "broken.yml", "sync: [\n")

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "invalid"
    assert any("Failed to parse" in diag.message for diag in bundle.diagnostics)


def test_resolve_path_is_relative_to_data_dir(tmp_path: Path):
    bundle = configuration.ConfigurationBundle(data_dir=tmp_path, status="ready")

    assert bundle.resolve_path("state/users") == tmp_path / "state" / "users"
    assert bundle.resolve_path(str(tmp_path / "abs")) == tmp_path / "abs"


def test_repository_defaults_are_valid(tmp_path: Path):
    data_dir = tmp_path / "journal"
    data_dir.mkdir()

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "ready"
    assert bundle.section("account")["user_id"] == "local"
    assert bundle.section("sync")["max_concurrency"] == 4
