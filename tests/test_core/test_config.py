"""Tests for config loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from visualheal.core.config import (
    STATE_DIR_NAME,
    VisualHealConfig,
    get_state_dir,
    is_ci_environment,
    load_config,
)


class TestLoadConfig:
    def test_defaults_when_no_config_file(self, tmp_path: Path):
        """Without a visualheal.toml, load_config should return defaults."""
        config = load_config(tmp_path)

        assert isinstance(config, VisualHealConfig)
        assert config.state_dir == STATE_DIR_NAME
        assert config.screenshots.directory == "screenshots"
        assert config.verify.threshold == 0.1
        assert config.verify.timeout_seconds == 60.0
        assert config.heal.backup_retention == 20
        assert config.heal.dry_run is False
        assert config.confirm.auto_approve_in_ci is True

    def test_loads_toml_verify_section(self, tmp_path: Path):
        toml_content = """\
[verify]
threshold = 0.5
timeout_seconds = 5
"""
        (tmp_path / "visualheal.toml").write_text(toml_content)
        config = load_config(tmp_path)

        assert config.verify.threshold == 0.5
        assert config.verify.timeout_seconds == 5.0

    def test_loads_toml_heal_and_confirm_sections(self, tmp_path: Path):
        toml_content = """\
[general]
state_dir = ".vh-state"

[screenshots]
directory = "shots"

[heal]
generator_timeout_seconds = 30
backup_retention = 3
dry_run = true

[confirm]
auto_approve_in_ci = false
"""
        (tmp_path / "visualheal.toml").write_text(toml_content)
        config = load_config(tmp_path)

        assert config.state_dir == ".vh-state"
        assert config.screenshots.directory == "shots"
        assert config.heal.generator_timeout_seconds == 30
        assert config.heal.backup_retention == 3
        assert config.heal.dry_run is True
        assert config.confirm.auto_approve_in_ci is False

    def test_unknown_sections_are_ignored(self, tmp_path: Path):
        (tmp_path / "visualheal.toml").write_text("[other]\nkey = 1\n")
        config = load_config(tmp_path)
        assert config.verify.threshold == 0.1


class TestStateDir:
    def test_creates_default_state_dir(self, tmp_path: Path):
        state = get_state_dir(tmp_path)
        assert state == tmp_path / STATE_DIR_NAME
        assert state.is_dir()

    def test_uses_configured_state_dir(self, tmp_path: Path):
        config = VisualHealConfig(state_dir=".custom")
        assert get_state_dir(tmp_path, config) == tmp_path / ".custom"


class TestCIDetection:
    @pytest.mark.parametrize("var", ["CI", "GITHUB_ACTIONS"])
    def test_detects_ci(self, monkeypatch: pytest.MonkeyPatch, var: str):
        monkeypatch.delenv("CI", raising=False)
        monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
        monkeypatch.setenv(var, "true")
        assert is_ci_environment() is True

    def test_not_ci_by_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("CI", raising=False)
        monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
        assert is_ci_environment() is False

    def test_only_literal_true_counts(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
        monkeypatch.setenv("CI", "1")
        assert is_ci_environment() is False
