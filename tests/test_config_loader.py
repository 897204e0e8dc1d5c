"""Tests for config_loader module."""

from __future__ import annotations

import pytest

from gitsocial.config_loader import (
    ConfigError,
    _apply_env_overlay,
    _deep_merge,
    _get_project_config_dir,
    config_sources,
    load_config,
    user_config_path,
)
from gitsocial.config_schema import GitSocialConfig


@pytest.fixture
def fake_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_merge(self):
        """Nested dict merge."""
        base = {"storage": {"retention_days": 7, "initial_depth": 100}}
        override = {"storage": {"initial_depth": 50}, "social": {"branch": "feed"}}
        result = _deep_merge(base, override)
        assert result == {
            "storage": {"retention_days": 7, "initial_depth": 50},
            "social": {"branch": "feed"},
        }

    def test_base_unchanged(self):
        """Original base dict should not be modified."""
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


class TestConfigDirectories:
    """Tests for config directory functions."""

    def test_user_config_path(self, fake_home):
        assert user_config_path() == fake_home / ".gitsocial" / "config.toml"

    def test_project_config_dir_searches_upward(self, tmp_path):
        project_dir = tmp_path / "project"
        config_dir = project_dir / ".gitsocial"
        config_dir.mkdir(parents=True)
        subdir = project_dir / "src" / "deep"
        subdir.mkdir(parents=True)

        assert _get_project_config_dir(subdir) == config_dir

    def test_user_dir_is_not_a_project_dir(self, fake_home):
        """The ~/.gitsocial directory holds user config, not project config."""
        (fake_home / ".gitsocial").mkdir()
        workdir = fake_home / "code" / "repo"
        workdir.mkdir(parents=True)
        assert _get_project_config_dir(workdir) is None


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults(self, fake_home, tmp_path):
        config = load_config(project_path=tmp_path, skip_env=True)
        assert isinstance(config, GitSocialConfig)
        assert config.social.branch == "gitsocial"
        assert config.storage.retention_days == 7
        assert config.storage.resolved_base() == fake_home / ".gitsocial" / "storage"

    def test_project_config_overrides_user(self, fake_home, tmp_path):
        user_dir = fake_home / ".gitsocial"
        user_dir.mkdir()
        (user_dir / "config.toml").write_text(
            """
[storage]
retention_days = 3
initial_depth = 20
"""
        )
        project_dir = tmp_path / "project"
        (project_dir / ".gitsocial").mkdir(parents=True)
        (project_dir / ".gitsocial" / "config.toml").write_text(
            """
[storage]
initial_depth = 40

[social]
branch = "social"
"""
        )

        config = load_config(project_path=project_dir, skip_env=True)
        assert config.storage.retention_days == 3
        assert config.storage.initial_depth == 40
        assert config.social.branch == "social"

    def test_env_overlay(self, fake_home, tmp_path, monkeypatch):
        monkeypatch.setenv("GITSOCIAL_RETENTION_DAYS", "14")
        monkeypatch.setenv("GITSOCIAL_CACHE_LIST_TTL", "10.5")
        config = load_config(project_path=tmp_path)
        assert config.storage.retention_days == 14
        assert config.cache.list_ttl == 10.5

    def test_env_overlay_creates_sections(self, monkeypatch):
        monkeypatch.setenv("GITSOCIAL_BRANCH", "feed")
        assert _apply_env_overlay({})["social"] == {"branch": "feed"}

    def test_invalid_project_toml_raises(self, fake_home, tmp_path):
        project_dir = tmp_path / "project"
        (project_dir / ".gitsocial").mkdir(parents=True)
        (project_dir / ".gitsocial" / "config.toml").write_text("invalid toml [[[")

        with pytest.raises(ConfigError, match="Invalid project config"):
            load_config(project_path=project_dir, skip_env=True)

    def test_invalid_user_toml_warns(self, fake_home, tmp_path):
        (fake_home / ".gitsocial").mkdir()
        (fake_home / ".gitsocial" / "config.toml").write_text("not = [valid")
        with pytest.warns(UserWarning, match="Skipping invalid user config"):
            config = load_config(project_path=tmp_path, skip_env=True)
        assert config.version == 1

    def test_validation_failure_raises(self, fake_home, tmp_path, monkeypatch):
        monkeypatch.setenv("GITSOCIAL_INITIAL_DEPTH", "0")
        with pytest.raises(ConfigError, match="validation failed"):
            load_config(project_path=tmp_path)


class TestConfigSources:
    """Tests for config_sources function."""

    def test_no_files(self, fake_home, tmp_path):
        assert config_sources(tmp_path / "nowhere") == []

    def test_user_then_project(self, fake_home, tmp_path):
        (fake_home / ".gitsocial").mkdir()
        (fake_home / ".gitsocial" / "config.toml").write_text("version = 1\n")
        project_dir = tmp_path / "project"
        (project_dir / ".gitsocial").mkdir(parents=True)
        (project_dir / ".gitsocial" / "config.toml").write_text("version = 1\n")

        assert config_sources(project_dir) == [
            fake_home / ".gitsocial" / "config.toml",
            (project_dir / ".gitsocial" / "config.toml").resolve(),
        ]

    def test_project_dir_without_file_is_skipped(self, fake_home, tmp_path):
        project_dir = tmp_path / "project"
        (project_dir / ".gitsocial").mkdir(parents=True)
        assert config_sources(project_dir) == []
