"""CLI smoke tests - every command is registered, runs, and emits JSON.

Commands run in a subprocess against an isolated HOME and storage
directory, so nothing touches the real ~/.gitsocial.
"""
from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

SRC = Path(__file__).resolve().parents[1] / "src"


@pytest.fixture
def run(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    storage = tmp_path / "storage"

    def _run(*args: str, cwd: Path = tmp_path) -> subprocess.CompletedProcess[str]:
        env = os.environ.copy()
        env["HOME"] = str(home)
        env["PYTHONPATH"] = os.pathsep.join([str(SRC), env.get("PYTHONPATH", "")])
        env["GITSOCIAL_LOG_DISABLE_FILE"] = "1"
        env.pop("GITSOCIAL_STORAGE_DIR", None)
        return subprocess.run(
            [sys.executable, "-m", "gitsocial.cli", "--storage-dir", str(storage), *args],
            capture_output=True,
            text=True,
            env=env,
            cwd=str(cwd),
        )

    return _run


def test_help_exits_zero(run):
    proc = run("--help")
    assert proc.returncode == 0
    for command in ("ensure", "fetch", "cleanup", "stats", "clear-cache", "posts", "thread", "notifications", "config"):
        assert command in proc.stdout


def test_no_command_prints_help(run):
    proc = run()
    assert proc.returncode == 0
    assert "usage" in proc.stdout.lower()


def test_config_show(run, tmp_path):
    project = tmp_path / "project"
    (project / ".gitsocial").mkdir(parents=True)
    (project / ".gitsocial" / "config.toml").write_text('[social]\nbranch = "feed"\n')

    proc = run("config", "show", "--project-path", str(project))

    assert proc.returncode == 0, proc.stderr
    data = json.loads(proc.stdout)
    assert data["social"]["branch"] == "feed"
    assert data["storage"]["retention_days"] == 7


def test_config_sources_lists_project_file(run, tmp_path):
    project = tmp_path / "project"
    (project / ".gitsocial").mkdir(parents=True)
    (project / ".gitsocial" / "config.toml").write_text("version = 1\n")

    proc = run("config", "sources", "--project-path", str(project))

    assert proc.returncode == 0, proc.stderr
    assert json.loads(proc.stdout) == [str((project / ".gitsocial" / "config.toml").resolve())]


def test_config_show_reports_invalid_config(run, tmp_path):
    project = tmp_path / "project"
    (project / ".gitsocial").mkdir(parents=True)
    (project / ".gitsocial" / "config.toml").write_text("broken = [")

    proc = run("config", "show", "--project-path", str(project))

    assert proc.returncode == 1
    assert "Configuration error" in proc.stderr


def test_stats_cleanup_and_clear_on_empty_storage(run):
    stats = run("stats")
    assert stats.returncode == 0, stats.stderr
    assert json.loads(stats.stdout)["total_repositories"] == 0

    cleanup = run("cleanup")
    assert cleanup.returncode == 0
    assert json.loads(cleanup.stdout)["deleted"] == []

    cleared = run("clear-cache")
    assert cleared.returncode == 0
    assert json.loads(cleared.stdout)["deleted_count"] == 0


def test_fetch_without_mirror_fails(run):
    proc = run("fetch", "https://github.com/bob/feed")
    assert proc.returncode == 1
    error = json.loads(proc.stderr)["error"]
    assert error["code"] == "REPOSITORY_NOT_FOUND"
    assert error["category"] == "NOT_FOUND"


def test_ensure_rejects_empty_branch(run):
    proc = run("ensure", "https://github.com/bob/feed", "--branch", " ")
    assert proc.returncode == 1
    assert json.loads(proc.stderr)["error"]["code"] == "MISSING_BRANCH"


def test_posts_outside_a_repository_is_empty(run, tmp_path):
    proc = run("posts", "--workdir", str(tmp_path))
    assert proc.returncode == 0, proc.stderr
    assert json.loads(proc.stdout) == []


def test_thread_unknown_post(run, tmp_path):
    proc = run("thread", "#commit:abcdef012345", "--workdir", str(tmp_path))
    assert proc.returncode == 1
    assert json.loads(proc.stderr)["error"]["code"] == "POST_NOT_FOUND"


def test_posts_rejects_bad_date(run, tmp_path):
    proc = run("posts", "--workdir", str(tmp_path), "--since", "last tuesday")
    assert proc.returncode == 1
    assert json.loads(proc.stderr)["error"]["code"] == "INVALID_INPUT"


def test_notifications_outside_a_repository_is_empty(run, tmp_path):
    proc = run("notifications", "--workdir", str(tmp_path))
    assert proc.returncode == 0, proc.stderr
    assert json.loads(proc.stdout) == []
