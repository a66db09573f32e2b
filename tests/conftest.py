"""Pytest configuration and shared fixtures for repoutil tests."""

import os
import subprocess
from pathlib import Path

import pytest

from repoutil import core


def _git(args, cwd):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Point HOME at a scratch directory so no real ~/.repoutilrc is read."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv(core.CONFIG_ENV_VAR, raising=False)
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture
def home(_isolated_home):
    return _isolated_home


@pytest.fixture
def fake_repo():
    """Create a directory that looks like a git repository (has .git)."""

    def _make(path: Path) -> Path:
        (path / ".git").mkdir(parents=True)
        return path

    return _make


@pytest.fixture
def git_repo():
    """Create a real git repo with one commit on main."""

    def _make(path: Path) -> Path:
        path.mkdir(parents=True)
        _git(["init"], path)
        _git(["config", "user.email", "test@test.com"], path)
        _git(["config", "user.name", "Test"], path)
        _git(["config", "color.ui", "never"], path)
        (path / "README.md").write_text("# Test Repo\n")
        _git(["add", "."], path)
        _git(["commit", "-m", "initial commit"], path)
        _git(["branch", "-M", "main"], path)
        return path

    return _make


@pytest.fixture
def write_config(home):
    """Write ~/.repoutilrc with the given lines."""

    def _write(*lines: str) -> Path:
        config = home / ".repoutilrc"
        config.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return config

    return _write


@pytest.fixture
def locked_dir():
    """Create a directory with mode 000, restoring its permissions afterwards."""
    if os.geteuid() == 0:
        pytest.skip("permission bits are not enforced for root")
    locked = []

    def _make(path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        path.chmod(0)
        locked.append(path)
        return path

    yield _make

    for path in locked:
        path.chmod(0o755)
