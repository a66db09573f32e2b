"""
Thin wrappers around the `git` and `jj` binaries.

Everything here shells out and hands back line-oriented text. Interpreting
that text is left to the status parser in `core`.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from .errors import RepositoryOperationFailed

logger = logging.getLogger(__name__)


def _run(binary: str, repo_path: Path, *args: str) -> subprocess.CompletedProcess:
    """Run a VCS binary in a repository, translating OS failures."""
    logger.debug("%s %s (in %s)", binary, " ".join(args), repo_path)
    try:
        return subprocess.run(
            [binary, *args],
            cwd=repo_path,
            capture_output=True,
            check=False,
        )
    except OSError as e:
        raise RepositoryOperationFailed(repo_path, f"{binary} {args[0]}: {e}") from e


def _decode(repo_path: Path, data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise RepositoryOperationFailed(repo_path, f"Output was not valid UTF-8: {e}") from e


def _lines(binary: str, repo_path: Path, *args: str, check: bool = True) -> list[str]:
    """Run a query command and return its stdout lines.

    A non-zero exit is an error for the repository, unless `check` is off,
    in which case it yields no lines.
    """
    result = _run(binary, repo_path, *args)
    if result.returncode != 0:
        if not check:
            return []
        stderr = _decode(repo_path, result.stderr).strip()
        raise RepositoryOperationFailed(
            repo_path,
            f"{binary} {' '.join(args)} exited {result.returncode}: {stderr}",
        )
    return _decode(repo_path, result.stdout).splitlines()


def _side_effect(binary: str, repo_path: Path, *args: str) -> None:
    """Run a mutating command, discarding its output."""
    result = _run(binary, repo_path, *args)
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise RepositoryOperationFailed(
            repo_path,
            f"{binary} {args[0]} failed: {stderr or f'exit status {result.returncode}'}",
        )


class GitOperations:
    """Low-level git operations for a single repository."""

    def __init__(self, repo_path: Path):
        self.repo_path = repo_path

    @staticmethod
    def is_repo(path: Path) -> bool:
        try:
            return (path / ".git").exists()
        except OSError:
            return False

    def short_status(self) -> list[str]:
        """Branch header plus one line per changed file."""
        return _lines("git", self.repo_path, "status", "-s", "-b")

    def branch_status(self) -> list[str]:
        """Porcelain status whose header line carries the ahead/behind descriptor."""
        return _lines("git", self.repo_path, "status", "--porcelain", "--ahead-behind", "-b")

    def branches(self) -> list[str]:
        return _lines("git", self.repo_path, "branch")

    def stash_list(self) -> list[str]:
        return _lines("git", self.repo_path, "stash", "list")

    def recent_log(self, count: int = 10, colour: bool = False) -> list[str]:
        """Most recent commits, one per line. A repository without commits has none."""
        return _lines(
            "git",
            self.repo_path,
            "log",
            "--oneline",
            "--decorate",
            f"--color={'always' if colour else 'never'}",
            "-n",
            str(count),
            check=False,
        )

    def fetch(self) -> None:
        _side_effect("git", self.repo_path, "fetch", "--all", "--tags", "--prune")

    def pull(self) -> None:
        _side_effect("git", self.repo_path, "pull")

    def push(self) -> None:
        _side_effect("git", self.repo_path, "push", "--all", "--tags")


class JjOperations:
    """Low-level jujutsu operations for a single repository."""

    def __init__(self, repo_path: Path):
        self.repo_path = repo_path

    @staticmethod
    def is_repo(path: Path) -> bool:
        try:
            return (path / ".jj").is_dir()
        except OSError:
            return False

    def has_modifications(self) -> bool:
        return bool(_lines("jj", self.repo_path, "diff", "--summary"))

    def status(self, colour: bool = False) -> list[str]:
        return _lines(
            "jj", self.repo_path, "status", f"--color={'always' if colour else 'never'}"
        )

    def git_fetch(self) -> None:
        _side_effect("jj", self.repo_path, "git", "fetch")
