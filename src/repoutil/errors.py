"""Exception hierarchy for repoutil."""

from __future__ import annotations

from pathlib import Path


class RepoutilError(Exception):
    """Base class for all repoutil errors."""


class ConfigError(RepoutilError):
    """The configuration file could not be resolved. Fatal for the whole run."""

    def __init__(self, config_path: Path, reason: str):
        self.config_path = config_path
        super().__init__(f"{reason}: {config_path}")


class ConfigMissing(ConfigError):
    def __init__(self, config_path: Path):
        super().__init__(config_path, "No config file")


class ConfigUnreadable(ConfigError):
    def __init__(self, config_path: Path, cause: Exception):
        self.cause = cause
        super().__init__(config_path, f"Couldn't read config file ({cause})")


class DirectoryExpansionFailed(RepoutilError):
    """A configured directory could not be listed for child repositories."""

    def __init__(self, directory: Path, cause: Exception):
        self.directory = directory
        self.cause = cause
        super().__init__(f"Couldn't get repos from '{directory}': {cause}")


class RepositoryOperationFailed(RepoutilError):
    """A VCS command failed for a single repository."""

    def __init__(self, repo_path: Path, message: str):
        self.repo_path = repo_path
        self.message = message
        super().__init__(message)


class AddOutsideRepository(RepoutilError):
    """`add` was invoked from a directory that is not a repository root."""

    def __init__(self, directory: Path):
        self.directory = directory
        super().__init__(f"Don't appear to be in the root of a git repo: {directory}")
