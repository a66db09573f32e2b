"""repoutil: Run common operations across many repositories."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .core import (
    ConfigEntry,
    MembershipKind,
    Operation,
    RepoResult,
    RepositoryPath,
    RepositorySet,
    StatusSummary,
    add_current_directory,
    aggregate,
    app,
    common_ancestor,
    load_repository_set,
    lookup,
    parse_status,
    resolve,
    run,
    run_parallel,
)
from .errors import (
    AddOutsideRepository,
    ConfigError,
    ConfigMissing,
    ConfigUnreadable,
    DirectoryExpansionFailed,
    RepositoryOperationFailed,
    RepoutilError,
)
from .formatters import FormatOptions, OutputFormatter, apply_style, format_json
from .vcs import GitOperations, JjOperations

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "ConfigEntry",
    "FormatOptions",
    "MembershipKind",
    "Operation",
    "RepoResult",
    "RepositoryPath",
    "RepositorySet",
    "StatusSummary",
    # Errors
    "AddOutsideRepository",
    "ConfigError",
    "ConfigMissing",
    "ConfigUnreadable",
    "DirectoryExpansionFailed",
    "RepositoryOperationFailed",
    "RepoutilError",
    # Operations
    "GitOperations",
    "JjOperations",
    "add_current_directory",
    "load_repository_set",
    "lookup",
    "resolve",
    "run",
    "run_parallel",
    # Functions
    "aggregate",
    "common_ancestor",
    "parse_status",
    # Formatters
    "OutputFormatter",
    "apply_style",
    "format_json",
]
