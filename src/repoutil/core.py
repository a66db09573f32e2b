"""
repoutil: Run common operations across many repositories.

Repositories are listed (directly, or by their parent directory) in
~/.repoutilrc. Every command resolves that list, runs one operation against
each repository in parallel and prints a single report.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .errors import (
    AddOutsideRepository,
    ConfigError,
    ConfigMissing,
    ConfigUnreadable,
    DirectoryExpansionFailed,
    RepoutilError,
)
from .formatters import (
    HEADER_STYLE,
    JJ_PATH_STYLE,
    MODIFIED_STYLE,
    STASH_STYLE,
    TRACKING_STYLE,
    UNTRACKED_STYLE,
    FormatOptions,
    OutputFormatter,
    should_colour,
)
from .vcs import GitOperations, JjOperations

logger = logging.getLogger(__name__)

# Error channel. Normal output never goes through here.
err_console = Console(stderr=True, soft_wrap=True, highlight=False)

CONFIG_FILENAME = ".repoutilrc"
CONFIG_ENV_VAR = "REPOUTIL_CONFIG"


def report_error(message: str) -> None:
    err_console.print(f"[red]{escape(message)}[/]")


# =============================================================================
# Domain Models
# =============================================================================


class MembershipKind(StrEnum):
    """Whether a configured path is tracked or deliberately left out."""

    INCLUDED = "included"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class ConfigEntry:
    """One meaningful line of the config file."""

    path: Path
    kind: MembershipKind = MembershipKind.INCLUDED

    @classmethod
    def parse(cls, line: str, home: Path) -> ConfigEntry | None:
        """Parse a config line; blank lines and comments yield None."""
        line = line.strip()
        if not line or line.startswith("#"):
            return None
        if line.startswith("!"):
            return cls(expand_home(line[1:], home), MembershipKind.EXCLUDED)
        return cls(expand_home(line, home), MembershipKind.INCLUDED)


@dataclass(frozen=True, order=True)
class RepositoryPath:
    """An absolute path known to hold VCS metadata."""

    path: Path
    kind: MembershipKind = MembershipKind.INCLUDED

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class RepositorySet:
    """Resolved repositories, sorted and deduplicated, split by membership."""

    included: list[RepositoryPath] = field(default_factory=list)
    excluded: list[RepositoryPath] = field(default_factory=list)

    @property
    def included_paths(self) -> list[Path]:
        return [r.path for r in self.included]

    @property
    def excluded_paths(self) -> list[Path]:
        return [r.path for r in self.excluded]


@dataclass
class StatusSummary:
    """What a short status says about a repository."""

    branch: str = ""
    tracking: str = ""
    ahead: int = 0
    behind: int = 0
    modified: int = 0
    untracked: int = 0
    staged: int = 0

    @property
    def needs_attention(self) -> bool:
        return bool(self.tracking or self.modified or self.untracked)

    def parts(self, formatter: OutputFormatter | None = None) -> list[str]:
        def style(text: str, styles: tuple[str, ...]) -> str:
            return formatter.style(text, styles) if formatter else text

        parts = []
        if self.tracking:
            parts.append(style(self.tracking, TRACKING_STYLE))
        if self.modified > 0:
            parts.append(style(f"{self.modified}±", MODIFIED_STYLE))
        if self.untracked > 0:
            parts.append(style(f"{self.untracked}?", UNTRACKED_STYLE))
        return parts

    def render(self, formatter: OutputFormatter | None = None) -> str:
        """The branchstat summary; empty means nothing to report."""
        return ", ".join(self.parts(formatter))


@dataclass
class RepoResult:
    """Outcome of one operation against one repository."""

    repository: RepositoryPath
    output: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# =============================================================================
# Configuration & Repository Resolution
# =============================================================================


def expand_home(raw: str, home: Path) -> Path:
    """Expand a leading `~`; other relative paths are taken from home too."""
    if raw.startswith("~"):
        rest = raw[1:].lstrip("/")
        return home / rest if rest else home
    return home / raw


def resolve_config_path() -> Path:
    """$REPOUTIL_CONFIG if set, otherwise ~/.repoutilrc."""
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        return Path(env_config).expanduser()
    return Path.home() / CONFIG_FILENAME


def read_config(config_path: Path) -> list[str]:
    if not config_path.exists():
        raise ConfigMissing(config_path)
    try:
        return config_path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigUnreadable(config_path, e) from e


def parse_config(lines: Iterable[str], home: Path | None = None) -> list[ConfigEntry]:
    home = home or Path.home()
    entries = []
    for line in lines:
        entry = ConfigEntry.parse(line, home)
        if entry is not None:
            entries.append(entry)
    return entries


def expand_directory(
    directory: Path, is_repo: Callable[[Path], bool] = GitOperations.is_repo
) -> list[Path]:
    """Repositories exactly one level below a directory.

    Children that can't be inspected are skipped; only failing to list the
    directory itself is an error.
    """
    try:
        children = list(directory.iterdir())
    except OSError as e:
        raise DirectoryExpansionFailed(directory, e) from e
    return sorted(p for p in children if _is_repo_dir(p, is_repo))


def _is_repo_dir(path: Path, is_repo: Callable[[Path], bool]) -> bool:
    try:
        return path.is_dir() and is_repo(path)
    except OSError:
        return False


def resolve(
    config_lines: Iterable[str],
    home: Path | None = None,
    is_repo: Callable[[Path], bool] = GitOperations.is_repo,
    report: Callable[[str], None] = report_error,
) -> RepositorySet:
    """Resolve config lines into the included and excluded repositories.

    Configured paths that are not repositories themselves are expanded one
    level. A directory that can't be listed is reported and contributes
    nothing. Exclusion is applied after expansion and always wins.
    """
    found: dict[MembershipKind, list[Path]] = {kind: [] for kind in MembershipKind}

    for entry in parse_config(config_lines, home):
        try:
            if is_repo(entry.path):
                found[entry.kind].append(entry.path)
            else:
                found[entry.kind].extend(expand_directory(entry.path, is_repo))
        except DirectoryExpansionFailed as e:
            report(str(e))
        except OSError as e:
            report(str(DirectoryExpansionFailed(entry.path, e)))

    excluded = sorted(set(found[MembershipKind.EXCLUDED]))
    excluded_lookup = set(excluded)
    included = [p for p in sorted(set(found[MembershipKind.INCLUDED])) if p not in excluded_lookup]

    return RepositorySet(
        included=[RepositoryPath(p, MembershipKind.INCLUDED) for p in included],
        excluded=[RepositoryPath(p, MembershipKind.EXCLUDED) for p in excluded],
    )


def load_repository_set(config_path: Path | None = None) -> RepositorySet:
    """Read the config file and resolve it. Raises ConfigError."""
    config_path = config_path or resolve_config_path()
    return resolve(read_config(config_path))


def common_ancestor(paths: list[Path]) -> Path:
    """Longest run of leading path components shared by every path.

    Fewer than two paths have no meaningful common prefix, so the empty path
    is returned.
    """
    if len(paths) <= 1:
        return Path()
    prefix: list[str] = []
    for components in zip(*(p.parts for p in paths)):
        first = components[0]
        if any(c != first for c in components[1:]):
            break
        prefix.append(first)
    return Path(*prefix)


def add_current_directory(config_path: Path, cwd: Path) -> Path:
    """Append cwd to the config file if it's a repository root."""
    if not GitOperations.is_repo(cwd):
        raise AddOutsideRepository(cwd)
    with open(config_path, "a", encoding="utf-8") as f:
        f.write(f"{cwd}\n")
        f.flush()
    logger.info("Added %s to %s", cwd, config_path)
    return cwd


# =============================================================================
# Status Parser
# =============================================================================

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_AHEAD_RE = re.compile(r"ahead (\d+)")
_BEHIND_RE = re.compile(r"behind (\d+)")

# A coloured status code sits behind a fixed-width escape like "\x1b[32m"
_ANSI_PREFIX_WIDTH = 5
_STAGED_CODES = frozenset("MADRCT")


def _status_code(line: str) -> str:
    trimmed = line.lstrip()
    if trimmed.startswith("\x1b"):
        return trimmed[_ANSI_PREFIX_WIDTH : _ANSI_PREFIX_WIDTH + 1]
    return trimmed[:1]


def _index_code(line: str) -> str:
    if line.startswith("\x1b"):
        return line[_ANSI_PREFIX_WIDTH : _ANSI_PREFIX_WIDTH + 1]
    return line[:1]


def parse_status(raw_lines: list[str]) -> StatusSummary:
    """Classify `git status --porcelain -b` style output.

    The `##` header gives the branch and, inside brackets, the tracking
    state ("ahead 2, behind 1" becomes "↑2, ↓1"). Each file line counts as
    modified (`M`) or untracked (`?`).
    """
    summary = StatusSummary()
    lines = list(raw_lines)

    if lines and _ANSI_RE.sub("", lines[0]).startswith("##"):
        header = _ANSI_RE.sub("", lines.pop(0))[2:].strip()
        summary.branch = re.split(r"\.\.\.| \[", header, maxsplit=1)[0]
        start, end = header.find("["), header.find("]")
        if start != -1 and end > start:
            tracking = header[start + 1 : end]
            summary.tracking = tracking.replace("ahead ", "↑").replace("behind ", "↓")
            if m := _AHEAD_RE.search(tracking):
                summary.ahead = int(m.group(1))
            if m := _BEHIND_RE.search(tracking):
                summary.behind = int(m.group(1))

    for line in lines:
        code = _status_code(line)
        if code == "M":
            summary.modified += 1
        elif code == "?":
            summary.untracked += 1
        if _index_code(line) in _STAGED_CODES:
            summary.staged += 1

    return summary


# =============================================================================
# Operations
# =============================================================================

Handler = Callable[[RepositoryPath, FormatOptions], str | None]


def list_repo(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """List each repo found."""
    return OutputFormatter(fmt).path_line(repo.path)


def untracked(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """List a repository the config deliberately leaves out."""
    return OutputFormatter(fmt).path_line(repo.path)


def stat(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """Short status: tracking header (if not up to date) and changed files."""
    lines = GitOperations(repo.path).short_status()
    if lines and not lines[0].endswith("]"):
        lines = lines[1:]
    if not lines:
        return None
    return OutputFormatter(fmt).block(repo.path, lines)


def needs_attention(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """Name any repo with local or remote changes."""
    if not stat(repo, fmt):
        return None
    return OutputFormatter(fmt).path_line(repo.path)


def branches(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """All local branches, newest-sorting first."""
    names = sorted(GitOperations(repo.path).branches(), reverse=True)
    joined = ", ".join(name.strip() for name in names)
    formatter = OutputFormatter(fmt)
    if fmt.use_json:
        return formatter.json_item(repo.path, joined, path_as_arg=False)
    return f"{formatter.padded_path(repo.path, 30)}\t{joined}"


def branchstat(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """One line of ahead/behind and modified/untracked counts."""
    summary = parse_status(GitOperations(repo.path).branch_status())
    formatter = OutputFormatter(fmt)
    joined = summary.render(formatter)
    if not joined:
        return None
    return formatter.summary_line(repo.path, joined)


def stashcount(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    count = len(GitOperations(repo.path).stash_list())
    if count == 0:
        return None
    formatter = OutputFormatter(fmt)
    return formatter.summary_line(repo.path, formatter.style(f"{count} stashes", STASH_STYLE))


def fetch(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """Fetch all remotes and tags, then report the fresh branchstat."""
    GitOperations(repo.path).fetch()
    return branchstat(repo, fmt)


def pull(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    GitOperations(repo.path).pull()
    return None


def push(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    GitOperations(repo.path).push()
    return None


def dashboard(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """Highlighted header and recent commits, for repos needing attention."""
    status = stat(repo, fmt)
    if not status:
        return None
    if fmt.use_json:
        return status
    formatter = OutputFormatter(fmt)
    log = GitOperations(repo.path).recent_log(colour=not fmt.no_colour)
    header = formatter.style(f" {formatter.short_path(repo.path)} ", HEADER_STYLE)
    body = "\n".join(f"  {line}" for line in log)
    return f"\n{header}\n{body}"


def jj_stat(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    """jj status for jujutsu repositories with pending changes."""
    ops = JjOperations(repo.path)
    if not ops.has_modifications():
        return None
    lines = ops.status(colour=not fmt.no_colour)
    if not lines:
        return None
    formatter = OutputFormatter(fmt)
    if fmt.use_json:
        return formatter.json_item(repo.path, ", ".join(lines))
    header = formatter.style(formatter.short_path(repo.path), JJ_PATH_STYLE)
    body = "\n".join(f"░ {line}" for line in lines)
    return f"{header}\n{body}\n"


def jj_sync(repo: RepositoryPath, fmt: FormatOptions) -> str | None:
    JjOperations(repo.path).git_fetch()
    return jj_stat(repo, fmt)


class Operation(StrEnum):
    """Every command repoutil knows about."""

    LIST = "list"
    STAT = "stat"
    BRANCHSTAT = "branchstat"
    BRANCHES = "branches"
    FETCH = "fetch"
    PUSH = "push"
    PULL = "pull"
    UNCLEAN = "unclean"
    UNTRACKED = "untracked"
    DASHBOARD = "dashboard"
    STASHCOUNT = "stashcount"
    JJ_STAT = "jj-stat"
    JJ_SYNC = "jj-sync"
    ADD = "add"

    @property
    def uses_excluded(self) -> bool:
        return self is Operation.UNTRACKED

    @property
    def is_jj(self) -> bool:
        return self in (Operation.JJ_STAT, Operation.JJ_SYNC)


def handler_for(operation: Operation) -> Handler | None:
    """Map an operation to its per-repository handler.

    `add` edits the config file instead of visiting repositories, so it has
    no handler.
    """
    match operation:
        case Operation.LIST:
            return list_repo
        case Operation.STAT:
            return stat
        case Operation.BRANCHSTAT:
            return branchstat
        case Operation.BRANCHES:
            return branches
        case Operation.FETCH:
            return fetch
        case Operation.PUSH:
            return push
        case Operation.PULL:
            return pull
        case Operation.UNCLEAN:
            return needs_attention
        case Operation.UNTRACKED:
            return untracked
        case Operation.DASHBOARD:
            return dashboard
        case Operation.STASHCOUNT:
            return stashcount
        case Operation.JJ_STAT:
            return jj_stat
        case Operation.JJ_SYNC:
            return jj_sync
        case _:
            return None


def lookup(command_name: str) -> Handler | None:
    try:
        return handler_for(Operation(command_name))
    except ValueError:
        return None


# =============================================================================
# Parallel Executor & Aggregator
# =============================================================================


def run_handler(handler: Handler, repo: RepositoryPath, fmt: FormatOptions) -> RepoResult:
    """Run a handler, capturing its failure instead of raising."""
    try:
        return RepoResult(repository=repo, output=handler(repo, fmt))
    except (RepoutilError, OSError, UnicodeDecodeError) as e:
        return RepoResult(repository=repo, error=e)


def run_parallel(
    repos: list[RepositoryPath],
    handler: Handler,
    fmt: FormatOptions,
    max_workers: int | None = None,
) -> list[RepoResult]:
    """Run handler against every repository on a thread pool."""
    results = []

    if len(repos) <= 1 or max_workers == 1:
        for repo in repos:
            results.append(run_handler(handler, repo, fmt))
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(run_handler, handler, repo, fmt): repo for repo in repos}
            for future in as_completed(futures):
                results.append(future.result())

    # Sort by path for consistent ordering
    results.sort(key=lambda r: r.repository.path)
    return results


def report_failures(results: list[RepoResult], report: Callable[[str], None] = report_error) -> int:
    """Send every failed repository to the error channel."""
    failures = [r for r in results if not r.ok]
    for result in failures:
        report(f"Repo {result.repository.path}: {result.error}")
    return len(failures)


def run(
    repos: list[RepositoryPath],
    handler: Handler,
    fmt: FormatOptions,
    max_workers: int | None = None,
) -> list[str]:
    """Non-empty outputs of handler across repos; failures go to stderr."""
    results = run_parallel(repos, handler, fmt, max_workers=max_workers)
    report_failures(results)
    return [r.output for r in results if r.ok and r.output]


def aggregate(outputs: list[str], fmt: FormatOptions) -> str:
    return OutputFormatter(fmt).join(outputs)


# =============================================================================
# CLI Application
# =============================================================================


class ColourChoice(StrEnum):
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


@dataclass
class Settings:
    """Global CLI options, shared with every subcommand through ctx.obj."""

    use_json: bool = False
    colour: ColourChoice = ColourChoice.AUTO
    threads: int | None = None
    keep_home: bool = False
    config_path: Path | None = None

    def format_options(self, repos: list[RepositoryPath]) -> FormatOptions:
        prefix: Path | None = None
        if not self.keep_home:
            prefix = common_ancestor([r.path for r in repos])
            if prefix == Path():
                prefix = None
        return FormatOptions(
            use_json=self.use_json,
            no_colour=self.use_json or not should_colour(self.colour.value),
            common_prefix=prefix,
        )


app = typer.Typer(
    name="repoutil",
    help="Run common operations across many repositories.",
    no_args_is_help=True,
)
git_app = typer.Typer(help="Operations on git repositories.", no_args_is_help=True)
jj_app = typer.Typer(help="Operations on jujutsu repositories.", no_args_is_help=True)
app.add_typer(git_app, name="git")
app.add_typer(jj_app, name="jj")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"repoutil {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Send the package's log records to stderr through rich."""
    package_logger = logging.getLogger("repoutil")
    package_logger.handlers[:] = [RichHandler(console=err_console, show_path=False)]
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback()
def main(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    colour: ColourChoice = typer.Option(
        ColourChoice.AUTO,
        "--color",
        help="Colorize output",
    ),
    no_colour: bool = typer.Option(
        False,
        "--no-color",
        help="Never colorize output (same as --color never)",
    ),
    threads: int = typer.Option(
        None,
        "--threads",
        min=1,
        help="Limit thread pool size",
    ),
    keep_home: bool = typer.Option(
        False,
        "--keep-home",
        "-k",
        help="Show full paths instead of stripping the common prefix",
    ),
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Config file (default: ${CONFIG_ENV_VAR} or ~/{CONFIG_FILENAME})",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log VCS commands to stderr",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """repoutil: Run common operations across many repositories."""
    configure_logging(verbose)
    ctx.obj = Settings(
        use_json=json_output,
        colour=ColourChoice.NEVER if no_colour else colour,
        threads=threads,
        keep_home=keep_home,
        config_path=config.expanduser() if config else None,
    )


def _progress(settings: Settings, description: str):
    """Spinner on stderr while repositories are being visited."""
    if settings.use_json or not err_console.is_terminal:
        return contextlib.nullcontext()
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=err_console,
        transient=True,
    )
    progress.add_task(description, total=None)
    return progress


def dispatch(ctx: typer.Context, operation: Operation) -> None:
    """Resolve repositories, run operation on each and print the report."""
    settings: Settings = ctx.obj or Settings()

    try:
        repo_set = load_repository_set(settings.config_path)
    except ConfigError as e:
        report_error(f"Error: {e}")
        raise typer.Exit(1)

    repos = repo_set.excluded if operation.uses_excluded else repo_set.included
    if operation.is_jj:
        repos = [r for r in repos if JjOperations.is_repo(r.path)]

    handler = handler_for(operation)
    if handler is None:
        raise typer.BadParameter(f"{operation} does not visit repositories")

    fmt = settings.format_options(repos)
    logger.debug("Running %s over %d repositories", operation, len(repos))
    with _progress(settings, f"Running {operation.value}..."):
        outputs = run(repos, handler, fmt, max_workers=settings.threads)

    report = aggregate(outputs, fmt)
    if report:
        typer.echo(report, color=True if not fmt.no_colour else None)


def _register(
    target: typer.Typer,
    operation: Operation,
    help_text: str,
    name: str | None = None,
    hidden: bool = False,
):
    def command(ctx: typer.Context):
        dispatch(ctx, operation)

    command.__doc__ = help_text
    target.command(name or operation.value, help=help_text, hidden=hidden)(command)


GIT_COMMANDS = [
    (Operation.STAT, "Show short status"),
    (Operation.BRANCHSTAT, "List short status of all branches"),
    (Operation.BRANCHES, "List all branches"),
    (Operation.FETCH, "Fetch commits and tags"),
    (Operation.PULL, "Pull commits"),
    (Operation.PUSH, "Push commits"),
    (Operation.UNCLEAN, "List repos with local changes"),
    (Operation.UNTRACKED, "List repos excluded in the config file"),
    (Operation.DASHBOARD, "Display git dashboard"),
    (Operation.STASHCOUNT, "Count stashes"),
]

ALIASES = {
    "s": Operation.STAT,
    "f": Operation.FETCH,
    "l": Operation.LIST,
    "u": Operation.UNCLEAN,
    "b": Operation.BRANCHSTAT,
}

_register(app, Operation.LIST, f"List repositories tracked in ~/{CONFIG_FILENAME}")
for _operation, _help in GIT_COMMANDS:
    _register(app, _operation, _help)
    _register(git_app, _operation, _help)
for _alias, _operation in ALIASES.items():
    _register(app, _operation, f"Alias for {_operation.value}", name=_alias, hidden=True)
_register(jj_app, Operation.JJ_STAT, "Get status of all repositories", name="stat")
_register(jj_app, Operation.JJ_SYNC, "Fetch and show status of all repositories", name="sync")


@app.command()
def add(ctx: typer.Context):
    """Add the current directory to the config file."""
    settings: Settings = ctx.obj or Settings()
    config_path = settings.config_path or resolve_config_path()
    try:
        add_current_directory(config_path, Path.cwd())
    except AddOutsideRepository as e:
        report_error(f"Error: {e}")
        raise typer.Exit(1)
    except OSError as e:
        report_error(f"Error: couldn't write {config_path}: {e}")
        raise typer.Exit(1)
