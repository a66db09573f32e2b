"""Output formatters for plain-text and JSON display."""

from __future__ import annotations

import json
import os
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from rich.color import ColorSystem
from rich.console import Console
from rich.style import Style

# Placeholder emitted when a JSON report would otherwise have no items
NO_ITEMS = {"title": "No items", "arg": ""}

# Styles used across the plain renderers
TRACKING_STYLE = ("blue",)
MODIFIED_STYLE = ("green",)
UNTRACKED_STYLE = ("yellow",)
STASH_STYLE = ("yellow",)
PATH_STYLE = ("bold", "red")
JJ_PATH_STYLE = ("yellow",)
HEADER_STYLE = ("bold", "black", "on green")


@dataclass(frozen=True)
class FormatOptions:
    """Per-run rendering options shared by every handler."""

    use_json: bool = False
    no_colour: bool = True
    common_prefix: Path | None = None


def apply_style(text: str, styles: Sequence[str]) -> str:
    """Wrap text in the ANSI SGR sequences for an ordered set of style tokens.

    Tokens are anything `rich.style.Style.parse` accepts ("bold", "red",
    "on green", ...). Later tokens override earlier ones.
    """
    if not styles:
        return text
    style = Style.combine(Style.parse(token) for token in styles)
    return style.render(text, color_system=ColorSystem.STANDARD)


def should_colour(choice: str = "auto", console: Console | None = None) -> bool:
    """Resolve an auto/always/never colour choice for stdout."""
    if choice == "always":
        return True
    if choice == "never":
        return False
    console = console or Console()
    return console.is_terminal and "NO_COLOR" not in os.environ


def remove_common_ancestor(path: Path, common_prefix: Path | None) -> str:
    """Display form of a path, with the shared prefix stripped.

    A path equal to the prefix strips to the empty string.
    """
    if common_prefix is None:
        return str(path)
    try:
        relative = path.relative_to(common_prefix)
    except ValueError:
        return str(path)
    return "" if relative == Path() else str(relative)


def format_json(
    title: Path,
    subtitle: str | None,
    path_as_arg: bool,
    common_prefix: Path | None,
) -> str:
    """Render one repository as a JSON item.

    `arg` carries the full path only when a downstream consumer should be
    able to act on it.
    """
    item = {
        "title": remove_common_ancestor(title, common_prefix),
        "arg": str(title) if path_as_arg else "",
    }
    if subtitle is not None:
        item["subtitle"] = subtitle
    return json.dumps(item, ensure_ascii=False)


class OutputFormatter:
    """Format per-repository output according to FormatOptions."""

    def __init__(self, options: FormatOptions):
        self.options = options

    @property
    def use_json(self) -> bool:
        return self.options.use_json

    def style(self, text: str, styles: Sequence[str]) -> str:
        if self.options.no_colour or self.options.use_json:
            return text
        return apply_style(text, styles)

    def short_path(self, path: Path) -> str:
        """Stripped path for plain output; the prefix repo itself keeps its full path."""
        return remove_common_ancestor(path, self.options.common_prefix) or str(path)

    def json_item(self, path: Path, subtitle: str | None = None, path_as_arg: bool = True) -> str:
        return format_json(path, subtitle, path_as_arg, self.options.common_prefix)

    def padded_path(self, path: Path, width: int, styles: Sequence[str] = ()) -> str:
        """Shortened path, styled, padded to a visible width."""
        short = self.short_path(path)
        padding = " " * max(0, width - len(short))
        return self.style(short, styles) + padding

    def path_line(self, path: Path) -> str:
        """A bare actionable path: used by list, unclean and untracked."""
        if self.use_json:
            return self.json_item(path, None, path_as_arg=True)
        return self.short_path(path)

    def summary_line(self, path: Path, summary: str, width: int = 40) -> str:
        """`{path:width} | {summary}`, or a JSON item with summary as subtitle."""
        if self.use_json:
            return self.json_item(path, summary, path_as_arg=True)
        return f"{self.padded_path(path, width, PATH_STYLE)} | {summary}"

    def block(self, path: Path, lines: list[str]) -> str:
        """Path header followed by the raw lines."""
        if self.use_json:
            return self.json_item(path, ", ".join(lines), path_as_arg=True)
        return "{}\n{}\n".format(self.short_path(path), "\n".join(lines))

    def join(self, outputs: list[str]) -> str:
        """Aggregate non-empty per-repository outputs into the final report."""
        outputs = [o for o in outputs if o]
        if self.use_json:
            items = [json.loads(o) for o in outputs] or [NO_ITEMS]
            return json.dumps({"items": items}, ensure_ascii=False)
        return "\n".join(o.rstrip() for o in outputs)
