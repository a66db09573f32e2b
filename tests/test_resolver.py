"""Tests for config parsing and repository set resolution."""

from pathlib import Path

import pytest

from repoutil.core import (
    ConfigEntry,
    MembershipKind,
    expand_directory,
    load_repository_set,
    parse_config,
    read_config,
    resolve,
)
from repoutil.errors import ConfigMissing, ConfigUnreadable, DirectoryExpansionFailed


class TestConfigEntry:
    def test_blank_and_comment_lines_are_ignored(self, home):
        assert ConfigEntry.parse("", home) is None
        assert ConfigEntry.parse("   ", home) is None
        assert ConfigEntry.parse("# a comment", home) is None
        assert ConfigEntry.parse("   # indented comment", home) is None

    def test_tilde_expands_to_home(self, home):
        entry = ConfigEntry.parse("~/code", home)
        assert entry == ConfigEntry(home / "code", MembershipKind.INCLUDED)

    def test_bare_tilde_is_home(self, home):
        assert ConfigEntry.parse("~", home).path == home

    def test_bang_marks_exclusion(self, home):
        entry = ConfigEntry.parse("!~/code/vendor", home)
        assert entry.kind is MembershipKind.EXCLUDED
        assert entry.path == home / "code" / "vendor"

    def test_absolute_path_is_untouched(self, home, tmp_path):
        target = tmp_path / "elsewhere"
        assert ConfigEntry.parse(str(target), home).path == target

    def test_relative_path_is_taken_from_home(self, home):
        assert ConfigEntry.parse("code", home).path == home / "code"

    def test_surrounding_whitespace_is_trimmed(self, home):
        assert ConfigEntry.parse("  ~/code  ", home).path == home / "code"


def test_parse_config_keeps_order(home):
    entries = parse_config(["~/b", "# skip", "", "!~/a"], home)
    assert [e.path for e in entries] == [home / "b", home / "a"]
    assert [e.kind for e in entries] == [MembershipKind.INCLUDED, MembershipKind.EXCLUDED]


class TestExpandDirectory:
    def test_only_repository_children_are_returned(self, tmp_path, fake_repo):
        parent = tmp_path / "code"
        fake_repo(parent / "b")
        fake_repo(parent / "a")
        (parent / "plain").mkdir()
        (parent / "file.txt").write_text("x")

        assert expand_directory(parent) == [parent / "a", parent / "b"]

    def test_does_not_recurse_deeper_than_one_level(self, tmp_path, fake_repo):
        parent = tmp_path / "code"
        fake_repo(parent / "group" / "nested")
        assert expand_directory(parent) == []

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(DirectoryExpansionFailed, match="nope"):
            expand_directory(tmp_path / "nope")

    def test_locked_child_is_skipped(self, tmp_path, fake_repo, locked_dir):
        parent = tmp_path / "code"
        ok = fake_repo(parent / "ok")
        locked_dir(parent / "locked")

        assert expand_directory(parent) == [ok]

    def test_child_whose_check_fails_is_skipped(self, tmp_path, fake_repo):
        parent = tmp_path / "code"
        ok = fake_repo(parent / "ok")
        denied = fake_repo(parent / "denied")

        def is_repo(path):
            if path == denied:
                raise PermissionError(13, "Permission denied", str(path))
            return (path / ".git").exists()

        assert expand_directory(parent, is_repo) == [ok]


class TestResolve:
    def test_directory_is_expanded_to_child_repositories(self, home, fake_repo):
        a = fake_repo(home / "code" / "a")
        b = fake_repo(home / "code" / "b")
        (home / "code" / "notes").mkdir()

        repo_set = resolve(["~/code"], home)

        assert repo_set.included_paths == [a, b]
        assert repo_set.excluded == []

    def test_repository_entry_is_added_directly(self, home, fake_repo):
        dotfiles = fake_repo(home / "dotfiles")
        fake_repo(home / "dotfiles" / "inner")

        repo_set = resolve(["~/dotfiles"], home)

        assert repo_set.included_paths == [dotfiles]

    def test_duplicates_are_removed(self, home, fake_repo):
        a = fake_repo(home / "code" / "a")

        repo_set = resolve(["~/code", "~/code/a", str(a)], home)

        assert repo_set.included_paths == [a]

    def test_results_are_sorted(self, home, fake_repo):
        z = fake_repo(home / "z")
        a = fake_repo(home / "a")

        repo_set = resolve(["~/z", "~/a"], home)

        assert repo_set.included_paths == [a, z]

    def test_exclusion_wins_over_expansion(self, home, fake_repo):
        fake_repo(home / "code" / "a")
        b = fake_repo(home / "code" / "b")

        repo_set = resolve(["~/code", "!~/code/a"], home)

        assert repo_set.included_paths == [b]
        assert repo_set.excluded_paths == [home / "code" / "a"]

    def test_path_listed_both_ways_is_only_excluded(self, home, fake_repo):
        a = fake_repo(home / "a")

        repo_set = resolve(["!~/a", "~/a"], home)

        assert repo_set.included == []
        assert repo_set.excluded_paths == [a]
        assert all(r.kind is MembershipKind.EXCLUDED for r in repo_set.excluded)

    def test_excluded_directory_is_expanded(self, home, fake_repo):
        keep = fake_repo(home / "code" / "keep")
        fake_repo(home / "vendor" / "lib")

        repo_set = resolve(["~/code", "~/vendor", "!~/vendor"], home)

        assert repo_set.included_paths == [keep]
        assert repo_set.excluded_paths == [home / "vendor" / "lib"]

    def test_no_path_in_both_partitions(self, home, fake_repo):
        for name in ("a", "b", "c"):
            fake_repo(home / "code" / name)

        repo_set = resolve(["~/code", "!~/code/b", "~/code/b", "!~/code"], home)

        assert not set(repo_set.included_paths) & set(repo_set.excluded_paths)

    def test_idempotent(self, home, fake_repo):
        fake_repo(home / "code" / "a")
        fake_repo(home / "code" / "b")
        lines = ["~/code", "!~/code/b"]

        assert resolve(lines, home) == resolve(lines, home)

    def test_directory_without_repositories_contributes_nothing(self, home):
        (home / "empty").mkdir()
        reports = []

        repo_set = resolve(["~/empty"], home, report=reports.append)

        assert repo_set.included == []
        assert reports == []

    def test_missing_directory_is_reported_and_skipped(self, home, fake_repo):
        a = fake_repo(home / "code" / "a")
        reports = []

        repo_set = resolve(["~/missing", "~/code"], home, report=reports.append)

        assert repo_set.included_paths == [a]
        assert len(reports) == 1
        assert str(home / "missing") in reports[0]

    def test_path_under_locked_parent_is_reported_and_skipped(self, home, fake_repo, locked_dir):
        a = fake_repo(home / "code" / "a")
        locked_dir(home / "locked")
        reports = []

        repo_set = resolve(["~/locked/repo", "~/code"], home, report=reports.append)

        assert repo_set.included_paths == [a]
        assert len(reports) == 1
        assert str(home / "locked" / "repo") in reports[0]

    def test_failing_repository_check_is_reported_and_skipped(self, home, fake_repo):
        a = fake_repo(home / "code" / "a")
        denied = home / "denied"
        reports = []

        def is_repo(path):
            if path == denied:
                raise PermissionError(13, "Permission denied", str(path))
            return (path / ".git").exists()

        repo_set = resolve(["~/denied", "~/code"], home, is_repo=is_repo, report=reports.append)

        assert repo_set.included_paths == [a]
        assert reports == [f"Couldn't get repos from '{denied}': [Errno 13] Permission denied: '{denied}'"]

    def test_unreadable_directory_goes_to_stderr_by_default(self, home, capsys):
        resolve(["~/missing"], home)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Couldn't get repos from" in captured.err

    def test_custom_repository_predicate(self, home):
        (home / "code" / "jj-only" / ".jj").mkdir(parents=True)

        repo_set = resolve(["~/code"], home, is_repo=lambda p: (p / ".jj").is_dir())

        assert repo_set.included_paths == [home / "code" / "jj-only"]


class TestConfigFile:
    def test_missing_config_raises(self, home):
        with pytest.raises(ConfigMissing):
            read_config(home / ".repoutilrc")

    def test_undecodable_config_raises(self, home):
        config = home / ".repoutilrc"
        config.write_bytes(b"\xff\xfe~/code\n")

        with pytest.raises(ConfigUnreadable):
            read_config(config)

    def test_load_repository_set_uses_home_config(self, home, fake_repo, write_config):
        a = fake_repo(home / "code" / "a")
        write_config("# my repos", "~/code")

        assert load_repository_set().included_paths == [a]

    def test_load_repository_set_honours_env_override(self, home, fake_repo, tmp_path, monkeypatch):
        a = fake_repo(home / "a")
        config = tmp_path / "custom-rc"
        config.write_text("~/a\n")
        monkeypatch.setenv("REPOUTIL_CONFIG", str(config))

        assert load_repository_set().included_paths == [a]

    def test_load_repository_set_without_config(self, home):
        with pytest.raises(ConfigMissing, match=r"\.repoutilrc"):
            load_repository_set()


def test_repository_paths_are_absolute(home, fake_repo):
    fake_repo(home / "code" / "a")
    repo_set = resolve(["code"], home)
    assert all(Path(r.path).is_absolute() for r in repo_set.included)
