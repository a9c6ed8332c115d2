"""Tests for deterministic build identifiers."""

from __future__ import annotations

import os
import shutil
import subprocess
from datetime import date
from unittest.mock import patch

import pytest

from shipwright._subprocess import CommandTimeout
from shipwright.errors import IncompleteHistoryError
from shipwright.versioning import (
    GitHistory,
    StaticHistory,
    VersionGenerator,
    generate_version,
    version_key,
)


class TestGenerateVersion:
    def test_format(self):
        assert generate_version(date(2025, 12, 29), 128) == "20251229_128"

    def test_dot_separator(self):
        assert generate_version(date(2025, 1, 5), 7, ".") == "20250105.7"

    def test_unsupported_separator(self):
        with pytest.raises(ValueError, match="separator"):
            generate_version(date(2025, 1, 5), 7, "-")

    @pytest.mark.parametrize("count", [None, 0, -3, True])
    def test_incomplete_history(self, count):
        with pytest.raises(IncompleteHistoryError) as exc:
            generate_version(date(2025, 1, 5), count)
        assert exc.value.kind == "incomplete_history"
        assert "fetch" in exc.value.message

    def test_deterministic(self):
        day = date(2025, 12, 29)
        assert generate_version(day, 128) == generate_version(day, 128)

    def test_monotonic_across_days_and_commits(self):
        versions = [
            generate_version(date(2025, 12, 29), 128),
            generate_version(date(2025, 12, 29), 129),
            generate_version(date(2025, 12, 30), 129),
            generate_version(date(2026, 1, 2), 131),
        ]
        keys = [version_key(v) for v in versions]
        assert keys == sorted(keys)
        assert len(set(keys)) == len(keys)


class TestVersionKey:
    def test_parses_both_separators(self):
        assert version_key("20251229_128") == (date(2025, 12, 29), 128)
        assert version_key("20251229.128") == (date(2025, 12, 29), 128)

    def test_count_compared_numerically(self):
        assert version_key("20251229_99") < version_key("20251229_100")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError, match="Not a build identifier"):
            version_key("v1.2.3")


class TestStaticHistory:
    def test_facts(self):
        history = StaticHistory(42, "main", "v1.0.0")
        assert history.commit_count() == 42
        assert history.branch() == "main"
        assert history.tag() == "v1.0.0"

    def test_missing_count(self):
        with pytest.raises(IncompleteHistoryError, match="no commit count"):
            StaticHistory(None).commit_count()


class TestVersionGenerator:
    def test_uses_injected_clock(self):
        generator = VersionGenerator(StaticHistory(128), clock=lambda: date(2025, 12, 29))
        assert generator.generate() == "20251229_128"

    def test_separator(self):
        generator = VersionGenerator(
            StaticHistory(3), clock=lambda: date(2025, 12, 29), separator="."
        )
        assert generator.generate() == "20251229.3"


def _completed(stdout: str = "", returncode: int = 0, stderr: str = ""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


class TestGitHistoryMocked:
    def test_commit_count(self, tmp_path):
        with patch(
            "shipwright.versioning.run_command",
            side_effect=[_completed("false\n"), _completed("128\n")],
        ) as mock_run:
            assert GitHistory(tmp_path).commit_count() == 128
        args = mock_run.call_args_list[1].args[0]
        assert args[-3:] == ["rev-list", "--count", "HEAD"]

    def test_shallow_clone(self, tmp_path):
        with patch("shipwright.versioning.run_command", return_value=_completed("true\n")):
            with pytest.raises(IncompleteHistoryError, match="shallow"):
                GitHistory(tmp_path).commit_count()

    def test_not_a_repository(self, tmp_path):
        with patch(
            "shipwright.versioning.run_command",
            return_value=_completed("", 128, "fatal: not a git repository"),
        ):
            with pytest.raises(IncompleteHistoryError, match="not a git repository"):
                GitHistory(tmp_path).commit_count()

    def test_git_missing(self, tmp_path):
        with patch("shipwright.versioning.run_command", side_effect=FileNotFoundError("git")):
            with pytest.raises(IncompleteHistoryError, match="not found"):
                GitHistory(tmp_path).commit_count()
            assert GitHistory(tmp_path).branch() is None

    def test_timeout(self, tmp_path):
        with patch("shipwright.versioning.run_command", side_effect=CommandTimeout(30)):
            with pytest.raises(IncompleteHistoryError, match="timed out"):
                GitHistory(tmp_path).commit_count()

    def test_detached_head_has_no_branch(self, tmp_path):
        with patch("shipwright.versioning.run_command", return_value=_completed("HEAD\n")):
            assert GitHistory(tmp_path).branch() is None

    def test_no_tag(self, tmp_path):
        with patch(
            "shipwright.versioning.run_command",
            return_value=_completed("", 128, "fatal: no tag exactly matches"),
        ):
            assert GitHistory(tmp_path).tag() is None


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestGitHistoryReal:
    def _git(self, repo, *args):
        subprocess.run(
            ["git", "-C", str(repo), *args],
            check=True,
            capture_output=True,
            env={
                **os.environ,
                "GIT_CONFIG_GLOBAL": os.devnull,
                "GIT_AUTHOR_NAME": "t",
                "GIT_AUTHOR_EMAIL": "t@example.com",
                "GIT_COMMITTER_NAME": "t",
                "GIT_COMMITTER_EMAIL": "t@example.com",
            },
        )

    def test_counts_commits(self, tmp_path):
        self._git(tmp_path, "init", "-q", "-b", "main")
        for i in range(3):
            self._git(tmp_path, "commit", "-q", "--allow-empty", "-m", f"c{i}")
        self._git(tmp_path, "tag", "v0.1.0")
        history = GitHistory(tmp_path)
        assert history.commit_count() == 3
        assert history.branch() == "main"
        assert history.tag() == "v0.1.0"
