"""Deterministic build identifiers: ``YYYYMMDD_<commit count>``.

The count is the total number of commits reachable from the run's revision,
not a per-day counter, so identifiers only grow as history grows and two
builds of the same commit on the same day agree.
"""

from __future__ import annotations

import re
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Protocol

from shipwright._log import get_logger
from shipwright._subprocess import CommandTimeout, run_command
from shipwright.errors import IncompleteHistoryError

logger = get_logger("versioning")

SEPARATORS = ("_", ".")

_VERSION_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})[_.](\d+)$")


def generate_version(day: date, commit_count: int | None, separator: str = "_") -> str:
    """Return ``f"{YYYYMMDD}{separator}{commit_count}"``."""
    if separator not in SEPARATORS:
        raise ValueError(f"Unsupported version separator {separator!r}")
    if commit_count is None or isinstance(commit_count, bool) or commit_count < 1:
        raise IncompleteHistoryError(f"commit count is {commit_count!r}")
    return f"{day:%Y%m%d}{separator}{commit_count}"


def version_key(version: str) -> tuple[date, int]:
    """Parse an identifier into an orderable ``(date, count)`` key."""
    m = _VERSION_RE.match(version)
    if not m:
        raise ValueError(f"Not a build identifier: {version!r}")
    year, month, day, count = (int(g) for g in m.groups())
    return date(year, month, day), count


class HistorySource(Protocol):
    def commit_count(self) -> int: ...

    def branch(self) -> str | None: ...

    def tag(self) -> str | None: ...


@dataclass(frozen=True)
class StaticHistory:
    """History facts already known to the caller."""

    count: int | None
    branch_name: str | None = None
    tag_name: str | None = None

    def commit_count(self) -> int:
        if self.count is None:
            raise IncompleteHistoryError("no commit count supplied")
        return self.count

    def branch(self) -> str | None:
        return self.branch_name

    def tag(self) -> str | None:
        return self.tag_name


class GitHistory:
    """Read history facts from a local git checkout.

    The generator never fetches: a shallow clone is reported as
    :class:`IncompleteHistoryError` and the caller must supply full history.
    """

    def __init__(self, repo: Path, *, timeout: int = 30) -> None:
        self._repo = repo
        self._timeout = timeout

    def _git(self, *args: str) -> subprocess.CompletedProcess[str]:
        try:
            return run_command(
                ["git", "-C", str(self._repo), *args],
                timeout=self._timeout,
            )
        except CommandTimeout as e:
            raise IncompleteHistoryError(f"git {args[0]} timed out after {e.timeout}s") from None
        except FileNotFoundError:
            raise IncompleteHistoryError("git executable not found") from None

    def commit_count(self) -> int:
        shallow = self._git("rev-parse", "--is-shallow-repository")
        if shallow.returncode != 0:
            raise IncompleteHistoryError(
                f"'{self._repo}' is not a git repository ({shallow.stderr.strip()})"
            )
        if shallow.stdout.strip() == "true":
            raise IncompleteHistoryError("repository is a shallow clone")

        result = self._git("rev-list", "--count", "HEAD")
        if result.returncode != 0:
            raise IncompleteHistoryError(result.stderr.strip() or "git rev-list failed")
        try:
            count = int(result.stdout.strip())
        except ValueError:
            raise IncompleteHistoryError(f"unexpected rev-list output {result.stdout!r}") from None
        logger.debug("Commit count for %s: %d", self._repo, count)
        return count

    def _metadata(self, *args: str) -> str | None:
        try:
            result = self._git(*args)
        except IncompleteHistoryError:
            return None
        value = result.stdout.strip()
        return value if result.returncode == 0 and value else None

    def branch(self) -> str | None:
        name = self._metadata("rev-parse", "--abbrev-ref", "HEAD")
        # Detached HEAD (tag checkouts) reports the literal "HEAD".
        return None if name == "HEAD" else name

    def tag(self) -> str | None:
        return self._metadata("describe", "--tags", "--exact-match", "HEAD")


def utc_today() -> date:
    return datetime.now(UTC).date()


class VersionGenerator:
    """Combine an injected clock and history source into a build identifier."""

    def __init__(
        self,
        history: HistorySource,
        *,
        clock: Callable[[], date] = utc_today,
        separator: str = "_",
    ) -> None:
        self._history = history
        self._clock = clock
        self._separator = separator

    def generate(self) -> str:
        version = generate_version(self._clock(), self._history.commit_count(), self._separator)
        logger.info("Build version %s", version)
        return version
