"""Centralized path configuration for shipwright.

Respects ``SHIPWRIGHT_HOME`` env var, then ``XDG_DATA_HOME/shipwright``,
and falls back to ``~/.shipwright``.
"""

from __future__ import annotations

import os
import sys
from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=1)
def get_home_dir() -> Path:
    """Return the shipwright data directory.

    Resolution order:
    1. ``SHIPWRIGHT_HOME`` environment variable
    2. ``XDG_DATA_HOME/shipwright`` (if ``XDG_DATA_HOME`` is set)
    3. ``~/.shipwright``
    """
    env = os.environ.get("SHIPWRIGHT_HOME")
    if env:
        return Path(env)
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "shipwright"
    return Path.home() / ".shipwright"


def get_audit_db_path() -> Path:
    return get_home_dir() / "runs.db"


def get_pipelines_dir() -> Path:
    return get_home_dir() / "pipelines"


def get_global_env_path() -> Path:
    return get_home_dir() / ".env"


def ensure_private_dir(path: Path) -> None:
    """Create (or tighten) a directory to mode 0o700."""
    path.mkdir(parents=True, exist_ok=True, mode=0o700)
    if sys.platform != "win32":
        path.chmod(0o700)


def secure_file(path: Path) -> None:
    """chmod an existing file to 0o600 (owner-only)."""
    if sys.platform != "win32" and path.exists():
        path.chmod(0o600)
