"""Shared subprocess helpers for steps and the git history source."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping


class CommandTimeout(Exception):
    """Raised when a subprocess exceeds its timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Execution timed out after {timeout:g}s")


DEFAULT_SENSITIVE_ENV_PREFIXES = (
    # Cloud
    "AWS_SECRET",
    "AWS_SESSION_TOKEN",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "AZURE_",
    # VCS/CI
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "GITLAB_TOKEN",
    "CODECOV_TOKEN",
    "ACTIONS_RUNTIME_TOKEN",
    # Registries
    "NPM_TOKEN",
    "DOCKER_PASSWORD",
    "DOCKER_TOKEN",
    "PYPI_TOKEN",
    "TWINE_PASSWORD",
    # Signing
    "MATCH_PASSWORD",
    "SSH_PRIVATE_KEY",
)

DEFAULT_SENSITIVE_ENV_SUFFIXES = (
    "_KEY",
    "_SECRET",
    "_TOKEN",
    "_PASSWORD",
    "_CREDENTIAL",
    "_CREDENTIALS",
    "_BASE64",
)

DEFAULT_ENV_ALLOWLIST: frozenset[str] = frozenset({"SSH_AGENT_PID", "GPG_AGENT_INFO"})


def scrub_env(
    base: Mapping[str, str] | None = None,
    prefixes: tuple[str, ...] | list[str] = DEFAULT_SENSITIVE_ENV_PREFIXES,
    *,
    suffixes: tuple[str, ...] | list[str] = DEFAULT_SENSITIVE_ENV_SUFFIXES,
    allowlist: frozenset[str] | set[str] = DEFAULT_ENV_ALLOWLIST,
) -> dict[str, str]:
    """Return a copy of *base* (default ``os.environ``) with sensitive keys removed.

    Steps only see secrets they declare; everything credential-shaped that
    the engine process inherited is stripped first.
    """
    env = dict(os.environ if base is None else base)
    upper_prefixes = tuple(p.upper() for p in prefixes)
    upper_suffixes = tuple(s.upper() for s in suffixes)
    return {
        k: v
        for k, v in env.items()
        if k in allowlist
        or not (
            any(k.upper().startswith(p) for p in upper_prefixes)
            or any(k.upper().endswith(s) for s in upper_suffixes)
        )
    }


def run_command(
    cmd: list[str],
    *,
    timeout: float,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *cmd* with a scrubbed environment plus *env*, decoding output as text.

    Raises:
        CommandTimeout: If the subprocess exceeds *timeout* seconds.
    """
    full_env = scrub_env()
    if env:
        full_env.update(env)
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            cwd=cwd,
            env=full_env,
        )
    except subprocess.TimeoutExpired:
        raise CommandTimeout(timeout) from None


def truncate_output(text: str, max_chars: int, suffix: str = "\n[truncated]") -> str:
    """Truncate *text* to at most *max_chars* characters, appending *suffix* if truncated."""
    if len(text) <= max_chars:
        return text
    if max_chars <= len(suffix):
        return text[:max_chars]
    return text[: max_chars - len(suffix)] + suffix


def format_output(stdout: str, stderr: str, max_chars: int = 0) -> str:
    """Assemble stdout/stderr into one captured-output string."""
    parts: list[str] = []
    if stdout:
        parts.append(stdout.rstrip("\n"))
    if stderr:
        parts.append(f"STDERR:\n{stderr.rstrip()}")
    output = "\n".join(parts)
    if max_chars > 0:
        output = truncate_output(output, max_chars)
    return output
