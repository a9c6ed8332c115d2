"""Per-run state handed explicitly to every component."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from shipwright.secrets import SecretVault


@dataclass(frozen=True)
class RunFacts:
    """Externally supplied facts about the revision being built."""

    branch: str | None = None
    tag: str | None = None
    checks: Mapping[str, str] = field(default_factory=dict)
    extra: Mapping[str, str] = field(default_factory=dict)

    def as_template_vars(self) -> dict[str, str]:
        values = {k: v for k, v in self.extra.items()}
        if self.branch is not None:
            values["branch"] = self.branch
        if self.tag is not None:
            values["tag"] = self.tag
        return values


@dataclass
class RunContext:
    """Everything one pipeline run knows.

    Created once per invocation by the parameter resolver and owned by the
    executor for the rest of the run. ``inputs`` and ``enabled_steps`` are
    frozen at creation; ``version``, ``profile`` and ``step_outputs`` are
    filled in as the run progresses.
    """

    pipeline: str
    run_id: str
    inputs: Mapping[str, Any]
    enabled_steps: Mapping[str, bool]
    secrets: SecretVault
    workdir: Path
    facts: RunFacts = field(default_factory=RunFacts)
    version: str | None = None
    profile: str | None = None
    step_outputs: dict[str, dict[str, str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.inputs = MappingProxyType(dict(self.inputs))
        self.enabled_steps = MappingProxyType(dict(self.enabled_steps))

    def is_enabled(self, step: str) -> bool:
        return self.enabled_steps.get(step, False)
