"""Shared test fixtures and helpers."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from datetime import date
from pathlib import Path

import pytest

from shipwright.context import RunContext, RunFacts
from shipwright.executor import CommandResult
from shipwright.pipeline.schema import (
    PipelineDefinition,
    PipelineMetadata,
    PipelineSpec,
    StepSpec,
)
from shipwright.secrets import SecretVault


def b64(text: str | bytes) -> str:
    raw = text.encode() if isinstance(text, str) else text
    return base64.b64encode(raw).decode()


def make_step(name: str, run: str | None = None, **kwargs) -> StepSpec:
    return StepSpec(name=name, run=run if run is not None else f"echo {name}", **kwargs)


def make_pipeline(steps: list[StepSpec] | None = None, **spec_kwargs) -> PipelineDefinition:
    return PipelineDefinition(
        apiVersion="shipwright/v1",
        kind="Pipeline",
        metadata=PipelineMetadata(name="test-pipeline"),
        spec=PipelineSpec(steps=steps or [make_step("build")], **spec_kwargs),
    )


def make_context(
    workdir: Path,
    *,
    inputs: Mapping | None = None,
    enabled: Mapping[str, bool] | None = None,
    secrets: Mapping[str, str | bytes] | None = None,
    version: str | None = "20251229_128",
    profile: str | None = "unsigned",
    facts: RunFacts | None = None,
) -> RunContext:
    return RunContext(
        pipeline="test-pipeline",
        run_id="abc123def456",
        inputs=inputs or {},
        enabled_steps=enabled or {},
        secrets=SecretVault(secrets),
        workdir=workdir,
        facts=facts or RunFacts(),
        version=version,
        profile=profile,
    )


class FakeRunner:
    """Step runner spy: records every command and replays canned results.

    ``results`` maps a command string to the CommandResult (or exception) it
    produces; ``outputs`` maps a command to text written to the step's output
    file.
    """

    def __init__(
        self,
        results: Mapping[str, CommandResult | BaseException] | None = None,
        outputs: Mapping[str, str] | None = None,
    ) -> None:
        self.results = dict(results or {})
        self.outputs = dict(outputs or {})
        self.calls: list[dict] = []

    @property
    def commands(self) -> list[str]:
        return [c["command"] for c in self.calls]

    def __call__(self, command, *, shell, env, cwd, timeout) -> CommandResult:
        self.calls.append(
            {"command": command, "shell": shell, "env": dict(env), "cwd": cwd, "timeout": timeout}
        )
        if command in self.outputs:
            Path(env["SHIPWRIGHT_OUTPUT"]).write_text(self.outputs[command])
        result = self.results.get(command, CommandResult(0, f"ran {command}\n"))
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def fixed_clock():
    return lambda: date(2025, 12, 29)
