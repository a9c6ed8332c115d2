"""Run orchestration: resolve → version → assemble → execute → gate."""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from shipwright._log import bind_run, get_logger
from shipwright.artifacts import AssemblyResult, assemble
from shipwright.context import RunFacts
from shipwright.errors import ShipwrightError
from shipwright.executor import StepExecutor, StepResult, StepRunner, StepStatus
from shipwright.gate import GateVerdict, evaluate_gate
from shipwright.pipeline.schema import PipelineDefinition
from shipwright.resolver import resolve_parameters
from shipwright.secrets import SecretVault
from shipwright.versioning import HistorySource, VersionGenerator, utc_today

logger = get_logger("engine")

STATUS_PASSED = "passed"
STATUS_GATE_FAILED = "gate_failed"

EXIT_CODES: dict[str, int] = {
    STATUS_PASSED: 0,
    STATUS_GATE_FAILED: 1,
    "validation": 2,
    "load": 2,
    "not_found": 2,
    "missing_secret": 3,
    "secret_decode": 4,
    "incomplete_history": 5,
    "step_failed": 6,
    "timeout": 7,
    "artifact_write": 8,
}


@dataclass
class RunSummary:
    """Final, machine-readable outcome of one pipeline run."""

    run_id: str
    pipeline: str
    status: str = STATUS_PASSED
    version: str | None = None
    profile: str | None = None
    failed_step: str | None = None
    error: dict[str, Any] | None = None
    steps: list[StepResult] = field(default_factory=list)
    gate: GateVerdict | None = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == STATUS_PASSED

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.status, 1)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "status": self.status,
            "run_id": self.run_id,
            "pipeline": self.pipeline,
        }
        if self.version is not None:
            d["version"] = self.version
        if self.profile is not None:
            d["profile"] = self.profile
        if self.failed_step is not None:
            d["failed_step"] = self.failed_step
        if self.error is not None:
            d["error"] = self.error
        d["steps"] = [s.to_dict() for s in self.steps]
        if self.gate is not None:
            d["gate_passed"] = self.gate.passed
            d["gate_results"] = self.gate.to_list()
        d["duration_ms"] = self.duration_ms
        return d

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


def _fail(summary: RunSummary, error: ShipwrightError) -> RunSummary:
    summary.status = error.kind
    summary.error = error.to_dict()
    step = error.context.get("step")
    if isinstance(step, str) and error.kind in ("step_failed", "timeout"):
        summary.failed_step = step
    logger.error("Run failed (%s): %s", error.kind, error.message)
    return summary


def run_pipeline(
    definition: PipelineDefinition,
    *,
    history: HistorySource,
    inputs: Mapping[str, Any] | None = None,
    secrets: Mapping[str, bytes | str] | None = None,
    facts: RunFacts | None = None,
    workdir: Path | None = None,
    clock: Callable[[], date] = utc_today,
    runner: StepRunner | None = None,
    timeout_seconds: float | None = None,
    cleanup_artifacts: bool = True,
) -> RunSummary:
    """Execute one pipeline run and return its summary.

    Every :class:`ShipwrightError` is captured in the summary; only
    programming errors propagate. Secret material is released, and placed
    signing files removed, on every path.
    """
    run_id = uuid.uuid4().hex[:12]
    summary = RunSummary(run_id=run_id, pipeline=definition.metadata.name)
    with bind_run(run_id):
        return _run(
            definition,
            summary,
            history=history,
            inputs=inputs or {},
            secrets=secrets,
            facts=facts or RunFacts(),
            workdir=workdir or Path.cwd(),
            clock=clock,
            runner=runner,
            timeout_seconds=timeout_seconds,
            cleanup_artifacts=cleanup_artifacts,
        )


def _run(
    definition: PipelineDefinition,
    summary: RunSummary,
    *,
    history: HistorySource,
    inputs: Mapping[str, Any],
    secrets: Mapping[str, bytes | str] | None,
    facts: RunFacts,
    workdir: Path,
    clock: Callable[[], date],
    runner: StepRunner | None,
    timeout_seconds: float | None,
    cleanup_artifacts: bool,
) -> RunSummary:
    run_id = summary.run_id
    spec = definition.spec
    budget = timeout_seconds if timeout_seconds is not None else spec.timeout_seconds
    start = time.monotonic()
    assembly: AssemblyResult | None = None

    logger.info("Starting run of pipeline '%s'", summary.pipeline)
    with SecretVault(secrets) as vault:
        try:
            ctx = resolve_parameters(
                definition, inputs, vault, run_id=run_id, workdir=workdir, facts=facts
            )
            ctx.version = VersionGenerator(
                history, clock=clock, separator=spec.version_separator
            ).generate()
            summary.version = ctx.version

            assembly = assemble(spec.profiles, vault, ctx.inputs, workdir)
            ctx.profile = summary.profile = assembly.profile

            execution = StepExecutor(runner).execute(spec.steps, ctx, budget_seconds=budget)
            summary.steps = execution.steps
            execution.raise_for_error()
        except ShipwrightError as e:
            return _fail(summary, e)
        finally:
            if assembly is not None and cleanup_artifacts:
                assembly.cleanup()
            summary.duration_ms = int((time.monotonic() - start) * 1000)

    summary.gate = evaluate_gate(
        spec.gate.predicates, facts=facts, inputs=ctx.inputs, steps=summary.steps
    )
    if not summary.gate.passed:
        summary.status = STATUS_GATE_FAILED
        names = ", ".join(r.name for r in summary.gate.failures)
        logger.warning("Run blocked by gate: %s", names)
    else:
        ran = sum(1 for s in summary.steps if s.status == StepStatus.SUCCEEDED)
        logger.info("Run passed (%d step(s) ran, version %s)", ran, summary.version)
    return summary
