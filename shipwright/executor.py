"""Sequential step execution against a resolved RunContext."""

from __future__ import annotations

import os
import re
import tempfile
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from shipwright._log import get_logger
from shipwright._redact import scrub_secrets
from shipwright._subprocess import CommandTimeout, format_output, run_command
from shipwright.context import RunContext
from shipwright.errors import RunTimeoutError, StepExecutionError
from shipwright.pipeline.schema import StepSpec

logger = get_logger("executor")

OUTPUT_ENV_VAR = "SHIPWRIGHT_OUTPUT"
DEFAULT_MAX_OUTPUT = 64 * 1024

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(.+?)\s*\}\}")
_STEP_OUTPUT_RE = re.compile(r"^steps\.([\w-]+)\.outputs\.(\w+)$")
_OUTPUT_LINE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


class StepStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_RUN = "not_run"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    reason: str | None = None
    returncode: int | None = None
    output: str = ""
    outputs: dict[str, str] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "status": str(self.status)}
        if self.reason:
            d["reason"] = self.reason
        if self.returncode is not None:
            d["returncode"] = self.returncode
        if self.outputs:
            d["outputs"] = dict(self.outputs)
        d["duration_ms"] = self.duration_ms
        return d


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""


class StepRunner(Protocol):
    """Invokes one step's command. Raises :class:`CommandTimeout` on expiry."""

    def __call__(
        self,
        command: str,
        *,
        shell: str,
        env: Mapping[str, str],
        cwd: Path,
        timeout: float,
    ) -> CommandResult: ...


class SubprocessRunner:
    """Run commands through ``sh -c`` / ``bash -c`` in a scrubbed environment."""

    def __call__(
        self,
        command: str,
        *,
        shell: str,
        env: Mapping[str, str],
        cwd: Path,
        timeout: float,
    ) -> CommandResult:
        argv = [shell, "-c", command]
        if shell == "bash":
            argv = [shell, "-eo", "pipefail", "-c", command]
        completed = run_command(argv, timeout=timeout, cwd=str(cwd), env=env)
        return CommandResult(completed.returncode, completed.stdout, completed.stderr)


@dataclass
class ExecutionResult:
    steps: list[StepResult] = field(default_factory=list)
    error: StepExecutionError | RunTimeoutError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def interpolate(template: str, ctx: RunContext) -> str:
    """Replace ``{{ inputs.X }}``, ``{{ version }}``, ``{{ profile }}``, ``{{ run_id }}``,
    ``{{ facts.X }}`` and ``{{ steps.NAME.outputs.KEY }}``. Unknown placeholders
    are left as-is."""
    facts = ctx.facts.as_template_vars()

    def replacer(match: re.Match) -> str:
        expr = match.group(1)

        step_match = _STEP_OUTPUT_RE.match(expr)
        if step_match:
            outputs = ctx.step_outputs.get(step_match.group(1))
            if outputs is None or step_match.group(2) not in outputs:
                return match.group(0)
            return outputs[step_match.group(2)]

        if expr in ("version", "profile", "run_id", "pipeline"):
            value = getattr(ctx, expr)
            return match.group(0) if value is None else _render(value)

        head, _, name = expr.partition(".")
        if head == "inputs" and name in ctx.inputs:
            return _render(ctx.inputs[name])
        if head == "facts" and name in facts:
            return facts[name]
        return match.group(0)

    return _PLACEHOLDER_RE.sub(replacer, template)


def _parse_outputs(path: Path, declared: Sequence[str], step: str) -> dict[str, str]:
    values: dict[str, str] = {}
    if path.exists():
        for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
            m = _OUTPUT_LINE_RE.match(line.strip())
            if m:
                values[m.group(1)] = m.group(2)
    outputs: dict[str, str] = {}
    for name in declared:
        if name not in values:
            logger.warning("Step '%s' did not set declared output '%s'", step, name)
        outputs[name] = values.get(name, "")
    return outputs


class StepExecutor:
    """Execute steps one at a time, in declaration order.

    A step whose enablement predicate is false (or whose required profile
    was not selected) is skipped, not failed. The first failure halts the
    run; later steps are recorded as ``not_run``. Failed steps are never
    retried here.
    """

    def __init__(
        self,
        runner: StepRunner | None = None,
        *,
        max_output: int = DEFAULT_MAX_OUTPUT,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._max_output = max_output

    def _skip_reason(self, step: StepSpec, ctx: RunContext) -> str | None:
        if not ctx.is_enabled(step.name):
            return f"condition not met: {step.when}"
        if step.requires_profile and ctx.profile != step.requires_profile:
            return f"profile '{step.requires_profile}' not selected (using '{ctx.profile}')"
        return None

    def _step_env(self, step: StepSpec, ctx: RunContext, output_file: Path) -> dict[str, str]:
        env = {k: interpolate(v, ctx) for k, v in step.env.items()}
        for name in step.secrets:
            handle = ctx.secrets.get(name)
            if handle is not None:
                env[name] = handle.reveal().decode("utf-8", errors="replace")
        if ctx.version is not None:
            env["SHIPWRIGHT_VERSION"] = ctx.version
        if ctx.profile is not None:
            env["SHIPWRIGHT_PROFILE"] = ctx.profile
        env["SHIPWRIGHT_RUN_ID"] = ctx.run_id
        env[OUTPUT_ENV_VAR] = str(output_file)
        return env

    def execute(
        self,
        steps: Sequence[StepSpec],
        ctx: RunContext,
        *,
        budget_seconds: float | None = None,
    ) -> ExecutionResult:
        result = ExecutionResult()
        literals = ctx.secrets.literals()
        deadline = time.monotonic() + budget_seconds if budget_seconds is not None else None

        for index, step in enumerate(steps):
            reason = self._skip_reason(step, ctx)
            if reason is not None:
                logger.info("Skipping step '%s': %s", step.name, reason)
                result.steps.append(StepResult(step.name, StepStatus.SKIPPED, reason=reason))
                continue

            timeout: float = step.timeout_seconds
            run_budget: float | None = None
            if deadline is not None and budget_seconds is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    result.error = RunTimeoutError(budget_seconds, step=step.name)
                    self._mark_not_run(result, steps[index:], "run timed out")
                    return result
                if remaining < timeout:
                    timeout, run_budget = remaining, budget_seconds

            step_result, error = self._run_step(step, ctx, timeout, run_budget, literals)
            result.steps.append(step_result)
            if error is not None:
                result.error = error
                self._mark_not_run(result, steps[index + 1 :], f"halted after '{step.name}' failed")
                return result
            ctx.step_outputs[step.name] = step_result.outputs

        return result

    def _mark_not_run(
        self, result: ExecutionResult, steps: Sequence[StepSpec], reason: str
    ) -> None:
        for step in steps:
            result.steps.append(StepResult(step.name, StepStatus.NOT_RUN, reason=reason))

    def _run_step(
        self,
        step: StepSpec,
        ctx: RunContext,
        timeout: float,
        run_budget: float | None,
        literals: list[str],
    ) -> tuple[StepResult, StepExecutionError | RunTimeoutError | None]:
        command = interpolate(step.run, ctx)
        cwd = ctx.workdir / step.working_directory if step.working_directory else ctx.workdir
        fd, tmp = tempfile.mkstemp(prefix=f"shipwright-{step.name}-", suffix=".out")
        os.close(fd)
        output_file = Path(tmp)

        logger.info("Running step '%s'", step.name)
        start = time.monotonic()
        try:
            try:
                completed = self._runner(
                    command,
                    shell=step.shell,
                    env=self._step_env(step, ctx, output_file),
                    cwd=cwd,
                    timeout=timeout,
                )
            except CommandTimeout:
                duration = int((time.monotonic() - start) * 1000)
                if run_budget is not None:
                    reason = "aborted: run time budget exhausted"
                    error: StepExecutionError | RunTimeoutError = RunTimeoutError(
                        run_budget, step=step.name
                    )
                else:
                    reason = f"timed out after {step.timeout_seconds}s"
                    error = StepExecutionError(step.name, reason)
                logger.error("Step '%s' %s", step.name, reason)
                return (
                    StepResult(step.name, StepStatus.FAILED, reason=reason, duration_ms=duration),
                    error,
                )
            except Exception as e:
                duration = int((time.monotonic() - start) * 1000)
                reason = scrub_secrets(f"{type(e).__name__}: {e}", literals)
                logger.error("Step '%s' raised %s", step.name, reason)
                return (
                    StepResult(step.name, StepStatus.FAILED, reason=reason, duration_ms=duration),
                    StepExecutionError(step.name, reason),
                )

            duration = int((time.monotonic() - start) * 1000)
            output = scrub_secrets(
                format_output(completed.stdout, completed.stderr, self._max_output), literals
            )
            if completed.returncode != 0:
                reason = f"exit code {completed.returncode}"
                logger.error("Step '%s' failed with %s", step.name, reason)
                return (
                    StepResult(
                        step.name,
                        StepStatus.FAILED,
                        reason=reason,
                        returncode=completed.returncode,
                        output=output,
                        duration_ms=duration,
                    ),
                    StepExecutionError(
                        step.name, reason, returncode=completed.returncode, output=output
                    ),
                )

            outputs = {
                k: scrub_secrets(v, literals)
                for k, v in _parse_outputs(output_file, step.outputs, step.name).items()
            }
            logger.debug("Step '%s' succeeded in %dms", step.name, duration)
            return (
                StepResult(
                    step.name,
                    StepStatus.SUCCEEDED,
                    returncode=0,
                    output=output,
                    outputs=outputs,
                    duration_ms=duration,
                ),
                None,
            )
        finally:
            output_file.unlink(missing_ok=True)
