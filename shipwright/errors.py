"""Structured error taxonomy for pipeline runs.

Every error carries a ``kind`` (stable, machine-readable) and a ``context``
mapping naming the step, secret, input or predicate involved, so the same
exception can feed a log line and the JSON run summary.
"""

from __future__ import annotations

from typing import Any


class ShipwrightError(Exception):
    """Base class for all engine errors."""

    kind = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


class PipelineLoadError(ShipwrightError):
    """Raised when a pipeline definition cannot be loaded or validated."""

    kind = "load"


class PipelineNotFoundError(ShipwrightError):
    """Raised when the definition store has no pipeline by that name."""

    kind = "not_found"


class ValidationError(ShipwrightError):
    """Caller-supplied input is missing, mistyped, or outside its allowed set."""

    kind = "validation"

    def __init__(self, message: str, *, input: str | None = None) -> None:
        super().__init__(message, input=input)
        self.input = input


class MissingSecretError(ShipwrightError):
    """A required secret is absent for a step that will execute."""

    kind = "missing_secret"

    def __init__(self, secret: str, *, steps: list[str] | None = None) -> None:
        consumers = ", ".join(steps or [])
        message = f"Secret '{secret}' is required"
        if consumers:
            message += f" by enabled step(s): {consumers}"
        super().__init__(message, secret=secret, steps=steps)
        self.secret = secret
        self.steps = steps or []


class SecretDecodeError(ShipwrightError):
    """A present secret could not be decoded from its declared encoding."""

    kind = "secret_decode"

    def __init__(self, secret: str, *, profile: str | None = None, reason: str = "") -> None:
        message = f"Secret '{secret}' is not valid base64"
        if reason:
            message += f": {reason}"
        super().__init__(message, secret=secret, profile=profile)
        self.secret = secret
        self.profile = profile


class IncompleteHistoryError(ShipwrightError):
    """The commit count for the run's revision could not be determined."""

    kind = "incomplete_history"

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Cannot determine commit count: {reason}. "
            "Supply the full history (e.g. 'git fetch --unshallow' or fetch-depth: 0).",
        )
        self.reason = reason


class StepExecutionError(ShipwrightError):
    """A step's underlying command failed; the run halts."""

    kind = "step_failed"

    def __init__(
        self,
        step: str,
        reason: str,
        *,
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(f"Step '{step}' failed: {reason}", step=step, returncode=returncode)
        self.step = step
        self.reason = reason
        self.returncode = returncode
        self.output = output


class RunTimeoutError(ShipwrightError, TimeoutError):
    """The run exceeded its configured time budget."""

    kind = "timeout"

    def __init__(self, budget_seconds: float, *, step: str | None = None) -> None:
        message = f"Run exceeded its {budget_seconds:g}s budget"
        if step:
            message += f" while executing step '{step}'"
        super().__init__(message, step=step, budget_seconds=budget_seconds)
        self.step = step
        self.budget_seconds = budget_seconds


class ArtifactWriteError(ShipwrightError):
    """A decoded secret could not be written to its placement path."""

    kind = "artifact_write"

    def __init__(
        self, secret: str, *, path: str, profile: str | None = None, reason: str = ""
    ) -> None:
        message = f"Cannot write secret '{secret}' to {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message, secret=secret, path=path, profile=profile)
        self.secret = secret
        self.path = path
        self.profile = profile
