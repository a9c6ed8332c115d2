"""Parameter resolution: merge caller inputs with defaults and check secrets."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from shipwright._log import get_logger
from shipwright.context import RunContext, RunFacts
from shipwright.errors import MissingSecretError, ValidationError
from shipwright.pipeline.schema import InputSpec, PipelineDefinition, PipelineSpec
from shipwright.predicates import PredicateError, compile_predicate
from shipwright.secrets import SecretVault

logger = get_logger("resolver")

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def _coerce(spec: InputSpec, value: Any) -> Any:
    """Convert *value* to the input's type, raising ValidationError on a mismatch."""
    if spec.type == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        raise ValidationError(
            f"Input '{spec.name}' expects a bool, got {value!r}", input=spec.name
        )

    if not isinstance(value, str):
        raise ValidationError(
            f"Input '{spec.name}' expects a string, got {type(value).__name__}", input=spec.name
        )
    return value


def _resolve_value(spec: InputSpec, value: Any) -> Any:
    """A mistyped caller value falls back to the default when one exists.

    Enum values outside the allowed set are always rejected.
    """
    try:
        coerced = _coerce(spec, value)
    except ValidationError as e:
        if spec.default is None:
            raise
        logger.warning("%s; using default %r", e.message, spec.default)
        return spec.default
    if spec.type == "enum" and coerced not in spec.allowed:
        allowed = ", ".join(spec.allowed)
        raise ValidationError(
            f"Input '{spec.name}' must be one of [{allowed}], got {coerced!r}", input=spec.name
        )
    return coerced


def resolve_inputs(spec: PipelineSpec, raw: Mapping[str, Any]) -> dict[str, Any]:
    """Return every declared input with its caller value or default.

    Optional inputs without a default resolve to ``None``.
    """
    declared = {i.name: i for i in spec.inputs}
    unknown = sorted(set(raw) - set(declared))
    if unknown:
        raise ValidationError(f"Unknown input(s): {', '.join(unknown)}", input=unknown[0])

    resolved: dict[str, Any] = {}
    for name, input_spec in declared.items():
        if name in raw and raw[name] is not None:
            resolved[name] = _resolve_value(input_spec, raw[name])
        elif input_spec.default is not None:
            resolved[name] = input_spec.default
        elif input_spec.required:
            raise ValidationError(f"Missing required input '{name}'", input=name)
        else:
            resolved[name] = None
    return resolved


def evaluate_enablement(spec: PipelineSpec, inputs: Mapping[str, Any]) -> dict[str, bool]:
    """Evaluate every step's ``when`` predicate exactly once."""
    enabled: dict[str, bool] = {}
    for step in spec.steps:
        try:
            enabled[step.name] = compile_predicate(step.when).evaluate(inputs)
        except PredicateError as e:
            raise ValidationError(f"Step '{step.name}': {e}") from None
    return enabled


def check_secrets(spec: PipelineSpec, enabled: Mapping[str, bool], vault: SecretVault) -> None:
    """Raise :class:`MissingSecretError` for required secrets of enabled steps.

    Secrets consumed only by disabled steps are never required.
    """
    for secret in spec.secrets:
        if not secret.required or vault.present(secret.name):
            continue
        consumers = [s for s in spec.consumers(secret.name) if enabled.get(s)]
        if consumers:
            raise MissingSecretError(secret.name, steps=consumers)
        logger.debug("Secret '%s' absent; no enabled step consumes it", secret.name)


def resolve_parameters(
    definition: PipelineDefinition,
    raw_inputs: Mapping[str, Any],
    vault: SecretVault,
    *,
    run_id: str,
    workdir: Path,
    facts: RunFacts | None = None,
) -> RunContext:
    """Validate caller parameters and build the run's :class:`RunContext`."""
    spec = definition.spec
    inputs = resolve_inputs(spec, raw_inputs)
    enabled = evaluate_enablement(spec, inputs)
    check_secrets(spec, enabled, vault)

    disabled = [name for name, on in enabled.items() if not on]
    if disabled:
        logger.info("Disabled by predicate: %s", ", ".join(disabled))

    return RunContext(
        pipeline=definition.metadata.name,
        run_id=run_id,
        inputs=inputs,
        enabled_steps=enabled,
        secrets=vault,
        workdir=workdir,
        facts=facts or RunFacts(),
    )
