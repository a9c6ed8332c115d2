"""Pydantic models for pipeline YAML definitions."""

from __future__ import annotations

import re
from enum import StrEnum
from pathlib import PurePosixPath
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shipwright.predicates import PredicateError, compile_predicate

_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"

IMPLICIT_FALLBACK = "unsigned"


class ApiVersion(StrEnum):
    V1 = "shipwright/v1"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


def _check_unique(kind: str, names: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"Duplicate {kind} name: '{name}'")
        seen.add(name)


def _check_predicate(expr: str | bool, inputs: set[str] | None, where: str) -> None:
    """Compile *expr*; when *inputs* is given, also require every name to be declared."""
    try:
        predicate = compile_predicate(expr)
    except PredicateError as e:
        raise ValueError(f"{where}: {e}") from None
    if inputs is None:
        return
    unknown = sorted(predicate.names - inputs)
    if unknown:
        names = ", ".join(unknown)
        raise ValueError(f"{where}: predicate references undeclared input(s): {names}")


class InputSpec(_Frozen):
    name: Annotated[str, Field(pattern=_NAME_PATTERN)]
    type: Literal["string", "bool", "enum"] = "string"
    required: bool = False
    default: str | bool | None = None
    allowed: tuple[str, ...] = ()
    description: str = ""

    @model_validator(mode="after")
    def _validate_type(self) -> InputSpec:
        if self.type == "enum":
            if not self.allowed:
                raise ValueError(f"Enum input '{self.name}' requires a non-empty 'allowed' list")
            if self.default is not None and self.default not in self.allowed:
                raise ValueError(
                    f"Default '{self.default}' of input '{self.name}' is not in allowed values"
                )
        elif self.allowed:
            raise ValueError(f"'allowed' is only valid for enum inputs (input '{self.name}')")
        if self.type == "bool" and self.default is not None and not isinstance(self.default, bool):
            raise ValueError(f"Default of bool input '{self.name}' must be true or false")
        if self.type == "string" and isinstance(self.default, bool):
            raise ValueError(f"Default of string input '{self.name}' must be a string")
        return self


class SecretSpec(_Frozen):
    name: Annotated[str, Field(pattern=_NAME_PATTERN)]
    required: bool = True
    description: str = ""


class StepSpec(_Frozen):
    name: Annotated[str, Field(pattern=_NAME_PATTERN)]
    run: str
    when: str | bool = True
    shell: Literal["sh", "bash"] = "sh"
    env: dict[str, str] = {}
    secrets: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    timeout_seconds: Annotated[int, Field(ge=1)] = 3600
    working_directory: str | None = None
    requires_profile: str | None = None

    @field_validator("working_directory")
    @classmethod
    def _relative_workdir(cls, v: str | None) -> str | None:
        if v is not None:
            p = PurePosixPath(v)
            if p.is_absolute() or ".." in p.parts:
                raise ValueError(f"working_directory must be relative and inside the run: {v!r}")
        return v


class Placement(_Frozen):
    secret: str
    path: str
    encoding: Literal["base64", "text"] = "base64"
    mode: int = 0o600

    @field_validator("path")
    @classmethod
    def _relative_path(cls, v: str) -> str:
        p = PurePosixPath(v)
        if not v or p.is_absolute() or ".." in p.parts:
            raise ValueError(f"Placement path must be relative and inside the workdir: {v!r}")
        return v


class ArtifactProfileSpec(_Frozen):
    name: Annotated[str, Field(pattern=_NAME_PATTERN)]
    requires: tuple[str, ...] = ()
    placements: tuple[Placement, ...] = ()
    priority: int = 0
    when: str | bool = True
    fallback: bool = False
    description: str = ""

    @model_validator(mode="after")
    def _validate_profile(self) -> ArtifactProfileSpec:
        required = set(self.requires)
        for placement in self.placements:
            if placement.secret not in required:
                raise ValueError(
                    f"Profile '{self.name}' places secret '{placement.secret}' "
                    "that is not in its 'requires' set"
                )
        if self.fallback and self.requires:
            raise ValueError(f"Fallback profile '{self.name}' must not require secrets")
        return self


class GatePredicateSpec(_Frozen):
    name: str
    type: Literal["branch_match", "tag_pattern", "check_passed", "step_succeeded", "input_equals"]
    required: bool = True
    patterns: tuple[str, ...] = ()
    pattern: str | None = None
    require_tag: bool = False
    check: str | None = None
    step: str | None = None
    allow_skipped: bool = False
    input: str | None = None
    value: str | bool | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> GatePredicateSpec:
        if self.type == "branch_match" and not self.patterns:
            raise ValueError(f"Gate predicate '{self.name}' (branch_match) requires 'patterns'")
        if self.type == "tag_pattern":
            if not self.pattern:
                raise ValueError(f"Gate predicate '{self.name}' (tag_pattern) requires 'pattern'")
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"Gate predicate '{self.name}': invalid regex: {e}") from None
        if self.type == "check_passed" and not self.check:
            raise ValueError(f"Gate predicate '{self.name}' (check_passed) requires 'check'")
        if self.type == "step_succeeded" and not self.step:
            raise ValueError(f"Gate predicate '{self.name}' (step_succeeded) requires 'step'")
        if self.type == "input_equals" and (self.input is None or self.value is None):
            raise ValueError(
                f"Gate predicate '{self.name}' (input_equals) requires 'input' and 'value'"
            )
        return self


class GateSpec(_Frozen):
    predicates: tuple[GatePredicateSpec, ...] = ()


class PipelineMetadata(_Frozen):
    name: Annotated[str, Field(pattern=r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")]
    description: str = ""
    tags: tuple[str, ...] = ()


class PipelineSpec(_Frozen):
    inputs: tuple[InputSpec, ...] = ()
    secrets: tuple[SecretSpec, ...] = ()
    profiles: tuple[ArtifactProfileSpec, ...] = ()
    steps: tuple[StepSpec, ...] = Field(min_length=1)
    gate: GateSpec = GateSpec()
    timeout_seconds: Annotated[int, Field(ge=1)] | None = None
    version_separator: Literal["_", "."] = "_"

    @field_validator("profiles", mode="before")
    @classmethod
    def _expand_builtin(cls, v: Any) -> Any:
        if v == "builtin":
            from shipwright.artifacts import BUILTIN_PROFILES

            return BUILTIN_PROFILES
        return v

    @model_validator(mode="after")
    def _validate_references(self) -> PipelineSpec:
        _check_unique("input", [i.name for i in self.inputs])
        _check_unique("secret", [s.name for s in self.secrets])
        _check_unique("profile", [p.name for p in self.profiles])
        _check_unique("step", [s.name for s in self.steps])
        _check_unique("gate predicate", [p.name for p in self.gate.predicates])

        input_names = {i.name for i in self.inputs}
        secret_names = {s.name for s in self.secrets}
        profile_names = {p.name for p in self.profiles}
        if not any(p.fallback for p in self.profiles):
            profile_names.add(IMPLICIT_FALLBACK)
        step_names = {s.name for s in self.steps}

        for step in self.steps:
            _check_predicate(step.when, input_names, f"Step '{step.name}'")
            for secret in step.secrets:
                if secret not in secret_names:
                    raise ValueError(f"Step '{step.name}' uses undeclared secret '{secret}'")
            if step.requires_profile and step.requires_profile not in profile_names:
                raise ValueError(
                    f"Step '{step.name}' requires unknown profile '{step.requires_profile}'"
                )

        if sum(1 for p in self.profiles if p.fallback) > 1:
            raise ValueError("At most one fallback profile may be declared")
        for profile in self.profiles:
            # Profiles may be shared across pipelines; undeclared inputs evaluate as null.
            _check_predicate(profile.when, None, f"Profile '{profile.name}'")

        for pred in self.gate.predicates:
            if pred.type == "step_succeeded" and pred.step not in step_names:
                raise ValueError(
                    f"Gate predicate '{pred.name}' references unknown step '{pred.step}'"
                )
            if pred.type == "input_equals" and pred.input not in input_names:
                raise ValueError(
                    f"Gate predicate '{pred.name}' references undeclared input '{pred.input}'"
                )
        return self

    def consumers(self, secret: str) -> list[str]:
        """Names of steps that consume *secret*, in declaration order."""
        return [s.name for s in self.steps if secret in s.secrets]


class PipelineDefinition(_Frozen):
    apiVersion: ApiVersion
    kind: Literal["Pipeline"]
    metadata: PipelineMetadata
    spec: PipelineSpec
