"""Release gate: evaluate every predicate and aggregate a verdict."""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from shipwright._log import get_logger
from shipwright.context import RunFacts
from shipwright.executor import StepResult, StepStatus
from shipwright.pipeline.schema import GatePredicateSpec

logger = get_logger("gate")


@dataclass(frozen=True)
class PredicateResult:
    name: str
    passed: bool
    required: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "outcome": "pass" if self.passed else "fail",
            "required": self.required,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class GateVerdict:
    passed: bool
    results: tuple[PredicateResult, ...]

    @property
    def failures(self) -> tuple[PredicateResult, ...]:
        return tuple(r for r in self.results if r.required and not r.passed)

    def to_list(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.results]


def _branch_match(spec: GatePredicateSpec, facts: RunFacts) -> tuple[bool, str]:
    if not facts.branch:
        return False, "branch unknown"
    for pattern in spec.patterns:
        if fnmatch.fnmatchcase(facts.branch, pattern):
            return True, f"branch '{facts.branch}' matches '{pattern}'"
    return False, f"branch '{facts.branch}' matches none of: {', '.join(spec.patterns)}"


def _tag_pattern(spec: GatePredicateSpec, facts: RunFacts) -> tuple[bool, str]:
    if not facts.tag:
        if spec.require_tag:
            return False, "tag required but absent"
        return True, "no tag; not required"
    if spec.pattern is None:
        return False, "no tag pattern configured"
    if re.fullmatch(spec.pattern, facts.tag):
        return True, f"tag '{facts.tag}' matches {spec.pattern}"
    return False, f"tag '{facts.tag}' does not match {spec.pattern}"


def _check_passed(spec: GatePredicateSpec, facts: RunFacts) -> tuple[bool, str]:
    status = facts.checks.get(spec.check or "")
    if status is None:
        return False, f"check '{spec.check}' not reported"
    if status.lower() == "success":
        return True, f"check '{spec.check}' succeeded"
    return False, f"check '{spec.check}' is '{status}'"


def _step_succeeded(spec: GatePredicateSpec, steps: Mapping[str, StepResult]) -> tuple[bool, str]:
    result = steps.get(spec.step or "")
    if result is None:
        return False, f"step '{spec.step}' has no result"
    if result.status == StepStatus.SUCCEEDED:
        return True, f"step '{spec.step}' succeeded"
    if result.status == StepStatus.SKIPPED and spec.allow_skipped:
        return True, f"step '{spec.step}' skipped (allowed)"
    return False, f"step '{spec.step}' {result.status}"


def _input_equals(spec: GatePredicateSpec, inputs: Mapping[str, Any]) -> tuple[bool, str]:
    actual = inputs.get(spec.input or "")
    if actual == spec.value:
        return True, f"input '{spec.input}' is {spec.value!r}"
    return False, f"input '{spec.input}' is {actual!r}, expected {spec.value!r}"


def evaluate_gate(
    predicates: Sequence[GatePredicateSpec],
    *,
    facts: RunFacts,
    inputs: Mapping[str, Any] | None = None,
    steps: Sequence[StepResult] = (),
) -> GateVerdict:
    """Evaluate every predicate, without short-circuiting, in declaration order.

    The verdict passes only if all required predicates pass. Optional
    predicates are reported but never fail the gate.
    """
    inputs = inputs or {}
    step_map = {s.name: s for s in steps}
    results: list[PredicateResult] = []

    for spec in predicates:
        if spec.type == "branch_match":
            passed, reason = _branch_match(spec, facts)
        elif spec.type == "tag_pattern":
            passed, reason = _tag_pattern(spec, facts)
        elif spec.type == "check_passed":
            passed, reason = _check_passed(spec, facts)
        elif spec.type == "step_succeeded":
            passed, reason = _step_succeeded(spec, step_map)
        else:
            passed, reason = _input_equals(spec, inputs)
        results.append(PredicateResult(spec.name, passed, spec.required, reason))
        logger.info(
            "Gate predicate '%s': %s (%s)", spec.name, "pass" if passed else "fail", reason
        )

    verdict = GateVerdict(
        passed=all(r.passed for r in results if r.required),
        results=tuple(results),
    )
    return verdict
