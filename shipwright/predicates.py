"""Enablement predicates: a small boolean expression language over resolved inputs.

Expressions are parsed once with :mod:`ast` and then interpreted by walking
the tree; nothing is passed to ``eval``. Supported forms::

    build_type == 'release'
    inputs.run_tests and not inputs.skip_lint
    export_method in ('app-store', 'ad-hoc')
    true
"""

from __future__ import annotations

import ast
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_TRUTHY = {"true", "1", "yes"}
_FALSY = {"false", "0", "no", ""}

_LITERAL_NAMES: dict[str, Any] = {
    "true": True,
    "false": False,
    "True": True,
    "False": False,
    "null": None,
    "None": None,
}

_ALLOWED_COMPARATORS = (ast.Eq, ast.NotEq, ast.In, ast.NotIn)


class PredicateError(ValueError):
    """Raised when an expression is malformed or references an unknown input."""


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _FALSY:
            return False
        if lowered in _TRUTHY:
            return True
        return True
    return bool(value)


def _check(node: ast.AST, names: set[str], source: str) -> None:
    """Reject every node outside the supported subset, collecting input names."""
    if isinstance(node, ast.BoolOp):
        for value in node.values:
            _check(value, names, source)
    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, ast.Not):
            raise PredicateError(f"Unsupported operator in predicate: {source!r}")
        _check(node.operand, names, source)
    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if not isinstance(op, _ALLOWED_COMPARATORS):
                raise PredicateError(
                    f"Unsupported comparison '{type(op).__name__}' in predicate: {source!r}"
                )
        _check(node.left, names, source)
        for comparator in node.comparators:
            _check(comparator, names, source)
    elif isinstance(node, (ast.Tuple, ast.List)):
        for elt in node.elts:
            if not isinstance(elt, ast.Constant):
                raise PredicateError(f"Only literals are allowed in collections: {source!r}")
    elif isinstance(node, ast.Constant):
        if not isinstance(node.value, (str, int, float, bool, type(None))):
            raise PredicateError(f"Unsupported literal in predicate: {source!r}")
    elif isinstance(node, ast.Name):
        if node.id not in _LITERAL_NAMES:
            names.add(node.id)
    elif isinstance(node, ast.Attribute):
        if not (isinstance(node.value, ast.Name) and node.value.id == "inputs"):
            raise PredicateError(f"Only 'inputs.<name>' attributes are allowed: {source!r}")
        names.add(node.attr)
    else:
        raise PredicateError(f"Unsupported syntax '{type(node).__name__}' in predicate: {source!r}")


@dataclass(frozen=True)
class Predicate:
    """A compiled enablement predicate."""

    source: str
    names: frozenset[str]
    _tree: ast.expr | None = field(default=None, repr=False, compare=False)
    _constant: bool | None = field(default=None, repr=False, compare=False)

    @property
    def is_constant(self) -> bool:
        return self._constant is not None

    def evaluate(self, inputs: Mapping[str, Any]) -> bool:
        if self._constant is not None:
            return self._constant
        if self._tree is None:
            raise PredicateError(f"Predicate {self.source!r} was not compiled")
        return _truthy(self._eval(self._tree, inputs))

    def _lookup(self, name: str, inputs: Mapping[str, Any]) -> Any:
        if name not in inputs:
            raise PredicateError(f"Predicate {self.source!r} references unknown input '{name}'")
        return inputs[name]

    def _eval(self, node: ast.AST, inputs: Mapping[str, Any]) -> Any:
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(_truthy(self._eval(v, inputs)) for v in node.values)
            return any(_truthy(self._eval(v, inputs)) for v in node.values)
        if isinstance(node, ast.UnaryOp):
            return not _truthy(self._eval(node.operand, inputs))
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, inputs)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, inputs)
                if isinstance(op, ast.Eq):
                    ok = _normalize(left) == _normalize(right)
                elif isinstance(op, ast.NotEq):
                    ok = _normalize(left) != _normalize(right)
                elif isinstance(op, ast.In):
                    ok = _normalize(left) in [_normalize(r) for r in _iterable(right)]
                else:
                    ok = _normalize(left) not in [_normalize(r) for r in _iterable(right)]
                if not ok:
                    return False
                left = right
            return True
        if isinstance(node, (ast.Tuple, ast.List)):
            return tuple(self._eval(e, inputs) for e in node.elts)
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id]
            return self._lookup(node.id, inputs)
        if isinstance(node, ast.Attribute):
            return self._lookup(node.attr, inputs)
        raise PredicateError(f"Unsupported syntax in predicate: {self.source!r}")


def _normalize(value: Any) -> Any:
    """Compare bool inputs against their YAML/CLI string spellings."""
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return value


def _iterable(value: Any) -> tuple:
    if isinstance(value, (tuple, list)):
        return tuple(value)
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(","))
    raise PredicateError(f"Right-hand side of 'in' must be a collection, got {value!r}")


def compile_predicate(expr: str | bool | None) -> Predicate:
    """Parse *expr* into a :class:`Predicate`.

    ``None`` and ``True`` mean "always enabled"; ``False`` means "never".
    """
    if expr is None or isinstance(expr, bool):
        constant = True if expr is None else expr
        return Predicate(source=str(constant).lower(), names=frozenset(), _constant=constant)

    source = expr.strip()
    if not source:
        raise PredicateError("Predicate expression is empty")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise PredicateError(f"Invalid predicate expression {source!r}: {e.msg}") from None

    names: set[str] = set()
    _check(tree.body, names, source)
    return Predicate(source=source, names=frozenset(names), _tree=tree.body)
