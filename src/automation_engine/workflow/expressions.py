"""Template interpolation and the restricted condition language.

Conditions are not a general expression language. The grammar is closed:
anything that is not one of the recognised shapes evaluates to False
rather than raising, so a malformed condition always denies.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")
_UNSAFE_CHARS = re.compile(r"[;{}()=]")
_IDENTIFIER = re.compile(r"^\w+$")
_EQ = re.compile(r"^(\w+)\s*==\s*(.+)$")
_NEQ = re.compile(r"^(\w+)\s*!=\s*(.+)$")
_GT = re.compile(r"^(\w+)\s*>\s*(-?\d+(?:\.\d+)?)$")
_LT = re.compile(r"^(\w+)\s*<\s*(-?\d+(?:\.\d+)?)$")


class ConditionVerdict(str, Enum):
    MATCHED = "matched"
    UNSAFE = "unsafe"
    UNPARSEABLE = "unparseable"


@dataclass(frozen=True, slots=True)
class ConditionOutcome:
    value: bool
    verdict: ConditionVerdict


def stringify(value: Any) -> str:
    """Render a variable the way it appears inside templates and comparisons."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Mapping | list | tuple):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def interpolate(template: Any, variables: Mapping[str, Any]) -> Any:
    """Replace every `{{name}}` with the string form of `variables[name]`.

    Missing names become the empty string. Non-string inputs are returned
    unchanged.
    """

    if not isinstance(template, str):
        return template
    return _PLACEHOLDER.sub(lambda m: stringify(variables.get(m.group(1))), template)


def interpolate_params(params: Any, variables: Mapping[str, Any]) -> Any:
    """Interpolate every string found inside a nested mapping/sequence."""

    if isinstance(params, str):
        return interpolate(params, variables)
    if isinstance(params, Mapping):
        return {key: interpolate_params(value, variables) for key, value in params.items()}
    if isinstance(params, list | tuple):
        return [interpolate_params(item, variables) for item in params]
    return params


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _literal(raw: str) -> str:
    return raw.strip().replace('"', "").replace("'", "")


def _lookup(variables: Mapping[str, Any], name: str) -> Any:
    if name in variables:
        return variables[name]
    return variables.get(name.lower())


def inspect_condition(expression: Any, variables: Mapping[str, Any]) -> ConditionOutcome:
    """Evaluate a condition and report which part of the grammar decided it."""

    raw = str(expression).strip() if expression is not None else ""
    sanitized = raw.lower()

    if _UNSAFE_CHARS.search(sanitized) and "==" not in sanitized and "!=" not in sanitized:
        return ConditionOutcome(False, ConditionVerdict.UNSAFE)

    if sanitized == "true":
        return ConditionOutcome(True, ConditionVerdict.MATCHED)
    if sanitized == "false":
        return ConditionOutcome(False, ConditionVerdict.MATCHED)

    if _IDENTIFIER.match(raw) and (raw in variables or sanitized in variables):
        return ConditionOutcome(bool(_lookup(variables, raw)), ConditionVerdict.MATCHED)

    if match := _EQ.match(raw):
        name, expected = match.groups()
        actual = stringify(_lookup(variables, name))
        return ConditionOutcome(actual == _literal(expected), ConditionVerdict.MATCHED)

    if match := _NEQ.match(raw):
        name, expected = match.groups()
        actual = stringify(_lookup(variables, name))
        return ConditionOutcome(actual != _literal(expected), ConditionVerdict.MATCHED)

    if match := _GT.match(raw):
        actual_number = _to_number(_lookup(variables, match.group(1)))
        result = actual_number is not None and actual_number > float(match.group(2))
        return ConditionOutcome(result, ConditionVerdict.MATCHED)

    if match := _LT.match(raw):
        actual_number = _to_number(_lookup(variables, match.group(1)))
        result = actual_number is not None and actual_number < float(match.group(2))
        return ConditionOutcome(result, ConditionVerdict.MATCHED)

    return ConditionOutcome(False, ConditionVerdict.UNPARSEABLE)


def evaluate_condition(expression: Any, variables: Mapping[str, Any]) -> bool:
    """Evaluate a condition, failing closed on unsafe or unrecognised input."""

    outcome = inspect_condition(expression, variables)
    if outcome.verdict is not ConditionVerdict.MATCHED:
        logger.warning(
            "Condition denied",
            extra={"expression": str(expression), "verdict": outcome.verdict.value},
        )
    return outcome.value
