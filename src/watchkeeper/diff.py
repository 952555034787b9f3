"""Structural attribute differ with per-attribute policies.

Compares a desired payload with the payload downloaded from the platform and
produces a stable, human-readable list of changes.

POLICY:
- Attributes the desired payload does not mention are ignored, because the
  platform fills in many defaults. Paths declared MANAGED are the exception:
  their absence locally means they should be absent remotely too.
- Arrays are order-sensitive unless a rule declares them UNORDERED, in which
  case they compare as multisets.
- IGNORE drops read-only paths (ids, timestamps, authors).
- DEFAULT_VALUE treats a missing value as the platform default.
- EMPTY_EQUIVALENCE treats [], {}, "" and null as equal.

Changes are emitted in lexicographic key order so that the same inputs always
render to byte-identical output.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any

logger = logging.getLogger(__name__)

MAX_RENDERED_VALUE_LENGTH = 200


class RuleType(str, Enum):
    """Types of per-attribute diff rules."""

    IGNORE = "ignore"
    MANAGED = "managed"
    UNORDERED = "unordered"
    DEFAULT_VALUE = "default_value"
    EMPTY_EQUIVALENCE = "empty_equivalence"


class ChangeOp(str, Enum):
    """Kind of attribute change."""

    ADD = "+"
    REMOVE = "-"
    CHANGE = "~"


@dataclass(frozen=True)
class DiffRule:
    """A single diff rule.

    Attributes:
        path_pattern: Dotted attribute path. "*" matches one segment,
            "**" matches any number of segments.
        rule_type: What the rule does to matching paths.
        params: Additional parameters (e.g. {"default": 300}).
        reason: Human-readable explanation.
    """

    path_pattern: str
    rule_type: RuleType
    params: dict[str, Any] = field(default_factory=dict)
    reason: str = ""

    def matches(self, path: str) -> bool:
        return bool(_compile_glob(self.path_pattern).match(path))


@lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    """Convert a dotted glob into a regex."""
    regex_pattern = "^"
    i = 0
    while i < len(pattern):
        if pattern[i : i + 2] == "**":
            regex_pattern += ".*"
            i += 2
        elif pattern[i] == "*":
            regex_pattern += "[^.]*"
            i += 1
        else:
            regex_pattern += re.escape(pattern[i])
            i += 1
    regex_pattern += "$"
    return re.compile(regex_pattern)


@dataclass(frozen=True)
class AttributeChange:
    """One attribute-level difference."""

    op: ChangeOp
    path: str
    before: Any = None
    after: Any = None

    def render(self) -> str:
        match self.op:
            case ChangeOp.ADD:
                return f"  +{self.path} {_render_value(self.after)}"
            case ChangeOp.REMOVE:
                return f"  -{self.path} {_render_value(self.before)}"
            case _:
                return (
                    f"  ~{self.path} {_render_value(self.before)} -> "
                    f"{_render_value(self.after)}"
                )


def _render_value(value: Any) -> str:
    text = json.dumps(value, sort_keys=True, default=str)
    if len(text) > MAX_RENDERED_VALUE_LENGTH:
        text = text[: MAX_RENDERED_VALUE_LENGTH - 3] + "..."
    return text


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


@dataclass(frozen=True)
class DiffPolicy:
    """Per-attribute policy table used by AttributeDiffer."""

    rules: tuple[DiffRule, ...] = ()

    def _first(self, path: str, rule_type: RuleType) -> DiffRule | None:
        for rule in self.rules:
            if rule.rule_type == rule_type and rule.matches(path):
                return rule
        return None

    def is_ignored(self, path: str) -> bool:
        return self._first(path, RuleType.IGNORE) is not None

    def is_managed(self, path: str) -> bool:
        return self._first(path, RuleType.MANAGED) is not None

    def is_unordered(self, path: str) -> bool:
        return self._first(path, RuleType.UNORDERED) is not None

    def normalize(self, path: str, value: Any) -> Any:
        """Apply default and emptiness rules to a single value."""
        default_rule = self._first(path, RuleType.DEFAULT_VALUE)
        if value is None and default_rule is not None:
            value = default_rule.params.get("default")
        if self._first(path, RuleType.EMPTY_EQUIVALENCE) is not None and _is_empty(value):
            return None
        return value

    def has_default(self, path: str) -> bool:
        return self._first(path, RuleType.DEFAULT_VALUE) is not None

    def extend(self, *rules: DiffRule) -> DiffPolicy:
        return DiffPolicy(rules=self.rules + tuple(rules))


class AttributeDiffer:
    """Computes attribute-level changes between a desired and an actual payload."""

    def __init__(self, policy: DiffPolicy | None = None) -> None:
        self._policy = policy or DiffPolicy()

    @property
    def policy(self) -> DiffPolicy:
        return self._policy

    def diff(self, expected: dict[str, Any], actual: dict[str, Any]) -> list[AttributeChange]:
        """Return the changes needed to turn actual into expected."""
        changes: list[AttributeChange] = []
        self._diff_dict(expected, actual, "", changes)
        return changes

    def _diff_dict(
        self,
        expected: dict[str, Any],
        actual: dict[str, Any],
        prefix: str,
        changes: list[AttributeChange],
    ) -> None:
        for key in sorted(set(expected) | set(actual), key=str):
            path = f"{prefix}.{key}" if prefix else str(key)
            if self._policy.is_ignored(path):
                continue

            if key not in expected:
                # platform-side extras only matter for fully managed attributes
                if self._policy.is_managed(path):
                    before = self._policy.normalize(path, actual[key])
                    if not _is_empty(before):
                        changes.append(AttributeChange(ChangeOp.REMOVE, path, before=actual[key]))
                continue

            if key not in actual:
                after = self._policy.normalize(path, expected[key])
                if self._policy.has_default(path) and after == self._policy.normalize(path, None):
                    continue
                if after is None and self._policy.normalize(path, None) is None:
                    continue
                changes.append(AttributeChange(ChangeOp.ADD, path, after=expected[key]))
                continue

            self._diff_value(expected[key], actual[key], path, changes)

    def _diff_value(
        self,
        expected: Any,
        actual: Any,
        path: str,
        changes: list[AttributeChange],
    ) -> None:
        expected_n = self._policy.normalize(path, expected)
        actual_n = self._policy.normalize(path, actual)

        if isinstance(expected_n, dict) and isinstance(actual_n, dict):
            self._diff_dict(expected_n, actual_n, path, changes)
            return

        if isinstance(expected_n, list) and isinstance(actual_n, list):
            if self._policy.is_unordered(path):
                if sorted(map(_canonical, expected_n)) != sorted(map(_canonical, actual_n)):
                    changes.append(AttributeChange(ChangeOp.CHANGE, path, actual, expected))
                return
            if len(expected_n) == len(actual_n):
                for index, (e, a) in enumerate(zip(expected_n, actual_n, strict=True)):
                    self._diff_value(e, a, f"{path}.{index}", changes)
                return
            changes.append(AttributeChange(ChangeOp.CHANGE, path, actual, expected))
            return

        # 1 == 1.0 is fine, True == 1 is not
        if expected_n == actual_n and isinstance(expected_n, bool) == isinstance(actual_n, bool):
            return
        changes.append(AttributeChange(ChangeOp.CHANGE, path, actual, expected))


def render_changes(changes: list[AttributeChange]) -> str:
    """Render changes, one per line."""
    return "\n".join(change.render() for change in changes)
