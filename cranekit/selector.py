"""Label selectors and matching against label sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class SelectorOperator(str, Enum):
    """Operators of a label selector requirement."""

    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass
class LabelSelectorRequirement:
    """A key, operator and values expression."""

    key: str
    operator: SelectorOperator
    values: list[str] = field(default_factory=list)


@dataclass
class LabelSelector:
    """Exact label matches plus set-based expressions, all of which must hold."""

    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = field(default_factory=list)

    def matches(self, labels: Mapping[str, str]) -> bool:
        return match_labels(self, labels)


def _requirement_holds(expr: LabelSelectorRequirement, labels: Mapping[str, str]) -> bool:
    present = expr.key in labels
    if expr.operator is SelectorOperator.EXISTS:
        return present
    if expr.operator is SelectorOperator.DOES_NOT_EXIST:
        return not present
    if expr.operator is SelectorOperator.IN:
        return present and labels[expr.key] in expr.values
    if expr.operator is SelectorOperator.NOT_IN:
        return not present or labels[expr.key] not in expr.values
    return True


def match_labels(selector: LabelSelector, labels: Mapping[str, str]) -> bool:
    """Return True when ``labels`` satisfy every part of ``selector``.

    A missing label reads as the empty string for exact matches.
    """
    if any(labels.get(key, "") != value for key, value in selector.match_labels.items()):
        return False
    return all(_requirement_holds(expr, labels) for expr in selector.match_expressions)