"""Time series samples, labels, query conditions and status conditions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable


@dataclass
class Sample:
    """A value observed at a Unix timestamp (seconds)."""

    value: float
    timestamp: int

    def __str__(self) -> str:
        return f"{self.timestamp} {self.value:f}"


@dataclass(frozen=True)
class Label:
    """A name/value pair attached to a metric as a dimension."""

    name: str
    value: str

    def __str__(self) -> str:
        return f"{self.name}={self.value}"


@dataclass
class TimeSeries:
    """A stream of samples, in chronological order, sharing a set of labels."""

    labels: list[Label] = field(default_factory=list)
    samples: list[Sample] = field(default_factory=list)

    def append_label(self, key: str, value: str) -> None:
        self.labels.append(Label(key, value))

    def append_sample(self, timestamp: int, value: float) -> None:
        self.samples.append(Sample(value=value, timestamp=timestamp))


class Operator(str, Enum):
    """Operators usable in a query condition."""

    EQUAL = "="
    NOT_EQUAL = "!="
    REGEX_MATCH = "=~"
    NOT_REGEX_MATCH = "!~"
    IN = "in"


@dataclass
class QueryCondition:
    """A key, operator, values triple such as ``namespace = default``."""

    key: str
    operator: Operator
    value: list[str] = field(default_factory=list)


class ConditionStatus(str, Enum):
    """Status of a resource condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Condition:
    """A typed status condition of a resource."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = field(default_factory=_now)


def labels_to_map(labels: Iterable[Label]) -> dict[str, str]:
    """Map label names to values, skipping labels with an empty name."""
    return {label.name: label.value for label in labels if label.name}


def set_condition(
    conditions: list[Condition],
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str,
) -> Condition:
    """Update the condition of the given type in place, or append a new one."""
    for condition in conditions:
        if condition.type == condition_type:
            condition.status = status
            condition.reason = reason
            condition.message = message
            condition.last_transition_time = _now()
            return condition
    condition = Condition(
        type=condition_type, status=status, reason=reason, message=message
    )
    conditions.append(condition)
    return condition