"""Threshold evaluation logic used by the analyzer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Mapping, Optional

RawRule = Callable[[str], bool]
MetricPolicy = Callable[[float, float], bool]


class Logic(ABC):
    """Decides whether a metric value has crossed its objective."""

    @abstractmethod
    def eval_with_metric(self, metric_name: str, target_value: float, value: float) -> bool:
        """Return True when ``value`` breaches ``target_value``."""

    @abstractmethod
    def eval_with_raw(self, input_text: str, rule: str) -> bool:
        """Evaluate a raw rule against raw input."""


def _eval_raw(rules: Mapping[str, RawRule], input_text: str, rule: str) -> bool:
    evaluate = rules.get(rule)
    if evaluate is None:
        return False
    return bool(evaluate(input_text))


class BasicLogic(Logic):
    """A value breaches its target when it is strictly greater.

    Raw rules are looked up by name; an unknown rule is never satisfied.
    """

    def __init__(self, raw_rules: Optional[Mapping[str, RawRule]] = None) -> None:
        self.raw_rules: dict[str, RawRule] = dict(raw_rules or {})

    def eval_with_metric(self, metric_name: str, target_value: float, value: float) -> bool:
        return value > target_value

    def eval_with_raw(self, input_text: str, rule: str) -> bool:
        return _eval_raw(self.raw_rules, input_text, rule)


class OpaLogic(Logic):
    """Policy-engine logic.

    Metric policies are looked up by metric name and raw rules by rule name;
    with nothing loaded, nothing is ever breached.
    """

    def __init__(
        self,
        policies: Optional[Mapping[str, MetricPolicy]] = None,
        raw_rules: Optional[Mapping[str, RawRule]] = None,
    ) -> None:
        self.policies: dict[str, MetricPolicy] = dict(policies or {})
        self.raw_rules: dict[str, RawRule] = dict(raw_rules or {})

    def eval_with_metric(self, metric_name: str, target_value: float, value: float) -> bool:
        policy = self.policies.get(metric_name)
        if policy is None:
            return False
        return bool(policy(target_value, value))

    def eval_with_raw(self, input_text: str, rule: str) -> bool:
        return _eval_raw(self.raw_rules, input_text, rule)