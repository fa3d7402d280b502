"""Node QoS ensurance policies, avoidance actions and the policy cache."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional

from cranekit.selector import LabelSelector


@dataclass
class ObjectiveEnsurance:
    """A metric objective and the avoidance action to take when it is breached."""

    name: str
    avoidance_action_name: str
    metric_name: str
    target_value: float
    metric_selector: Optional[LabelSelector] = None
    reached_threshold: int = 0
    restored_threshold: int = 0
    dry_run: bool = False


@dataclass
class NodeQOSEnsurancePolicy:
    """Objectives that apply to the nodes selected by ``label_selector``."""

    name: str
    namespace: str = ""
    label_selector: LabelSelector = field(default_factory=LabelSelector)
    objective_ensurances: list[ObjectiveEnsurance] = field(default_factory=list)
    node_local_get: bool = False


@dataclass
class Eviction:
    """Eviction settings of an avoidance action."""

    deletion_grace_period_seconds: Optional[int] = None


@dataclass
class AvoidanceAction:
    """What to do when an objective is breached."""

    name: str
    cool_down_seconds: Optional[int] = None
    eviction: Optional[Eviction] = None


class NodeQOSEnsurancePolicyCache:
    """A thread-safe cache of policies keyed by name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._policies: dict[str, NodeQOSEnsurancePolicy] = {}

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._policies)

    def get(self, name: str) -> Optional[NodeQOSEnsurancePolicy]:
        with self._lock:
            return self._policies.get(name)

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._policies

    def get_or_create(self, policy: NodeQOSEnsurancePolicy) -> Optional[NodeQOSEnsurancePolicy]:
        """Return the policy already cached under this name, or None after adding it."""
        with self._lock:
            cached = self._policies.get(policy.name)
            if cached is None:
                self._policies[policy.name] = policy
            return cached

    def set(self, policy: NodeQOSEnsurancePolicy) -> None:
        with self._lock:
            self._policies[policy.name] = policy

    def delete(self, name: str) -> None:
        with self._lock:
            self._policies.pop(name, None)