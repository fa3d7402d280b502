"""Detection results of objective ensurances and their cache."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from cranekit.policy import NodeQOSEnsurancePolicy


@dataclass
class DetectionCondition:
    """The outcome of evaluating one objective ensurance."""

    objective_ensurance_name: str = ""
    dry_run: bool = False
    triggered: bool = False
    restored: bool = False
    action_name: str = ""
    policy: Optional[NodeQOSEnsurancePolicy] = None
    time: Optional[datetime] = None
    influenced_pods: list[str] = field(default_factory=list)


@dataclass
class DetectionStatus:
    """Whether an action was last triggered or restored, and when."""

    is_triggered: bool
    last_time: datetime


def generate_detection_key(condition: DetectionCondition) -> str:
    """Build the cache key of a detection from its policy and objective."""
    policy = condition.policy
    if policy is None:
        raise ValueError("detection condition has no policy")
    if policy.namespace == "":
        parts = ["node", policy.name, condition.objective_ensurance_name]
    else:
        parts = ["pod", policy.name, policy.namespace, condition.objective_ensurance_name]
    return ".".join(parts)


class DetectionConditionCache:
    """A thread-safe cache of detection conditions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._detections: dict[str, DetectionCondition] = {}

    def get_or_create(self, condition: DetectionCondition) -> Optional[DetectionCondition]:
        """Return the detection already cached under this key, or None after adding it."""
        key = generate_detection_key(condition)
        with self._lock:
            cached = self._detections.get(key)
            if cached is None:
                self._detections[key] = condition
            return cached

    def get(self, key: str) -> Optional[DetectionCondition]:
        with self._lock:
            return self._detections.get(key)

    def set(self, condition: DetectionCondition) -> None:
        key = generate_detection_key(condition)
        with self._lock:
            self._detections[key] = condition

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._detections

    def list_detections(self) -> list[DetectionCondition]:
        with self._lock:
            return list(self._detections.values())