"""Node and pod objects, an in-memory object store and node/pod update helpers."""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from cranekit.common import ConditionStatus

logger = logging.getLogger(__name__)

DEFAULT_RETRY_TIMES = 3
SYSTEM_CRITICAL_PRIORITY = 2 * 1_000_000_000

_CONFIG_SOURCE_ANNOTATION = "kubernetes.io/config.source"
_CONFIG_MIRROR_ANNOTATION = "kubernetes.io/config.mirror"
_API_SOURCE = "api"


class PodQOSClass(str, Enum):
    """Quality of service class of a pod."""

    GUARANTEED = "Guaranteed"
    BURSTABLE = "Burstable"
    BEST_EFFORT = "BestEffort"


class TaintEffect(str, Enum):
    """Effect of a node taint on scheduling."""

    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


@dataclass
class Taint:
    """A node taint."""

    key: str
    effect: TaintEffect
    value: str = ""


@dataclass
class NodeCondition:
    """A typed condition in a node's status."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""


@dataclass
class Node:
    """A cluster node."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    conditions: list[NodeCondition] = field(default_factory=list)
    taints: list[Taint] = field(default_factory=list)


@dataclass
class Container:
    """A container with its resource requests in base units."""

    name: str
    requests: dict[str, float] = field(default_factory=dict)


@dataclass
class Pod:
    """A pod scheduled on a node."""

    name: str
    namespace: str = ""
    qos_class: Optional[PodQOSClass] = None
    priority: Optional[int] = None
    containers: list[Container] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """The ``namespace/name`` key of the pod."""
        return f"{self.namespace}/{self.name}"

    @property
    def is_critical(self) -> bool:
        """True for static, mirror and system-critical priority pods."""
        source = self.annotations.get(_CONFIG_SOURCE_ANNOTATION)
        if source is not None and source != _API_SOURCE:
            return True
        if _CONFIG_MIRROR_ANNOTATION in self.annotations:
            return True
        return self.priority is not None and self.priority >= SYSTEM_CRITICAL_PRIORITY


class ObjectStore:
    """A thread-safe store of objects keyed by string."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, Any] = {}

    def add(self, key: str, obj: Any) -> None:
        with self._lock:
            self._items[key] = obj

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def get_by_key(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._items.get(key)

    def list(self) -> list[Any]:
        with self._lock:
            return list(self._items.values())


class ConflictError(Exception):
    """An update collided with a concurrent change of the same object."""


class CriticalPodError(Exception):
    """A critical pod may not be evicted."""


class NodeClient(ABC):
    """Writes node and pod changes to the cluster."""

    @abstractmethod
    def update_node_status(self, node: Node) -> None:
        """Write the node's status; raise ConflictError on a write conflict."""

    @abstractmethod
    def update_node(self, node: Node) -> None:
        """Write the node; raise ConflictError on a write conflict."""

    @abstractmethod
    def evict_pod(self, namespace: str, name: str, grace_period_seconds: int) -> None:
        """Evict a pod, giving it the grace period to terminate."""


def update_node_conditions(node: Node, condition: NodeCondition) -> tuple[Node, bool]:
    """Return a copy of the node carrying ``condition`` and whether it changed."""
    updated = copy.deepcopy(node)
    for index, existing in enumerate(updated.conditions):
        if existing.type == condition.type:
            if existing.status == condition.status:
                return updated, False
            updated.conditions[index] = condition
            return updated, True
    updated.conditions.append(condition)
    return updated, True


def update_node_taints(node: Node, taint: Taint) -> tuple[Node, bool]:
    """Return a copy of the node carrying ``taint`` and whether it changed."""
    updated = copy.deepcopy(node)
    for index, existing in enumerate(updated.taints):
        if existing.key == taint.key:
            if existing.value == taint.value and existing.effect == taint.effect:
                return updated, False
            updated.taints[index] = taint
            return updated, True
    updated.taints.append(taint)
    return updated, True


def remove_node_taints(node: Node, taint: Taint) -> tuple[Node, bool]:
    """Return a copy of the node without taints of ``taint.key`` and whether any was removed."""
    logger.info("removing node taint %s", taint)
    updated = copy.deepcopy(node)
    kept = [t for t in updated.taints if t.key != taint.key]
    if len(kept) == len(updated.taints):
        return updated, False
    updated.taints = kept
    return updated, True


def filter_node_condition_by_type(
    conditions: list[NodeCondition], condition_type: str
) -> NodeCondition:
    """Return the first condition of the given type."""
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    raise KeyError(f"condition {condition_type} is not found")


def _retry_on_conflict(action, node: Node, retry: Optional[int], what: str) -> None:
    attempts = DEFAULT_RETRY_TIMES if retry is None else retry
    for _ in range(attempts):
        try:
            action(node)
        except ConflictError:
            continue
        return
    raise ConflictError(f"update {what} failed, conflict too more times")


def update_node_status(client: NodeClient, node: Node, retry: Optional[int] = None) -> None:
    """Write the node status, retrying on conflicts."""
    _retry_on_conflict(client.update_node_status, node, retry, "node status")


def update_node(client: NodeClient, node: Node, retry: Optional[int] = None) -> None:
    """Write the node, retrying on conflicts."""
    _retry_on_conflict(client.update_node, node, retry, "node")


def get_node_from_store(store: ObjectStore, node_name: str) -> Node:
    """Return the node stored under its name."""
    node = store.get_by_key(node_name)
    if node is None:
        raise KeyError(f"node({node_name}) not found")
    return node


def evict_pod_with_grace_period(client: NodeClient, pod: Pod, grace_period_seconds: int) -> None:
    """Evict a non-critical pod with the given grace period."""
    if pod.is_critical:
        raise CriticalPodError(f"Eviction manager: cannot evict a critical pod({pod.key})")
    client.evict_pod(pod.namespace, pod.name, grace_period_seconds)


def all_pods_from_store(store: Optional[ObjectStore]) -> list[Pod]:
    """Return every pod in the store, or nothing when there is no store."""
    if store is None:
        return []
    return store.list()


def get_pod_from_store(store: ObjectStore, key: str) -> Pod:
    """Return the pod stored under ``namespace/name``."""
    pod = store.get_by_key(key)
    if pod is None:
        raise KeyError(f"pod({key}) not found")
    return pod