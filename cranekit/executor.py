"""Avoidance executors: scheduling block, throttling and eviction."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Union

from cranekit.common import ConditionStatus
from cranekit.informer import (
    NodeClient,
    NodeCondition,
    ObjectStore,
    PodQOSClass,
    Taint,
    TaintEffect,
    evict_pod_with_grace_period,
    get_node_from_store,
    get_pod_from_store,
    remove_node_taints,
    update_node,
    update_node_conditions,
    update_node_status,
    update_node_taints,
)
from cranekit.known import (
    ENSURANCE_ANALYZED_PRESSURE_CONDITION_KEY,
    ENSURANCE_ANALYZED_PRESSURE_TAINT_KEY,
)

logger = logging.getLogger(__name__)

DEFAULT_COOL_DOWN_SECONDS = 300
DEFAULT_DELETION_GRACE_PERIOD_SECONDS = 30

_QOS_RANK = {
    PodQOSClass.GUARANTEED.value: 0,
    PodQOSClass.BURSTABLE.value: 1,
    PodQOSClass.BEST_EFFORT.value: 2,
}
_UNKNOWN_RANK = 3


def _rank(qos: Union[PodQOSClass, str, None]) -> int:
    value = qos.value if isinstance(qos, PodQOSClass) else qos
    return _QOS_RANK.get(value, _UNKNOWN_RANK)


def compare_pod_qos(a: Union[PodQOSClass, str, None], b: Union[PodQOSClass, str, None]) -> int:
    """Compare QoS classes in the order Guaranteed, Burstable, BestEffort, unknown.

    Returns -1, 0 or 1 as ``a`` comes before, with or after ``b``.
    """
    diff = _rank(a) - _rank(b)
    return (diff > 0) - (diff < 0)


@dataclass(frozen=True)
class ScheduledQOSPriority:
    """A pod's QoS class together with its priority value."""

    pod_qos_class: Optional[PodQOSClass]
    priority_class_value: int = 0

    def less(self, other: "ScheduledQOSPriority") -> bool:
        cmp = compare_pod_qos(self.pod_qos_class, other.pod_qos_class)
        if cmp != 0:
            return cmp < 0
        return self.priority_class_value < other.priority_class_value

    def greater(self, other: "ScheduledQOSPriority") -> bool:
        cmp = compare_pod_qos(self.pod_qos_class, other.pod_qos_class)
        if cmp != 0:
            return cmp > 0
        return self.priority_class_value > other.priority_class_value

    def __lt__(self, other: "ScheduledQOSPriority") -> bool:
        return self.less(other)


@dataclass
class ExecuteContext:
    """What executors need to act on the node and its pods."""

    node_name: str
    client: NodeClient
    node_store: ObjectStore
    pod_store: Optional[ObjectStore] = None


def _pressure_taint() -> Taint:
    return Taint(key=ENSURANCE_ANALYZED_PRESSURE_TAINT_KEY, effect=TaintEffect.PREFER_NO_SCHEDULE)


def _present_pods(ctx: ExecuteContext, keys: list[str]) -> list[str]:
    """Return the keys, in order, of the pods still present in the pod store."""
    if ctx.pod_store is None:
        return []
    present = []
    for key in keys:
        try:
            get_pod_from_store(ctx.pod_store, key)
        except KeyError:
            continue
        present.append(key)
    return present


@dataclass
class ScheduledExecutor:
    """Blocks or restores scheduling on the node."""

    disable_scheduled_qos_priority: Optional[ScheduledQOSPriority] = None
    restore_scheduled_qos_priority: Optional[ScheduledQOSPriority] = None

    def avoid(self, ctx: ExecuteContext) -> None:
        logger.debug("avoid with scheduled executor %s", self)
        if self.disable_scheduled_qos_priority is None:
            return
        node = get_node_from_store(ctx.node_store, ctx.node_name)
        condition = NodeCondition(
            type=ENSURANCE_ANALYZED_PRESSURE_CONDITION_KEY, status=ConditionStatus.TRUE
        )
        updated, changed = update_node_conditions(node, condition)
        if changed:
            update_node_status(ctx.client, updated)
        updated, changed = update_node_taints(node, _pressure_taint())
        if changed:
            update_node(ctx.client, updated)

    def restore(self, ctx: ExecuteContext) -> None:
        logger.debug("restore with scheduled executor %s", self)
        if self.restore_scheduled_qos_priority is None:
            return
        node = get_node_from_store(ctx.node_store, ctx.node_name)
        condition = NodeCondition(
            type=ENSURANCE_ANALYZED_PRESSURE_CONDITION_KEY, status=ConditionStatus.FALSE
        )
        updated, changed = update_node_conditions(node, condition)
        if changed:
            update_node_status(ctx.client, updated)
        updated, changed = remove_node_taints(node, _pressure_taint())
        logger.debug("remove node taints changed=%s", changed)
        if changed:
            update_node(ctx.client, updated)


@dataclass
class CPURatio:
    """Bounds for stepping pods' CPU down or up."""

    min_cpu_ratio: int = 0
    step_cpu_ratio: int = 0


@dataclass
class CPUThrottle:
    """CPU throttling in both directions."""

    cpu_down_action: Optional[CPURatio] = None
    cpu_up_action: Optional[CPURatio] = None


@dataclass
class MemoryThrottle:
    """Memory throttling settings."""

    force_gc: bool = False


@dataclass
class ThrottleExecutor:
    """Throttles pods.

    No resource changes are made on the node; ``avoid`` and ``restore``
    return the keys of the listed pods that are present and would be acted on.
    """

    cpu_throttle: Optional[CPUThrottle] = None
    memory_throttle: Optional[MemoryThrottle] = None
    throttle_pods: list[str] = field(default_factory=list)

    def _targets(self, ctx: ExecuteContext) -> list[str]:
        if self.cpu_throttle is None and self.memory_throttle is None:
            return []
        return _present_pods(ctx, self.throttle_pods)

    def avoid(self, ctx: ExecuteContext) -> list[str]:
        targets = self._targets(ctx)
        logger.debug("throttle avoid targets %s", targets)
        return targets

    def restore(self, ctx: ExecuteContext) -> list[str]:
        targets = self._targets(ctx)
        logger.debug("throttle restore targets %s", targets)
        return targets


@dataclass
class EvictPod:
    """A pod to evict, identified by ``namespace/name``."""

    deletion_grace_period_seconds: int
    pod_key: str
    pod_qos_priority: ScheduledQOSPriority


class EvictPods(list):
    """A list of pods to evict."""

    def find(self, pod_key: str) -> int:
        """Return the index of the pod with this key, or -1."""
        return next((i for i, pod in enumerate(self) if pod.pod_key == pod_key), -1)


class EvictionError(Exception):
    """Some pods could not be evicted."""

    def __init__(self, failures: list[str]) -> None:
        self.failures = failures
        super().__init__(f"some pod evict failed,err: {';'.join(failures)}")


@dataclass
class EvictExecutor:
    """Evicts the listed pods concurrently."""

    executors: EvictPods = field(default_factory=EvictPods)

    def avoid(self, ctx: ExecuteContext) -> None:
        logger.debug("avoid with evict executor %s", self)
        if not self.executors:
            return

        def evict(item: EvictPod) -> Optional[str]:
            try:
                pod = get_pod_from_store(ctx.pod_store, item.pod_key)
            except KeyError:
                return f"not found {item.pod_key}"
            try:
                evict_pod_with_grace_period(ctx.client, pod, item.deletion_grace_period_seconds)
            except Exception as exc:  # any eviction failure is collected and reported
                logger.warning("evict failed %s: %s", item.pod_key, exc)
                return f"evict failed {item.pod_key}"
            return None

        with ThreadPoolExecutor() as pool:
            failures = [msg for msg in pool.map(evict, self.executors) if msg is not None]
        if failures:
            raise EvictionError(failures)

    def restore(self, ctx: ExecuteContext) -> list[str]:
        """Evictions cannot be undone; return the listed pods still present."""
        return _present_pods(ctx, [item.pod_key for item in self.executors])


@dataclass
class AvoidanceExecutor:
    """The full set of actions decided by one analysis."""

    scheduled_executor: ScheduledExecutor = field(default_factory=ScheduledExecutor)
    throttle_executor: ThrottleExecutor = field(default_factory=ThrottleExecutor)
    evict_executor: EvictExecutor = field(default_factory=EvictExecutor)