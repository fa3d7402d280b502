"""Evaluates node state against ensurance policies and decides avoidance actions."""

from __future__ import annotations

import copy
import logging
import queue
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from cranekit.common import TimeSeries, labels_to_map
from cranekit.detection import DetectionCondition, DetectionStatus
from cranekit.executor import (
    DEFAULT_COOL_DOWN_SECONDS,
    DEFAULT_DELETION_GRACE_PERIOD_SECONDS,
    AvoidanceExecutor,
    EvictPod,
    EvictPods,
    ScheduledQOSPriority,
)
from cranekit.informer import ObjectStore, PodQOSClass, all_pods_from_store, get_node_from_store
from cranekit.logic import BasicLogic, Logic
from cranekit.manager import Manager
from cranekit.policy import AvoidanceAction, NodeQOSEnsurancePolicy, ObjectiveEnsurance
from cranekit.selector import LabelSelector

logger = logging.getLogger(__name__)

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"
DEFAULT_INTERVAL_SECONDS = 10.0


class _StateSource(Protocol):
    def list(self) -> dict[str, list[TimeSeries]]: ...


class EventRecorder:
    """Keeps the events recorded about objects in memory and logs them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[tuple[Any, str, str, str]] = []

    @property
    def events(self) -> list[tuple[Any, str, str, str]]:
        """The recorded ``(object, type, reason, message)`` events, oldest first."""
        with self._lock:
            return list(self._events)

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        logger.info("event %s %s on %s: %s", event_type, reason, obj, message)
        with self._lock:
            self._events.append((obj, event_type, reason, message))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _base_detection(objective: ObjectiveEnsurance) -> DetectionCondition:
    return DetectionCondition(
        objective_ensurance_name=objective.name,
        dry_run=objective.dry_run,
        action_name=objective.avoidance_action_name,
    )


def _event_key(detection: DetectionCondition) -> str:
    policy_name = detection.policy.name if detection.policy is not None else ""
    return f"{policy_name}/{detection.objective_ensurance_name}"


class AnalyzerManager(Manager):
    """Periodically checks objectives and sends the resulting actions on a queue."""

    def __init__(
        self,
        node_name: str,
        node_store: ObjectStore,
        policy_store: ObjectStore,
        action_store: ObjectStore,
        state_store: _StateSource,
        recorder: EventRecorder,
        notices: "queue.Queue[AvoidanceExecutor]",
        pod_store: Optional[ObjectStore] = None,
        logic: Optional[Logic] = None,
        clock: Callable[[], datetime] = _utc_now,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self._node_name = node_name
        self._node_store = node_store
        self._policy_store = policy_store
        self._action_store = action_store
        self._state_store = state_store
        self._recorder = recorder
        self._notices = notices
        self._pod_store = pod_store
        self._logic = logic if logic is not None else BasicLogic()
        self._clock = clock
        self._interval = interval
        self._status: dict[str, list[TimeSeries]] = {}
        self._reached: dict[str, int] = {}
        self._restored: dict[str, int] = {}
        self._action_event_status: dict[str, DetectionStatus] = {}
        self._last_triggered: Optional[datetime] = None

    def name(self) -> str:
        return "AnalyzeManager"

    def run(self, stop: threading.Event) -> None:
        threading.Thread(
            target=self._loop, args=(stop,), name=self.name(), daemon=True
        ).start()

    def _loop(self, stop: threading.Event) -> None:
        while not stop.wait(self._interval):
            try:
                self.analyze()
            except Exception:  # one failed round must not stop the analyzer
                logger.exception("analyze failed")
        logger.debug("analyzer exit")

    def analyze(self) -> None:
        """Evaluate every objective that applies to this node and send the decision."""
        try:
            node = get_node_from_store(self._node_store, self._node_name)
        except KeyError:
            logger.warning("get node %s failed, not to do analyze", self._node_name)
            return

        policies: list[NodeQOSEnsurancePolicy] = [
            copy.deepcopy(policy)
            for policy in self._policy_store.list()
            if policy.label_selector.matches(node.labels)
        ]
        actions = {action.name: action for action in self._action_store.list()}
        self._status = self._state_store.list()

        detections: list[DetectionCondition] = []
        for policy in policies:
            for objective in policy.objective_ensurances:
                key = f"{policy.name}.{objective.name}"
                try:
                    detection = self.do_analyze(key, objective)
                except (KeyError, ValueError) as exc:
                    logger.debug("do analyze failed: %s", exc)
                    detection = _base_detection(objective)
                detection.policy = policy
                detections.append(detection)

        logger.debug("analyze detections %s", detections)
        self._notices.put(self.do_merge(actions, detections))

    def do_analyze(self, key: str, objective: ObjectiveEnsurance) -> DetectionCondition:
        """Evaluate one objective, counting consecutive breaches and recoveries."""
        detection = _base_detection(objective)
        value = self.metric_value(objective.metric_name, objective.metric_selector)
        breached = self._logic.eval_with_metric(
            objective.metric_name, float(objective.target_value), value
        )
        if breached:
            self._restored[key] = 0
            reached = self._reached.get(key, 0) + 1
            self._reached[key] = reached
            detection.triggered = reached >= objective.reached_threshold
        else:
            self._reached[key] = 0
            restored = self._restored.get(key, 0) + 1
            self._restored[key] = restored
            detection.restored = restored >= objective.restored_threshold
        return detection

    def do_merge(
        self,
        actions: Mapping[str, AvoidanceAction],
        detections: Sequence[DetectionCondition],
    ) -> AvoidanceExecutor:
        """Combine detections into one set of avoidance actions."""
        now = self._clock()
        filtered: list[DetectionCondition] = []
        for detection in detections:
            self._log_event(detection, now)
            if not detection.dry_run:
                filtered.append(detection)

        executor = AvoidanceExecutor()
        basic = ScheduledQOSPriority(PodQOSClass.BEST_EFFORT, 0)

        if any(detection.triggered for detection in filtered):
            executor.scheduled_executor.disable_scheduled_qos_priority = basic
            self._last_triggered = now
            restore = False
        else:
            restore = not filtered or self._cool_down_passed(actions, filtered, now)
        if restore:
            executor.scheduled_executor.restore_scheduled_qos_priority = basic

        executors = executor.evict_executor.executors
        for candidate in self._pods_to_evict(actions, filtered, basic):
            index = executors.find(candidate.pod_key)
            if index == -1:
                executors.append(candidate)
            elif candidate.deletion_grace_period_seconds < executors[index].deletion_grace_period_seconds:
                executors[index].deletion_grace_period_seconds = (
                    candidate.deletion_grace_period_seconds
                )
        executors.sort(key=lambda pod: pod.pod_qos_priority)
        return executor

    def _cool_down_passed(
        self,
        actions: Mapping[str, AvoidanceAction],
        detections: Sequence[DetectionCondition],
        now: datetime,
    ) -> bool:
        for detection in detections:
            action = actions.get(detection.action_name)
            if action is None:
                logger.debug("merge: action %s not found", detection.action_name)
                continue
            if not detection.restored:
                continue
            cool_down = (
                DEFAULT_COOL_DOWN_SECONDS
                if action.cool_down_seconds is None
                else action.cool_down_seconds
            )
            last = self._last_triggered
            if last is None or now > last + timedelta(seconds=cool_down):
                return True
        return False

    def _pods_to_evict(
        self,
        actions: Mapping[str, AvoidanceAction],
        detections: Sequence[DetectionCondition],
        basic: ScheduledQOSPriority,
    ) -> EvictPods:
        pods = EvictPods()
        for detection in detections:
            if not detection.triggered:
                continue
            action = actions.get(detection.action_name)
            if action is None:
                logger.debug("merge: action %s not found", detection.action_name)
                continue
            if action.eviction is None:
                continue
            grace = action.eviction.deletion_grace_period_seconds
            if grace is None:
                grace = DEFAULT_DELETION_GRACE_PERIOD_SECONDS
            for pod in all_pods_from_store(self._pod_store):
                priority = ScheduledQOSPriority(
                    pod.qos_class, pod.priority if pod.priority is not None else 0
                )
                if not priority.greater(basic):
                    pods.append(
                        EvictPod(
                            deletion_grace_period_seconds=grace,
                            pod_key=pod.key,
                            pod_qos_priority=priority,
                        )
                    )
        return pods

    def _log_event(self, detection: DetectionCondition, now: datetime) -> None:
        if not (detection.triggered or detection.restored):
            return
        key = _event_key(detection)
        if detection.triggered:
            message = f"{key} triggered action {detection.action_name}"
            logger.info(message)
            self._recorder.event(
                self._node_name, EVENT_TYPE_WARNING, "ObjectiveEnsuranceTriggered", message
            )
            self._action_event_status[key] = DetectionStatus(is_triggered=True, last_time=now)
        if detection.restored and self._needs_restore_event(key):
            message = f"{key} restored action {detection.action_name}"
            logger.info(message)
            self._recorder.event(
                self._node_name, EVENT_TYPE_NORMAL, "ObjectiveEnsuranceRestored", message
            )
            self._action_event_status[key] = DetectionStatus(is_triggered=False, last_time=now)

    def _needs_restore_event(self, key: str) -> bool:
        status = self._action_event_status.get(key)
        return status is not None and status.is_triggered

    def metric_value(self, metric_name: str, selector: Optional[LabelSelector]) -> float:
        """Return the first sample of the first series of the metric that matches."""
        for series in self._status.get(metric_name, []):
            if selector is not None and not selector.matches(labels_to_map(series.labels)):
                continue
            if not series.samples:
                continue
            return series.samples[0].value
        raise KeyError(f"metricName {metric_name} not found value")