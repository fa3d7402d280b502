import queue
import threading

import pytest

from cranekit.avoidance import AvoidanceManager, do_avoidance, do_restoration
from cranekit.common import ConditionStatus
from cranekit.executor import (
    AvoidanceExecutor,
    EvictExecutor,
    EvictionError,
    EvictPod,
    EvictPods,
    ExecuteContext,
    ScheduledExecutor,
    ScheduledQOSPriority,
)
from cranekit.informer import Node, NodeClient, ObjectStore, PodQOSClass, Taint, TaintEffect
from cranekit.known import (
    ENSURANCE_ANALYZED_PRESSURE_CONDITION_KEY,
    ENSURANCE_ANALYZED_PRESSURE_TAINT_KEY,
)


class FakeClient(NodeClient):
    def __init__(self):
        self.status_updates = []
        self.node_updates = []
        self.evictions = []

    def update_node_status(self, node):
        self.status_updates.append(node)

    def update_node(self, node):
        self.node_updates.append(node)

    def evict_pod(self, namespace, name, grace_period_seconds):
        self.evictions.append((namespace, name, grace_period_seconds))


def _priority():
    return ScheduledQOSPriority(PodQOSClass.BEST_EFFORT, 0)


@pytest.fixture
def node_store():
    store = ObjectStore()
    store.add("node-a", Node(name="node-a"))
    return store


def test_name():
    manager = AvoidanceManager(FakeClient(), "node-a", ObjectStore(), queue.Queue())
    assert manager.name() == "AvoidanceManager"


def test_do_action_blocks_scheduling(node_store):
    client = FakeClient()
    manager = AvoidanceManager(client, "node-a", node_store, queue.Queue())
    executor = AvoidanceExecutor(
        scheduled_executor=ScheduledExecutor(disable_scheduled_qos_priority=_priority())
    )
    manager.do_action(executor)
    assert len(client.status_updates) == 1
    condition = client.status_updates[0].conditions[0]
    assert condition.type == ENSURANCE_ANALYZED_PRESSURE_CONDITION_KEY
    assert condition.status is ConditionStatus.TRUE
    assert client.node_updates[0].taints[0].key == ENSURANCE_ANALYZED_PRESSURE_TAINT_KEY


def test_do_restoration_removes_taint():
    store = ObjectStore()
    taint = Taint(ENSURANCE_ANALYZED_PRESSURE_TAINT_KEY, TaintEffect.PREFER_NO_SCHEDULE)
    store.add("node-a", Node(name="node-a", taints=[taint]))
    client = FakeClient()
    ctx = ExecuteContext(node_name="node-a", client=client, node_store=store)
    executor = AvoidanceExecutor(
        scheduled_executor=ScheduledExecutor(restore_scheduled_qos_priority=_priority())
    )
    do_restoration(ctx, executor)
    assert client.node_updates[0].taints == []
    assert client.status_updates[0].conditions[0].status is ConditionStatus.FALSE


def test_failed_eviction_stops_before_restoration(node_store):
    client = FakeClient()
    manager = AvoidanceManager(client, "node-a", node_store, queue.Queue(), ObjectStore())
    executor = AvoidanceExecutor(
        scheduled_executor=ScheduledExecutor(restore_scheduled_qos_priority=_priority()),
        evict_executor=EvictExecutor(
            EvictPods([EvictPod(30, "default/missing", _priority())])
        ),
    )
    with pytest.raises(EvictionError):
        manager.do_action(executor)
    assert client.status_updates == []


def test_do_avoidance_with_nothing_to_do(node_store):
    client = FakeClient()
    ctx = ExecuteContext(node_name="node-a", client=client, node_store=node_store)
    do_avoidance(ctx, AvoidanceExecutor())
    assert client.status_updates == [] and client.node_updates == []


def test_run_processes_notices(node_store):
    client = FakeClient()
    notices = queue.Queue()
    manager = AvoidanceManager(client, "node-a", node_store, notices)
    stop = threading.Event()
    manager.run(stop)
    try:
        notices.put(
            AvoidanceExecutor(
                scheduled_executor=ScheduledExecutor(
                    disable_scheduled_qos_priority=_priority()
                )
            )
        )
        notices.join()
    finally:
        stop.set()
    assert len(client.node_updates) == 1