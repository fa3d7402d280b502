import pytest

from cranekit.common import ConditionStatus
from cranekit.informer import (
    DEFAULT_RETRY_TIMES,
    SYSTEM_CRITICAL_PRIORITY,
    ConflictError,
    CriticalPodError,
    Node,
    NodeClient,
    NodeCondition,
    ObjectStore,
    Pod,
    Taint,
    TaintEffect,
    all_pods_from_store,
    evict_pod_with_grace_period,
    filter_node_condition_by_type,
    get_node_from_store,
    get_pod_from_store,
    remove_node_taints,
    update_node,
    update_node_conditions,
    update_node_status,
    update_node_taints,
)


class FakeClient(NodeClient):
    def __init__(self, conflicts=0, error=None):
        self.conflicts = conflicts
        self.error = error
        self.attempts = 0
        self.status_updates = []
        self.node_updates = []
        self.evictions = []

    def _maybe_fail(self):
        self.attempts += 1
        if self.error is not None:
            raise self.error
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConflictError("conflict")

    def update_node_status(self, node):
        self._maybe_fail()
        self.status_updates.append(node)

    def update_node(self, node):
        self._maybe_fail()
        self.node_updates.append(node)

    def evict_pod(self, namespace, name, grace_period_seconds):
        self.evictions.append((namespace, name, grace_period_seconds))


def test_update_conditions_appends_missing_condition():
    node = Node(name="n1")
    cond = NodeCondition(type="analyzed-pressure", status=ConditionStatus.TRUE)
    updated, changed = update_node_conditions(node, cond)
    assert changed is True
    assert updated.conditions == [cond]
    assert node.conditions == []


def test_update_conditions_same_status_unchanged():
    cond = NodeCondition(type="x", status=ConditionStatus.TRUE)
    node = Node(name="n1", conditions=[cond])
    updated, changed = update_node_conditions(node, NodeCondition(type="x", status=ConditionStatus.TRUE))
    assert changed is False
    assert updated.conditions == [cond]


def test_update_conditions_replaces_different_status():
    node = Node(name="n1", conditions=[NodeCondition(type="x", status=ConditionStatus.TRUE)])
    new = NodeCondition(type="x", status=ConditionStatus.FALSE)
    updated, changed = update_node_conditions(node, new)
    assert changed is True
    assert updated.conditions == [new]
    assert node.conditions[0].status is ConditionStatus.TRUE


def test_update_taints_add_and_noop():
    taint = Taint(key="k", effect=TaintEffect.PREFER_NO_SCHEDULE)
    updated, changed = update_node_taints(Node(name="n"), taint)
    assert changed is True
    assert updated.taints == [taint]
    again, changed_again = update_node_taints(updated, taint)
    assert changed_again is False
    assert again.taints == [taint]


def test_update_taints_replaces_effect():
    node = Node(name="n", taints=[Taint(key="k", effect=TaintEffect.NO_SCHEDULE)])
    new = Taint(key="k", effect=TaintEffect.PREFER_NO_SCHEDULE)
    updated, changed = update_node_taints(node, new)
    assert changed is True
    assert updated.taints == [new]


def test_remove_taints_by_key():
    other = Taint(key="other", effect=TaintEffect.NO_SCHEDULE)
    node = Node(name="n", taints=[Taint(key="k", effect=TaintEffect.NO_EXECUTE), other])
    updated, changed = remove_node_taints(node, Taint(key="k", effect=TaintEffect.PREFER_NO_SCHEDULE))
    assert changed is True
    assert updated.taints == [other]
    assert len(node.taints) == 2


def test_remove_absent_taint_unchanged():
    other = Taint(key="other", effect=TaintEffect.NO_SCHEDULE)
    updated, changed = remove_node_taints(Node(name="n", taints=[other]), Taint(key="k", effect=TaintEffect.NO_SCHEDULE))
    assert changed is False
    assert updated.taints == [other]


def test_filter_node_condition_by_type():
    a = NodeCondition(type="a", status=ConditionStatus.TRUE)
    b = NodeCondition(type="b", status=ConditionStatus.FALSE)
    assert filter_node_condition_by_type([a, b], "b") == b
    with pytest.raises(KeyError):
        filter_node_condition_by_type([a], "b")


def test_update_status_retries_conflicts():
    client = FakeClient(conflicts=2)
    node = Node(name="n")
    update_node_status(client, node)
    assert client.attempts == 3
    assert client.status_updates == [node]


def test_update_status_gives_up_after_default_retries():
    client = FakeClient(conflicts=100)
    with pytest.raises(ConflictError):
        update_node_status(client, Node(name="n"))
    assert client.attempts == DEFAULT_RETRY_TIMES


def test_update_node_custom_retry_count():
    client = FakeClient(conflicts=100)
    with pytest.raises(ConflictError):
        update_node(client, Node(name="n"), retry=5)
    assert client.attempts == 5
    assert client.node_updates == []


def test_update_node_other_error_propagates_immediately():
    client = FakeClient(error=RuntimeError("boom"))
    with pytest.raises(RuntimeError):
        update_node(client, Node(name="n"))
    assert client.attempts == 1


def test_get_node_from_store():
    store = ObjectStore()
    node = Node(name="n1")
    store.add("n1", node)
    assert get_node_from_store(store, "n1") is node
    with pytest.raises(KeyError):
        get_node_from_store(store, "n2")


def test_evict_non_critical_pod_calls_client():
    client = FakeClient()
    evict_pod_with_grace_period(client, Pod(name="p", namespace="ns"), 30)
    assert client.evictions == [("ns", "p", 30)]


def test_evict_critical_pod_refused():
    client = FakeClient()
    pod = Pod(name="p", namespace="ns", priority=SYSTEM_CRITICAL_PRIORITY)
    with pytest.raises(CriticalPodError):
        evict_pod_with_grace_period(client, pod, 30)
    assert client.evictions == []


def test_pods_from_store():
    assert all_pods_from_store(None) == []
    store = ObjectStore()
    pod = Pod(name="p", namespace="ns")
    store.add(pod.key, pod)
    assert all_pods_from_store(store) == [pod]
    assert get_pod_from_store(store, "ns/p") is pod
    store.delete("ns/p")
    with pytest.raises(KeyError):
        get_pod_from_store(store, "ns/p")