import pytest

from cranekit.detection import (
    DetectionCondition,
    DetectionConditionCache,
    generate_detection_key,
    )
from cranekit.policy import NodeQOSEnsurancePolicy


def _condition(policy_name="guard", namespace="", objective="cpu", **kwargs):
    policy = NodeQOSEnsurancePolicy(name=policy_name, namespace=namespace)
    return DetectionCondition(objective_ensurance_name=objective, policy=policy, **kwargs)


def test_node_key():
    key = generate_detection_key(_condition("guard", "", "cpu"))
    assert key.split(".") == ["node", "guard", "cpu"]


def test_pod_key():
    key = generate_detection_key(_condition("guard", "team", "mem"))
    assert key.split(".") == ["pod", "guard", "team", "mem"]


def test_key_without_policy_raises():
    with pytest.raises(ValueError):
        generate_detection_key(DetectionCondition(objective_ensurance_name="cpu"))


def test_set_get_exists():
    cache = DetectionConditionCache()
    condition = _condition(triggered=True)
    cache.set(condition)
    key = generate_detection_key(condition)
    assert cache.exists(key)
    assert cache.get(key) is condition
    assert cache.get("missing") is None
    assert not cache.exists("missing")


def test_get_or_create_keeps_first():
    cache = DetectionConditionCache()
    first = _condition(triggered=True)
    second = _condition(restored=True)
    assert cache.get_or_create(first) is None
    assert cache.get_or_create(second) is first
    assert cache.list_detections() == [first]


def test_set_overwrites_same_key():
    cache = DetectionConditionCache()
    cache.set(_condition(triggered=True))
    latest = _condition(restored=True)
    cache.set(latest)
    assert cache.list_detections() == [latest]


def test_list_detections_holds_every_key():
    cache = DetectionConditionCache()
    conditions = [_condition(objective=name) for name in ("cpu", "mem", "disk")]
    for condition in conditions:
        cache.set(condition)
    listed = cache.list_detections()
    assert len(listed) == len(conditions)
    assert {c.objective_ensurance_name for c in listed} == {"cpu", "mem", "disk"}