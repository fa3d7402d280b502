from cranekit.common import (
    Condition,
    ConditionStatus,
    Label,
    Operator,
    QueryCondition,
    Sample,
    TimeSeries,
    labels_to_map,
    set_condition,
)


def test_sample_str():
    assert str(Sample(value=1.5, timestamp=100)) == "100 1.500000"


def test_label_str():
    assert str(Label("namespace", "default")) == "namespace=default"


def test_time_series_append():
    ts = TimeSeries()
    ts.append_label("pod", "web-0")
    ts.append_sample(10, 2.0)
    ts.append_sample(20, 3.0)
    assert ts.labels == [Label("pod", "web-0")]
    assert ts.samples == [Sample(value=2.0, timestamp=10), Sample(value=3.0, timestamp=20)]


def test_time_series_instances_do_not_share_lists():
    first = TimeSeries()
    second = TimeSeries()
    first.append_label("a", "b")
    assert second.labels == []


def test_labels_to_map_skips_empty_names():
    labels = [Label("a", "1"), Label("", "x"), Label("b", "2")]
    assert labels_to_map(labels) == {"a": "1", "b": "2"}


def test_labels_to_map_empty():
    assert labels_to_map([]) == {}


def test_labels_to_map_last_wins():
    assert labels_to_map([Label("a", "1"), Label("a", "2")]) == {"a": "2"}


def test_query_condition_holds_operator():
    cond = QueryCondition(key="role", operator=Operator("in"), value=["Admin"])
    assert cond.operator is Operator.IN
    assert cond.value == ["Admin"]


def test_set_condition_appends_then_updates():
    conditions: list[Condition] = []
    set_condition(conditions, "Ready", ConditionStatus.FALSE, "r1", "m1")
    assert len(conditions) == 1
    first_time = conditions[0].last_transition_time

    set_condition(conditions, "Ready", ConditionStatus.TRUE, "r2", "m2")
    assert len(conditions) == 1
    assert conditions[0].status is ConditionStatus.TRUE
    assert conditions[0].reason == "r2"
    assert conditions[0].message == "m2"
    assert conditions[0].last_transition_time >= first_time


def test_set_condition_keeps_other_types_in_order():
    conditions: list[Condition] = []
    set_condition(conditions, "Ready", ConditionStatus.TRUE, "r", "m")
    set_condition(conditions, "PredictionReady", ConditionStatus.FALSE, "p", "q")
    set_condition(conditions, "Ready", ConditionStatus.FALSE, "x", "y")
    assert [c.type for c in conditions] == ["Ready", "PredictionReady"]
    assert conditions[1].status is ConditionStatus.FALSE
    assert conditions[0].reason == "x"