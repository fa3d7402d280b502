from cranekit.selector import (
    LabelSelector,
    LabelSelectorRequirement,
    SelectorOperator,
    match_labels,
)

LABELS = {"app": "web", "tier": "frontend"}


def test_empty_selector_matches_everything():
    assert match_labels(LabelSelector(), LABELS)
    assert match_labels(LabelSelector(), {})


def test_match_labels_equal():
    assert match_labels(LabelSelector(match_labels={"app": "web"}), LABELS)


def test_match_labels_mismatch():
    assert not match_labels(LabelSelector(match_labels={"app": "db"}), LABELS)


def test_match_labels_missing_key_fails():
    assert not match_labels(LabelSelector(match_labels={"zone": "a"}), LABELS)


def test_missing_key_matches_empty_value():
    assert match_labels(LabelSelector(match_labels={"zone": ""}), LABELS)


def _expr(op, key="app", values=()):
    return LabelSelector(match_expressions=[LabelSelectorRequirement(key, op, list(values))])


def test_exists():
    assert match_labels(_expr(SelectorOperator.EXISTS), LABELS)
    assert not match_labels(_expr(SelectorOperator.EXISTS, key="zone"), LABELS)


def test_does_not_exist():
    assert match_labels(_expr(SelectorOperator.DOES_NOT_EXIST, key="zone"), LABELS)
    assert not match_labels(_expr(SelectorOperator.DOES_NOT_EXIST), LABELS)


def test_in():
    assert match_labels(_expr(SelectorOperator.IN, values=["api", "web"]), LABELS)
    assert not match_labels(_expr(SelectorOperator.IN, values=["api"]), LABELS)
    assert not match_labels(_expr(SelectorOperator.IN, key="zone", values=["a"]), LABELS)


def test_not_in():
    assert not match_labels(_expr(SelectorOperator.NOT_IN, values=["web"]), LABELS)
    assert match_labels(_expr(SelectorOperator.NOT_IN, values=["api"]), LABELS)
    assert match_labels(_expr(SelectorOperator.NOT_IN, key="zone", values=["a"]), LABELS)


def test_all_parts_must_hold():
    selector = LabelSelector(
        match_labels={"app": "web"},
        match_expressions=[LabelSelectorRequirement("tier", SelectorOperator.IN, ["backend"])],
    )
    assert not selector.matches(LABELS)


def test_method_agrees_with_function():
    selector = LabelSelector(
        match_labels={"tier": "frontend"},
        match_expressions=[LabelSelectorRequirement("app", SelectorOperator.EXISTS)],
    )
    assert selector.matches(LABELS) == match_labels(selector, LABELS)
    assert selector.matches(LABELS)