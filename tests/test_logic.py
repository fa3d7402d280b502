import pytest

from cranekit.logic import BasicLogic, Logic, OpaLogic


def test_basic_logic_breached_when_greater():
    assert BasicLogic().eval_with_metric("cpu_total_usage", 10.0, 10.5)


def test_basic_logic_not_breached_when_equal():
    assert not BasicLogic().eval_with_metric("cpu_total_usage", 10.0, 10.0)


def test_basic_logic_not_breached_when_less():
    assert not BasicLogic().eval_with_metric("cpu_total_usage", 10.0, 3.0)


def test_basic_logic_raw_never_breaches():
    assert not BasicLogic().eval_with_raw("{}", "rule")


def test_opa_logic_never_breaches():
    logic = OpaLogic()
    assert not logic.eval_with_metric("cpu_total_usage", 1.0, 100.0)
    assert not logic.eval_with_raw("{}", "rule")


def test_logic_is_abstract():
    with pytest.raises(TypeError):
        Logic()