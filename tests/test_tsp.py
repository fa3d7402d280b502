from datetime import datetime, timezone

from cranekit.common import Label, Sample, TimeSeries
from cranekit.tsp import (
    Algorithm,
    AlgorithmType,
    MetricTimeSeries,
    PredictionMetric,
    PredictionMetricStatus,
    PredictionSample,
    TimeSeriesPrediction,
    exists_prediction_metric,
    is_window_in_samples,
    prediction_data_warnings,
    prediction_key,
    to_api_time_series,
)


def at(seconds):
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def test_window_empty_samples_is_not_covered():
    assert is_window_in_samples(at(0), at(600), []) is False


def test_window_end_is_truncated_to_minute():
    samples = [PredictionSample(timestamp=120, value="1")]
    assert is_window_in_samples(at(0), at(120 + 59), samples) is True
    samples = [PredictionSample(timestamp=119, value="1")]
    assert is_window_in_samples(at(0), at(120 + 59), samples) is False


def test_window_sorts_samples_in_place():
    samples = [
        PredictionSample(timestamp=600, value="3"),
        PredictionSample(timestamp=60, value="1"),
        PredictionSample(timestamp=300, value="2"),
    ]
    assert is_window_in_samples(at(0), at(600), samples) is True
    timestamps = [s.timestamp for s in samples]
    assert timestamps == sorted(timestamps)


def test_to_api_time_series_formats_values():
    series = TimeSeries(labels=[Label("pod", "web")], samples=[Sample(value=1.5, timestamp=10)])
    result = to_api_time_series([series])
    assert result == [
        MetricTimeSeries(labels=[Label("pod", "web")], samples=[PredictionSample(timestamp=10, value="1.50000")])
    ]


def test_to_api_time_series_empty():
    assert to_api_time_series([]) == []


def test_warnings_without_data():
    assert prediction_data_warnings(at(0), at(60), []) == ["no predict data"]


def test_warnings_for_metric_without_prediction():
    warnings = prediction_data_warnings(at(0), at(60), [PredictionMetricStatus("cpu")])
    assert warnings == ["metric cpu no predict data"]


def test_warnings_for_outdated_series():
    status = PredictionMetricStatus(
        "cpu",
        [MetricTimeSeries(labels=[Label("a", "b")], samples=[PredictionSample(timestamp=0, value="1")])],
    )
    warnings = prediction_data_warnings(at(0), at(6000), [status])
    assert len(warnings) == 1
    assert warnings[0].startswith("metric cpu, ts 0, predict data is outdated")
    assert "Name:a" in warnings[0]


def test_no_warnings_when_covered():
    status = PredictionMetricStatus(
        "cpu", [MetricTimeSeries(samples=[PredictionSample(timestamp=6000, value="1")])]
    )
    assert prediction_data_warnings(at(0), at(6000), [status]) == []


def test_prediction_key():
    assert prediction_key(TimeSeriesPrediction(name="ehpa-web", namespace="default")) == "default/ehpa-web"


def test_exists_prediction_metric():
    cpu = PredictionMetric("pod_cpu_usage", Algorithm(AlgorithmType.PERCENTILE), resource_query="cpu")
    same = PredictionMetric("pod_cpu_usage", Algorithm(AlgorithmType.PERCENTILE), resource_query="cpu")
    dsp = PredictionMetric("pod_cpu_usage", Algorithm(AlgorithmType.DSP), resource_query="cpu")
    assert exists_prediction_metric(same, [cpu]) is True
    assert exists_prediction_metric(dsp, [cpu]) is False
    assert exists_prediction_metric(cpu, []) is False