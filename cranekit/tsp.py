"""Time series prediction resources and checks of their predicted data."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Iterable, Optional, Sequence

from cranekit.common import Condition, Label, TimeSeries

RESOURCE_QUERY_METRIC_TYPE = "ResourceQuery"
EXPRESSION_QUERY_METRIC_TYPE = "ExpressionQuery"
RAW_QUERY_METRIC_TYPE = "RawQuery"


class AlgorithmType(str, Enum):
    """Prediction algorithms."""

    PERCENTILE = "percentile"
    DSP = "dsp"


@dataclass
class Algorithm:
    """The algorithm of a prediction metric with its settings."""

    algorithm_type: AlgorithmType
    dsp: Optional[Any] = None
    percentile: Optional[Any] = None


@dataclass
class PredictionMetric:
    """A metric to predict and how to query it."""

    resource_identifier: str
    algorithm: Algorithm
    type: str = RESOURCE_QUERY_METRIC_TYPE
    resource_query: Optional[str] = None
    expression_query: Optional[str] = None
    raw_query: Optional[str] = None


@dataclass
class PredictionSample:
    """A predicted value, kept as a decimal string, at a Unix timestamp."""

    timestamp: int
    value: str


@dataclass
class MetricTimeSeries:
    """A predicted series with its labels."""

    labels: list[Label] = field(default_factory=list)
    samples: list[PredictionSample] = field(default_factory=list)


@dataclass
class PredictionMetricStatus:
    """Predicted series of one metric."""

    resource_identifier: str
    prediction: list[MetricTimeSeries] = field(default_factory=list)


@dataclass
class ObjectReference:
    """Reference to the workload a prediction is about."""

    kind: str = ""
    name: str = ""
    namespace: str = ""
    api_version: str = ""


@dataclass
class TimeSeriesPredictionSpec:
    """What to predict and over which window."""

    prediction_window_seconds: int = 0
    target_ref: ObjectReference = field(default_factory=ObjectReference)
    prediction_metrics: list[PredictionMetric] = field(default_factory=list)


@dataclass
class TimeSeriesPredictionStatus:
    """Conditions and predicted data of a prediction."""

    conditions: list[Condition] = field(default_factory=list)
    prediction_metrics: list[PredictionMetricStatus] = field(default_factory=list)


@dataclass
class TimeSeriesPrediction:
    """A time series prediction resource."""

    KIND: ClassVar[str] = "TimeSeriesPrediction"

    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    owner_uid: Optional[str] = None
    deletion_timestamp: Optional[datetime] = None
    spec: TimeSeriesPredictionSpec = field(default_factory=TimeSeriesPredictionSpec)
    status: TimeSeriesPredictionStatus = field(default_factory=TimeSeriesPredictionStatus)


def is_window_in_samples(start: datetime, end: datetime, samples: list[PredictionSample]) -> bool:
    """Return True when the samples reach the end of the window, truncated to the minute.

    Only the end is checked; the samples are sorted by timestamp in place.
    """
    if not samples:
        return False
    samples.sort(key=lambda sample: sample.timestamp)
    end_ts = int(end.timestamp() // 60) * 60
    return end_ts <= samples[-1].timestamp


def to_api_time_series(series_list: Iterable[TimeSeries]) -> list[MetricTimeSeries]:
    """Convert collected series into predicted series with values to five decimals."""
    return [
        MetricTimeSeries(
            labels=[Label(label.name, label.value) for label in series.labels],
            samples=[
                PredictionSample(timestamp=sample.timestamp, value=f"{sample.value:.5f}")
                for sample in series.samples
            ],
        )
        for series in series_list
    ]


def _format_labels(labels: Sequence[Label]) -> str:
    return "[" + " ".join(f"{{Name:{l.name} Value:{l.value}}}" for l in labels) + "]"


def prediction_data_warnings(
    window_start: datetime,
    window_end: datetime,
    statuses: Sequence[PredictionMetricStatus],
) -> list[str]:
    """Describe why the predicted data does not cover the window; empty when it does."""
    if not statuses:
        return ["no predict data"]
    warnings: list[str] = []
    for status in statuses:
        if not status.prediction:
            warnings.append(f"metric {status.resource_identifier} no predict data")
        for index, series in enumerate(status.prediction):
            if not is_window_in_samples(window_start, window_end, series.samples):
                warnings.append(
                    f"metric {status.resource_identifier}, ts {index}, predict data is outdated, "
                    f"labels: {_format_labels(series.labels)}"
                )
    return warnings


def prediction_key(prediction: TimeSeriesPrediction) -> str:
    """Return the ``namespace/name`` key of a prediction."""
    return f"{prediction.namespace}/{prediction.name}"


def exists_prediction_metric(metric: PredictionMetric, metrics: Iterable[PredictionMetric]) -> bool:
    """Return True when an equal metric is among ``metrics``."""
    return any(candidate == metric for candidate in metrics)