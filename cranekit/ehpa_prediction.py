"""Time series predictions generated for effective HPAs."""

from __future__ import annotations

import copy
from typing import Sequence

from cranekit.autoscaling import (
    CONDITION_PREDICTION_READY,
    EffectiveHPA,
    MetricSourceType,
    ResourceName,
    is_prediction_enabled,
    prediction_metric_name,
)
from cranekit.common import Condition, set_condition
from cranekit.tsp import (
    RESOURCE_QUERY_METRIC_TYPE,
    Algorithm,
    ObjectReference,
    PredictionMetric,
    TimeSeriesPrediction,
    TimeSeriesPredictionSpec,
)
from cranekit.autoscaling import EffectiveHPAStatus

TIME_SERIES_PREDICTION_CONDITION_READY = "Ready"


def new_prediction_object(ehpa: EffectiveHPA) -> TimeSeriesPrediction:
    """Build the prediction that the effective HPA controls."""
    if not is_prediction_enabled(ehpa):
        raise ValueError("prediction is not enabled for this effective HPA")
    config = ehpa.spec.prediction
    algorithm = config.prediction_algorithm
    target = ehpa.spec.scale_target_ref

    metrics = []
    for metric in ehpa.spec.metrics:
        if metric.type != MetricSourceType.RESOURCE:
            continue
        if metric.resource is None:
            raise ValueError("resource metric without a resource source")
        resource = metric.resource.name
        metrics.append(
            PredictionMetric(
                resource_identifier=prediction_metric_name(resource),
                type=RESOURCE_QUERY_METRIC_TYPE,
                resource_query=resource.value if isinstance(resource, ResourceName) else resource,
                algorithm=Algorithm(
                    algorithm_type=algorithm.algorithm_type,
                    dsp=copy.deepcopy(algorithm.dsp),
                    percentile=copy.deepcopy(algorithm.percentile),
                ),
            )
        )

    return TimeSeriesPrediction(
        name=ehpa.managed_object_name,
        namespace=ehpa.namespace,
        labels=ehpa.managed_labels,
        owner_uid=ehpa.uid,
        spec=TimeSeriesPredictionSpec(
            prediction_window_seconds=config.prediction_window_seconds,
            target_ref=ObjectReference(
                kind=target.kind,
                namespace=ehpa.namespace,
                name=target.name,
                api_version=target.api_version,
            ),
            prediction_metrics=metrics,
        ),
    )


def set_prediction_conditions(
    status: EffectiveHPAStatus, conditions: Sequence[Condition]
) -> None:
    """Reflect the prediction's ready condition, when it has a reason, in the status."""
    for condition in conditions:
        if condition.type == TIME_SERIES_PREDICTION_CONDITION_READY and condition.reason:
            set_condition(
                status.conditions,
                CONDITION_PREDICTION_READY,
                condition.status,
                condition.reason,
                condition.message,
            )