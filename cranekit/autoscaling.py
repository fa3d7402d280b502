"""Effective horizontal pod autoscalers and the HPAs generated from them."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional, Sequence, Union

from cranekit.common import Condition, ConditionStatus, set_condition
from cranekit.informer import Pod
from cranekit.known import (
    EFFECTIVE_HPA_MANAGED_BY,
    EFFECTIVE_HPA_UID_LABEL,
    METRIC_NAME_POD_CPU_USAGE,
    METRIC_NAME_POD_MEMORY_USAGE,
)
from cranekit.selector import LabelSelector
from cranekit.tsp import Algorithm

CONDITION_READY = "Ready"
CONDITION_PREDICTION_READY = "PredictionReady"
SUBSTITUTE_KIND = "Substitute"
SUBSTITUTE_API_VERSION = "autoscaling.crane.io/v1alpha1"
BEHAVIOR_MIN_MINOR_VERSION = 18


class ResourceName(str, Enum):
    """Names of compute resources."""

    CPU = "cpu"
    MEMORY = "memory"
    STORAGE = "storage"
    EPHEMERAL_STORAGE = "ephemeral-storage"
    PODS = "pods"


class ScaleStrategy(str, Enum):
    """How an effective HPA scales its target."""

    AUTO = "Auto"
    PREVIEW = "Preview"


class MetricSourceType(str, Enum):
    """Where an autoscaling metric comes from."""

    OBJECT = "Object"
    PODS = "Pods"
    RESOURCE = "Resource"
    CONTAINER_RESOURCE = "ContainerResource"
    EXTERNAL = "External"


class MetricTargetType(str, Enum):
    """How a metric target is expressed."""

    UTILIZATION = "Utilization"
    VALUE = "Value"
    AVERAGE_VALUE = "AverageValue"


@dataclass
class MetricTarget:
    """Target of a metric; values are in base units of the resource."""

    type: MetricTargetType
    value: Optional[float] = None
    average_value: Optional[float] = None
    average_utilization: Optional[int] = None


@dataclass
class ResourceMetricSource:
    """A resource metric of the pods, such as CPU."""

    name: Union[ResourceName, str]
    target: MetricTarget


@dataclass
class PodsMetricSource:
    """A custom metric averaged over the pods."""

    metric_name: str
    target: MetricTarget
    selector: Optional[LabelSelector] = None


@dataclass
class MetricSpec:
    """One metric an autoscaler scales on."""

    type: MetricSourceType
    resource: Optional[ResourceMetricSource] = None
    pods: Optional[PodsMetricSource] = None


@dataclass
class CrossVersionObjectReference:
    """Reference to a scalable object."""

    kind: str = ""
    name: str = ""
    api_version: str = ""


@dataclass
class PredictionConfig:
    """Prediction settings of an effective HPA."""

    prediction_window_seconds: Optional[int] = None
    prediction_algorithm: Optional[Algorithm] = None


@dataclass
class EffectiveHPASpec:
    """Desired behaviour of an effective HPA."""

    scale_target_ref: CrossVersionObjectReference = field(
        default_factory=CrossVersionObjectReference
    )
    min_replicas: Optional[int] = None
    max_replicas: int = 0
    scale_strategy: ScaleStrategy = ScaleStrategy.AUTO
    specific_replicas: Optional[int] = None
    metrics: list[MetricSpec] = field(default_factory=list)
    behavior: Optional[Any] = None
    prediction: Optional[PredictionConfig] = None


@dataclass
class EffectiveHPAStatus:
    """Observed state of an effective HPA."""

    expect_replicas: Optional[int] = None
    current_replicas: Optional[int] = None
    last_scale_time: Optional[datetime] = None
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class EffectiveHPA:
    """An effective horizontal pod autoscaler resource."""

    KIND: ClassVar[str] = "EffectiveHorizontalPodAutoscaler"

    name: str
    namespace: str = ""
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    spec: EffectiveHPASpec = field(default_factory=EffectiveHPASpec)
    status: EffectiveHPAStatus = field(default_factory=EffectiveHPAStatus)

    @property
    def managed_object_name(self) -> str:
        """Name of every object this effective HPA manages."""
        return f"ehpa-{self.name}"

    @property
    def managed_labels(self) -> dict[str, str]:
        """Labels put on every object this effective HPA manages."""
        name = self.managed_object_name
        return {
            "app.kubernetes.io/name": name,
            "app.kubernetes.io/part-of": self.name,
            "app.kubernetes.io/managed-by": EFFECTIVE_HPA_MANAGED_BY,
            EFFECTIVE_HPA_UID_LABEL: self.uid,
        }


@dataclass
class Substitute:
    """A stand-in scale target used by the preview strategy."""

    KIND: ClassVar[str] = SUBSTITUTE_KIND

    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    owner_uid: Optional[str] = None
    deletion_timestamp: Optional[datetime] = None
    target_ref: CrossVersionObjectReference = field(default_factory=CrossVersionObjectReference)
    replicas: int = 0
    status_selector: str = ""
    status_replicas: int = 0


@dataclass
class HPACondition:
    """A condition reported by a horizontal pod autoscaler."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""


@dataclass
class HorizontalPodAutoscalerSpec:
    """Desired behaviour of a horizontal pod autoscaler."""

    scale_target_ref: CrossVersionObjectReference = field(
        default_factory=CrossVersionObjectReference
    )
    min_replicas: Optional[int] = None
    max_replicas: int = 0
    metrics: list[MetricSpec] = field(default_factory=list)
    behavior: Optional[Any] = None


@dataclass
class HorizontalPodAutoscalerStatus:
    """Observed state of a horizontal pod autoscaler."""

    current_replicas: int = 0
    desired_replicas: int = 0
    last_scale_time: Optional[datetime] = None
    conditions: list[HPACondition] = field(default_factory=list)


@dataclass
class HorizontalPodAutoscaler:
    """A horizontal pod autoscaler resource."""

    KIND: ClassVar[str] = "HorizontalPodAutoscaler"

    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    owner_uid: Optional[str] = None
    spec: HorizontalPodAutoscalerSpec = field(default_factory=HorizontalPodAutoscalerSpec)
    status: HorizontalPodAutoscalerStatus = field(default_factory=HorizontalPodAutoscalerStatus)


def _resource_key(resource: Union[ResourceName, str]) -> str:
    return resource.value if isinstance(resource, ResourceName) else str(resource)


def is_prediction_enabled(ehpa: EffectiveHPA) -> bool:
    """Return True when the effective HPA has a complete prediction configuration."""
    prediction = ehpa.spec.prediction
    return (
        prediction is not None
        and prediction.prediction_window_seconds is not None
        and prediction.prediction_algorithm is not None
    )


def prediction_metric_name(resource: Union[ResourceName, str]) -> str:
    """Return the predicted metric name of a resource."""
    key = _resource_key(resource)
    if key == ResourceName.CPU.value:
        return METRIC_NAME_POD_CPU_USAGE
    if key == ResourceName.MEMORY.value:
        return METRIC_NAME_POD_MEMORY_USAGE
    raise ValueError("resource name not predictable")


def _milli_value(value: float) -> int:
    return math.ceil(Decimal(str(value)) * 1000)


def calculate_pod_requests(pods: Sequence[Pod], resource: Union[ResourceName, str]) -> int:
    """Sum the containers' requests of a resource, in milli units."""
    key = _resource_key(resource)
    total = 0
    for pod in pods:
        for container in pod.containers:
            if key not in container.requests:
                raise ValueError(f"missing request for {key}")
            total += _milli_value(container.requests[key])
    return total


def _prediction_metric(
    ehpa: EffectiveHPA, source: ResourceMetricSource, pods: Optional[Sequence[Pod]]
) -> MetricSpec:
    custom = PodsMetricSource(
        metric_name=prediction_metric_name(source.name),
        selector=LabelSelector(match_labels={EFFECTIVE_HPA_UID_LABEL: ehpa.uid}),
        target=MetricTarget(type=MetricTargetType.AVERAGE_VALUE),
    )
    utilization = source.target.average_utilization
    if utilization is not None:
        if not pods:
            raise ValueError("no pods to average the resource requests over")
        requests = calculate_pod_requests(pods, source.name)
        average_milli = int((float(requests) * float(utilization) / 100) / float(len(pods)))
        custom.target.average_value = average_milli / 1000
    else:
        custom.target.average_value = source.target.average_value
    return MetricSpec(type=MetricSourceType.PODS, pods=custom)


def hpa_metrics(ehpa: EffectiveHPA, pods: Optional[Sequence[Pod]] = None) -> list[MetricSpec]:
    """Build the HPA's metrics: copies of the spec's, plus predicted metrics when enabled.

    ``pods`` are the pods of the scale target; they are needed only when a
    resource metric targets an average utilization.
    """
    metrics = [copy.deepcopy(metric) for metric in ehpa.spec.metrics]
    if not is_prediction_enabled(ehpa):
        return metrics
    predicted = []
    for metric in metrics:
        if metric.type != MetricSourceType.RESOURCE:
            continue
        if metric.resource is None:
            raise ValueError("resource metric without a resource source")
        predicted.append(_prediction_metric(ehpa, metric.resource, pods))
    return metrics + predicted


def new_hpa_object(
    ehpa: EffectiveHPA,
    substitute: Optional[Substitute],
    k8s_minor: int,
    pods: Optional[Sequence[Pod]] = None,
) -> HorizontalPodAutoscaler:
    """Build the HPA that the effective HPA controls."""
    spec = HorizontalPodAutoscalerSpec(
        min_replicas=ehpa.spec.min_replicas,
        max_replicas=ehpa.spec.max_replicas,
        metrics=hpa_metrics(ehpa, pods),
    )
    if ehpa.spec.scale_strategy == ScaleStrategy.PREVIEW:
        if substitute is None:
            raise ValueError("preview strategy needs a substitute")
        spec.scale_target_ref = CrossVersionObjectReference(
            kind=SUBSTITUTE_KIND, name=substitute.name, api_version=SUBSTITUTE_API_VERSION
        )
    elif ehpa.spec.scale_strategy == ScaleStrategy.AUTO:
        spec.scale_target_ref = copy.deepcopy(ehpa.spec.scale_target_ref)

    if k8s_minor >= BEHAVIOR_MIN_MINOR_VERSION and ehpa.spec.behavior is not None:
        spec.behavior = copy.deepcopy(ehpa.spec.behavior)

    return HorizontalPodAutoscaler(
        name=ehpa.managed_object_name,
        namespace=ehpa.namespace,
        labels=ehpa.managed_labels,
        owner_uid=ehpa.uid,
        spec=spec,
    )


def set_hpa_conditions(status: EffectiveHPAStatus, conditions: Sequence[HPACondition]) -> None:
    """Mirror the HPA's conditions into the effective HPA's status."""
    for condition in conditions:
        set_condition(
            status.conditions,
            condition.type,
            ConditionStatus(condition.status),
            condition.reason,
            condition.message,
        )