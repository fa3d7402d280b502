"""Controllers that keep effective HPAs and their substitutes in line with the cluster."""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from cranekit.analyzer import EVENT_TYPE_NORMAL, EventRecorder
from cranekit.autoscaling import (
    CONDITION_READY,
    CrossVersionObjectReference,
    EffectiveHPA,
    EffectiveHPAStatus,
    HorizontalPodAutoscaler,
    MetricSourceType,
    ScaleStrategy,
    Substitute,
    is_prediction_enabled,
    new_hpa_object,
    set_hpa_conditions,
)
from cranekit.common import ConditionStatus, set_condition
from cranekit.ehpa_prediction import new_prediction_object, set_prediction_conditions
from cranekit.informer import Pod
from cranekit.known import EFFECTIVE_HPA_UID_LABEL
from cranekit.tsp import TimeSeriesPrediction

logger = logging.getLogger(__name__)

SUBSTITUTE_RESYNC_SECONDS = 15.0
DEFAULT_K8S_MINOR = 22


class ObjectNotFound(Exception):
    """The requested object does not exist."""


@dataclass
class Scale:
    """The scale subresource of a workload."""

    name: str
    namespace: str = ""
    spec_replicas: int = 0
    status_replicas: int = 0
    selector: str = ""


@dataclass
class Result:
    """Outcome of a reconcile: when, if at all, to look at the object again."""

    requeue_after: Optional[float] = None


class ObjectClient(ABC):
    """Reads and writes cluster objects, identified by their ``KIND``."""

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str) -> Any:
        """Return the object; raise ObjectNotFound when it does not exist."""

    @abstractmethod
    def list(self, kind: str, labels: dict[str, str]) -> list[Any]:
        """Return the objects of the kind carrying all the given labels."""

    @abstractmethod
    def create(self, obj: Any) -> None:
        """Create the object."""

    @abstractmethod
    def update(self, obj: Any) -> None:
        """Write the object's spec and metadata."""

    @abstractmethod
    def update_status(self, obj: Any) -> None:
        """Write the object's status."""


class ScaleClient(ABC):
    """Reads and writes the scale of workloads."""

    @abstractmethod
    def get_scale(self, namespace: str, target_ref: CrossVersionObjectReference) -> Scale:
        """Return the scale of the referenced workload."""

    @abstractmethod
    def update_scale(self, scale: Scale) -> Scale:
        """Write the scale and return it as stored."""

    @abstractmethod
    def pods_for_scale(self, scale: Scale) -> list[Pod]:
        """Return the pods selected by the scale."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _identity(obj: Any) -> str:
    return f"{obj.namespace}/{obj.name}" if obj.namespace else obj.name


def new_substitute_object(ehpa: EffectiveHPA, scale: Scale) -> Substitute:
    """Build the substitute that the effective HPA controls."""
    return Substitute(
        name=ehpa.managed_object_name,
        namespace=ehpa.namespace,
        labels=ehpa.managed_labels,
        owner_uid=ehpa.uid,
        target_ref=copy.deepcopy(ehpa.spec.scale_target_ref),
        replicas=scale.spec_replicas,
    )


class EffectiveHPAController:
    """Scales workloads according to their effective HPA."""

    def __init__(
        self,
        client: ObjectClient,
        scale_client: ScaleClient,
        recorder: Optional[EventRecorder] = None,
        k8s_minor: int = DEFAULT_K8S_MINOR,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.client = client
        self.scale_client = scale_client
        self.recorder = recorder if recorder is not None else EventRecorder()
        self.k8s_minor = k8s_minor
        self._clock = clock
        self.expected_replicas: dict[tuple[str, str], float] = {}

    def _event(self, obj: Any, reason: str, message: str) -> None:
        self.recorder.event(obj, EVENT_TYPE_NORMAL, reason, message)

    def _record_metrics(self, ehpa: EffectiveHPA) -> None:
        if ehpa.status.expect_replicas is not None:
            key = (_identity(ehpa), ehpa.spec.scale_strategy.value)
            self.expected_replicas[key] = float(ehpa.status.expect_replicas)

    def _fail(self, ehpa: EffectiveHPA, status: EffectiveHPAStatus, reason: str, message: str) -> None:
        set_condition(status.conditions, CONDITION_READY, ConditionStatus.FALSE, reason, message)
        self.update_status(ehpa, status)

    def reconcile(self, namespace: str, name: str) -> Result:
        """Bring the HPA, substitute and prediction of an effective HPA up to date."""
        logger.info("got ehpa %s/%s", namespace, name)
        ehpa: EffectiveHPA = self.client.get(EffectiveHPA.KIND, namespace, name)
        self._record_metrics(ehpa)
        new_status = copy.deepcopy(ehpa.status)

        try:
            scale = self.scale_client.get_scale(ehpa.namespace, ehpa.spec.scale_target_ref)
        except Exception as exc:
            self._event(ehpa, "FailedGetScale", str(exc))
            logger.error("failed to get scale for ehpa %s: %s", _identity(ehpa), exc)
            self._fail(ehpa, new_status, "FailedGetScale", "Failed to get scale")
            raise

        substitute: Optional[Substitute] = None
        if ehpa.spec.scale_strategy == ScaleStrategy.PREVIEW:
            try:
                substitute = self.reconcile_substitute(ehpa, scale)
            except Exception:
                self._fail(
                    ehpa, new_status, "FailedReconcileSubstitute", "Failed to reconcile substitute"
                )
                raise

        if is_prediction_enabled(ehpa):
            try:
                prediction = self.reconcile_prediction(ehpa)
            except Exception as exc:
                self._fail(ehpa, new_status, "FailedReconcilePrediction", str(exc))
                raise
            set_prediction_conditions(new_status, prediction.status.conditions)

        try:
            hpa = self.reconcile_hpa(ehpa, substitute)
        except Exception as exc:
            self._fail(ehpa, new_status, "FailedReconcileHPA", str(exc))
            raise

        new_status.expect_replicas = hpa.status.desired_replicas
        new_status.current_replicas = hpa.status.current_replicas
        hpa_scale_time = hpa.status.last_scale_time
        if hpa_scale_time is not None and (
            new_status.last_scale_time is None or hpa_scale_time > new_status.last_scale_time
        ):
            new_status.last_scale_time = hpa_scale_time
        set_hpa_conditions(new_status, hpa.status.conditions)

        specific = ehpa.spec.specific_replicas
        if (
            ehpa.spec.scale_strategy == ScaleStrategy.PREVIEW
            and specific is not None
            and specific != scale.status_replicas
        ):
            scale.spec_replicas = specific
            try:
                updated = self.scale_client.update_scale(scale)
            except Exception as exc:
                self._event(ehpa, "FailedManualScale", str(exc))
                logger.error("failed to scale %s to %d: %s", _identity(ehpa), specific, exc)
                self._fail(ehpa, new_status, "FailedScale", "Failed to scale target manually")
                raise
            logger.info("manual scale target of %s to %d replicas", _identity(ehpa), specific)
            new_status.last_scale_time = self._clock()
            new_status.current_replicas = updated.status_replicas

        set_condition(
            new_status.conditions,
            CONDITION_READY,
            ConditionStatus.TRUE,
            "EffectiveHorizontalPodAutoscalerReady",
            "Effective HPA is ready",
        )
        self.update_status(ehpa, new_status)
        return Result()

    def update_status(self, ehpa: EffectiveHPA, new_status: EffectiveHPAStatus) -> None:
        """Write the new status when it differs; failures are recorded, not raised."""
        if ehpa.status == new_status:
            return
        ehpa.status = new_status
        try:
            self.client.update_status(ehpa)
        except Exception as exc:
            self._event(ehpa, "FailedUpdateStatus", str(exc))
            logger.error("failed to update status of %s: %s", _identity(ehpa), exc)
            return
        logger.info("update EffectiveHorizontalPodAutoscaler status of %s", _identity(ehpa))

    def _owned(self, kind: str, ehpa: EffectiveHPA) -> list[Any]:
        return self.client.list(kind, {EFFECTIVE_HPA_UID_LABEL: ehpa.uid})

    def _target_pods(self, ehpa: EffectiveHPA) -> Optional[Sequence[Pod]]:
        if not is_prediction_enabled(ehpa):
            return None
        needs_pods = any(
            metric.type == MetricSourceType.RESOURCE
            and metric.resource is not None
            and metric.resource.target.average_utilization is not None
            for metric in ehpa.spec.metrics
        )
        if not needs_pods:
            return None
        scale = self.scale_client.get_scale(ehpa.namespace, ehpa.spec.scale_target_ref)
        return self.scale_client.pods_for_scale(scale)

    def _new_hpa(self, ehpa: EffectiveHPA, substitute: Optional[Substitute]) -> HorizontalPodAutoscaler:
        return new_hpa_object(ehpa, substitute, self.k8s_minor, self._target_pods(ehpa))

    def reconcile_hpa(
        self, ehpa: EffectiveHPA, substitute: Optional[Substitute]
    ) -> HorizontalPodAutoscaler:
        """Create the HPA or bring the existing one in line."""
        try:
            items = self._owned(HorizontalPodAutoscaler.KIND, ehpa)
        except ObjectNotFound:
            return self.create_hpa(ehpa, substitute)
        except Exception as exc:
            self._event(ehpa, "FailedGetHPA", str(exc))
            logger.error("failed to get HPA of %s: %s", _identity(ehpa), exc)
            raise
        if not items:
            return self.create_hpa(ehpa, substitute)
        return self.update_hpa_if_needed(ehpa, items[0], substitute)

    def get_hpa(self, ehpa: EffectiveHPA) -> Optional[HorizontalPodAutoscaler]:
        """Return the HPA the effective HPA controls, if any."""
        items = self._owned(HorizontalPodAutoscaler.KIND, ehpa)
        return items[0] if items else None

    def create_hpa(
        self, ehpa: EffectiveHPA, substitute: Optional[Substitute]
    ) -> HorizontalPodAutoscaler:
        """Create the HPA the effective HPA controls."""
        try:
            hpa = self._new_hpa(ehpa, substitute)
        except Exception as exc:
            self._event(ehpa, "FailedCreateHPAObject", str(exc))
            raise
        try:
            self.client.create(hpa)
        except Exception as exc:
            self._event(ehpa, "FailedCreateHPA", str(exc))
            raise
        logger.info("create HorizontalPodAutoscaler %s", _identity(hpa))
        self._event(ehpa, "HPACreated", "Create HorizontalPodAutoscaler successfully")
        return hpa

    def update_hpa_if_needed(
        self,
        ehpa: EffectiveHPA,
        existing: HorizontalPodAutoscaler,
        substitute: Optional[Substitute],
    ) -> HorizontalPodAutoscaler:
        """Update the existing HPA's spec when it differs from the expected one."""
        try:
            hpa = self._new_hpa(ehpa, substitute)
        except Exception as exc:
            self._event(ehpa, "FailedCreateHPAObject", str(exc))
            raise
        if existing.spec != hpa.spec:
            existing.spec = hpa.spec
            try:
                self.client.update(existing)
            except Exception as exc:
                self._event(ehpa, "FailedUpdateHPA", str(exc))
                raise
            logger.info("update HorizontalPodAutoscaler %s", _identity(existing))
        return existing

    def reconcile_prediction(self, ehpa: EffectiveHPA) -> TimeSeriesPrediction:
        """Create the prediction or bring the existing one in line."""
        try:
            items = self._owned(TimeSeriesPrediction.KIND, ehpa)
        except ObjectNotFound:
            return self.create_prediction(ehpa)
        except Exception as exc:
            self._event(ehpa, "FailedGetPrediction", str(exc))
            logger.error("failed to get prediction of %s: %s", _identity(ehpa), exc)
            raise
        if not items:
            return self.create_prediction(ehpa)
        return self.update_prediction_if_needed(ehpa, items[0])

    def get_prediction(self, ehpa: EffectiveHPA) -> Optional[TimeSeriesPrediction]:
        """Return the prediction the effective HPA controls, if any."""
        items = self._owned(TimeSeriesPrediction.KIND, ehpa)
        return items[0] if items else None

    def create_prediction(self, ehpa: EffectiveHPA) -> TimeSeriesPrediction:
        """Create the prediction the effective HPA controls."""
        try:
            prediction = new_prediction_object(ehpa)
        except Exception as exc:
            self._event(ehpa, "FailedCreatePredictionObject", str(exc))
            raise
        try:
            self.client.create(prediction)
        except Exception as exc:
            self._event(ehpa, "FailedCreatePrediction", str(exc))
            raise
        logger.info("create TimeSeriesPrediction %s", _identity(prediction))
        self._event(ehpa, "PredictionCreated", "Create TimeSeriesPrediction successfully")
        return prediction

    def update_prediction_if_needed(
        self, ehpa: EffectiveHPA, existing: TimeSeriesPrediction
    ) -> TimeSeriesPrediction:
        """Update the existing prediction's spec when it differs from the expected one."""
        try:
            prediction = new_prediction_object(ehpa)
        except Exception as exc:
            self._event(ehpa, "FailedCreatePredictionObject", str(exc))
            raise
        if existing.spec != prediction.spec:
            existing.spec = prediction.spec
            try:
                self.client.update(existing)
            except Exception as exc:
                self._event(ehpa, "FailedUpdatePrediction", str(exc))
                raise
            logger.info("update TimeSeriesPrediction %s", _identity(existing))
        return existing

    def reconcile_substitute(self, ehpa: EffectiveHPA, scale: Scale) -> Substitute:
        """Create the substitute or bring the existing one in line."""
        try:
            items = self._owned(Substitute.KIND, ehpa)
        except ObjectNotFound:
            return self.create_substitute(ehpa, scale)
        except Exception as exc:
            self._event(ehpa, "FailedGetSubstitute", str(exc))
            logger.error("failed to get substitute of %s: %s", _identity(ehpa), exc)
            raise
        if not items:
            return self.create_substitute(ehpa, scale)
        return self.update_substitute_if_needed(ehpa, items[0], scale)

    def create_substitute(self, ehpa: EffectiveHPA, scale: Scale) -> Substitute:
        """Create the substitute the effective HPA controls."""
        try:
            substitute = new_substitute_object(ehpa, scale)
        except Exception as exc:
            self._event(ehpa, "FailedCreateSubstituteObject", str(exc))
            raise
        try:
            self.client.create(substitute)
        except Exception as exc:
            self._event(ehpa, "FailedCreateSubstitute", str(exc))
            raise
        logger.info("create Substitute %s", _identity(substitute))
        self._event(ehpa, "SubstituteCreated", "Create Substitute successfully")
        return substitute

    def update_substitute_if_needed(
        self, ehpa: EffectiveHPA, existing: Substitute, scale: Scale
    ) -> Substitute:
        """Point the existing substitute at the effective HPA's target when it does not."""
        if existing.target_ref != ehpa.spec.scale_target_ref:
            existing.target_ref = copy.deepcopy(ehpa.spec.scale_target_ref)
            try:
                self.client.update(existing)
            except Exception as exc:
                self._event(ehpa, "FailedUpdateSubstitute", str(exc))
                raise
            logger.info("update Substitute %s", _identity(existing))
        return existing


class SubstituteController:
    """Keeps a substitute's status in line with the scale of its target."""

    def __init__(
        self,
        client: ObjectClient,
        scale_client: ScaleClient,
        recorder: Optional[EventRecorder] = None,
    ) -> None:
        self.client = client
        self.scale_client = scale_client
        self.recorder = recorder if recorder is not None else EventRecorder()

    def reconcile(self, namespace: str, name: str) -> Result:
        """Copy the target's selector and the substitute's replicas into its status."""
        logger.info("got substitute %s/%s", namespace, name)
        substitute: Substitute = self.client.get(Substitute.KIND, namespace, name)
        if substitute.deletion_timestamp is not None:
            return Result()

        try:
            scale = self.scale_client.get_scale(substitute.namespace, substitute.target_ref)
        except Exception as exc:
            self.recorder.event(substitute, EVENT_TYPE_NORMAL, "FailedGetScale", str(exc))
            logger.error("failed to get scale for substitute %s: %s", _identity(substitute), exc)
            raise

        new_state = (scale.selector, substitute.replicas)
        if (substitute.status_selector, substitute.status_replicas) != new_state:
            substitute.status_selector, substitute.status_replicas = new_state
            try:
                self.client.update_status(substitute)
            except Exception as exc:
                self.recorder.event(substitute, EVENT_TYPE_NORMAL, "FailedUpdateStatus", str(exc))
                raise
            logger.info("update Substitute status of %s", _identity(substitute))

        return Result(requeue_after=SUBSTITUTE_RESYNC_SECONDS)