# cranekit

Building blocks for keeping cluster nodes healthy and for sizing workloads
from predicted load. Everything works on plain Python objects: you supply
the clients that talk to your cluster, and you can run and test all of the
decision logic without one.

## Installation

```
pip install cranekit
```

To run the test suite, install the test extra and run pytest:

```
pip install "cranekit[test]"
pytest
```

## Modules

- `cranekit.common`: `TimeSeries`, `Sample`, `Label`, `QueryCondition` with
  `Operator`, status `Condition`s with `ConditionStatus`, `labels_to_map`
  and `set_condition` (updates a condition of a type in place or appends it).
- `cranekit.known`: well-known label keys, metric names and reasons.
- `cranekit.metric_names`: `CollectType`, `MetricName` and `UpdateEvent`.
- `cranekit.selector`: `LabelSelector` with `In`, `NotIn`, `Exists` and
  `DoesNotExist` requirements, and `match_labels`.
- `cranekit.logic`: `BasicLogic` (a value breaches its target when strictly
  greater) and `OpaLogic` (evaluates policies and raw rules you pass in as
  callables; with none loaded nothing is breached).
- `cranekit.manager`: the `Manager` interface of background components.
- `cranekit.policy`: `NodeQOSEnsurancePolicy`, `ObjectiveEnsurance`,
  `AvoidanceAction`, `Eviction` and a thread-safe `NodeQOSEnsurancePolicyCache`.
- `cranekit.detection`: `DetectionCondition`, `DetectionStatus`,
  `DetectionConditionCache` and `generate_detection_key`.
- `cranekit.informer`: `Node`, `Pod`, `Container`, `Taint`, `NodeCondition`,
  an in-memory `ObjectStore`, the `NodeClient` interface, and helpers that
  update node conditions and taints, retry writes on `ConflictError`, and
  evict pods (refusing critical pods with `CriticalPodError`).
- `cranekit.executor`: `ScheduledExecutor` (sets the pressure condition and
  taint on the node, or clears them), `EvictExecutor` (evicts pods
  concurrently and raises `EvictionError` listing failures),
  `ThrottleExecutor`, `AvoidanceExecutor`, and QoS ordering through
  `compare_pod_qos` and `ScheduledQOSPriority`.
- `cranekit.nodelocal`: `CpuCollector` (CPU usage in millicores and
  utilization in percent, read with psutil), `NodeLocal`, `calculate_busy`
  and collector registration.
- `cranekit.statestore`: `StateStoreManager`, which adds or drops the
  node-local collector to match the policies and caches what is collected.
- `cranekit.analyzer`: `AnalyzerManager`, which evaluates objectives against
  collected state, counts consecutive breaches and recoveries, records
  events on an `EventRecorder` and puts an `AvoidanceExecutor` on a queue.
- `cranekit.avoidance`: `AvoidanceManager`, which takes executors off that
  queue and runs `do_avoidance` then `do_restoration`.
- `cranekit.tsp`: time series prediction objects, `is_window_in_samples`,
  `prediction_data_warnings`, `to_api_time_series`, `prediction_key` and
  `exists_prediction_metric`.
- `cranekit.autoscaling`: effective HPA and HPA objects, `hpa_metrics`,
  `new_hpa_object`, `calculate_pod_requests`, `prediction_metric_name` and
  `set_hpa_conditions`.
- `cranekit.ehpa_prediction`: `new_prediction_object` and
  `set_prediction_conditions`.
- `cranekit.ehpa_controller`: `EffectiveHPAController` and
  `SubstituteController`, working through the `ObjectClient` and
  `ScaleClient` interfaces.

## Example

```python
from cranekit.autoscaling import ResourceName, calculate_pod_requests
from cranekit.informer import Container, Pod
from cranekit.logic import BasicLogic
from cranekit.selector import LabelSelector

selector = LabelSelector(match_labels={"zone": "a"})
print(selector.matches({"zone": "a", "role": "worker"}))  # True

logic = BasicLogic()
print(logic.eval_with_metric("cpu_total_usage", 80.0, 92.5))  # True

pods = [Pod(name="web", containers=[Container("app", requests={"cpu": 1.5})])]
print(calculate_pod_requests(pods, ResourceName.CPU))  # 1500 (millicores)
```

## What it does not do

- There is no command-line program and no long-running service; you wire
  the managers and controllers together yourself and call `run` or
  `reconcile`.
- It has no cluster API client. `NodeClient`, `ObjectClient` and
  `ScaleClient` are interfaces you implement against your own API layer or
  with in-memory fakes.
- It contains no prediction algorithms and no metrics server; `cranekit.tsp`
  only checks and converts predicted data handed to it.
- `ThrottleExecutor` changes no container resources; its `avoid` and
  `restore` return the keys of the listed pods that would be acted on.
  `EvictExecutor.restore` cannot undo evictions and returns the listed pods
  still present.