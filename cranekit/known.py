"""Well-known names shared across the system."""

CRANE_SYSTEM_NAMESPACE = "crane-system"

METRIC_NAME_POD_CPU_USAGE = "pod_cpu_usage"
METRIC_NAME_POD_MEMORY_USAGE = "pod_memory_usage"

EFFECTIVE_HPA_UID_LABEL = "autoscaling.crane.io/effective-hpa-uid"
EFFECTIVE_HPA_MANAGED_BY = "effective-hpa-controller"

ENSURANCE_ANALYZED_PRESSURE_TAINT_KEY = "ensurance.crane.io/analyzed-pressure"
ENSURANCE_ANALYZED_PRESSURE_CONDITION_KEY = "analyzed-pressure"

REASON_TIME_SERIES_PREDICT_FAILED = "PredictFailed"
REASON_TIME_SERIES_PREDICT_PARTIAL = "PredictPartial"
REASON_TIME_SERIES_PREDICT_SUCCEED = "PredictSucceed"