"""Collector types, node metric names and state store update events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CollectType(str, Enum):
    """Kind of state collector."""

    NODE_LOCAL = "node-local"


class MetricName(str, Enum):
    """Metrics gathered from the local node."""

    CPU_TOTAL_USAGE = "cpu_total_usage"
    CPU_TOTAL_UTILIZATION = "cpu_total_utilization"


@dataclass(frozen=True)
class UpdateEvent:
    """Signals that the collector configuration must be refreshed."""

    index: int