"""Metrics collected from the local node."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, fields
from typing import Callable, Iterable, Optional, Protocol

import psutil

from cranekit.common import Sample, TimeSeries
from cranekit.metric_names import CollectType, MetricName

logger = logging.getLogger(__name__)

CPU_COLLECTOR_NAME = "cpu"
MAX_PERCENTAGE = 100.0
MIN_PERCENTAGE = 0.0


class CollectInitError(Exception):
    """The collector has only taken its first reading and has nothing to report yet."""

    def __init__(self) -> None:
        super().__init__("collect_init")


class _NodeLocalCollector(Protocol):
    def name(self) -> str: ...

    def collect(self) -> dict[str, list[TimeSeries]]: ...


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative CPU times in seconds."""

    user: float = 0.0
    system: float = 0.0
    nice: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    idle: float = 0.0


def all_busy(stat: CpuTimes) -> tuple[float, float]:
    """Return the total and the busy CPU time."""
    busy = (
        stat.user + stat.system + stat.nice + stat.iowait + stat.irq + stat.softirq + stat.steal
    )
    return busy + stat.idle, busy


def calculate_busy(previous: CpuTimes, current: CpuTimes) -> float:
    """Busy percentage between two readings, clamped to [0, 100]."""
    previous_all, previous_busy = all_busy(previous)
    current_all, current_busy = all_busy(current)
    if current_busy <= previous_busy:
        return MIN_PERCENTAGE
    if current_all <= previous_all:
        return MAX_PERCENTAGE
    percent = (current_busy - previous_busy) / (current_all - previous_all) * 100
    return min(MAX_PERCENTAGE, max(MIN_PERCENTAGE, percent))


def _system_cpu_times() -> CpuTimes:
    raw = psutil.cpu_times(percpu=False)
    return CpuTimes(**{f.name: float(getattr(raw, f.name, 0.0)) for f in fields(CpuTimes)})


class CpuCollector:
    """Reports node CPU usage in millicores and utilization in percent."""

    def __init__(
        self,
        cpu_count: Optional[int] = None,
        times_source: Callable[[], CpuTimes] = _system_cpu_times,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if cpu_count is None:
            cpu_count = psutil.cpu_count(logical=True)
            if cpu_count is None:
                raise RuntimeError("cannot determine the number of CPUs")
        self._cpu_count = cpu_count
        self._times_source = times_source
        self._clock = clock
        self._previous: Optional[CpuTimes] = None
        self._data: dict[str, list[TimeSeries]] = {}
        logger.debug("new cpu collector with %d cores", cpu_count)

    def name(self) -> str:
        return CPU_COLLECTOR_NAME

    def collect(self) -> dict[str, list[TimeSeries]]:
        """Take a reading; the first one only primes the collector and raises CollectInitError."""
        timestamp = int(self._clock())
        current = self._times_source()
        if self._previous is None:
            self._previous = current
            raise CollectInitError()
        usage_percent = calculate_busy(self._previous, current)
        usage_core = usage_percent * self._cpu_count * 1000 / 100
        self._previous = current
        self._data[MetricName.CPU_TOTAL_USAGE.value] = [
            TimeSeries(samples=[Sample(value=usage_core, timestamp=timestamp)])
        ]
        self._data[MetricName.CPU_TOTAL_UTILIZATION.value] = [
            TimeSeries(samples=[Sample(value=usage_percent, timestamp=timestamp)])
        ]
        return self._data


CollectorFactory = Callable[[], _NodeLocalCollector]

_collector_metrics: dict[str, list[MetricName]] = {}
_collector_factories: dict[str, CollectorFactory] = {}


def register_metrics(
    collector_name: str, metric_names: Iterable[MetricName], factory: CollectorFactory
) -> None:
    """Register a collector and its metrics; a second registration of a name is ignored."""
    if collector_name in _collector_metrics:
        logger.warning(
            "node local metrics collector %s is registered, not to register again",
            collector_name,
        )
        return
    _collector_metrics[collector_name] = list(metric_names)
    _collector_factories[collector_name] = factory


def metric_name_exists(name: MetricName) -> bool:
    """Return True when some registered collector provides the metric."""
    return any(name in names for names in _collector_metrics.values())


register_metrics(
    CPU_COLLECTOR_NAME,
    [MetricName.CPU_TOTAL_USAGE, MetricName.CPU_TOTAL_UTILIZATION],
    CpuCollector,
)


class NodeLocal:
    """Runs every node-local collector and merges their results."""

    def __init__(self, factories: Optional[dict[str, CollectorFactory]] = None) -> None:
        chosen = _collector_factories if factories is None else factories
        self._collectors: list[_NodeLocalCollector] = []
        for name, factory in chosen.items():
            try:
                self._collectors.append(factory())
            except Exception:  # a collector that cannot start is left out
                logger.exception("node local collector %s init failed", name)

    def collect_type(self) -> CollectType:
        return CollectType.NODE_LOCAL

    def collect(self) -> dict[str, list[TimeSeries]]:
        status: dict[str, list[TimeSeries]] = {}
        for collector in self._collectors:
            try:
                status.update(collector.collect())
            except CollectInitError:
                continue
            except Exception:  # one failing collector must not hide the others
                logger.exception("node local collect %s failed", collector.name())
        return status