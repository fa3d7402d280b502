"""Collects node state periodically according to the ensurance policies."""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

from cranekit.common import TimeSeries
from cranekit.informer import ObjectStore
from cranekit.manager import Manager
from cranekit.metric_names import CollectType, UpdateEvent
from cranekit.nodelocal import NodeLocal

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 10.0
_POLL_SECONDS = 0.1


class Collector(ABC):
    """A source of named time series."""

    @abstractmethod
    def collect_type(self) -> CollectType:
        """Return the kind of this collector."""

    @abstractmethod
    def collect(self) -> dict[str, list[TimeSeries]]:
        """Return the latest series keyed by metric name."""


class StateStoreManager(Manager):
    """Keeps collectors in line with the policies and caches what they collect."""

    def __init__(
        self,
        policy_store: ObjectStore,
        node_local_factory: Callable[[], object] = NodeLocal,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self._policy_store = policy_store
        self._node_local_factory = node_local_factory
        self._interval = interval
        self._events: "queue.Queue[UpdateEvent]" = queue.Queue()
        self._index = 0
        self._lock = threading.Lock()
        self._configured: set[CollectType] = set()
        self._collectors: list = []
        self._status: dict[str, list[TimeSeries]] = {}

    def name(self) -> str:
        return "StateStoreManager"

    def run(self, stop: threading.Event) -> None:
        threading.Thread(
            target=self._config_loop, args=(stop,), name=f"{self.name()}-config", daemon=True
        ).start()
        threading.Thread(
            target=self._collect_loop, args=(stop,), name=f"{self.name()}-collect", daemon=True
        ).start()

    def _config_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self._interval):
            if self.check_config():
                self._index += 1
                logger.debug("state store update event %d", self._index)
                self._events.put(UpdateEvent(index=self._index))
        logger.info("state store config check exit")

    def _collect_loop(self, stop: threading.Event) -> None:
        next_tick = time.monotonic() + self._interval
        while not stop.is_set():
            timeout = max(0.0, min(next_tick - time.monotonic(), _POLL_SECONDS))
            try:
                event = self._events.get(timeout=timeout)
            except queue.Empty:
                if time.monotonic() >= next_tick:
                    self.collect_once()
                    next_tick += self._interval
                continue
            logger.debug("state store update config index %d", event.index)
            self.update_config()
        logger.debug("state store exit")

    def list(self) -> dict[str, list[TimeSeries]]:
        """Return a copy of the latest collected series keyed by metric name."""
        with self._lock:
            return dict(self._status)

    def _wants_node_local(self) -> bool:
        return any(policy.node_local_get for policy in self._policy_store.list())

    def check_config(self) -> bool:
        """Return True when the collectors no longer match the policies."""
        with self._lock:
            configured = CollectType.NODE_LOCAL in self._configured
        return self._wants_node_local() != configured

    def update_config(self) -> None:
        """Add or drop collectors so that they match the policies."""
        wanted = self._wants_node_local()
        with self._lock:
            configured = CollectType.NODE_LOCAL in self._configured
            if wanted and not configured:
                self._collectors.append(self._node_local_factory())
                self._configured.add(CollectType.NODE_LOCAL)
            elif not wanted and configured:
                self._configured.discard(CollectType.NODE_LOCAL)
                self._collectors = [
                    c for c in self._collectors if c.collect_type() is not CollectType.NODE_LOCAL
                ]

    def collect_once(self) -> None:
        """Run every collector once and cache the results."""
        with self._lock:
            collectors = list(self._collectors)
        for collector in collectors:
            try:
                data = collector.collect()
            except Exception:  # keep other collectors' data flowing
                logger.exception("state store collect failed for %s", collector.collect_type())
                continue
            with self._lock:
                self._status.update(data)