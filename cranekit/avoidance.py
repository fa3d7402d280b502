"""Applies the avoidance actions decided by the analyzer."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional

from cranekit.executor import AvoidanceExecutor, ExecuteContext
from cranekit.informer import NodeClient, ObjectStore
from cranekit.manager import Manager

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1


def do_avoidance(ctx: ExecuteContext, avoidance_executor: AvoidanceExecutor) -> None:
    """Block scheduling, evict and throttle, stopping at the first failure."""
    avoidance_executor.scheduled_executor.avoid(ctx)
    avoidance_executor.evict_executor.avoid(ctx)
    avoidance_executor.throttle_executor.avoid(ctx)


def do_restoration(ctx: ExecuteContext, avoidance_executor: AvoidanceExecutor) -> None:
    """Undo scheduling blocks, evictions and throttling, stopping at the first failure."""
    avoidance_executor.scheduled_executor.restore(ctx)
    avoidance_executor.evict_executor.restore(ctx)
    avoidance_executor.throttle_executor.restore(ctx)


class AvoidanceManager(Manager):
    """Receives avoidance executors from a queue and carries them out."""

    def __init__(
        self,
        client: NodeClient,
        node_name: str,
        node_store: ObjectStore,
        notices: "queue.Queue[AvoidanceExecutor]",
        pod_store: Optional[ObjectStore] = None,
    ) -> None:
        self._client = client
        self._node_name = node_name
        self._node_store = node_store
        self._pod_store = pod_store
        self._notices = notices
        self._thread: Optional[threading.Thread] = None

    def name(self) -> str:
        return "AvoidanceManager"

    def run(self, stop: threading.Event) -> None:
        logger.debug("avoidance manager starts running")
        self._thread = threading.Thread(
            target=self._loop, args=(stop,), name=self.name(), daemon=True
        )
        self._thread.start()

    def _loop(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                avoidance_executor = self._notices.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                self.do_action(avoidance_executor)
            except Exception:  # a failed action must not stop the manager
                logger.exception("doAction failed")
            finally:
                self._notices.task_done()
        logger.debug("avoidance exit")

    def do_action(self, avoidance_executor: AvoidanceExecutor) -> None:
        """Carry out the avoidance steps, then the restoration steps."""
        ctx = ExecuteContext(
            node_name=self._node_name,
            client=self._client,
            node_store=self._node_store,
            pod_store=self._pod_store,
        )
        do_avoidance(ctx, avoidance_executor)
        do_restoration(ctx, avoidance_executor)