from __future__ import annotations
import asyncio
from concurrent.futures import Executor
from typing import Dict, Optional, Set

import structlog

from ..cluster.base import Cluster
from ..core.models import JobHandle

log = structlog.get_logger(__name__)


class CleanupManager:
    """
    Best-effort removal of pods. Errors are logged and never raised: a failed
    delete must not replace the outcome the caller is waiting for.
    """

    def __init__(self, cluster: Cluster, executor: Optional[Executor] = None, grace_seconds: int = 0):
        self.cluster = cluster
        self.executor = executor
        self.grace_seconds = grace_seconds
        self._pending: Set["asyncio.Future[None]"] = set()

    def _delete(self, handle: JobHandle) -> None:
        try:
            self.cluster.delete(handle, self.grace_seconds)
            log.debug("pod_deleted", pod=handle.name)
        except Exception as e:
            log.warning("pod_delete_failed", pod=handle.name, error=str(e))

    def schedule_delete(self, handle: JobHandle) -> "asyncio.Future[None]":
        """
        Fire-and-forget delete on the worker pool; tracked until drained.
        Once the pool is shut down (runner closed mid-launch) the loop's
        default executor takes over.
        """
        loop = asyncio.get_running_loop()
        try:
            fut = loop.run_in_executor(self.executor, self._delete, handle)
        except RuntimeError as e:
            log.debug("delete_rescheduled_on_default_executor", pod=handle.name, error=str(e))
            try:
                fut = loop.run_in_executor(None, self._delete, handle)
            except RuntimeError as e2:
                log.warning("pod_delete_not_scheduled", pod=handle.name, error=str(e2))
                fut = loop.create_future()
                fut.set_result(None)
        self._pending.add(fut)
        fut.add_done_callback(self._pending.discard)
        return fut

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def sweep(self, labels: Dict[str, str]) -> None:
        """Delete every pod carrying `labels` (this runner instance's identity)."""
        log.debug("deleting_dangling_pods", labels=labels)
        try:
            self.cluster.delete_by_labels(labels, self.grace_seconds)
        except Exception as e:
            log.warning("orphan_sweep_failed", labels=labels, error=str(e))
