from __future__ import annotations
import asyncio
import threading
from concurrent.futures import Future, InvalidStateError
from typing import Optional

import structlog
from pydantic import ValidationError

from ..core.errors import (InfraError, NonZeroExit, RemoteFailure,
                           ResultUnavailable, RunnerError, StreamClosed)
from ..core.models import (Failure, FailureResponse, JobHandle, LifecycleEvent,
                           Outcome, Phase, Success)
from .result_reader import ResultReader

log = structlog.get_logger(__name__)

# Waiting reasons the pod can never recover from
FAST_FAIL_REASONS = frozenset({"ImagePullBackOff"})


class ResolutionCell:
    """Write-once, read-many holder for the Outcome of one launch. Thread-safe."""

    def __init__(self):
        self._lock = threading.Lock()
        self._future: "Future[Outcome]" = Future()

    def resolve(self, outcome: Outcome) -> bool:
        """Store `outcome` unless one is already stored. Returns True if it won."""
        with self._lock:
            if self._future.done():
                return False
            try:
                self._future.set_result(outcome)
            except InvalidStateError:
                return False
            return True

    @property
    def resolved(self) -> bool:
        return self._future.done()

    def outcome(self) -> Optional[Outcome]:
        if not self._future.done() or self._future.cancelled():
            return None
        return self._future.result()

    def wait(self) -> "asyncio.Future[Outcome]":
        return asyncio.wrap_future(self._future)


class LifecycleStateMachine:
    """
    Turns the pod event stream of one launch into exactly one Outcome.

    Checks run in a fixed order for every event: unpullable image, pending
    pod, missing target container status, terminated target container.
    Pending must not hide an image pull failure, and a missing status is only
    an error once the pod is past Pending.
    """

    def __init__(self, handle: JobHandle, reader: ResultReader, cell: ResolutionCell, runner_name: str = ""):
        self.handle = handle
        self.reader = reader
        self.cell = cell
        self.runner_name = runner_name

    def _fail(self, error: RunnerError) -> None:
        if self.cell.resolve(Failure(error)):
            log.info("launch_failed", pod=self.handle.name, kind=error.kind.value, error=error.message)

    def on_event(self, event: LifecycleEvent) -> None:
        log.debug("pod_event", pod=self.handle.name, action=event.action,
                  phase=event.phase.value if event.phase else None, pod_doc=event.raw)

        if self.cell.resolved:
            log.debug("event_after_resolution_ignored", pod=self.handle.name)
            return

        target = event.target

        if target is not None and target.waiting_reason in FAST_FAIL_REASONS:
            self._fail(InfraError(
                f"image for pod '{self.handle.name}' does not seem to be pullable ({target.waiting_reason})",
                runner_name=self.runner_name,
            ))
            return

        if event.phase == Phase.PENDING:
            log.debug("pod_spinning_up", pod=self.handle.name)
            return

        if target is None:
            self._fail(InfraError(
                f"target container state not found in pod '{self.handle.name}'",
                runner_name=self.runner_name,
            ))
            return

        if target.terminated:
            self._on_terminated(target.exit_code)
            return

        log.debug("target_container_state", pod=self.handle.name, state=target.describe())

    def _on_terminated(self, exit_code: int) -> None:
        try:
            response = self.reader.read(self.handle)
        except ResultUnavailable as e:
            e.exit_code = exit_code
            e.message = f"{e.message} (container exit status: {exit_code})"
            self._fail(e)
            return

        if exit_code == 0:
            if self.cell.resolve(Success(response)):
                log.info("launch_succeeded", pod=self.handle.name)
            return

        try:
            failure = FailureResponse.model_validate_json(response)
        except ValidationError:
            self._fail(NonZeroExit(
                f"container exit status : {exit_code}",
                runner_name=self.runner_name,
                exit_code=exit_code,
            ))
            return

        self._fail(RemoteFailure(
            failure.message,
            runner_name=self.runner_name,
            remote_trace=failure.remote_trace(),
            exit_code=exit_code,
        ))

    def on_close(self, cause: Optional[BaseException] = None) -> None:
        if self.cell.resolved:
            return
        self._fail(StreamClosed(
            f"pod watcher for '{self.handle.name}' closed unexpectedly",
            runner_name=self.runner_name,
            cause=cause,
        ))
