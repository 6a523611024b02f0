import threading
from typing import Any, Dict, List, Optional

import pytest

from podrunner.cluster.base import Cluster, Subscription
from podrunner.core.models import ContainerState, JobHandle, LifecycleEvent, Phase
from podrunner.settings import RunnerConfig


# --------- event helpers ---------

def pending(target: Optional[ContainerState] = None) -> LifecycleEvent:
    return LifecycleEvent(action="ADDED", phase=Phase.PENDING, target=target)


def waiting(reason: str, phase: Phase = Phase.PENDING) -> LifecycleEvent:
    return LifecycleEvent(action="MODIFIED", phase=phase, target=ContainerState(waiting_reason=reason))


def running() -> LifecycleEvent:
    return LifecycleEvent(action="MODIFIED", phase=Phase.RUNNING, target=ContainerState(running=True))


def terminated(exit_code: int, phase: Phase = Phase.RUNNING) -> LifecycleEvent:
    return LifecycleEvent(action="MODIFIED", phase=phase, target=ContainerState(exit_code=exit_code))


def no_target(phase: Optional[Phase] = Phase.RUNNING) -> LifecycleEvent:
    return LifecycleEvent(action="MODIFIED", phase=phase, target=None)


class Close:
    """Script marker: end the stream with `cause`."""
    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause


# --------- fakes ---------

class FakeSubscription(Subscription):
    def __init__(self):
        self.closed = 0

    def close(self) -> None:
        self.closed += 1


class FakeCluster(Cluster):
    """
    Records every call. `subscribe` replays `script` synchronously on the
    calling (worker) thread and keeps the callbacks in `listeners` so a
    test can push more events later; `files` maps (container, path) -> bytes or an
    exception to raise from read_file.
    """

    def __init__(self, namespace: str = "test-ns"):
        self.namespace = namespace
        self.script: List[Any] = []
        self.files: Dict[tuple, Any] = {}
        self.submitted: List[Dict[str, Any]] = []
        self.deleted: List[JobHandle] = []
        self.swept: List[Dict[str, str]] = []
        self.reads: List[tuple] = []
        self.subscriptions: List[FakeSubscription] = []
        self.listeners: List[tuple] = []
        self.submit_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.sweep_error: Optional[Exception] = None
        self.closed = 0
        self._lock = threading.Lock()

    def submit(self, manifest):
        if self.submit_error is not None:
            raise self.submit_error
        with self._lock:
            self.submitted.append(manifest)
        return JobHandle(name=manifest["metadata"]["name"], namespace=self.namespace)

    def delete(self, handle, grace_seconds=0):
        with self._lock:
            self.deleted.append(handle)
        if self.delete_error is not None:
            raise self.delete_error

    def delete_by_labels(self, labels, grace_seconds=0):
        with self._lock:
            self.swept.append(dict(labels))
        if self.sweep_error is not None:
            raise self.sweep_error

    def subscribe(self, handle, on_event, on_close):
        sub = FakeSubscription()
        self.subscriptions.append(sub)
        self.listeners.append((on_event, on_close))
        for item in self.script:
            if isinstance(item, Close):
                on_close(item.cause)
            else:
                on_event(item)
        return sub

    def read_file(self, handle, container, path):
        with self._lock:
            self.reads.append((handle.name, container, path))
        value = self.files.get((container, path))
        if value is None:
            raise FileNotFoundError(path)
        if isinstance(value, BaseException):
            raise value
        return value

    def close(self):
        self.closed += 1


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def config() -> RunnerConfig:
    return RunnerConfig(
        delete_pods_after_completion=True,
        image="registry.local/runner:1",
        cpu="100m",
        memory="128Mi",
        timeout_ms=None,
    )
