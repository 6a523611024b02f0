from __future__ import annotations
import threading
from typing import Any, Dict, Optional

import structlog
from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.stream import stream

from ..core.errors import ConfigError
from ..core.models import ContainerState, JobHandle, LifecycleEvent, Phase
from ..core.utils import label_selector
from .base import CloseCallback, Cluster, EventCallback, Subscription

log = structlog.get_logger(__name__)


def container_state(state: Optional[client.V1ContainerState]) -> Optional[ContainerState]:
    if state is None:
        return None
    if state.terminated is not None:
        return ContainerState(
            exit_code=state.terminated.exit_code,
            terminated_reason=state.terminated.reason,
        )
    if state.running is not None:
        return ContainerState(running=True)
    if state.waiting is not None:
        return ContainerState(waiting_reason=state.waiting.reason)
    return ContainerState()


def pod_to_event(action: str, pod: client.V1Pod, target_container: str, raw: Optional[Dict[str, Any]] = None) -> LifecycleEvent:
    status = pod.status
    phase = Phase.parse(status.phase) if status is not None else None
    statuses = (status.container_statuses if status is not None else None) or []
    target = next((s for s in statuses if s.name == target_container), None)
    return LifecycleEvent(
        action=action,
        phase=phase,
        target=container_state(target.state) if target is not None else None,
        raw=raw or {},
    )


class PodWatch(Subscription):
    """
    Runs a pod watch on a daemon thread and pushes every event to `on_event`.
    `on_close` is called exactly once when the stream ends, with the error
    that ended it (None when stopped through close()).
    """

    def __init__(self, cluster: "KubernetesCluster", handle: JobHandle, on_event: EventCallback, on_close: CloseCallback):
        self._cluster = cluster
        self._handle = handle
        self._on_event = on_event
        self._on_close = on_close
        self._watch = watch.Watch()
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"watch-{handle.name}", daemon=True)

    def start(self) -> "PodWatch":
        self._thread.start()
        return self

    def _run(self) -> None:
        cause: Optional[BaseException] = None
        try:
            # each request is bounded server-side so close() is noticed within
            # watch_timeout_s even when the pod stays quiet
            while cause is None and not self._stopped.is_set():
                kwargs: Dict[str, Any] = {
                    "namespace": self._handle.namespace,
                    "field_selector": f"metadata.name={self._handle.name}",
                    "timeout_seconds": self._cluster.watch_timeout_s,
                }
                if self._watch.resource_version:
                    kwargs["resource_version"] = self._watch.resource_version
                for item in self._watch.stream(self._cluster.core.list_namespaced_pod, **kwargs):
                    if self._stopped.is_set():
                        break
                    action = item.get("type", "")
                    if action == "ERROR":
                        cause = ApiException(reason=f"watch error: {item.get('raw_object')}")
                        break
                    pod = item["object"]
                    raw = self._cluster.api_client.sanitize_for_serialization(pod)
                    self._on_event(pod_to_event(action, pod, self._cluster.target_container, raw))
        except Exception as e:
            if not self._stopped.is_set():
                cause = e
        finally:
            self._on_close(cause)

    def close(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._watch.stop()


class KubernetesCluster(Cluster):
    def __init__(
        self,
        api_client: client.ApiClient,
        namespace: str,
        target_container: str = "runner",
        exec_timeout_s: int = 60,
        watch_timeout_s: int = 10,
    ):
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.namespace = namespace
        self.target_container = target_container
        self.exec_timeout_s = exec_timeout_s
        self.watch_timeout_s = watch_timeout_s

    @classmethod
    def connect(
        cls, namespace: str, context: Optional[str] = None, runner_name: str = "", **kwargs
    ) -> "KubernetesCluster":
        """kubeconfig first (optionally a named context), in-cluster config as fallback."""
        try:
            api_client = config.new_client_from_config(context=context)
        except config.ConfigException as e:
            if context is not None:
                raise ConfigError(f"kube context '{context}' unavailable: {e}", runner_name=runner_name, cause=e)
            try:
                config.load_incluster_config()
            except config.ConfigException as e2:
                raise ConfigError(
                    f"no kubernetes configuration found: {e2}",
                    runner_name=runner_name,
                    cause=e2,
                )
            api_client = client.ApiClient()
        return cls(api_client, namespace, **kwargs)

    def submit(self, manifest: Dict[str, Any]) -> JobHandle:
        pod = self.core.create_namespaced_pod(namespace=self.namespace, body=manifest)
        return JobHandle(name=pod.metadata.name, namespace=self.namespace)

    def delete(self, handle: JobHandle, grace_seconds: int = 0) -> None:
        try:
            self.core.delete_namespaced_pod(
                name=handle.name,
                namespace=handle.namespace,
                grace_period_seconds=grace_seconds,
            )
        except ApiException as e:
            if e.status != 404:
                raise
            log.debug("pod_already_gone", pod=handle.name)

    def delete_by_labels(self, labels: Dict[str, str], grace_seconds: int = 0) -> None:
        self.core.delete_collection_namespaced_pod(
            namespace=self.namespace,
            label_selector=label_selector(labels),
            grace_period_seconds=grace_seconds,
        )

    def subscribe(self, handle: JobHandle, on_event: EventCallback, on_close: CloseCallback) -> Subscription:
        return PodWatch(self, handle, on_event, on_close).start()

    def read_file(self, handle: JobHandle, container: str, path: str) -> bytes:
        """
        `cat` the file inside `container` over an exec stream.

        The exec channel is text: the client decodes stdout as UTF-8 with
        replacement, so bytes that are not valid UTF-8 come back as U+FFFD.
        Response files are expected to be UTF-8 text.
        """
        resp = stream(
            self.core.connect_get_namespaced_pod_exec,
            handle.name,
            handle.namespace,
            container=container,
            command=["cat", path],
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
            _preload_content=False,
        )
        try:
            resp.run_forever(timeout=self.exec_timeout_s)
            if resp.is_open():
                raise TimeoutError(f"reading {path} from {container} took more than {self.exec_timeout_s}s")
            out = resp.read_stdout() or ""
            err = resp.read_stderr() or ""
            rc = resp.returncode
        finally:
            resp.close()
        if rc != 0:
            raise FileNotFoundError(f"cat {path} in container '{container}' exited {rc}: {err.strip()}")
        return out.encode("utf-8")

    def close(self) -> None:
        self.api_client.close()
