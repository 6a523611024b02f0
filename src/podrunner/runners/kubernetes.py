from __future__ import annotations
import asyncio
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Dict, Optional

import structlog

from ..cluster.base import Cluster
from ..cluster.kubernetes import KubernetesCluster
from ..core.errors import InfraError, RunnerError
from ..core.models import Failure, JobHandle, JobSpec
from ..core.utils import encode_request, new_runner_id
from ..services.cleanup import CleanupManager
from ..services.lifecycle import LifecycleStateMachine, ResolutionCell
from ..services.result_reader import ResultReader
from ..services.spec_builder import SpecBuilder
from ..services.timeout import await_outcome
from ..settings import RunnerConfig, Settings

log = structlog.get_logger(__name__)


class KubernetesRunner:
    """
    Runs each launch in its own pod: build the pod from the template, submit
    it, follow it through the watch stream, read the response file once the
    target container terminates, then delete the pod.
    """

    def __init__(
        self,
        name: str,
        cluster: Cluster,
        configuration: RunnerConfig,
        executor: Optional[Executor] = None,
        close_cluster_at_shutdown: bool = False,
        max_workers: Optional[int] = None,
    ):
        self.name = name
        self.cluster = cluster
        self.configuration = configuration
        self.close_cluster_at_shutdown = close_cluster_at_shutdown

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{name}-k8s")

        # identity of this instance; every pod it creates carries it
        self.labels: Dict[str, str] = {
            "owner": configuration.owner,
            "runnerId": new_runner_id(),
        }

        self.builder = SpecBuilder(
            runner_name=name,
            template_path=configuration.pod_template,
            target_container=configuration.target_container,
            name_prefix=configuration.name_prefix,
        )
        self.reader = ResultReader(
            cluster,
            container=configuration.sidecar_container,
            path=configuration.response_file,
            runner_name=name,
        )
        self.cleanup = CleanupManager(cluster, self.executor)
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "KubernetesRunner":
        cluster = KubernetesCluster.connect(
            settings.namespace,
            settings.context,
            runner_name=settings.runner_name,
            target_container=settings.target_container,
        )
        return cls(
            name=settings.runner_name,
            cluster=cluster,
            configuration=settings.runner_config(),
            close_cluster_at_shutdown=True,
            max_workers=settings.max_workers,
        )

    def build_spec(self, function: str, payload: str) -> JobSpec:
        cfg = self.configuration
        return self.builder.build(
            image=cfg.image,
            args=[encode_request(function, payload), cfg.response_file],
            resources={"cpu": cfg.cpu, "memory": cfg.memory},
            labels=self.labels,
        )

    async def launch(self, function: str, payload: str) -> str:
        if self._closed:
            raise InfraError("runner is closed", runner_name=self.name)

        spec = self.build_spec(function, payload)
        handle = JobHandle(name=spec.name, namespace=self.cluster.namespace)
        log.info("launching", runner=self.name, function=function, pod=spec.name)

        try:
            handle = await self._submit(spec)
            raw = await self._wait_for_response(handle)
            return raw.decode("utf-8", errors="replace")
        finally:
            if self.configuration.delete_pods_after_completion:
                self.cleanup.schedule_delete(handle)

    async def _submit(self, spec: JobSpec) -> JobHandle:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, self.cluster.submit, spec.manifest)
        except RunnerError:
            raise
        except Exception as e:
            raise InfraError(f"pod '{spec.name}' could not be created: {e}", runner_name=self.name, cause=e)

    async def _wait_for_response(self, handle: JobHandle) -> bytes:
        cell = ResolutionCell()
        machine = LifecycleStateMachine(handle, self.reader, cell, runner_name=self.name)

        loop = asyncio.get_running_loop()
        try:
            subscription = await loop.run_in_executor(
                self.executor, self.cluster.subscribe, handle, machine.on_event, machine.on_close
            )
        except Exception as e:
            raise InfraError(f"could not watch pod '{handle.name}': {e}", runner_name=self.name, cause=e)

        try:
            outcome = await await_outcome(cell, self.configuration.timeout_ms, runner_name=self.name)
        finally:
            subscription.close()

        if isinstance(outcome, Failure):
            raise outcome.error
        return outcome.raw

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.cleanup.drain()
            # remove any dangling pod
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self.executor, self.cleanup.sweep, self.labels)
        finally:
            if self.close_cluster_at_shutdown:
                try:
                    self.cluster.close()
                except Exception as e:
                    log.warning("cluster_close_failed", runner=self.name, error=str(e))
            if self._owns_executor:
                self.executor.shutdown(wait=False)

    async def __aenter__(self) -> "KubernetesRunner":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
