from __future__ import annotations

import structlog

from ..cluster.base import Cluster
from ..core.errors import ResultUnavailable
from ..core.models import JobHandle

log = structlog.get_logger(__name__)


class ResultReader:
    """
    Fetches the response file through the sidecar container, which keeps the
    shared volume alive after the target container has exited.
    """

    def __init__(self, cluster: Cluster, container: str, path: str, runner_name: str = ""):
        self.cluster = cluster
        self.container = container
        self.path = path
        self.runner_name = runner_name

    def read(self, handle: JobHandle) -> bytes:
        try:
            data = self.cluster.read_file(handle, self.container, self.path)
        except Exception as e:
            raise ResultUnavailable(
                f"could not read {self.path} from pod '{handle.name}': {e}",
                runner_name=self.runner_name,
                cause=e,
            )
        log.debug("result_read", pod=handle.name, size=len(data))
        return data
