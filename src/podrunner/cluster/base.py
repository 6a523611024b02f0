from __future__ import annotations
from typing import Any, Callable, Dict, Optional

from ..core.models import JobHandle, LifecycleEvent

EventCallback = Callable[[LifecycleEvent], None]
CloseCallback = Callable[[Optional[BaseException]], None]


class Subscription:
    """Handle on a live event stream; close() stops delivery and is idempotent."""
    def close(self) -> None: ...


class Cluster:
    """
    Blocking primitives the runner needs from the orchestrator. Callers run
    them on a worker pool; implementations must be safe for concurrent use.
    """
    namespace: str

    def submit(self, manifest: Dict[str, Any]) -> JobHandle: ...
    def delete(self, handle: JobHandle, grace_seconds: int = 0) -> None: ...
    def delete_by_labels(self, labels: Dict[str, str], grace_seconds: int = 0) -> None: ...
    def subscribe(self, handle: JobHandle, on_event: EventCallback, on_close: CloseCallback) -> Subscription: ...
    def read_file(self, handle: JobHandle, container: str, path: str) -> bytes: ...
    def close(self) -> None: ...
