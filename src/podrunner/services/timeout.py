from __future__ import annotations
import asyncio
from typing import Optional

import structlog

from ..core.errors import RunnerTimeout
from ..core.models import Failure, Outcome
from .lifecycle import ResolutionCell

log = structlog.get_logger(__name__)


async def await_outcome(cell: ResolutionCell, timeout_ms: Optional[int], runner_name: str = "") -> Outcome:
    """
    Wait for the cell, at most `timeout_ms` (None = forever). On expiry the
    cell is resolved with a Timeout failure; an event that landed first wins.
    Only the wait is cancelled, the pod is left to the cleanup step.
    """
    waiter = cell.wait()
    if timeout_ms is None:
        return await waiter

    try:
        return await asyncio.wait_for(asyncio.shield(waiter), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        cell.resolve(Failure(RunnerTimeout(
            f"no result after {timeout_ms}ms",
            runner_name=runner_name,
        )))
        log.info("launch_timed_out", timeout_ms=timeout_ms)
        return cell.outcome()
