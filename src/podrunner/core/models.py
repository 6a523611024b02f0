from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .errors import RunnerError


class Phase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Phase"]:
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class JobHandle:
    name: str
    namespace: str


@dataclass(frozen=True)
class JobSpec:
    name: str
    labels: Dict[str, str]
    image: str
    args: List[str]
    resources: Dict[str, str]
    manifest: Dict[str, Any] = field(repr=False, compare=False)


@dataclass(frozen=True)
class ContainerState:
    """One of: waiting (waiting_reason), running, terminated (exit_code)."""
    waiting_reason: Optional[str] = None
    running: bool = False
    exit_code: Optional[int] = None
    terminated_reason: Optional[str] = None

    @property
    def terminated(self) -> bool:
        return self.exit_code is not None

    def describe(self) -> str:
        if self.terminated:
            return f"terminated(exitCode={self.exit_code}, reason={self.terminated_reason})"
        if self.running:
            return "running"
        return f"waiting({self.waiting_reason})"


@dataclass(frozen=True)
class LifecycleEvent:
    action: str
    phase: Optional[Phase]
    target: Optional[ContainerState]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class Success:
    raw: bytes


@dataclass(frozen=True)
class Failure:
    error: RunnerError


Outcome = Union[Success, Failure]


class FailureResponse(BaseModel):
    """Structured failure payload written by the job when the function raises."""
    function: str
    message: str
    stack_trace: Optional[Union[str, List[str]]] = Field(
        default=None, validation_alias=AliasChoices("stackTrace", "remoteTrace", "stack_trace")
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def remote_trace(self) -> Optional[str]:
        if isinstance(self.stack_trace, list):
            return "\n".join(self.stack_trace)
        return self.stack_trace
