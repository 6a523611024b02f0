from __future__ import annotations
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIG = "ConfigError"
    INFRA = "InfraError"
    STREAM_CLOSED = "StreamClosed"
    NON_ZERO_EXIT = "NonZeroExit"
    REMOTE_FAILURE = "RemoteFailure"
    RESULT_UNAVAILABLE = "ResultUnavailable"
    TIMEOUT = "Timeout"


class RunnerError(Exception):
    """
    Failure of a single launch. Always names the runner that produced it;
    `cause` is the upstream exception (if any) and is chained as __cause__.
    `remote_trace` is the stack trace decoded from the job's own failure payload.
    """

    kind: ErrorKind = ErrorKind.INFRA

    def __init__(
        self,
        message: str,
        runner_name: str = "",
        cause: Optional[BaseException] = None,
        remote_trace: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.runner_name = runner_name
        self.cause = cause
        self.remote_trace = remote_trace
        self.exit_code = exit_code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        prefix = f"[{self.runner_name}] " if self.runner_name else ""
        return f"{prefix}{self.message}"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "runner": self.runner_name,
            "message": self.message,
            "remote_trace": self.remote_trace,
            "exit_code": self.exit_code,
        }


class ConfigError(RunnerError):
    kind = ErrorKind.CONFIG


class InfraError(RunnerError):
    kind = ErrorKind.INFRA


class StreamClosed(RunnerError):
    kind = ErrorKind.STREAM_CLOSED


class NonZeroExit(RunnerError):
    kind = ErrorKind.NON_ZERO_EXIT


class RemoteFailure(RunnerError):
    kind = ErrorKind.REMOTE_FAILURE


class ResultUnavailable(RunnerError):
    kind = ErrorKind.RESULT_UNAVAILABLE


class RunnerTimeout(RunnerError):
    kind = ErrorKind.TIMEOUT
