"""Error taxonomy for command orchestration.

Every error that leaves :func:`envexec.run.run_cmd` is a :class:`CmdError` whose
``phase`` names the stage that failed. The original exception is always kept as
``cause`` (and as ``__cause__``), never replaced by a generic message.
"""

from __future__ import annotations

from enum import StrEnum


class Phase(StrEnum):
    """Orchestration stage that produced an error."""

    VALIDATE = "validate"
    PREPARE = "prepare"
    RUN = "run"
    COLLECT = "collect"


class FileOp(StrEnum):
    """File operation that failed while staging a copy-in entry."""

    OPEN = "open"
    MKDIR = "mkdir"
    CREATE = "create"
    COPY = "copy"


class EnvExecError(RuntimeError):
    """Base error for envexec failures."""


class InvalidCmdError(EnvExecError, ValueError):
    """Raised when a command descriptor is malformed."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class CmdError(EnvExecError):
    """Phase-tagged wrapper around the cause of an orchestration failure."""

    def __init__(self, phase: Phase | str, cause: BaseException) -> None:
        self.phase = Phase(phase)
        self.cause = cause
        super().__init__(f"{self.phase.value}: {cause}")


class FileError(EnvExecError):
    """A file operation failed on ``path``."""

    def __init__(self, op: FileOp | str, path: str, cause: BaseException) -> None:
        self.op = FileOp(op)
        self.path = path
        self.cause = cause
        super().__init__(f"{self.op.value} {path}: {cause}")


class ContextError(EnvExecError):
    """The cancellation context is done."""


class ContextCancelledError(ContextError):
    """The context was cancelled explicitly."""

    def __init__(self, message: str = "context cancelled") -> None:
        super().__init__(message)


class DeadlineExceededError(ContextError, TimeoutError):
    """The context deadline elapsed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class EnvironmentClosedError(EnvExecError):
    """An operation was attempted on a released environment."""


__all__ = [
    "CmdError",
    "ContextCancelledError",
    "ContextError",
    "DeadlineExceededError",
    "EnvExecError",
    "EnvironmentClosedError",
    "FileError",
    "FileOp",
    "InvalidCmdError",
    "Phase",
]
