"""Command descriptor, execution status, and descriptor validation."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import IO, Final, NoReturn

from envexec.errors import CmdError, InvalidCmdError, Phase

MIB: Final[int] = 1024 * 1024

DEFAULT_TIME_LIMIT_SECONDS: Final[float] = 1.0
DEFAULT_MEMORY_LIMIT_BYTES: Final[int] = 256 * MIB
DEFAULT_PROC_LIMIT: Final[int] = 1
DEFAULT_CPU_RATE: Final[float] = 1.0
DEFAULT_FILE_MODE: Final[int] = 0o644


class ExitStatus(StrEnum):
    """How the command terminated."""

    NORMAL = "normal"
    SIGNALLED = "signalled"
    RUNTIME_ERROR = "runtime_error"


@dataclass(frozen=True, slots=True)
class Status:
    """Execution result reported once per run by a backend."""

    exit_status: ExitStatus = ExitStatus.NORMAL
    error: str | None = None
    time_seconds: float = 0.0
    memory_bytes: int = 0
    run_time_seconds: float = 0.0
    exit_code: int = 0

    @property
    def succeeded(self) -> bool:
        return self.exit_status is ExitStatus.NORMAL and self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "exit_status": self.exit_status.value,
            "error": self.error,
            "time_seconds": self.time_seconds,
            "memory_bytes": self.memory_bytes,
            "run_time_seconds": self.run_time_seconds,
            "exit_code": self.exit_code,
        }


@dataclass(frozen=True, slots=True)
class File:
    """A unit of transfer across the environment boundary.

    ``name`` is the logical (host-side) name, ``path`` the environment-relative
    location and ``mode`` the permission bits applied at the destination.
    """

    name: str
    path: str
    mode: int = DEFAULT_FILE_MODE


@dataclass(slots=True)
class Cmd:
    """What to run and under which limits.

    A limit of ``0`` means unlimited to the backends. The copy tables are read-only
    once orchestration starts.
    """

    args: list[str]
    env: list[str] = field(default_factory=list)
    files: dict[int, IO[bytes]] = field(default_factory=dict)
    tty: bool = False
    time_limit_seconds: float = DEFAULT_TIME_LIMIT_SECONDS
    memory_limit_bytes: int = DEFAULT_MEMORY_LIMIT_BYTES
    proc_limit: int = DEFAULT_PROC_LIMIT
    cpu_rate: float = DEFAULT_CPU_RATE
    copy_in: dict[str, str] = field(default_factory=dict)
    copy_out: list[str] = field(default_factory=list)


def new_cmd(args: list[str] | tuple[str, ...]) -> Cmd:
    """Return a descriptor for ``args`` with the default limits."""

    return Cmd(args=list(args))


@dataclass(frozen=True, slots=True)
class ExecveParam:
    """Concrete argv, environment and fd table handed to process creation."""

    args: tuple[str, ...]
    env: tuple[str, ...]
    files: Mapping[int, IO[bytes]]

    @classmethod
    def from_cmd(cls, cmd: Cmd) -> ExecveParam:
        return cls(args=tuple(cmd.args), env=tuple(cmd.env), files=dict(cmd.files))

    def env_mapping(self) -> dict[str, str]:
        """Split ``KEY=VALUE`` entries; entries without ``=`` map to an empty value."""

        parsed: dict[str, str] = {}
        for entry in self.env:
            key, _, value = entry.partition("=")
            if key:
                parsed[key] = value
        return parsed


def validate_cmd(cmd: Cmd) -> None:
    """Check descriptor well-formedness before any I/O.

    Raises :class:`CmdError` tagged ``validate`` on the first failed check.
    """

    if not cmd.args:
        _invalid("args", "no command specified")
    if not math.isfinite(cmd.time_limit_seconds) or cmd.time_limit_seconds < 0:
        _invalid("time_limit_seconds", "time limit must be a finite number >= 0")
    if cmd.memory_limit_bytes < 0:
        _invalid("memory_limit_bytes", "memory limit must not be negative")
    if cmd.proc_limit < 0:
        _invalid("proc_limit", "process limit must not be negative")
    if math.isnan(cmd.cpu_rate) or not 0.0 <= cmd.cpu_rate <= 1.0:
        _invalid("cpu_rate", "cpu rate must be within [0, 1]")


def _invalid(field_name: str, message: str) -> NoReturn:
    cause = InvalidCmdError(field_name, message)
    raise CmdError(Phase.VALIDATE, cause) from cause


__all__ = [
    "DEFAULT_CPU_RATE",
    "DEFAULT_FILE_MODE",
    "DEFAULT_MEMORY_LIMIT_BYTES",
    "DEFAULT_PROC_LIMIT",
    "DEFAULT_TIME_LIMIT_SECONDS",
    "MIB",
    "Cmd",
    "ExecveParam",
    "ExitStatus",
    "File",
    "Status",
    "new_cmd",
    "validate_cmd",
]
