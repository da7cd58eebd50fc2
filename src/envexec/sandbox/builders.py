"""Command builders for the local backends.

Both builders turn a :class:`~envexec.cmd.Cmd` into a
:class:`~envexec.sandbox.process_runner.ProcessRunner`; they differ only in the
launch policy they apply. The backend is chosen by configuration through
:class:`SandboxBackend`.
"""

from __future__ import annotations

import math
import os
import resource
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from envexec.cmd import ExecveParam
from envexec.sandbox.process_runner import LaunchSpec, ProcessRunner, RLimit

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from envexec.cmd import Cmd


class SandboxBackend(str, Enum):
    """Backend names accepted by :func:`envexec.sandbox.create_environment`."""

    PROCESS = "process"
    SANDBOX = "sandbox"


class ProcessCmdBuilder:
    """Direct-process backend: run ``args`` as a plain child of this process.

    The child sees ``PATH`` from the host (or the whole host environment with
    ``inherit_host_env``) overlaid with ``cmd.env``. No kernel limits are set; a
    wall-clock guard derived from the time limit stops runaway commands.
    """

    def __init__(
        self,
        work_dir: Path | str,
        *,
        inherit_host_env: bool = False,
        wall_time_factor: float = 3.0,
        poll_interval_seconds: float = 0.005,
    ) -> None:
        if wall_time_factor <= 0:
            raise ValueError("wall_time_factor must be > 0")
        self._work_dir = Path(work_dir)
        self._inherit_host_env = bool(inherit_host_env)
        self._wall_time_factor = float(wall_time_factor)
        self._poll_interval_seconds = float(poll_interval_seconds)

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    def build(self, cmd: Cmd) -> ProcessRunner:
        params = ExecveParam.from_cmd(cmd)
        return ProcessRunner(
            LaunchSpec(
                argv=params.args,
                cwd=self._work_dir,
                env=_build_environment(
                    params.env_mapping(), inherit_host_env=self._inherit_host_env
                ),
                files=params.files,
                new_session=cmd.tty,
                wall_time_limit_seconds=wall_time_limit(cmd, self._wall_time_factor),
                poll_interval_seconds=self._poll_interval_seconds,
            )
        )


class SandboxCmdBuilder:
    """Isolated backend: scrubbed environment, own session, kernel rlimits.

    ``launcher`` is prepended to ``args`` (for example a ``bwrap`` or ``nsjail``
    invocation) so namespace isolation can be delegated to an external tool.
    ``RLIMIT_NPROC`` counts every process of the user, so it is only applied
    when ``enforce_proc_limit`` is set.
    """

    def __init__(
        self,
        work_dir: Path | str,
        *,
        launcher: Sequence[str] = (),
        enforce_proc_limit: bool = False,
        wall_time_factor: float = 3.0,
        poll_interval_seconds: float = 0.005,
    ) -> None:
        if wall_time_factor <= 0:
            raise ValueError("wall_time_factor must be > 0")
        self._work_dir = Path(work_dir)
        self._launcher = tuple(launcher)
        self._enforce_proc_limit = bool(enforce_proc_limit)
        self._wall_time_factor = float(wall_time_factor)
        self._poll_interval_seconds = float(poll_interval_seconds)

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    def build(self, cmd: Cmd) -> ProcessRunner:
        params = ExecveParam.from_cmd(cmd)
        return ProcessRunner(
            LaunchSpec(
                argv=(*self._launcher, *params.args),
                cwd=self._work_dir,
                env=params.env_mapping(),
                files=params.files,
                rlimits=sandbox_rlimits(cmd, enforce_proc_limit=self._enforce_proc_limit),
                new_session=True,
                wall_time_limit_seconds=wall_time_limit(cmd, self._wall_time_factor),
                poll_interval_seconds=self._poll_interval_seconds,
            )
        )


def sandbox_rlimits(cmd: Cmd, *, enforce_proc_limit: bool = False) -> tuple[RLimit, ...]:
    """Translate descriptor limits into ``(resource, soft, hard)`` triples.

    ``0`` is unlimited, and so is a non-finite time limit on an unvalidated descriptor.
    """

    limits: list[RLimit] = []
    if math.isfinite(cmd.time_limit_seconds) and cmd.time_limit_seconds > 0:
        # SIGXCPU at the soft limit, SIGKILL one second later.
        soft = max(1, math.ceil(cmd.time_limit_seconds))
        limits.append((resource.RLIMIT_CPU, soft, soft + 1))
    if cmd.memory_limit_bytes > 0:
        limits.append((resource.RLIMIT_AS, cmd.memory_limit_bytes, cmd.memory_limit_bytes))
    if enforce_proc_limit and cmd.proc_limit > 0 and hasattr(resource, "RLIMIT_NPROC"):
        limits.append((resource.RLIMIT_NPROC, cmd.proc_limit, cmd.proc_limit))
    return tuple(limits)


def wall_time_limit(cmd: Cmd, factor: float) -> float | None:
    """Wall-clock guard for ``cmd``: CPU budget scaled by ``factor`` and the CPU rate."""

    if not math.isfinite(cmd.time_limit_seconds) or cmd.time_limit_seconds <= 0:
        return None
    rate = cmd.cpu_rate if cmd.cpu_rate > 0 else 1.0
    return cmd.time_limit_seconds * factor / rate


def coerce_backend(value: SandboxBackend | str) -> SandboxBackend:
    if isinstance(value, SandboxBackend):
        return value
    if not isinstance(value, str):
        raise ValueError("backend must be a string or SandboxBackend")
    normalized = value.strip().lower()
    try:
        return SandboxBackend(normalized)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in SandboxBackend)
        raise ValueError(f"unsupported backend {value!r}; expected one of: {allowed}") from exc


def _build_environment(env: Mapping[str, str], *, inherit_host_env: bool) -> dict[str, str]:
    if inherit_host_env:
        merged = dict(os.environ)
    else:
        merged = {}
        host_path = os.environ.get("PATH")
        if host_path:
            merged["PATH"] = host_path
    merged.update(env)
    return merged


__all__ = [
    "ProcessCmdBuilder",
    "SandboxBackend",
    "SandboxCmdBuilder",
    "coerce_backend",
    "sandbox_rlimits",
    "wall_time_limit",
]
