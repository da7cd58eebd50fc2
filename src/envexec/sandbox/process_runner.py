"""Process-backed :class:`~envexec.interface.Runner` shared by every local backend."""

from __future__ import annotations

import fcntl
import os
import resource
import signal
import subprocess
import sys
import time
from contextlib import suppress
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import IO, TYPE_CHECKING, Final

import psutil
import structlog

from envexec.cmd import ExitStatus, Status

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from envexec.context import Context

_DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 0.005

RLimit = tuple[int, int, int]

_log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LaunchSpec:
    """Everything needed to spawn one process; produced by a ``CmdBuilder``."""

    argv: tuple[str, ...]
    cwd: Path
    env: Mapping[str, str]
    files: Mapping[int, IO[bytes]] = field(default_factory=dict)
    rlimits: tuple[RLimit, ...] = ()
    new_session: bool = False
    wall_time_limit_seconds: float | None = None
    poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("argv must not be empty")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.wall_time_limit_seconds is not None and self.wall_time_limit_seconds <= 0:
            raise ValueError("wall_time_limit_seconds must be > 0")
        for slot in self.files:
            if slot < 0:
                raise ValueError(f"file slot must be >= 0, got {slot}")


class ProcessRunner:
    """Spawn a child, poll it while honouring the context, and report its status.

    The child is reaped with ``os.wait4`` so CPU time and peak RSS come from the
    kernel's rusage for exactly that process.
    """

    def __init__(self, spec: LaunchSpec) -> None:
        self._spec = spec
        self._process: subprocess.Popen[bytes] | None = None
        self._started_at = 0.0
        self._status: Status | None = None

    @property
    def spec(self) -> LaunchSpec:
        return self._spec

    @property
    def pid(self) -> int | None:
        return None if self._process is None else self._process.pid

    def start(self, ctx: Context) -> None:
        if self._process is not None:
            raise RuntimeError("runner already started")
        ctx.raise_if_done()

        spec = self._spec
        extra_slots = {slot: handle for slot, handle in spec.files.items() if slot > 2}
        needs_child_setup = bool(extra_slots or spec.rlimits)
        self._started_at = time.perf_counter()
        self._process = subprocess.Popen(
            list(spec.argv),
            cwd=spec.cwd,
            env=dict(spec.env),
            stdin=_std_handle(spec.files, 0),
            stdout=_std_handle(spec.files, 1),
            stderr=_std_handle(spec.files, 2),
            # Slots above 2 are dup2-ed in the child after fds would be closed.
            close_fds=not extra_slots,
            start_new_session=spec.new_session,
            preexec_fn=_child_setup(extra_slots, spec.rlimits) if needs_child_setup else None,
        )
        _log.debug("envexec_process_started", pid=self._process.pid, argv=list(spec.argv))

    def wait(self, ctx: Context) -> Status:
        process = self._require_started()
        if self._status is not None:
            return self._status

        wall_limit = self._spec.wall_time_limit_seconds
        wall_exceeded = False
        while True:
            reaped_pid, raw_status, usage = os.wait4(process.pid, os.WNOHANG)
            if reaped_pid != 0:
                break
            error = ctx.err()
            if error is not None:
                self.kill()
                self._reap(process)
                raise error
            if wall_limit is not None and time.perf_counter() - self._started_at >= wall_limit:
                self.kill()
                wall_exceeded = True
                reaped_pid, raw_status, usage = os.wait4(process.pid, 0)
                break
            ctx.wait(self._spec.poll_interval_seconds)

        run_time = time.perf_counter() - self._started_at
        process.returncode = os.waitstatus_to_exitcode(raw_status)
        status = _classify(raw_status, usage, run_time)
        if wall_exceeded:
            status = replace(
                status, exit_status=ExitStatus.SIGNALLED, error="wall clock limit exceeded"
            )
        self._status = status
        return status

    def kill(self) -> None:
        """Kill the child and its descendants; a no-op once the child is reaped."""

        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            children = psutil.Process(process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []
        for child in children:
            with suppress(psutil.NoSuchProcess):
                child.kill()
        with suppress(ProcessLookupError):
            os.kill(process.pid, signal.SIGKILL)
        _log.debug("envexec_process_killed", pid=process.pid, descendants=len(children))

    def _require_started(self) -> subprocess.Popen[bytes]:
        if self._process is None:
            raise RuntimeError("runner not started")
        return self._process

    def _reap(self, process: subprocess.Popen[bytes]) -> None:
        with suppress(ChildProcessError):
            _, raw_status, _ = os.wait4(process.pid, 0)
            process.returncode = os.waitstatus_to_exitcode(raw_status)


def _std_handle(files: Mapping[int, IO[bytes]], slot: int) -> IO[bytes] | int:
    handle = files.get(slot)
    return subprocess.DEVNULL if handle is None else handle


def _child_setup(
    extra_slots: Mapping[int, IO[bytes]], rlimits: tuple[RLimit, ...]
) -> Callable[[], None]:
    fd_moves = tuple((handle.fileno(), slot) for slot, handle in sorted(extra_slots.items()))
    floor = max((slot for _, slot in fd_moves), default=2) + 1

    def setup() -> None:
        # Every source moves above the highest slot first so crossed slots survive.
        staged = [
            (fcntl.fcntl(source_fd, fcntl.F_DUPFD_CLOEXEC, floor), slot)
            for source_fd, slot in fd_moves
        ]
        for staged_fd, slot in staged:
            os.dup2(staged_fd, slot)
        for which, soft, hard in rlimits:
            resource.setrlimit(which, (soft, hard))

    return setup


def _classify(raw_status: int, usage: resource.struct_rusage, run_time: float) -> Status:
    exit_code = os.waitstatus_to_exitcode(raw_status)
    cpu_time = usage.ru_utime + usage.ru_stime
    memory = _maxrss_bytes(usage.ru_maxrss)

    if os.WIFSIGNALED(raw_status):
        signum = os.WTERMSIG(raw_status)
        return Status(
            exit_status=ExitStatus.SIGNALLED,
            error=f"signal: {_signal_name(signum)}",
            time_seconds=cpu_time,
            memory_bytes=memory,
            run_time_seconds=run_time,
            exit_code=exit_code,
        )
    if exit_code != 0:
        return Status(
            exit_status=ExitStatus.RUNTIME_ERROR,
            error=f"exit status {exit_code}",
            time_seconds=cpu_time,
            memory_bytes=memory,
            run_time_seconds=run_time,
            exit_code=exit_code,
        )
    return Status(
        exit_status=ExitStatus.NORMAL,
        time_seconds=cpu_time,
        memory_bytes=memory,
        run_time_seconds=run_time,
        exit_code=0,
    )


def _maxrss_bytes(maxrss: int) -> int:
    # macOS reports bytes, Linux and the BSDs report KiB.
    if sys.platform == "darwin":
        return int(maxrss)
    return int(maxrss) * 1024


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


__all__ = ["LaunchSpec", "ProcessRunner", "RLimit"]
