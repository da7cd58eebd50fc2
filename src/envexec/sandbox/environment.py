"""Environment implementation over a command builder and a private work dir."""

from __future__ import annotations

import os
import shutil
import threading
from contextlib import ExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from envexec.errors import EnvironmentClosedError
from envexec.files import copy_file, ensure_file_path
from envexec.sandbox.builders import (
    ProcessCmdBuilder,
    SandboxBackend,
    SandboxCmdBuilder,
    coerce_backend,
)
from envexec.utils.fs import atomic_write_stream, create_work_dir, resolve_within

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from envexec.cmd import Cmd, File, Status
    from envexec.context import Context
    from envexec.interface import CmdBuilder

_log = structlog.get_logger(__name__)


class RunnerEnvironment:
    """Run commands through ``builder`` with ``work_dir`` as the environment root.

    ``copy_in`` and ``copy_out`` move a :class:`~envexec.cmd.File` between the
    host path ``file.name`` and ``work_dir / file.path``; paths escaping the work
    dir are refused. An owned work dir is removed by :meth:`close`.
    """

    def __init__(self, builder: CmdBuilder, work_dir: Path | str, *, owns_work_dir: bool) -> None:
        root = Path(work_dir).resolve(strict=True)
        if not root.is_dir():
            raise NotADirectoryError(f"{root!s} is not a directory")
        self._builder = builder
        self._work_dir = root
        self._owns_work_dir = owns_work_dir
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    @property
    def closed(self) -> bool:
        return self._closed

    def run(self, ctx: Context, cmd: Cmd) -> Status:
        self._require_open()
        runner = self._builder.build(cmd)
        runner.start(ctx)
        try:
            return runner.wait(ctx)
        except BaseException:
            runner.kill()
            raise

    def copy_in(self, ctx: Context, file: File) -> None:
        self._require_open()
        target = resolve_within(self._work_dir, file.path)
        ensure_file_path(target)
        with ExitStack() as stack:
            src = stack.enter_context(open(file.name, "rb"))  # noqa: SIM115
            dst = stack.enter_context(
                open(target, "wb", opener=lambda path, flags: os.open(path, flags, file.mode))
            )
            copy_file(dst, src, ctx=ctx)
        os.chmod(target, file.mode)

    def copy_out(self, ctx: Context, file: File) -> None:
        self._require_open()
        source = resolve_within(self._work_dir, file.path)
        destination = Path(file.name)
        ensure_file_path(destination)
        with open(source, "rb") as src:
            atomic_write_stream(
                destination, lambda dst: copy_file(dst, src, ctx=ctx), mode=file.mode
            )

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self._owns_work_dir:
            shutil.rmtree(self._work_dir)
        _log.debug(
            "envexec_environment_closed",
            work_dir=str(self._work_dir),
            removed=self._owns_work_dir,
        )

    def __enter__(self) -> RunnerEnvironment:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _require_open(self) -> None:
        if self._closed:
            raise EnvironmentClosedError("environment is closed")


def create_environment(
    config: Mapping[str, Any] | None = None,
    *,
    work_dir: Path | str | None = None,
) -> RunnerEnvironment:
    """Build an environment for the backend selected by ``config["backend"]["kind"]``.

    Without ``work_dir`` (argument or ``backend.work_dir``) a private temp dir is
    created and owned by the returned environment.
    """

    backend_cfg: Mapping[str, Any] = dict((config or {}).get("backend", {}))
    kind = coerce_backend(backend_cfg.get("kind", SandboxBackend.PROCESS.value))

    configured_dir = work_dir if work_dir is not None else backend_cfg.get("work_dir") or None
    if configured_dir is None:
        root = create_work_dir()
        owns = True
    else:
        root = Path(configured_dir)
        root.mkdir(parents=True, exist_ok=True)
        owns = False

    wall_time_factor = float(backend_cfg.get("wall_time_factor", 3.0))
    poll_interval = float(backend_cfg.get("poll_interval_seconds", 0.005))
    builder: CmdBuilder
    if kind is SandboxBackend.SANDBOX:
        builder = SandboxCmdBuilder(
            root,
            launcher=tuple(backend_cfg.get("launcher", ())),
            enforce_proc_limit=bool(backend_cfg.get("enforce_proc_limit", False)),
            wall_time_factor=wall_time_factor,
            poll_interval_seconds=poll_interval,
        )
    else:
        builder = ProcessCmdBuilder(
            root,
            inherit_host_env=bool(backend_cfg.get("inherit_host_env", False)),
            wall_time_factor=wall_time_factor,
            poll_interval_seconds=poll_interval,
        )

    _log.debug("envexec_environment_created", backend=kind.value, work_dir=str(root))
    return RunnerEnvironment(builder, root, owns_work_dir=owns)


__all__ = ["RunnerEnvironment", "create_environment"]
