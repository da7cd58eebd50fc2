"""
Command orchestration: validate -> prepare -> run -> collect.

Each phase is gated on the previous one and nothing is retried here; retry policy,
if any, belongs to the backend. Every failure surfaces as a
:class:`~envexec.errors.CmdError` naming the phase, so callers can tell "never
ran" from "ran but failed" from "ran but output collection failed".

Collected handles are released by a scope registered right after a successful
collect, which also covers anything done with them afterwards.

It integrates with:
- `Environment` for the isolated run
- `CopyInReader` / `FileCollector` / `FileWriter` for file transfer
- `structlog` for machine-parseable phase logs
"""

from __future__ import annotations

import os
import time
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any, NoReturn

import structlog

from envexec.cmd import validate_cmd
from envexec.errors import CmdError, Phase
from envexec.files import close_files, collect_files, prepare_files

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import IO

    from envexec.cmd import Cmd, Status
    from envexec.context import Context
    from envexec.interface import CopyInReader, Environment, FileCollector, FileWriter


def run_cmd(
    ctx: Context,
    env: Environment,
    cmd: Cmd,
    copy_in: CopyInReader,
    copy_out: FileCollector,
    *,
    root: str | os.PathLike[str] | None = None,
    writer: FileWriter | None = None,
    logger: Any | None = None,
) -> Status:
    """Run ``cmd`` in ``env`` and return its status.

    Parameters
    ----------
    root:
        Directory that relative copy-in destinations resolve under, usually the
        environment's work dir. ``None`` uses the paths as given.
    writer:
        Optional sink that receives each collected output before it is released.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    log = log.bind(command=cmd.args[0] if cmd.args else None)
    started = time.perf_counter()

    try:
        validate_cmd(cmd)
    except CmdError as exc:
        _log_failure(log, exc)
        raise

    try:
        prepare_files(ctx, cmd, copy_in, root=root)
    except Exception as exc:
        _raise_tagged(log, Phase.PREPARE, exc)
    log.debug("envexec_files_prepared", copy_in_count=len(cmd.copy_in))

    try:
        status = env.run(ctx, cmd)
    except Exception as exc:
        _raise_tagged(log, Phase.RUN, exc)
    log.debug("envexec_command_finished", **status.to_dict())

    if cmd.copy_out:
        _collect_outputs(ctx, cmd, copy_out, writer, log)

    log.info(
        "envexec_run_completed",
        exit_status=status.exit_status.value,
        exit_code=status.exit_code,
        elapsed_ms=round((time.perf_counter() - started) * 1000.0, 3),
    )
    return status


def _collect_outputs(
    ctx: Context,
    cmd: Cmd,
    collector: FileCollector,
    writer: FileWriter | None,
    log: Any,
) -> None:
    try:
        files = collect_files(ctx, cmd.copy_out, collector)
    except Exception as exc:
        _raise_tagged(log, Phase.COLLECT, exc)

    try:
        with ExitStack() as cleanup:
            cleanup.callback(close_files, files)
            if writer is not None:
                _hand_off(ctx, files, writer)
    except Exception as exc:
        _raise_tagged(log, Phase.COLLECT, exc)
    log.debug("envexec_files_collected", paths=sorted(files))


def _hand_off(ctx: Context, files: Mapping[str, IO[bytes]], writer: FileWriter) -> None:
    for path in sorted(files):
        ctx.raise_if_done()
        writer.write_file(ctx, path, files[path])


def _raise_tagged(log: Any, phase: Phase, cause: BaseException) -> NoReturn:
    error = CmdError(phase, cause)
    _log_failure(log, error)
    raise error from cause


def _log_failure(log: Any, error: CmdError) -> None:
    log.warning(
        "envexec_phase_failed",
        phase=error.phase.value,
        error_type=type(error.cause).__name__,
        error=str(error.cause),
    )


__all__ = ["run_cmd"]
