"""Staging of copy-in files and collection of copy-out files.

Staging has no rollback across entries: when entry N fails, entries before it
stay materialized at their destinations.
"""

from __future__ import annotations

import os
from contextlib import ExitStack
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, Final

from envexec.errors import FileError, FileOp
from envexec.utils.fs import resolve_within

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from envexec.cmd import Cmd
    from envexec.context import Context
    from envexec.interface import CopyInReader, FileCollector

COPY_CHUNK_BYTES: Final[int] = 64 * 1024
_DIR_MODE: Final[int] = 0o755
_FILE_MODE: Final[int] = 0o644


def copy_file(
    dst: IO[bytes],
    src: IO[bytes],
    *,
    ctx: Context | None = None,
    chunk_size: int = COPY_CHUNK_BYTES,
) -> int:
    """Stream ``src`` into ``dst``, then flush and fsync ``dst``.

    ``ctx`` is polled between chunks. Returns the number of bytes copied.
    """

    copied = 0
    while True:
        if ctx is not None:
            ctx.raise_if_done()
        chunk = src.read(chunk_size)
        if not chunk:
            break
        dst.write(chunk)
        copied += len(chunk)
    dst.flush()
    os.fsync(dst.fileno())
    return copied


def ensure_file_path(path: str | os.PathLike[str]) -> None:
    """Create the parent directories of ``path``."""

    Path(path).parent.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)


def close_files(files: Mapping[Any, IO[bytes] | None]) -> None:
    """Close every non-``None`` handle; the first close error is re-raised after all tried."""

    first_error: OSError | None = None
    for handle in files.values():
        if handle is None:
            continue
        try:
            handle.close()
        except OSError as exc:
            if first_error is None:
                first_error = exc
    if first_error is not None:
        raise first_error


def prepare_files(
    ctx: Context,
    cmd: Cmd,
    copy_in: CopyInReader,
    *,
    root: str | os.PathLike[str] | None = None,
) -> None:
    """Materialize every ``cmd.copy_in`` entry at its destination.

    Each entry runs open -> mkdir -> create -> copy and releases both handles
    before the next entry starts. Raises :class:`FileError` on the first failed
    step, or the context error when ``ctx`` is done between entries.
    """

    for dst, src in cmd.copy_in.items():
        ctx.raise_if_done()
        _stage_one(ctx, dst, src, copy_in, root)


def _stage_one(
    ctx: Context,
    dst: str,
    src: str,
    copy_in: CopyInReader,
    root: str | os.PathLike[str] | None,
) -> None:
    with ExitStack() as stack:
        try:
            src_file = copy_in.open_file(ctx, src)
        except Exception as exc:
            raise FileError(FileOp.OPEN, src, exc) from exc
        stack.callback(src_file.close)

        try:
            target = Path(dst) if root is None else resolve_within(root, dst)
            ensure_file_path(target)
        except (OSError, ValueError) as exc:
            raise FileError(FileOp.MKDIR, dst, exc) from exc

        try:
            dst_file = open(target, "wb", opener=_create_opener)  # noqa: SIM115
        except OSError as exc:
            raise FileError(FileOp.CREATE, dst, exc) from exc
        stack.callback(dst_file.close)

        try:
            copy_file(dst_file, src_file, ctx=ctx)
        except Exception as exc:
            raise FileError(FileOp.COPY, dst, exc) from exc


def _create_opener(path: str, flags: int) -> int:
    return os.open(path, flags | os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)


def collect_files(
    ctx: Context,
    copy_out: Sequence[str],
    collector: FileCollector,
) -> dict[str, IO[bytes]]:
    """Gather ``copy_out`` through ``collector``.

    An empty list is a no-op that never touches the collector. Collector errors
    propagate unchanged.
    """

    if not copy_out:
        return {}
    ctx.raise_if_done()
    return collector.collect_files(ctx, list(copy_out))


__all__ = [
    "COPY_CHUNK_BYTES",
    "close_files",
    "collect_files",
    "copy_file",
    "ensure_file_path",
    "prepare_files",
]
