"""Local-filesystem file sources and sinks."""

from __future__ import annotations

import os
from pathlib import Path
from typing import IO, TYPE_CHECKING

from envexec.files import close_files, copy_file, ensure_file_path
from envexec.utils.fs import atomic_write_stream, resolve_within

if TYPE_CHECKING:
    from collections.abc import Sequence

    from envexec.context import Context


class LocalFileReader:
    """Open host files for staging; relative paths resolve under ``root`` when set."""

    def __init__(self, root: Path | str | None = None) -> None:
        self._root = None if root is None else Path(root)

    def open_file(self, ctx: Context, path: str) -> IO[bytes]:
        ctx.raise_if_done()
        target = Path(path) if self._root is None else resolve_within(self._root, path)
        return open(target, "rb")  # noqa: SIM115


class DirectoryCollector:
    """Open output files left in ``root`` by a finished command."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def collect_file(self, ctx: Context, path: str) -> IO[bytes]:
        ctx.raise_if_done()
        return open(resolve_within(self._root, path), "rb")  # noqa: SIM115

    def collect_files(self, ctx: Context, paths: Sequence[str]) -> dict[str, IO[bytes]]:
        collected: dict[str, IO[bytes]] = {}
        try:
            for path in paths:
                collected[path] = self.collect_file(ctx, path)
        except BaseException:
            close_files(collected)
            raise
        return collected


class DirectoryWriter:
    """Write collected outputs under ``root``; each file is replaced atomically."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def write_file(self, ctx: Context, path: str, src: IO[bytes]) -> None:
        target = resolve_within(self._root, path)
        ensure_file_path(target)
        atomic_write_stream(target, lambda dst: copy_file(dst, src, ctx=ctx))

    def create_file(self, ctx: Context, path: str, mode: int) -> IO[bytes]:
        ctx.raise_if_done()
        target = resolve_within(self._root, path)
        ensure_file_path(target)
        return open(target, "wb", opener=lambda name, flags: os.open(name, flags, mode))  # noqa: SIM115


__all__ = ["DirectoryCollector", "DirectoryWriter", "LocalFileReader"]
