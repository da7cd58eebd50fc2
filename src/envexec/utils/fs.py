"""
envexec: filesystem utilities

Purpose
- Path containment checks for environment-relative paths.
- Atomic replacement of output files.
- Private work directory creation.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write_stream",
    "create_work_dir",
    "resolve_within",
]


def resolve_within(root: PathLike, path: PathLike) -> Path:
    """Resolve ``path`` against ``root`` and refuse results outside ``root``."""

    base = Path(root).resolve(strict=False)
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = base / candidate
    resolved = candidate.resolve(strict=False)
    if not _is_relative_to(resolved, base):
        raise ValueError(f"path {os.fspath(path)!r} escapes root {base!s}")
    return resolved


def atomic_write_stream(
    path: PathLike,
    write: Callable[[IO[bytes]], None],
    *,
    mode: int = 0o644,
) -> None:
    """
    Atomically produce ``path`` from ``write``.

    The write strategy is:
    1. create temp file in the same directory,
    2. let ``write`` fill it, then flush + fsync,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            write(file_handle)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def create_work_dir(prefix: str = "envexec-", parent: PathLike | None = None) -> Path:
    """Create a private (``0o700``) work directory and return its resolved path."""

    if parent is not None:
        Path(parent).mkdir(parents=True, exist_ok=True)
    created = tempfile.mkdtemp(prefix=prefix, dir=None if parent is None else os.fspath(parent))
    return Path(created).resolve(strict=True)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
