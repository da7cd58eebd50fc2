"""Utility exports for filesystem helpers."""

from envexec.utils.fs import atomic_write_stream, create_work_dir, resolve_within

__all__ = [
    "atomic_write_stream",
    "create_work_dir",
    "resolve_within",
]
