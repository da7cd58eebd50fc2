"""Extension points between the orchestrator and its collaborators.

``Cmd`` only carries configuration, a :class:`Runner` owns live execution state
and a :class:`CmdBuilder` turns the former into the latter. Several backends
(plain process, sandbox, container) can therefore share one descriptor shape,
and a builder may allocate resources that its runner releases when done.
"""

from __future__ import annotations

from typing import IO, TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from envexec.cmd import Cmd, File, Status
    from envexec.context import Context


@runtime_checkable
class Environment(Protocol):
    """Isolated execution surface."""

    def run(self, ctx: Context, cmd: Cmd) -> Status:
        """Start ``cmd`` and block until it terminates or ``ctx`` is done."""
        ...

    def copy_in(self, ctx: Context, file: File) -> None:
        """Move one file into the environment."""
        ...

    def copy_out(self, ctx: Context, file: File) -> None:
        """Move one file out of the environment."""
        ...

    def close(self) -> None:
        """Release every environment-held resource, even if ``run`` never completed."""
        ...


@runtime_checkable
class Runner(Protocol):
    def start(self, ctx: Context) -> None: ...

    def wait(self, ctx: Context) -> Status: ...

    def kill(self) -> None: ...


@runtime_checkable
class CmdBuilder(Protocol):
    def build(self, cmd: Cmd) -> Runner: ...


@runtime_checkable
class CopyInReader(Protocol):
    """Source of files staged into the environment before execution."""

    def open_file(self, ctx: Context, path: str) -> IO[bytes]: ...


@runtime_checkable
class FileCollector(Protocol):
    """Sink that gathers output files after execution."""

    def collect_file(self, ctx: Context, path: str) -> IO[bytes]: ...

    def collect_files(self, ctx: Context, paths: Sequence[str]) -> dict[str, IO[bytes]]: ...


@runtime_checkable
class FileWriter(Protocol):
    def write_file(self, ctx: Context, path: str, src: IO[bytes]) -> None: ...


@runtime_checkable
class CopyOutWriter(Protocol):
    def create_file(self, ctx: Context, path: str, mode: int) -> IO[bytes]: ...


__all__ = [
    "CmdBuilder",
    "CopyInReader",
    "CopyOutWriter",
    "Environment",
    "FileCollector",
    "FileWriter",
    "Runner",
]
