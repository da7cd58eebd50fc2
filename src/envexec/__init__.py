"""
envexec: run one external command inside a resource-constrained environment.

The pipeline validates a :class:`Cmd`, stages its copy-in files, delegates the run
to an :class:`Environment`, and collects its copy-out files. Backends plug in
through the contracts in :mod:`envexec.interface`.

Importing the package has no side effects (no config loading, no logging setup).
"""

from envexec.cmd import Cmd, ExecveParam, ExitStatus, File, Status, new_cmd, validate_cmd
from envexec.context import Context
from envexec.errors import (
    CmdError,
    ContextCancelledError,
    ContextError,
    DeadlineExceededError,
    EnvExecError,
    EnvironmentClosedError,
    FileError,
    FileOp,
    InvalidCmdError,
    Phase,
)
from envexec.files import close_files, collect_files, copy_file, ensure_file_path, prepare_files
from envexec.interface import (
    CmdBuilder,
    CopyInReader,
    CopyOutWriter,
    Environment,
    FileCollector,
    FileWriter,
    Runner,
)
from envexec.run import run_cmd

__version__ = "0.1.0"

__all__ = [
    "Cmd",
    "CmdBuilder",
    "CmdError",
    "Context",
    "ContextCancelledError",
    "ContextError",
    "CopyInReader",
    "CopyOutWriter",
    "DeadlineExceededError",
    "EnvExecError",
    "Environment",
    "EnvironmentClosedError",
    "ExecveParam",
    "ExitStatus",
    "File",
    "FileCollector",
    "FileError",
    "FileOp",
    "FileWriter",
    "InvalidCmdError",
    "Phase",
    "Runner",
    "Status",
    "__version__",
    "close_files",
    "collect_files",
    "copy_file",
    "ensure_file_path",
    "new_cmd",
    "prepare_files",
    "run_cmd",
    "validate_cmd",
]
