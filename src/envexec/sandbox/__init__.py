"""Local execution backends: a direct-process variant and a sandboxed variant."""

from envexec.sandbox.builders import (
    ProcessCmdBuilder,
    SandboxBackend,
    SandboxCmdBuilder,
    coerce_backend,
    sandbox_rlimits,
    wall_time_limit,
)
from envexec.sandbox.environment import RunnerEnvironment, create_environment
from envexec.sandbox.process_runner import LaunchSpec, ProcessRunner

__all__ = [
    "LaunchSpec",
    "ProcessCmdBuilder",
    "ProcessRunner",
    "RunnerEnvironment",
    "SandboxBackend",
    "SandboxCmdBuilder",
    "coerce_backend",
    "create_environment",
    "sandbox_rlimits",
    "wall_time_limit",
]
