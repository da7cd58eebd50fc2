"""Unit tests for the work-dir backed environment and its factory."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from envexec.cmd import ExitStatus, File, Status, new_cmd
from envexec.context import Context
from envexec.errors import DeadlineExceededError, EnvironmentClosedError
from envexec.interface import Environment
from envexec.sandbox.builders import ProcessCmdBuilder, SandboxCmdBuilder
from envexec.sandbox.environment import RunnerEnvironment, create_environment


class _ScriptedRunner:
    def __init__(self, error: BaseException | None = None) -> None:
        self._error = error
        self.events: list[str] = []

    def start(self, ctx: Context) -> None:
        self.events.append("start")

    def wait(self, ctx: Context) -> Status:
        self.events.append("wait")
        if self._error is not None:
            raise self._error
        return Status(exit_status=ExitStatus.NORMAL)

    def kill(self) -> None:
        self.events.append("kill")


class _ScriptedBuilder:
    def __init__(self, runner: _ScriptedRunner) -> None:
        self.runner = runner

    def build(self, cmd: object) -> _ScriptedRunner:
        return self.runner


def test_run_starts_and_waits_on_built_runner(tmp_path: Path) -> None:
    runner = _ScriptedRunner()
    env = RunnerEnvironment(_ScriptedBuilder(runner), tmp_path, owns_work_dir=False)

    status = env.run(Context.background(), new_cmd(["/bin/true"]))

    assert status.exit_status is ExitStatus.NORMAL
    assert runner.events == ["start", "wait"]
    assert isinstance(env, Environment)


def test_run_kills_runner_when_wait_fails(tmp_path: Path) -> None:
    runner = _ScriptedRunner(error=DeadlineExceededError())
    env = RunnerEnvironment(_ScriptedBuilder(runner), tmp_path, owns_work_dir=False)

    with pytest.raises(DeadlineExceededError):
        env.run(Context.background(), new_cmd(["/bin/true"]))

    assert runner.events == ["start", "wait", "kill"]


def test_copy_in_and_copy_out_move_files_with_mode(tmp_path: Path) -> None:
    host_in = tmp_path / "host" / "script.sh"
    host_in.parent.mkdir()
    host_in.write_bytes(b"#!/bin/sh\necho hi\n")
    work = tmp_path / "work"
    work.mkdir()
    env = RunnerEnvironment(_ScriptedBuilder(_ScriptedRunner()), work, owns_work_dir=False)
    ctx = Context.background()

    env.copy_in(ctx, File(name=str(host_in), path="bin/script.sh", mode=0o755))
    staged = work / "bin" / "script.sh"
    assert staged.read_bytes() == host_in.read_bytes()
    assert stat.S_IMODE(staged.stat().st_mode) == 0o755

    host_out = tmp_path / "results" / "copy.sh"
    env.copy_out(ctx, File(name=str(host_out), path="bin/script.sh", mode=0o600))
    assert host_out.read_bytes() == host_in.read_bytes()
    assert stat.S_IMODE(host_out.stat().st_mode) == 0o600


def test_copy_in_refuses_paths_outside_work_dir(tmp_path: Path) -> None:
    source = tmp_path / "src.txt"
    source.write_bytes(b"x")
    work = tmp_path / "work"
    work.mkdir()
    env = RunnerEnvironment(_ScriptedBuilder(_ScriptedRunner()), work, owns_work_dir=False)

    with pytest.raises(ValueError):
        env.copy_in(Context.background(), File(name=str(source), path="../escape.txt"))


def test_close_is_idempotent_and_blocks_further_use(tmp_path: Path) -> None:
    env = RunnerEnvironment(_ScriptedBuilder(_ScriptedRunner()), tmp_path, owns_work_dir=False)

    env.close()
    env.close()

    assert env.closed
    assert tmp_path.is_dir()
    with pytest.raises(EnvironmentClosedError):
        env.run(Context.background(), new_cmd(["/bin/true"]))
    with pytest.raises(EnvironmentClosedError):
        env.copy_out(Context.background(), File(name="x", path="y"))


def test_create_environment_defaults_to_owned_process_backend() -> None:
    with create_environment() as env:
        work_dir = env.work_dir
        assert work_dir.is_dir()
        assert isinstance(env._builder, ProcessCmdBuilder)

    assert env.closed
    assert not work_dir.exists()


def test_create_environment_with_explicit_work_dir_keeps_it(tmp_path: Path) -> None:
    work = tmp_path / "given"
    config = {"backend": {"kind": "sandbox", "launcher": [], "enforce_proc_limit": True}}

    env = create_environment(config, work_dir=work)
    env.close()

    assert isinstance(env._builder, SandboxCmdBuilder)
    assert work.is_dir()


def test_create_environment_reads_work_dir_from_config(tmp_path: Path) -> None:
    work = tmp_path / "configured"

    with create_environment({"backend": {"kind": "process", "work_dir": str(work)}}) as env:
        assert env.work_dir == work.resolve()

    assert work.is_dir()


def test_create_environment_rejects_unknown_backend() -> None:
    with pytest.raises(ValueError, match="unsupported backend"):
        create_environment({"backend": {"kind": "vm"}})
