"""Unit tests for copy-in staging and copy-out collection."""

from __future__ import annotations

import io
from pathlib import Path
from typing import IO

import pytest

from envexec.cmd import new_cmd
from envexec.context import Context
from envexec.errors import ContextCancelledError, FileError, FileOp
from envexec.files import close_files, collect_files, copy_file, prepare_files


class _TrackingReader:
    """CopyInReader serving in-memory sources and remembering every handle it gave out."""

    def __init__(self, sources: dict[str, bytes]) -> None:
        self._sources = sources
        self.opened: list[IO[bytes]] = []
        self.calls: list[str] = []

    def open_file(self, ctx: Context, path: str) -> IO[bytes]:
        self.calls.append(path)
        if path not in self._sources:
            raise FileNotFoundError(path)
        handle = io.BytesIO(self._sources[path])
        self.opened.append(handle)
        return handle


class _BrokenSource(io.BytesIO):
    def read(self, size: int | None = -1) -> bytes:
        raise OSError("device unplugged")


class _BrokenReader(_TrackingReader):
    def open_file(self, ctx: Context, path: str) -> IO[bytes]:
        self.calls.append(path)
        handle = _BrokenSource()
        self.opened.append(handle)
        return handle


class _RecordingCollector:
    def __init__(
        self, outputs: dict[str, bytes] | None = None, error: Exception | None = None
    ) -> None:
        self._outputs = outputs or {}
        self._error = error
        self.calls: list[list[str]] = []

    def collect_file(self, ctx: Context, path: str) -> IO[bytes]:
        return io.BytesIO(self._outputs[path])

    def collect_files(self, ctx: Context, paths: list[str]) -> dict[str, IO[bytes]]:
        self.calls.append(list(paths))
        if self._error is not None:
            raise self._error
        return {path: self.collect_file(ctx, path) for path in paths}


@pytest.mark.unit
def test_prepare_files_materializes_entries_and_releases_handles(tmp_path: Path) -> None:
    reader = _TrackingReader({"a.txt": b"alpha", "b.txt": b"beta" * 50_000})
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"input/a.txt": "a.txt", "deep/nested/b.txt": "b.txt"}

    prepare_files(Context.background(), cmd, reader, root=tmp_path)

    assert (tmp_path / "input" / "a.txt").read_bytes() == b"alpha"
    assert (tmp_path / "deep" / "nested" / "b.txt").read_bytes() == b"beta" * 50_000
    assert reader.opened and all(handle.closed for handle in reader.opened)


@pytest.mark.unit
def test_prepare_files_without_root_uses_paths_as_given(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"input.txt": "src"}

    prepare_files(Context.background(), cmd, _TrackingReader({"src": b"hello"}))

    assert (tmp_path / "input.txt").read_bytes() == b"hello"


@pytest.mark.unit
def test_prepare_files_overwrites_previous_content(tmp_path: Path) -> None:
    (tmp_path / "out.txt").write_bytes(b"a much longer previous payload")
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"out.txt": "src"}
    reader = _TrackingReader({"src": b"short"})

    prepare_files(Context.background(), cmd, reader, root=tmp_path)
    prepare_files(Context.background(), cmd, reader, root=tmp_path)

    assert (tmp_path / "out.txt").read_bytes() == b"short"


@pytest.mark.unit
def test_open_failure_reports_source_path_and_creates_nothing(tmp_path: Path) -> None:
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"dst.txt": "missing.txt"}

    with pytest.raises(FileError) as excinfo:
        prepare_files(Context.background(), cmd, _TrackingReader({}), root=tmp_path)

    assert excinfo.value.op is FileOp.OPEN
    assert excinfo.value.path == "missing.txt"
    assert isinstance(excinfo.value.cause, FileNotFoundError)
    assert not (tmp_path / "dst.txt").exists()


@pytest.mark.unit
def test_mkdir_failure_when_parent_is_a_file(tmp_path: Path) -> None:
    (tmp_path / "blocker").write_bytes(b"")
    reader = _TrackingReader({"src": b"x"})
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"blocker/child.txt": "src"}

    with pytest.raises(FileError) as excinfo:
        prepare_files(Context.background(), cmd, reader, root=tmp_path)

    assert excinfo.value.op is FileOp.MKDIR
    assert excinfo.value.path == "blocker/child.txt"
    assert all(handle.closed for handle in reader.opened)


@pytest.mark.unit
def test_destination_escaping_root_is_a_mkdir_failure(tmp_path: Path) -> None:
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"../outside.txt": "src"}

    with pytest.raises(FileError) as excinfo:
        prepare_files(Context.background(), cmd, _TrackingReader({"src": b"x"}), root=tmp_path)

    assert excinfo.value.op is FileOp.MKDIR
    assert isinstance(excinfo.value.cause, ValueError)
    assert not (tmp_path.parent / "outside.txt").exists()


@pytest.mark.unit
def test_create_failure_when_destination_is_a_directory(tmp_path: Path) -> None:
    (tmp_path / "taken").mkdir()
    reader = _TrackingReader({"src": b"x"})
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"taken": "src"}

    with pytest.raises(FileError) as excinfo:
        prepare_files(Context.background(), cmd, reader, root=tmp_path)

    assert excinfo.value.op is FileOp.CREATE
    assert isinstance(excinfo.value.cause, OSError)
    assert all(handle.closed for handle in reader.opened)


@pytest.mark.unit
def test_copy_failure_closes_both_handles(tmp_path: Path) -> None:
    reader = _BrokenReader({})
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"dst.txt": "src"}

    with pytest.raises(FileError) as excinfo:
        prepare_files(Context.background(), cmd, reader, root=tmp_path)

    assert excinfo.value.op is FileOp.COPY
    assert excinfo.value.path == "dst.txt"
    assert "device unplugged" in str(excinfo.value)
    assert reader.opened[0].closed


@pytest.mark.unit
def test_earlier_entries_stay_materialized_after_a_failure(tmp_path: Path) -> None:
    reader = _TrackingReader({"first": b"1"})
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"one.txt": "first", "two.txt": "second"}

    with pytest.raises(FileError):
        prepare_files(Context.background(), cmd, reader, root=tmp_path)

    assert (tmp_path / "one.txt").read_bytes() == b"1"
    assert not (tmp_path / "two.txt").exists()


@pytest.mark.unit
def test_cancelled_context_stops_before_any_open(tmp_path: Path) -> None:
    ctx = Context.background().with_cancel()
    ctx.cancel()
    reader = _TrackingReader({"src": b"x"})
    cmd = new_cmd(["/bin/true"])
    cmd.copy_in = {"dst.txt": "src"}

    with pytest.raises(ContextCancelledError):
        prepare_files(ctx, cmd, reader, root=tmp_path)

    assert reader.calls == []


@pytest.mark.unit
def test_copy_file_returns_byte_count_and_honours_context(tmp_path: Path) -> None:
    payload = b"z" * 200_000
    with (tmp_path / "dst").open("wb") as dst:
        assert copy_file(dst, io.BytesIO(payload), chunk_size=4096) == len(payload)
    assert (tmp_path / "dst").read_bytes() == payload

    ctx = Context.background().with_cancel()
    ctx.cancel()
    with (tmp_path / "other").open("wb") as dst, pytest.raises(ContextCancelledError):
        copy_file(dst, io.BytesIO(payload), ctx=ctx)


@pytest.mark.unit
def test_collect_files_with_empty_list_never_touches_collector() -> None:
    collector = _RecordingCollector(error=AssertionError("must not be called"))

    assert collect_files(Context.background(), [], collector) == {}
    assert collector.calls == []


@pytest.mark.unit
def test_collect_files_returns_handles_keyed_by_path() -> None:
    collector = _RecordingCollector({"out.txt": b"done", "err.txt": b""})

    collected = collect_files(Context.background(), ["out.txt", "err.txt"], collector)

    assert sorted(collected) == ["err.txt", "out.txt"]
    assert collected["out.txt"].read() == b"done"
    assert collector.calls == [["out.txt", "err.txt"]]


@pytest.mark.unit
def test_collect_files_propagates_collector_errors_unchanged() -> None:
    error = FileNotFoundError("out.txt")

    with pytest.raises(FileNotFoundError) as excinfo:
        collect_files(Context.background(), ["out.txt"], _RecordingCollector(error=error))

    assert excinfo.value is error


class _FailingClose(io.BytesIO):
    def close(self) -> None:
        already_closed = self.closed
        super().close()
        if not already_closed:
            raise OSError("close failed")


@pytest.mark.unit
def test_close_files_closes_everything_and_reraises_first_error() -> None:
    healthy = io.BytesIO(b"a")
    failing = _FailingClose(b"b")
    later = io.BytesIO(b"c")

    with pytest.raises(OSError, match="close failed"):
        close_files({"a": healthy, "b": failing, "c": later, "d": None})

    assert healthy.closed
    assert failing.closed
    assert later.closed
