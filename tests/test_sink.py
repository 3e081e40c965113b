from __future__ import annotations

import io
from contextlib import nullcontext

import pytest

from scpwire.channel import Channel
from scpwire.errors import DirectiveParseError, LocalFileError, ProtocolViolation, RemoteFailure, TransportError
from scpwire.sink import ScpSink


def make_sink(remote: bytes, **kwargs):
    out = io.BytesIO()
    return ScpSink(Channel(io.BytesIO(remote), out), **kwargs), out


class Targets:
    def __init__(self):
        self.files = {}
        self.dirs = []

    def open(self, path, infos):
        buf = io.BytesIO()
        self.files[path] = buf
        return nullcontext(buf)

    def mkdir(self, path, infos):
        self.dirs.append(path)


def test_download_merges_time_and_permission():
    sink, out = make_sink(b"T1610000000 0 1609999000 0\n" + b"C0644 5 a.txt\n" + b"hello" + b"\x00")
    dest = io.BytesIO()
    result = sink.receive_file(dest)
    assert dest.getvalue() == b"hello"
    assert result.infos.atime == 1610000000
    assert result.infos.mtime == 1609999000
    assert result.infos.filename == "a.txt"
    assert result.infos.size == 5
    assert out.getvalue() == b"\x00" * 4


def test_run_until_remote_closes():
    targets = Targets()
    sink, out = make_sink(b"C0644 3 a\nabc\x00" + b"C0600 0 b\n\x00")
    results = sink.run(targets.open)
    assert [r.path for r in results] == ["a", "b"]
    assert targets.files["a"].getvalue() == b"abc"
    assert targets.files["b"].getvalue() == b""
    assert all(r.ok for r in results)


def test_progress_counts_payload_only():
    calls = []
    sink, _ = make_sink(b"C0644 5 a\nhello\x00", block_size=4, progress=lambda total, n: calls.append((total, n)))
    sink.receive_file(io.BytesIO())
    assert calls == [(4, 4), (5, 1)]


def test_warning_skips_file_and_continues():
    targets = Targets()
    sink, _ = make_sink(b"\x01scp: nope: No such file or directory\n" + b"C0644 1 a\nx\x00")
    results = sink.run(targets.open)
    assert isinstance(results[0].error, RemoteFailure)
    assert not results[0].error.fatal
    assert results[1].ok


def test_fatal_error_ends_session():
    targets = Targets()
    sink, _ = make_sink(b"\x02scp: broken\n" + b"C0644 1 a\nx\x00")
    results = sink.run(targets.open)
    assert len(results) == 1
    assert results[0].error.fatal
    assert sink.closed
    with pytest.raises(ProtocolViolation):
        sink.run(targets.open)


def test_receive_file_raises_remote_failure():
    sink, _ = make_sink(b"\x01scp: x: not a regular file\n")
    with pytest.raises(RemoteFailure):
        sink.receive_file(io.BytesIO())


def test_malformed_directive_is_refused_with_warning():
    targets = Targets()
    sink, out = make_sink(b"C0644 abc a\n" + b"C0644 1 b\ny\x00")
    results = sink.run(targets.open)
    assert isinstance(results[0].error, DirectiveParseError)
    assert results[1].ok
    assert out.getvalue().startswith(b"\x00\x01scp: unable to parse permission directive")


def test_directory_needs_recursive():
    sink, _ = make_sink(b"D0755 0 d\n")
    with pytest.raises(ProtocolViolation):
        sink.run(Targets().open)


def test_end_directory_needs_recursive():
    sink, _ = make_sink(b"E\n")
    with pytest.raises(ProtocolViolation):
        sink.run(Targets().open)


def test_recursive_download():
    targets = Targets()
    sink, out = make_sink(b"D0755 0 d\n" + b"C0644 1 a\nx\x00" + b"E\n", recursive=True)
    results = sink.run(targets.open, targets.mkdir)
    assert targets.dirs == ["d"]
    assert [r.path for r in results] == ["d/a"]
    assert targets.files["d/a"].getvalue() == b"x"
    assert out.getvalue() == b"\x00" * 5


def test_unbalanced_end_directory():
    sink, _ = make_sink(b"E\n", recursive=True)
    with pytest.raises(ProtocolViolation):
        sink.run(Targets().open, Targets().mkdir)


def test_unsafe_filename_is_rejected():
    sink, out = make_sink(b"C0644 1 ../evil\nx\x00")
    with pytest.raises(ProtocolViolation):
        sink.run(Targets().open)
    assert b"\x02scp: unexpected filename: ../evil\n" in out.getvalue()


def test_truncated_payload():
    sink, _ = make_sink(b"C0644 10 a\nshort")
    with pytest.raises(TransportError):
        sink.receive_file(io.BytesIO())


def test_plain_ok_where_directive_expected():
    sink, _ = make_sink(b"\x00")
    with pytest.raises(ProtocolViolation):
        sink.run(Targets().open)


def test_nothing_sent():
    sink, _ = make_sink(b"")
    with pytest.raises(ProtocolViolation):
        sink.receive_file(io.BytesIO())


class _FullDisk:
    def write(self, data):
        raise OSError(28, "No space left on device")


def test_local_write_failure_keeps_stream_in_sync():
    targets = Targets()
    opened = iter([nullcontext(_FullDisk())])

    def open_target(path, infos):
        return next(opened, None) or targets.open(path, infos)

    sink, out = make_sink(b"C0644 3 a\nabc\x00" + b"C0644 1 b\nz\x00")
    results = sink.run(open_target)
    assert isinstance(results[0].error, LocalFileError)
    assert results[0].bytes_transferred == 3
    assert results[1].ok
    assert targets.files["b"].getvalue() == b"z"
    assert out.getvalue() == (
        b"\x00\x00" + b"\x01scp: a: No space left on device\n" + b"\x00\x00"
    )


def test_unopenable_target_refuses_file():
    targets = Targets()

    def open_target(path, infos):
        if path == "a":
            raise PermissionError(13, "Permission denied")
        return targets.open(path, infos)

    sink, out = make_sink(b"C0644 3 a\n" + b"C0644 1 b\nz\x00")
    results = sink.run(open_target)
    assert isinstance(results[0].error, LocalFileError)
    assert results[1].ok
    assert out.getvalue() == b"\x00\x01scp: a: Permission denied\n\x00\x00"


def test_error_after_payload_is_not_acknowledged():
    targets = Targets()
    sink, out = make_sink(b"C0644 1 a\nx\x02scp: disk full\n")
    results = sink.run(targets.open)
    assert len(results) == 1
    assert isinstance(results[0].error, RemoteFailure)
    assert results[0].error.fatal
    assert results[0].error.reason == "scp: disk full"
    assert targets.files["a"].getvalue() == b"x"
    assert sink.closed
    assert out.getvalue() == b"\x00\x00"
