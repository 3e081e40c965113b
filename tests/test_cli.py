from __future__ import annotations

import os

from scpwire.cli import _local_file, build_parser, infos_from_stat, local_entries
from scpwire.directive import FileInfos


def test_parser_push():
    args = build_parser().parse_args(["push", "-r", "--timeout", "5", "host", "a", "b", "/dest"])
    assert args.src == ["a", "b"]
    assert args.dest == "/dest"
    assert args.recursive
    assert args.timeout == 5.0


def test_parser_pull_defaults():
    args = build_parser().parse_args(["pull", "host", "remote.txt", "."])
    assert not args.preserve
    assert args.ssh == "ssh"


def test_infos_from_stat(tmp_path):
    p = tmp_path / "a.txt"
    p.write_bytes(b"hello")
    os.chmod(p, 0o640)
    os.utime(p, (1610000000, 1609999000))
    infos = infos_from_stat("a.txt", os.stat(p))
    assert infos.permissions == "0640"
    assert infos.size == 5
    assert (infos.atime, infos.mtime) == (1610000000, 1609999000)


def test_local_entries_skip_directories_without_recursive(tmp_path):
    (tmp_path / "d").mkdir()
    (tmp_path / "f").write_bytes(b"x")
    entries = list(local_entries([str(tmp_path / "d"), str(tmp_path / "f"), str(tmp_path / "missing")], False))
    assert [e.infos.filename for e in entries] == ["f"]


def test_local_entries_recursive(tmp_path):
    d = tmp_path / "d"
    d.mkdir()
    (d / "b").write_bytes(b"bb")
    (d / "a").write_bytes(b"a")
    [entry] = list(local_entries([str(d)], True))
    assert entry.is_directory
    children = list(entry.children)
    assert [c.infos.filename for c in children] == ["a", "b"]
    with children[1].opener() as f:
        assert f.read() == b"bb"


def test_local_file_preserves_times_and_mode(tmp_path):
    target = str(tmp_path / "out")
    infos = FileInfos(filename="out", permissions="0600", size=1, atime=1610000000, mtime=1609999000)
    with _local_file(target, infos, True) as f:
        f.write(b"x")
    st = os.stat(target)
    assert int(st.st_mtime) == 1609999000
    assert st.st_mode & 0o777 == 0o600
