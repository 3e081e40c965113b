from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import stat
import subprocess
import sys
from typing import BinaryIO, Iterable, Iterator

from .channel import Channel, TransferContext
from .command import remote_command_line, scp_command
from .constants import DEFAULT_BLOCK_SIZE, DEFAULT_TIMEOUT
from .directive import FileInfos
from .errors import ScpError
from .sink import FileResult, ScpSink
from .source import ScpSource, SourceEntry

log = logging.getLogger("scpwire")


def infos_from_stat(name: str, st: os.stat_result) -> FileInfos:
    return FileInfos(
        filename=name,
        permissions="%04o" % stat.S_IMODE(st.st_mode),
        size=st.st_size if stat.S_ISREG(st.st_mode) else 0,
        atime=int(st.st_atime),
        mtime=int(st.st_mtime),
    )


def local_entry(path: str, recursive: bool) -> SourceEntry | None:
    st = os.stat(path)
    infos = infos_from_stat(os.path.basename(os.path.normpath(path)), st)
    if stat.S_ISDIR(st.st_mode):
        if not recursive:
            log.warning("%s: is a directory (use -r)", path)
            return None
        return SourceEntry(infos, children=local_entries(
            (os.path.join(path, name) for name in sorted(os.listdir(path))), recursive))
    if not stat.S_ISREG(st.st_mode):
        log.warning("%s: not a regular file", path)
        return None
    return SourceEntry(infos, opener=lambda: open(path, "rb"))


def local_entries(paths: Iterable[str], recursive: bool) -> Iterator[SourceEntry]:
    for path in paths:
        try:
            entry = local_entry(path, recursive)
        except OSError as e:
            log.warning("%s: %s", path, e.strerror or e)
            continue
        if entry is not None:
            yield entry


@contextlib.contextmanager
def _local_file(target: str, infos: FileInfos, preserve: bool) -> Iterator[BinaryIO]:
    with open(target, "wb") as f:
        yield f
    if preserve:
        os.chmod(target, infos.mode)
        if infos.has_times:
            os.utime(target, (infos.atime, infos.mtime))


def _progress_printer(total: int, n: int) -> None:
    sys.stderr.write(f"\r{total} bytes")
    sys.stderr.flush()


def _spawn(args: argparse.Namespace, remote: list[str]) -> subprocess.Popen:
    argv = [args.ssh]
    if args.port:
        argv += ["-p", str(args.port)]
    argv += [args.host, remote_command_line(remote)]
    log.info("starting %s", " ".join(argv))
    return subprocess.Popen(argv, stdin=subprocess.PIPE, stdout=subprocess.PIPE, bufsize=0)


def _report(results: list[FileResult], as_json: bool) -> int:
    payload = [
        {
            "path": r.path,
            "bytes": r.bytes_transferred,
            "seconds": r.duration_s,
            "mbps": r.throughput_mbps,
            "error": None if r.ok else str(r.error),
        }
        for r in results
    ]
    for row in payload:
        print(json.dumps(row) if as_json else row)
    return 0 if all(r.ok for r in results) else 1


def _finish(proc: subprocess.Popen, failed: bool) -> None:
    if failed:
        proc.kill()
    elif proc.stdin is not None:
        proc.stdin.close()
    proc.wait()


def cmd_push(args: argparse.Namespace) -> int:
    remote = scp_command(
        args.dest,
        source=False,
        recursive=args.recursive,
        preserve=args.preserve,
        must_be_dir=len(args.src) > 1,
    )
    proc = _spawn(args, remote)
    failed = True
    try:
        channel = Channel.from_process(proc, TransferContext(timeout=args.timeout))
        source = ScpSource(
            channel,
            preserve=args.preserve,
            block_size=args.block_size,
            progress=_progress_printer if args.progress else None,
        )
        results = source.run(local_entries(args.src, args.recursive))
        failed = False
    finally:
        _finish(proc, failed)
    return _report(results, args.json)


def cmd_pull(args: argparse.Namespace) -> int:
    remote = scp_command(args.src, source=True, recursive=args.recursive, preserve=args.preserve)
    dest = args.dest
    dest_is_dir = os.path.isdir(dest)

    def local_path(path: str) -> str:
        if dest_is_dir:
            return os.path.join(dest, *path.split("/"))
        _, _, rest = path.partition("/")
        return os.path.join(dest, *rest.split("/")) if rest else dest

    def open_target(path: str, infos: FileInfos):
        return _local_file(local_path(path), infos, args.preserve)

    def make_directory(path: str, infos: FileInfos) -> None:
        os.makedirs(local_path(path), exist_ok=True)

    proc = _spawn(args, remote)
    failed = True
    try:
        channel = Channel.from_process(proc, TransferContext(timeout=args.timeout))
        sink = ScpSink(
            channel,
            recursive=args.recursive,
            block_size=args.block_size,
            progress=_progress_printer if args.progress else None,
        )
        results = sink.run(open_target, make_directory)
        failed = False
    finally:
        _finish(proc, failed)
    return _report(results, args.json)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="scpwire", description="Copy files with the SCP protocol over ssh.")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--ssh", default="ssh", help="ssh client to run")
        x.add_argument("--port", type=int, default=None)
        x.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="abort after this many seconds")
        x.add_argument("--block-size", type=int, default=DEFAULT_BLOCK_SIZE)
        x.add_argument("-r", "--recursive", action="store_true")
        x.add_argument("-p", "--preserve", action="store_true", help="preserve modes and times")
        x.add_argument("--progress", action="store_true")
        x.add_argument("--json", action="store_true")
        x.add_argument("host")

    push = sub.add_parser("push", help="send local files to the remote")
    add_common(push)
    push.add_argument("src", nargs="+")
    push.add_argument("dest")
    push.set_defaults(func=cmd_push)

    pull = sub.add_parser("pull", help="fetch remote files")
    add_common(pull)
    pull.add_argument("src")
    pull.add_argument("dest")
    pull.set_defaults(func=cmd_pull)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except ScpError as e:
        log.error("%s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
