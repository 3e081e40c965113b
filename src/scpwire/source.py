from __future__ import annotations

import io
import logging
import posixpath
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable, ContextManager, Iterable, Iterator, Optional

from .channel import Channel
from .constants import DEFAULT_BLOCK_SIZE, DEFAULT_DIR_PERMISSIONS, END_OF_PAYLOAD
from .directive import FileInfos, end_directory_line
from .errors import LocalFileError, ProtocolViolation, RemoteFailure
from .progress import ProgressObserver, wrap_writer
from .response import decode_response, send_warning
from .sink import FileResult

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceEntry:
    """A file or directory to upload.

    Files carry an ``opener`` returning a context manager over a readable
    binary stream; directories carry ``children`` instead.
    """

    infos: FileInfos
    opener: Optional[Callable[[], ContextManager[BinaryIO]]] = None
    children: Optional[Iterable["SourceEntry"]] = None

    @property
    def is_directory(self) -> bool:
        return self.children is not None

    @classmethod
    def from_bytes(cls, name: str, data: bytes, permissions: str = "0644", atime: int = 0, mtime: int = 0) -> "SourceEntry":
        infos = FileInfos(filename=name, permissions=permissions, size=len(data), atime=atime, mtime=mtime)
        return cls(infos, opener=lambda: nullcontext(io.BytesIO(data)))

    @classmethod
    def directory(cls, name: str, children: Iterable["SourceEntry"], permissions: str = DEFAULT_DIR_PERMISSIONS) -> "SourceEntry":
        return cls(FileInfos(filename=name, permissions=permissions), children=children)


class ScpSource:
    """Sends files to a remote ``scp -t``.

    Each file is announced with a permission directive, followed by
    exactly ``size`` payload bytes and a zero terminator byte; the remote
    confirms the directive and the completed file separately.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        preserve: bool = False,
        block_size: int = DEFAULT_BLOCK_SIZE,
        progress: ProgressObserver | None = None,
        stop_on_error: bool = False,
    ):
        self.channel = channel
        self.preserve = preserve
        self.block_size = block_size
        self.progress = progress
        self.stop_on_error = stop_on_error
        self.closed = False
        self._dirs: list[str] = []

    def _path(self, name: str) -> str:
        return posixpath.join(*self._dirs, name)

    def _check_name(self, infos: FileInfos, path: str) -> None:
        # directive lines are newline-terminated
        if "\n" in infos.filename:
            raise LocalFileError(f"{path!r}: filename contains a newline", path)

    def _ensure_open(self) -> None:
        if self.closed:
            raise ProtocolViolation("session was terminated by a remote error")

    def _await(self, path: str) -> None:
        response = decode_response(self.channel)
        if response.is_failure:
            if response.is_error:
                self.closed = True
            raise RemoteFailure(response, path)
        if not response.is_plain_ok:
            raise ProtocolViolation(f"expected ok for {path or 'session start'}, got {response!r}")

    def _request(self, line: bytes, path: str) -> None:
        self._ensure_open()
        log.debug("sending %r", line)
        self.channel.write(line)
        self.channel.flush()
        self._await(path)

    def wait_ready(self) -> None:
        """Consume the Ok a remote ``scp -t`` sends when it starts."""
        self._await("")

    def send_file(self, infos: FileInfos, content: BinaryIO) -> FileResult:
        path = self._path(infos.filename)
        self._check_name(infos, path)
        result = FileResult(path, infos)
        log.info("sending %s; size=%d bytes", path, infos.size)

        if self.preserve and infos.has_times:
            self._request(infos.time_line(), path)
        self._request(infos.permission_line(), path)

        writer = wrap_writer(self.channel, self.progress)
        local_exc: LocalFileError | None = None
        remaining = infos.size
        while remaining > 0:
            n = min(self.block_size, remaining)
            data = b""
            if local_exc is None:
                try:
                    data = content.read(n)
                except OSError as e:
                    local_exc = LocalFileError(f"{path}: {e.strerror or e}", path)
                else:
                    if not data:
                        local_exc = LocalFileError(f"{path}: unexpected end of file", path)
            if local_exc is not None:
                # the remote still expects size bytes
                data = bytes(n)
            writer.write(data)
            remaining -= len(data)
            result.bytes_transferred += len(data)

        if local_exc is not None:
            send_warning(self.channel, str(local_exc))
        else:
            self.channel.write(END_OF_PAYLOAD)
        self.channel.flush()
        self._await(path)
        if local_exc is not None:
            raise local_exc

        result.finish()
        log.info("sent %s; throughput=%.2f Mbit/s", path, result.throughput_mbps)
        return result

    @contextmanager
    def directory(self, infos: FileInfos) -> Iterator[None]:
        """Bracket uploads with directory-enter and directory-exit directives."""
        if not infos.permissions:
            infos = replace(infos, permissions=DEFAULT_DIR_PERMISSIONS)
        path = self._path(infos.filename)
        self._check_name(infos, path)
        if self.preserve and infos.has_times:
            self._request(infos.time_line(), path)
        self._request(infos.directory_line(), path)
        log.info("entered directory %s", path)
        self._dirs.append(infos.filename)
        try:
            yield
        finally:
            self._dirs.pop()
        if not self.closed:
            self._request(end_directory_line(), path)
            log.info("left directory %s", path)

    def run(self, entries: Iterable[SourceEntry]) -> list[FileResult]:
        results: list[FileResult] = []
        self.wait_ready()
        self._send_entries(entries, results)
        return results

    def _send_entries(self, entries: Iterable[SourceEntry], results: list[FileResult]) -> bool:
        for entry in entries:
            path = self._path(entry.infos.filename)
            try:
                if entry.is_directory:
                    with self.directory(entry.infos):
                        if not self._send_entries(entry.children or (), results):
                            return False
                    continue
                if entry.opener is None:
                    raise ValueError(f"file entry {path} has no opener")
                try:
                    with entry.opener() as content:
                        results.append(self.send_file(entry.infos, content))
                except OSError as e:
                    raise LocalFileError(f"{path}: {e.strerror or e}", path) from e
            except (RemoteFailure, LocalFileError) as exc:
                log.info("%s failed: %s", path, exc)
                results.append(FileResult(path, entry.infos).finish(exc))
                if self.closed or self.stop_on_error:
                    return False
        return True

