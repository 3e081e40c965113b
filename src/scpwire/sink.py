from __future__ import annotations

import logging
import posixpath
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, ContextManager, Iterator, Optional

from .channel import Channel
from .constants import DEFAULT_BLOCK_SIZE
from .directive import FileInfos
from .errors import (
    ConnectionClosed,
    DirectiveParseError,
    LocalFileError,
    ProtocolViolation,
    RemoteFailure,
    ScpError,
    TransportError,
)
from .progress import ProgressObserver, wrap_reader
from .response import DirectiveKind, Response, decode_response, send_ack, send_error, send_warning

log = logging.getLogger(__name__)

OpenTarget = Callable[[str, FileInfos], ContextManager[BinaryIO]]
MakeDirectory = Callable[[str, FileInfos], None]


@dataclass(slots=True)
class FileResult:
    path: str
    infos: FileInfos = field(default_factory=FileInfos)
    bytes_transferred: int = 0
    error: Optional[ScpError] = None
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_transferred * 8 / 1_000_000) / self.duration_s

    def finish(self, error: Optional[ScpError] = None) -> "FileResult":
        if error is not None:
            self.error = error
        self.end_ts = time.monotonic()
        return self


class ScpSink:
    """Receives files from a remote ``scp -f``.

    The sink acknowledges each directive, copies exactly ``size`` payload
    bytes into the target opened for the file, and acknowledges the
    remote's end-of-file status. Time directives are merged into the file
    announced by the following permission directive.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        recursive: bool = False,
        block_size: int = DEFAULT_BLOCK_SIZE,
        progress: ProgressObserver | None = None,
        stop_on_error: bool = False,
    ):
        self.channel = channel
        self.recursive = recursive
        self.block_size = block_size
        self.progress = progress
        self.stop_on_error = stop_on_error
        self.closed = False
        self._dirs: list[str] = []

    def run(self, open_target: OpenTarget, make_directory: MakeDirectory | None = None) -> list[FileResult]:
        return list(self.iter_files(open_target, make_directory))

    def receive_file(self, dest: BinaryIO) -> FileResult:
        """Receive a single file into ``dest`` and raise if it failed."""
        for result in self.iter_files(lambda path, infos: nullcontext(dest)):
            if result.error is not None:
                raise result.error
            return result
        raise ProtocolViolation("remote closed the session without sending a file")

    def iter_files(self, open_target: OpenTarget, make_directory: MakeDirectory | None = None) -> Iterator[FileResult]:
        if self.recursive and make_directory is None:
            raise ValueError("recursive receive needs make_directory")
        if self.closed:
            raise ProtocolViolation("session was terminated by a remote error")

        send_ack(self.channel)
        pending = FileInfos()
        while True:
            try:
                response = decode_response(self.channel)
            except ConnectionClosed:
                log.debug("remote closed the session; %d directories still open", len(self._dirs))
                return

            if response.is_failure:
                failure = RemoteFailure(response, self._path(pending.filename))
                if failure.fatal:
                    self.closed = True
                yield FileResult(failure.path, pending).finish(failure)
                pending = FileInfos()
                if failure.fatal or self.stop_on_error:
                    return
                continue

            try:
                if response.is_time:
                    pending = pending.update(response.file_time())
                    send_ack(self.channel)
                    continue
                if response.is_permission:
                    infos = pending.update(response.file_infos())
                    pending = FileInfos()
                    result = self._receive(infos, open_target)
                elif response.directive is DirectiveKind.DIRECTORY:
                    infos = pending.update(self._directory_infos(response))
                    pending = FileInfos()
                    result = self._enter_directory(infos, make_directory)
                    if result is None:
                        continue
                elif response.directive is DirectiveKind.END_DIRECTORY:
                    self._exit_directory()
                    continue
                else:
                    raise ProtocolViolation(f"unexpected response from remote: {response!r}")
            except DirectiveParseError as exc:
                send_warning(self.channel, str(exc))
                result = FileResult(self._path(pending.filename), pending).finish(exc)
                pending = FileInfos()

            if isinstance(result.error, RemoteFailure) and result.error.fatal:
                yield result
                return
            yield result
            if result.error is not None and self.stop_on_error:
                return

    def _path(self, name: str) -> str:
        parts = [*self._dirs, name] if name else self._dirs
        return posixpath.join(*parts) if parts else ""

    def _check_name(self, infos: FileInfos) -> None:
        if "/" in infos.filename or infos.filename in (".", ".."):
            send_error(self.channel, f"unexpected filename: {infos.filename}")
            self.closed = True
            raise ProtocolViolation(f"remote sent unsafe filename {infos.filename!r}")

    def _directory_infos(self, response: Response) -> FileInfos:
        if not self.recursive:
            raise ProtocolViolation("remote sent a directory but recursive receive is off")
        return response.file_infos()

    def _enter_directory(self, infos: FileInfos, make_directory: MakeDirectory | None) -> FileResult | None:
        self._check_name(infos)
        path = self._path(infos.filename)
        assert make_directory is not None
        try:
            make_directory(path, infos)
        except OSError as e:
            error = LocalFileError(f"{path}: {e.strerror or e}", path)
            send_warning(self.channel, str(error))
            return FileResult(path, infos).finish(error)
        self._dirs.append(infos.filename)
        send_ack(self.channel)
        log.info("entered directory %s", path)
        return None

    def _exit_directory(self) -> None:
        if not self.recursive:
            raise ProtocolViolation("remote sent end of directory but recursive receive is off")
        if not self._dirs:
            raise ProtocolViolation("end of directory without a matching directory")
        log.info("left directory %s", self._path(""))
        self._dirs.pop()
        send_ack(self.channel)

    def _receive(self, infos: FileInfos, open_target: OpenTarget) -> FileResult:
        self._check_name(infos)
        path = self._path(infos.filename)
        result = FileResult(path, infos)
        log.info("receiving %s; size=%d bytes", path, infos.size)

        acked = False
        local_exc: LocalFileError | None = None
        try:
            with open_target(path, infos) as dest:
                send_ack(self.channel)
                acked = True
                local_exc = self._copy_payload(infos.size, dest, result)
        except OSError as e:
            local_exc = LocalFileError(f"{path}: {e.strerror or e}", path)
            if not acked:
                # remote skips the file when its directive is refused
                send_warning(self.channel, str(local_exc))
                return result.finish(local_exc)

        response = decode_response(self.channel)
        if response.is_error:
            self.closed = True
            return result.finish(RemoteFailure(response, path))
        if local_exc is not None:
            send_warning(self.channel, str(local_exc))
        else:
            send_ack(self.channel)
        if response.is_warning:
            return result.finish(RemoteFailure(response, path))
        if not response.is_plain_ok:
            raise ProtocolViolation(f"expected end of file status for {path}, got {response!r}")

        result.finish(local_exc)
        if result.ok:
            log.info("received %s; throughput=%.2f Mbit/s", path, result.throughput_mbps)
        return result

    def _copy_payload(self, size: int, dest: BinaryIO, result: FileResult) -> LocalFileError | None:
        reader = wrap_reader(self.channel, self.progress)
        local_exc = None
        remaining = size
        while remaining > 0:
            chunk = reader.read(min(self.block_size, remaining))
            if not chunk:
                raise TransportError(
                    f"connection closed after {size - remaining}/{size} bytes of {result.path}"
                )
            remaining -= len(chunk)
            result.bytes_transferred += len(chunk)
            if local_exc is None:
                try:
                    dest.write(chunk)
                except OSError as e:
                    # keep draining so the stream stays in sync
                    local_exc = LocalFileError(f"{result.path}: {e.strerror or e}", result.path)
        return local_exc
