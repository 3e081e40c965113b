from __future__ import annotations

import io
import selectors
import socket
import subprocess
import threading
import time
from typing import Any

from .constants import POLL_INTERVAL
from .errors import TransferCancelled, TransportError


class TransferContext:
    """Cancellation signal and optional deadline shared by one transfer.

    ``cancel()`` may be called from any thread; the next blocking call on
    a Channel bound to this context raises TransferCancelled.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self.deadline = None if timeout is None else time.monotonic() + timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check(self) -> None:
        if self._cancelled.is_set():
            raise TransferCancelled("transfer cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise TransferCancelled("transfer deadline exceeded")

    def poll_timeout(self) -> float:
        remaining = self.remaining()
        if remaining is None:
            return POLL_INTERVAL
        return max(0.0, min(POLL_INTERVAL, remaining))


def _pollable(obj: Any) -> bool:
    # buffered readers may hold data the selector cannot see
    return isinstance(obj, (socket.socket, io.RawIOBase))


class Channel:
    """Ordered byte stream to the remote scp process.

    Wraps a socket, or a reader/writer pair such as the pipes of an ssh
    subprocess. Every read and write first checks the TransferContext;
    sockets and raw pipes are additionally polled in short slices so a
    cancel from another thread interrupts a blocked call. Buffered file
    objects cannot be polled; ``from_process`` unwraps them to their raw
    pipes. Every write is flushed before it returns.
    """

    def __init__(self, reader: Any, writer: Any = None, context: TransferContext | None = None):
        self.reader = reader
        self.writer = reader if writer is None else writer
        self.context = context or TransferContext()
        self._selectors: dict[int, selectors.BaseSelector] = {}

    @classmethod
    def from_socket(cls, sock: socket.socket, context: TransferContext | None = None) -> "Channel":
        sock.setblocking(True)
        return cls(sock, sock, context)

    @classmethod
    def from_process(cls, proc: subprocess.Popen, context: TransferContext | None = None) -> "Channel":
        if proc.stdout is None or proc.stdin is None:
            raise ValueError("process must be started with stdin=PIPE and stdout=PIPE")
        return cls(getattr(proc.stdout, "raw", proc.stdout), getattr(proc.stdin, "raw", proc.stdin), context)

    def _wait(self, obj: Any, event: int) -> None:
        self.context.check()
        if not _pollable(obj):
            return
        # one selector per direction; each watches only the reader or the writer
        sel = self._selectors.get(event)
        if sel is None:
            sel = self._selectors[event] = selectors.DefaultSelector()
            sel.register(obj, event)
        while not sel.select(self.context.poll_timeout()):
            self.context.check()

    def read(self, n: int) -> bytes:
        """Read up to n bytes; returns b"" at end of stream."""
        self._wait(self.reader, selectors.EVENT_READ)
        try:
            if isinstance(self.reader, socket.socket):
                data = self.reader.recv(n)
            else:
                data = self.reader.read(n)
        except OSError as e:
            raise TransportError(f"read failed: {e}") from e
        return data or b""

    def read_exact(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self.read(n - len(buf))
            if not chunk:
                raise TransportError(f"connection closed after {len(buf)}/{n} bytes")
            buf.extend(chunk)
        return bytes(buf)

    def write(self, data: bytes) -> int:
        """Write all of data; returns len(data)."""
        view = memoryview(data)
        while view:
            self._wait(self.writer, selectors.EVENT_WRITE)
            try:
                if isinstance(self.writer, socket.socket):
                    sent = self.writer.send(view)
                else:
                    sent = self.writer.write(view)
            except OSError as e:
                raise TransportError(f"write failed: {e}") from e
            if sent is None:
                sent = len(view)
            if sent <= 0:
                raise TransportError("short write on channel")
            view = view[sent:]
        self.flush()
        return len(data)

    def flush(self) -> None:
        flush = getattr(self.writer, "flush", None)
        if flush is None:
            return
        try:
            flush()
        except OSError as e:
            raise TransportError(f"flush failed: {e}") from e

    def close(self) -> None:
        for sel in self._selectors.values():
            sel.close()
        self._selectors.clear()
        self.writer.close()
        if self.reader is not self.writer:
            self.reader.close()
