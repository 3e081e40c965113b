"""Byte-counting stream proxies.

ProgressReader and ProgressWriter forward every call unchanged and then
report ``(total_so_far, n)`` to an observer. ``wrap_reader`` and
``wrap_writer`` return the stream itself when no observer is given, so
callers never branch on whether progress is being tracked.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

ProgressObserver = Callable[[int, int], None]


class _Proxy:
    def __init__(self, wrapped: Any, observer: ProgressObserver):
        self.wrapped = wrapped
        self.observer = observer
        self.total = 0

    def _report(self, n: int) -> None:
        self.total += n
        self.observer(self.total, n)

    def __getattr__(self, item):
        return getattr(self.wrapped, item)


class ProgressReader(_Proxy):
    def read(self, n: int = -1) -> bytes:
        data = self.wrapped.read(n)
        if data:
            self._report(len(data))
        return data


class ProgressWriter(_Proxy):
    def write(self, data: bytes) -> Optional[int]:
        n = self.wrapped.write(data)
        written = len(data) if n is None else n
        if written:
            self._report(written)
        return n


def wrap_reader(reader: Any, observer: Optional[ProgressObserver]) -> Any:
    return reader if observer is None else ProgressReader(reader, observer)


def wrap_writer(writer: Any, observer: Optional[ProgressObserver]) -> Any:
    return writer if observer is None else ProgressWriter(writer, observer)
