"""Decoding of remote responses and the acknowledgement writer.

Every reply starts with one byte. Its numeric value is the status
(0 ok, 1 warning, 2 error) and, independently, its character may be a
directive letter ('C', 'T', 'D', 'E'). Anything other than a bare 0 is
followed by a newline-terminated line.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Protocol

from . import constants
from .constants import ACK, ENCODING, MAX_LINE_SIZE
from .directive import FileInfos, parse_permission, parse_time
from .errors import ConnectionClosed, ProtocolViolation, TransportError

log = logging.getLogger(__name__)


class Reader(Protocol):
    def read(self, n: int) -> bytes: ...


class Writer(Protocol):
    def write(self, data: bytes) -> int | None: ...


class ResponseKind(enum.IntEnum):
    OK = constants.OK
    WARNING = constants.WARNING
    ERROR = constants.ERROR


class DirectiveKind(enum.Enum):
    PERMISSION = constants.PERMISSION
    TIME = constants.TIME
    DIRECTORY = constants.DIRECTORY
    END_DIRECTORY = constants.END_DIRECTORY
    NONE = constants.NO_DIRECTIVE

    @classmethod
    def from_status(cls, status: int) -> "DirectiveKind":
        try:
            return cls(chr(status))
        except ValueError:
            return cls.NONE


@dataclass(frozen=True, slots=True)
class Response:
    kind: ResponseKind
    message: str = ""
    directive: DirectiveKind = DirectiveKind.NONE
    status: int = constants.OK

    @property
    def is_ok(self) -> bool:
        return self.kind == ResponseKind.OK

    @property
    def is_warning(self) -> bool:
        return self.kind == ResponseKind.WARNING

    @property
    def is_error(self) -> bool:
        return self.kind == ResponseKind.ERROR

    @property
    def is_failure(self) -> bool:
        return self.is_warning or self.is_error

    @property
    def is_permission(self) -> bool:
        return self.directive == DirectiveKind.PERMISSION

    @property
    def is_time(self) -> bool:
        return self.directive == DirectiveKind.TIME

    @property
    def no_standard_directive(self) -> bool:
        return not (self.is_permission or self.is_time)

    @property
    def is_plain_ok(self) -> bool:
        return self.is_ok and self.directive == DirectiveKind.NONE

    def file_infos(self) -> FileInfos:
        return parse_permission(self.message)

    def file_time(self) -> FileInfos:
        return parse_time(self.message)


def _read_line(reader: Reader) -> bytes:
    # byte at a time: payload bytes may follow the newline directly
    buf = bytearray()
    while True:
        b = reader.read(1)
        if not b:
            raise TransportError(f"connection closed mid-line (partial data: {bytes(buf)!r})")
        buf.extend(b)
        if b == b"\n":
            return bytes(buf)
        if len(buf) >= MAX_LINE_SIZE:
            raise ProtocolViolation(f"response line exceeds {MAX_LINE_SIZE} bytes")


def decode_response(reader: Reader) -> Response:
    """Read one status byte and, where one follows, its line."""
    try:
        first = reader.read(1)
    except OSError as e:
        raise TransportError(f"failed to read status byte: {e}") from e
    if not first:
        raise ConnectionClosed("connection closed by remote")

    status = first[0]
    directive = DirectiveKind.from_status(status)
    if status in (constants.WARNING, constants.ERROR):
        kind = ResponseKind(status)
    elif status == constants.OK or directive is not DirectiveKind.NONE:
        kind = ResponseKind.OK
    else:
        # not scp speaking, e.g. a shell error from the remote
        kind = ResponseKind.ERROR

    raw = b""
    if kind != ResponseKind.OK or directive is not DirectiveKind.NONE:
        try:
            raw = _read_line(reader)
        except OSError as e:
            raise TransportError(f"failed to read response line: {e}") from e
        if status not in (constants.WARNING, constants.ERROR) and directive is DirectiveKind.NONE:
            raw = first + raw

    response = Response(kind, raw.decode(ENCODING, errors="surrogateescape"), directive, status)
    log.debug("received %s %s %r", response.kind.name, response.directive.name, response.message)
    return response


def _write_exact(writer: Writer, data: bytes, what: str) -> None:
    try:
        n = writer.write(data)
    except OSError as e:
        raise TransportError(f"failed to write {what}: {e}") from e
    if n is not None and n < len(data):
        raise TransportError(f"failed to write {what} buffer")


def send_ack(writer: Writer) -> None:
    """Write a single zero byte. Does not wait for the remote's reply."""
    _write_exact(writer, ACK, "ack")
    log.debug("sent ack")


def send_warning(writer: Writer, message: str) -> None:
    _send_failure(writer, constants.WARNING, message)


def send_error(writer: Writer, message: str) -> None:
    _send_failure(writer, constants.ERROR, message)


def _send_failure(writer: Writer, status: int, message: str) -> None:
    line = "scp: " + message.replace("\n", " ") + "\n"
    _write_exact(writer, bytes([status]) + line.encode(ENCODING, errors="surrogateescape"), "failure")
    log.debug("sent %s %r", ResponseKind(status).name, line)
