"""Client side of the SCP file-transfer protocol.

The package is layered the way the protocol is:
- response decoding and acknowledgements (``response``)
- the C/T/D/E directive model (``directive``)
- source and sink state machines that sequence directives, payload bytes
  and acknowledgements (``source``, ``sink``)

The secure transport is not established here; a ``Channel`` wraps
whatever ordered byte stream the caller already has.
"""

from .channel import Channel, TransferContext
from .directive import FileInfos, merge, parse_permission, parse_time
from .errors import (
    ConnectionClosed,
    DirectiveParseError,
    LocalFileError,
    ProtocolViolation,
    RemoteFailure,
    ScpError,
    TransferCancelled,
    TransportError,
)
from .progress import ProgressReader, ProgressWriter
from .response import DirectiveKind, Response, ResponseKind, decode_response, send_ack
from .sink import FileResult, ScpSink
from .source import ScpSource, SourceEntry

__all__ = [
    "Channel",
    "ConnectionClosed",
    "DirectiveKind",
    "DirectiveParseError",
    "FileInfos",
    "FileResult",
    "LocalFileError",
    "ProgressReader",
    "ProgressWriter",
    "ProtocolViolation",
    "RemoteFailure",
    "Response",
    "ResponseKind",
    "ScpError",
    "ScpSink",
    "ScpSource",
    "SourceEntry",
    "TransferCancelled",
    "TransferContext",
    "TransportError",
    "decode_response",
    "merge",
    "parse_permission",
    "parse_time",
    "send_ack",
]
