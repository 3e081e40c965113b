"""Error taxonomy for SCP transfers.

Transport errors and protocol violations end the session. Parse errors,
remote failures and local file errors end only the current file, unless
the remote sent a fatal Error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .response import Response


class ScpError(Exception):
    pass


class TransportError(ScpError):
    """Raised on I/O failure of the underlying stream."""


class ConnectionClosed(TransportError):
    """Raised when the peer closes the stream before a status byte."""


class TransferCancelled(TransportError):
    """Raised when the transfer context is cancelled or its deadline passes.

    The stream is left mid-exchange and must be discarded by the caller.
    """


class ProtocolViolation(ScpError):
    pass


class DirectiveParseError(ScpError):
    """Raised on a malformed permission, directory or time directive.

    Attributes:
        field: the component that failed to parse ("permission", "size",
            "mode", "time", "atime" or "mtime").
        line: the offending directive text.
    """

    def __init__(self, message: str, field: str, line: str = "") -> None:
        self.field = field
        self.line = line
        super().__init__(message)


class RemoteFailure(ScpError):
    """Raised when the remote answers with a Warning or an Error.

    Attributes:
        response: the decoded Response.
        fatal: True for Error responses; the remote is about to close
            the session and no further directives may be sent.
    """

    def __init__(self, response: "Response", path: str = "") -> None:
        self.response = response
        self.path = path
        self.fatal = response.is_error
        prefix = "remote error" if self.fatal else "remote warning"
        where = f" ({path})" if path else ""
        super().__init__(f"{prefix}{where}: {self.reason}")

    @property
    def reason(self) -> str:
        return self.response.message.rstrip("\n")


class LocalFileError(ScpError):
    """Raised when the caller-supplied local file fails mid-transfer."""

    def __init__(self, message: str, path: str = "") -> None:
        self.path = path
        super().__init__(message)
