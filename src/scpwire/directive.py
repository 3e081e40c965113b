"""SCP metadata directives.

A file is announced by a permission line ``C<mode> <size> <name>`` and,
when times are preserved, a preceding time line ``T<atime> 0 <mtime> 0``.
Both lines describe the same file and are folded into one FileInfos with
``merge``.

Filenames are sent unescaped, so a name containing spaces cannot be
represented: parsing keeps only the third space-separated field.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .constants import DIRECTORY, END_DIRECTORY, ENCODING, PERMISSION, TIME
from .errors import DirectiveParseError


@dataclass(frozen=True, slots=True)
class FileInfos:
    message: str = ""
    filename: str = ""
    permissions: str = ""
    size: int = 0
    atime: int = 0
    mtime: int = 0

    @property
    def mode(self) -> int:
        return int(self.permissions, 8) if self.permissions else 0

    @property
    def has_times(self) -> bool:
        return bool(self.atime or self.mtime)

    def update(self, new: "FileInfos | None") -> "FileInfos":
        """Return a copy with every non-empty field of ``new`` applied."""
        if new is None:
            return self
        changes = {}
        for name in ("message", "filename", "permissions", "size", "atime", "mtime"):
            value = getattr(new, name)
            if value:
                changes[name] = value
        return replace(self, **changes) if changes else self

    def permission_line(self) -> bytes:
        return _encode(f"{PERMISSION}{self.permissions} {self.size} {self.filename}\n")

    def directory_line(self) -> bytes:
        return _encode(f"{DIRECTORY}{self.permissions} 0 {self.filename}\n")

    def time_line(self) -> bytes:
        return _encode(f"{TIME}{self.atime} 0 {self.mtime} 0\n")


def merge(base: FileInfos, new: FileInfos | None) -> FileInfos:
    return base.update(new)


def end_directory_line() -> bytes:
    return _encode(f"{END_DIRECTORY}\n")


def _encode(line: str) -> bytes:
    return line.encode(ENCODING, errors="surrogateescape")


def _fields(message: str) -> list[str]:
    return message.replace("\n", "").split(" ")


def parse_permission(message: str) -> FileInfos:
    """Parse the body of a C or D directive: ``<mode> <size> <name>``."""
    parts = _fields(message)
    if len(parts) < 3:
        raise DirectiveParseError("unable to parse permission directive", "permission", message)
    permissions = parts[0].lstrip(PERMISSION + DIRECTORY)
    try:
        int(permissions, 8)
    except ValueError:
        raise DirectiveParseError(
            f"invalid mode in permission directive: {permissions!r}", "mode", message
        ) from None
    try:
        size = int(parts[1])
    except ValueError:
        raise DirectiveParseError(
            f"unable to parse permission directive: bad size {parts[1]!r}", "size", message
        ) from None
    if size < 0:
        raise DirectiveParseError(f"negative size in permission directive: {size}", "size", message)
    if not parts[2]:
        raise DirectiveParseError("missing filename in permission directive", "permission", message)
    return FileInfos(message=message, filename=parts[2], permissions=permissions, size=size)


def parse_time(message: str) -> FileInfos:
    """Parse the body of a T directive: ``<atime> 0 <mtime> 0``."""
    parts = _fields(message)
    if len(parts) < 3:
        raise DirectiveParseError("unable to parse time directive", "time", message)
    try:
        atime = int(parts[0].lstrip(TIME))
    except ValueError:
        raise DirectiveParseError("unable to parse access time of time directive", "atime", message) from None
    try:
        mtime = int(parts[2])
    except ValueError:
        raise DirectiveParseError("unable to parse modify time of time directive", "mtime", message) from None
    if atime < 0 or mtime < 0:
        raise DirectiveParseError("negative timestamp in time directive", "time", message)
    return FileInfos(message=message, atime=atime, mtime=mtime)
