from __future__ import annotations

import shlex


def scp_command(
    path: str,
    *,
    source: bool,
    recursive: bool = False,
    preserve: bool = False,
    must_be_dir: bool = False,
) -> list[str]:
    """Build the argv of the remote scp process.

    ``source=True`` starts the remote in source mode (``-f``) for a pull;
    otherwise it runs in sink mode (``-t``) and receives a push.
    """
    if not path:
        raise ValueError("remote path must not be empty")
    if "\n" in path:
        raise ValueError(f"remote path contains a newline: {path!r}")
    argv = ["scp", "-f" if source else "-t"]
    if must_be_dir:
        argv.append("-d")
    if preserve:
        argv.append("-p")
    if recursive:
        argv.append("-r")
    argv += ["--", path]
    return argv


def remote_command_line(argv: list[str]) -> str:
    """Quote argv for the remote shell that ssh hands the command to."""
    return " ".join(shlex.quote(a) for a in argv)
