from __future__ import annotations

OK = 0
WARNING = 1
ERROR = 2

PERMISSION = "C"
TIME = "T"
DIRECTORY = "D"
END_DIRECTORY = "E"
NO_DIRECTIVE = " "

ACK = b"\x00"
END_OF_PAYLOAD = b"\x00"
ENCODING = "utf-8"

MAX_LINE_SIZE = 4096
DEFAULT_BLOCK_SIZE = 16384
DEFAULT_DIR_PERMISSIONS = "0755"
POLL_INTERVAL = 0.05  # seconds between cancellation checks while blocked
DEFAULT_TIMEOUT = None
