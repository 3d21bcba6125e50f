"""cli-capture exception types."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

__all__ = [
    "CaptureError",
    "ProcessSpawnError",
    "ProcessTimeoutError",
    "ReaderStateError",
]


class CaptureError(Exception):
    """Base exception for cli-capture."""
    pass


class ProcessSpawnError(CaptureError):
    """The child process could not be started.

    Raised before any output event is produced.

    Attributes:
        argv: Command line that failed to start
        cause: The underlying OS error, or ValueError for an argv or
            environment the OS cannot accept (e.g. an embedded NUL)
        errno: errno of the underlying error, if any
    """

    def __init__(self, argv: Sequence[str], cause: OSError | ValueError) -> None:
        self.argv = list(argv)
        self.cause = cause
        self.errno = getattr(cause, "errno", None)
        executable = self.argv[0] if self.argv else "<empty>"
        super().__init__(f"Failed to start {executable!r}: {cause}")


class ProcessTimeoutError(CaptureError):
    """The child process did not finish within the allotted time.

    The process has been terminated by the time this is raised.

    Attributes:
        process: The timed-out process
        timeout: Seconds waited
    """

    def __init__(self, process: Any, timeout: float) -> None:
        self.process = process
        self.timeout = timeout
        pid = getattr(process, "pid", None)
        super().__init__(f"Process pid={pid} did not complete within {timeout}s")


class ReaderStateError(CaptureError):
    """A single-use reader or coordinator was started twice."""
    pass
