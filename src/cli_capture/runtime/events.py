"""Event types produced while capturing a child process.

An ``OutputEvent`` is one chunk delivered by a stream reader. A
``ProcessEvent`` is either an output event or the single terminal
``TerminatedEvent`` that is emitted after every reader has drained.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .options import CapturePolicy

__all__ = [
    "Stream",
    "OutputEvent",
    "OutputProcessEvent",
    "TerminatedEvent",
    "ProcessEvent",
    "OutputEventHandler",
    "ProcessEventHandler",
]

STDOUT_FILENO = 1
STDERR_FILENO = 2


class Stream(str, Enum):
    """Child output stream."""

    OUT = "out"
    ERR = "err"

    @property
    def fileno(self) -> int:
        """Standard file number of the matching stream in this process."""
        return STDOUT_FILENO if self is Stream.OUT else STDERR_FILENO


@dataclass(frozen=True)
class OutputEvent:
    """One chunk read from a child output stream.

    Attributes:
        stream: Stream the chunk was read from
        data: Bytes read (empty for EOF or a failed read)
        error: errno of a failed read, 0 otherwise
        process: The child process the chunk belongs to
    """

    stream: Stream
    data: bytes = b""
    error: int = 0
    process: Any = field(default=None, repr=False, compare=False)

    @classmethod
    def out(cls, data: bytes, error: int = 0, process: Any = None) -> "OutputEvent":
        return cls(Stream.OUT, data, error, process)

    @classmethod
    def err(cls, data: bytes, error: int = 0, process: Any = None) -> "OutputEvent":
        return cls(Stream.ERR, data, error, process)

    @property
    def is_out(self) -> bool:
        return self.stream is Stream.OUT

    @property
    def is_err(self) -> bool:
        return self.stream is Stream.ERR

    @property
    def is_error(self) -> bool:
        """Whether the read that produced this chunk failed."""
        return self.error != 0

    @property
    def is_eof(self) -> bool:
        """Whether this is the reader's terminal end-of-stream chunk."""
        return self.error == 0 and len(self.data) == 0

    @property
    def fileno(self) -> int:
        return self.stream.fileno

    def matches_capture(self, policy: "CapturePolicy") -> bool:
        """Whether the policy captures this event's stream."""
        return policy.captures(self.stream)

    def with_container(self, container: Callable[[Any], Any]) -> "OutputEvent":
        """Return a copy whose data is re-wrapped by ``container``.

        ``container`` is any bytes-like constructor (``bytes``,
        ``bytearray``, ``memoryview``).
        """
        return replace(self, data=container(self.data))

    def __len__(self) -> int:
        return len(self.data)

    def __bytes__(self) -> bytes:
        return bytes(self.data)


@dataclass(frozen=True)
class OutputProcessEvent:
    """Process event carrying one output chunk."""

    output: OutputEvent

    @classmethod
    def out(cls, data: bytes, error: int = 0, process: Any = None) -> "OutputProcessEvent":
        return cls(OutputEvent.out(data, error, process))

    @classmethod
    def err(cls, data: bytes, error: int = 0, process: Any = None) -> "OutputProcessEvent":
        return cls(OutputEvent.err(data, error, process))

    @property
    def process(self) -> Any:
        return self.output.process

    @property
    def has_terminated(self) -> bool:
        return False

    @property
    def is_output(self) -> bool:
        return True

    @property
    def output_event(self) -> OutputEvent:
        return self.output


@dataclass(frozen=True)
class TerminatedEvent:
    """Process event emitted once, after exit and after all output drained."""

    process: Any = field(default=None, compare=False)

    @property
    def has_terminated(self) -> bool:
        return True

    @property
    def is_output(self) -> bool:
        return False

    @property
    def output_event(self) -> None:
        return None


ProcessEvent = OutputProcessEvent | TerminatedEvent

OutputEventHandler = Callable[[OutputEvent], None]
ProcessEventHandler = Callable[[ProcessEvent], None]
