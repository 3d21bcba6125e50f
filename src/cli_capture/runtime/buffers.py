"""In-memory output buffers and the passthrough sink.

``PassthroughSink`` is where forwarded child output goes. By default each
stream is written to this process's own stdout (fd 1) or stderr (fd 2).
Either stream can be redirected into an ``OutputBuffer``, which is mainly
useful in tests and when embedding the runner in another program.
"""

from __future__ import annotations

import logging
import sys
import threading

from .events import Stream
from .stream_io import write_all_and_wait

__all__ = [
    "OutputBuffer",
    "CombinedOutputBuffer",
    "PassthroughSink",
]

logger = logging.getLogger(__name__)


class OutputBuffer:
    """Thread-safe append-only byte buffer that can be drained."""

    def __init__(self) -> None:
        self._data = bytearray()
        self._lock = threading.Lock()

    def append(self, data: bytes, stream: Stream | None = None) -> None:
        with self._lock:
            self._data.extend(data)

    def read_buffer(self) -> bytes:
        """Return everything buffered and empty the buffer."""
        with self._lock:
            data = bytes(self._data)
            self._data.clear()
        return data

    def peek(self) -> bytes:
        """Return everything buffered without emptying it."""
        with self._lock:
            return bytes(self._data)

    def empty(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class CombinedOutputBuffer(OutputBuffer):
    """Buffer holding stdout and stderr together plus per-stream buffers.

    Attributes:
        out: Buffer receiving only stdout writes
        err: Buffer receiving only stderr writes
    """

    def __init__(self) -> None:
        super().__init__()
        self.out = OutputBuffer()
        self.err = OutputBuffer()

    def append(self, data: bytes, stream: Stream | None = None) -> None:
        if stream is Stream.OUT:
            self.out.append(data, stream)
        elif stream is Stream.ERR:
            self.err.append(data, stream)
        super().append(data, stream)

    def read_buffer(self, empty_all: bool = True) -> bytes:
        """Drain the combined buffer, and the per-stream ones if ``empty_all``."""
        if empty_all:
            self.out.empty()
            self.err.empty()
        return super().read_buffer()

    def empty(self, all: bool = True) -> None:
        if all:
            self.out.empty()
            self.err.empty()
        super().empty()


class PassthroughSink:
    """Destination for passthrough output.

    Args:
        out_buffer: Receives stdout passthrough instead of fd 1
        err_buffer: Receives stderr passthrough instead of fd 2

    The same ``CombinedOutputBuffer`` may be passed for both to observe the
    interleaved passthrough stream.
    """

    def __init__(
        self,
        out_buffer: OutputBuffer | None = None,
        err_buffer: OutputBuffer | None = None,
    ) -> None:
        self.out_buffer = out_buffer
        self.err_buffer = err_buffer

    @classmethod
    def buffered(cls) -> "PassthroughSink":
        """Sink that redirects both streams into one ``CombinedOutputBuffer``."""
        buffer = CombinedOutputBuffer()
        return cls(out_buffer=buffer, err_buffer=buffer)

    def buffer_for(self, stream: Stream) -> OutputBuffer | None:
        return self.out_buffer if stream is Stream.OUT else self.err_buffer

    def write(self, stream: Stream, data: bytes) -> int:
        """Write ``data`` to the stream's destination.

        Returns:
            errno of a failed write to the real descriptor, 0 otherwise
        """
        buffer = self.buffer_for(stream)
        if buffer is not None:
            buffer.append(data, stream)
            return 0

        # Text already buffered by Python must land before the raw bytes
        text_stream = sys.stdout if stream is Stream.OUT else sys.stderr
        if text_stream is not None:
            try:
                text_stream.flush()
            except (OSError, ValueError) as e:
                logger.debug(f"Could not flush {stream.value} before passthrough: {e}")

        leftover, error = write_all_and_wait(stream.fileno, data)
        if error:
            logger.warning(
                f"Passthrough to {stream.value} failed errno={error}, "
                f"{len(leftover)} bytes dropped"
            )
        return error
