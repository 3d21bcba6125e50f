"""Low-level descriptor I/O: continuous readers and reliable writers.

Readers:
- ``continuous_read`` loops bounded blocking reads on one descriptor and
  hands every completed read (including the final zero-length one) to a
  handler before issuing the next read.
- ``ContinuousReader`` runs that loop on a dedicated single-use thread.

Writers:
- ``write_all_and_wait`` keeps writing the unwritten remainder until the
  buffer is exhausted or a write fails.
- ``write_all`` does the same on a background thread and reports through a
  completion handler.

Errors are reported as errno integers (0 = none) rather than raised.
"""

from __future__ import annotations

import errno
import logging
import os
import threading
from typing import Callable

from ..errors import ReaderStateError

__all__ = [
    "DEFAULT_MAX_LENGTH",
    "ReadHandler",
    "WriteHandler",
    "continuous_read",
    "ContinuousReader",
    "write_all",
    "write_all_and_wait",
]

logger = logging.getLogger(__name__)

# 3 KiB per read
DEFAULT_MAX_LENGTH = 3 * 1024

# Errors after which the descriptor can never yield data again
_TERMINAL_ERRNOS = frozenset({errno.EBADF})

ReadHandler = Callable[[bytes, int], None]
WriteHandler = Callable[[bytes, int], None]


def continuous_read(
    fd: int,
    handler: ReadHandler,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    stop_on_error: bool = True,
) -> None:
    """Read ``fd`` until EOF, delivering every chunk to ``handler``.

    Args:
        fd: Readable file descriptor
        handler: Called as ``handler(data, error)`` after each read, on the
            calling thread, before the next read is issued
        max_length: Upper bound on bytes per read
        stop_on_error: Stop after the first failed read. When False, failed
            reads are reported and reading continues until EOF.
    """
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")

    while True:
        try:
            data = os.read(fd, max_length)
            error = 0
        except OSError as e:
            data = b""
            error = e.errno or errno.EIO

        handler(data, error)

        if error:
            if stop_on_error or error in _TERMINAL_ERRNOS:
                return
            continue
        if not data:
            return


class ContinuousReader:
    """Single-use background reader for one descriptor.

    Example:
        reader = ContinuousReader(fd, on_chunk, name="stdout-reader")
        reader.start()
        reader.join()
    """

    def __init__(
        self,
        fd: int,
        handler: ReadHandler,
        *,
        max_length: int = DEFAULT_MAX_LENGTH,
        stop_on_error: bool = True,
        name: str | None = None,
        on_finished: Callable[[], None] | None = None,
    ) -> None:
        self.fd = fd
        self.max_length = max_length
        self.stop_on_error = stop_on_error
        self.name = name or f"cli-capture-reader-{fd}"
        self.exception: BaseException | None = None
        self._handler = handler
        self._on_finished = on_finished
        self._started = False
        self._start_lock = threading.Lock()
        self._finished = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def started(self) -> bool:
        return self._started

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def start(self) -> None:
        """Start reading on a daemon thread.

        Raises:
            ReaderStateError: If the reader was already started
        """
        with self._start_lock:
            if self._started:
                raise ReaderStateError(f"Reader {self.name} already started")
            self._started = True

        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the reader to finish. Returns True if it has."""
        return self._finished.wait(timeout)

    def _run(self) -> None:
        try:
            continuous_read(
                self.fd,
                self._handler,
                max_length=self.max_length,
                stop_on_error=self.stop_on_error,
            )
        except Exception as e:
            self.exception = e
            logger.exception(f"Reader {self.name} failed on fd={self.fd}")
        finally:
            logger.debug(f"Reader {self.name} finished fd={self.fd}")
            self._finished.set()
            if self._on_finished is not None:
                self._on_finished()


def write_all_and_wait(fd: int, data: bytes) -> tuple[bytes, int]:
    """Write all of ``data`` to ``fd``, re-issuing writes for partial writes.

    Returns:
        ``(leftover, error)``: the bytes not written and the errno of the
        failed write. ``(b"", 0)`` on full success.
    """
    view = memoryview(data).cast("B")
    while view:
        try:
            written = os.write(fd, view)
        except OSError as e:
            return bytes(view), e.errno or errno.EIO
        if written <= 0:
            return bytes(view), errno.EIO
        view = view[written:]
    return b"", 0


def write_all(
    fd: int,
    data: bytes,
    handler: WriteHandler,
    *,
    name: str | None = None,
) -> threading.Thread:
    """Write all of ``data`` to ``fd`` on a background thread.

    ``handler(leftover, error)`` is called exactly once when writing stops.

    Returns:
        The writer thread (already started)
    """

    def _run() -> None:
        leftover, error = write_all_and_wait(fd, data)
        if error:
            logger.debug(f"write_all fd={fd} stopped with errno={error}, {len(leftover)} bytes left")
        handler(leftover, error)

    thread = threading.Thread(target=_run, name=name or f"cli-capture-writer-{fd}", daemon=True)
    thread.start()
    return thread
