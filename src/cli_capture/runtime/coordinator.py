"""Output coordinator: fan-in of the stdout and stderr readers.

Each stream gets its own ``ContinuousReader`` thread. Every chunk from
either reader is handled under one shared exclusive-execution primitive,
in this order:

1. the observer ``on_event`` is called with the ``OutputEvent``
2. the chunk is appended to the stream's accumulator if captured
3. the chunk is written to the passthrough sink if passed through

So observers, accumulators and the sink never see two chunks at once.
Chunks of one stream keep their read order. Chunks of different streams
are ordered by whichever reader takes the lock first.
"""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Any

from ..errors import ReaderStateError
from .buffers import PassthroughSink
from .events import OutputEvent, OutputEventHandler, Stream
from .locks import ExclusiveExecutor, as_executor
from .options import CapturePolicy
from .stream_io import DEFAULT_MAX_LENGTH, ContinuousReader

__all__ = ["OutputCoordinator"]

logger = logging.getLogger(__name__)


class OutputCoordinator:
    """Serialize two concurrently-read output streams into one event order.

    A coordinator is single-use: ``start`` may be called once.

    Example:
        coordinator = OutputCoordinator(CapturePolicy.CAPTURE_ALL)
        coordinator.start(proc.stdout.fileno(), proc.stderr.fileno())
        coordinator.wait()
        out = coordinator.captured(Stream.OUT)

    Attributes:
        policy: Capture/passthrough policy applied to every chunk
        process: Process handle attached to produced events
    """

    def __init__(
        self,
        policy: CapturePolicy,
        *,
        on_event: OutputEventHandler | None = None,
        lock: Any = None,
        sink: PassthroughSink | None = None,
        process: Any = None,
        max_length: int = DEFAULT_MAX_LENGTH,
        stop_on_error: bool = True,
    ) -> None:
        self.policy = policy
        self.process = process
        self.max_length = max_length
        self.stop_on_error = stop_on_error
        self._executor: ExclusiveExecutor = as_executor(lock)
        self._sink = sink if sink is not None else PassthroughSink()
        self._on_event = on_event

        # Mutated only inside the executor
        self._accumulators: dict[Stream, bytearray] = {
            Stream.OUT: bytearray(),
            Stream.ERR: bytearray(),
        }
        self._events: list[OutputEvent] = []

        self._readers: dict[Stream, ContinuousReader] = {}
        self._state_lock = threading.Lock()
        self._pending = 0
        self._started = False
        self._finished = threading.Event()

    @property
    def executor(self) -> ExclusiveExecutor:
        return self._executor

    @property
    def sink(self) -> PassthroughSink:
        return self._sink

    @property
    def done(self) -> bool:
        """Whether every started reader has delivered its last chunk."""
        return self._finished.is_set()

    def start(self, stdout_fd: int | None, stderr_fd: int | None) -> None:
        """Start one reader per given descriptor.

        A ``None`` descriptor means that stream is not read.

        Raises:
            ReaderStateError: If the coordinator was already started
        """
        with self._state_lock:
            if self._started:
                raise ReaderStateError("OutputCoordinator already started")
            self._started = True

            for stream, fd in ((Stream.OUT, stdout_fd), (Stream.ERR, stderr_fd)):
                if fd is None:
                    continue
                self._readers[stream] = ContinuousReader(
                    fd,
                    partial(self._deliver, stream),
                    max_length=self.max_length,
                    stop_on_error=self.stop_on_error,
                    name=f"cli-capture-{stream.value}-reader",
                    on_finished=self._reader_finished,
                )
            self._pending = len(self._readers)

        if not self._readers:
            self._finished.set()
            return

        logger.debug(
            f"Coordinator starting readers={[s.value for s in self._readers]} "
            f"policy={self.policy}"
        )
        for reader in list(self._readers.values()):
            reader.start()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until all readers finished. Returns True if they have."""
        return self._finished.wait(timeout)

    def captured(self, stream: Stream) -> bytes:
        """Snapshot of the bytes accumulated for ``stream``."""
        return self._executor.run_exclusive(lambda: bytes(self._accumulators[stream]))

    @property
    def events(self) -> tuple[OutputEvent, ...]:
        """Every delivered event, in delivery order."""
        return self._executor.run_exclusive(lambda: tuple(self._events))

    @property
    def captured_events(self) -> tuple[OutputEvent, ...]:
        """Delivered events whose stream the policy captures."""
        return tuple(e for e in self.events if e.matches_capture(self.policy))

    def _deliver(self, stream: Stream, data: bytes, error: int) -> None:
        event = OutputEvent(stream, data, error, self.process)
        self._executor.run_exclusive(partial(self._handle, event))

    def _handle(self, event: OutputEvent) -> None:
        self._events.append(event)

        if event.error:
            logger.debug(f"Read error on {event.stream.value} errno={event.error}")

        if self._on_event is not None:
            try:
                self._on_event(event)
            except Exception as e:
                logger.warning(f"Error in output event handler: {e}")

        if self.policy.captures(event.stream):
            self._accumulators[event.stream].extend(event.data)

        if event.data and self.policy.passes_through(event.stream):
            self._sink.write(event.stream, event.data)

    def _reader_finished(self) -> None:
        with self._state_lock:
            self._pending -= 1
            remaining = self._pending
        if remaining == 0:
            logger.debug("Coordinator: all readers drained")
            self._finished.set()
