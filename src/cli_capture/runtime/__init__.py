"""Runtime module for subprocess output capture.

This module provides continuous stream readers, reliable writers, the
output coordinator that serializes stdout/stderr delivery, and the process
runner built on top of them.
"""

from __future__ import annotations

from .buffers import CombinedOutputBuffer, OutputBuffer, PassthroughSink
from .coordinator import OutputCoordinator
from .events import (
    OutputEvent,
    OutputProcessEvent,
    ProcessEvent,
    Stream,
    TerminatedEvent,
)
from .locks import ExclusiveExecutor, MutexExecutor, SerialQueueExecutor, as_executor
from .options import CaptureOptions, CapturePolicy, OutputOptions, PassthroughOptions
from .process_runner import CapturedProcess, ProcessRunner, ProcessSpec
from .response import CapturedResponse, StringResponse, assemble, to_string_response
from .stream_io import (
    DEFAULT_MAX_LENGTH,
    ContinuousReader,
    continuous_read,
    write_all,
    write_all_and_wait,
)

__all__ = [
    "CaptureOptions",
    "CapturePolicy",
    "CapturedProcess",
    "CapturedResponse",
    "CombinedOutputBuffer",
    "ContinuousReader",
    "DEFAULT_MAX_LENGTH",
    "ExclusiveExecutor",
    "MutexExecutor",
    "OutputBuffer",
    "OutputCoordinator",
    "OutputEvent",
    "OutputOptions",
    "OutputProcessEvent",
    "PassthroughOptions",
    "PassthroughSink",
    "ProcessEvent",
    "ProcessRunner",
    "ProcessSpec",
    "SerialQueueExecutor",
    "Stream",
    "StringResponse",
    "TerminatedEvent",
    "as_executor",
    "assemble",
    "continuous_read",
    "to_string_response",
    "write_all",
    "write_all_and_wait",
]
