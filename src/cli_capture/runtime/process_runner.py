"""Process runner with output capture, passthrough and reliable termination.

This module provides:
- Subprocess spawning with session/process group isolation
- Concurrent draining of stdout and stderr through an ``OutputCoordinator``
- Optional stdin feeding via a background reliable writer
- Exactly one ``TerminatedEvent`` per process, after exit and drain
- Graceful termination (SIGTERM -> timeout -> SIGKILL) for timeouts and
  cancellation
- asyncio/anyio surfaces on top of the blocking core

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- A stream that is neither captured nor passed through goes to DEVNULL
- stdin is DEVNULL unless ``stdin_bytes`` is given, never inherited
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

import anyio

from ..config import get_config
from ..errors import CaptureError, ProcessSpawnError, ProcessTimeoutError
from .buffers import PassthroughSink
from .coordinator import OutputCoordinator
from .events import (
    OutputEvent,
    OutputEventHandler,
    OutputProcessEvent,
    ProcessEvent,
    ProcessEventHandler,
    Stream,
    TerminatedEvent,
)
from .locks import ExclusiveExecutor, as_executor
from .options import CapturePolicy, PassthroughOptions, PolicyLike
from .response import CapturedResponse, StringResponse, assemble, to_exit_status_code
from .stream_io import write_all

__all__ = [
    "CapturedProcess",
    "ProcessRunner",
    "ProcessSpec",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

StdinErrorHandler = Callable[[bytes, int], None]


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
        stdin_bytes: Optional bytes to write to stdin
    """

    argv: list[str]
    cwd: Path | str | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("argv must contain at least the executable")


class CapturedProcess:
    """Handle to a running, captured child process.

    Created by ``ProcessRunner.capture``. Output events are delivered to the
    observer while the process runs; ``wait`` returns once the single
    ``TerminatedEvent`` has been delivered.

    Attributes:
        popen: Underlying ``subprocess.Popen``
        policy: Capture/passthrough policy of this run
        coordinator: Coordinator draining the output streams
    """

    def __init__(
        self,
        popen: subprocess.Popen,
        policy: CapturePolicy,
        runner: "ProcessRunner",
        on_event: ProcessEventHandler | None = None,
        on_stdin_error: StdinErrorHandler | None = None,
    ) -> None:
        self.popen = popen
        self.policy = policy
        self._runner = runner
        self._on_event = on_event
        self._on_stdin_error = on_stdin_error
        self._terminated = threading.Event()
        self._stdin_thread: threading.Thread | None = None
        self._watcher: threading.Thread | None = None
        self.coordinator = OutputCoordinator(
            policy,
            on_event=self._forward_output if on_event is not None else None,
            lock=runner.executor,
            sink=runner.sink,
            process=self,
            max_length=runner.chunk_size,
            stop_on_error=runner.stop_on_error,
        )

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def returncode(self) -> int | None:
        return self.popen.returncode

    @property
    def exit_status_code(self) -> int | None:
        """Exit status as a signed 32-bit value, None while running."""
        if self.popen.returncode is None:
            return None
        return to_exit_status_code(self.popen.returncode)

    @property
    def has_terminated(self) -> bool:
        """Whether the ``TerminatedEvent`` has been delivered."""
        return self._terminated.is_set()

    @property
    def events(self) -> tuple[OutputEvent, ...]:
        return self.coordinator.events

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the process exited and its output drained.

        Returns:
            True if the process has terminated, False on timeout
        """
        return self._terminated.wait(timeout)

    def terminate(self) -> None:
        """Terminate the process group, escalating to kill."""
        self._runner.terminate(self)

    def kill(self) -> None:
        """Kill the process group immediately."""
        self._runner.kill(self)

    def response(self) -> CapturedResponse:
        """Assemble the captured result.

        Raises:
            CaptureError: If the process has not terminated yet
        """
        if not self.has_terminated:
            raise CaptureError(f"Process pid={self.pid} has not terminated yet")
        return assemble(self.popen.returncode, self.policy, self.coordinator.events)

    def _start(self, stdin_bytes: bytes | None) -> None:
        stdout_fd = self.popen.stdout.fileno() if self.popen.stdout is not None else None
        stderr_fd = self.popen.stderr.fileno() if self.popen.stderr is not None else None
        self.coordinator.start(stdout_fd, stderr_fd)

        if stdin_bytes is not None and self.popen.stdin is not None:
            self._stdin_thread = write_all(
                self.popen.stdin.fileno(),
                stdin_bytes,
                self._stdin_done,
                name=f"cli-capture-stdin-{self.pid}",
            )

        self._watcher = threading.Thread(
            target=self._watch,
            name=f"cli-capture-watch-{self.pid}",
            daemon=True,
        )
        self._watcher.start()

    def _forward_output(self, event: OutputEvent) -> None:
        self._on_event(OutputProcessEvent(event))

    def _stdin_done(self, leftover: bytes, error: int) -> None:
        if error:
            logger.warning(
                f"Writing stdin failed pid={self.pid} errno={error}, "
                f"{len(leftover)} bytes not written"
            )
            if self._on_stdin_error is not None:
                try:
                    self._on_stdin_error(leftover, error)
                except Exception as e:
                    logger.warning(f"Error in stdin error handler: {e}")
        _close_quietly(self.popen.stdin)

    def _watch(self) -> None:
        try:
            self.popen.wait()
            self.coordinator.wait()
            if self._stdin_thread is not None:
                self._stdin_thread.join()
        finally:
            _close_quietly(self.popen.stdout)
            _close_quietly(self.popen.stderr)
            logger.debug(
                f"Subprocess completed pid={self.pid} "
                f"returncode={self.popen.returncode}"
            )
            try:
                self._runner.executor.run_exclusive(self._emit_terminated)
            finally:
                self._terminated.set()

    def _emit_terminated(self) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(TerminatedEvent(self))
        except Exception as e:
            logger.warning(f"Error in termination event handler: {e}")

    def __repr__(self) -> str:
        return (
            f"CapturedProcess(pid={self.pid}, policy={self.policy}, "
            f"returncode={self.popen.returncode})"
        )


def _close_quietly(stream: IO[bytes] | None) -> None:
    if stream is None:
        return
    try:
        stream.close()
    except OSError as e:
        logger.debug(f"Error closing pipe: {e}")


def _output_only(on_output: OutputEventHandler | None) -> ProcessEventHandler | None:
    if on_output is None:
        return None

    def _handler(event: ProcessEvent) -> None:
        if event.is_output:
            on_output(event.output_event)

    return _handler


@dataclass
class ProcessRunner:
    """Cross-platform process runner with output capture.

    Every process started by one runner shares the runner's exclusive
    executor and passthrough sink, so output of concurrent runs and
    ``print`` calls never interleave mid-chunk.

    Example:
        runner = ProcessRunner()
        spec = ProcessSpec(argv=["git", "--version"])

        response = runner.execute_string(spec, CapturePolicy.CAPTURE_ALL)
        print(response.out)

    Attributes:
        term_timeout: Seconds to wait after SIGTERM (default from config)
        kill_timeout: Seconds to wait after SIGKILL (default from config)
        chunk_size: Max bytes per read (default from config)
        stop_on_error: Stop a reader on its first failed read
        lock: Exclusive executor or ``acquire``/``release`` lock
        sink: Passthrough destination (default: our own stdout/stderr)
    """

    term_timeout: float | None = None
    kill_timeout: float | None = None
    chunk_size: int | None = None
    stop_on_error: bool | None = None
    lock: Any = None
    sink: PassthroughSink | None = None
    executor: ExclusiveExecutor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        config = get_config()
        if self.term_timeout is None:
            self.term_timeout = config.term_timeout
        if self.kill_timeout is None:
            self.kill_timeout = config.kill_timeout
        if self.chunk_size is None:
            self.chunk_size = config.chunk_size
        if self.stop_on_error is None:
            self.stop_on_error = config.stop_on_error
        if self.sink is None:
            self.sink = PassthroughSink()
        self.executor = as_executor(self.lock)

    # ------------------------------------------------------------------
    # Blocking API
    # ------------------------------------------------------------------

    def capture(
        self,
        spec: ProcessSpec,
        policy: PolicyLike = CapturePolicy.CAPTURE_ALL,
        on_event: ProcessEventHandler | None = None,
        *,
        on_stdin_error: StdinErrorHandler | None = None,
    ) -> CapturedProcess:
        """Start a process and begin capturing its output.

        Returns immediately. ``on_event`` is called under the runner's
        executor for every output chunk and once with a ``TerminatedEvent``
        after the process exited and all output was delivered.

        Args:
            spec: Process specification
            policy: Capture/passthrough policy (or option flags)
            on_event: Optional observer of process events
            on_stdin_error: Called as ``(leftover, errno)`` if feeding stdin fails

        Returns:
            Handle to the running process

        Raises:
            ProcessSpawnError: If the process could not be started, including
                an argv or environment rejected with ValueError
        """
        policy = CapturePolicy.coerce(policy)
        kwargs = self._build_subprocess_kwargs(spec)

        try:
            popen = subprocess.Popen(
                list(spec.argv),
                stdin=subprocess.PIPE if spec.stdin_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE if policy.needs_pipe(Stream.OUT) else subprocess.DEVNULL,
                stderr=subprocess.PIPE if policy.needs_pipe(Stream.ERR) else subprocess.DEVNULL,
                cwd=spec.cwd,
                **kwargs,
            )
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to start subprocess argv={spec.argv[0]}: {e}")
            raise ProcessSpawnError(spec.argv, e) from e

        logger.debug(
            f"Started subprocess pid={popen.pid} "
            f"argv={spec.argv[0]} cwd={spec.cwd} policy={policy}"
        )

        process = CapturedProcess(
            popen,
            policy,
            self,
            on_event=on_event,
            on_stdin_error=on_stdin_error,
        )
        process._start(spec.stdin_bytes)
        return process

    def wait_and_capture(
        self,
        process: CapturedProcess,
        timeout: float | None = None,
    ) -> CapturedResponse:
        """Wait for a captured process and assemble its response.

        Raises:
            ProcessTimeoutError: If the process did not finish within
                ``timeout`` seconds. It is terminated before raising.
        """
        if not process.wait(timeout):
            logger.debug(f"Timeout after {timeout}s, terminating pid={process.pid}")
            self.terminate(process)
            if not process.wait(self.term_timeout + self.kill_timeout + 1.0):
                logger.warning(f"Output of pid={process.pid} did not drain after termination")
            raise ProcessTimeoutError(process, timeout)
        return process.response()

    def execute(
        self,
        spec: ProcessSpec,
        policy: PolicyLike = CapturePolicy.CAPTURE_ALL,
        on_output: OutputEventHandler | None = None,
        timeout: float | None = None,
    ) -> CapturedResponse:
        """Run a process to completion and return its captured output.

        Args:
            spec: Process specification
            policy: Capture/passthrough policy (or option flags)
            on_output: Optional observer of output chunks, called under the
                runner's executor
            timeout: Seconds to wait before terminating the process

        Raises:
            ProcessSpawnError: If the process could not be started
            ProcessTimeoutError: If ``timeout`` expired
        """
        process = self.capture(spec, policy, _output_only(on_output))
        return self.wait_and_capture(process, timeout)

    def execute_string(
        self,
        spec: ProcessSpec,
        policy: PolicyLike = CapturePolicy.CAPTURE_ALL,
        on_output: OutputEventHandler | None = None,
        timeout: float | None = None,
    ) -> StringResponse:
        """Like ``execute``, decoding captured output as UTF-8."""
        return self.execute(spec, policy, on_output, timeout).to_string_response()

    def run(
        self,
        spec: ProcessSpec,
        passthrough: PolicyLike = PassthroughOptions.ALL,
        timeout: float | None = None,
    ) -> int:
        """Run a process without capturing, returning its exit status.

        Capture flags in ``passthrough`` are ignored.
        """
        policy = CapturePolicy.coerce(passthrough).without_capture()
        process = self.capture(spec, policy)
        return self.wait_and_capture(process, timeout).exit_status_code

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def stream(
        self,
        spec: ProcessSpec,
        policy: PolicyLike = CapturePolicy.CAPTURE_ALL,
        *,
        cancel_scope: anyio.CancelScope | None = None,
    ) -> AsyncIterator[ProcessEvent]:
        """Run a process and yield its events.

        The last event yielded is the ``TerminatedEvent``. Leaving the
        iteration early (break, cancellation, cancel_scope) terminates the
        process.

        Args:
            spec: Process specification
            policy: Capture/passthrough policy (or option flags)
            cancel_scope: Optional anyio.CancelScope for cancellation

        Yields:
            ``OutputProcessEvent`` per chunk, then one ``TerminatedEvent``

        Raises:
            ProcessSpawnError: If the process could not be started
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ProcessEvent] = asyncio.Queue()

        def on_event(event: ProcessEvent) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        process: CapturedProcess | None = None
        try:
            process = self.capture(spec, policy, on_event)
            while True:
                event = await queue.get()
                if cancel_scope and cancel_scope.cancel_called:
                    break
                yield event
                if event.has_terminated:
                    break
        finally:
            # Ensure cleanup with shield to prevent cancel interruption
            await self._safe_cleanup(process)

    async def execute_async(
        self,
        spec: ProcessSpec,
        policy: PolicyLike = CapturePolicy.CAPTURE_ALL,
        on_output: OutputEventHandler | None = None,
        timeout: float | None = None,
    ) -> CapturedResponse:
        """Async variant of ``execute``.

        Waiting happens on the event loop; cancelling the awaiting task
        terminates the process.
        """
        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        forward = _output_only(on_output)

        def on_event(event: ProcessEvent) -> None:
            if forward is not None:
                forward(event)
            if event.has_terminated:
                loop.call_soon_threadsafe(done.set)

        process = self.capture(spec, policy, on_event)
        try:
            with anyio.fail_after(timeout):
                await done.wait()
        except TimeoutError as e:
            logger.debug(f"Timeout after {timeout}s, terminating pid={process.pid}")
            raise ProcessTimeoutError(process, timeout) from e
        finally:
            if not process.has_terminated:
                await self._safe_cleanup(process)

        return process.response()

    async def execute_string_async(
        self,
        spec: ProcessSpec,
        policy: PolicyLike = CapturePolicy.CAPTURE_ALL,
        on_output: OutputEventHandler | None = None,
        timeout: float | None = None,
    ) -> StringResponse:
        response = await self.execute_async(spec, policy, on_output, timeout)
        return response.to_string_response()

    async def run_async(
        self,
        spec: ProcessSpec,
        passthrough: PolicyLike = PassthroughOptions.ALL,
        timeout: float | None = None,
    ) -> int:
        """Async variant of ``run``."""
        policy = CapturePolicy.coerce(passthrough).without_capture()
        response = await self.execute_async(spec, policy, timeout=timeout)
        return response.exit_status_code

    # ------------------------------------------------------------------
    # Print helpers
    # ------------------------------------------------------------------

    def print(self, *items: Any, sep: str = " ", end: str = "\n") -> None:
        """Print to our stdout through the passthrough sink and lock."""
        self._print(Stream.OUT, sep.join(str(item) for item in items) + end)

    def print_error(self, *items: Any, sep: str = " ", end: str = "\n") -> None:
        """Print to our stderr through the passthrough sink and lock."""
        self._print(Stream.ERR, sep.join(str(item) for item in items) + end)

    def _print(self, stream: Stream, text: str) -> None:
        data = text.encode("utf-8")
        self.executor.run_exclusive(lambda: self.sink.write(stream, data))

    # ------------------------------------------------------------------
    # Spawning and termination
    # ------------------------------------------------------------------

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Args:
            spec: Process specification

        Returns:
            Dict of kwargs for subprocess.Popen
        """
        kwargs: dict[str, Any] = {}

        # Environment
        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        # Platform-specific isolation
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _safe_cleanup(self, process: CapturedProcess | None) -> None:
        """Terminate the process, shielded from cancellation."""
        try:
            await asyncio.shield(self._do_cleanup(process))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_cleanup(process)
            raise

    async def _do_cleanup(self, process: CapturedProcess | None) -> None:
        if process is None or process.has_terminated:
            return
        await anyio.to_thread.run_sync(self.terminate, process)

    def terminate(self, process: CapturedProcess) -> None:
        """Terminate a process gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (kill() on Windows)
        4. Wait up to kill_timeout for forced exit

        The process counts as running until its output drained, so
        background children still holding the pipes are signalled even
        after the group leader exited.
        """
        popen = process.popen
        pid = popen.pid
        if not self._is_running(process):
            return

        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            if IS_WINDOWS:
                self._windows_terminate(popen)
            else:
                self._posix_terminate(popen)

            # Step 2: Wait for graceful exit
            if self._wait_finished(process, self.term_timeout):
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={popen.returncode}"
                )
                return

            # Step 3: Force kill
            self.kill(process)

            # Step 4: Wait for forced exit
            if self._wait_finished(process, self.kill_timeout):
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={popen.returncode}"
                )
            else:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def kill(self, process: CapturedProcess) -> None:
        """Force kill a process group."""
        popen = process.popen
        if not self._is_running(process):
            return
        logger.debug(f"Force killing subprocess pid={popen.pid}")
        if IS_WINDOWS:
            self._windows_kill(popen)
        else:
            self._posix_kill(popen)

    @staticmethod
    def _is_running(process: CapturedProcess) -> bool:
        return process.popen.poll() is None or not process.coordinator.done

    @staticmethod
    def _wait_finished(process: CapturedProcess, timeout: float) -> bool:
        """Wait for exit and drain. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        try:
            process.popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return process.coordinator.wait(max(0.0, deadline - time.monotonic()))

    def _posix_terminate(self, popen: subprocess.Popen) -> None:
        # start_new_session makes the leader's pid the group id, which stays
        # valid while any member lives even after the leader was reaped
        pgid = popen.pid
        try:
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            popen.terminate()

    def _posix_kill(self, popen: subprocess.Popen) -> None:
        pgid = popen.pid
        try:
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            popen.kill()

    def _windows_terminate(self, popen: subprocess.Popen) -> None:
        try:
            # Works because of CREATE_NEW_PROCESS_GROUP
            os.kill(popen.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={popen.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            popen.terminate()

    def _windows_kill(self, popen: subprocess.Popen) -> None:
        try:
            popen.kill()
            logger.debug(f"Called kill() on pid={popen.pid}")
        except ProcessLookupError:
            pass
