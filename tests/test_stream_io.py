"""Continuous reader and reliable writer tests.

Test coverage:
- Chunk bounds and terminal EOF delivery
- Error reporting with and without stop_on_error
- Single-use reader thread
- Blocking and background writes, including partial writes and EPIPE
"""

from __future__ import annotations

import errno
import os
import threading
from unittest import mock

import pytest

from cli_capture.errors import ReaderStateError
from cli_capture.runtime import stream_io
from cli_capture.runtime.stream_io import (
    DEFAULT_MAX_LENGTH,
    ContinuousReader,
    continuous_read,
    write_all,
    write_all_and_wait,
)


@pytest.fixture
def pipe():
    """os.pipe() pair, closed after the test."""
    read_fd, write_fd = os.pipe()
    fds = {"r": read_fd, "w": write_fd}
    yield fds
    for fd in fds.values():
        try:
            os.close(fd)
        except OSError:
            pass


def _close(fds: dict, key: str) -> None:
    os.close(fds[key])
    fds[key] = -1


class TestContinuousRead:
    """Test continuous_read."""

    def test_default_chunk_size(self):
        assert DEFAULT_MAX_LENGTH == 3 * 1024

    def test_reads_until_eof(self, pipe):
        os.write(pipe["w"], b"hello world")
        _close(pipe, "w")

        chunks: list[tuple[bytes, int]] = []
        continuous_read(pipe["r"], lambda data, error: chunks.append((data, error)))

        assert b"".join(data for data, _ in chunks) == b"hello world"
        assert chunks[-1] == (b"", 0)
        assert all(error == 0 for _, error in chunks)

    def test_respects_max_length(self, pipe):
        os.write(pipe["w"], b"x" * 100)
        _close(pipe, "w")

        chunks: list[bytes] = []
        continuous_read(pipe["r"], lambda data, error: chunks.append(data), max_length=7)

        assert all(len(c) <= 7 for c in chunks)
        assert b"".join(chunks) == b"x" * 100

    def test_rejects_non_positive_length(self, pipe):
        with pytest.raises(ValueError):
            continuous_read(pipe["r"], lambda d, e: None, max_length=0)

    def test_stops_on_first_error(self):
        reads = [OSError(errno.EIO, "io"), b"never"]

        def fake_read(fd, n):
            item = reads.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        chunks: list[tuple[bytes, int]] = []
        with mock.patch.object(stream_io.os, "read", side_effect=fake_read):
            continuous_read(99, lambda data, error: chunks.append((data, error)))

        assert chunks == [(b"", errno.EIO)]

    def test_continues_after_error_when_requested(self):
        reads = [b"a", OSError(errno.EIO, "io"), b"b", b""]

        def fake_read(fd, n):
            item = reads.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        chunks: list[tuple[bytes, int]] = []
        with mock.patch.object(stream_io.os, "read", side_effect=fake_read):
            continuous_read(99, lambda data, error: chunks.append((data, error)), stop_on_error=False)

        assert chunks == [(b"a", 0), (b"", errno.EIO), (b"b", 0), (b"", 0)]

    def test_bad_descriptor_always_stops(self):
        chunks: list[tuple[bytes, int]] = []
        with mock.patch.object(stream_io.os, "read", side_effect=OSError(errno.EBADF, "bad")):
            continuous_read(99, lambda data, error: chunks.append((data, error)), stop_on_error=False)

        assert chunks == [(b"", errno.EBADF)]


class TestContinuousReader:
    """Test ContinuousReader thread wrapper."""

    def test_background_read(self, pipe):
        chunks: list[bytes] = []
        finished = threading.Event()
        reader = ContinuousReader(
            pipe["r"],
            lambda data, error: chunks.append(data),
            on_finished=finished.set,
        )
        reader.start()
        os.write(pipe["w"], b"abc")
        _close(pipe, "w")

        assert reader.join(timeout=5)
        assert finished.is_set()
        assert reader.done
        assert b"".join(chunks) == b"abc"
        assert chunks[-1] == b""

    def test_start_twice_raises(self, pipe):
        reader = ContinuousReader(pipe["r"], lambda d, e: None)
        reader.start()
        with pytest.raises(ReaderStateError):
            reader.start()
        _close(pipe, "w")
        assert reader.join(timeout=5)

    def test_handler_exception_finishes_reader(self, pipe):
        def boom(data: bytes, error: int) -> None:
            raise RuntimeError("handler failed")

        reader = ContinuousReader(pipe["r"], boom)
        reader.start()
        os.write(pipe["w"], b"x")

        assert reader.join(timeout=5)
        assert isinstance(reader.exception, RuntimeError)


class TestWriteAll:
    """Test reliable writers."""

    def test_write_all_and_wait(self, pipe):
        leftover, error = write_all_and_wait(pipe["w"], b"payload")
        assert (leftover, error) == (b"", 0)
        assert os.read(pipe["r"], 100) == b"payload"

    def test_empty_write(self, pipe):
        assert write_all_and_wait(pipe["w"], b"") == (b"", 0)

    def test_partial_writes_are_resumed(self):
        written: list[bytes] = []

        def fake_write(fd, data):
            chunk = bytes(data[:3])
            written.append(chunk)
            return len(chunk)

        with mock.patch.object(stream_io.os, "write", side_effect=fake_write):
            assert write_all_and_wait(99, b"abcdefgh") == (b"", 0)

        assert written == [b"abc", b"def", b"gh"]

    def test_error_returns_leftover(self):
        calls = {"n": 0}

        def fake_write(fd, data):
            calls["n"] += 1
            if calls["n"] == 1:
                return 2
            raise OSError(errno.EPIPE, "broken pipe")

        with mock.patch.object(stream_io.os, "write", side_effect=fake_write):
            assert write_all_and_wait(99, b"abcdef") == (b"cdef", errno.EPIPE)

    def test_broken_pipe(self, pipe):
        _close(pipe, "r")
        leftover, error = write_all_and_wait(pipe["w"], b"data")
        assert error == errno.EPIPE
        assert leftover == b"data"

    def test_background_write(self, pipe):
        results: list[tuple[bytes, int]] = []
        thread = write_all(pipe["w"], b"x" * 200_000, lambda leftover, error: results.append((leftover, error)))

        received = bytearray()
        while len(received) < 200_000:
            received.extend(os.read(pipe["r"], 65536))
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert results == [(b"", 0)]
        assert bytes(received) == b"x" * 200_000
