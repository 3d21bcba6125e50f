"""Exclusive executor tests."""

from __future__ import annotations

import threading
import time

import pytest

from cli_capture.runtime.locks import (
    ExclusiveExecutor,
    MutexExecutor,
    SerialQueueExecutor,
    as_executor,
)


def _hammer(executor: ExclusiveExecutor, threads: int = 8, iterations: int = 200) -> int:
    """Increment a shared counter non-atomically from many threads."""
    state = {"counter": 0, "inside": 0, "overlap": False}

    def block() -> None:
        state["inside"] += 1
        if state["inside"] > 1:
            state["overlap"] = True
        value = state["counter"]
        time.sleep(0)
        state["counter"] = value + 1
        state["inside"] -= 1

    def worker() -> None:
        for _ in range(iterations):
            executor.run_exclusive(block)

    workers = [threading.Thread(target=worker) for _ in range(threads)]
    for t in workers:
        t.start()
    for t in workers:
        t.join()

    assert not state["overlap"]
    return state["counter"]


class TestMutexExecutor:
    """Test MutexExecutor."""

    def test_returns_block_result(self):
        assert MutexExecutor().run_exclusive(lambda: 42) == 42

    def test_mutual_exclusion(self):
        assert _hammer(MutexExecutor()) == 8 * 200

    def test_reentrant_by_default(self):
        executor = MutexExecutor()
        assert executor.run_exclusive(lambda: executor.run_exclusive(lambda: "nested")) == "nested"

    def test_releases_lock_on_exception(self):
        lock = threading.Lock()
        executor = MutexExecutor(lock)

        def boom() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            executor.run_exclusive(boom)
        assert not lock.locked()

    def test_satisfies_protocol(self):
        assert isinstance(MutexExecutor(), ExclusiveExecutor)


class TestSerialQueueExecutor:
    """Test SerialQueueExecutor."""

    def test_runs_on_single_worker_thread(self):
        with SerialQueueExecutor() as executor:
            idents = {executor.run_exclusive(threading.get_ident) for _ in range(10)}
        assert len(idents) == 1
        assert threading.get_ident() not in idents

    def test_mutual_exclusion(self):
        with SerialQueueExecutor() as executor:
            assert _hammer(executor, threads=4, iterations=50) == 4 * 50

    def test_nested_call_runs_inline(self):
        with SerialQueueExecutor() as executor:
            result = executor.run_exclusive(lambda: executor.run_exclusive(lambda: "inline"))
        assert result == "inline"

    def test_propagates_exceptions(self):
        def boom() -> None:
            raise ValueError("bad")

        with SerialQueueExecutor() as executor:
            with pytest.raises(ValueError, match="bad"):
                executor.run_exclusive(boom)


class TestAsExecutor:
    """Test lock adaptation."""

    def test_none_gives_mutex(self):
        assert isinstance(as_executor(None), MutexExecutor)

    def test_executor_passes_through(self):
        executor = MutexExecutor()
        assert as_executor(executor) is executor

    def test_lock_is_wrapped(self):
        lock = threading.Lock()
        executor = as_executor(lock)
        assert isinstance(executor, MutexExecutor)
        assert executor.lock is lock

    def test_semaphore_is_accepted(self):
        executor = as_executor(threading.Semaphore(1))
        assert executor.run_exclusive(lambda: "ok") == "ok"

    def test_rejects_non_lock(self):
        with pytest.raises(TypeError):
            as_executor(object())
